"""End-to-end tests for the rs-api command line against the mock API."""

from __future__ import annotations

import json
import logging
from unittest.mock import patch

import pytest

from rs_api import __version__
from rs_api.auth import PROXY_SECRET_HEADER
from rs_api.cli import CommandResult, main, normalize_href, resolve_action, run
from rs_api.errors import UsageError
from rs_api.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CLIENT_ERROR,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_SERVER_ERROR,
    EXIT_SUCCESS,
)

from tests.fixtures.mock_api import (
    CLOUDS,
    MockApiService,
    create_mock_api_for_self_href,
)

PROXY = ["--rl10", "--host", "proxy.test:8080", "--key", "sekret"]


class TestActionResolution:
    """Tests for mapping actions and hrefs to requests."""

    @pytest.mark.parametrize("action,expected", [
        ("index", ("GET", "/api/servers")),
        ("list", ("GET", "/api/servers")),
        ("show", ("GET", "/api/servers")),
        ("create", ("POST", "/api/servers")),
        ("update", ("PUT", "/api/servers")),
        ("destroy", ("DELETE", "/api/servers")),
        ("delete", ("DELETE", "/api/servers")),
        ("launch", ("POST", "/api/servers/launch")),
        ("current_instances", ("GET", "/api/servers/current_instances")),
        ("multi_update", ("PUT", "/api/servers/multi_update")),
        ("show_source", ("GET", "/api/servers/source")),
        ("update_source", ("PUT", "/api/servers/source")),
    ])
    def test_actions(self, action, expected):
        assert resolve_action(action, "/api/servers") == expected

    @pytest.mark.parametrize("action", ["Launch", "run-script", "1st", ""])
    def test_invalid_action(self, action):
        with pytest.raises(UsageError, match="is not valid"):
            resolve_action(action, "/api/servers")

    @pytest.mark.parametrize("href,expected", [
        ("clouds", "/api/clouds"),
        ("server_arrays", "/api/server_arrays"),
        ("/api/clouds/1/instances/ABC123", "/api/clouds/1/instances/ABC123"),
        ("/rll/env", "/rll/env"),
    ])
    def test_normalize_href(self, href, expected):
        assert normalize_href(href) == expected

    @pytest.mark.parametrize("href", ["/foo/bar", "/api", "/api/", "Clouds", "api/clouds", "/api/a b"])
    def test_invalid_href(self, href):
        with pytest.raises(UsageError, match="resourceHref"):
            normalize_href(href)


class TestOutput:
    """Tests for successful commands and their stdout."""

    def test_index_prints_compact_json(self, clouds_api):
        result = run(PROXY + ["index", "clouds"], transport=clouds_api.get_transport())

        assert result.exit_code == EXIT_SUCCESS
        assert result.stdout == json.dumps(CLOUDS, separators=(",", ":"))
        assert result.stderr == ""

    def test_simple_get(self, mock_api):
        mock_api.add_response("GET", "/api/things", json={"x": 1})

        result = run(PROXY + ["show", "things"], transport=mock_api.get_transport())

        assert result == CommandResult(EXIT_SUCCESS, '{"x":1}', "")

    def test_pretty(self, mock_api):
        mock_api.add_response("GET", "/api/things", json={"x": 1})

        result = run(PROXY + ["--pretty", "show", "things"], transport=mock_api.get_transport())

        assert result.stdout == '{\n  "x": 1\n}'

    def test_extract_single(self, clouds_api):
        argv = PROXY + ["--x1", ".cloud_type", "show", "/api/clouds/6"]
        result = run(argv, transport=clouds_api.get_transport())
        assert result == CommandResult(EXIT_SUCCESS, "google", "")

    def test_extract_lines(self, clouds_api):
        argv = PROXY + ["--xm", ".cloud_type", "index", "clouds"]
        result = run(argv, transport=clouds_api.get_transport())
        assert result.stdout == '"amazon"\n"google"\n'

    def test_extract_array(self, clouds_api):
        argv = PROXY + ["--xj", ".cloud_type", "index", "clouds"]
        result = run(argv, transport=clouds_api.get_transport())
        assert result.stdout == '["amazon","google"]'

    def test_extract_with_has(self, clouds_api):
        argv = PROXY + ["--x1", 'object:has(.name:val("rsc-test")).href', "index", "deployments"]
        result = run(argv, transport=clouds_api.get_transport())
        assert result.stdout == "/api/deployments/2"

    def test_create_prints_location(self, clouds_api):
        argv = PROXY + ["--xh", "location", "create", "deployments", "deployment[name]=rsc-test"]

        result = run(argv, transport=clouds_api.get_transport())

        assert result == CommandResult(EXIT_SUCCESS, "/api/deployments/3", "")
        (call,) = clouds_api.get_calls("/api/deployments")
        assert call.method == "POST"
        assert call.url.params["deployment[name]"] == "rsc-test"

    def test_delete_prints_nothing(self, clouds_api):
        result = run(PROXY + ["delete", "/api/deployments/3"], transport=clouds_api.get_transport())

        assert result == CommandResult(EXIT_SUCCESS, "", "")
        assert clouds_api.get_calls()[0].method == "DELETE"

    def test_custom_action(self, mock_api):
        mock_api.add_response("POST", "/api/servers/12/launch", status=201, headers={"Location": "/api/servers/12"})

        result = run(PROXY + ["launch", "/api/servers/12"], transport=mock_api.get_transport())

        assert result.exit_code == EXIT_SUCCESS
        assert mock_api.get_calls()[0].method == "POST"

    def test_repeated_parameters(self, mock_api):
        mock_api.add_response("GET", "/api/clouds", json=[])

        argv = PROXY + ["index", "clouds", "filter[]=name==a", "filter[]=name==b", "view=extended"]
        run(argv, transport=mock_api.get_transport())

        params = mock_api.get_calls()[0].url.params
        assert params.get_list("filter[]") == ["name==a", "name==b"]
        assert params["view"] == "extended"

    def test_account_and_version_headers(self, mock_api):
        mock_api.add_response("GET", "/api/clouds", json=[])

        argv = PROXY + ["--account", "60073", "--api-version", "1.6", "index", "clouds"]
        run(argv, transport=mock_api.get_transport())

        headers = mock_api.get_calls()[0].headers
        assert headers["X-Account"] == "60073"
        assert headers["X-API-Version"] == "1.6"
        assert headers[PROXY_SECRET_HEADER] == "sekret"


class TestFailures:
    """Tests for exit codes and stderr."""

    def test_not_found(self, clouds_api):
        result = run(PROXY + ["show", "/api/clouds/999"], transport=clouds_api.get_transport())

        assert result.exit_code == EXIT_CLIENT_ERROR
        assert result.stdout == ""
        assert result.stderr == (
            "rs-api: error: HTTP GET /api/clouds/999: 404 Not Found\n"
            "ResourceNotFound: Couldn't find Cloud with ID=999\n"
        )

    def test_server_error_after_retries(self, mock_api):
        mock_api.add_response("GET", "/api/clouds", status=500, text="internal error")

        result = run(PROXY + ["index", "clouds"], transport=mock_api.get_transport())

        assert result.exit_code == EXIT_SERVER_ERROR
        assert len(mock_api.get_calls()) == 3
        assert "internal error" in result.stderr

    def test_connection_error(self, mock_api):
        mock_api.add_connect_error("GET", "/api/clouds")

        result = run(PROXY + ["index", "clouds"], transport=mock_api.get_transport())

        assert result.exit_code == EXIT_CONNECTION_ERROR
        assert "failed after 3 attempt(s)" in result.stderr

    def test_extraction_failure_reports_body(self, clouds_api):
        argv = PROXY + ["--x1", ".cloud_type", "index", "clouds"]

        result = run(argv, transport=clouds_api.get_transport())

        assert result.exit_code == EXIT_GENERIC_FAILURE
        assert result.stdout == ""
        assert "Multiple values selected (2 matches)" in result.stderr
        assert "response was: <<[{" in result.stderr

    def test_invalid_selector(self, clouds_api):
        result = run(PROXY + ["--xj", ":bogus", "index", "clouds"], transport=clouds_api.get_transport())

        assert result.exit_code == EXIT_GENERIC_FAILURE
        assert "unsupported pseudo-class" in result.stderr

    def test_invalid_href_makes_no_request(self, mock_api):
        result = run(PROXY + ["index", "/foo/bar"], transport=mock_api.get_transport())

        assert result.exit_code == EXIT_INVALID_USAGE
        assert result.stderr == "rs-api: error: resourceHref '/foo/bar' is not valid\n"
        assert mock_api.get_calls() == []

    def test_invalid_argument_makes_no_request(self, mock_api):
        result = run(PROXY + ["index", "clouds", "novalue"], transport=mock_api.get_transport())

        assert result.exit_code == EXIT_INVALID_USAGE
        assert "argument 'novalue' is not valid" in result.stderr
        assert mock_api.get_calls() == []

    def test_invalid_action_makes_no_request(self, mock_api):
        result = run(PROXY + ["Bad_Action", "clouds"], transport=mock_api.get_transport())

        assert result.exit_code == EXIT_INVALID_USAGE
        assert mock_api.get_calls() == []

    def test_conflicting_extraction_flags(self):
        result = run(PROXY + ["--x1", ".a", "--xm", ".b", "index", "clouds"])

        assert result.exit_code == EXIT_INVALID_USAGE
        assert result.stderr.startswith("usage: rs-api")
        assert "not allowed with argument" in result.stderr

    def test_missing_positional(self):
        result = run(PROXY + ["index"])
        assert result.exit_code == EXIT_INVALID_USAGE

    def test_unsupported_api_version(self):
        result = run(PROXY + ["--api-version", "2.0", "index", "clouds"])
        assert result.exit_code == EXIT_INVALID_USAGE

    def test_missing_secret_file(self, tmp_path, monkeypatch, mock_api):
        monkeypatch.setenv("RS_RLL_SECRET_FILE", str(tmp_path / "missing"))

        result = run(["--rl10", "index", "clouds"], transport=mock_api.get_transport())

        assert result.exit_code == EXIT_INVALID_USAGE
        assert "reading proxy secret file" in result.stderr

    def test_direct_mode_needs_host(self, mock_api):
        result = run(["--key", "k", "index", "clouds"], transport=mock_api.get_transport())

        assert result.exit_code == EXIT_INVALID_USAGE
        assert "API host required" in result.stderr

    def test_abbreviated_options_rejected(self, mock_api, tmp_path):
        path = tmp_path / "rec.jsonl"
        argv = ["--rl10", "--ho", "proxy.test:8080", "--ke", "REAL-SECRET", "--rec", str(path), "index", "clouds"]

        result = run(argv, transport=mock_api.get_transport())

        assert result.exit_code == EXIT_INVALID_USAGE
        assert "unrecognized arguments" in result.stderr
        assert not path.exists()
        assert mock_api.get_calls() == []

    def test_invalid_timeout_environment(self, mock_api, monkeypatch):
        monkeypatch.setenv("RS_API_TIMEOUT", "fast")

        result = run(PROXY + ["index", "clouds"], transport=mock_api.get_transport())

        assert result.exit_code == EXIT_INVALID_USAGE
        assert "RS_API_TIMEOUT must be a number, got 'fast'" in result.stderr
        assert mock_api.get_calls() == []

    def test_invalid_config_file_contents(self, mock_api, tmp_path):
        config = tmp_path / "rs-api.yaml"
        config.write_text("- rl10\n- true\n")

        result = run(PROXY + ["--config", str(config), "index", "clouds"], transport=mock_api.get_transport())

        assert result.exit_code == EXIT_INVALID_USAGE
        assert "must contain a mapping" in result.stderr

    def test_zero_retry_attempts(self, mock_api, monkeypatch):
        monkeypatch.setenv("RS_API_RETRY_MAX_ATTEMPTS", "0")

        result = run(PROXY + ["index", "clouds"], transport=mock_api.get_transport())

        assert result.exit_code == EXIT_INVALID_USAGE
        assert "Invalid retry configuration" in result.stderr
        assert mock_api.get_calls() == []

    def test_invalid_host_port(self, mock_api):
        result = run(["--host", "us-3.rightscale.com:abc", "--key", "k", "index", "clouds"],
                     transport=mock_api.get_transport())

        assert result.exit_code == EXIT_INVALID_USAGE
        assert "Invalid API host 'us-3.rightscale.com:abc'" in result.stderr
        assert mock_api.get_calls() == []


class TestSelfHref:
    """Tests for the 'self' resource shortcut."""

    def test_requires_proxy(self, mock_api):
        result = run(["--host", "us-3.rightscale.com", "--key", "k", "show", "self"],
                     transport=mock_api.get_transport())

        assert result.exit_code == EXIT_INVALID_USAGE
        assert "Cannot retrieve self-href when not using RightLink proxy" in result.stderr
        assert mock_api.get_calls() == []

    def test_from_rll_environment(self):
        api = create_mock_api_for_self_href(in_rll=True)

        result = run(PROXY + ["--x1", ".state", "show", "self"], transport=api.get_transport())

        assert result == CommandResult(EXIT_SUCCESS, "operational", "")
        assert [c.url.path for c in api.get_calls()] == ["/rll/env", "/api/clouds/1/instances/ABC"]

    def test_from_session_and_saved(self):
        api = create_mock_api_for_self_href(in_rll=False)

        result = run(PROXY + ["--x1", ".name", "show", "self"], transport=api.get_transport())

        assert result == CommandResult(EXIT_SUCCESS, "web-1", "")
        assert [(c.method, c.url.path) for c in api.get_calls()] == [
            ("GET", "/rll/env"),
            ("GET", "/api/session/instance"),
            ("PUT", "/rll/env/RS_SELF_HREF"),
            ("GET", "/api/clouds/1/instances/ABC"),
        ]
        (put,) = api.get_calls("/rll/env/RS_SELF_HREF")
        assert put.headers["Content-Type"] == "text/plain"
        assert put.content == b"/api/clouds/1/instances/ABC"

    def test_save_failure_is_only_a_warning(self, caplog):
        api = MockApiService()
        api.add_response("GET", "/rll/env", json={})
        api.add_response("GET", "/api/session/instance", json={"links": [{"rel": "self", "href": "/api/i/1"}]})
        api.add_response("PUT", "/rll/env/RS_SELF_HREF", status=403, text="forbidden")
        api.add_response("GET", "/api/i/1", json={"name": "i"})

        with caplog.at_level(logging.WARNING, logger="rs_api.cli"):
            result = run(PROXY + ["show", "self"], transport=api.get_transport())

        assert result.exit_code == EXIT_SUCCESS
        assert "Cannot set RS_SELF_HREF in RLL" in caplog.text

    def test_no_self_link(self):
        api = MockApiService()
        api.add_response("GET", "/rll/env", json={})
        api.add_response("GET", "/api/session/instance", json={"links": []})

        result = run(PROXY + ["show", "self"], transport=api.get_transport())

        assert result.exit_code == EXIT_GENERIC_FAILURE
        assert "extracting self-href" in result.stderr


class TestConnectionModes:
    """Tests for direct and proxy connections from the command line."""

    def test_direct_mode(self, clouds_api):
        clouds_api.add_token("tok-9")

        argv = ["--host", "us-3.rightscale.com", "--key", "k", "--xm", ".name", "index", "clouds"]
        result = run(argv, transport=clouds_api.get_transport())

        assert result.exit_code == EXIT_SUCCESS
        (call,) = clouds_api.get_calls("/api/clouds")
        assert call.url.scheme == "https"
        assert call.url.host == "us-3.rightscale.com"
        assert call.headers["Authorization"] == "Bearer tok-9"

    def test_direct_mode_from_environment(self, clouds_api, monkeypatch):
        clouds_api.add_token()
        monkeypatch.setenv("RS_api_hostname", "us-4.rightscale.com")
        monkeypatch.setenv("RS_api_key", "k")

        result = run(["index", "clouds"], transport=clouds_api.get_transport())

        assert result.exit_code == EXIT_SUCCESS
        assert clouds_api.get_calls("/api/clouds")[0].url.host == "us-4.rightscale.com"

    def test_authentication_failure(self, mock_api):
        mock_api.add_response("POST", "/api/oauth2", status=401, text="Unauthorized")

        result = run(["--host", "us-3.rightscale.com", "--key", "bad", "index", "clouds"],
                     transport=mock_api.get_transport())

        assert result.exit_code == EXIT_AUTH_FAILURE
        assert result.stderr.startswith("rs-api: error: OAuth failed")
        assert mock_api.get_calls("/api/clouds") == []

    def test_proxy_from_secret_file(self, clouds_api, secret_file, monkeypatch):
        monkeypatch.setenv("RS_RLL_SECRET_FILE", secret_file())

        result = run(["--rl10", "index", "clouds"], transport=clouds_api.get_transport())

        assert result.exit_code == EXIT_SUCCESS
        (call,) = clouds_api.get_calls()
        assert str(call.url) == "http://localhost:41000/api/clouds"
        assert call.headers[PROXY_SECRET_HEADER] == "abc123"

    def test_proxy_ignores_direct_environment(self, clouds_api, secret_file, monkeypatch):
        monkeypatch.setenv("RS_RLL_SECRET_FILE", secret_file())
        monkeypatch.setenv("RS_api_hostname", "us-3.rightscale.com")
        monkeypatch.setenv("RS_api_key", "my-real-api-key")

        result = run(["--rl10", "index", "clouds"], transport=clouds_api.get_transport())

        assert result.exit_code == EXIT_SUCCESS
        (call,) = clouds_api.get_calls()
        assert str(call.url) == "http://localhost:41000/api/clouds"
        assert call.headers[PROXY_SECRET_HEADER] == "abc123"

    def test_config_file_host_is_not_a_proxy(self, clouds_api, secret_file, tmp_path):
        config = tmp_path / "rs-api.yaml"
        config.write_text(f"rl10: true\nhost: us-3.rightscale.com\nkey: real-key\nsecret_file: {secret_file()}\n")

        result = run(["--config", str(config), "index", "clouds"], transport=clouds_api.get_transport())

        assert result.exit_code == EXIT_SUCCESS
        (call,) = clouds_api.get_calls()
        assert call.url.port == 41000
        assert call.headers[PROXY_SECRET_HEADER] == "abc123"

    def test_config_file(self, clouds_api, tmp_path):
        config = tmp_path / "rs-api.yaml"
        config.write_text("rl10: true\nproxy_host: proxy.test:9000\nproxy_secret: from-config\n")

        result = run(["--config", str(config), "index", "clouds"], transport=clouds_api.get_transport())

        assert result.exit_code == EXIT_SUCCESS
        call = clouds_api.get_calls()[0]
        assert call.url.port == 9000
        assert call.headers[PROXY_SECRET_HEADER] == "from-config"

    def test_flags_override_config_file(self, clouds_api, tmp_path):
        config = tmp_path / "rs-api.yaml"
        config.write_text("rl10: true\nproxy_host: proxy.test:9000\nproxy_secret: from-config\n")

        argv = ["--config", str(config), "--key", "from-flag", "index", "clouds"]
        run(argv, transport=clouds_api.get_transport())

        assert clouds_api.get_calls()[0].headers[PROXY_SECRET_HEADER] == "from-flag"

    def test_debug_logging(self, clouds_api, caplog):
        with caplog.at_level(logging.DEBUG, logger="rs_api"):
            run(PROXY + ["--debug", "index", "clouds"], transport=clouds_api.get_transport())

        assert "Using RightLink10 proxy" in caplog.text
        assert "HTTP GET /api/clouds -> 200 OK" in caplog.text


class TestEntryPoint:
    """Tests for --help, --version and main()."""

    def test_help(self):
        result = run(["--help"])

        assert result.exit_code == EXIT_SUCCESS
        assert result.stdout.startswith("usage: rs-api")
        assert "--x1 SELECTOR" in result.stdout

    def test_version(self):
        result = run(["--version"])

        assert result.exit_code == EXIT_SUCCESS
        assert result.stdout == f"rs-api {__version__}\n"

    def test_main_writes_and_exits(self, capsys):
        with patch("rs_api.cli.run", return_value=CommandResult(EXIT_CLIENT_ERROR, "out", "err\n")):
            with pytest.raises(SystemExit) as exc_info:
                main(["index", "clouds"])

        assert exc_info.value.code == EXIT_CLIENT_ERROR
        captured = capsys.readouterr()
        assert captured.out == "out"
        assert captured.err == "err\n"
