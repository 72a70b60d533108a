"""rs-api command line: argument handling and the request/output pipeline.

:func:`run` takes the command line and returns a :class:`CommandResult`
without touching the process; :func:`main` prints it and exits.
"""

from __future__ import annotations

import argparse
import contextlib
import io
import logging
import re
import sys
from dataclasses import dataclass
from typing import Any

import httpx

from . import __version__
from .client import ApiClient
from .config import ClientConfig
from .errors import ExtractionError, HTTPStatusError, RsApiError, UsageError
from .exit_codes import EXIT_INVALID_USAGE, EXIT_SUCCESS
from .output import ExtractMode, render
from .querystring import parse_arguments
from .recording import Recorder, RecordingEntry, append_recording, capture_cmd_args
from .response import Response

logger = logging.getLogger(__name__)

PROG = "rs-api"

DESCRIPTION = """\
RightScale/RightLink10 API 1.5/1.6 command line client.

rs-api issues API requests to the RightScale platform, either directly or via
the proxy built into RightLink10. Each request is anchored at a resource href
such as /api/servers or /api/clouds/1/instances/123445 and performs an action
on it: index, show, create, update, destroy, launch, terminate, ... Parameters
are given unescaped, e.g. server[instance][href]=/api/clouds/1/instances/123.

Shortcuts: 'self' is the instance's own href (RightLink10 only) and a single
word such as 'clouds' stands for /api/clouds.

By default the JSON response is printed. --x1/--xm/--xj extract values with a
JSON:select expression (http://jsonselect.org/) and --xh prints a header.

Non-zero exit codes indicate a problem.
"""

# CRUD actions and their HTTP verb
CRUD_ACTIONS = {
    "index": "GET",
    "show": "GET",
    "create": "POST",
    "update": "PUT",
    "destroy": "DELETE",
    "delete": "DELETE",
}

ACTION_ALIASES = {"list": "index"}

# Custom actions that don't follow the POST <href>/<action> rule: (URI suffix, verb)
SPECIAL_ACTIONS = {
    "accounts": ("/accounts", "GET"),
    "current_instances": ("/current_instances", "GET"),
    "data": ("/data", "GET"),
    "detail": ("/detail", "GET"),
    "multi_update": ("/multi_update", "PUT"),
    "servers": ("/servers", "GET"),
    "show_source": ("/source", "GET"),
    "update_source": ("/source", "PUT"),
}

_ACTION = re.compile(r"[a-z][a-z0-9_]*")
_RESOURCE_HREF = re.compile(r"(?P<shortcut>[a-z0-9_]+)|/(?:api|rll)(?:/[A-Za-z0-9_]+)+")

SELF_HREF = "self"
SELF_HREF_VARIABLE = "RS_SELF_HREF"


@dataclass
class CommandResult:
    """What a command prints and how it exits."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog=PROG,
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument("--version", action="version", version=f"{PROG} {__version__}")
    parser.add_argument("--debug", action="store_true", help="Enable verbose request and response logging")
    parser.add_argument("--host", help="host:port for API endpoint or RL10 proxy")
    parser.add_argument("--key", help="RightScale API key or RL10 proxy secret")
    parser.add_argument("--account", help="RightScale account ID, sent as X-Account")
    parser.add_argument("--api-version", choices=("1.5", "1.6"), help="API version (default: 1.5)")
    parser.add_argument("--pretty", action="store_true", help="pretty-print json output")
    parser.add_argument(
        "--rl10",
        action="store_true",
        help="use RightLink10 proxy and auto-detect port/secret unless --host is provided",
    )
    parser.add_argument("--insecure", action="store_true", help="do not verify TLS certificates")
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--record", metavar="FILE", help="for test generation purposes, append the request and output to FILE")

    extract = parser.add_mutually_exclusive_group()
    extract.add_argument(
        "--x1", metavar="SELECTOR",
        help="extract single value from response using json:select, print on one line",
    )
    extract.add_argument(
        "--xm", metavar="SELECTOR",
        help="extract multiple values from response using json:select, print one value per line",
    )
    extract.add_argument(
        "--xj", metavar="SELECTOR",
        help="extract data from response using json:select, print values as json array on one line",
    )
    extract.add_argument("--xh", metavar="HEADER", help="extract value of named header and print on one line")

    parser.add_argument("action", help="name of action, ex: index, create, delete, launch, ...")
    parser.add_argument(
        "resource_href",
        metavar="resource-href",
        help="href of resource to operate on or shortcut, ex: /api/instances/1234, servers, self",
    )
    parser.add_argument(
        "parameters", nargs="*",
        help="arguments to the API call as described in the API docs, ex: 'server[instance][href]=/api/instances/123456'",
    )
    return parser


def extract_mode(args: argparse.Namespace) -> tuple[ExtractMode | None, str | None]:
    for mode in ExtractMode:
        value = getattr(args, mode.value)
        if value is not None:
            return mode, value
    return None, None


def normalize_href(href: str) -> str:
    """Validate a resource href; a single word is a shortcut for /api/<word>."""
    m = _RESOURCE_HREF.fullmatch(href)
    if m is None:
        raise UsageError(f"resourceHref '{href}' is not valid")
    if m.group("shortcut"):
        return f"/api/{href}"
    return href


def resolve_action(action: str, href: str) -> tuple[str, str]:
    """HTTP verb and URI for an action on a resource href."""
    action = ACTION_ALIASES.get(action, action)
    if not _ACTION.fullmatch(action):
        raise UsageError(f"action '{action}' is not valid")
    if action in CRUD_ACTIONS:
        return CRUD_ACTIONS[action], href
    if action in SPECIAL_ACTIONS:
        suffix, method = SPECIAL_ACTIONS[action]
        return method, href + suffix
    return "POST", f"{href}/{action}"


def find_rel(rel: str, data: Any) -> str | None:
    """
    Find a relation in a links collection and return its href.

    Given {"links": [{"rel": "self", "href": "/a/b/123"}, {"rel": "parent", ...}]}
    find_rel("self", ...) returns "/a/b/123".
    """
    if not isinstance(data, dict) or not isinstance(data.get("links"), list):
        return None
    for link in data["links"]:
        if isinstance(link, dict) and link.get("rel") == rel and isinstance(link.get("href"), str):
            return link["href"]
    return None


def get_self_href(client: ApiClient) -> str:
    """
    The instance's own href, e.g. /api/clouds/1/instances/123.

    Asked of RightLink10 first; failing that fetched from the platform and
    saved back into RightLink10 for next time.
    """
    response = client.execute("GET", "/rll/env")
    if isinstance(response.data, dict):
        href = response.data.get(SELF_HREF_VARIABLE)
        if isinstance(href, str) and href:
            logger.debug(f"Self href: {href}")
            return href

    response = client.execute("GET", "/api/session/instance")
    href = find_rel("self", response.data)
    if not href:
        raw = response.raw.decode("utf-8", errors="replace")
        raise ExtractionError(f"extracting self-href from {response.data!r} <<{raw}>>")

    try:
        client.execute(
            "PUT", f"/rll/env/{SELF_HREF_VARIABLE}", content_type="text/plain", body=href,
        )
    except RsApiError as e:
        logger.warning(f"Cannot set {SELF_HREF_VARIABLE} in RLL: {e}")

    logger.debug(f"Self href: {href}")
    return href


def _failure(error: RsApiError, detail: str | None = None) -> CommandResult:
    stderr = f"{PROG}: error: {error}\n"
    if detail:
        stderr += detail.rstrip("\n") + "\n"
    return CommandResult(error.exit_code, "", stderr)


def _perform(
    args: argparse.Namespace,
    transport: httpx.BaseTransport | None,
    recorder: Recorder | None,
) -> CommandResult:
    mode, expression = extract_mode(args)
    response: Response | None = None
    try:
        config = ClientConfig.load(args.config).with_overrides(
            account=args.account,
            api_version=args.api_version,
            rl10=args.rl10 or None,
            debug=args.debug or None,
            insecure=args.insecure or None,
        )
        if config.rl10:
            config = config.with_overrides(proxy_host=args.host, proxy_secret=args.key)
        else:
            config = config.with_overrides(host=args.host, key=args.key)
        query_args = parse_arguments(args.parameters)

        href = args.resource_href
        if href == SELF_HREF:
            if not config.rl10:
                raise UsageError("Cannot retrieve self-href when not using RightLink proxy")
        else:
            href = normalize_href(href)
        # fail on a bad action before connecting
        resolve_action(args.action, href)

        client = ApiClient.connect(config, transport=transport, recorder=recorder)
        if href == SELF_HREF:
            href = get_self_href(client)
        method, path = resolve_action(args.action, href)

        response = client.execute(method, path, query_args or None)
        return CommandResult(EXIT_SUCCESS, render(response, mode, expression, pretty=args.pretty))
    except HTTPStatusError as e:
        return _failure(e, detail=e.response.error_message)
    except RsApiError as e:
        if response is None:
            return _failure(e)
        # the call worked but output failed, show what came back
        return _failure(e, detail=f"response was: <<{response.raw.decode('utf-8', errors='replace')}>>")


def run(
    argv: list[str],
    transport: httpx.BaseTransport | None = None,
) -> CommandResult:
    """
    Run one rs-api command.

    Args:
        argv: Command line arguments, without the program name
        transport: httpx transport to use instead of the network (tests)

    Returns:
        Exit code, stdout and stderr text
    """
    parser = build_parser()
    out, err = io.StringIO(), io.StringIO()
    try:
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            args = parser.parse_args(argv)
    except SystemExit as e:  # --help, --version
        return CommandResult(e.code or 0, out.getvalue(), err.getvalue())
    except UsageError as e:
        return CommandResult(EXIT_INVALID_USAGE, "", f"{parser.format_usage()}{PROG}: error: {e}\n")

    recorder = Recorder() if args.record else None
    result = _perform(args, transport, recorder)

    if args.record:
        entry = RecordingEntry(
            cmd_args=capture_cmd_args(argv),
            exit_code=result.exit_code,
            stdout=result.stdout,
            exchange=recorder.last,
        )
        try:
            append_recording(args.record, entry)
        except OSError as e:
            logger.warning(f"Failed to append recording to {args.record}: {e}")

    return result


def main(argv: list[str] | None = None) -> None:
    """Console entry point."""
    if argv is None:
        argv = sys.argv[1:]

    debug = "--debug" in argv
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format=f"{PROG}: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)

    result = run(argv)
    sys.stderr.write(result.stderr)
    sys.stdout.write(result.stdout)
    sys.exit(result.exit_code)
