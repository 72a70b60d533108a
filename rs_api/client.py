"""API client: request construction, retries and logging."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable

import httpx

from .auth import (
    PROXY_SECRET_HEADER,
    Credential,
    apply_auth_headers,
    exchange_token,
    locate_proxy,
)
from .config import ClientConfig
from .errors import ConfigurationError, TransportError
from .querystring import QueryArgs, encode
from .resilience import RetryPolicy
from .response import Response, classify

logger = logging.getLogger(__name__)

USER_AGENT = "rs-api"

# Called with every completed exchange, used to capture test fixtures
RecorderSink = Callable[[httpx.Request, httpx.Response], None]

_HIDDEN_HEADERS = re.compile(
    rf"(?im)^(Authorization|{PROXY_SECRET_HEADER}):.*$"
)


@dataclass
class ApiClient:
    """
    Client for the RightScale API, direct or through the RightLink10 proxy.

    Usage:
        client = ApiClient.connect(ClientConfig(host="us-3.rightscale.com", key="..."))
        response = client.execute("GET", "/api/clouds", {"view": "extended"})
        print(response.data)

    Build clients with :meth:`connect` (or :meth:`for_proxy` / :meth:`for_direct`);
    the credential is fixed once construction returns.
    """
    server: str
    api_version: str = "1.5"
    account: str | None = None
    credential: Credential | None = None
    debug: bool = False
    timeout: float = 300.0
    verify: bool = True
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    recorder: RecorderSink | None = None

    # Injected by tests (httpx.MockTransport); None means the network
    transport: httpx.BaseTransport | None = field(default=None, repr=False)

    @classmethod
    def connect(
        cls,
        config: ClientConfig,
        transport: httpx.BaseTransport | None = None,
        recorder: RecorderSink | None = None,
    ) -> ApiClient:
        """Build a proxy client in RightLink10 mode, otherwise a direct client."""
        if config.rl10:
            logger.debug("Using RightLink10 proxy")
            return cls.for_proxy(config, transport=transport, recorder=recorder)
        logger.debug("Going direct to RightScale")
        return cls.for_direct(config, transport=transport, recorder=recorder)

    @classmethod
    def for_proxy(
        cls,
        config: ClientConfig,
        transport: httpx.BaseTransport | None = None,
        recorder: RecorderSink | None = None,
    ) -> ApiClient:
        """Client talking to the local RightLink10 proxy; no request is made."""
        location = locate_proxy(config.proxy_host, config.proxy_secret, config.secret_file)
        return cls(
            server=location.server,
            credential=location.credential,
            **cls._common_options(config, transport, recorder),
        )

    @classmethod
    def for_direct(
        cls,
        config: ClientConfig,
        transport: httpx.BaseTransport | None = None,
        recorder: RecorderSink | None = None,
    ) -> ApiClient:
        """Client talking to the API directly; exchanges the API key for a token."""
        if not config.host:
            raise ConfigurationError("API host required: use --host or set RS_api_hostname")
        if not config.key:
            raise ConfigurationError("API key required: use --key or set RS_api_key")

        server = config.host
        if not server.startswith(("https://", "http://")):
            server = f"https://{server}"
        try:
            httpx.URL(server)
        except httpx.InvalidURL as e:
            raise ConfigurationError(f"Invalid API host {config.host!r}: {e}") from e

        client = cls(server=server.rstrip("/"), **cls._common_options(config, transport, recorder))
        client.credential = exchange_token(client, config.key)
        return client

    @staticmethod
    def _common_options(
        config: ClientConfig,
        transport: httpx.BaseTransport | None,
        recorder: RecorderSink | None,
    ) -> dict:
        try:
            retry_policy = RetryPolicy(
                max_attempts=config.retry_max_attempts,
                backoff_factor=config.retry_backoff_factor,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid retry configuration: {e}") from e
        return {
            "api_version": config.api_version,
            "account": config.account,
            "debug": config.debug,
            "timeout": config.timeout,
            "verify": not config.insecure,
            "retry_policy": retry_policy,
            "recorder": recorder,
            "transport": transport,
        }

    def make_url(self, path: str, args: QueryArgs | None = None) -> str:
        """Absolute URL for an href such as /api/instances."""
        if not path.startswith("/"):
            path = "/" + path
        url = self.server + path
        if args:
            url += "?" + encode(args)
        return url

    def _get_headers(self, content_type: str | None = None) -> dict[str, str]:
        """Build request headers including authentication."""
        headers: dict[str, str] = {}
        apply_auth_headers(headers, self.credential)
        if self.account:
            headers["X-Account"] = self.account
        headers["X-API-Version"] = self.api_version
        headers["User-Agent"] = USER_AGENT
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def execute(
        self,
        method: str,
        path: str,
        args: QueryArgs | None = None,
        content_type: str | None = None,
        body: str | bytes | None = None,
    ) -> Response:
        """
        Perform one API call, retrying transport failures and 5xx responses.

        Args:
            method: HTTP verb
            path: Resource href, e.g. /api/clouds/6
            args: Query arguments, values are strings or lists of strings
            content_type: Content-Type of ``body``
            body: Request body

        Returns:
            The classified Response (2xx)

        Raises:
            TransportError: The request could not be sent after all attempts
            ClientError: 4xx status (not retried)
            ServerError: 5xx status after all attempts
            SerializationError: 2xx body that is not JSON
        """
        method = method.upper()
        url = self.make_url(path, args)

        with httpx.Client(
            timeout=httpx.Timeout(self.timeout),
            verify=self.verify,
            transport=self.transport,
        ) as http:
            request = http.build_request(
                method,
                url,
                headers=self._get_headers(content_type),
                content=body,
            )
            dump = dump_request(request)

            attempt = 1
            while True:
                try:
                    http_response = http.send(request)
                except httpx.TransportError as e:
                    self._log_attempt(request, dump, error=e)
                    if not self.retry_policy.should_retry_error(e, attempt):
                        raise TransportError(
                            f"HTTP {method} {request.url.path} failed after {attempt} attempt(s): {e}"
                        ) from e
                    self._wait_before_retry(attempt, e)
                    attempt += 1
                    continue

                retrying = self.retry_policy.should_retry_status(http_response.status_code, attempt)
                self._log_attempt(request, dump, response=http_response, retrying=retrying)

                if not retrying:
                    self._record(request, http_response)
                    return classify(request, http_response).raise_for_status()

                self._wait_before_retry(attempt, classify(request, http_response).error)
                attempt += 1

    def _wait_before_retry(self, attempt: int, reason: Exception | None) -> None:
        delay = self.retry_policy.delay(attempt)
        logger.warning(
            f"Retry {attempt}/{self.retry_policy.max_attempts - 1} after {delay:.1f}s: {reason}"
        )
        if delay:
            time.sleep(delay)

    def _record(self, request: httpx.Request, http_response: httpx.Response) -> None:
        """Hand the exchange to the recorder; a failing recorder never fails the call."""
        if self.recorder is None:
            return
        try:
            self.recorder(request, http_response)
        except Exception as e:
            logger.warning(f"Failed to record HTTP exchange: {e}")

    def _log_attempt(
        self,
        request: httpx.Request,
        dump: str,
        response: httpx.Response | None = None,
        error: Exception | None = None,
        retrying: bool = False,
    ) -> None:
        """
        Log one attempt, with request and response dumps for error statuses.

        Without debug only the body of an error response is logged, as a warning
        when the attempt is retried. The command reports the final body itself.
        """
        method, path = request.method, request.url.path

        if error is not None:
            if self.debug:
                logger.info(f"HTTP {method} '{path}' error: {error}")
            return

        status = response.status_code
        if status > 399:
            if self.debug:
                logger.info(f"HTTP {method} {path} returned {status} {response.reason_phrase}")
                logger.debug(f"===== REQUEST =====\n{dump}")
                logger.debug(f"===== RESPONSE =====\n{dump_response(response)}")
            else:
                log = logger.warning if retrying else logger.debug
                log(f"HTTP {method} {path} returned {status}: {response.text}")
        elif not self.debug:
            return
        elif status in (301, 302):
            logger.info(f"HTTP {method} redirect to {response.headers.get('location')}")
        else:
            logger.info(f"HTTP {method} {path} -> {status} {response.reason_phrase}")


def dump_request(request: httpx.Request) -> str:
    """Wire-style dump of a request with credentials masked."""
    lines = [f"{request.method} {request.url.raw_path.decode('ascii')} HTTP/1.1"]
    lines += [f"{name}: {value}" for name, value in request.headers.items()]
    text = "\n".join(lines)
    text = _HIDDEN_HEADERS.sub(lambda m: f"{m.group(1)}: <hidden>", text)
    body = request.content.decode("utf-8", errors="replace")
    return f"{text}\n\n{body}" if body else text


def dump_response(response: httpx.Response) -> str:
    """Wire-style dump of a response."""
    lines = [f"{response.http_version} {response.status_code} {response.reason_phrase}"]
    lines += [f"{name}: {value}" for name, value in response.headers.items()]
    body = response.text
    return "\n".join(lines) + (f"\n\n{body}" if body else "")
