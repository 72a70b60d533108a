"""Authentication for the rs-api client.

Two strategies are supported. Proxy mode reads the RightLink10 secret file (or
takes an explicit host:port and secret) and sends the shared secret with every
request; no round-trip is needed but only instance-role API calls are allowed.
Direct mode exchanges an API key for an OAuth access token once, when the
client is built.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from .errors import AuthenticationError, ConfigurationError, HTTPStatusError, RsApiError

if TYPE_CHECKING:
    from .client import ApiClient

logger = logging.getLogger(__name__)

PROXY_SECRET_HEADER = "X-RLL-Secret"
TOKEN_ENDPOINT = "/api/oauth2"

_RLL_PORT = re.compile(r"RS_RLL_PORT=(\d+)")
_RLL_SECRET = re.compile(r"RS_RLL_SECRET=([A-Za-z0-9]+)")
_HOST_PORT = re.compile(r"([-A-Za-z0-9.]+):([0-9]+)")


@dataclass(frozen=True)
class ProxyCredential:
    """Shared secret for the RightLink10 proxy."""
    secret: str

    def apply(self, headers: dict[str, str]) -> None:
        headers[PROXY_SECRET_HEADER] = self.secret


@dataclass(frozen=True)
class DirectCredential:
    """OAuth bearer token obtained from an API key."""
    access_token: str

    def apply(self, headers: dict[str, str]) -> None:
        headers["Authorization"] = f"Bearer {self.access_token}"


Credential = Union[ProxyCredential, DirectCredential]


def apply_auth_headers(headers: dict[str, str], *credentials: Credential | None) -> None:
    """
    Add the authentication header for the preferred credential.

    When several are given the proxy secret wins over a bearer token.
    """
    present = [c for c in credentials if c is not None]
    present.sort(key=lambda c: not isinstance(c, ProxyCredential))
    if present:
        present[0].apply(headers)


@dataclass(frozen=True)
class ProxyLocation:
    """Where the RightLink10 proxy listens and the secret it expects."""
    host: str
    port: str
    secret: str

    @property
    def server(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def credential(self) -> ProxyCredential:
        return ProxyCredential(self.secret)


def parse_secret_file(content: str, path: str = "<secret file>") -> tuple[str, str]:
    """
    Extract (port, secret) from RightLink10 secret file content.

    Lines look like ``RS_RLL_PORT=12345`` and ``RS_RLL_SECRET=abc123``, in any
    order.
    """
    port = _RLL_PORT.search(content)
    if port is None:
        raise ConfigurationError(f"Cannot find or parse RS_RLL_PORT in {path}")
    secret = _RLL_SECRET.search(content)
    if secret is None:
        raise ConfigurationError(f"Cannot find or parse RS_RLL_SECRET in {path}")
    return port.group(1), secret.group(1)


def read_secret_file(path: str) -> tuple[str, str]:
    """Read and parse the RightLink10 secret file."""
    try:
        with open(path, "r") as f:
            content = f.read()
    except OSError as e:
        raise ConfigurationError(f"reading proxy secret file: {e}") from e
    return parse_secret_file(content, path)


def locate_proxy(
    proxy_host: str | None,
    secret: str | None,
    secret_file: str,
) -> ProxyLocation:
    """
    Work out how to reach the RightLink10 proxy.

    An explicit ``host:port`` and secret are used as given; whenever either is
    missing the secret file is read and fills in the gap (host "localhost").
    """
    host = port = file_secret = None

    if not proxy_host or not secret:
        port, file_secret = read_secret_file(secret_file)
        host = "localhost"

    if proxy_host:
        m = _HOST_PORT.fullmatch(proxy_host.strip())
        if m is None:
            raise ConfigurationError(f"proxy host '{proxy_host}' is not of the form host:port")
        host, port = m.group(1), m.group(2)

    return ProxyLocation(host=host, port=port, secret=secret or file_secret)


def exchange_token(client: ApiClient, api_key: str) -> DirectCredential:
    """
    Exchange a long-lived API key for an OAuth access token.

    Raises:
        AuthenticationError: If the request fails or no access token comes back
    """
    try:
        response = client.execute(
            "POST",
            TOKEN_ENDPOINT,
            {"grant_type": "refresh_token", "refresh_token": api_key},
        )
    except HTTPStatusError as e:
        msg = str(e)
        data = e.response.data
        if isinstance(data, dict) and isinstance(data.get("error_description"), str):
            msg += f' "{data["error_description"]}"'
        raise AuthenticationError(f"OAuth failed: {msg}") from e
    except RsApiError as e:
        raise AuthenticationError(f"OAuth failed: {e}") from e

    data = response.data
    if not isinstance(data, dict) or not data:
        raw = response.raw.decode("utf-8", errors="replace")
        raise AuthenticationError(f"Invalid oauth response: <<{raw}>>")

    token = data.get("access_token")
    if not isinstance(token, str) or not token:
        raise AuthenticationError(f"Oauth response doesn't have access token: {data!r}")

    logger.debug(f"Obtained access token, expires in {data.get('expires_in', '?')}s")
    return DirectCredential(token)
