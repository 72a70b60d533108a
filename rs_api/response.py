"""Response value and HTTP response classification."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from .errors import ClientError, HTTPStatusError, SerializationError, ServerError

logger = logging.getLogger(__name__)


@dataclass
class Response:
    """Outcome of one HTTP exchange with the API."""
    status_code: int
    raw: bytes = b""
    data: Any = None
    error_message: str | None = None
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    error: HTTPStatusError | None = field(default=None, repr=False)

    @property
    def location(self) -> str | None:
        """The Location header, set by create actions."""
        return self.headers.get("location")

    @property
    def is_success(self) -> bool:
        return self.error is None

    def raise_for_status(self) -> Response:
        """Raise the HTTP error attached by :func:`classify`, if any."""
        if self.error is not None:
            raise self.error
        return self


def decode_body(raw: bytes) -> Any:
    """Decode a JSON body, an empty (or blank) body decodes to None."""
    if not raw.strip():
        return None
    return json.loads(raw)


def read_body(http_response: httpx.Response) -> bytes:
    """Read the whole body; httpx keeps it buffered so it can be read again."""
    return http_response.read()


def classify(request: httpx.Request, http_response: httpx.Response) -> Response:
    """
    Turn an httpx response into a Response.

    2xx bodies must be empty or JSON. Any other status returns a Response with
    ``error`` set (ClientError for 4xx, ServerError for 5xx) and the body, if
    any, kept in ``error_message``; a JSON error body is still decoded into
    ``data`` so callers can look at fields such as ``error_description``.

    Raises:
        SerializationError: If a 2xx body is not valid JSON or cannot be read
    """
    method = request.method
    path = request.url.path
    status = http_response.status_code
    response = Response(status_code=status, headers=http_response.headers)

    try:
        response.raw = read_body(http_response)
    except httpx.HTTPError as e:
        raise SerializationError(f"HTTP {method} {path} error reading response body: {e}") from e

    if 200 <= status < 299:
        try:
            response.data = decode_body(response.raw)
        except ValueError as e:
            raise SerializationError(f"HTTP {method} {path}: error decoding json: {e}") from e
        return response

    if response.raw:
        try:
            response.data = decode_body(response.raw)
        except ValueError:
            logger.debug(f"HTTP {method} {path}: error body is not JSON")
        response.error_message = response.raw.decode("utf-8", errors="replace")
    else:
        response.error_message = _status_line(http_response)

    message = f"HTTP {method} {path}: {_status_line(http_response)}"
    if 400 <= status < 500:
        response.error = ClientError(message, response)
    elif status >= 500:
        response.error = ServerError(message, response)
    else:
        response.error = HTTPStatusError(message, response)
    return response


def _status_line(http_response: httpx.Response) -> str:
    return f"{http_response.status_code} {http_response.reason_phrase}".strip()
