"""Exceptions raised by the rs-api client."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CLIENT_ERROR,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_SERVER_ERROR,
)

if TYPE_CHECKING:
    from .response import Response


class RsApiError(Exception):
    """Base exception for rs-api errors."""
    exit_code = EXIT_GENERIC_FAILURE


class UsageError(RsApiError):
    """Invalid command line."""
    exit_code = EXIT_INVALID_USAGE


class ConfigurationError(RsApiError):
    """Missing or malformed configuration, credentials or proxy secret file."""
    exit_code = EXIT_INVALID_USAGE


class AuthenticationError(RsApiError):
    """API key could not be exchanged for an access token."""
    exit_code = EXIT_AUTH_FAILURE


class TransportError(RsApiError):
    """Request could not be sent (connection, DNS, timeout)."""
    exit_code = EXIT_CONNECTION_ERROR


class HTTPStatusError(RsApiError):
    """Request completed with a non-2xx status."""

    def __init__(self, message: str, response: Response):
        super().__init__(message)
        self.response = response


class ClientError(HTTPStatusError):
    """HTTP 4xx, never retried."""
    exit_code = EXIT_CLIENT_ERROR


class ServerError(HTTPStatusError):
    """HTTP 5xx, retried up to the retry ceiling."""
    exit_code = EXIT_SERVER_ERROR


class ExtractionError(RsApiError):
    """Invalid selector or wrong number of selected values."""
    pass


class SerializationError(RsApiError):
    """Body could not be decoded from or encoded to JSON."""
    pass
