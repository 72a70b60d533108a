"""rs-api: command line client for the RightScale API and the RightLink10 proxy.

Usage:
    from rs_api import ApiClient, ClientConfig, select

    client = ApiClient.connect(ClientConfig(host="us-3.rightscale.com", key="..."))
    response = client.execute("GET", "/api/clouds")
    names = select(response.data, ".name")
"""

__version__ = "0.3.0"

from .auth import DirectCredential, ProxyCredential
from .client import ApiClient
from .config import ClientConfig
from .errors import (
    AuthenticationError,
    ClientError,
    ConfigurationError,
    ExtractionError,
    HTTPStatusError,
    RsApiError,
    SerializationError,
    ServerError,
    TransportError,
    UsageError,
)
from .querystring import encode
from .resilience import RetryPolicy
from .response import Response, classify
from .selector import Selector, select

__all__ = [
    "__version__",
    "ApiClient",
    "AuthenticationError",
    "ClientConfig",
    "ClientError",
    "ConfigurationError",
    "DirectCredential",
    "ExtractionError",
    "HTTPStatusError",
    "ProxyCredential",
    "Response",
    "RetryPolicy",
    "RsApiError",
    "SerializationError",
    "Selector",
    "ServerError",
    "TransportError",
    "UsageError",
    "classify",
    "encode",
    "select",
]
