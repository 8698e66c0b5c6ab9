"""Authenticated M2M API client."""

from .async_client import AsyncApiClient, create_api_client
from .config import CacheConfig, ClientConfig, TelemetryConfig
from .core.token_store import TokenStore, get_default_token_store, reset_default_token_store
from .errors import (
    ApiClientError,
    AuthExchangeError,
    ConfigurationError,
    ErrorCode,
    NetworkError,
    UpstreamError,
)
from .models import RequestDescriptor, TokenResponse, TokenState
from .telemetry import configure_telemetry

__all__ = [
    "AsyncApiClient",
    "create_api_client",
    "ClientConfig",
    "CacheConfig",
    "TelemetryConfig",
    "TokenStore",
    "get_default_token_store",
    "reset_default_token_store",
    "ApiClientError",
    "AuthExchangeError",
    "ConfigurationError",
    "ErrorCode",
    "NetworkError",
    "UpstreamError",
    "RequestDescriptor",
    "TokenResponse",
    "TokenState",
    "configure_telemetry",
]

__version__ = "0.1.0"
