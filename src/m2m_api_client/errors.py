"""Error classes for the M2M API client.

Structured error hierarchy with error codes, correlation IDs and a
serializable form for logging and HTTP error payloads.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Standardized error codes for the M2M API client."""

    # Configuration errors (1xxx)
    MISSING_CONFIG = "CFG_1001"
    INVALID_CONFIG = "CFG_1002"

    # Token exchange errors (2xxx)
    TOKEN_EXCHANGE_FAILED = "AUTH_2001"
    TOKEN_EXCHANGE_REJECTED = "AUTH_2002"
    TOKEN_RESPONSE_INVALID = "AUTH_2003"

    # Upstream service errors (3xxx)
    UPSTREAM_ERROR = "UP_3001"
    UNAUTHORIZED = "UP_3002"
    FORBIDDEN = "UP_3003"
    NOT_FOUND = "UP_3004"
    RATE_LIMITED = "UP_3005"
    SERVER_ERROR = "UP_3006"

    # Network errors (4xxx)
    NETWORK_ERROR = "NET_4001"
    TIMEOUT_ERROR = "NET_4002"


class ApiClientError(Exception):
    """Base error for the M2M API client."""

    def __init__(
        self,
        message: str,
        code: ErrorCode | str,
        *,
        status_code: int | None = None,
        correlation_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code if isinstance(code, str) else code.value
        self.status_code = status_code
        self.correlation_id = correlation_id
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "error": self.message,
            "code": self.code,
            "status_code": self.status_code,
            "correlation_id": self.correlation_id,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ConfigurationError(ApiClientError):
    """Required configuration is missing or invalid.

    Raised at startup, before any network call is attempted.
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        code: ErrorCode = ErrorCode.INVALID_CONFIG,
    ) -> None:
        super().__init__(
            message,
            code,
            details={"field": field} if field else None,
        )
        self.field = field


class AuthExchangeError(ApiClientError):
    """Token endpoint was unreachable or rejected the credential exchange."""

    def __init__(
        self,
        message: str = "Token exchange failed",
        *,
        code: ErrorCode = ErrorCode.TOKEN_EXCHANGE_FAILED,
        status_code: int | None = None,
        correlation_id: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        merged = dict(details or {})
        if cause is not None:
            merged["cause"] = str(cause)
        super().__init__(
            message,
            code,
            status_code=status_code,
            correlation_id=correlation_id,
            details=merged or None,
        )
        self.__cause__ = cause


class UpstreamError(ApiClientError):
    """Target service answered with a non-success status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        code: ErrorCode = ErrorCode.UPSTREAM_ERROR,
        method: str | None = None,
        url: str | None = None,
        body: Any = None,
        correlation_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            code,
            status_code=status_code,
            correlation_id=correlation_id,
            details=details,
        )
        self.method = method
        self.url = url
        self.body = body


class NetworkError(ApiClientError):
    """Transport failure while talking to the target service."""

    def __init__(
        self,
        message: str = "Network request failed",
        *,
        correlation_id: str | None = None,
        cause: Exception | None = None,
        timeout: bool = False,
    ) -> None:
        super().__init__(
            message,
            ErrorCode.TIMEOUT_ERROR if timeout else ErrorCode.NETWORK_ERROR,
            status_code=408 if timeout else None,
            correlation_id=correlation_id,
            details={"cause": str(cause)} if cause else None,
        )
        self.timeout = timeout
        self.__cause__ = cause
