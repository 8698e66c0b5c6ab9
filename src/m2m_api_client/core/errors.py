"""Centralized error factory for the M2M API client.

Provides consistent error creation from token endpoint responses, target
service responses and transport exceptions.
"""

from __future__ import annotations

import uuid
from typing import Any

import httpx

from ..errors import (
    ApiClientError,
    AuthExchangeError,
    ErrorCode,
    NetworkError,
    UpstreamError,
)

_UPSTREAM_CODES: dict[int, ErrorCode] = {
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    429: ErrorCode.RATE_LIMITED,
}


def _parse_body(response: httpx.Response) -> Any:
    """Return the JSON body, the text body, or None when empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _extract_message(body: Any) -> str | None:
    if isinstance(body, dict):
        for key in ("error_description", "message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    if isinstance(body, str) and body.strip():
        return body.strip()[:200]
    return None


class ErrorFactory:
    """Centralized error creation with consistent structure.

    All errors created through this factory include:
    - Standardized error codes
    - Correlation IDs for tracing
    - Consistent detail structure for logging
    """

    @staticmethod
    def generate_correlation_id() -> str:
        """Generate a unique correlation ID."""
        return str(uuid.uuid4())

    @staticmethod
    def parse_body(response: httpx.Response) -> Any:
        """Parse a response body the way the client returns it to callers."""
        return _parse_body(response)

    @staticmethod
    def from_http_response(
        response: httpx.Response,
        *,
        correlation_id: str | None = None,
    ) -> UpstreamError:
        """Create UpstreamError from a target service response.

        Args:
            response: HTTP response object.
            correlation_id: Optional correlation ID for tracing.

        Returns:
            UpstreamError carrying status, body and request line.
        """
        status = response.status_code
        correlation_id = correlation_id or ErrorFactory.generate_correlation_id()
        body = _parse_body(response)

        if status in _UPSTREAM_CODES:
            code = _UPSTREAM_CODES[status]
        elif status >= 500:
            code = ErrorCode.SERVER_ERROR
        else:
            code = ErrorCode.UPSTREAM_ERROR

        details: dict[str, Any] = {}
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            details["retry_after"] = int(retry_after)

        method: str | None = None
        url: str | None = None
        try:
            method = response.request.method
            url = str(response.request.url)
        except RuntimeError:
            pass  # response built without a request

        message = _extract_message(body) or f"Upstream request failed with status {status}"
        return UpstreamError(
            message,
            status_code=status,
            code=code,
            method=method,
            url=url,
            body=body,
            correlation_id=correlation_id,
            details=details,
        )

    @staticmethod
    def from_token_response(
        response: httpx.Response,
        *,
        correlation_id: str | None = None,
    ) -> AuthExchangeError:
        """Create AuthExchangeError from a rejected token exchange.

        Args:
            response: Non-success token endpoint response.
            correlation_id: Optional correlation ID for tracing.

        Returns:
            AuthExchangeError carrying upstream status and message.
        """
        body = _parse_body(response)
        details: dict[str, Any] = {}
        if isinstance(body, dict) and body.get("error"):
            details["error"] = body.get("error")
        message = _extract_message(body) or f"HTTP {response.status_code}"
        return AuthExchangeError(
            f"Token exchange rejected: {message}",
            code=ErrorCode.TOKEN_EXCHANGE_REJECTED,
            status_code=response.status_code,
            correlation_id=correlation_id or ErrorFactory.generate_correlation_id(),
            details=details,
        )

    @staticmethod
    def from_exception(
        exc: Exception,
        *,
        correlation_id: str | None = None,
    ) -> ApiClientError:
        """Create client error from exception.

        Args:
            exc: Original exception.
            correlation_id: Optional correlation ID for tracing.

        Returns:
            Appropriate ApiClientError subclass.
        """
        correlation_id = correlation_id or ErrorFactory.generate_correlation_id()

        if isinstance(exc, ApiClientError):
            if exc.correlation_id is None:
                exc.correlation_id = correlation_id
            return exc

        if isinstance(exc, httpx.TimeoutException):
            return NetworkError(
                f"Request timed out: {exc}",
                correlation_id=correlation_id,
                cause=exc,
                timeout=True,
            )

        if isinstance(exc, httpx.HTTPStatusError):
            return ErrorFactory.from_http_response(
                exc.response,
                correlation_id=correlation_id,
            )

        if isinstance(exc, httpx.ConnectError):
            return NetworkError(
                f"Connection failed: {exc}",
                correlation_id=correlation_id,
                cause=exc,
            )

        if isinstance(exc, httpx.HTTPError):
            return NetworkError(
                f"HTTP error: {exc}",
                correlation_id=correlation_id,
                cause=exc,
            )

        return NetworkError(
            f"Unexpected error: {exc}",
            correlation_id=correlation_id,
            cause=exc,
        )
