"""Request pipeline for the M2M API client.

An ordered list of before-send hooks transforms each outbound request
descriptor, the descriptor is sent, and an ordered list of on-response
hooks may replace the response. The authorization stamp and the
single 401 retry are both hooks.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Mapping, Sequence
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

import httpx

from ..telemetry import get_logger, trace_operation
from .errors import ErrorFactory

if TYPE_CHECKING:
    from ..models import RequestDescriptor
    from .token_guard import TokenGuard
    from .token_provider import TokenProvider

AUTHORIZATION = "Authorization"

Resubmit = Callable[["RequestDescriptor"], Awaitable[httpx.Response]]
CustomHeadersGenerator = Callable[
    [], Mapping[str, str] | Awaitable[Mapping[str, str]] | None
]


class BeforeSendHook(Protocol):
    """Transforms a request descriptor before it is sent."""

    async def __call__(self, request: RequestDescriptor) -> RequestDescriptor:
        ...


class OnResponseHook(Protocol):
    """Inspects a response and may replace it, e.g. by resubmitting."""

    async def __call__(
        self,
        response: httpx.Response,
        request: RequestDescriptor,
        resubmit: Resubmit,
    ) -> httpx.Response:
        ...


def bearer(token: str) -> dict[str, str]:
    """Build an Authorization header mapping."""
    return {AUTHORIZATION: f"Bearer {token}"}


class RetryState(StrEnum):
    """States of the 401 retry state machine."""

    NORMAL = "normal"
    REFRESHING = "refreshing"
    RETRYING = "retrying"


class AuthorizationHook:
    """Stamps a fresh bearer token and custom headers on every request.

    The auth retry of a logical call keeps the token stamped by the forced
    refresh; the guard is not consulted again for it.
    """

    def __init__(
        self,
        guard: TokenGuard,
        custom_headers: CustomHeadersGenerator | None = None,
    ) -> None:
        self._guard = guard
        self._custom_headers = custom_headers
        self._logger = get_logger()

    async def _generate_headers(self) -> dict[str, str]:
        if self._custom_headers is None:
            return {}
        generated = self._custom_headers()
        if inspect.isawaitable(generated):
            generated = await generated
        if not generated:
            return {}

        headers: dict[str, str] = {}
        for name, value in generated.items():
            if name.lower() == AUTHORIZATION.lower():
                self._logger.warning("custom_authorization_header_ignored")
                continue
            headers[name] = str(value)
        return headers

    async def __call__(self, request: RequestDescriptor) -> RequestDescriptor:
        # A retry already carries the token from the forced refresh.
        if not (request.is_retry and request.header(AUTHORIZATION)):
            token = await self._guard.get_valid_token()
            request = request.with_headers(bearer(token))
        extra = await self._generate_headers()
        if extra:
            request = request.with_headers(extra)
        return request


class UnauthorizedRetryHook:
    """Refreshes the token and resubmits once when the service answers 401.

    Engages only for the original attempt of a logical call, so a service
    that always answers 401 sees exactly one resubmission. A failed refresh
    propagates the AuthExchangeError instead of the 401.
    """

    def __init__(self, provider: TokenProvider) -> None:
        self._provider = provider
        self._logger = get_logger()

    def should_engage(self, response: httpx.Response, request: RequestDescriptor) -> bool:
        """Check whether the response triggers the refresh-and-retry cycle."""
        return response.status_code == 401 and not request.is_retry

    async def __call__(
        self,
        response: httpx.Response,
        request: RequestDescriptor,
        resubmit: Resubmit,
    ) -> httpx.Response:
        if not self.should_engage(response, request):
            return response

        log = self._logger.bind(method=request.method, path=request.path)
        log.info("unauthorized_response", state=RetryState.REFRESHING)

        # A 401 proves staleness regardless of the cached expiry.
        token = await self._provider.exchange_token()

        retried = request.with_headers(bearer(token)).next_attempt()
        log.info("unauthorized_retry", state=RetryState.RETRYING, attempt=retried.attempt)
        return await resubmit(retried)


class RequestPipeline:
    """Runs before-send hooks, sends, then runs on-response hooks."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        before_send: Sequence[BeforeSendHook] = (),
        on_response: Sequence[OnResponseHook] = (),
        trace_requests: bool = True,
    ) -> None:
        """Initialize request pipeline.

        Args:
            client: HTTP client bound to the service base URL.
            before_send: Hooks applied in order to each outbound request.
            on_response: Hooks applied in order to each response.
            trace_requests: Whether to open a span per HTTP request.
        """
        self._client = client
        self._before_send = list(before_send)
        self._on_response = list(on_response)
        self._trace_requests = trace_requests
        self._logger = get_logger()

    @property
    def before_send(self) -> list[BeforeSendHook]:
        """Get before-send hooks."""
        return self._before_send

    @property
    def on_response(self) -> list[OnResponseHook]:
        """Get on-response hooks."""
        return self._on_response

    async def execute(self, request: RequestDescriptor) -> httpx.Response:
        """Run a request through the full pipeline.

        Args:
            request: Outbound request descriptor.

        Returns:
            Final HTTP response, whatever its status.

        Raises:
            AuthExchangeError: If a token was needed and could not be obtained.
            NetworkError: On transport failure.
        """
        for hook in self._before_send:
            request = await hook(request)

        response = await self.send(request)

        for hook in self._on_response:
            response = await hook(response, request, self.execute)
        return response

    async def send(self, request: RequestDescriptor) -> httpx.Response:
        """Send a single descriptor over the wire, without any hooks.

        Raises:
            NetworkError: On transport failure.
        """
        if not self._trace_requests:
            return await self._send(request)

        with trace_operation(
            "http_request",
            attributes={
                "http.method": request.method,
                "http.url": request.path,
                "attempt": request.attempt,
            },
        ) as span:
            response = await self._send(request)
            span.set_attribute("http.status_code", response.status_code)
            return response

    async def _send(self, request: RequestDescriptor) -> httpx.Response:
        try:
            return await self._client.request(
                request.method,
                request.path,
                headers=request.headers,
                params=request.params,
                json=request.json_body,
            )
        except httpx.HTTPError as e:
            error = ErrorFactory.from_exception(e)
            self._logger.warning(
                "request_failed",
                method=request.method,
                path=request.path,
                error=str(e),
                correlation_id=error.correlation_id,
            )
            raise error from e
