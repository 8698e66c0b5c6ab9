"""Async authenticated API client.

Wraps an httpx client bound to the target service with a request
pipeline that stamps a valid bearer token on every request and retries
once after a 401.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Self

from .config import ClientConfig
from .core.errors import ErrorFactory
from .core.pipeline import (
    AUTHORIZATION,
    AuthorizationHook,
    RequestPipeline,
    UnauthorizedRetryHook,
)
from .core.token_guard import TokenGuard
from .core.token_provider import TokenProvider
from .core.token_store import TokenStore, get_default_token_store
from .http import create_async_http_client, create_auth_http_client
from .models import RequestDescriptor
from .telemetry import configure_telemetry, get_logger

if TYPE_CHECKING:
    import httpx

    from .core.pipeline import CustomHeadersGenerator


class AsyncApiClient:
    """Asynchronous client for a service protected by an M2M token."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        token_store: TokenStore | None = None,
        custom_headers: CustomHeadersGenerator | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize async client and apply its telemetry settings.

        Args:
            config: Client configuration.
            token_store: Token store to share; a private one is created if omitted.
            custom_headers: Callable invoked per request returning extra headers.
            transport: Optional transport override for both HTTP clients.
        """
        configure_telemetry(config.telemetry)
        self.config = config
        self._store = token_store if token_store is not None else TokenStore()
        self._http = create_async_http_client(config, transport=transport)
        self._auth_http = create_auth_http_client(config, transport=transport)
        self._provider = TokenProvider(config, self._store, self._auth_http)
        self._guard = TokenGuard(
            self._store,
            self._provider,
            buffer_seconds=config.cache.token_buffer,
        )
        self._pipeline = RequestPipeline(
            self._http,
            before_send=[AuthorizationHook(self._guard, custom_headers)],
            on_response=[UnauthorizedRetryHook(self._provider)],
            trace_requests=config.telemetry.trace_requests,
        )
        self._logger = get_logger()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close both HTTP clients."""
        await self._http.aclose()
        await self._auth_http.aclose()

    @property
    def token_store(self) -> TokenStore:
        """Get the token store."""
        return self._store

    @property
    def token_provider(self) -> TokenProvider:
        """Get the token provider."""
        return self._provider

    @property
    def token_guard(self) -> TokenGuard:
        """Get the token guard."""
        return self._guard

    @property
    def pipeline(self) -> RequestPipeline:
        """Get the request pipeline."""
        return self._pipeline

    @property
    def headers(self) -> httpx.Headers:
        """Get client-level default headers."""
        return self._http.headers

    async def warm_up(self) -> str:
        """Fetch a valid token and set it as the default Authorization header.

        Returns:
            The token now held by the store.

        Raises:
            AuthExchangeError: If the token exchange fails.
        """
        token = await self._guard.get_valid_token()
        self._http.headers[AUTHORIZATION] = f"Bearer {token}"
        return token

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Send a request through the pipeline and return the parsed body.

        Args:
            method: HTTP method.
            path: Path relative to the service base URL.
            params: Optional query parameters.
            json: Optional JSON body.
            headers: Optional per-call headers.

        Returns:
            Parsed JSON body, text body when not JSON, or None when empty.

        Raises:
            UpstreamError: If the service answers with a non-2xx status,
                including a 401 that survived the refresh and retry.
            AuthExchangeError: If a token could not be obtained.
            NetworkError: On transport failure.
        """
        descriptor = RequestDescriptor(
            method=method,
            path=path,
            headers=headers or {},
            params=params,
            json_body=json,
        )
        response = await self._pipeline.execute(descriptor)

        if not response.is_success:
            error = ErrorFactory.from_http_response(response)
            self._logger.warning(
                "upstream_error",
                method=descriptor.method,
                path=path,
                status_code=response.status_code,
                correlation_id=error.correlation_id,
            )
            raise error

        return ErrorFactory.parse_body(response)

    async def get(self, path: str, *, params: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        """Send a GET request."""
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        """Send a POST request."""
        return await self.request("POST", path, json=json, **kwargs)

    async def put(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        """Send a PUT request."""
        return await self.request("PUT", path, json=json, **kwargs)

    async def patch(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        """Send a PATCH request."""
        return await self.request("PATCH", path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        """Send a DELETE request."""
        return await self.request("DELETE", path, **kwargs)


async def create_api_client(
    config: ClientConfig | None = None,
    custom_headers: CustomHeadersGenerator | None = None,
    *,
    token_store: TokenStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncApiClient:
    """Create a ready-to-use client with a warm token.

    Args:
        config: Client configuration; loaded from the environment if omitted.
        custom_headers: Callable invoked per request returning extra headers.
        token_store: Token store to use; the process-wide store if omitted.
        transport: Optional transport override.

    Returns:
        Client whose default Authorization header already holds a valid token.

    Raises:
        ConfigurationError: If configuration is missing or invalid. No
            network call is made in that case.
        AuthExchangeError: If the initial token exchange fails.
    """
    if config is None:
        config = ClientConfig.from_env()

    client = AsyncApiClient(
        config,
        token_store=token_store if token_store is not None else get_default_token_store(),
        custom_headers=custom_headers,
        transport=transport,
    )
    try:
        await client.warm_up()
    except BaseException:
        await client.close()
        raise
    return client
