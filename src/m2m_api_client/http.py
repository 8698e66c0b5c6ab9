"""HTTP client construction for the M2M API client."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from .config import ClientConfig

USER_AGENT = "m2m-api-client/0.1.0 Python"


def _timeout(config: ClientConfig) -> httpx.Timeout:
    return httpx.Timeout(
        connect=config.connect_timeout,
        read=config.timeout,
        write=config.timeout,
        pool=config.timeout,
    )


def create_async_http_client(
    config: ClientConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create async HTTP client bound to the target service.

    Args:
        config: Client configuration.
        transport: Optional transport override.

    Returns:
        Configured httpx.AsyncClient with JSON default headers.
    """
    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "application/json",
        "Content-Type": "application/json",
    }
    headers.update(config.default_headers)
    return httpx.AsyncClient(
        base_url=config.service_url_str,
        timeout=_timeout(config),
        headers=headers,
        follow_redirects=False,
        transport=transport,
    )


def create_auth_http_client(
    config: ClientConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create async HTTP client for the token endpoint.

    Args:
        config: Client configuration.
        transport: Optional transport override.

    Returns:
        Configured httpx.AsyncClient without service defaults.
    """
    return httpx.AsyncClient(
        timeout=_timeout(config),
        headers={"User-Agent": USER_AGENT},
        follow_redirects=False,
        transport=transport,
    )
