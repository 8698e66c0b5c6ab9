"""Core components of the M2M API client.

Token lifecycle (store, provider, guard) and the request pipeline that
applies it to outbound calls.
"""

from __future__ import annotations

from .errors import ErrorFactory
from .pipeline import (
    AuthorizationHook,
    RequestPipeline,
    RetryState,
    UnauthorizedRetryHook,
)
from .token_guard import TokenGuard
from .token_provider import TokenProvider
from .token_store import TokenStore

__all__ = [
    "ErrorFactory",
    "AuthorizationHook",
    "RequestPipeline",
    "RetryState",
    "UnauthorizedRetryHook",
    "TokenGuard",
    "TokenProvider",
    "TokenStore",
]
