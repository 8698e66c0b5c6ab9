"""Staleness check in front of the token store."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from ..models import utcnow
from ..telemetry import get_logger

if TYPE_CHECKING:
    from .token_provider import TokenProvider
    from .token_store import TokenStore


class TokenGuard:
    """Returns a token usable for at least buffer_seconds.

    All token reads go through get_valid_token. Concurrent callers that
    race past a stale check may each trigger an exchange; the last write
    wins and any of the resulting tokens is valid.
    """

    def __init__(
        self,
        store: TokenStore,
        provider: TokenProvider,
        *,
        buffer_seconds: float = 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._provider = provider
        self._buffer_seconds = buffer_seconds
        self._clock = clock
        self._logger = get_logger()

    @property
    def buffer_seconds(self) -> float:
        """Safety window subtracted from the declared expiry."""
        return self._buffer_seconds

    def needs_refresh(self) -> bool:
        """Whether the stored token is absent or inside the buffer window."""
        state = self._store.current
        if state is None:
            return True
        return state.is_stale(self._clock(), self._buffer_seconds)

    async def get_valid_token(self) -> str:
        """Return the cached token, exchanging for a new one when stale.

        Raises:
            AuthExchangeError: If an exchange was needed and failed.
        """
        state = self._store.current
        if not self.needs_refresh():
            return state.access_token

        self._logger.debug(
            "token_refresh_required",
            reason="empty" if state is None else "stale",
        )
        return await self._provider.exchange_token()
