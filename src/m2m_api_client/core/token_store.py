"""In-memory access token store.

Token and expiry live in a single frozen TokenState, so they are always
written and cleared together.
"""

from __future__ import annotations

from ..models import TokenState


class TokenStore:
    """Holds the current access token state for one credential set."""

    def __init__(self, state: TokenState | None = None) -> None:
        self._state = state

    @property
    def current(self) -> TokenState | None:
        """Get current token state, or None before the first exchange."""
        return self._state

    @property
    def is_empty(self) -> bool:
        """Whether no token has been stored yet."""
        return self._state is None

    def update(self, state: TokenState) -> None:
        """Replace stored token state."""
        self._state = state

    def reset(self) -> None:
        """Drop stored token state."""
        self._state = None


_default_store: TokenStore | None = None


def get_default_token_store() -> TokenStore:
    """Get or create the process-wide token store."""
    global _default_store
    if _default_store is None:
        _default_store = TokenStore()
    return _default_store


def reset_default_token_store() -> None:
    """Discard the process-wide token store."""
    global _default_store
    _default_store = None
