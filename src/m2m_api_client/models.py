"""Pydantic models for the M2M API client.

Frozen models keep token state and outbound request descriptors immutable;
every change produces a new instance.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Annotated, Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Ten years; anything longer is treated as a malformed token response.
MAX_TOKEN_LIFETIME = 10 * 365 * 24 * 3600


def utcnow() -> datetime:
    """Default clock."""
    return datetime.now(UTC)


class TokenResponse(BaseModel):
    """Token endpoint response body."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str = Field(..., min_length=1)
    expires_in: Annotated[float, Field(gt=0, le=MAX_TOKEN_LIFETIME, allow_inf_nan=False)]
    token_type: str = Field(default="Bearer")
    scope: str | None = None


class TokenState(BaseModel):
    """Cached access token with its absolute expiry instant."""

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., min_length=1)
    expires_at: datetime

    @classmethod
    def from_response(cls, response: TokenResponse, *, now: datetime) -> Self:
        """Create TokenState with expires_at = issuance instant + lifetime."""
        return cls(
            access_token=response.access_token,
            expires_at=now + timedelta(seconds=response.expires_in),
        )

    def is_stale(self, now: datetime, buffer_seconds: float = 0) -> bool:
        """Check if token is expired or within buffer_seconds of expiry."""
        return now >= self.expires_at - timedelta(seconds=buffer_seconds)

    def time_until_expiry(self, now: datetime) -> timedelta:
        """Get time remaining until token expires."""
        return self.expires_at - now


class RequestDescriptor(BaseModel):
    """Immutable outbound request plus its auth retry attempt number.

    attempt is 0 for the original send and 1 for the single retry made
    after a 401.
    """

    model_config = ConfigDict(frozen=True)

    method: str
    path: str
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, Any] | None = None
    json_body: Any = None
    attempt: Annotated[int, Field(ge=0)] = 0

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        """Upper-case HTTP method."""
        return v.upper()

    @property
    def is_retry(self) -> bool:
        """Whether this descriptor is the auth retry of a logical call."""
        return self.attempt > 0

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def with_headers(self, headers: Mapping[str, str]) -> Self:
        """Return a copy with headers merged in, replacing same-named keys."""
        incoming = {key.lower() for key in headers}
        merged = {k: v for k, v in self.headers.items() if k.lower() not in incoming}
        merged.update(headers)
        return self.model_copy(update={"headers": merged})

    def next_attempt(self) -> Self:
        """Return a copy marked as the next attempt."""
        return self.model_copy(update={"attempt": self.attempt + 1})
