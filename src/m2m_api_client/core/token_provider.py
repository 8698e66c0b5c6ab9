"""OAuth2 client-credentials token exchange.

Performs exactly one POST to the token endpoint per call and writes the
result to the token store only on success.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from ..errors import AuthExchangeError, ErrorCode
from ..models import TokenResponse, TokenState, utcnow
from ..telemetry import get_logger, trace_operation
from .errors import ErrorFactory

if TYPE_CHECKING:
    from ..config import ClientConfig
    from .token_store import TokenStore


class TokenProvider:
    """Exchanges client credentials for an access token."""

    def __init__(
        self,
        config: ClientConfig,
        store: TokenStore,
        http_client: httpx.AsyncClient,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize token provider.

        Args:
            config: Client configuration holding the credentials.
            store: Token store written on successful exchange.
            http_client: HTTP client used for the token endpoint.
            clock: Source of the issuance instant.
        """
        self._config = config
        self._store = store
        self._http = http_client
        self._clock = clock
        self._exchange_count = 0
        self._logger = get_logger()

    @property
    def exchange_count(self) -> int:
        """Number of exchanges attempted so far."""
        return self._exchange_count

    def build_form(self) -> dict[str, str]:
        """Build form-encoded exchange body."""
        return {
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret.get_secret_value(),
            "grant_type": self._config.grant_type,
        }

    async def exchange_token(self) -> str:
        """Exchange credentials for a new access token.

        Returns:
            The new access token.

        Raises:
            AuthExchangeError: On transport failure, non-2xx status or a
                malformed response body. The token store is left untouched.
        """
        self._exchange_count += 1
        correlation_id = ErrorFactory.generate_correlation_id()

        with trace_operation(
            "token_exchange",
            attributes={"grant_type": self._config.grant_type},
        ):
            try:
                response = await self._http.post(
                    self._config.auth_url_str,
                    data=self.build_form(),
                    headers={
                        "Content-Type": "application/x-www-form-urlencoded",
                        "Accept": "application/json",
                    },
                )
            except httpx.HTTPError as e:
                self._logger.warning(
                    "token_exchange_unreachable",
                    error=str(e),
                    correlation_id=correlation_id,
                )
                raise AuthExchangeError(
                    f"Failed to reach token endpoint: {e}",
                    correlation_id=correlation_id,
                    cause=e,
                ) from e

            if not response.is_success:
                error = ErrorFactory.from_token_response(
                    response, correlation_id=correlation_id
                )
                self._logger.warning(
                    "token_exchange_rejected",
                    status_code=response.status_code,
                    correlation_id=correlation_id,
                )
                raise error

            try:
                token_response = TokenResponse.model_validate(response.json())
                state = TokenState.from_response(token_response, now=self._clock())
            except (ValueError, ValidationError, OverflowError) as e:
                raise AuthExchangeError(
                    "Token endpoint returned a malformed body",
                    code=ErrorCode.TOKEN_RESPONSE_INVALID,
                    status_code=response.status_code,
                    correlation_id=correlation_id,
                    cause=e,
                ) from e

        self._store.update(state)
        self._logger.info(
            "token_exchange_succeeded",
            expires_in=token_response.expires_in,
            expires_at=state.expires_at.isoformat(),
        )
        return state.access_token
