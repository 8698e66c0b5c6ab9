"""
Property-based and scenario tests for the async API client.

The client runs its real pipeline against a fake token endpoint and a
fake target service on one httpx.MockTransport.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
from hypothesis import given, settings, strategies as st

from m2m_api_client import (
    AsyncApiClient,
    AuthExchangeError,
    ConfigurationError,
    NetworkError,
    TokenState,
    TokenStore,
    UpstreamError,
    create_api_client,
    get_default_token_store,
)
from m2m_api_client.errors import ErrorCode

from ..backend_helpers import FakeBackend, make_backend, make_config, token_body

header_values = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789-", min_size=1, max_size=24)


def run_with_client(
    backend: FakeBackend,
    call: Callable[[AsyncApiClient], Awaitable[Any]],
    **kwargs: Any,
) -> Any:
    async def _run() -> Any:
        client = await create_api_client(
            make_config(),
            token_store=kwargs.pop("token_store", TokenStore()),
            transport=backend.transport,
            **kwargs,
        )
        async with client:
            return await call(client)

    return asyncio.run(_run())


def unauthorized_then(body: dict[str, Any]) -> Callable[[httpx.Request], httpx.Response]:
    """Service that answers 401 to the first request and body afterwards."""
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(401, json={"message": "token expired"})
        return httpx.Response(200, json=body)

    return handler


class TestTokenCaching:
    """One exchange serves many requests."""

    def test_warm_token_reused_across_requests(self) -> None:
        """Construction exchanges once; later requests reuse the cached token."""
        backend = make_backend("tok1", "tok2")

        async def call(client: AsyncApiClient) -> list[Any]:
            return [await client.get("/no-params") for _ in range(3)]

        results = run_with_client(backend, call)

        assert results == [{}, {}, {}]
        assert len(backend.token_requests) == 1
        assert backend.token_form() == {
            "client_id": ["ID"],
            "client_secret": ["SECRET"],
            "grant_type": ["GRANT"],
        }
        assert backend.authorizations() == ["Bearer tok1"] * 3

    def test_factory_sets_default_authorization(self) -> None:
        """The factory returns a client whose default header already holds a token."""
        backend = make_backend("tok1")

        async def call(client: AsyncApiClient) -> str:
            return client.headers["Authorization"]

        assert run_with_client(backend, call) == "Bearer tok1"
        assert backend.service_requests == []

    def test_default_headers(self) -> None:
        """Requests carry JSON content type by default."""
        backend = make_backend("tok1")

        run_with_client(backend, lambda client: client.get("/x"))

        request = backend.service_requests[0]
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["Accept"] == "application/json"

    def test_stale_token_refreshed_before_request(self) -> None:
        """A token inside the buffer window is exchanged before sending."""
        backend = make_backend("tok1", "tok2")
        store = TokenStore()

        async def call(client: AsyncApiClient) -> Any:
            store.update(
                TokenState(
                    access_token="tok1",
                    expires_at=datetime.now(UTC) + timedelta(seconds=10),
                )
            )
            return await client.get("/x")

        run_with_client(backend, call, token_store=store)

        assert len(backend.token_requests) == 2
        assert backend.authorizations() == ["Bearer tok2"]


class TestUnauthorizedRetry:
    """Refresh-and-retry after 401, bounded to one retry per call."""

    def test_401_then_success(self) -> None:
        """GET /widgets/42 answers 401, client refreshes to tok2 and gets {id: 42}."""
        backend = make_backend("tok1", "tok2")
        backend.service_handler = unauthorized_then({"id": 42})

        result = run_with_client(backend, lambda client: client.get("/widgets/42"))

        assert result == {"id": 42}
        assert len(backend.token_requests) == 2
        assert [r.url.path for r in backend.service_requests] == ["/widgets/42"] * 2
        assert backend.authorizations() == ["Bearer tok1", "Bearer tok2"]

    def test_401_twice_surfaces_second_response(self) -> None:
        """When the retry also answers 401, the caller sees the second response."""
        backend = make_backend("tok1", "tok2", "tok3")
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(401, json={"message": f"rejected #{calls['n']}"})

        backend.service_handler = handler

        with pytest.raises(UpstreamError) as exc_info:
            run_with_client(backend, lambda client: client.get("/widgets/42"))

        error = exc_info.value
        assert error.status_code == 401
        assert error.code == ErrorCode.UNAUTHORIZED
        assert error.message == "rejected #2"
        assert error.body == {"message": "rejected #2"}

    @given(token_lifetime=st.integers(min_value=1, max_value=86400))
    @settings(max_examples=10, deadline=None)
    def test_retry_bound(self, token_lifetime: int) -> None:
        """A persistent 401 yields at most two exchanges per call and one resubmission."""
        backend = FakeBackend(
            token_responses=[
                token_body("tok1", token_lifetime),
                token_body("tok2", token_lifetime),
                token_body("tok3", token_lifetime),
                token_body("tok4", token_lifetime),
            ],
            service_handler=lambda request: httpx.Response(401),
        )

        async def call(client: AsyncApiClient) -> int:
            before = len(backend.token_requests)
            with pytest.raises(UpstreamError):
                await client.get("/widgets/42")
            return len(backend.token_requests) - before

        exchanges = run_with_client(backend, call)

        assert exchanges <= 2
        assert len(backend.service_requests) == 2

    def test_short_lived_token_retry_uses_refreshed_token(self) -> None:
        """With lifetimes inside the buffer, the retry still sends the 401-refreshed token."""
        backend = FakeBackend(
            token_responses=[
                token_body("tok1", 30),
                token_body("tok2", 30),
                token_body("tok3", 30),
                token_body("tok4", 30),
            ],
            service_handler=lambda request: httpx.Response(401),
        )

        async def call(client: AsyncApiClient) -> None:
            with pytest.raises(UpstreamError):
                await client.get("/widgets/42")

        run_with_client(backend, call, custom_headers=lambda: {"X-Trace": "abc"})

        assert len(backend.token_requests) == 3
        assert backend.authorizations() == ["Bearer tok2", "Bearer tok3"]
        assert [r.headers["X-Trace"] for r in backend.service_requests] == ["abc", "abc"]

    def test_refresh_failure_propagates_exchange_error(self) -> None:
        """If the forced refresh fails, the caller sees AuthExchangeError, not the 401."""
        backend = FakeBackend(
            token_responses=[
                token_body("tok1"),
                httpx.Response(503, json={"error": "unavailable"}),
            ],
            service_handler=lambda request: httpx.Response(401),
        )

        with pytest.raises(AuthExchangeError) as exc_info:
            run_with_client(backend, lambda client: client.get("/widgets/42"))

        assert exc_info.value.status_code == 503
        assert len(backend.service_requests) == 1

    def test_retry_marker_not_shared_between_calls(self) -> None:
        """Each logical call gets its own retry."""
        backend = make_backend("tok1", "tok2", "tok3")
        responses = iter([401, 200, 401, 200])
        backend.service_handler = lambda request: httpx.Response(next(responses), json={})

        async def call(client: AsyncApiClient) -> list[Any]:
            return [await client.get("/a"), await client.get("/b")]

        assert run_with_client(backend, call) == [{}, {}]
        assert len(backend.service_requests) == 4
        assert len(backend.token_requests) == 3


class TestHeaderInjection:
    """Custom header generator behaviour through the client."""

    @given(trace=header_values)
    @settings(max_examples=25, deadline=None)
    def test_every_request_carries_bearer_and_custom_headers(self, trace: str) -> None:
        """Given a generator returning {X-Trace: v}, every request carries both headers."""
        backend = make_backend("tok1", "tok2")
        backend.service_handler = unauthorized_then({"ok": True})

        async def call(client: AsyncApiClient) -> Any:
            await client.get("/first")
            return await client.post("/second", json={"a": 1})

        run_with_client(backend, call, custom_headers=lambda: {"X-Trace": trace})

        assert len(backend.service_requests) == 3
        for request in backend.service_requests:
            assert request.headers["Authorization"].startswith("Bearer tok")
            assert request.headers["X-Trace"] == trace

    def test_generator_invoked_per_request(self) -> None:
        """The generator runs for every outbound request."""
        backend = make_backend("tok1")
        counter = {"n": 0}

        def generate() -> dict[str, str]:
            counter["n"] += 1
            return {"X-Request-ID": str(counter["n"])}

        async def call(client: AsyncApiClient) -> None:
            await client.get("/a")
            await client.get("/b")

        run_with_client(backend, call, custom_headers=generate)

        assert [r.headers["X-Request-ID"] for r in backend.service_requests] == ["1", "2"]


class TestRequestSurface:
    """Verb helpers, query, body and error propagation."""

    def test_query_params(self) -> None:
        """GET with params sends a query string."""
        backend = make_backend("tok1")

        run_with_client(backend, lambda client: client.get("/query", params={"q": "x", "n": 2}))

        assert dict(backend.service_requests[0].url.params) == {"q": "x", "n": "2"}

    @pytest.mark.parametrize("verb", ["post", "put", "patch"])
    def test_json_body(self, verb: str) -> None:
        """Body verbs send JSON."""
        backend = make_backend("tok1")
        backend.service_handler = lambda request: httpx.Response(201, json={"created": True})

        result = run_with_client(backend, lambda client: getattr(client, verb)("/body", {"a": 1}))

        request = backend.service_requests[0]
        assert request.method == verb.upper()
        assert json.loads(request.content) == {"a": 1}
        assert result == {"created": True}

    def test_delete_empty_body(self) -> None:
        """Empty responses return None."""
        backend = make_backend("tok1")
        backend.service_handler = lambda request: httpx.Response(204)

        assert run_with_client(backend, lambda client: client.delete("/params/7")) is None
        assert backend.service_requests[0].method == "DELETE"

    def test_text_body(self) -> None:
        """Non-JSON bodies come back as text."""
        backend = make_backend("tok1")
        backend.service_handler = lambda request: httpx.Response(200, text="pong")

        assert run_with_client(backend, lambda client: client.get("/ping")) == "pong"

    @pytest.mark.parametrize("status", [400, 403, 404, 409, 500, 503])
    def test_non_401_errors_pass_through(self, status: int) -> None:
        """Non-401 failures raise UpstreamError without a refresh."""
        backend = make_backend("tok1", "tok2")
        backend.service_handler = lambda request: httpx.Response(status, json={"message": "nope"})

        with pytest.raises(UpstreamError) as exc_info:
            run_with_client(backend, lambda client: client.get("/x"))

        assert exc_info.value.status_code == status
        assert exc_info.value.message == "nope"
        assert len(backend.token_requests) == 1
        assert len(backend.service_requests) == 1

    def test_transport_failure(self) -> None:
        """Transport failures raise NetworkError."""
        backend = make_backend("tok1")

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        backend.service_handler = handler

        with pytest.raises(NetworkError):
            run_with_client(backend, lambda client: client.get("/x"))


class TestFactory:
    """Async factory lifecycle."""

    def test_missing_secret_fails_before_network(
        self,
        env_vars: dict[str, str],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Missing CLIENT_SECRET raises ConfigurationError and makes no request."""
        monkeypatch.delenv("CLIENT_SECRET")
        backend = make_backend("tok1")

        with pytest.raises(ConfigurationError) as exc_info:
            asyncio.run(create_api_client(transport=backend.transport))

        assert exc_info.value.field == "client_secret"
        assert backend.token_requests == []
        assert backend.service_requests == []

    def test_loads_config_from_env(
        self,
        env_vars: dict[str, str],
        fresh_default_store: None,
    ) -> None:
        """Without a config the factory reads the environment."""
        backend = make_backend("tok1")

        async def _run() -> AsyncApiClient:
            client = await create_api_client(transport=backend.transport)
            await client.close()
            return client

        client = asyncio.run(_run())

        assert client.config.client_id == "ID"
        assert len(backend.token_requests) == 1

    def test_uses_process_wide_store_by_default(self, fresh_default_store: None) -> None:
        """Two factory clients share the default store and one exchange."""
        backend = make_backend("tok1", "tok2")

        async def _run() -> tuple[AsyncApiClient, AsyncApiClient]:
            first = await create_api_client(make_config(), transport=backend.transport)
            second = await create_api_client(make_config(), transport=backend.transport)
            await first.close()
            await second.close()
            return first, second

        first, second = asyncio.run(_run())

        assert first.token_store is second.token_store is get_default_token_store()
        assert len(backend.token_requests) == 1

    def test_warm_up_failure_propagates(self) -> None:
        """A failed initial exchange raises AuthExchangeError from the factory."""
        backend = FakeBackend(token_responses=[httpx.Response(401, json={"error": "invalid_client"})])

        with pytest.raises(AuthExchangeError) as exc_info:
            asyncio.run(
                create_api_client(make_config(), token_store=TokenStore(), transport=backend.transport)
            )

        assert exc_info.value.status_code == 401

    def test_context_manager_closes_clients(self) -> None:
        """Leaving the context closes both HTTP clients."""
        backend = make_backend("tok1")

        async def _run() -> AsyncApiClient:
            async with AsyncApiClient(make_config(), transport=backend.transport) as client:
                pass
            return client

        client = asyncio.run(_run())

        assert client._http.is_closed
        assert client._auth_http.is_closed

    def test_private_store_when_constructed_directly(self) -> None:
        """Direct construction gets its own empty store."""
        client = AsyncApiClient(make_config())

        assert client.token_store is not get_default_token_store()
        assert client.token_store.is_empty
        assert client.token_guard.buffer_seconds == 60
        asyncio.run(client.close())


class RecordingStore(TokenStore):
    """Token store that keeps every state written to it."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[TokenState] = []

    def update(self, state: TokenState) -> None:
        self.writes.append(state)
        super().update(state)


class TestConcurrentCalls:
    """Overlapping logical calls on one client."""

    @given(callers=st.integers(min_value=2, max_value=8), stale=st.booleans())
    @settings(max_examples=25, deadline=None)
    def test_overlapping_calls_on_stale_store(self, callers: int, stale: bool) -> None:
        """Racing calls each send an issued token and exchange at most once apiece."""
        issued = [f"tok{i}" for i in range(1, callers + 1)]
        backend = FakeBackend(
            token_responses=[token_body(token, 3600 + i) for i, token in enumerate(issued)],
            yield_on_token=True,
        )
        store = RecordingStore()
        if stale:
            store.update(
                TokenState(
                    access_token="old",
                    expires_at=datetime.now(UTC) + timedelta(seconds=5),
                )
            )

        async def _run() -> list[Any]:
            async with AsyncApiClient(
                make_config(), token_store=store, transport=backend.transport
            ) as client:
                return await asyncio.gather(
                    *(client.get(f"/items/{i}") for i in range(callers))
                )

        results = asyncio.run(_run())

        exchanges = len(backend.token_requests)
        assert results == [{}] * callers
        assert 1 <= exchanges <= callers
        assert len(backend.service_requests) == callers
        assert set(backend.authorizations()) <= {f"Bearer {t}" for t in issued[:exchanges]}

        exchange_writes = [s for s in store.writes if s.access_token != "old"]
        assert len(exchange_writes) == exchanges
        assert store.current is store.writes[-1]
        assert store.current.access_token in issued[:exchanges]

    def test_overlapping_calls_on_fresh_store(self) -> None:
        """Racing calls after warm-up share the cached token without exchanging."""
        backend = make_backend("tok1", "tok2")
        backend.yield_on_token = True

        async def call(client: AsyncApiClient) -> list[Any]:
            return await asyncio.gather(*(client.get(f"/items/{i}") for i in range(5)))

        assert run_with_client(backend, call) == [{}] * 5
        assert len(backend.token_requests) == 1
        assert backend.authorizations() == ["Bearer tok1"] * 5
