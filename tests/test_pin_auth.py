"""
Tests for the Plex PIN session manager (braidarr/pin_auth.py)
"""

import asyncio
import itertools
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiohttp import test_utils, web

from braidarr.exceptions import (
    ClassifiedError,
    ErrorKind,
    NotAuthenticatedError,
    PinAttemptsExceededError,
    PinSessionError,
    PinSessionExpiredError,
    PinSessionNotFoundError,
)
from braidarr.models import ConnectionTestResult
from braidarr.pin_auth import PinAuthSession, PinAuthSessionManager, PinSessionStore
from braidarr.plex_client import PinAuthState, PinStatus, PlexClient
from braidarr.retry import RetryHandler, RetryPolicy
from braidarr.transport import HttpTransport


_ids = itertools.count(1)


def fake_plex_client():
    """A PlexClient stand-in with a fresh identifier and pending PIN."""
    n = next(_ids)
    client = MagicMock()
    client.client_identifier = f"client-{n}"
    client.request_pin = AsyncMock(return_value=PinAuthState(
        pin_id=100 + n, pin_code=f"CODE{n}", client_identifier=f"client-{n}",
    ))
    client.check_pin = AsyncMock(return_value=PinStatus(authenticated=False))
    client.get_current_user = AsyncMock(return_value={"username": "alice"})
    client.get_servers = AsyncMock(return_value=[{"name": "Home"}])
    client.get_libraries = AsyncMock(return_value=[{"title": "Movies"}])
    client.test_server_connection = AsyncMock(return_value=ConnectionTestResult(connected=True))
    client.close = AsyncMock()
    return client


@pytest.fixture
def manager(clock):
    return PinAuthSessionManager(client_factory=fake_plex_client, clock=clock)


def _client_of(manager, state):
    return manager.store.get(state.client_identifier).client


class TestPinSessionStore:
    """Compare-and-delete store."""

    def _session(self, key="k"):
        return PinAuthSession(pin_id=1, pin_code="C", client_identifier=key, created_at=0.0, client=MagicMock())

    def test_add_and_get(self):
        store = PinSessionStore()
        session = self._session()
        store.add(session)
        assert store.get("k") is session
        assert "k" in store
        assert len(store) == 1

    def test_duplicate_rejected(self):
        store = PinSessionStore()
        store.add(self._session())
        with pytest.raises(PinSessionError):
            store.add(self._session())

    def test_remove_expected_only(self):
        store = PinSessionStore()
        current = self._session()
        store.add(current)
        assert store.remove("k", expected=self._session()) is None
        assert store.remove("k", expected=current) is current
        assert store.remove("k") is None


class TestInitiate:
    """Starting a handshake."""

    @pytest.mark.asyncio
    async def test_initiate_stores_session(self, manager):
        state = await manager.initiate()

        session = manager.store.get(state.client_identifier)
        assert session.attempts == 0
        assert session.pin_id == state.pin_id
        assert manager.active_session_count == 1

    @pytest.mark.asyncio
    async def test_each_session_has_own_client(self, manager):
        first = await manager.initiate()
        second = await manager.initiate()

        assert first.client_identifier != second.client_identifier
        assert _client_of(manager, first) is not _client_of(manager, second)

    @pytest.mark.asyncio
    async def test_failed_request_closes_client(self, clock):
        client = fake_plex_client()
        client.request_pin.side_effect = ClassifiedError(ErrorKind.NETWORK, "down")
        manager = PinAuthSessionManager(client_factory=lambda: client, clock=clock)

        with pytest.raises(ClassifiedError):
            await manager.initiate()

        client.close.assert_awaited_once()
        assert manager.active_session_count == 0


class TestPoll:
    """Polling a pending session."""

    @pytest.mark.asyncio
    async def test_unknown_session(self, manager):
        with pytest.raises(PinSessionNotFoundError) as exc_info:
            await manager.poll("nope", 1)
        assert exc_info.value.message == "Invalid or expired authentication session"

    @pytest.mark.asyncio
    async def test_pending(self, manager):
        state = await manager.initiate()

        result = await manager.poll(state.client_identifier, state.pin_id)

        assert result.authenticated is False
        assert result.error is None
        assert manager.store.get(state.client_identifier).attempts == 1

    @pytest.mark.asyncio
    async def test_success_is_single_use(self, manager):
        state = await manager.initiate()
        client = _client_of(manager, state)
        client.check_pin.return_value = PinStatus(authenticated=True, auth_token="tok")

        result = await manager.poll(state.client_identifier, state.pin_id)

        assert result.authenticated is True
        assert result.token == "tok"
        assert result.user == {"username": "alice"}
        client.close.assert_awaited_once()
        with pytest.raises(PinSessionNotFoundError):
            await manager.poll(state.client_identifier, state.pin_id)

    @pytest.mark.asyncio
    async def test_attempt_limit(self, clock):
        """Poll 301 fails and deletes the session."""
        manager = PinAuthSessionManager(client_factory=fake_plex_client, clock=clock)
        state = await manager.initiate()

        for _ in range(300):
            result = await manager.poll(state.client_identifier, state.pin_id)
            assert result.authenticated is False

        with pytest.raises(PinAttemptsExceededError) as exc_info:
            await manager.poll(state.client_identifier, state.pin_id)
        assert exc_info.value.attempts == 301

        with pytest.raises(PinSessionNotFoundError):
            await manager.poll(state.client_identifier, state.pin_id)

    @pytest.mark.asyncio
    async def test_ttl(self, manager, clock):
        state = await manager.initiate()
        clock.advance(601)

        with pytest.raises(PinSessionExpiredError):
            await manager.poll(state.client_identifier, state.pin_id)

        assert manager.active_session_count == 0

    @pytest.mark.asyncio
    async def test_within_ttl(self, manager, clock):
        state = await manager.initiate()
        clock.advance(600)

        result = await manager.poll(state.client_identifier, state.pin_id)

        assert result.authenticated is False

    @pytest.mark.asyncio
    async def test_provider_error_keeps_session(self, manager):
        state = await manager.initiate()
        _client_of(manager, state).check_pin.side_effect = ClassifiedError(
            ErrorKind.SERVER_ERROR, "Service error, try again later.", http_status=503
        )

        result = await manager.poll(state.client_identifier, state.pin_id)

        assert result.authenticated is False
        assert result.error == "Service error, try again later."
        assert manager.active_session_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_polls_serialized(self, manager):
        """Parallel polls on one session never lose an attempt."""
        state = await manager.initiate()

        await asyncio.gather(*(manager.poll(state.client_identifier, state.pin_id) for _ in range(10)))

        assert manager.store.get(state.client_identifier).attempts == 10

    @pytest.mark.asyncio
    async def test_sessions_are_independent(self, manager):
        first = await manager.initiate()
        second = await manager.initiate()
        _client_of(manager, first).check_pin.return_value = PinStatus(authenticated=True, auth_token="t1")

        assert (await manager.poll(first.client_identifier, first.pin_id)).authenticated
        assert not (await manager.poll(second.client_identifier, second.pin_id)).authenticated
        assert manager.active_session_count == 1

    @pytest.mark.asyncio
    async def test_cancel_during_poll_wins(self, manager):
        """A session cancelled while the provider call is in flight does not hand out a token."""
        state = await manager.initiate()
        client = _client_of(manager, state)

        async def approve_after_cancel(pin_id):
            await manager.cancel(state.client_identifier)
            return PinStatus(authenticated=True, auth_token="tok")

        client.check_pin.side_effect = approve_after_cancel

        with pytest.raises(PinSessionNotFoundError):
            await manager.poll(state.client_identifier, state.pin_id)
        client.close.assert_awaited_once()


class TestCancel:
    """Cancelling a session."""

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, manager):
        state = await manager.initiate()
        client = _client_of(manager, state)

        assert await manager.cancel(state.client_identifier) is True
        assert await manager.cancel(state.client_identifier) is False
        client.close.assert_awaited_once()

        with pytest.raises(PinSessionNotFoundError):
            await manager.poll(state.client_identifier, state.pin_id)

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, manager):
        assert await manager.cancel("never-existed") is False


class TestSweep:
    """Background expiry."""

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self, manager, clock):
        old = await manager.initiate()
        clock.advance(500)
        fresh = await manager.initiate()
        clock.advance(200)

        removed = await manager.sweep_expired()

        assert removed == 1
        assert old.client_identifier not in manager.store
        assert fresh.client_identifier in manager.store

    @pytest.mark.asyncio
    async def test_start_and_stop(self, manager, clock):
        state = await manager.initiate()
        clock.advance(700)
        manager.sweep_interval = 0.01

        manager.start()
        manager.start()
        assert manager.is_running
        for _ in range(50):
            if manager.active_session_count == 0:
                break
            await asyncio.sleep(0.01)

        assert state.client_identifier not in manager.store
        await manager.stop()
        assert not manager.is_running

    @pytest.mark.asyncio
    async def test_sweep_loop_survives_errors(self, manager):
        manager.sweep_interval = 0.01
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return 0

        with patch.object(manager, "sweep_expired", side_effect=flaky):
            manager.start()
            for _ in range(50):
                if len(calls) >= 2:
                    break
                await asyncio.sleep(0.01)
            await manager.stop()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_stop_closes_pending_sessions(self, manager):
        state = await manager.initiate()
        client = _client_of(manager, state)

        await manager.stop()

        client.close.assert_awaited_once()
        assert manager.active_session_count == 0


class TestTokenHelpers:
    """Token validation and server helpers."""

    @pytest.mark.asyncio
    async def test_validate_token(self, manager):
        validation = await manager.validate_token("tok")
        assert validation.valid is True
        assert validation.user == {"username": "alice"}

    @pytest.mark.asyncio
    async def test_validate_token_rejected(self, clock):
        client = fake_plex_client()
        client.get_current_user.side_effect = ClassifiedError(ErrorKind.AUTH_FAILED, "no", http_status=401)
        manager = PinAuthSessionManager(client_factory=lambda: client, clock=clock)

        validation = await manager.validate_token("bad")

        assert validation.valid is False
        client.set_auth_token.assert_called_once_with("bad")
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_validate_token_without_token(self, clock):
        client = fake_plex_client()
        client.get_current_user.side_effect = NotAuthenticatedError("No authentication token available")
        manager = PinAuthSessionManager(client_factory=lambda: client, clock=clock)

        assert (await manager.validate_token("")).valid is False

    @pytest.mark.asyncio
    async def test_server_helpers(self, manager):
        assert await manager.get_servers("tok") == [{"name": "Home"}]
        assert await manager.get_server_libraries("http://s:32400", "st") == [{"title": "Movies"}]
        assert (await manager.test_server_connection("http://s:32400", "st")).connected

    def test_from_settings(self):
        from braidarr.config import Settings

        settings = Settings(_env_file=None, pin_max_attempts=5, pin_session_ttl=30.0, plex_product="Test")
        manager = PinAuthSessionManager.from_settings(settings)

        assert manager.max_attempts == 5
        assert manager.session_ttl == 30.0
        assert manager.identity.product == "Test"


class FakePlexServer:
    """Local plex.tv stand-in whose PIN check blocks until released."""

    def __init__(self):
        self.check_hits = 0
        self.check_started = asyncio.Event()
        self.release = asyncio.Event()
        app = web.Application()
        app.router.add_post("/api/v2/pins", self.create_pin)
        app.router.add_get("/api/v2/pins/{pin_id}", self.check_pin)
        self.server = test_utils.TestServer(app)

    async def create_pin(self, request):
        return web.json_response({"id": 5, "code": "ABCD"})

    async def check_pin(self, request):
        self.check_hits += 1
        self.check_started.set()
        await self.release.wait()
        return web.json_response({"id": 5, "authToken": "tok"})

    def client_factory(self):
        client = PlexClient(retry_handler=RetryHandler(RetryPolicy(max_retries=2, jitter=False)))
        client.transport = HttpTransport(str(self.server.make_url("/")), headers=client.transport.headers)
        return client


@pytest.fixture
async def plex_server():
    fake = FakePlexServer()
    await fake.server.start_server()
    try:
        yield fake
    finally:
        fake.release.set()
        await fake.server.close()


class TestClientLifecycle:
    """Session clients over a real HTTP transport."""

    @pytest.mark.asyncio
    async def test_cancel_during_poll_leaves_client_to_poll(self, plex_server, clock):
        manager = PinAuthSessionManager(client_factory=plex_server.client_factory, clock=clock)
        state = await manager.initiate()
        client = manager.store.get(state.client_identifier).client

        poll_task = asyncio.create_task(manager.poll(state.client_identifier, state.pin_id))
        await asyncio.wait_for(plex_server.check_started.wait(), timeout=2.0)

        assert await manager.cancel(state.client_identifier) is True
        assert not client.transport.is_closed

        plex_server.release.set()
        with pytest.raises(PinSessionNotFoundError):
            await asyncio.wait_for(poll_task, timeout=2.0)

        assert plex_server.check_hits == 1
        assert client.transport.is_closed
        assert client.transport._session is None

    @pytest.mark.asyncio
    async def test_cancel_when_idle_closes_client(self, plex_server, clock):
        manager = PinAuthSessionManager(client_factory=plex_server.client_factory, clock=clock)
        state = await manager.initiate()
        client = manager.store.get(state.client_identifier).client

        await manager.cancel(state.client_identifier)

        assert client.transport.is_closed
