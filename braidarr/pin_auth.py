"""
Plex PIN Sign-in Sessions
Tracks pending PIN handshakes per client identifier, enforces the attempt
and age limits, and sweeps abandoned sessions in the background.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .exceptions import (
    ClassifiedError,
    NotAuthenticatedError,
    PinAttemptsExceededError,
    PinSessionError,
    PinSessionExpiredError,
    PinSessionNotFoundError,
)
from .logging_config import LogContext
from .plex_client import PinAuthState, PlexClient, PlexIdentity

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 300
SESSION_TTL = 600.0
SWEEP_INTERVAL = 60.0


@dataclass
class PinAuthSession:
    """One pending handshake and the client bound to it."""
    pin_id: int
    pin_code: str
    client_identifier: str
    created_at: float
    client: PlexClient
    last_checked_at: Optional[float] = None
    attempts: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def age(self, now: float) -> float:
        return now - self.created_at


@dataclass
class PinPollResult:
    """Outcome of one poll. ``error`` is set when the provider call failed but the session lives on."""
    authenticated: bool
    token: Optional[str] = None
    user: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"authenticated": self.authenticated}
        if self.token is not None:
            result["token"] = self.token
        if self.user is not None:
            result["user"] = self.user
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class TokenValidation:
    valid: bool
    user: Optional[Dict[str, Any]] = None


class PinSessionStore:
    """
    Sessions keyed by client identifier.

    Removal can be made conditional on the stored object being a specific
    session, so whoever removes first wins and nobody deletes a successor.
    """

    def __init__(self):
        self._sessions: Dict[str, PinAuthSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, client_identifier: str) -> bool:
        return client_identifier in self._sessions

    def get(self, client_identifier: str) -> Optional[PinAuthSession]:
        return self._sessions.get(client_identifier)

    def add(self, session: PinAuthSession) -> None:
        if session.client_identifier in self._sessions:
            raise PinSessionError("Authentication session already exists", session.client_identifier)
        self._sessions[session.client_identifier] = session

    def remove(self, client_identifier: str, expected: Optional[PinAuthSession] = None) -> Optional[PinAuthSession]:
        """Delete and return the session, or None if absent or replaced."""
        current = self._sessions.get(client_identifier)
        if current is None or (expected is not None and current is not expected):
            return None
        del self._sessions[client_identifier]
        return current

    def sessions(self) -> List[PinAuthSession]:
        return list(self._sessions.values())


class PinAuthSessionManager:
    """
    Drives the Plex PIN handshake for many callers at once.

    Polls on the same session are serialized by the session's lock. Removal
    is atomic per key, so a poll that authenticates and a sweep that expires
    the same session cannot both succeed.
    """

    def __init__(
        self,
        client_factory: Optional[Callable[[], PlexClient]] = None,
        store: Optional[PinSessionStore] = None,
        max_attempts: int = MAX_ATTEMPTS,
        session_ttl: float = SESSION_TTL,
        sweep_interval: float = SWEEP_INTERVAL,
        identity: Optional[PlexIdentity] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.identity = identity or PlexIdentity()
        self._client_factory = client_factory or (lambda: PlexClient(identity=self.identity))
        self.store = store if store is not None else PinSessionStore()
        self.max_attempts = max_attempts
        self.session_ttl = session_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._sweep_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "PinAuthSessionManager":
        identity = PlexIdentity(
            product=settings.plex_product,
            version=settings.plex_version,
            platform=settings.plex_platform,
            device=settings.plex_device,
        )
        return cls(
            max_attempts=settings.pin_max_attempts,
            session_ttl=settings.pin_session_ttl,
            sweep_interval=settings.pin_sweep_interval,
            identity=identity,
            **kwargs,
        )

    @property
    def active_session_count(self) -> int:
        return len(self.store)

    async def _discard(self, session: PinAuthSession) -> bool:
        """
        Remove ``session`` if it is still the live one, and release its client.

        A poll holding the session lock may still be using the client; it is
        left open for that poll to close once it sees the session is gone.
        """
        removed = self.store.remove(session.client_identifier, expected=session)
        if removed is None:
            return False
        if not removed.lock.locked():
            await removed.client.close()
        return True

    # Handshake

    async def initiate(self) -> PinAuthState:
        """Request a new PIN and start tracking it."""
        client = self._client_factory()
        try:
            state = await client.request_pin(strong=True)
        except BaseException:
            await client.close()
            raise

        session = PinAuthSession(
            pin_id=state.pin_id,
            pin_code=state.pin_code,
            client_identifier=state.client_identifier,
            created_at=self._clock(),
            client=client,
        )
        self.store.add(session)
        logger.info(f"Started Plex PIN session {state.client_identifier} (pin {state.pin_id})")
        return state

    async def poll(self, client_identifier: str, pin_id: int) -> PinPollResult:
        """
        Check whether the user has approved the PIN.

        Raises:
            PinSessionNotFoundError: no live session for this identifier
            PinAttemptsExceededError: polled more than max_attempts times
            PinSessionExpiredError: older than session_ttl
        """
        session = self.store.get(client_identifier)
        if session is None:
            raise PinSessionNotFoundError(client_identifier)

        with LogContext(client_identifier=client_identifier):
            async with session.lock:
                try:
                    return await self._poll_locked(session, client_identifier, pin_id)
                finally:
                    if self.store.get(client_identifier) is not session:
                        await session.client.close()

    async def _poll_locked(self, session: PinAuthSession, client_identifier: str, pin_id: int) -> PinPollResult:
        """One poll step; the caller holds session.lock."""
        if self.store.get(client_identifier) is not session:
            raise PinSessionNotFoundError(client_identifier)

        now = self._clock()
        session.attempts += 1
        session.last_checked_at = now

        if session.attempts > self.max_attempts:
            await self._discard(session)
            logger.info(f"PIN session {client_identifier} exceeded {self.max_attempts} attempts")
            raise PinAttemptsExceededError(client_identifier, session.attempts)

        if session.age(now) > self.session_ttl:
            await self._discard(session)
            logger.info(f"PIN session {client_identifier} expired")
            raise PinSessionExpiredError(client_identifier)

        try:
            status = await session.client.check_pin(pin_id)
            if not status.authenticated:
                return PinPollResult(authenticated=False)
            user = await session.client.get_current_user()
        except ClassifiedError as e:
            logger.warning(f"PIN check failed ({e.kind.value}): {e.message}")
            return PinPollResult(authenticated=False, error=e.message)

        # single use: only the caller that removes the session gets the token
        if not await self._discard(session):
            raise PinSessionNotFoundError(client_identifier)

        logger.info(f"PIN session {client_identifier} authenticated after {session.attempts} attempt(s)")
        return PinPollResult(authenticated=True, token=status.auth_token, user=user)

    async def cancel(self, client_identifier: str) -> bool:
        """Drop a session. Returns False when there was nothing to drop."""
        session = self.store.get(client_identifier)
        if session is None:
            return False
        cancelled = await self._discard(session)
        if cancelled:
            logger.info(f"Cancelled PIN session {client_identifier}")
        return cancelled

    # Expiry sweep

    async def sweep_expired(self) -> int:
        """Delete every session older than the TTL. Returns how many went."""
        now = self._clock()
        removed = 0
        for session in self.store.sessions():
            if session.age(now) > self.session_ttl and await self._discard(session):
                removed += 1
        if removed:
            logger.info(f"Cleaned up {removed} expired Plex PIN session(s)")
        return removed

    async def _sweep_loop(self):
        while True:
            try:
                await asyncio.sleep(self.sweep_interval)
                await self.sweep_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"PIN session sweep error: {e}")

    def start(self) -> None:
        """Start the background sweep. Calling it twice is harmless."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.debug(f"PIN session sweep started (every {self.sweep_interval:.0f}s)")

    async def stop(self) -> None:
        """Stop the sweep and drop all sessions."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        for session in self.store.sessions():
            await self._discard(session)

    @property
    def is_running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    # Token and server helpers

    async def validate_token(self, token: str) -> TokenValidation:
        client = self._client_factory()
        client.set_auth_token(token)
        try:
            user = await client.get_current_user()
        except (ClassifiedError, NotAuthenticatedError) as e:
            logger.debug(f"Plex token rejected: {e}")
            return TokenValidation(valid=False)
        finally:
            await client.close()
        return TokenValidation(valid=True, user=user)

    async def get_servers(self, token: str) -> List[Dict[str, Any]]:
        client = self._client_factory()
        client.set_auth_token(token)
        try:
            return await client.get_servers()
        finally:
            await client.close()

    async def get_server_libraries(self, server_url: str, server_token: str) -> List[Dict[str, Any]]:
        client = self._client_factory()
        try:
            return await client.get_libraries(server_url, server_token)
        finally:
            await client.close()

    async def test_server_connection(self, server_url: str, server_token: str):
        client = self._client_factory()
        try:
            return await client.test_server_connection(server_url, server_token)
        finally:
            await client.close()
