"""
Download Client Base
Shared contract, canonical torrent record and authentication strategies for
torrent client backends.
"""

import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional
from urllib.parse import parse_qs, urlsplit

import aiohttp

from .classifier import classify
from .config import BasicCredential, ProviderConnectionConfig
from .exceptions import InvalidTorrentError
from .logging_config import LogContext
from .models import ConnectionTestResult
from .retry import RetryHandler, RetryPolicy
from .torrent_state import CanonicalTorrentState
from .transport import HttpResponse, HttpTransport

logger = logging.getLogger(__name__)

USER_AGENT = "Braidarr/0.1.0"
DEFAULT_SESSION_TTL = 3600.0

HASH_PATTERN = re.compile(r"^[a-fA-F0-9]{40}$")


def normalize_hash(torrent_hash: str) -> str:
    return torrent_hash.strip().lower()


def is_valid_hash(torrent_hash: str) -> bool:
    return bool(HASH_PATTERN.match(torrent_hash.strip()))


def is_valid_magnet_url(url: str) -> bool:
    return url.startswith("magnet:?") and "xt=urn:btih:" in url


def parse_magnet_hash(url: str) -> Optional[str]:
    """Info hash from a magnet link, lowercased, or None."""
    if not url.startswith("magnet:"):
        return None
    for xt in parse_qs(urlsplit(url).query).get("xt", []):
        if xt.lower().startswith("urn:btih:"):
            return xt[len("urn:btih:"):].lower()
    return None


class TorrentPriority(Enum):
    """Queue position moves supported by every backend."""
    INCREASE = "increase"
    DECREASE = "decrease"
    TOP = "top"
    BOTTOM = "bottom"


@dataclass
class Torrent:
    """A torrent as seen by callers. ``state`` is always canonical."""
    hash: str
    name: str
    state: CanonicalTorrentState
    native_state: Optional[str] = None
    size: int = 0
    progress: float = 0.0
    download_speed: int = 0
    upload_speed: int = 0
    eta: Optional[int] = None
    ratio: float = 0.0
    category: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    save_path: Optional[str] = None
    content_path: Optional[str] = None
    added_on: Optional[int] = None
    completed_on: Optional[int] = None
    seeders: int = 0
    leechers: int = 0
    downloaded: int = 0
    uploaded: int = 0
    priority: Optional[int] = None
    tracker: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.progress >= 1.0

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.__dict__)
        data["state"] = self.state.value
        return data


@dataclass
class TorrentFilter:
    """
    Listing filter.

    ``native_filter`` is passed to the backend as-is. ``states`` is applied
    after normalization and works the same for every backend.
    """
    states: Optional[List[CanonicalTorrentState]] = None
    native_filter: Optional[str] = None
    category: Optional[str] = None
    tag: Optional[str] = None
    hashes: Optional[List[str]] = None
    sort: Optional[str] = None
    reverse: bool = False
    limit: Optional[int] = None
    offset: Optional[int] = None

    def matches(self, torrent: Torrent) -> bool:
        if self.states and torrent.state not in self.states:
            return False
        return True


@dataclass
class AddTorrentOptions:
    """What to add and how. Needs at least one URL or torrent file."""
    urls: List[str] = field(default_factory=list)
    torrent_files: List[bytes] = field(default_factory=list)
    save_path: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    paused: Optional[bool] = None
    skip_checking: Optional[bool] = None
    root_folder: Optional[bool] = None
    rename: Optional[str] = None
    upload_limit: Optional[int] = None
    download_limit: Optional[int] = None
    ratio_limit: Optional[float] = None
    seeding_time_limit: Optional[int] = None
    auto_tmm: Optional[bool] = None
    sequential_download: Optional[bool] = None
    first_last_piece_priority: Optional[bool] = None

    def validate(self) -> None:
        if not self.urls and not self.torrent_files:
            raise InvalidTorrentError("Nothing to add", "provide at least one URL or torrent file")
        for url in self.urls:
            if url.startswith("magnet:") and not is_valid_magnet_url(url):
                raise InvalidTorrentError("Invalid magnet link", url[:60])


class AuthStrategy:
    """How a backend authenticates its requests."""

    async def ensure(self) -> None:
        """Make sure credentials are ready before a request."""

    def headers(self) -> Dict[str, str]:
        return {}

    def on_response_error(self, status: int) -> None:
        """React to a failed response."""


class NoAuth(AuthStrategy):
    """Nothing to negotiate; HTTP basic credentials, if any, ride on the transport."""


class SessionCookieAuth(AuthStrategy):
    """
    Login once, replay the session cookie until it expires or is rejected.

    Re-login is lazy: a stale or missing cookie is refreshed by the next
    request. Concurrent refreshes are allowed and the last one wins, since
    cookie and login time are replaced together without awaiting in between.
    """

    def __init__(
        self,
        login: Callable[[], Awaitable[str]],
        ttl: float = DEFAULT_SESSION_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._login = login
        self.ttl = ttl
        self._clock = clock
        self.cookie: Optional[str] = None
        self.login_time: float = 0.0

    @property
    def is_valid(self) -> bool:
        return self.cookie is not None and (self._clock() - self.login_time) <= self.ttl

    async def ensure(self) -> None:
        if self.is_valid:
            return
        cookie = await self._login()
        self.cookie, self.login_time = cookie, self._clock()

    def headers(self) -> Dict[str, str]:
        return {"Cookie": self.cookie} if self.cookie else {}

    def invalidate(self) -> None:
        self.cookie = None
        self.login_time = 0.0

    def on_response_error(self, status: int) -> None:
        if status == 403:
            logger.info("Session cookie rejected, will log in again on next request")
            self.invalidate()


def parse_session_cookie(set_cookie_values: List[str]) -> Optional[str]:
    """Keep each Set-Cookie value up to its first ';' and join them for replay."""
    parts = [value.split(";", 1)[0].strip() for value in set_cookie_values if value]
    parts = [part for part in parts if part]
    return "; ".join(parts) if parts else None


class DownloadClient(ABC):
    """
    Base class for torrent client backends.

    Requests go through the retry handler with the backend's auth strategy
    applied. Listings come back as canonical Torrent records.
    """

    backend = "generic"
    client_name = "Download client"

    def __init__(
        self,
        config: ProviderConnectionConfig,
        retry_handler: Optional[RetryHandler] = None,
        default_policy: Optional[RetryPolicy] = None,
        auth: Optional[AuthStrategy] = None,
        transport_auth: Optional[aiohttp.BasicAuth] = None,
    ):
        self.config = config
        self.retry_handler = retry_handler or RetryHandler(
            config.effective_retry_policy(default_policy)
        )
        self.transport = HttpTransport(
            config.base_url,
            timeout=config.timeout,
            headers={"User-Agent": USER_AGENT},
            verify_ssl=config.verify_ssl,
            auth=transport_auth,
        )
        self.auth = auth or NoAuth()

    @property
    def username(self) -> str:
        if isinstance(self.config.credential, BasicCredential):
            return self.config.credential.username
        return ""

    @property
    def password(self) -> str:
        if isinstance(self.config.credential, BasicCredential):
            return self.config.credential.password
        return ""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def close(self):
        await self.transport.close()

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        data: Any = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> HttpResponse:
        """One authenticated request, without retry."""
        await self.auth.ensure()
        merged = dict(headers or {})
        merged.update(self.auth.headers())
        try:
            return await self.transport.request(
                method, path, params=params, data=data, json=json, headers=merged
            )
        except aiohttp.ClientResponseError as e:
            self.auth.on_response_error(e.status)
            raise

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        data: Any = None,
        json: Any = None,
    ) -> HttpResponse:
        """Send through the retry handler."""

        async def call():
            return await self._send(method, path, params=params, data=data, json=json)

        with LogContext(provider=self.backend, instance=self.config.name):
            return await self.retry_handler.execute(
                call, operation_id=f"{self.backend} {method} {path}"
            )

    async def test_connection(self) -> ConnectionTestResult:
        """Check the client answers. Never raises."""
        try:
            return await self._probe()
        except Exception as e:
            error = classify(e)
            logger.warning(f"{self.client_name} connection test failed ({error.kind.value}): {error.message}")
            return ConnectionTestResult.failure(error.message)

    @abstractmethod
    async def _probe(self) -> ConnectionTestResult:
        """Fetch version details from the backend; may raise."""

    def get_client_info(self) -> Dict[str, str]:
        return {"name": self.client_name, "base_url": self.config.base_url}

    def is_configured(self) -> bool:
        return bool(self.config.base_url)

    def _check_hashes(self, hashes: List[str]) -> List[str]:
        invalid = [h for h in hashes if not is_valid_hash(h)]
        if invalid:
            raise InvalidTorrentError("Invalid torrent hash format", invalid[0])
        return [normalize_hash(h) for h in hashes]

    # Contract

    @abstractmethod
    async def get_torrents(self, torrent_filter: Optional[TorrentFilter] = None) -> List[Torrent]:
        """Torrents matching the filter, states already normalized."""

    async def get_torrent(self, torrent_hash: str) -> Optional[Torrent]:
        """One torrent by hash, or None when the client does not have it."""
        (normalized,) = self._check_hashes([torrent_hash])
        torrents = await self.get_torrents(TorrentFilter(hashes=[normalized]))
        for torrent in torrents:
            if torrent.hash.lower() == normalized:
                return torrent
        return None

    @abstractmethod
    async def add_torrent(self, options: AddTorrentOptions) -> None:
        """Add torrents by URL, magnet or file."""

    @abstractmethod
    async def delete_torrents(self, hashes: List[str], delete_files: bool = False) -> None:
        """Remove torrents, optionally with their data."""

    @abstractmethod
    async def pause_torrents(self, hashes: List[str]) -> None:
        """Pause torrents."""

    @abstractmethod
    async def resume_torrents(self, hashes: List[str]) -> None:
        """Resume torrents."""

    @abstractmethod
    async def recheck_torrents(self, hashes: List[str]) -> None:
        """Force a hash recheck."""

    @abstractmethod
    async def set_priority(self, hashes: List[str], priority: TorrentPriority) -> None:
        """Move torrents within the download queue."""

    @abstractmethod
    async def get_categories(self) -> Dict[str, Dict[str, Any]]:
        """Categories keyed by name."""

    @abstractmethod
    async def create_category(self, name: str, save_path: str = "") -> None:
        """Create a category."""

    @abstractmethod
    async def delete_categories(self, names: List[str]) -> None:
        """Delete categories."""

    @abstractmethod
    async def get_tags(self) -> List[str]:
        """All known tags."""

    @abstractmethod
    async def create_tags(self, tags: List[str]) -> None:
        """Create tags."""

    @abstractmethod
    async def delete_tags(self, tags: List[str]) -> None:
        """Delete tags."""
