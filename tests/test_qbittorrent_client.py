"""
Tests for the qBittorrent client (braidarr/qbittorrent_client.py)
"""

import json
from unittest.mock import AsyncMock

import aiohttp
import pytest

from braidarr.download_client import AddTorrentOptions, TorrentFilter, TorrentPriority
from braidarr.exceptions import ClassifiedError, ErrorKind, InvalidTorrentError
from braidarr.qbittorrent_client import QBittorrentClient
from braidarr.torrent_state import CanonicalTorrentState

from conftest import OTHER_HASH, TORRENT_HASH, make_http_error, make_response


def login_ok(cookie="SID=abc123; HttpOnly; path=/"):
    return make_response("Ok.", cookies=[cookie])


@pytest.fixture
def qbit(qbit_config, retry_handler, clock):
    client = QBittorrentClient(qbit_config, retry_handler=retry_handler, clock=clock)
    client.transport.request = AsyncMock()
    return client


def _paths(mock):
    return [call.args[1] for call in mock.call_args_list]


# ============================================================================
# Authentication
# ============================================================================

class TestAuthentication:
    """Session cookie lifecycle."""

    @pytest.mark.asyncio
    async def test_login_then_request(self, qbit):
        qbit.transport.request.side_effect = [login_ok(), make_response("v4.6.2")]

        version = await qbit.get_version()

        assert version == "v4.6.2"
        login_call, version_call = qbit.transport.request.call_args_list
        assert login_call.args == ("POST", "/api/v2/auth/login")
        assert login_call.kwargs["data"] == {"username": "admin", "password": "adminadmin"}
        assert login_call.kwargs["headers"] == {"Referer": "http://qbit.local:8080"}
        assert version_call.kwargs["headers"]["Cookie"] == "SID=abc123"

    @pytest.mark.asyncio
    async def test_cookie_reused_within_ttl(self, qbit, clock):
        qbit.transport.request.side_effect = [login_ok(), make_response("v4"), make_response("2.9")]

        await qbit.get_version()
        clock.advance(3599)
        await qbit.get_api_version()

        assert _paths(qbit.transport.request).count("/api/v2/auth/login") == 1

    @pytest.mark.asyncio
    async def test_expired_cookie_forces_relogin(self, qbit, clock):
        """After 3601 seconds the next request logs in again."""
        qbit.transport.request.side_effect = [
            login_ok(),
            make_response("v4"),
            login_ok("SID=fresh"),
            make_response("v4"),
        ]

        await qbit.get_version()
        clock.advance(3601)
        await qbit.get_version()

        assert _paths(qbit.transport.request).count("/api/v2/auth/login") == 2
        assert qbit.transport.request.call_args.kwargs["headers"]["Cookie"] == "SID=fresh"

    @pytest.mark.asyncio
    async def test_forbidden_discards_cookie(self, qbit, no_sleep):
        """A 403 is final for the call but the next call logs in again."""
        qbit.transport.request.side_effect = [
            login_ok(),
            make_http_error(403),
            login_ok("SID=second"),
            make_response("v4"),
        ]

        with pytest.raises(ClassifiedError) as exc_info:
            await qbit.get_version()
        assert exc_info.value.kind is ErrorKind.FORBIDDEN
        assert qbit.auth.cookie is None

        assert await qbit.get_version() == "v4"
        assert _paths(qbit.transport.request).count("/api/v2/auth/login") == 2

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, qbit, no_sleep):
        qbit.transport.request.return_value = make_response("Fails.")

        with pytest.raises(ClassifiedError) as exc_info:
            await qbit.get_version()

        assert exc_info.value.kind is ErrorKind.AUTH_FAILED
        assert qbit.transport.request.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_cookie(self, qbit, no_sleep):
        qbit.transport.request.return_value = make_response("Ok.")

        with pytest.raises(ClassifiedError) as exc_info:
            await qbit.get_version()

        assert exc_info.value.kind is ErrorKind.AUTH_FAILED


# ============================================================================
# Connection test
# ============================================================================

class TestConnectionTest:
    """test_connection never raises."""

    @pytest.mark.asyncio
    async def test_success(self, qbit):
        qbit.transport.request.side_effect = [login_ok(), make_response("v4.6.2"), make_response("2.9.3")]

        result = await qbit.test_connection()

        assert result.connected is True
        assert result.version == "v4.6.2"
        assert result.details == {"api_version": "2.9.3", "client": "qBittorrent"}

    @pytest.mark.asyncio
    async def test_unreachable(self, qbit, no_sleep):
        qbit.transport.request.side_effect = aiohttp.ClientConnectionError()

        result = await qbit.test_connection()

        assert result.connected is False
        assert "No response received" in result.error


# ============================================================================
# Torrents
# ============================================================================

class TestTorrents:
    """Listing and mutations."""

    @pytest.mark.asyncio
    async def test_get_torrents_normalizes_state(self, qbit):
        raw = [
            {"hash": TORRENT_HASH.upper(), "name": "Ubuntu", "state": "pausedDL", "progress": 0.5,
             "size": 100, "tags": "linux, iso", "category": "os"},
            {"hash": OTHER_HASH, "name": "Debian", "state": "uploading", "progress": 1.0},
        ]
        qbit.transport.request.side_effect = [login_ok(), make_response(raw)]

        torrents = await qbit.get_torrents()

        assert [t.state for t in torrents] == [CanonicalTorrentState.PAUSED, CanonicalTorrentState.SEEDING]
        assert torrents[0].hash == TORRENT_HASH
        assert torrents[0].native_state == "pausedDL"
        assert torrents[0].tags == ["linux", "iso"]
        assert torrents[1].is_complete

    @pytest.mark.asyncio
    async def test_state_filter_applied_after_normalization(self, qbit):
        raw = [
            {"hash": TORRENT_HASH, "name": "a", "state": "stalledUP"},
            {"hash": OTHER_HASH, "name": "b", "state": "downloading"},
        ]
        qbit.transport.request.side_effect = [login_ok(), make_response(raw)]

        torrents = await qbit.get_torrents(TorrentFilter(states=[CanonicalTorrentState.DOWNLOADING]))

        assert [t.name for t in torrents] == ["b"]

    @pytest.mark.asyncio
    async def test_filter_params(self, qbit):
        qbit.transport.request.side_effect = [login_ok(), make_response([])]

        await qbit.get_torrents(TorrentFilter(category="tv", hashes=[TORRENT_HASH.upper(), OTHER_HASH]))

        params = qbit.transport.request.call_args.kwargs["params"]
        assert params["category"] == "tv"
        assert params["hashes"] == f"{TORRENT_HASH}|{OTHER_HASH}"

    @pytest.mark.asyncio
    async def test_get_torrent_absent(self, qbit):
        qbit.transport.request.side_effect = [login_ok(), make_response([])]

        assert await qbit.get_torrent(TORRENT_HASH) is None

    @pytest.mark.asyncio
    async def test_get_torrent_rejects_bad_hash(self, qbit):
        with pytest.raises(InvalidTorrentError):
            await qbit.get_torrent("not-a-hash")
        qbit.transport.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_add_torrent_builds_multipart_each_attempt(self, qbit, no_sleep):
        """A retried add sends a fresh form body."""
        qbit.transport.request.side_effect = [login_ok(), make_http_error(502), make_response("Ok.")]
        options = AddTorrentOptions(
            urls=[f"magnet:?xt=urn:btih:{TORRENT_HASH}"],
            category="tv",
            paused=True,
        )

        await qbit.add_torrent(options)

        first, second = [call.kwargs["data"] for call in qbit.transport.request.call_args_list[1:]]
        assert isinstance(first, aiohttp.FormData)
        assert first is not second

    @pytest.mark.asyncio
    async def test_add_torrent_requires_source(self, qbit):
        with pytest.raises(InvalidTorrentError):
            await qbit.add_torrent(AddTorrentOptions())

    @pytest.mark.asyncio
    async def test_delete_torrents(self, qbit):
        qbit.transport.request.side_effect = [login_ok(), make_response("")]

        await qbit.delete_torrents([TORRENT_HASH, OTHER_HASH.upper()], delete_files=True)

        args, kwargs = qbit.transport.request.call_args
        assert args == ("POST", "/api/v2/torrents/delete")
        assert kwargs["data"] == {"hashes": f"{TORRENT_HASH}|{OTHER_HASH}", "deleteFiles": "true"}

    @pytest.mark.asyncio
    async def test_set_priority_endpoint(self, qbit):
        qbit.transport.request.side_effect = [login_ok(), make_response("")]

        await qbit.set_priority([TORRENT_HASH], TorrentPriority.TOP)

        assert qbit.transport.request.call_args.args == ("POST", "/api/v2/torrents/topPrio")

    @pytest.mark.asyncio
    async def test_invalid_hash_rejected(self, qbit):
        with pytest.raises(InvalidTorrentError):
            await qbit.pause_torrents(["xyz"])


# ============================================================================
# Application, categories and tags
# ============================================================================

class TestApplication:
    """Preferences, transfer info, categories and tags."""

    @pytest.mark.asyncio
    async def test_set_preferences(self, qbit):
        qbit.transport.request.side_effect = [login_ok(), make_response("")]

        await qbit.set_preferences({"dl_limit": 100})

        assert json.loads(qbit.transport.request.call_args.kwargs["data"]["json"]) == {"dl_limit": 100}

    @pytest.mark.asyncio
    async def test_transfer_info_mapping(self, qbit):
        qbit.transport.request.side_effect = [
            login_ok(),
            make_response({"dl_info_speed": 10, "up_info_speed": 5, "connection_status": "firewalled"}),
        ]

        info = await qbit.get_transfer_info()

        assert info["download_speed"] == 10
        assert info["upload_speed"] == 5
        assert info["connection_status"] == "firewalled"

    @pytest.mark.asyncio
    async def test_categories_and_tags(self, qbit):
        qbit.transport.request.side_effect = [
            login_ok(),
            make_response({"tv": {"name": "tv", "savePath": "/tv"}}),
            make_response(""),
            make_response(""),
        ]

        assert "tv" in await qbit.get_categories()
        await qbit.delete_categories(["tv", "movies"])
        await qbit.create_tags(["a", "b"])

        delete_call, tags_call = qbit.transport.request.call_args_list[2:]
        assert delete_call.kwargs["data"] == {"categories": "tv\nmovies"}
        assert tags_call.kwargs["data"] == {"tags": "a,b"}
