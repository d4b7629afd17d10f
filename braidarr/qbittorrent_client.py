"""
qBittorrent Client
Web API v2 client with session-cookie authentication.
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from .download_client import (
    AddTorrentOptions,
    DownloadClient,
    SessionCookieAuth,
    Torrent,
    TorrentFilter,
    TorrentPriority,
    parse_session_cookie,
)
from .config import ProviderConnectionConfig
from .exceptions import ClassifiedError, ErrorKind
from .logging_config import LogContext
from .models import ConnectionTestResult
from .retry import RetryHandler, RetryPolicy
from .torrent_state import QBITTORRENT, normalize

logger = logging.getLogger(__name__)

LOGIN_OK = "Ok."

PRIORITY_ENDPOINTS = {
    TorrentPriority.INCREASE: "increasePrio",
    TorrentPriority.DECREASE: "decreasePrio",
    TorrentPriority.TOP: "topPrio",
    TorrentPriority.BOTTOM: "bottomPrio",
}


def _flag(value: bool) -> str:
    return "true" if value else "false"


class QBittorrentClient(DownloadClient):
    """
    Client for the qBittorrent Web API.

    Logs in with a form post, keeps the SID cookie for an hour, and logs in
    again after a 403.
    """

    backend = QBITTORRENT
    client_name = "qBittorrent"

    def __init__(
        self,
        config: ProviderConnectionConfig,
        retry_handler: Optional[RetryHandler] = None,
        default_policy: Optional[RetryPolicy] = None,
        session_ttl: float = 3600.0,
        clock=None,
    ):
        auth_kwargs = {"ttl": session_ttl}
        if clock is not None:
            auth_kwargs["clock"] = clock
        super().__init__(
            config,
            retry_handler=retry_handler,
            default_policy=default_policy,
            auth=SessionCookieAuth(self._login, **auth_kwargs),
        )

    async def _login(self) -> str:
        """Exchange credentials for a session cookie."""
        logger.debug(f"Logging in to qBittorrent at {self.config.base_url}")
        response = await self.transport.request(
            "POST",
            "/api/v2/auth/login",
            data={"username": self.username or "admin", "password": self.password},
            headers={"Referer": self.config.base_url},
        )
        if response.text.strip() != LOGIN_OK:
            raise ClassifiedError(
                ErrorKind.AUTH_FAILED,
                "Authentication failed. Please check your username and password.",
            )
        cookie = parse_session_cookie(response.cookies)
        if not cookie:
            raise ClassifiedError(
                ErrorKind.AUTH_FAILED,
                "No session cookie received from qBittorrent.",
            )
        logger.info(f"qBittorrent authenticated as {self.username or 'admin'}")
        return cookie

    async def _get_json(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        response = await self._request("GET", path, params=params)
        return response.json()

    async def _post_form(self, path: str, form: Mapping[str, str]) -> None:
        await self._request("POST", path, data=dict(form))

    async def _probe(self) -> ConnectionTestResult:
        version = await self.get_version()
        api_version = await self.get_api_version()
        return ConnectionTestResult(
            connected=True,
            version=version,
            details={"api_version": api_version, "client": self.client_name},
        )

    # Application

    async def get_version(self) -> str:
        response = await self._request("GET", "/api/v2/app/version")
        return response.text.strip()

    async def get_api_version(self) -> str:
        response = await self._request("GET", "/api/v2/app/webapiVersion")
        return response.text.strip()

    async def get_preferences(self) -> Dict[str, Any]:
        return await self._get_json("/api/v2/app/preferences")

    async def set_preferences(self, preferences: Mapping[str, Any]) -> None:
        await self._post_form("/api/v2/app/setPreferences", {"json": json.dumps(dict(preferences))})

    async def get_transfer_info(self) -> Dict[str, Any]:
        data = await self._get_json("/api/v2/transfer/info") or {}
        return {
            "connection_status": data.get("connection_status", "connected"),
            "download_speed": data.get("dl_info_speed", 0),
            "upload_speed": data.get("up_info_speed", 0),
            "downloaded_session": data.get("dl_info_data", 0),
            "uploaded_session": data.get("up_info_data", 0),
            "download_rate_limit": data.get("dl_rate_limit", 0),
            "upload_rate_limit": data.get("up_rate_limit", 0),
            "dht_nodes": data.get("dht_nodes", 0),
        }

    # Torrents

    async def get_torrents(self, torrent_filter: Optional[TorrentFilter] = None) -> List[Torrent]:
        torrent_filter = torrent_filter or TorrentFilter()
        params = {
            "filter": torrent_filter.native_filter,
            "category": torrent_filter.category,
            "tag": torrent_filter.tag,
            "hashes": "|".join(h.lower() for h in torrent_filter.hashes) if torrent_filter.hashes else None,
            "sort": torrent_filter.sort,
            "reverse": torrent_filter.reverse or None,
            "limit": torrent_filter.limit,
            "offset": torrent_filter.offset,
        }
        raw = await self._get_json("/api/v2/torrents/info", params=params) or []
        torrents = [self._to_torrent(item) for item in raw]
        return [t for t in torrents if torrent_filter.matches(t)]

    def _to_torrent(self, data: Mapping[str, Any]) -> Torrent:
        native = data.get("state")
        tags = data.get("tags") or ""
        return Torrent(
            hash=str(data.get("hash", "")).lower(),
            name=data.get("name", ""),
            state=normalize(self.backend, native),
            native_state=native,
            size=data.get("size", 0),
            progress=data.get("progress", 0.0),
            download_speed=data.get("dlspeed", 0),
            upload_speed=data.get("upspeed", 0),
            eta=data.get("eta"),
            ratio=data.get("ratio", 0.0),
            category=data.get("category") or None,
            tags=[tag.strip() for tag in tags.split(",") if tag.strip()],
            save_path=data.get("save_path"),
            content_path=data.get("content_path"),
            added_on=data.get("added_on"),
            completed_on=data.get("completion_on"),
            seeders=data.get("num_seeds", 0),
            leechers=data.get("num_leechs", 0),
            downloaded=data.get("downloaded", 0),
            uploaded=data.get("uploaded", 0),
            priority=data.get("priority"),
            tracker=data.get("tracker") or None,
        )

    def _build_add_form(self, options: AddTorrentOptions) -> aiohttp.FormData:
        form = aiohttp.FormData()
        if options.urls:
            form.add_field("urls", "\n".join(options.urls))
        for index, content in enumerate(options.torrent_files):
            form.add_field(
                "torrents",
                content,
                filename=f"torrent_{index}.torrent",
                content_type="application/x-bittorrent",
            )
        optional = {
            "savepath": options.save_path,
            "category": options.category,
            "tags": ",".join(options.tags) if options.tags else None,
            "paused": options.paused,
            "skip_checking": options.skip_checking,
            "root_folder": options.root_folder,
            "rename": options.rename,
            "upLimit": options.upload_limit,
            "dlLimit": options.download_limit,
            "ratioLimit": options.ratio_limit,
            "seedingTimeLimit": options.seeding_time_limit,
            "autoTMM": options.auto_tmm,
            "sequentialDownload": options.sequential_download,
            "firstLastPiecePrio": options.first_last_piece_priority,
        }
        for name, value in optional.items():
            if value is None:
                continue
            form.add_field(name, _flag(value) if isinstance(value, bool) else str(value))
        return form

    async def add_torrent(self, options: AddTorrentOptions) -> None:
        options.validate()

        # multipart bodies are single-use, so each attempt builds its own
        async def call():
            return await self._send("POST", "/api/v2/torrents/add", data=self._build_add_form(options))

        with LogContext(provider=self.backend, instance=self.config.name):
            await self.retry_handler.execute(call, operation_id=f"{self.backend} add_torrent")
        logger.info(
            f"Added {len(options.urls) + len(options.torrent_files)} torrent(s) to qBittorrent"
            + (f" in category {options.category}" if options.category else "")
        )

    async def delete_torrents(self, hashes: List[str], delete_files: bool = False) -> None:
        hashes = self._check_hashes(hashes)
        await self._post_form(
            "/api/v2/torrents/delete",
            {"hashes": "|".join(hashes), "deleteFiles": _flag(delete_files)},
        )

    async def pause_torrents(self, hashes: List[str]) -> None:
        await self._post_form("/api/v2/torrents/pause", {"hashes": "|".join(self._check_hashes(hashes))})

    async def resume_torrents(self, hashes: List[str]) -> None:
        await self._post_form("/api/v2/torrents/resume", {"hashes": "|".join(self._check_hashes(hashes))})

    async def recheck_torrents(self, hashes: List[str]) -> None:
        await self._post_form("/api/v2/torrents/recheck", {"hashes": "|".join(self._check_hashes(hashes))})

    async def set_priority(self, hashes: List[str], priority: TorrentPriority) -> None:
        endpoint = PRIORITY_ENDPOINTS[priority]
        await self._post_form(f"/api/v2/torrents/{endpoint}", {"hashes": "|".join(self._check_hashes(hashes))})

    # Categories and tags

    async def get_categories(self) -> Dict[str, Dict[str, Any]]:
        return await self._get_json("/api/v2/torrents/categories") or {}

    async def create_category(self, name: str, save_path: str = "") -> None:
        await self._post_form("/api/v2/torrents/createCategory", {"category": name, "savePath": save_path})

    async def delete_categories(self, names: List[str]) -> None:
        await self._post_form("/api/v2/torrents/removeCategories", {"categories": "\n".join(names)})

    async def get_tags(self) -> List[str]:
        return await self._get_json("/api/v2/torrents/tags") or []

    async def create_tags(self, tags: List[str]) -> None:
        await self._post_form("/api/v2/torrents/createTags", {"tags": ",".join(tags)})

    async def delete_tags(self, tags: List[str]) -> None:
        await self._post_form("/api/v2/torrents/deleteTags", {"tags": ",".join(tags)})
