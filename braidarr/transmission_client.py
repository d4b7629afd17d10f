"""
Transmission Client
JSON-RPC client. There is no login; requests carry the anti-CSRF session id
the daemon hands out in a 409 reply, plus optional HTTP basic credentials.
"""

import base64
import logging
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from .config import BasicCredential, ProviderConnectionConfig
from .download_client import (
    AddTorrentOptions,
    DownloadClient,
    NoAuth,
    Torrent,
    TorrentFilter,
    TorrentPriority,
)
from .exceptions import ClassifiedError, ErrorKind
from .logging_config import LogContext
from .models import ConnectionTestResult
from .retry import RetryHandler, RetryPolicy
from .torrent_state import TRANSMISSION, CanonicalTorrentState, normalize

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Transmission-Session-Id"
DEFAULT_RPC_PATH = "/transmission/rpc"

TORRENT_FIELDS = [
    "id",
    "hashString",
    "name",
    "status",
    "error",
    "errorString",
    "totalSize",
    "percentDone",
    "rateDownload",
    "rateUpload",
    "eta",
    "uploadRatio",
    "labels",
    "downloadDir",
    "addedDate",
    "doneDate",
    "peersSendingToUs",
    "peersGettingFromUs",
    "downloadedEver",
    "uploadedEver",
    "queuePosition",
    "trackers",
]

PRIORITY_METHODS = {
    TorrentPriority.INCREASE: "queue-move-up",
    TorrentPriority.DECREASE: "queue-move-down",
    TorrentPriority.TOP: "queue-move-top",
    TorrentPriority.BOTTOM: "queue-move-bottom",
}

SORT_KEYS = {
    "name": lambda t: t.name.lower(),
    "size": lambda t: t.size,
    "progress": lambda t: t.progress,
    "added_on": lambda t: t.added_on or 0,
    "ratio": lambda t: t.ratio,
    "priority": lambda t: t.priority if t.priority is not None else 0,
}


class TransmissionClient(DownloadClient):
    """Client for the Transmission RPC interface."""

    backend = TRANSMISSION
    client_name = "Transmission"

    def __init__(
        self,
        config: ProviderConnectionConfig,
        retry_handler: Optional[RetryHandler] = None,
        default_policy: Optional[RetryPolicy] = None,
        rpc_path: str = DEFAULT_RPC_PATH,
    ):
        basic = None
        if isinstance(config.credential, BasicCredential):
            basic = aiohttp.BasicAuth(config.credential.username, config.credential.password)
        super().__init__(
            config,
            retry_handler=retry_handler,
            default_policy=default_policy,
            auth=NoAuth(),
            transport_auth=basic,
        )
        self.rpc_path = rpc_path
        self._session_id: Optional[str] = None

    async def _post_rpc(self, payload: Mapping[str, Any]):
        headers = {SESSION_HEADER: self._session_id} if self._session_id else None
        return await self._send_rpc(payload, headers)

    async def _send_rpc(self, payload: Mapping[str, Any], headers: Optional[Dict[str, str]]):
        try:
            return await self.transport.request("POST", self.rpc_path, json=dict(payload), headers=headers)
        except aiohttp.ClientResponseError as e:
            session_id = e.headers.get(SESSION_HEADER) if e.status == 409 and e.headers else None
            if not session_id:
                raise
            logger.debug("Transmission session id refreshed")
            self._session_id = session_id
            return await self.transport.request(
                "POST", self.rpc_path, json=dict(payload), headers={SESSION_HEADER: session_id}
            )

    async def _rpc(self, method: str, arguments: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Call one RPC method through the retry handler and return its arguments."""
        payload = {"method": method, "arguments": dict(arguments or {})}

        async def call():
            response = await self._post_rpc(payload)
            body = response.json() or {}
            if body.get("result") != "success":
                logger.warning(f"Transmission {method} returned: {body.get('result')}")
                raise ClassifiedError(ErrorKind.UNKNOWN, "The download client rejected the request.")
            return body.get("arguments") or {}

        with LogContext(provider=self.backend, instance=self.config.name):
            return await self.retry_handler.execute(call, operation_id=f"{self.backend} {method}")

    async def _probe(self) -> ConnectionTestResult:
        session = await self._rpc("session-get", {"fields": ["version", "rpc-version"]})
        return ConnectionTestResult(
            connected=True,
            version=session.get("version"),
            details={"api_version": session.get("rpc-version"), "client": self.client_name},
        )

    def _to_torrent(self, data: Mapping[str, Any]) -> Torrent:
        status = data.get("status")
        state = normalize(self.backend, status)
        if data.get("error"):
            state = CanonicalTorrentState.ERROR
        labels = list(data.get("labels") or [])
        trackers = data.get("trackers") or []
        name = data.get("name", "")
        download_dir = data.get("downloadDir")
        total_size = data.get("totalSize", 0)
        uploaded = data.get("uploadedEver", 0)
        eta = data.get("eta")
        return Torrent(
            hash=str(data.get("hashString", "")).lower(),
            name=name,
            state=state,
            native_state=None if status is None else str(status),
            size=total_size,
            progress=data.get("percentDone", 0.0),
            download_speed=data.get("rateDownload", 0),
            upload_speed=data.get("rateUpload", 0),
            eta=eta if eta is not None and eta >= 0 else None,
            ratio=max(data.get("uploadRatio", 0.0), 0.0),
            category=labels[0] if labels else None,
            tags=labels[1:],
            save_path=download_dir,
            content_path=f"{download_dir.rstrip('/')}/{name}" if download_dir else None,
            added_on=data.get("addedDate") or None,
            completed_on=data.get("doneDate") or None,
            seeders=data.get("peersSendingToUs", 0),
            leechers=data.get("peersGettingFromUs", 0),
            downloaded=data.get("downloadedEver", 0),
            uploaded=uploaded,
            priority=data.get("queuePosition"),
            tracker=trackers[0].get("announce") if trackers else None,
            error=data.get("errorString") or None,
        )

    async def get_torrents(self, torrent_filter: Optional[TorrentFilter] = None) -> List[Torrent]:
        torrent_filter = torrent_filter or TorrentFilter()
        arguments: Dict[str, Any] = {"fields": TORRENT_FIELDS}
        if torrent_filter.hashes:
            arguments["ids"] = [h.lower() for h in torrent_filter.hashes]
        result = await self._rpc("torrent-get", arguments)
        torrents = [self._to_torrent(item) for item in result.get("torrents", [])]

        torrents = [t for t in torrents if torrent_filter.matches(t)]
        if torrent_filter.category:
            torrents = [t for t in torrents if t.category == torrent_filter.category]
        if torrent_filter.tag:
            torrents = [t for t in torrents if torrent_filter.tag in t.tags]
        if torrent_filter.sort in SORT_KEYS:
            torrents.sort(key=SORT_KEYS[torrent_filter.sort], reverse=torrent_filter.reverse)
        start = torrent_filter.offset or 0
        end = start + torrent_filter.limit if torrent_filter.limit else None
        return torrents[start:end]

    async def add_torrent(self, options: AddTorrentOptions) -> None:
        options.validate()
        labels = ([options.category] if options.category else []) + list(options.tags)
        common: Dict[str, Any] = {}
        if options.save_path:
            common["download-dir"] = options.save_path
        if options.paused is not None:
            common["paused"] = options.paused
        if labels:
            common["labels"] = labels

        for url in options.urls:
            await self._rpc("torrent-add", {**common, "filename": url})
        for content in options.torrent_files:
            await self._rpc("torrent-add", {**common, "metainfo": base64.b64encode(content).decode()})
        logger.info(f"Added {len(options.urls) + len(options.torrent_files)} torrent(s) to Transmission")

    async def delete_torrents(self, hashes: List[str], delete_files: bool = False) -> None:
        await self._rpc("torrent-remove", {"ids": self._check_hashes(hashes), "delete-local-data": delete_files})

    async def pause_torrents(self, hashes: List[str]) -> None:
        await self._rpc("torrent-stop", {"ids": self._check_hashes(hashes)})

    async def resume_torrents(self, hashes: List[str]) -> None:
        await self._rpc("torrent-start", {"ids": self._check_hashes(hashes)})

    async def recheck_torrents(self, hashes: List[str]) -> None:
        await self._rpc("torrent-verify", {"ids": self._check_hashes(hashes)})

    async def set_priority(self, hashes: List[str], priority: TorrentPriority) -> None:
        await self._rpc(PRIORITY_METHODS[priority], {"ids": self._check_hashes(hashes)})

    # Labels stand in for both categories and tags

    async def _labels(self) -> List[str]:
        result = await self._rpc("torrent-get", {"fields": ["labels"]})
        seen: Dict[str, None] = {}
        for item in result.get("torrents", []):
            for label in item.get("labels") or []:
                seen.setdefault(label, None)
        return list(seen)

    async def _strip_labels(self, labels: List[str]) -> None:
        doomed = set(labels)
        result = await self._rpc("torrent-get", {"fields": ["hashString", "labels"]})
        for item in result.get("torrents", []):
            current = list(item.get("labels") or [])
            kept = [label for label in current if label not in doomed]
            if kept != current:
                await self._rpc("torrent-set", {"ids": [item["hashString"]], "labels": kept})

    async def get_categories(self) -> Dict[str, Dict[str, Any]]:
        return {label: {"name": label, "savePath": ""} for label in await self._labels()}

    async def create_category(self, name: str, save_path: str = "") -> None:
        """
        No-op. Transmission keeps no list of labels; a label exists once it
        is assigned to a torrent, e.g. via AddTorrentOptions.category.
        ``save_path`` is ignored.
        """
        logger.debug(f"Transmission has no category store; '{name}' is created on first use")

    async def delete_categories(self, names: List[str]) -> None:
        await self._strip_labels(names)

    async def get_tags(self) -> List[str]:
        return await self._labels()

    async def create_tags(self, tags: List[str]) -> None:
        """No-op. Tags are labels and appear when first assigned to a torrent."""
        logger.debug(f"Transmission has no tag store; {tags} are created on first use")

    async def delete_tags(self, tags: List[str]) -> None:
        await self._strip_labels(tags)
