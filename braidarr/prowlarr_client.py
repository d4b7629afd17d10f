"""
Prowlarr Client
Indexer, application, search, notification and sync-profile operations on the v1 API.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .arr_client import ArrClient

logger = logging.getLogger(__name__)


@dataclass
class SearchQuery:
    """Cross-indexer search parameters. Unset fields are left out of the query."""
    query: Optional[str] = None
    indexer_ids: List[int] = field(default_factory=list)
    categories: List[int] = field(default_factory=list)
    type: Optional[str] = None  # search, tvsearch, movie, music, book
    offset: Optional[int] = None
    limit: Optional[int] = None
    # tv
    tvdb_id: Optional[int] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    # movie
    tmdb_id: Optional[int] = None
    imdb_id: Optional[str] = None
    year: Optional[int] = None
    # music
    artist: Optional[str] = None
    album: Optional[str] = None
    track: Optional[str] = None
    # book
    author: Optional[str] = None
    title: Optional[str] = None

    def to_params(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "indexerIds": self.indexer_ids or None,
            "categories": self.categories or None,
            "type": self.type,
            "offset": self.offset,
            "limit": self.limit,
            "tvdbId": self.tvdb_id,
            "season": self.season,
            "episode": self.episode,
            "tmdbId": self.tmdb_id,
            "imdbId": self.imdb_id,
            "year": self.year,
            "artist": self.artist,
            "album": self.album,
            "track": self.track,
            "author": self.author,
            "title": self.title,
        }


class ProwlarrClient(ArrClient):
    """Client for the Prowlarr v1 API."""

    app_name = "Prowlarr"
    api_version = "v1"

    # Indexers

    async def get_indexer_by_id(self, indexer_id: int) -> Dict[str, Any]:
        return await self._get(f"indexer/{indexer_id}")

    async def add_indexer(self, indexer: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._post("indexer", dict(indexer))

    async def update_indexer(self, indexer_id: int, changes: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._update_merged(f"indexer/{indexer_id}", {**changes, "id": indexer_id})

    async def delete_indexer(self, indexer_id: int) -> None:
        await self._delete(f"indexer/{indexer_id}")

    async def test_indexer(self, indexer: Mapping[str, Any], force_test: bool = False) -> Any:
        return await self._post("indexer/test", {**indexer, "forceTest": force_test})

    async def get_indexer_schema(self, implementation: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._get("indexer/schema", implementation=implementation)

    async def get_indexer_categories(self) -> List[Dict[str, Any]]:
        return await self._get("indexer/categories")

    # Applications

    async def get_applications(self) -> List[Dict[str, Any]]:
        return await self._get("applications")

    async def get_application_by_id(self, application_id: int) -> Dict[str, Any]:
        return await self._get(f"applications/{application_id}")

    async def add_application(self, application: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._post("applications", dict(application))

    async def update_application(self, application_id: int, changes: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._update_merged(f"applications/{application_id}", {**changes, "id": application_id})

    async def delete_application(self, application_id: int) -> None:
        await self._delete(f"applications/{application_id}")

    async def test_application(self, application: Mapping[str, Any]) -> Any:
        return await self._post("applications/test", dict(application))

    async def get_application_schema(self, implementation: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._get("applications/schema", implementation=implementation)

    async def sync_applications(self, application_ids: Optional[List[int]] = None) -> Dict[str, Any]:
        if application_ids:
            return await self._command("ApplicationSync", applicationIds=list(application_ids))
        return await self._command("ApplicationSync")

    # Search and stats

    async def search(self, query: SearchQuery) -> List[Dict[str, Any]]:
        return await self._request("GET", "search", params=query.to_params())

    async def get_indexer_stats(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        indexer_ids: Optional[List[int]] = None,
        application_ids: Optional[List[int]] = None,
    ) -> Dict[str, Any]:
        return await self._get(
            "indexerstats",
            startDate=start_date,
            endDate=end_date,
            indexerIds=indexer_ids or None,
            applicationIds=application_ids or None,
        )

    async def get_history(
        self,
        page: int = 1,
        page_size: int = 20,
        sort_key: str = "date",
        sort_direction: str = "descending",
    ) -> Dict[str, Any]:
        return await self._get(
            "history", page=page, pageSize=page_size, sortKey=sort_key, sortDirection=sort_direction
        )

    # Notifications

    async def get_notifications(self) -> List[Dict[str, Any]]:
        return await self._get("notification")

    async def add_notification(self, notification: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._post("notification", dict(notification))

    async def update_notification(self, notification_id: int, changes: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._update_merged(f"notification/{notification_id}", {**changes, "id": notification_id})

    async def delete_notification(self, notification_id: int) -> None:
        await self._delete(f"notification/{notification_id}")

    async def test_notification(self, notification: Mapping[str, Any]) -> Any:
        return await self._post("notification/test", dict(notification))

    # Sync profiles

    async def get_sync_profiles(self) -> List[Dict[str, Any]]:
        return await self._get("syncprofile")

    async def add_sync_profile(self, profile: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._post("syncprofile", dict(profile))

    async def update_sync_profile(self, profile_id: int, changes: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._update_merged(f"syncprofile/{profile_id}", {**changes, "id": profile_id})

    async def delete_sync_profile(self, profile_id: int) -> None:
        await self._delete(f"syncprofile/{profile_id}")

    # Commands

    async def force_rss_sync(self, indexer_ids: Optional[List[int]] = None) -> Dict[str, Any]:
        if indexer_ids:
            return await self._command("RssSync", indexerIds=list(indexer_ids))
        return await self._command("RssSync")

    async def sync_indexer_definitions(self) -> Dict[str, Any]:
        return await self._command("CheckForIndexerUpdate")
