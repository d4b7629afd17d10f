"""
Sonarr Client
Series, episode, calendar, wanted-list and command operations on top of the Arr base.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .arr_client import ArrClient

logger = logging.getLogger(__name__)


@dataclass
class SeriesAddOptions:
    """Payload for adding a series."""
    tvdb_id: int
    title: str
    quality_profile_id: int
    root_folder_path: str
    title_slug: Optional[str] = None
    language_profile_id: int = 1
    monitored: bool = True
    season_folder: bool = True
    series_type: str = "standard"
    tags: List[int] = field(default_factory=list)
    ignore_episodes_with_files: bool = False
    ignore_episodes_without_files: bool = False
    search_for_missing_episodes: bool = True

    def to_payload(self) -> Dict[str, Any]:
        return {
            "tvdbId": self.tvdb_id,
            "title": self.title,
            "titleSlug": self.title_slug,
            "qualityProfileId": self.quality_profile_id,
            "languageProfileId": self.language_profile_id,
            "rootFolderPath": self.root_folder_path,
            "monitored": self.monitored,
            "seasonFolder": self.season_folder,
            "seriesType": self.series_type,
            "tags": list(self.tags),
            "addOptions": {
                "ignoreEpisodesWithFiles": self.ignore_episodes_with_files,
                "ignoreEpisodesWithoutFiles": self.ignore_episodes_without_files,
                "searchForMissingEpisodes": self.search_for_missing_episodes,
            },
        }


class SonarrClient(ArrClient):
    """Client for the Sonarr v3 API."""

    app_name = "Sonarr"

    # Series

    async def search_series(self, term: str) -> List[Dict[str, Any]]:
        return await self._get("series/lookup", term=term)

    async def get_series(self, include_season_images: bool = False) -> List[Dict[str, Any]]:
        return await self._get("series", includeSeasonImages=include_season_images)

    async def get_series_by_id(self, series_id: int, include_season_images: bool = False) -> Dict[str, Any]:
        return await self._get(f"series/{series_id}", includeSeasonImages=include_season_images)

    async def add_series(self, options: SeriesAddOptions) -> Dict[str, Any]:
        logger.info(f"Adding series '{options.title}' (tvdb {options.tvdb_id})")
        return await self._post("series", options.to_payload())

    async def update_series(self, series_id: int, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge ``changes`` over the stored series and save the whole object."""
        return await self._update_merged(f"series/{series_id}", {**changes, "id": series_id})

    async def delete_series(
        self,
        series_id: int,
        delete_files: bool = False,
        add_import_list_exclusion: bool = False,
    ) -> None:
        await self._delete(
            f"series/{series_id}",
            deleteFiles=delete_files,
            addImportListExclusion=add_import_list_exclusion,
        )

    # Episodes

    async def get_episodes(
        self,
        series_id: int,
        season_number: Optional[int] = None,
        include_images: bool = False,
    ) -> List[Dict[str, Any]]:
        return await self._get(
            "episode",
            seriesId=series_id,
            seasonNumber=season_number,
            includeImages=include_images,
        )

    async def get_episode_by_id(self, episode_id: int) -> Dict[str, Any]:
        return await self._get(f"episode/{episode_id}")

    async def update_episode(self, episode_id: int, changes: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._put(f"episode/{episode_id}", {**changes, "id": episode_id})

    async def set_episodes_monitored(self, episode_ids: List[int], monitored: bool) -> None:
        await self._put("episode/monitor", {"episodeIds": list(episode_ids), "monitored": monitored})

    async def get_language_profiles(self) -> List[Dict[str, Any]]:
        return await self._get("languageprofile")

    # Calendar and wanted lists

    async def get_calendar(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        unmonitored: bool = False,
        include_series: bool = False,
        include_episode_file: bool = False,
        include_episode_images: bool = False,
    ) -> List[Dict[str, Any]]:
        return await self._get(
            "calendar",
            start=start,
            end=end,
            unmonitored=unmonitored,
            includeSeries=include_series,
            includeEpisodeFile=include_episode_file,
            includeEpisodeImages=include_episode_images,
        )

    async def _wanted(self, kind: str, page: int, page_size: int, sort_key: str,
                      sort_direction: str, monitored: bool, include_series: bool) -> Dict[str, Any]:
        return await self._get(
            f"wanted/{kind}",
            page=page,
            pageSize=page_size,
            sortKey=sort_key,
            sortDirection=sort_direction,
            includeSeries=include_series,
            monitored=monitored,
        )

    async def get_wanted_missing(
        self,
        page: int = 1,
        page_size: int = 20,
        sort_key: str = "airDateUtc",
        sort_direction: str = "descending",
        monitored: bool = True,
        include_series: bool = False,
    ) -> Dict[str, Any]:
        return await self._wanted("missing", page, page_size, sort_key, sort_direction, monitored, include_series)

    async def get_wanted_cutoff_unmet(
        self,
        page: int = 1,
        page_size: int = 20,
        sort_key: str = "airDateUtc",
        sort_direction: str = "descending",
        monitored: bool = True,
        include_series: bool = False,
    ) -> Dict[str, Any]:
        return await self._wanted("cutoff", page, page_size, sort_key, sort_direction, monitored, include_series)

    # Commands

    async def search_for_series(self, series_id: int) -> Dict[str, Any]:
        return await self._command("SeriesSearch", seriesId=series_id)

    async def search_for_season(self, series_id: int, season_number: int) -> Dict[str, Any]:
        return await self._command("SeasonSearch", seriesId=series_id, seasonNumber=season_number)

    async def search_for_episodes(self, episode_ids: List[int]) -> Dict[str, Any]:
        return await self._command("EpisodeSearch", episodeIds=list(episode_ids))

    async def rescan_series(self, series_id: Optional[int] = None) -> Dict[str, Any]:
        if series_id is None:
            return await self._command("RescanSeries")
        return await self._command("RescanSeries", seriesId=series_id)

    async def refresh_series(self, series_id: Optional[int] = None) -> Dict[str, Any]:
        if series_id is None:
            return await self._command("RefreshSeries")
        return await self._command("RefreshSeries", seriesId=series_id)

    async def rename_series(self, series_ids: List[int]) -> Dict[str, Any]:
        return await self._command("RenameSeries", seriesIds=list(series_ids))

    # Episode files

    async def get_episode_files(self, series_id: int) -> List[Dict[str, Any]]:
        return await self._get("episodefile", seriesId=series_id)

    async def delete_episode_files(self, episode_file_ids: List[int]) -> None:
        await self._delete("episodefile/bulk", {"episodeFileIds": list(episode_file_ids)})

    async def update_episode_file_quality(self, episode_file_id: int, quality: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._put(f"episodefile/{episode_file_id}", {"quality": dict(quality)})
