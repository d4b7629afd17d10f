"""
Radarr Client
Movie, queue, history, blocklist, file, import-list and collection operations.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .arr_client import ArrClient

logger = logging.getLogger(__name__)


@dataclass
class MovieAddOptions:
    """Payload for adding a movie."""
    tmdb_id: int
    title: str
    quality_profile_id: int
    root_folder_path: str
    title_slug: Optional[str] = None
    monitored: bool = True
    minimum_availability: str = "announced"
    tags: List[int] = field(default_factory=list)
    search_for_movie: bool = True

    def to_payload(self) -> Dict[str, Any]:
        return {
            "tmdbId": self.tmdb_id,
            "title": self.title,
            "titleSlug": self.title_slug,
            "qualityProfileId": self.quality_profile_id,
            "rootFolderPath": self.root_folder_path,
            "monitored": self.monitored,
            "minimumAvailability": self.minimum_availability,
            "tags": list(self.tags),
            "addOptions": {"searchForMovie": self.search_for_movie},
        }


class RadarrClient(ArrClient):
    """Client for the Radarr v3 API."""

    app_name = "Radarr"

    # Lookup

    async def search_movies(self, term: str) -> List[Dict[str, Any]]:
        return await self._get("movie/lookup", term=term)

    async def search_movies_by_imdb(self, imdb_id: str) -> List[Dict[str, Any]]:
        return await self._get("movie/lookup/imdb", imdbId=imdb_id)

    async def search_movies_by_tmdb(self, tmdb_id: int) -> List[Dict[str, Any]]:
        return await self._get("movie/lookup/tmdb", tmdbId=tmdb_id)

    # Library

    async def get_movies(self) -> List[Dict[str, Any]]:
        return await self._get("movie")

    async def get_movie_by_id(self, movie_id: int) -> Dict[str, Any]:
        return await self._get(f"movie/{movie_id}")

    async def get_movie_by_tmdb_id(self, tmdb_id: int) -> Optional[Dict[str, Any]]:
        """Library movie with this TMDb id, or None when it is not in the library."""
        movies = await self._get("movie", tmdbId=tmdb_id) or []
        for movie in movies:
            if movie.get("tmdbId") == tmdb_id:
                return movie
        return None

    async def add_movie(self, options: MovieAddOptions) -> Dict[str, Any]:
        logger.info(f"Adding movie '{options.title}' (tmdb {options.tmdb_id})")
        return await self._post("movie", options.to_payload())

    async def update_movie(self, movie_id: int, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge ``changes`` over the stored movie and save the whole object."""
        return await self._update_merged(f"movie/{movie_id}", {**changes, "id": movie_id})

    async def delete_movie(
        self,
        movie_id: int,
        delete_files: bool = False,
        add_import_list_exclusion: bool = False,
    ) -> None:
        await self._delete(
            f"movie/{movie_id}",
            deleteFiles=delete_files,
            addImportExclusion=add_import_list_exclusion,
        )

    # Calendar and wanted lists

    async def get_calendar(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        unmonitored: bool = False,
    ) -> List[Dict[str, Any]]:
        return await self._get("calendar", start=start, end=end, unmonitored=unmonitored)

    async def get_wanted_missing(
        self,
        page: int = 1,
        page_size: int = 20,
        sort_key: str = "title",
        sort_direction: str = "ascending",
    ) -> Dict[str, Any]:
        return await self._get(
            "wanted/missing", page=page, pageSize=page_size, sortKey=sort_key, sortDirection=sort_direction
        )

    async def get_wanted_cutoff_unmet(
        self,
        page: int = 1,
        page_size: int = 20,
        sort_key: str = "title",
        sort_direction: str = "ascending",
    ) -> Dict[str, Any]:
        return await self._get(
            "wanted/cutoff", page=page, pageSize=page_size, sortKey=sort_key, sortDirection=sort_direction
        )

    # Queue, history, blocklist

    async def get_queue(
        self,
        page: int = 1,
        page_size: int = 20,
        sort_key: str = "timeleft",
        sort_direction: str = "ascending",
        include_unknown_movie_items: bool = False,
    ) -> Dict[str, Any]:
        return await self._get(
            "queue",
            page=page,
            pageSize=page_size,
            sortKey=sort_key,
            sortDirection=sort_direction,
            includeUnknownMovieItems=include_unknown_movie_items,
        )

    async def remove_from_queue(self, queue_id: int, remove_from_client: bool = True, blocklist: bool = False) -> None:
        await self._delete(f"queue/{queue_id}", removeFromClient=remove_from_client, blocklist=blocklist)

    async def get_history(
        self,
        page: int = 1,
        page_size: int = 20,
        sort_key: str = "date",
        sort_direction: str = "descending",
        movie_id: Optional[int] = None,
        event_type: Optional[int] = None,
    ) -> Dict[str, Any]:
        return await self._get(
            "history",
            page=page,
            pageSize=page_size,
            sortKey=sort_key,
            sortDirection=sort_direction,
            movieId=movie_id,
            eventType=event_type,
        )

    async def get_blocklist(
        self,
        page: int = 1,
        page_size: int = 20,
        sort_key: str = "date",
        sort_direction: str = "descending",
    ) -> Dict[str, Any]:
        return await self._get(
            "blocklist", page=page, pageSize=page_size, sortKey=sort_key, sortDirection=sort_direction
        )

    async def remove_from_blocklist(self, blocklist_id: int) -> None:
        await self._delete(f"blocklist/{blocklist_id}")

    # Commands

    async def search_for_movies(self, movie_ids: List[int]) -> Dict[str, Any]:
        return await self._command("MoviesSearch", movieIds=list(movie_ids))

    async def rescan_movie(self, movie_id: Optional[int] = None) -> Dict[str, Any]:
        if movie_id is None:
            return await self._command("RescanMovie")
        return await self._command("RescanMovie", movieId=movie_id)

    async def refresh_movie(self, movie_id: Optional[int] = None) -> Dict[str, Any]:
        if movie_id is None:
            return await self._command("RefreshMovie")
        return await self._command("RefreshMovie", movieIds=[movie_id])

    async def rename_movies(self, movie_ids: List[int]) -> Dict[str, Any]:
        return await self._command("RenameMovie", movieIds=list(movie_ids))

    # Movie files

    async def get_movie_files(self, movie_id: int) -> List[Dict[str, Any]]:
        return await self._get("moviefile", movieId=movie_id)

    async def get_movie_file_by_id(self, movie_file_id: int) -> Dict[str, Any]:
        return await self._get(f"moviefile/{movie_file_id}")

    async def delete_movie_files(self, movie_file_ids: List[int]) -> None:
        await self._delete("moviefile/bulk", {"movieFileIds": list(movie_file_ids)})

    async def update_movie_file_quality(self, movie_file_id: int, quality: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._put(f"moviefile/{movie_file_id}", {"quality": dict(quality)})

    # Import lists and collections

    async def get_import_lists(self) -> List[Dict[str, Any]]:
        return await self._get("importlist")

    async def test_import_list(self, import_list: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._post("importlist/test", dict(import_list))

    async def get_collections(self) -> List[Dict[str, Any]]:
        return await self._get("collection")

    async def update_collection(self, collection: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._put(f"collection/{collection['id']}", dict(collection))
