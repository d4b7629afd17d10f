"""
Torrent state normalization.
Maps each download client's native status vocabulary onto one canonical set.
"""

from enum import Enum
from typing import Dict, Union


class CanonicalTorrentState(Enum):
    """Backend-agnostic torrent lifecycle state."""
    ALLOCATING = "allocating"
    DOWNLOADING = "downloading"
    METADATA_DOWNLOAD = "metadata_download"
    QUEUED = "queued"
    STALLED = "stalled"
    CHECKING = "checking"
    SEEDING = "seeding"
    PAUSED = "paused"
    ERROR = "error"
    MISSING_FILES = "missing_files"
    MOVING = "moving"
    UNKNOWN = "unknown"


QBITTORRENT = "qbittorrent"
TRANSMISSION = "transmission"

S = CanonicalTorrentState

# backend -> lowercased native token -> canonical state
STATE_TABLE: Dict[str, Dict[str, CanonicalTorrentState]] = {
    QBITTORRENT: {
        "allocating": S.ALLOCATING,
        "downloading": S.DOWNLOADING,
        "forceddl": S.DOWNLOADING,
        "metadl": S.METADATA_DOWNLOAD,
        "forcedmetadl": S.METADATA_DOWNLOAD,
        "queueddl": S.QUEUED,
        "queuedup": S.QUEUED,
        "stalleddl": S.STALLED,
        "stalledup": S.STALLED,
        "uploading": S.SEEDING,
        "forcedup": S.SEEDING,
        "pauseddl": S.PAUSED,
        "pausedup": S.PAUSED,
        # qBittorrent 5.x renamed paused* to stopped*
        "stoppeddl": S.PAUSED,
        "stoppedup": S.PAUSED,
        "checkingdl": S.CHECKING,
        "checkingup": S.CHECKING,
        "checkingresumedata": S.CHECKING,
        "error": S.ERROR,
        "missingfiles": S.MISSING_FILES,
        "moving": S.MOVING,
        "unknown": S.UNKNOWN,
    },
    TRANSMISSION: {
        "0": S.PAUSED,
        "1": S.QUEUED,
        "2": S.CHECKING,
        "3": S.QUEUED,
        "4": S.DOWNLOADING,
        "5": S.QUEUED,
        "6": S.SEEDING,
        "stopped": S.PAUSED,
        "check pending": S.QUEUED,
        "checking": S.CHECKING,
        "download pending": S.QUEUED,
        "downloading": S.DOWNLOADING,
        "seed pending": S.QUEUED,
        "seeding": S.SEEDING,
    },
}

del S

DOWNLOADING_STATES = frozenset({
    CanonicalTorrentState.ALLOCATING,
    CanonicalTorrentState.DOWNLOADING,
    CanonicalTorrentState.METADATA_DOWNLOAD,
})
SEEDING_STATES = frozenset({CanonicalTorrentState.SEEDING})
PAUSED_STATES = frozenset({CanonicalTorrentState.PAUSED})
ERRORED_STATES = frozenset({
    CanonicalTorrentState.ERROR,
    CanonicalTorrentState.MISSING_FILES,
})
ACTIVE_STATES = DOWNLOADING_STATES | SEEDING_STATES | frozenset({
    CanonicalTorrentState.STALLED,
    CanonicalTorrentState.CHECKING,
    CanonicalTorrentState.MOVING,
})


def normalize(backend: str, native_state: Union[str, int, None]) -> CanonicalTorrentState:
    """
    Map a native state token to its canonical state.

    Lookup is case-insensitive. Unknown backends and unmapped tokens both
    resolve to UNKNOWN.
    """
    if native_state is None:
        return CanonicalTorrentState.UNKNOWN
    table = STATE_TABLE.get(backend.lower(), {})
    return table.get(str(native_state).strip().lower(), CanonicalTorrentState.UNKNOWN)


def is_downloading(state: CanonicalTorrentState) -> bool:
    return state in DOWNLOADING_STATES


def is_seeding(state: CanonicalTorrentState) -> bool:
    return state in SEEDING_STATES


def is_paused(state: CanonicalTorrentState) -> bool:
    return state in PAUSED_STATES


def is_errored(state: CanonicalTorrentState) -> bool:
    return state in ERRORED_STATES


def is_active(state: CanonicalTorrentState) -> bool:
    """Anything doing I/O: downloading, seeding, checking or moving."""
    return state in ACTIVE_STATES
