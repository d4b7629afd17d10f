"""
Provider Registry
Builds clients from connection records by provider kind and runs connection
tests across many configured instances at once.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Type, Union

from .arr_client import ArrClient
from .config import ProviderConnectionConfig
from .download_client import DownloadClient
from .exceptions import BraidarrError, ConfigurationError
from .models import ConnectionTestResult
from .prowlarr_client import ProwlarrClient
from .qbittorrent_client import QBittorrentClient
from .radarr_client import RadarrClient
from .retry import RetryPolicy
from .sonarr_client import SonarrClient
from .transmission_client import TransmissionClient

logger = logging.getLogger(__name__)

ProviderClient = Union[ArrClient, DownloadClient]

PROVIDERS: Dict[str, Type] = {
    "sonarr": SonarrClient,
    "radarr": RadarrClient,
    "prowlarr": ProwlarrClient,
    "qbittorrent": QBittorrentClient,
    "transmission": TransmissionClient,
}

ARR_KINDS = ("sonarr", "radarr", "prowlarr")
DOWNLOAD_CLIENT_KINDS = ("qbittorrent", "transmission")


@dataclass
class ProviderEntry:
    """One configured instance to test."""
    kind: str
    config: ProviderConnectionConfig

    @property
    def label(self) -> str:
        return self.config.name or f"{self.kind}@{self.config.base_url}"


def create_client(
    kind: str,
    config: ProviderConnectionConfig,
    default_policy: Optional[RetryPolicy] = None,
) -> ProviderClient:
    """
    Build the client for ``kind``.

    Raises:
        ConfigurationError: unknown kind, or the config is not usable for it
    """
    client_cls = PROVIDERS.get(kind.lower())
    if client_cls is None:
        raise ConfigurationError(f"Unknown provider kind: {kind}", ", ".join(sorted(PROVIDERS)))
    return client_cls(config, default_policy=default_policy)


async def test_connection(
    kind: str,
    config: ProviderConnectionConfig,
    default_policy: Optional[RetryPolicy] = None,
) -> ConnectionTestResult:
    """Test one instance. Configuration problems come back as a failed result."""
    try:
        client = create_client(kind, config, default_policy=default_policy)
    except BraidarrError as e:
        logger.warning(f"Cannot test {kind}: {e}")
        return ConnectionTestResult.failure(e.message)

    try:
        return await client.test_connection()
    finally:
        await client.close()


async def test_all(
    entries: Sequence[ProviderEntry],
    default_policy: Optional[RetryPolicy] = None,
) -> List[ConnectionTestResult]:
    """Test every entry concurrently. One failure never hides the others."""
    results = await asyncio.gather(
        *(test_connection(entry.kind, entry.config, default_policy) for entry in entries),
        return_exceptions=True,
    )

    outcomes: List[ConnectionTestResult] = []
    for entry, result in zip(entries, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            logger.error(f"Connection test for {entry.label} failed unexpectedly: {result}")
            result = ConnectionTestResult.failure(str(result) or type(result).__name__)
        outcomes.append(result)

    connected = sum(1 for r in outcomes if r.connected)
    logger.info(f"Connection tests finished: {connected}/{len(outcomes)} reachable")
    return outcomes

