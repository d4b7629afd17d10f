"""
Arr Family Base Client
Shared system, health, profile, tag and log operations for Sonarr, Radarr and Prowlarr.
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from .classifier import classify
from .config import ApiKeyCredential, ProviderConnectionConfig, validate_api_key
from .exceptions import InvalidCredentialError
from .logging_config import LogContext
from .models import ConnectionTestResult, pick
from .retry import RetryHandler, RetryPolicy
from .transport import HttpTransport

logger = logging.getLogger(__name__)

USER_AGENT = "Braidarr/0.1.0"

SYSTEM_DETAIL_FIELDS = [
    "instanceName",
    "osName",
    "osVersion",
    "isNetCore",
    "isMono",
    "isLinux",
    "isOsx",
    "isWindows",
    "branch",
    "authentication",
    "sqliteVersion",
    "urlBase",
    "runtimeVersion",
    "runtimeName",
]


def extract_version(status: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Get the version string from a system status payload."""
    version = pick(status, "version")
    return str(version) if version is not None else None


def _version_tuple(version: str) -> tuple:
    return tuple(int(part) for part in re.findall(r"\d+", version))


def supports_version(current: Optional[str], minimum: str) -> bool:
    """True when ``current`` is at least ``minimum``, compared numerically."""
    if not current:
        return False
    return _version_tuple(current) >= _version_tuple(minimum)


def shallow_merge(current: Optional[Mapping[str, Any]], changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay caller fields onto the full resource. Nested objects are replaced, not merged."""
    merged = dict(current or {})
    merged.update(changes)
    return merged


class ArrClient:
    """
    Base client for the Arr family.

    Every request goes through a RetryHandler. The API key is checked on
    construction so a bad configuration never reaches the network.
    """

    app_name = "Arr"
    api_version = "v3"

    def __init__(
        self,
        config: ProviderConnectionConfig,
        retry_handler: Optional[RetryHandler] = None,
        default_policy: Optional[RetryPolicy] = None,
    ):
        api_key = config.api_key
        if api_key is None:
            raise InvalidCredentialError(f"{self.app_name} requires an API key")
        validate_api_key(api_key)

        self.config = config
        self.retry_handler = retry_handler or RetryHandler(
            config.effective_retry_policy(default_policy)
        )
        self.transport = HttpTransport(
            config.base_url,
            timeout=config.timeout,
            headers={
                "X-Api-Key": api_key,
                "Accept": "application/json",
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            },
            verify_ssl=config.verify_ssl,
        )

    @classmethod
    def create(cls, base_url: str, api_key: str, **kwargs):
        """Build a client straight from a URL and key."""
        return cls(ProviderConnectionConfig(base_url=base_url, credential=ApiKeyCredential(api_key), **kwargs))

    @property
    def provider(self) -> str:
        return self.app_name.lower()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def close(self):
        await self.transport.close()

    def _path(self, endpoint: str) -> str:
        return f"/api/{self.api_version}/{endpoint.lstrip('/')}"

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        policy: Optional[RetryPolicy] = None,
    ) -> Any:
        """Send one API call through the retry handler and decode the JSON body."""
        path = self._path(endpoint)

        async def call():
            response = await self.transport.request(method, path, params=params, json=json)
            return response.json()

        with LogContext(provider=self.provider, instance=self.config.name):
            return await self.retry_handler.execute(
                call,
                policy=policy,
                operation_id=f"{self.provider} {method} {endpoint}",
            )

    async def _get(self, endpoint: str, **params) -> Any:
        return await self._request("GET", endpoint, params=params)

    async def _post(self, endpoint: str, payload: Any = None, **params) -> Any:
        return await self._request("POST", endpoint, params=params, json=payload)

    async def _put(self, endpoint: str, payload: Any = None, **params) -> Any:
        return await self._request("PUT", endpoint, params=params, json=payload)

    async def _delete(self, endpoint: str, payload: Any = None, **params) -> None:
        await self._request("DELETE", endpoint, params=params, json=payload)

    async def _command(self, name: str, **body) -> Dict[str, Any]:
        """Queue a named background command."""
        logger.info(f"{self.app_name}: queueing command {name}")
        return await self._post("command", {"name": name, **body})

    async def _update_merged(self, endpoint: str, changes: Mapping[str, Any], **params) -> Dict[str, Any]:
        """Fetch the full resource, overlay ``changes``, and PUT the result."""
        current = await self._get(endpoint)
        return await self._put(endpoint, shallow_merge(current, changes), **params)

    # System

    async def test_connection(self) -> ConnectionTestResult:
        """Check the service answers. Never raises."""
        try:
            status = await self.get_system_status()
        except Exception as e:
            error = classify(e)
            logger.warning(f"{self.app_name} connection test failed ({error.kind.value}): {error.message}")
            return ConnectionTestResult.failure(error.message)

        details = {name: pick(status, name) for name in SYSTEM_DETAIL_FIELDS}
        return ConnectionTestResult(
            connected=True,
            version=extract_version(status),
            details={k: v for k, v in details.items() if v is not None},
        )

    async def get_system_status(self) -> Dict[str, Any]:
        return await self._get("system/status")

    async def get_health(self) -> List[Dict[str, Any]]:
        return await self._get("health")

    async def get_quality_profiles(self) -> List[Dict[str, Any]]:
        return await self._get("qualityprofile")

    async def get_root_folders(self) -> List[Dict[str, Any]]:
        return await self._get("rootfolder")

    async def get_tags(self) -> List[Dict[str, Any]]:
        return await self._get("tag")

    async def create_tag(self, label: str) -> Dict[str, Any]:
        return await self._post("tag", {"label": label})

    async def get_download_clients(self) -> List[Dict[str, Any]]:
        return await self._get("downloadclient")

    async def get_indexers(self) -> List[Dict[str, Any]]:
        return await self._get("indexer")

    async def get_logs(
        self,
        page: int = 1,
        page_size: int = 50,
        sort_key: str = "time",
        sort_direction: str = "descending",
    ) -> Dict[str, Any]:
        return await self._get(
            "log",
            page=page,
            pageSize=page_size,
            sortKey=sort_key,
            sortDirection=sort_direction,
        )

    async def clear_logs(self) -> None:
        await self._delete("log")

    def get_application_info(self) -> Dict[str, Any]:
        return {"name": self.app_name, "base_url": self.config.base_url}

    def is_configured(self) -> bool:
        return bool(self.config.base_url and self.config.api_key)
