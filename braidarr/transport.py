"""
HTTP transport shared by all provider clients.
Owns one lazily created aiohttp session and turns non-2xx replies into
aiohttp.ClientResponseError so the classifier sees a uniform failure.
"""

import json as jsonlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from .exceptions import TransportClosedError
from .logging_config import sanitize_url

logger = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    """A fully read HTTP response."""
    status: int
    reason: str
    text: str
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: List[str] = field(default_factory=list)

    def json(self) -> Any:
        """Decode the body as JSON; an empty body decodes to None."""
        if not self.text or not self.text.strip():
            return None
        return jsonlib.loads(self.text)

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


def encode_params(params: Optional[Mapping[str, Any]]) -> Optional[Dict[str, str]]:
    """Drop None values and render booleans the way the *arr APIs expect."""
    if not params:
        return None
    encoded = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        elif isinstance(value, (list, tuple)):
            encoded[key] = ",".join(str(v) for v in value)
        else:
            encoded[key] = str(value)
    return encoded


class HttpTransport:
    """Thin async HTTP layer bound to one base URL."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        headers: Optional[Mapping[str, str]] = None,
        verify_ssl: bool = True,
        auth: Optional[aiohttp.BasicAuth] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = dict(headers or {})
        self.verify_ssl = verify_ssl
        self.auth = auth
        self._session: Optional[aiohttp.ClientSession] = None
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session. Never reopens after close()."""
        if self._closed:
            raise TransportClosedError(self.base_url)
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(ssl=None if self.verify_ssl else False)
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=self.headers,
                auth=self.auth,
            )
        return self._session

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        data: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        raise_for_status: bool = True,
    ) -> HttpResponse:
        """
        Send one request and read the whole body.

        Raises:
            aiohttp.ClientResponseError: on a non-2xx status when raise_for_status is set
            aiohttp.ClientError / asyncio.TimeoutError: on transport failure
        """
        session = await self._get_session()
        url = self.url_for(path)
        safe_url = sanitize_url(url)
        started = time.monotonic()

        logger.debug(f"{method} {safe_url}")
        async with session.request(
            method,
            url,
            params=encode_params(params),
            json=json,
            data=data,
            headers=headers,
        ) as response:
            text = await response.text()
            result = HttpResponse(
                status=response.status,
                reason=response.reason or "",
                text=text,
                headers=dict(response.headers),
                cookies=list(response.headers.getall("Set-Cookie", [])),
            )

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.debug(
            f"{method} {safe_url} -> {result.status}",
            extra={"method": method, "url": safe_url, "status": result.status, "duration_ms": duration_ms},
        )

        if raise_for_status and not 200 <= result.status < 300:
            raise aiohttp.ClientResponseError(
                request_info=response.request_info,
                history=response.history,
                status=result.status,
                message=result.reason,
                headers=response.headers,
            )
        return result

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def close(self):
        """Close the underlying session for good."""
        self._closed = True
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
