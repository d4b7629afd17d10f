"""
Plex Client
plex.tv PIN sign-in, account and server discovery, and direct server calls.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .classifier import classify
from .exceptions import ClassifiedError, ErrorKind, NotAuthenticatedError
from .logging_config import LogContext
from .models import ConnectionTestResult
from .retry import RetryHandler, RetryPolicy
from .transport import HttpTransport

logger = logging.getLogger(__name__)

PLEX_TV_URL = "https://plex.tv"
PLEX_LINK_URL = "https://plex.tv/link"
PIN_REQUEST_POLICY = RetryPolicy(max_retries=2)


@dataclass(frozen=True)
class PlexIdentity:
    """How this application introduces itself to Plex."""
    product: str = "Braidarr"
    version: str = "0.1.0"
    platform: str = "Web"
    platform_version: str = "1.0.0"
    device: str = "Browser"
    device_name: str = "Braidarr Web Client"
    device_vendor: str = "Braidarr"
    model: str = "Web"

    def headers(self, client_identifier: str) -> Dict[str, str]:
        return {
            "X-Plex-Product": self.product,
            "X-Plex-Version": self.version,
            "X-Plex-Client-Identifier": client_identifier,
            "X-Plex-Platform": self.platform,
            "X-Plex-Platform-Version": self.platform_version,
            "X-Plex-Device": self.device,
            "X-Plex-Device-Name": self.device_name,
            "X-Plex-Device-Vendor": self.device_vendor,
            "X-Plex-Model": self.model,
            "Accept": "application/json",
        }


@dataclass
class PinAuthState:
    """What a caller needs to show the user a pairing code."""
    pin_id: int
    pin_code: str
    client_identifier: str
    expires_at: Optional[str] = None
    qr_url: Optional[str] = None
    link_url: str = PLEX_LINK_URL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pin_id": self.pin_id,
            "pin_code": self.pin_code,
            "client_identifier": self.client_identifier,
            "expires_at": self.expires_at,
            "qr_url": self.qr_url,
            "link_url": self.link_url,
        }


@dataclass
class PinStatus:
    authenticated: bool
    auth_token: Optional[str] = None


class PlexClient:
    """
    Client for plex.tv and Plex Media Server.

    One instance per sign-in attempt: the generated client identifier is the
    key Plex ties the PIN to.
    """

    def __init__(
        self,
        identity: Optional[PlexIdentity] = None,
        client_identifier: Optional[str] = None,
        retry_handler: Optional[RetryHandler] = None,
        timeout: float = 30.0,
    ):
        self.identity = identity or PlexIdentity()
        self.client_identifier = client_identifier or str(uuid.uuid4())
        self.retry_handler = retry_handler or RetryHandler()
        self.timeout = timeout
        self.transport = HttpTransport(
            PLEX_TV_URL,
            timeout=timeout,
            headers=self.identity.headers(self.client_identifier),
        )
        self._auth_token: Optional[str] = None

    def set_auth_token(self, token: str) -> None:
        self._auth_token = token

    def clear_auth_token(self) -> None:
        self._auth_token = None

    @property
    def is_authenticated(self) -> bool:
        return self._auth_token is not None

    async def close(self):
        await self.transport.close()

    async def _call(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        policy: Optional[RetryPolicy] = None,
        transport: Optional[HttpTransport] = None,
        token: Optional[str] = None,
    ) -> Any:
        transport = transport or self.transport
        token = token or self._auth_token
        headers = {"X-Plex-Token": token} if token else None

        async def call():
            response = await transport.request(method, path, params=params, headers=headers)
            return response.json()

        with LogContext(provider="plex", client_identifier=self.client_identifier):
            return await self.retry_handler.execute(
                call, policy=policy, operation_id=f"plex {method} {path}"
            )

    def _server_transport(self, server_url: str, timeout: float) -> HttpTransport:
        return HttpTransport(
            server_url.rstrip("/"),
            timeout=timeout,
            headers=self.identity.headers(self.client_identifier),
        )

    def _require_token(self) -> None:
        if not self._auth_token:
            raise NotAuthenticatedError("No authentication token available")

    # Sign-in

    async def request_pin(self, strong: bool = True) -> PinAuthState:
        """Ask plex.tv for a new pairing PIN."""
        data = await self._call(
            "POST", "/api/v2/pins", params={"strong": strong}, policy=PIN_REQUEST_POLICY
        )
        return PinAuthState(
            pin_id=data["id"],
            pin_code=data["code"],
            client_identifier=self.client_identifier,
            expires_at=data.get("expiresAt"),
            qr_url=data.get("qr"),
        )

    async def check_pin(self, pin_id: int) -> PinStatus:
        """
        Ask whether the user approved the PIN.

        A 404 means the PIN is gone on the Plex side and reads as not
        authenticated. On approval the token is kept on this client.
        """
        try:
            data = await self._call("GET", f"/api/v2/pins/{pin_id}") or {}
        except ClassifiedError as e:
            if e.kind is ErrorKind.NOT_FOUND:
                return PinStatus(authenticated=False)
            raise

        token = data.get("authToken")
        if token:
            self.set_auth_token(token)
            return PinStatus(authenticated=True, auth_token=token)
        return PinStatus(authenticated=False)

    # Account

    async def get_current_user(self) -> Dict[str, Any]:
        self._require_token()
        return await self._call("GET", "/api/v2/user")

    async def get_servers(self) -> List[Dict[str, Any]]:
        """Media servers on the account."""
        self._require_token()
        resources = await self._call(
            "GET", "/api/v2/resources", params={"includeHttps": 1, "includeRelay": 1}
        ) or []
        return [resource for resource in resources if resource.get("provides") == "server"]

    # Server

    async def get_libraries(self, server_url: str, server_token: str) -> List[Dict[str, Any]]:
        if not server_url or not server_token:
            raise NotAuthenticatedError("Server URL and token are required")
        async with self._server_transport(server_url, timeout=15.0) as transport:
            data = await self._call("GET", "/library/sections", transport=transport, token=server_token)
        return ((data or {}).get("MediaContainer") or {}).get("Directory") or []

    async def test_server_connection(self, server_url: str, server_token: str) -> ConnectionTestResult:
        """Probe a server's identity endpoint. Never raises."""
        if not server_url or not server_token:
            return ConnectionTestResult.failure("Server URL and token are required")
        try:
            async with self._server_transport(server_url, timeout=10.0) as transport:
                data = await self._call("GET", "/identity", transport=transport, token=server_token)
        except Exception as e:
            error = classify(e)
            logger.warning(f"Plex server test failed ({error.kind.value}): {error.message}")
            return ConnectionTestResult.failure(error.message)

        container = (data or {}).get("MediaContainer") or {}
        return ConnectionTestResult(
            connected=True,
            version=container.get("version"),
            details={
                key: container.get(key)
                for key in ("machineIdentifier", "version", "platform", "platformVersion")
                if container.get(key) is not None
            },
        )
