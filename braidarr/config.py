"""
Configuration for Braidarr.
Process-wide settings come from the environment, per-instance connection
records are supplied by the caller and validated on construction.
"""

import re
from dataclasses import dataclass, field
from typing import Optional, Union
from urllib.parse import urlsplit

from pydantic import field_validator
from pydantic_settings import BaseSettings

from .exceptions import ConfigurationError, InvalidBaseUrlError, InvalidCredentialError
from .retry import RetryPolicy

API_KEY_MIN_LENGTH = 10
API_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Retry defaults applied when a connection has no override
    retry_max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    retry_backoff_factor: float = 2.0
    retry_jitter: bool = True

    # Default request timeout in seconds
    request_timeout: float = 30.0

    # Plex PIN sign-in
    pin_max_attempts: int = 300
    pin_session_ttl: float = 600.0
    pin_sweep_interval: float = 60.0
    plex_product: str = "Braidarr"
    plex_version: str = "0.1.0"
    plex_platform: str = "Web"
    plex_device: str = "Braidarr"

    # Download clients
    download_client_session_ttl: float = 3600.0

    # Logging settings
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_format: str = "text"  # "text" or "json"
    log_max_size_mb: int = 10
    log_backup_count: int = 5

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("text", "json"):
            raise ValueError("log_format must be 'text' or 'json'")
        return value

    def retry_policy(self) -> RetryPolicy:
        """Default retry policy built from these settings."""
        return RetryPolicy(
            max_retries=self.retry_max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            backoff_factor=self.retry_backoff_factor,
            jitter=self.retry_jitter,
        )

    class Config:
        env_prefix = "BRAIDARR_"
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


@dataclass(frozen=True)
class ApiKeyCredential:
    """API key sent in the X-Api-Key header."""
    api_key: str

    def __repr__(self) -> str:
        return "ApiKeyCredential(api_key='***')"


@dataclass(frozen=True)
class BasicCredential:
    """Username and password pair."""
    username: str
    password: str = ""

    def __repr__(self) -> str:
        return f"BasicCredential(username={self.username!r}, password='***')"


Credential = Union[ApiKeyCredential, BasicCredential]


def normalize_url(url: str) -> str:
    """Strip whitespace and trailing slashes, and default the scheme to http."""
    url = url.strip()
    if url and not re.match(r"^https?://", url, re.IGNORECASE):
        url = f"http://{url}"
    return url.rstrip("/")


def build_base_url(host: str, port: int, use_ssl: bool = False, url_base: str = "") -> str:
    """Build a base URL from host, port and an optional path prefix."""
    protocol = "https" if use_ssl else "http"
    path = url_base.strip("/") if url_base else ""
    url = f"{protocol}://{host}:{port}"
    return f"{url}/{path}" if path else url


def validate_api_key(api_key: str) -> None:
    """Raise InvalidCredentialError unless the key has the expected shape."""
    if not api_key or len(api_key) < API_KEY_MIN_LENGTH:
        raise InvalidCredentialError(
            "API key is required",
            f"must be at least {API_KEY_MIN_LENGTH} characters",
        )
    if not API_KEY_PATTERN.match(api_key):
        raise InvalidCredentialError(
            "API key has an invalid format",
            "only letters, digits, '-' and '_' are allowed",
        )


@dataclass
class ProviderConnectionConfig:
    """
    Connection record for one configured provider instance.

    The base URL is normalized on construction. An empty URL or a credential
    of the wrong type fails immediately.
    """
    base_url: str
    credential: Optional[Credential] = None
    timeout: float = 30.0
    retry_policy: Optional[RetryPolicy] = None
    verify_ssl: bool = True
    name: Optional[str] = None
    extra: dict = field(default_factory=dict)

    def __post_init__(self):
        self.base_url = normalize_url(self.base_url or "")
        if not self.base_url:
            raise InvalidBaseUrlError("Base URL is required")
        try:
            host = urlsplit(self.base_url).hostname
        except ValueError as e:
            raise InvalidBaseUrlError("Base URL is malformed", str(e)) from e
        if not host:
            raise InvalidBaseUrlError("Base URL has no host", self.base_url)
        if self.credential is not None and not isinstance(
            self.credential, (ApiKeyCredential, BasicCredential)
        ):
            raise InvalidCredentialError(
                "Unsupported credential type", type(self.credential).__name__
            )
        if isinstance(self.credential, BasicCredential) and not self.credential.username:
            raise InvalidCredentialError("Username is required")
        if self.timeout <= 0:
            raise ConfigurationError("Timeout must be positive", str(self.timeout))

    @classmethod
    def from_host(
        cls,
        host: str,
        port: int,
        use_ssl: bool = False,
        url_base: str = "",
        **kwargs,
    ) -> "ProviderConnectionConfig":
        """Build a config from the host/port form download clients are set up with."""
        if not host:
            raise InvalidBaseUrlError("Host is required")
        return cls(base_url=build_base_url(host, port, use_ssl, url_base), **kwargs)

    @property
    def api_key(self) -> Optional[str]:
        if isinstance(self.credential, ApiKeyCredential):
            return self.credential.api_key
        return None

    def effective_retry_policy(self, default: RetryPolicy = None) -> RetryPolicy:
        """Per-instance override, else the given default, else library defaults."""
        return self.retry_policy or default or RetryPolicy()
