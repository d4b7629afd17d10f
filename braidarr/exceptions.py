"""
Custom exception hierarchy for Braidarr.
Provides the classified error taxonomy shared by every provider client.
"""

from enum import Enum
from typing import Optional


class BraidarrError(Exception):
    """Base exception for all Braidarr errors."""

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


# Configuration errors
class ConfigurationError(BraidarrError):
    """Raised when there's a configuration problem."""

    pass


class InvalidBaseUrlError(ConfigurationError):
    """Raised when a provider base URL is missing or malformed."""

    pass


class InvalidCredentialError(ConfigurationError):
    """Raised when a credential is missing or has the wrong shape."""

    pass


# Classified provider errors
class ErrorKind(Enum):
    """Taxonomy of provider failures."""
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH_FAILED = "auth_failed"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNSUPPORTED_MEDIA = "unsupported_media"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


TRANSIENT_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.SERVER_ERROR})
TRANSIENT_STATUSES = frozenset({408, 429})


class ClassifiedError(BraidarrError):
    """
    A provider failure tagged with its taxonomy kind.

    The message is stable and safe to show to users. The original exception
    is kept in ``cause`` for logging only.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        http_status: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.http_status = http_status
        self.cause = cause

    @property
    def is_transient(self) -> bool:
        """Whether a later attempt could reasonably succeed."""
        return self.kind in TRANSIENT_KINDS or self.http_status in TRANSIENT_STATUSES

    def __repr__(self) -> str:
        return (
            f"ClassifiedError(kind={self.kind.value!r}, "
            f"http_status={self.http_status!r}, message={self.message!r})"
        )


class NotAuthenticatedError(BraidarrError):
    """Raised when an operation needs a token that has not been obtained yet."""

    pass


# PIN authentication session errors
class PinSessionError(BraidarrError):
    """Base exception for PIN session failures."""

    pass


class PinSessionNotFoundError(PinSessionError):
    """Raised when no live session exists for a client identifier."""

    def __init__(self, client_identifier: str):
        super().__init__("Invalid or expired authentication session")
        self.client_identifier = client_identifier


class PinSessionExpiredError(PinSessionError):
    """Raised when a session outlived its time-to-live."""

    def __init__(self, client_identifier: str):
        super().__init__("Authentication session expired. Please start again.")
        self.client_identifier = client_identifier


class PinAttemptsExceededError(PinSessionError):
    """Raised when a session was polled too many times."""

    def __init__(self, client_identifier: str, attempts: int):
        super().__init__("Maximum authentication attempts exceeded. Please start again.")
        self.client_identifier = client_identifier
        self.attempts = attempts


# Download client input errors
class InvalidTorrentError(BraidarrError):
    """Raised when a torrent hash or add request is malformed."""

    pass


class TransportClosedError(BraidarrError):
    """Raised when a request is made on a transport after close()."""

    def __init__(self, base_url: str):
        super().__init__("Client has been closed", base_url)
        self.base_url = base_url
