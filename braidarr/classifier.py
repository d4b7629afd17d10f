"""
Error classification for provider calls.
Turns aiohttp and transport failures into ClassifiedError values with fixed messages.
"""

import asyncio

import aiohttp

from .exceptions import ClassifiedError, ErrorKind

NETWORK_MESSAGE = "No response received from the service. Please check the URL and network connectivity."
TIMEOUT_MESSAGE = "The service did not respond in time. Please try again later."
UNKNOWN_MESSAGE = "An unexpected error occurred."

# status -> (kind, message)
STATUS_MAP = {
    401: (ErrorKind.AUTH_FAILED, "Authentication failed. Please check your credentials."),
    403: (ErrorKind.FORBIDDEN, "Access forbidden. Please check your permissions."),
    404: (ErrorKind.NOT_FOUND, "Resource not found."),
    408: (ErrorKind.TIMEOUT, TIMEOUT_MESSAGE),
    409: (ErrorKind.CONFLICT, "Conflict. The resource may already exist."),
    415: (ErrorKind.UNSUPPORTED_MEDIA, "Unsupported media type. The submitted data was rejected."),
    429: (ErrorKind.UNKNOWN, "Rate limit exceeded. Please try again later."),
}


def classify_status(status: int, cause: BaseException | None = None) -> ClassifiedError:
    """Build a ClassifiedError from an HTTP status code."""
    if status in STATUS_MAP:
        kind, message = STATUS_MAP[status]
        return ClassifiedError(kind, message, http_status=status, cause=cause)
    if 500 <= status <= 599:
        return ClassifiedError(
            ErrorKind.SERVER_ERROR,
            "Service error, try again later.",
            http_status=status,
            cause=cause,
        )
    return ClassifiedError(
        ErrorKind.UNKNOWN,
        f"Request rejected by the service (HTTP {status}).",
        http_status=status,
        cause=cause,
    )


def classify(error: BaseException) -> ClassifiedError:
    """
    Map any failure onto the error taxonomy.

    Pure and total: the same input always yields the same kind, and every
    input yields some ClassifiedError. Errors that are already classified
    pass through untouched.
    """
    if isinstance(error, ClassifiedError):
        return error

    if isinstance(error, aiohttp.ClientResponseError):
        return classify_status(error.status, cause=error)

    # Timeouts first: TimeoutError is an OSError subclass on current Pythons
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, aiohttp.ServerTimeoutError)):
        return ClassifiedError(ErrorKind.TIMEOUT, TIMEOUT_MESSAGE, cause=error)

    if isinstance(error, (aiohttp.ClientConnectionError, ConnectionError, OSError)):
        return ClassifiedError(ErrorKind.NETWORK, NETWORK_MESSAGE, cause=error)

    if isinstance(error, aiohttp.ClientPayloadError):
        return ClassifiedError(ErrorKind.NETWORK, NETWORK_MESSAGE, cause=error)

    return ClassifiedError(ErrorKind.UNKNOWN, UNKNOWN_MESSAGE, cause=error)


def is_network_error(error: BaseException) -> bool:
    """True when no response was received at all."""
    return classify(error).kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT)


def is_server_unavailable(error: BaseException) -> bool:
    """True for gateway and availability failures (502/503/504)."""
    return classify(error).http_status in (502, 503, 504)
