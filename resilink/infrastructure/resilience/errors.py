"""Error taxonomy and failure classification for the resilience layer.

Only connectivity-loss failures may be queued for replay. Rate-limit
failures feed admission backoff instead. Everything else is the caller's
business.
"""

import asyncio
import enum
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

NETWORK_ERROR_CODES = frozenset({"ECONNABORTED", "ERR_NETWORK", "NETWORK_ERROR", "TIMEOUT"})
NETWORK_ERROR_PATTERNS = ("network error",)

_MISSING = object()


# --- Custom Exceptions ---
class ResilienceError(Exception):
    """Base class for errors raised by the resilience layer."""


class AdmissionDeniedError(ResilienceError):
    """Raised by execute() when a call is denied and no cached data exists."""
    def __init__(self, key: str, retry_in: float):
        self.key = key
        self.retry_in = retry_in
        super().__init__(f"Call to '{key}' denied by admission control; next allowed in {retry_in:.1f}s")


class RetryConditionNotMetError(ResilienceError):
    """Raised by enqueue() when the retry condition rejects the failure."""
    def __init__(self, original_error: Optional[BaseException] = None):
        self.original_error = original_error
        super().__init__("Retry condition not met")


class ErrorKind(str, enum.Enum):
    """Failure classes used for handling decisions and logging."""
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    CLIENT = "client"
    UNKNOWN = "unknown"


def get_status_code(error: Any) -> Optional[int]:
    """Extracts an HTTP status code from an error or its response, if any."""
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(error, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def is_network_error(error: Any) -> bool:
    """Checks whether a failure means the request never got a response.

    Matches transport timeouts and connection failures, known network error
    codes, network error messages, and errors whose response is missing.
    """
    if error is None or not isinstance(error, BaseException):
        return False

    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    if getattr(error, "code", None) in NETWORK_ERROR_CODES:
        return True

    message = str(error).lower()
    if any(pattern in message for pattern in NETWORK_ERROR_PATTERNS):
        return True

    # An error shaped like an HTTP failure but carrying no response
    response = getattr(error, "response", _MISSING)
    if response is not _MISSING and response is None:
        return True

    return False


def is_rate_limit_error(error: Any) -> bool:
    """Checks whether the server signalled that the client calls too fast."""
    return get_status_code(error) == 429


def classify_error(error: Any) -> ErrorKind:
    """Classifies a failure for handling and logging."""
    if is_network_error(error):
        return ErrorKind.NETWORK

    status = get_status_code(error)
    if status is None:
        return ErrorKind.UNKNOWN
    if status >= 500:
        return ErrorKind.SERVER
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if status == 401:
        return ErrorKind.AUTHENTICATION
    if status == 403:
        return ErrorKind.AUTHORIZATION
    if status >= 400:
        return ErrorKind.CLIENT
    return ErrorKind.UNKNOWN


def describe_error(error: Any) -> str:
    """Short 'Type: message' text for log records."""
    if error is None:
        return "None"
    return f"{type(error).__name__}: {error}"
