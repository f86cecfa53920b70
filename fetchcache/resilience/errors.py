"""
Tagged error variants and their classification.

The network collaborator raises one of the FetchError subclasses below.
classify_error() maps any exception (tagged or not) onto an ErrorCategory
with an explicit, exhaustive set of cases.
"""
import asyncio
from enum import Enum
from typing import List, Optional

import requests


class ErrorCategory(Enum):
    """Categories of fetch failures with different handling."""
    NETWORK = "network"                 # Retryable
    AUTHENTICATION = "authentication"   # Re-login required, never retried
    SERVER = "server"                   # Retryable
    RATE_LIMIT = "rate_limit"           # Retryable with a minimum backoff
    VALIDATION = "validation"           # Never retried
    CANCELLED = "cancelled"             # Not an error for reporting purposes
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels used for logging and display."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


RETRYABLE_CATEGORIES = frozenset({
    ErrorCategory.NETWORK,
    ErrorCategory.SERVER,
    ErrorCategory.RATE_LIMIT,
})

SEVERITY_BY_CATEGORY = {
    ErrorCategory.NETWORK: ErrorSeverity.MEDIUM,
    ErrorCategory.AUTHENTICATION: ErrorSeverity.HIGH,
    ErrorCategory.SERVER: ErrorSeverity.CRITICAL,
    ErrorCategory.RATE_LIMIT: ErrorSeverity.MEDIUM,
    ErrorCategory.VALIDATION: ErrorSeverity.LOW,
    ErrorCategory.CANCELLED: ErrorSeverity.LOW,
    ErrorCategory.UNKNOWN: ErrorSeverity.MEDIUM,
}


# ============================================================================
# Tagged Exceptions
# ============================================================================

class FetchError(Exception):
    """Base class for failures surfaced by the data-fetch layer."""

    category = ErrorCategory.UNKNOWN

    def __init__(self, message: str = "", status: Optional[int] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.status = status


class NetworkError(FetchError):
    """Raised when the backend could not be reached or timed out."""
    category = ErrorCategory.NETWORK


class AuthenticationError(FetchError):
    """Raised when credentials are expired, missing or rejected."""
    category = ErrorCategory.AUTHENTICATION


class ServerError(FetchError):
    """Raised on 5xx responses."""
    category = ErrorCategory.SERVER


class RateLimitError(FetchError):
    """Raised when the backend throttles us (HTTP 429)."""
    category = ErrorCategory.RATE_LIMIT

    def __init__(
        self,
        message: str = "",
        status: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status=status)
        self.retry_after = retry_after


class ValidationError(FetchError):
    """Raised when the request itself was rejected (4xx other than auth/429)."""
    category = ErrorCategory.VALIDATION


class FetchCancelled(FetchError):
    """
    Raised when a cancellation token stops an operation.

    Callers drop this silently; it is never retried or reported.
    """
    category = ErrorCategory.CANCELLED

    def __init__(self, message: str = "Request was cancelled"):
        super().__init__(message)


class RetryExhaustedError(FetchError):
    """Raised when every allowed attempt failed with a retryable error."""

    def __init__(
        self,
        last_error: BaseException,
        attempts: int,
        history: Optional[List] = None,
    ):
        super().__init__(
            f"Failed after {attempts} attempt{'s' if attempts != 1 else ''}: {last_error}",
            status=getattr(last_error, "status", None),
        )
        self.last_error = last_error
        self.attempts = attempts
        self.history = history or []

    @property
    def category(self) -> ErrorCategory:
        return classify_error(self.last_error)


# ============================================================================
# Classification
# ============================================================================

def category_for_status(status: Optional[int]) -> ErrorCategory:
    """Map an HTTP status code to an error category."""
    if status is None:
        return ErrorCategory.UNKNOWN
    if status in (401, 403):
        return ErrorCategory.AUTHENTICATION
    if status == 429:
        return ErrorCategory.RATE_LIMIT
    if 400 <= status < 500:
        return ErrorCategory.VALIDATION
    if status >= 500:
        return ErrorCategory.SERVER
    return ErrorCategory.UNKNOWN


def error_for_status(
    status: int,
    message: str = "",
    retry_after: Optional[float] = None,
) -> FetchError:
    """Build the tagged exception for a failed HTTP response."""
    category = category_for_status(status)
    message = message or f"HTTP {status}"

    if category == ErrorCategory.AUTHENTICATION:
        return AuthenticationError(message, status=status)
    if category == ErrorCategory.RATE_LIMIT:
        return RateLimitError(message, status=status, retry_after=retry_after)
    if category == ErrorCategory.VALIDATION:
        return ValidationError(message, status=status)
    if category == ErrorCategory.SERVER:
        return ServerError(message, status=status)
    return FetchError(message, status=status)


def classify_error(error: Optional[BaseException]) -> ErrorCategory:
    """
    Classify an exception into an ErrorCategory.

    Args:
        error: Any exception (or None)

    Returns:
        The category; UNKNOWN for anything not listed
    """
    if error is None:
        return ErrorCategory.UNKNOWN

    # Tagged errors carry their own category
    if isinstance(error, FetchError):
        return error.category

    if isinstance(error, asyncio.CancelledError):
        return ErrorCategory.CANCELLED

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.NETWORK

    if isinstance(error, (requests.Timeout, requests.ConnectionError)):
        return ErrorCategory.NETWORK

    if isinstance(error, requests.HTTPError):
        response = error.response
        return category_for_status(response.status_code if response is not None else None)

    if isinstance(error, ConnectionError):
        return ErrorCategory.NETWORK

    return ErrorCategory.UNKNOWN


def is_retryable(error: BaseException) -> bool:
    """True if the executor may retry after this error."""
    return classify_error(error) in RETRYABLE_CATEGORIES


def error_severity(category: ErrorCategory) -> ErrorSeverity:
    """Severity for a category."""
    return SEVERITY_BY_CATEGORY.get(category, ErrorSeverity.MEDIUM)
