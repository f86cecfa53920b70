"""
Graceful degradation policy.

Pure decision functions consumed by the UI layer: given a failure and a
static fallback dataset, decide what to render and whether to keep or
replace the data currently on screen. Nothing here performs I/O or raises.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from fetchcache.schemas import DegradationDecision, DegradationStrategy, ErrorDisplay
from fetchcache.resilience.errors import (
    ErrorCategory,
    RETRYABLE_CATEGORIES,
    classify_error,
    error_severity,
)

logger = logging.getLogger("resilience.degradation")

STALE_DATA_MESSAGE = "Showing previously loaded data. Some information may be outdated."

# category -> (code, message, recovery guidance)
ERROR_MESSAGES: Dict[ErrorCategory, Tuple[str, str, str]] = {
    ErrorCategory.NETWORK: (
        "NETWORK_ERROR",
        "Unable to connect to the server. Please check your internet connection and try again.",
        "Check your internet connection and try again. If the problem persists, "
        "the service may be temporarily unavailable.",
    ),
    ErrorCategory.AUTHENTICATION: (
        "AUTHENTICATION_REQUIRED",
        "Your session has expired. Please sign in again to continue.",
        "Please sign in again to access this information.",
    ),
    ErrorCategory.SERVER: (
        "SERVER_ERROR",
        "The server is experiencing issues. Please try again in a few moments.",
        "This is a temporary issue. Please wait a moment and try again.",
    ),
    ErrorCategory.RATE_LIMIT: (
        "RATE_LIMITED",
        "Too many requests. Please wait a moment before trying again.",
        "Please wait 30 seconds before trying again to avoid being rate limited.",
    ),
    ErrorCategory.VALIDATION: (
        "VALIDATION_ERROR",
        "Invalid data provided. Please check your information and try again.",
        "Please ensure all required information is provided correctly.",
    ),
    ErrorCategory.CANCELLED: (
        "REQUEST_CANCELLED",
        "Request was cancelled.",
        "The request was cancelled. You can try again if needed.",
    ),
    ErrorCategory.UNKNOWN: (
        "UNKNOWN_ERROR",
        "An unexpected error occurred.",
        "An unexpected error occurred. Please try again or contact support "
        "if the problem persists.",
    ),
}


@dataclass(frozen=True)
class DegradationContext:
    """
    What the calling view knows about its own state.

    Attributes:
        feature: Name of the view/resource, used in messages and logs
        is_retry: True if this load was triggered by a retry
        retry_count: Number of retries the view has already made
        has_displayed_data: True if the view is currently showing data
    """
    feature: str = "data"
    is_retry: bool = False
    retry_count: int = 0
    has_displayed_data: bool = False

    @property
    def is_first_attempt(self) -> bool:
        return not self.is_retry and self.retry_count == 0


def _has_content(data: Any) -> bool:
    if data is None:
        return False
    try:
        return len(data) > 0
    except TypeError:
        return True


def decide(
    context: Optional[DegradationContext],
    error: Optional[BaseException],
    fallback_data: Any = None,
) -> DegradationDecision:
    """
    Decide how the UI should degrade after a failed fetch.

    Args:
        context: State of the calling view (defaults to a first attempt
                 with nothing displayed)
        error: The surfaced failure
        fallback_data: Static default payload supplied by the caller

    Returns:
        DegradationDecision; fallback_data is only set when the UI
        should display it
    """
    context = context or DegradationContext()
    category = classify_error(error)
    severity = error_severity(category)
    seed = fallback_data if context.is_first_attempt and _has_content(fallback_data) else None

    if category == ErrorCategory.CANCELLED:
        decision = DegradationDecision(
            strategy=DegradationStrategy.USE_CACHED_DATA,
            category=category,
            severity=severity,
            should_report=False,
        )

    elif category == ErrorCategory.AUTHENTICATION:
        decision = DegradationDecision(
            strategy=DegradationStrategy.REDIRECT_TO_AUTH,
            category=category,
            severity=severity,
            fallback_message=f"Please sign in to view your {context.feature}.",
        )

    elif category in RETRYABLE_CATEGORIES:
        if context.has_displayed_data:
            decision = DegradationDecision(
                strategy=DegradationStrategy.USE_CACHED_DATA,
                category=category,
                severity=severity,
                fallback_message=STALE_DATA_MESSAGE,
                is_stale=True,
            )
        else:
            decision = DegradationDecision(
                strategy=DegradationStrategy.SHOW_EMPTY_STATE,
                category=category,
                severity=severity,
                fallback_data=seed,
                fallback_message=(
                    STALE_DATA_MESSAGE if seed is not None else
                    f"Unable to load {context.feature}. "
                    "Please try again when your connection is restored."
                ),
                is_stale=seed is not None,
            )

    else:
        decision = DegradationDecision(
            strategy=DegradationStrategy.SHOW_ERROR_STATE,
            category=category,
            severity=severity,
            fallback_data=seed,
            fallback_message=STALE_DATA_MESSAGE if seed is not None else None,
            is_stale=seed is not None,
        )

    logger.debug(
        f"Degradation for {context.feature}: {category.value} -> {decision.strategy.value}"
        f"{' (with fallback)' if decision.use_fallback else ''}"
    )
    return decision


def describe_error(error: Optional[BaseException]) -> ErrorDisplay:
    """Build the user-facing description of a failure."""
    category = classify_error(error)
    code, message, guidance = ERROR_MESSAGES[category]
    return ErrorDisplay(
        message=message,
        code=code,
        category=category,
        severity=error_severity(category),
        is_retryable=category in RETRYABLE_CATEGORIES,
        requires_auth=category == ErrorCategory.AUTHENTICATION,
        recovery_guidance=guidance,
    )
