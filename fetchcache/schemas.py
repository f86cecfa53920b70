"""
Pydantic schemas for payloads handed to UI components.
"""
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from fetchcache.resilience.errors import ErrorCategory, ErrorSeverity


class DegradationStrategy(Enum):
    """What the UI should render after a failed fetch."""
    USE_CACHED_DATA = "use_cached_data"      # Keep whatever is displayed
    SHOW_EMPTY_STATE = "show_empty_state"
    REDIRECT_TO_AUTH = "redirect_to_auth"
    SHOW_ERROR_STATE = "show_error_state"


# ===== ERROR SCHEMAS =====

class ErrorDisplay(BaseModel):
    """User-friendly description of a failure"""
    message: str
    code: str
    category: ErrorCategory
    severity: ErrorSeverity
    is_retryable: bool
    requires_auth: bool = False
    recovery_guidance: Optional[str] = None


# ===== DEGRADATION SCHEMAS =====

class DegradationDecision(BaseModel):
    """Outcome of the degradation policy for one failure"""
    strategy: DegradationStrategy
    category: ErrorCategory
    severity: ErrorSeverity
    fallback_data: Optional[Any] = None
    fallback_message: Optional[str] = None
    is_stale: bool = False       # Shown data is cached/fallback, not fresh
    should_report: bool = True   # False for cancellations

    @property
    def use_fallback(self) -> bool:
        """True if the UI should display fallback_data."""
        return self.fallback_data is not None
