"""
Retrying fetch executor.

Wraps a network call with bounded retries, exponential backoff and a
cooperative cancellation token. Failures are split into retryable and
terminal by a classify() callback; terminal failures abort immediately.

State machine for one invocation:

    Idle -> Attempting -> Success
                       -> Retrying -> Attempting
                       -> Cancelled
                       -> Exhausted
"""
import asyncio
import logging
import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)

from .cancellation import CancellationToken
from .errors import (
    FetchCancelled,
    NetworkError,
    RateLimitError,
    RetryExhaustedError,
    is_retryable,
)

logger = logging.getLogger("resilience.retry")


class RetryState(Enum):
    """States of a single executor invocation."""
    IDLE = "idle"
    ATTEMPTING = "attempting"
    RETRYING = "retrying"         # Backoff wait between attempts
    SUCCESS = "success"
    CANCELLED = "cancelled"
    EXHAUSTED = "exhausted"


@dataclass
class RetryAttempt:
    """Record of one failed attempt within an executor invocation."""
    attempt_number: int
    error: BaseException
    is_retryable: bool
    delay_before_next: Optional[float] = None


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay before the first retry (seconds)
        max_delay: Upper bound for any single backoff wait
        jitter: Max random seconds added to each computed delay
        rate_limit_min_delay: Floor applied after a RateLimitError
        attempt_timeout: Per-attempt timeout, None for no limit
    """
    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 1.0
    rate_limit_min_delay: float = 5.0
    attempt_timeout: Optional[float] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.jitter < 0 or self.rate_limit_min_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")

    @classmethod
    def from_settings(cls, settings=None) -> "RetryPolicy":
        """Build a policy from application settings."""
        if settings is None:
            from config.settings import settings
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            jitter=settings.retry_jitter_seconds,
            rate_limit_min_delay=settings.retry_rate_limit_min_delay_seconds,
            attempt_timeout=settings.retry_attempt_timeout_seconds,
        )


class BackoffWait:
    """
    tenacity wait strategy: exponential with jitter, capped at max_delay.

    Delays never decrease within one invocation. A RateLimitError raises
    the delay to at least rate_limit_min_delay (or the server's retry_after,
    whichever is larger), still capped at max_delay.
    """

    def __init__(self, policy: RetryPolicy, rng: Callable[[], float] = random.random):
        self._policy = policy
        self._rng = rng
        self._last_delay = 0.0

    def __call__(self, retry_state: RetryCallState) -> float:
        policy = self._policy
        exponent = min(retry_state.attempt_number - 1, 32)
        delay = policy.base_delay * (2.0 ** exponent) + policy.jitter * self._rng()

        error = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(error, RateLimitError):
            floor = max(policy.rate_limit_min_delay, error.retry_after or 0.0)
            delay = max(delay, floor)

        delay = max(min(delay, policy.max_delay), self._last_delay)
        self._last_delay = delay
        return delay


async def _run_attempt(
    operation: Callable[[], Awaitable[Any]],
    timeout: Optional[float],
) -> Any:
    if timeout is None:
        return await operation()
    try:
        return await asyncio.wait_for(operation(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise NetworkError(f"Attempt timed out after {timeout}s") from exc


async def fetch_with_retry(
    operation: Callable[[], Awaitable[Any]],
    max_attempts: Optional[int] = None,
    token: Optional[CancellationToken] = None,
    classify: Callable[[BaseException], bool] = is_retryable,
    policy: Optional[RetryPolicy] = None,
    description: str = "operation",
    rng: Callable[[], float] = random.random,
    on_state: Optional[Callable[[RetryState], None]] = None,
) -> Any:
    """
    Run operation() with bounded retries and cooperative cancellation.

    Args:
        operation: Zero-argument coroutine function performing the call
        max_attempts: Overrides policy.max_attempts when given
        token: Cancellation token checked at every checkpoint
        classify: Returns True if an error is retryable
        policy: Backoff configuration (defaults to RetryPolicy())
        description: Label used in log messages
        rng: Jitter source, returns a float in [0, 1)
        on_state: Called with each RetryState transition

    Returns:
        The operation's result

    Raises:
        FetchCancelled: The token was cancelled; never retried or reported
        RetryExhaustedError: Every attempt failed with a retryable error
        Exception: The first terminal error, re-raised unchanged
    """
    policy = policy or RetryPolicy()
    if max_attempts is not None:
        policy = replace(policy, max_attempts=max_attempts)
    token = token or CancellationToken()
    history: List[RetryAttempt] = []

    def notify(state: RetryState) -> None:
        if on_state is not None:
            on_state(state)

    def should_retry(error: BaseException) -> bool:
        if isinstance(error, FetchCancelled) or not isinstance(error, Exception):
            retryable = False
        else:
            retryable = bool(classify(error))
        history.append(RetryAttempt(
            attempt_number=len(history) + 1,
            error=error,
            is_retryable=retryable,
        ))
        return retryable

    def before_sleep(retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep
        if history:
            history[-1].delay_before_next = delay
        notify(RetryState.RETRYING)
        logger.warning(
            f"{description} failed (attempt {retry_state.attempt_number}/"
            f"{policy.max_attempts}), retrying in {delay:.2f}s: "
            f"{retry_state.outcome.exception()}"
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=BackoffWait(policy, rng=rng),
        retry=retry_if_exception(should_retry),
        sleep=token.sleep,
        before_sleep=before_sleep,
        reraise=False,
    )

    result = None
    notify(RetryState.IDLE)
    try:
        async for attempt in retrying:
            token.raise_if_cancelled()
            notify(RetryState.ATTEMPTING)
            with attempt:
                try:
                    result = await _run_attempt(operation, policy.attempt_timeout)
                except Exception:
                    # A cancel that landed during the call wins over its error
                    token.raise_if_cancelled()
                    raise
                # End-of-attempt checkpoint: a result that lands after cancel is dropped
                token.raise_if_cancelled()
    except FetchCancelled:
        notify(RetryState.CANCELLED)
        logger.info(f"{description} cancelled after {len(history)} failed attempt(s)")
        raise
    except RetryError as exc:
        notify(RetryState.EXHAUSTED)
        last_error = exc.last_attempt.exception()
        attempts = exc.last_attempt.attempt_number
        logger.error(f"{description} exhausted {attempts} attempts: {last_error}")
        raise RetryExhaustedError(last_error, attempts=attempts, history=history) from last_error
    except Exception as exc:
        notify(RetryState.EXHAUSTED)
        logger.warning(f"{description} failed with terminal error: {exc}")
        raise

    notify(RetryState.SUCCESS)
    if history:
        logger.info(f"{description} succeeded after {len(history) + 1} attempts")
    return result
