"""
Request deduplication to prevent duplicate upstream API calls.

When multiple concurrent callers ask for the same key, only one
underlying call is made and all callers share its outcome.
"""
import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from fetchcache.resilience.cancellation import CancellationToken
from fetchcache.resilience.errors import FetchCancelled

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress upstream request."""
    key: str
    task: "asyncio.Future[Any]"
    subscriber_count: int = 1
    started_at: float = field(default_factory=time.monotonic)


class RequestDeduplicator:
    """
    Ensures concurrent requests for the same key share one underlying call.

    Pattern:
    - First request for a key starts the call and registers it in-flight
      before yielding to the event loop
    - Subsequent requests for the same key await the same task
    - When the task settles, every subscriber receives the same result or
      error and the registration is removed (success, failure or cancel)

    Usage:
        dedup = RequestDeduplicator()
        data = await dedup.run_deduped(
            "customers/42/open-orders?page=1",
            lambda: fetch_open_orders(42),
        )
    """

    def __init__(self):
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            "total_requests": 0,
            "deduplicated_requests": 0,
            "completed_requests": 0,
            "failed_requests": 0,
        }

    async def run_deduped(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        token: Optional[CancellationToken] = None,
    ) -> Any:
        """
        Either join an existing in-flight request or start a new one.

        Args:
            key: Unique key for this request
            factory: Called (once per in-flight key) to start the call
            token: Cancels this caller's wait only; the shared call and
                   the other subscribers are unaffected

        Returns:
            The shared result

        Raises:
            FetchCancelled: If token was cancelled while waiting, or the
                shared call was cancelled by cancel_all()
            Exception: Any error from the shared call is propagated
        """
        if token is not None:
            token.raise_if_cancelled()
        in_flight = self._join_or_start(key, factory)
        return await self._wait(in_flight, token)

    def _join_or_start(self, key: str, factory: Callable[[], Awaitable[Any]]) -> InFlightRequest:
        # Runs without suspension so callers in the same loop turn see the entry
        self._stats["total_requests"] += 1

        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            in_flight.subscriber_count += 1
            self._stats["deduplicated_requests"] += 1
            logger.debug(
                f"Deduplicating request for {key} "
                f"(subscribers: {in_flight.subscriber_count})"
            )
            return in_flight

        task = asyncio.ensure_future(factory())
        in_flight = InFlightRequest(key=key, task=task)
        self._in_flight[key] = in_flight
        task.add_done_callback(functools.partial(self._settle, in_flight))
        logger.debug(f"Initiating fetch for {key}")
        return in_flight

    def _settle(self, in_flight: InFlightRequest, task: "asyncio.Future[Any]") -> None:
        if self._in_flight.get(in_flight.key) is in_flight:
            del self._in_flight[in_flight.key]

        if task.cancelled():
            self._stats["failed_requests"] += 1
            logger.info(f"Request cancelled: {in_flight.key}")
            return

        # Retrieving the exception here also keeps asyncio from warning about it
        error = task.exception()
        if error is None:
            self._stats["completed_requests"] += 1
        else:
            self._stats["failed_requests"] += 1
            if not isinstance(error, FetchCancelled):
                logger.warning(f"Fetch failed for {in_flight.key}: {error}")

    async def _wait(self, in_flight: InFlightRequest, token: Optional[CancellationToken]) -> Any:
        if token is None:
            try:
                return await asyncio.shield(in_flight.task)
            except asyncio.CancelledError:
                # Shared call cancelled (cancel_all); our own cancellation propagates
                if in_flight.task.cancelled():
                    raise FetchCancelled("Request was cancelled")
                raise

        cancel_waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait(
                {in_flight.task, cancel_waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancel_waiter.cancel()

        if in_flight.task.done():
            if in_flight.task.cancelled():
                raise FetchCancelled("Request was cancelled")
            return in_flight.task.result()
        logger.debug(f"Subscriber stopped waiting for {in_flight.key}")
        raise FetchCancelled(token.reason or "Request was cancelled")

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        return len(self._in_flight)

    def cancel_all(self) -> int:
        """
        Cancel every in-flight task (used on shutdown).

        Returns:
            Number of tasks cancelled
        """
        in_flight = list(self._in_flight.values())
        for request in in_flight:
            request.task.cancel()
        if in_flight:
            logger.info(f"Cancelled {len(in_flight)} pending requests")
        return len(in_flight)

    def reset_stats(self) -> None:
        self._stats = self._empty_stats()

    def get_stats(self) -> Dict[str, Any]:
        """Get deduplicator statistics."""
        total = self._stats["total_requests"]
        return {
            **self._stats,
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
            "dedup_rate": self._stats["deduplicated_requests"] / total if total else 0.0,
        }
