"""
Cooperative cancellation token.

A token is shared by reference between a caller and the operations it
starts. Setting it only signals intent: operations check it at their
checkpoints (attempt start, attempt end, around backoff waits)
and stop there. An already-started network call is never interrupted.
"""
import asyncio
import logging
from typing import Callable, List, Optional

from .errors import FetchCancelled

logger = logging.getLogger("resilience.cancellation")

DEFAULT_REASON = "Request was cancelled"


class CancellationToken:
    """
    Shared handle used to signal that in-progress work should stop.

    Usage:
        token = CancellationToken()
        task = asyncio.create_task(fetch_with_retry(op, 3, token))
        ...
        token.cancel()   # e.g. the view was closed
    """

    def __init__(self):
        self._cancelled = False
        self._reason: Optional[str] = None
        self._event: Optional[asyncio.Event] = None
        self._callbacks: List[Callable[["CancellationToken"], None]] = []

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"<CancellationToken {state}>"

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = DEFAULT_REASON) -> None:
        """Signal cancellation. Idempotent; the first reason wins."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        logger.debug(f"Cancellation requested: {reason}")

        if self._event is not None:
            self._event.set()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self)

    def raise_if_cancelled(self) -> None:
        """Checkpoint: raise FetchCancelled if cancellation was requested."""
        if self._cancelled:
            raise FetchCancelled(self._reason or DEFAULT_REASON)

    def add_callback(self, callback: Callable[["CancellationToken"], None]) -> None:
        """Run callback on cancel (immediately if already cancelled)."""
        if self._cancelled:
            callback(self)
        else:
            self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[["CancellationToken"], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _get_event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        await self._get_event().wait()

    async def sleep(self, delay: float) -> None:
        """
        Backoff wait that wakes early on cancellation.

        Checks the token before and after the wait; any pending delay is
        discarded when cancellation arrives.

        Raises:
            FetchCancelled: If the token is or becomes cancelled
        """
        self.raise_if_cancelled()
        if delay > 0:
            try:
                await asyncio.wait_for(self._get_event().wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        self.raise_if_cancelled()
