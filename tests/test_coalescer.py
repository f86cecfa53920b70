"""
Unit tests for request deduplication and cancellation tokens.
"""
import asyncio

import pytest

from fetchcache.cache.coalescer import RequestDeduplicator
from fetchcache.resilience.cancellation import CancellationToken
from fetchcache.resilience.errors import FetchCancelled, NetworkError


class CountingFactory:
    """Factory that blocks until released and counts its invocations."""

    def __init__(self, result="data", error=None):
        self.calls = 0
        self.release = asyncio.Event()
        self._result = result
        self._error = error

    async def __call__(self):
        self.calls += 1
        await self.release.wait()
        if self._error is not None:
            raise self._error
        return self._result


# =============================================================================
# Deduplication Tests
# =============================================================================

class TestRequestDeduplicator:
    """Tests for sharing one in-flight call per key."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_call(self):
        """Concurrent requests for one key start a single call"""
        dedup = RequestDeduplicator()
        factory = CountingFactory()

        tasks = [asyncio.ensure_future(dedup.run_deduped("k", factory)) for _ in range(3)]
        await asyncio.sleep(0)
        assert dedup.is_in_flight("k")
        factory.release.set()
        results = await asyncio.gather(*tasks)

        assert factory.calls == 1
        assert results == ["data", "data", "data"]
        stats = dedup.get_stats()
        assert stats["total_requests"] == 3
        assert stats["deduplicated_requests"] == 2
        assert stats["completed_requests"] == 1

    @pytest.mark.asyncio
    async def test_different_keys_run_separately(self):
        dedup = RequestDeduplicator()
        first = CountingFactory("a")
        second = CountingFactory("b")
        first.release.set()
        second.release.set()

        results = await asyncio.gather(
            dedup.run_deduped("a", first),
            dedup.run_deduped("b", second),
        )

        assert results == ["a", "b"]
        assert first.calls == 1
        assert second.calls == 1

    @pytest.mark.asyncio
    async def test_entry_removed_after_completion(self):
        """A later request after settlement starts a fresh call"""
        dedup = RequestDeduplicator()
        factory = CountingFactory()
        factory.release.set()

        await dedup.run_deduped("k", factory)
        assert not dedup.is_in_flight("k")
        await dedup.run_deduped("k", factory)

        assert factory.calls == 2
        assert dedup.active_requests == 0

    @pytest.mark.asyncio
    async def test_failure_is_shared_and_cleared(self):
        """Every subscriber sees the same error and the key is released"""
        dedup = RequestDeduplicator()
        error = NetworkError("offline")
        factory = CountingFactory(error=error)
        factory.release.set()

        results = await asyncio.gather(
            dedup.run_deduped("k", factory),
            dedup.run_deduped("k", factory),
            return_exceptions=True,
        )

        assert results == [error, error]
        assert factory.calls == 1
        assert not dedup.is_in_flight("k")
        assert dedup.get_stats()["failed_requests"] == 1

    @pytest.mark.asyncio
    async def test_subscriber_cancellation_does_not_affect_others(self):
        """Cancelling one subscriber's token leaves the shared call running"""
        dedup = RequestDeduplicator()
        factory = CountingFactory()
        token = CancellationToken()

        first = asyncio.ensure_future(dedup.run_deduped("k", factory))
        second = asyncio.ensure_future(dedup.run_deduped("k", factory, token=token))
        await asyncio.sleep(0)

        token.cancel("view closed")
        with pytest.raises(FetchCancelled):
            await second
        assert dedup.is_in_flight("k")

        factory.release.set()
        assert await first == "data"
        assert factory.calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_token_does_not_start_call(self):
        dedup = RequestDeduplicator()
        factory = CountingFactory()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(FetchCancelled):
            await dedup.run_deduped("k", factory, token=token)

        assert factory.calls == 0
        assert dedup.get_stats()["total_requests"] == 0

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        """Subscribers of a cancelled shared call get FetchCancelled"""
        dedup = RequestDeduplicator()
        factory = CountingFactory()
        token = CancellationToken()

        plain = asyncio.ensure_future(dedup.run_deduped("k", factory))
        with_token = asyncio.ensure_future(dedup.run_deduped("k", factory, token=token))
        await asyncio.sleep(0)
        assert dedup.cancel_all() == 1

        with pytest.raises(FetchCancelled):
            await plain
        with pytest.raises(FetchCancelled):
            await with_token
        assert dedup.active_requests == 0
        assert not token.is_cancelled

    @pytest.mark.asyncio
    async def test_reset_stats(self):
        dedup = RequestDeduplicator()
        factory = CountingFactory()
        factory.release.set()
        await dedup.run_deduped("k", factory)

        dedup.reset_stats()
        stats = dedup.get_stats()
        assert stats["total_requests"] == 0
        assert stats["dedup_rate"] == 0.0


# =============================================================================
# Cancellation Token Tests
# =============================================================================

class TestCancellationToken:
    """Tests for the cooperative cancellation token."""

    def test_cancel_is_idempotent(self):
        """The first reason wins and callbacks fire once"""
        token = CancellationToken()
        seen = []
        token.add_callback(lambda t: seen.append(t.reason))

        token.cancel("first")
        token.cancel("second")

        assert token.is_cancelled
        assert token.reason == "first"
        assert seen == ["first"]

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel("stop")
        with pytest.raises(FetchCancelled, match="stop"):
            token.raise_if_cancelled()

    def test_callback_added_after_cancel_runs_immediately(self):
        token = CancellationToken()
        token.cancel()
        seen = []
        token.add_callback(lambda t: seen.append(True))
        assert seen == [True]

    def test_removed_callback_not_called(self):
        token = CancellationToken()
        seen = []

        def callback(t):
            seen.append(True)

        token.add_callback(callback)
        token.remove_callback(callback)
        token.cancel()
        assert seen == []

    @pytest.mark.asyncio
    async def test_sleep_wakes_on_cancel(self):
        """A pending backoff wait is cut short by cancellation"""
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        with pytest.raises(FetchCancelled):
            await asyncio.wait_for(token.sleep(10), timeout=2)

    @pytest.mark.asyncio
    async def test_sleep_completes_without_cancel(self):
        token = CancellationToken()
        await token.sleep(0.01)
        await token.sleep(0)
        assert not token.is_cancelled

    @pytest.mark.asyncio
    async def test_sleep_on_cancelled_token_raises(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(FetchCancelled):
            await token.sleep(0)
