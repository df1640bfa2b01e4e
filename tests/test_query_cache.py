"""Tests for roost.query.cache — dedup, freshness, retry, GC, invalidation."""

import asyncio
from typing import Any

import pytest

from roost.config import NO_RETRY, CacheConfig, RetryPolicy
from roost.errors import FetchError, RoostError
from roost.query import CacheKey, QueryCache, QueryOptions, QueryStatus

DEVISES = CacheKey("devises")
ROWS = [{"id": 1, "code": "USD"}]

FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0.0, jitter=0.0)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class Fetcher:
    """Counts calls; returns (or raises) the scripted results in order."""

    def __init__(self, *results: Any) -> None:
        self.calls = 0
        self._results = list(results) or [ROWS]

    async def __call__(self, key: CacheKey) -> Any:
        self.calls += 1
        await asyncio.sleep(0)
        result = self._results[min(self.calls, len(self._results)) - 1]
        if isinstance(result, BaseException):
            raise result
        return result


class GatedFetcher:
    def __init__(self, result: Any = ROWS) -> None:
        self.calls = 0
        self.gate = asyncio.Event()
        self._result = result

    async def __call__(self, key: CacheKey) -> Any:
        self.calls += 1
        await self.gate.wait()
        return self._result


class InFlightCounter:
    """Tracks the peak number of simultaneous fetcher invocations."""

    def __init__(self) -> None:
        self.active = 0
        self.peak = 0

    async def __call__(self, key: CacheKey) -> Any:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.01)
            return ROWS
        finally:
            self.active -= 1


class TestSubscribe:
    @pytest.mark.anyio
    async def test_concurrent_subscriptions_share_one_fetch(self) -> None:
        fetcher = Fetcher()
        async with QueryCache(CacheConfig(stale_after=60.0)) as cache:
            subs = [cache.subscribe(DEVISES, fetcher) for _ in range(5)]
            entries = [await sub.wait() for sub in subs]

        assert fetcher.calls == 1
        assert all(entry.status is QueryStatus.SUCCESS for entry in entries)
        assert all(entry.data == ROWS for entry in entries)
        assert entries[-1].subscriber_count == 5

    @pytest.mark.anyio
    async def test_at_most_one_fetch_in_flight(self) -> None:
        counter = InFlightCounter()
        async with QueryCache() as cache:
            subs = [cache.subscribe(DEVISES, counter) for _ in range(10)]
            await asyncio.gather(*(sub.wait() for sub in subs))

        assert counter.peak == 1

    @pytest.mark.anyio
    async def test_returns_immediately_with_pending_entry(self) -> None:
        async with QueryCache() as cache:
            sub = cache.subscribe(DEVISES, Fetcher())

            assert sub.snapshot.status is QueryStatus.PENDING
            assert sub.snapshot.is_fetching
            assert sub.snapshot.data is None
            await sub.wait()

    @pytest.mark.anyio
    async def test_fresh_entry_is_not_refetched(self) -> None:
        fetcher = Fetcher()
        async with QueryCache(CacheConfig(stale_after=60.0)) as cache:
            first = cache.subscribe(DEVISES, fetcher)
            await first.wait()
            first.dispose()

            second = cache.subscribe(DEVISES, fetcher)

            assert second.snapshot.status is QueryStatus.SUCCESS
            assert second.snapshot.data == ROWS
            assert fetcher.calls == 1

    @pytest.mark.anyio
    async def test_zero_stale_after_refetches_every_subscription(self) -> None:
        fetcher = Fetcher()
        async with QueryCache() as cache:
            await cache.subscribe(DEVISES, fetcher).wait()
            await cache.subscribe(DEVISES, fetcher).wait()

        assert fetcher.calls == 2

    @pytest.mark.anyio
    async def test_stale_window_uses_clock(self) -> None:
        clock = FakeClock()
        fetcher = Fetcher()
        async with QueryCache(CacheConfig(stale_after=10.0), clock=clock) as cache:
            await cache.subscribe(DEVISES, fetcher).wait()

            clock.now = 5.0
            cache.subscribe(DEVISES, fetcher)
            assert fetcher.calls == 1

            clock.now = 11.0
            await cache.subscribe(DEVISES, fetcher).wait()
            assert fetcher.calls == 2

    @pytest.mark.anyio
    async def test_query_options_override_defaults(self) -> None:
        fetcher = Fetcher()
        options = QueryOptions(stale_after=60.0)
        async with QueryCache() as cache:
            await cache.subscribe(DEVISES, fetcher, options).wait()
            await cache.subscribe(DEVISES, fetcher, options).wait()

            assert cache.get_snapshot(DEVISES).stale_after == 60.0
        assert fetcher.calls == 1

    @pytest.mark.anyio
    async def test_sync_fetcher(self) -> None:
        async with QueryCache() as cache:
            entry = await cache.subscribe(DEVISES, lambda key: ROWS).wait()

        assert entry.data == ROWS

    @pytest.mark.anyio
    async def test_listener_sees_every_transition(self) -> None:
        seen: list[QueryStatus] = []
        async with QueryCache() as cache:
            sub = cache.subscribe(DEVISES, Fetcher(), on_change=lambda e: seen.append(e.status))
            await sub.wait()

        assert seen == [QueryStatus.PENDING, QueryStatus.SUCCESS]

    @pytest.mark.anyio
    async def test_failing_listener_does_not_block_others(self) -> None:
        seen: list[QueryStatus] = []

        def broken(entry: Any) -> None:
            raise RuntimeError("boom")

        async with QueryCache(CacheConfig(stale_after=60.0)) as cache:
            first = cache.subscribe(DEVISES, Fetcher(), on_change=broken)
            cache.subscribe(DEVISES, Fetcher(), on_change=lambda e: seen.append(e.status))
            await first.wait()

        assert seen == [QueryStatus.SUCCESS]

    def test_requires_running_loop(self) -> None:
        with pytest.raises(RuntimeError):
            QueryCache().subscribe(DEVISES, Fetcher())

    @pytest.mark.anyio
    async def test_fetch_returns_data(self) -> None:
        async with QueryCache() as cache:
            data = await cache.fetch(DEVISES, Fetcher())

            assert data == ROWS
            assert cache.get_snapshot(DEVISES).subscriber_count == 0


class TestDispose:
    @pytest.mark.anyio
    async def test_dispose_is_idempotent(self) -> None:
        async with QueryCache() as cache:
            sub = cache.subscribe(DEVISES, Fetcher())
            other = cache.subscribe(DEVISES, Fetcher())
            await sub.wait()

            sub.dispose()
            sub.dispose()

            assert sub.disposed
            assert cache.get_snapshot(DEVISES).subscriber_count == 1
            other.dispose()

    @pytest.mark.anyio
    async def test_disposed_subscription_gets_no_callbacks(self) -> None:
        seen: list[QueryStatus] = []
        async with QueryCache() as cache:
            keeper = cache.subscribe(DEVISES, Fetcher())
            sub = cache.subscribe(DEVISES, Fetcher(), on_change=lambda e: seen.append(e.status))
            sub.dispose()
            await keeper.wait()

        assert seen == []

    @pytest.mark.anyio
    async def test_context_manager_disposes(self) -> None:
        async with QueryCache() as cache:
            with cache.subscribe(DEVISES, Fetcher()) as sub:
                await sub.wait()

            assert sub.disposed
            assert cache.get_snapshot(DEVISES).subscriber_count == 0


class TestRetry:
    @pytest.mark.anyio
    async def test_retries_then_succeeds(self) -> None:
        fetcher = Fetcher(RuntimeError("down"), RuntimeError("down"), ROWS)
        seen: list[QueryStatus] = []
        async with QueryCache(CacheConfig(retry=FAST_RETRY)) as cache:
            sub = cache.subscribe(DEVISES, fetcher, on_change=lambda e: seen.append(e.status))
            entry = await sub.wait()

        assert fetcher.calls == 3
        assert entry.status is QueryStatus.SUCCESS
        assert entry.data == ROWS
        assert entry.failure_count == 0
        assert seen == [
            QueryStatus.PENDING,
            QueryStatus.ERROR,
            QueryStatus.PENDING,
            QueryStatus.ERROR,
            QueryStatus.PENDING,
            QueryStatus.SUCCESS,
        ]

    @pytest.mark.anyio
    async def test_intermediate_failure_keeps_fetch_in_flight(self) -> None:
        snapshots = []
        fetcher = Fetcher(RuntimeError("down"), ROWS)
        async with QueryCache(CacheConfig(retry=FAST_RETRY)) as cache:
            sub = cache.subscribe(DEVISES, fetcher, on_change=snapshots.append)
            await sub.wait()

        failed = [s for s in snapshots if s.status is QueryStatus.ERROR]
        assert len(failed) == 1
        assert failed[0].is_fetching
        assert failed[0].failure_count == 1

    @pytest.mark.anyio
    async def test_gives_up_after_max_attempts(self) -> None:
        cause = RuntimeError("down")
        fetcher = Fetcher(cause)
        policy = RetryPolicy(max_attempts=2, base_delay=0.0)
        async with QueryCache(CacheConfig(retry=policy)) as cache:
            entry = await cache.subscribe(DEVISES, fetcher).wait()

        assert fetcher.calls == 2
        assert entry.status is QueryStatus.ERROR
        assert not entry.is_fetching
        assert entry.failure_count == 2
        assert isinstance(entry.error, FetchError)
        assert entry.error.cause is cause
        assert entry.error.attempts == 2

    @pytest.mark.anyio
    async def test_fetch_raises_fetch_error(self) -> None:
        async with QueryCache(CacheConfig(retry=NO_RETRY)) as cache:
            with pytest.raises(FetchError, match="down"):
                await cache.fetch(DEVISES, Fetcher(RuntimeError("down")))

    @pytest.mark.anyio
    async def test_failed_entry_refetched_on_next_subscribe(self) -> None:
        fetcher = Fetcher(RuntimeError("down"), ROWS)
        async with QueryCache(CacheConfig(stale_after=60.0, retry=NO_RETRY)) as cache:
            first = await cache.subscribe(DEVISES, fetcher).wait()
            second = await cache.subscribe(DEVISES, fetcher).wait()

        assert first.status is QueryStatus.ERROR
        assert second.status is QueryStatus.SUCCESS
        assert fetcher.calls == 2


class TestInvalidate:
    @pytest.mark.anyio
    async def test_without_subscribers_marks_stale_and_keeps_data(self) -> None:
        fetcher = Fetcher()
        async with QueryCache(CacheConfig(stale_after=60.0)) as cache:
            await cache.fetch(DEVISES, fetcher)

            assert cache.invalidate(DEVISES) == [DEVISES]

            entry = cache.get_snapshot(DEVISES)
            assert entry.status is QueryStatus.SUCCESS
            assert entry.data == ROWS
            assert entry.invalidated
            assert entry.is_stale(0.0)
            assert fetcher.calls == 1

            await cache.subscribe(DEVISES, fetcher).wait()
            assert fetcher.calls == 2
            assert not cache.get_snapshot(DEVISES).invalidated

    @pytest.mark.anyio
    async def test_with_subscribers_refetches_now(self) -> None:
        fetcher = Fetcher()
        async with QueryCache(CacheConfig(stale_after=60.0)) as cache:
            sub = cache.subscribe(DEVISES, fetcher)
            await sub.wait()

            cache.invalidate(DEVISES)

            assert sub.snapshot.status is QueryStatus.PENDING
            await sub.wait()
            assert fetcher.calls == 2

    @pytest.mark.anyio
    async def test_by_query_name(self) -> None:
        async with QueryCache() as cache:
            for key in (CacheKey.of("devise", id=1), CacheKey.of("devise", id=2), DEVISES):
                await cache.fetch(key, Fetcher())

            hit = cache.invalidate("devise")

        assert sorted(key.params["id"] for key in hit) == [1, 2]

    @pytest.mark.anyio
    async def test_by_predicate(self) -> None:
        async with QueryCache() as cache:
            await cache.fetch(CacheKey.of("devise", id=1), Fetcher())
            await cache.fetch(CacheKey.of("devise", id=2), Fetcher())

            hit = cache.invalidate(lambda key: key.params.get("id") == 2)

        assert hit == [CacheKey.of("devise", id=2)]

    @pytest.mark.anyio
    async def test_unknown_key_is_ignored(self) -> None:
        async with QueryCache() as cache:
            assert cache.invalidate(CacheKey("nope")) == []

    @pytest.mark.anyio
    async def test_during_fetch_refetches_after_completion(self) -> None:
        fetcher = GatedFetcher()
        async with QueryCache(CacheConfig(stale_after=60.0)) as cache:
            sub = cache.subscribe(DEVISES, fetcher)
            await asyncio.sleep(0)

            cache.invalidate(DEVISES)
            assert fetcher.calls == 1

            fetcher.gate.set()
            entry = await sub.wait()

        assert fetcher.calls == 2
        assert entry.status is QueryStatus.SUCCESS
        assert not entry.invalidated


class TestGarbageCollection:
    @pytest.mark.anyio
    async def test_evicted_after_grace(self) -> None:
        async with QueryCache(CacheConfig(gc_grace=0.05)) as cache:
            await cache.fetch(DEVISES, Fetcher())
            assert DEVISES in cache

            await asyncio.sleep(0.1)
            assert DEVISES not in cache
            assert cache.get_snapshot(DEVISES) is None

    @pytest.mark.anyio
    async def test_resubscribe_within_grace_keeps_entry(self) -> None:
        fetcher = Fetcher()
        async with QueryCache(CacheConfig(stale_after=60.0, gc_grace=0.05)) as cache:
            await cache.fetch(DEVISES, fetcher)
            await asyncio.sleep(0.01)

            sub = cache.subscribe(DEVISES, fetcher)
            await asyncio.sleep(0.1)

            assert DEVISES in cache
            assert fetcher.calls == 1
            sub.dispose()

    @pytest.mark.anyio
    async def test_resubscribe_after_eviction_fetches_again(self) -> None:
        fetcher = Fetcher()
        async with QueryCache(CacheConfig(stale_after=60.0, gc_grace=0.02)) as cache:
            await cache.fetch(DEVISES, fetcher)
            await asyncio.sleep(0.06)
            assert DEVISES not in cache

            sub = cache.subscribe(DEVISES, fetcher)
            assert sub.snapshot.status is QueryStatus.PENDING
            assert sub.snapshot.updated_at is None
            await sub.wait()

        assert fetcher.calls == 2

    @pytest.mark.anyio
    async def test_eviction_waits_for_pending_fetch(self) -> None:
        fetcher = GatedFetcher()
        async with QueryCache(CacheConfig(gc_grace=0.01)) as cache:
            sub = cache.subscribe(DEVISES, fetcher)
            sub.dispose()
            await asyncio.sleep(0.05)
            assert DEVISES in cache

            fetcher.gate.set()
            entry = await sub.wait()
            assert entry.status is QueryStatus.SUCCESS

            await asyncio.sleep(0.05)
            assert DEVISES not in cache

    @pytest.mark.anyio
    async def test_no_grace_keeps_entries(self) -> None:
        async with QueryCache(CacheConfig(gc_grace=None)) as cache:
            await cache.fetch(DEVISES, Fetcher())
            await asyncio.sleep(0.02)

            assert DEVISES in cache


class TestOptimisticWrites:
    @pytest.mark.anyio
    async def test_set_data(self) -> None:
        async with QueryCache() as cache:
            await cache.fetch(DEVISES, Fetcher())

            entry = cache.set_data(DEVISES, lambda rows: [*rows, {"id": 2, "code": "EUR"}])

        assert entry is not None
        assert [row["code"] for row in entry.data] == ["USD", "EUR"]

    @pytest.mark.anyio
    async def test_set_data_ignores_missing_and_pending(self) -> None:
        async with QueryCache() as cache:
            assert cache.set_data(DEVISES, []) is None

            sub = cache.subscribe(DEVISES, Fetcher())
            assert cache.set_data(DEVISES, []) is None
            await sub.wait()

    @pytest.mark.anyio
    async def test_rollback_restores_snapshot(self) -> None:
        async with QueryCache(CacheConfig(stale_after=60.0)) as cache:
            sub = cache.subscribe(DEVISES, Fetcher())
            before = await sub.wait()

            token = cache.apply_optimistic("devises", lambda rows: [*rows, {"id": 2}])
            assert token
            assert token.keys == (DEVISES,)
            assert len(sub.snapshot.data) == 2

            assert cache.rollback(token) == [DEVISES]
            assert sub.snapshot == before

    @pytest.mark.anyio
    async def test_later_change_wins_over_rollback(self) -> None:
        fetcher = Fetcher(ROWS, [{"id": 1, "code": "USD"}, {"id": 9, "code": "CHF"}])
        async with QueryCache(CacheConfig(stale_after=60.0)) as cache:
            sub = cache.subscribe(DEVISES, fetcher)
            await sub.wait()

            token = cache.apply_optimistic(DEVISES, [])
            cache.invalidate(DEVISES)
            refetched = await sub.wait()

            assert cache.rollback(token) == []
            assert sub.snapshot.data == refetched.data
            assert len(refetched.data) == 2

    @pytest.mark.anyio
    async def test_raising_updater_leaves_every_entry_untouched(self) -> None:
        pays = CacheKey("pays")
        async with QueryCache(CacheConfig(stale_after=60.0)) as cache:
            await cache.fetch(DEVISES, Fetcher())
            await cache.fetch(pays, Fetcher([{"id": 1, "code": "FR"}]))
            before = {key: cache.get_snapshot(key) for key in (DEVISES, pays)}
            calls: list[Any] = []

            def updater(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
                calls.append(rows)
                if len(calls) == 2:
                    raise KeyError("code")
                return []

            with pytest.raises(KeyError):
                cache.apply_optimistic(("devises", "pays"), updater)

            assert len(calls) == 2
            assert {key: cache.get_snapshot(key) for key in (DEVISES, pays)} == before

    @pytest.mark.anyio
    async def test_collect_rollbacks_records_tokens(self) -> None:
        async with QueryCache(CacheConfig(stale_after=60.0)) as cache:
            await cache.fetch(DEVISES, Fetcher())
            applied: list[Any] = []

            with pytest.raises(RuntimeError), cache.collect_rollbacks(applied):
                cache.apply_optimistic(DEVISES, [])
                raise RuntimeError("after the write")

            assert len(applied) == 1
            assert cache.rollback(applied[0]) == [DEVISES]
            assert cache.get_snapshot(DEVISES).data == ROWS

            cache.apply_optimistic(DEVISES, [])
            assert len(applied) == 1

    @pytest.mark.anyio
    async def test_stacked_writes_roll_back_to_first_snapshot(self) -> None:
        async with QueryCache(CacheConfig(stale_after=60.0)) as cache:
            sub = cache.subscribe(DEVISES, Fetcher())
            before = await sub.wait()

            first = cache.apply_optimistic(DEVISES, lambda rows: [*rows, {"id": 2}])
            second = cache.apply_optimistic(DEVISES, lambda rows: [*rows, {"id": 3}])
            assert len(sub.snapshot.data) == 3

            assert cache.rollback(first + second) == [DEVISES]
            assert sub.snapshot == before

    @pytest.mark.anyio
    async def test_nothing_captured_for_unknown_target(self) -> None:
        async with QueryCache() as cache:
            token = cache.apply_optimistic("devises", [])

        assert not token
        assert cache.rollback(token) == []


class TestLifecycle:
    @pytest.mark.anyio
    async def test_close_cancels_fetches(self) -> None:
        cache = QueryCache()
        cache.subscribe(DEVISES, GatedFetcher())

        cancelled = cache.close()
        await asyncio.gather(*cancelled, return_exceptions=True)

        assert len(cancelled) == 1
        assert cancelled[0].cancelled()
        assert len(cache) == 0

    @pytest.mark.anyio
    async def test_closed_cache_rejects_subscriptions(self) -> None:
        cache = QueryCache()
        cache.close()

        with pytest.raises(RoostError, match="closed"):
            cache.subscribe(DEVISES, Fetcher())

    @pytest.mark.anyio
    async def test_keys(self) -> None:
        async with QueryCache() as cache:
            await cache.fetch(DEVISES, Fetcher())

            assert cache.keys() == (DEVISES,)
            assert len(cache) == 1
