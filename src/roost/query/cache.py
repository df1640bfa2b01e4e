"""Query cache — keyed, subscriber-counted store of async fetch results.

One ``QueryCache`` instance is created at application start and passed to
every consumer. Views subscribe to keys; the cache deduplicates fetches,
tracks freshness, retries failures, and pushes every state change to the
subscribers' callbacks. All entry mutation happens here.

Scheduling is single-threaded asyncio: fetches run as tasks on the loop
that made the first subscription, and each state change is delivered to
every subscriber of the key in one synchronous pass.

Usage::

    cache = QueryCache(CacheConfig(stale_after=30.0))

    async def load_devises(key: CacheKey) -> list[dict]:
        return await api.get("/devises", params=key.params)

    sub = cache.subscribe(CacheKey("devises"), load_devises, on_change=redraw)
    entry = await sub.wait()        # settles after the shared fetch
    ...
    sub.dispose()                   # view unmounted
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, TypeAlias

from roost._internal.invoke import invoke
from roost.config import CacheConfig, RetryPolicy
from roost.errors import FetchError, RoostError
from roost.query.entry import CacheEntry, QueryStatus, can_transition
from roost.query.keys import CacheKey, KeyMatcher, matcher

_log = logging.getLogger("roost.query")

Fetcher: TypeAlias = Callable[[CacheKey], Any]
Listener: TypeAlias = Callable[[CacheEntry], None]


@dataclass(frozen=True, slots=True)
class QueryOptions:
    """Per-query overrides of ``CacheConfig``. ``None`` means "use the default"."""

    stale_after: float | None = None
    retry: RetryPolicy | None = None


@dataclass(frozen=True, slots=True)
class RollbackToken:
    """Entries captured before an optimistic write.

    Each item pairs the pre-write snapshot with the entry version the
    optimistic write produced. ``QueryCache.rollback`` restores an entry
    only if it is still at that version, so a change that completed after
    the optimistic write (a refetch, another write's invalidation) wins.
    """

    entries: tuple[tuple[CacheEntry, int], ...] = ()

    def __add__(self, other: RollbackToken) -> RollbackToken:
        return RollbackToken(self.entries + other.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)

    @property
    def keys(self) -> tuple[CacheKey, ...]:
        return tuple(entry.key for entry, _ in self.entries)


class _Record:
    """Canonical mutable state behind one key. Never handed out."""

    __slots__ = ("entry", "fetcher", "gc_handle", "refetch_requested", "retry", "subscriptions", "task", "version")

    def __init__(self, entry: CacheEntry, fetcher: Fetcher, retry: RetryPolicy) -> None:
        self.entry = entry
        self.fetcher = fetcher
        self.retry = retry
        self.subscriptions: list[Subscription] = []
        self.task: asyncio.Task[None] | None = None
        self.gc_handle: asyncio.TimerHandle | None = None
        self.refetch_requested = False
        self.version = 0


class Subscription:
    """One view's interest in a key.

    Owned by the view. ``dispose()`` releases it; disposing twice is a
    no-op. Usable as a context manager::

        with cache.subscribe(key, fetcher) as sub:
            entry = await sub.wait()
    """

    __slots__ = ("_cache", "_disposed", "_listener", "_record")

    def __init__(self, cache: QueryCache, record: _Record, listener: Listener | None) -> None:
        self._cache = cache
        self._record = record
        self._listener = listener
        self._disposed = False

    @property
    def key(self) -> CacheKey:
        return self._record.entry.key

    @property
    def snapshot(self) -> CacheEntry:
        """The entry as of now."""
        return self._record.entry

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def wait(self) -> CacheEntry:
        """Suspend until no fetch is running for this key, then return the entry.

        Follows chained refetches (an invalidation that arrived mid-fetch).
        Disposing the subscription does not cancel the shared fetch.
        """
        while (task := self._record.task) is not None and not task.done():
            await asyncio.shield(task)
        return self._record.entry

    def dispose(self) -> None:
        """Release interest in the key."""
        if self._disposed:
            return
        self._disposed = True
        self._cache._release(self._record, self)

    def _deliver(self, entry: CacheEntry) -> None:
        if self._listener is not None and not self._disposed:
            self._listener(entry)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else self._record.entry.status.value
        return f"<Subscription {self.key} {state}>"


class QueryCache:
    """Keyed store of fetch results shared by every mounted view.

    Args:
        config: Defaults for freshness, retries and eviction.
        clock: Monotonic clock used for freshness arithmetic.
    """

    __slots__ = ("_clock", "_closed", "_config", "_loop", "_records", "_rollback_sinks")

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or CacheConfig()
        self._clock = clock
        self._records: dict[CacheKey, _Record] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False
        self._rollback_sinks: list[list[RollbackToken]] = []

    @property
    def config(self) -> CacheConfig:
        return self._config

    # -- Reads --

    def get_snapshot(self, key: CacheKey) -> CacheEntry | None:
        """Current entry for *key*, or ``None``. No side effects."""
        record = self._records.get(key)
        return record.entry if record is not None else None

    def keys(self) -> tuple[CacheKey, ...]:
        return tuple(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    # -- Subscriptions --

    def subscribe(
        self,
        key: CacheKey,
        fetcher: Fetcher,
        options: QueryOptions | None = None,
        *,
        on_change: Listener | None = None,
    ) -> Subscription:
        """Register interest in *key* and return immediately.

        Starts exactly one fetch when the entry is missing, stale or failed
        and no fetch is already running; otherwise the subscription attaches
        to the existing entry (and to its in-flight fetch, if any).

        Must be called from a running event loop.
        """
        self._ensure_open()
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        stale_after, retry = self._resolve(options)
        record = self._records.get(key)
        if record is None:
            record = _Record(CacheEntry(key=key, stale_after=stale_after), fetcher, retry)
            self._records[key] = record
        else:
            record.fetcher = fetcher
            record.retry = retry
            record.entry = replace(record.entry, stale_after=stale_after)

        if record.gc_handle is not None:
            record.gc_handle.cancel()
            record.gc_handle = None

        subscription = Subscription(self, record, on_change)
        record.subscriptions.append(subscription)
        record.entry = replace(record.entry, subscriber_count=len(record.subscriptions))

        entry = record.entry
        if not entry.is_fetching and entry.is_stale(self._clock()):
            self._start_fetch(record)
        return subscription

    async def fetch(
        self,
        key: CacheKey,
        fetcher: Fetcher,
        options: QueryOptions | None = None,
    ) -> Any:
        """Subscribe, wait for the data, release. Raises ``FetchError`` on failure."""
        subscription = self.subscribe(key, fetcher, options)
        try:
            entry = await subscription.wait()
        finally:
            subscription.dispose()
        if entry.status is QueryStatus.ERROR and entry.error is not None:
            raise entry.error
        return entry.data

    def _release(self, record: _Record, subscription: Subscription) -> None:
        if self._closed or subscription not in record.subscriptions:
            return
        record.subscriptions.remove(subscription)
        record.entry = replace(record.entry, subscriber_count=len(record.subscriptions))
        if not record.subscriptions and not record.entry.is_fetching:
            self._schedule_gc(record)

    # -- Invalidation --

    def invalidate(self, *targets: KeyMatcher) -> list[CacheKey]:
        """Mark matching entries stale, keeping their data.

        A target is a ``CacheKey``, a query name (all keys with that name),
        or a predicate over keys. Matches with subscribers are refetched
        now; the rest wait for their next subscription. A match that is
        mid-fetch is refetched once the running fetch completes.
        Unknown keys are ignored. Returns the invalidated keys.
        """
        predicates = [matcher(target) for target in targets]
        hits = [
            record
            for record in list(self._records.values())
            if any(predicate(record.entry.key) for predicate in predicates)
        ]

        for record in hits:
            self._transition(record, invalidated=True)
            if record.entry.is_fetching:
                record.refetch_requested = True
            elif record.subscriptions:
                self._start_fetch(record)

        if hits:
            _log.debug("Invalidated %d entr%s", len(hits), "y" if len(hits) == 1 else "ies")
        return [record.entry.key for record in hits]

    # -- Direct writes (optimistic updates) --

    def set_data(self, key: CacheKey, updater: Any) -> CacheEntry | None:
        """Replace the data of a successful entry.

        *updater* is either the new value or a callable receiving the
        current data. Entries that are missing or not in SUCCESS are left
        alone and ``None`` is returned.
        """
        record = self._records.get(key)
        if record is None or record.entry.status is not QueryStatus.SUCCESS:
            return None
        self._transition(record, data=_updated(record.entry.data, updater))
        return record.entry

    def apply_optimistic(
        self,
        targets: KeyMatcher | Iterable[KeyMatcher],
        updater: Any,
    ) -> RollbackToken:
        """Apply *updater* to every matching SUCCESS entry, all or nothing.

        New values for every match are computed before any entry is
        written, so an updater that raises leaves the cache untouched and
        the exception propagates. The returned token restores the entries
        with ``rollback()``.
        """
        if isinstance(targets, (CacheKey, str)) or callable(targets):
            targets = (targets,)
        predicates = [matcher(target) for target in targets]

        matched = [
            record
            for record in self._records.values()
            if record.entry.status is QueryStatus.SUCCESS
            and any(predicate(record.entry.key) for predicate in predicates)
        ]
        planned = [(record, _updated(record.entry.data, updater)) for record in matched]

        captured: list[tuple[CacheEntry, int]] = []
        for record, data in planned:
            before = record.entry
            self._transition(record, data=data)
            captured.append((before, record.version))

        token = RollbackToken(tuple(captured))
        for sink in self._rollback_sinks:
            sink.append(token)
        return token

    @contextmanager
    def collect_rollbacks(self, sink: list[RollbackToken]) -> Iterator[list[RollbackToken]]:
        """Append every token ``apply_optimistic`` returns inside the block to *sink*.

        Lets a caller undo optimistic writes made by code that raised
        before handing its token back::

            applied = []
            with cache.collect_rollbacks(applied):
                risky_optimistic_step(cache)
        """
        self._rollback_sinks.append(sink)
        try:
            yield sink
        finally:
            self._rollback_sinks.remove(sink)

    def rollback(self, token: RollbackToken) -> list[CacheKey]:
        """Restore entries captured in *token*. Returns the restored keys.

        Entries are restored newest capture first. An entry that changed
        again after the optimistic write, or was evicted, is left as it is.
        """
        restored: list[CacheKey] = []
        # version each key reached through this rollback
        rewound: dict[CacheKey, int] = {}
        for before, version in reversed(token.entries):
            record = self._records.get(before.key)
            if record is None:
                continue
            if record.version != version and rewound.get(before.key) != record.version:
                _log.debug("Skipping rollback of %s: entry changed since the optimistic write", before.key)
                continue
            self._transition(
                record,
                status=before.status,
                data=before.data,
                error=before.error,
                updated_at=before.updated_at,
                invalidated=before.invalidated,
                failure_count=before.failure_count,
            )
            rewound[before.key] = record.version
            if before.key not in restored:
                restored.append(before.key)
        return restored

    # -- Lifecycle --

    def close(self) -> list[asyncio.Task[None]]:
        """Evict every entry, cancel timers and abandon in-flight fetches.

        Returns the cancelled tasks so async callers can wait for them.
        """
        self._closed = True
        cancelled: list[asyncio.Task[None]] = []
        for record in self._records.values():
            if record.gc_handle is not None:
                record.gc_handle.cancel()
            if record.task is not None and not record.task.done():
                record.task.cancel()
                cancelled.append(record.task)
        self._records.clear()
        return cancelled

    async def __aenter__(self) -> QueryCache:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        cancelled = self.close()
        if cancelled:
            await asyncio.gather(*cancelled, return_exceptions=True)

    # -- Internals --

    def _ensure_open(self) -> None:
        if self._closed:
            msg = "QueryCache is closed"
            raise RoostError(msg)

    def _resolve(self, options: QueryOptions | None) -> tuple[float, RetryPolicy]:
        stale_after = self._config.stale_after
        retry = self._config.retry
        if options is not None:
            if options.stale_after is not None:
                stale_after = options.stale_after
            if options.retry is not None:
                retry = options.retry
        return stale_after, retry

    def _transition(self, record: _Record, **changes: Any) -> None:
        """Replace the entry snapshot and push it to every subscriber."""
        status = changes.get("status")
        if status is not None and not can_transition(record.entry.status, status):
            msg = f"Illegal transition {record.entry.status.value} -> {status.value} for {record.entry.key}"
            raise RuntimeError(msg)

        record.entry = replace(record.entry, **changes)
        record.version += 1
        entry = record.entry
        for subscription in list(record.subscriptions):
            try:
                subscription._deliver(entry)
            except Exception:
                _log.exception("Subscriber callback failed for %s", entry.key)

    def _start_fetch(self, record: _Record) -> None:
        assert self._loop is not None
        request_id = uuid.uuid4().hex[:12]
        self._transition(
            record,
            status=QueryStatus.PENDING,
            data=None,
            error=None,
            in_flight_request_id=request_id,
            invalidated=False,
            failure_count=0,
        )
        _log.debug("Fetching %s (request %s)", record.entry.key, request_id)
        record.task = self._loop.create_task(self._run_fetch(record, request_id))

    async def _run_fetch(self, record: _Record, request_id: str) -> None:
        key = record.entry.key
        retry = record.retry
        attempt = 0

        while True:
            attempt += 1
            record.refetch_requested = False
            try:
                data = await invoke(record.fetcher, key)
            except Exception as exc:
                error = FetchError(key, exc, attempts=attempt)
                if retry.should_retry(attempt):
                    self._transition(record, status=QueryStatus.ERROR, error=error, failure_count=attempt)
                    delay = retry.delay(attempt)
                    _log.debug("Fetch %s failed (attempt %d), retrying in %.2fs", key, attempt, delay)
                    await asyncio.sleep(delay)
                    self._transition(record, status=QueryStatus.PENDING, error=None)
                    continue

                _log.warning("Fetch %s failed after %d attempt(s): %s", key, attempt, exc)
                record.task = None
                self._transition(
                    record,
                    status=QueryStatus.ERROR,
                    error=error,
                    failure_count=attempt,
                    in_flight_request_id=None,
                    invalidated=record.refetch_requested,
                )
                break

            record.task = None
            self._transition(
                record,
                status=QueryStatus.SUCCESS,
                data=data,
                error=None,
                updated_at=self._clock(),
                in_flight_request_id=None,
                invalidated=record.refetch_requested,
                failure_count=0,
            )
            break

        self._after_fetch(record)

    def _after_fetch(self, record: _Record) -> None:
        if self._records.get(record.entry.key) is not record:
            return
        if record.refetch_requested and record.subscriptions:
            self._start_fetch(record)
        elif not record.subscriptions:
            self._schedule_gc(record)

    def _schedule_gc(self, record: _Record) -> None:
        grace = self._config.gc_grace
        if grace is None or self._loop is None:
            return
        if record.gc_handle is not None:
            record.gc_handle.cancel()
        record.gc_handle = self._loop.call_later(grace, self._evict, record)

    def _evict(self, record: _Record) -> None:
        record.gc_handle = None
        key = record.entry.key
        if self._records.get(key) is not record:
            return
        if record.subscriptions or record.entry.is_fetching:
            return
        del self._records[key]
        _log.debug("Evicted %s", key)


def _updated(current: Any, updater: Any) -> Any:
    return updater(current) if callable(updater) else updater
