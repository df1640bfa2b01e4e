"""Cache entry snapshots.

``CacheEntry`` is frozen: the cache replaces the snapshot on every change
instead of mutating it, so a view holding a snapshot never observes a
half-applied update.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from roost.query.keys import CacheKey


class QueryStatus(Enum):
    """Lifecycle of a cache entry.

    Allowed transitions: IDLE -> PENDING -> SUCCESS | ERROR,
    SUCCESS -> PENDING (refetch), ERROR -> PENDING (retry).
    """

    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


_TRANSITIONS: dict[QueryStatus, frozenset[QueryStatus]] = {
    QueryStatus.IDLE: frozenset({QueryStatus.PENDING}),
    QueryStatus.PENDING: frozenset({QueryStatus.SUCCESS, QueryStatus.ERROR}),
    QueryStatus.SUCCESS: frozenset({QueryStatus.PENDING}),
    QueryStatus.ERROR: frozenset({QueryStatus.PENDING}),
}


def can_transition(current: QueryStatus, target: QueryStatus) -> bool:
    """True if an entry may move from *current* to *target*."""
    return current is target or target in _TRANSITIONS[current]


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Immutable snapshot of one cached query.

    Attributes:
        key: Identity of the entry.
        status: Current ``QueryStatus``.
        data: The fetched value; only meaningful when ``status`` is SUCCESS.
        error: The ``FetchError``; only set when ``status`` is ERROR.
        updated_at: Clock reading of the last successful fetch (or None).
        stale_after: Freshness window in seconds; 0 means always stale.
        subscriber_count: Live subscriptions to this key.
        in_flight_request_id: Token of the running fetch, if any.
        invalidated: Marked stale explicitly by ``invalidate()``.
        failure_count: Failed attempts in the current fetch run.
    """

    key: CacheKey
    status: QueryStatus = QueryStatus.IDLE
    data: Any = None
    error: BaseException | None = None
    updated_at: float | None = None
    stale_after: float = 0.0
    subscriber_count: int = 0
    in_flight_request_id: str | None = None
    invalidated: bool = False
    failure_count: int = 0

    @property
    def is_fetching(self) -> bool:
        return self.in_flight_request_id is not None

    def is_stale(self, now: float) -> bool:
        """True if the entry should be refetched at clock reading *now*.

        Entries without successful data, invalidated entries, and entries
        with ``stale_after == 0`` are always stale.
        """
        if self.invalidated or self.status is not QueryStatus.SUCCESS:
            return True
        if self.updated_at is None or self.stale_after <= 0:
            return True
        return now - self.updated_at > self.stale_after
