"""Query cache — deduplicated, subscriber-counted server data.

Usage::

    from roost.query import CacheKey, QueryCache

    cache = QueryCache()
    sub = cache.subscribe(CacheKey("devises"), load_devises, on_change=redraw)
    entry = await sub.wait()
"""

from roost.query.cache import (
    Fetcher,
    Listener,
    QueryCache,
    QueryOptions,
    RollbackToken,
    Subscription,
)
from roost.query.entry import CacheEntry, QueryStatus, can_transition
from roost.query.keys import CacheKey, KeyMatcher, KeyPredicate, canonicalize, matcher

__all__ = [
    "CacheEntry",
    "CacheKey",
    "Fetcher",
    "KeyMatcher",
    "KeyPredicate",
    "Listener",
    "QueryCache",
    "QueryOptions",
    "QueryStatus",
    "RollbackToken",
    "Subscription",
    "can_transition",
    "canonicalize",
    "matcher",
]
