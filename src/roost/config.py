"""Cache configuration.

CacheConfig and RetryPolicy are frozen dataclasses — immutable after
creation, IDE-autocompletable, no string-key dict lookups.
"""

import random
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff with jitter for failed fetches.

    Writes are never retried; only query fetchers, which must be
    idempotent, go through this policy.

    ``max_attempts`` counts every fetcher invocation, the first one
    included: ``RetryPolicy(max_attempts=1)`` disables retries.

    The delay after failed attempt ``n`` (1-based) is::

        min(max_delay, base_delay * factor ** (n - 1)) * (1 + uniform(0, jitter))
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = f"max_attempts must be >= 1, got {self.max_attempts}"
            raise ValueError(msg)
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            msg = "RetryPolicy delays and jitter must be non-negative"
            raise ValueError(msg)

    def should_retry(self, attempt: int) -> bool:
        """True if another attempt is allowed after *attempt* failed."""
        return attempt < self.max_attempts

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt*."""
        backoff = min(self.max_delay, self.base_delay * self.factor ** (attempt - 1))
        if self.jitter and backoff:
            backoff *= 1 + random.uniform(0, self.jitter)
        return backoff


NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0.0)


@dataclass(frozen=True, slots=True)
class CacheConfig:
    """Process-wide query cache defaults. Immutable after creation.

    Per-query ``QueryOptions`` override ``stale_after`` and ``retry``::

        config = CacheConfig(stale_after=30.0, gc_grace=600.0)
        cache = QueryCache(config)
    """

    # Freshness window in seconds; 0 means "always stale" (refetch on every
    # new subscription).
    stale_after: float = 0.0

    # Seconds an unsubscribed entry is kept before eviction. None disables
    # eviction.
    gc_grace: float | None = 300.0

    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if self.stale_after < 0:
            msg = f"stale_after must be >= 0, got {self.stale_after}"
            raise ValueError(msg)
        if self.gc_grace is not None and self.gc_grace < 0:
            msg = f"gc_grace must be >= 0 or None, got {self.gc_grace}"
            raise ValueError(msg)
