"""Cache keys — canonical identity for one cached query result.

A key is a query name plus a params record. Two keys are equal when the
names match and the params are deep-equal regardless of mapping key
order::

    CacheKey("devises", {"page": 1, "sort": "code"}) == \\
        CacheKey("devises", {"sort": "code", "page": 1})   # True
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from operator import itemgetter
from typing import Any, TypeAlias


def canonicalize(value: Any) -> Any:
    """Return a hashable, order-independent form of a params value.

    Mappings become tuples of pairs sorted by key text and key type, so
    ``{1: ...}`` and ``{"1": ...}`` stay distinct without comparing mixed
    key types. Lists and tuples become tagged tuples, sets become sorted
    tuples. Booleans are tagged so ``True`` and ``1`` name different
    entries. Other scalars are returned unchanged.
    """
    if isinstance(value, Mapping):
        items = (((str(k), type(k).__name__), canonicalize(v)) for k, v in value.items())
        return ("map", tuple(sorted(items, key=itemgetter(0))))
    if isinstance(value, (list, tuple)):
        return ("seq", tuple(canonicalize(v) for v in value))
    if isinstance(value, (set, frozenset)):
        return ("set", tuple(sorted((canonicalize(v) for v in value), key=repr)))
    if isinstance(value, bool):
        return ("bool", value)
    if value is None or isinstance(value, (str, int, float)):
        return value
    msg = f"Cache key params must be JSON-like values, got {type(value).__name__}"
    raise TypeError(msg)


def _to_json(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted((_to_json(v) for v in value), key=repr)
    if isinstance(value, Mapping):
        return {str(k): _to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(v) for v in value]
    return value


@dataclass(frozen=True, slots=True)
class CacheKey:
    """``(name, params)`` — the sole identity of a cache entry.

    ``params`` is kept for fetchers to read; equality and hashing use the
    canonical form only.
    """

    name: str
    params: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)
    canonical: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", dict(self.params))
        object.__setattr__(self, "canonical", canonicalize(self.params))

    @classmethod
    def of(cls, name: str, **params: Any) -> CacheKey:
        """Shorthand: ``CacheKey.of("devise", id=3)``."""
        return cls(name, params)

    def as_tuple(self) -> tuple[str, Any]:
        """The ordered, hashable ``(name, canonical_params)`` pair."""
        return (self.name, self.canonical)

    def serialize(self) -> str:
        """Stable JSON form, e.g. for logging or persistence keys."""
        return json.dumps([self.name, _to_json(self.params)], sort_keys=True, separators=(",", ":"))

    def __str__(self) -> str:
        return self.serialize()


KeyPredicate: TypeAlias = Callable[[CacheKey], bool]

# What ``QueryCache.invalidate`` accepts: an exact key, a query name
# (every key with that name), or a predicate.
KeyMatcher: TypeAlias = CacheKey | str | KeyPredicate


def matcher(target: KeyMatcher) -> KeyPredicate:
    """Turn any accepted invalidation target into a predicate."""
    if isinstance(target, CacheKey):
        return lambda key: key == target
    if isinstance(target, str):
        return lambda key: key.name == target
    if callable(target):
        return target
    msg = f"Cannot match cache keys with {target!r}"
    raise TypeError(msg)
