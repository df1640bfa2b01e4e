"""Mutation pipeline — validated writes that invalidate the query cache.

Each ``execute()`` call runs one write:

1. validate the payload (when the ``MutationSpec`` carries a schema); a failing
   payload never reaches the operation;
2. apply the optimistic update, if any, keeping its rollback tokens; an
   optimistic step that raises fails the write before the operation runs;
3. invoke the operation exactly once (writes are never retried);
4. on success, invalidate ``affected_keys``; on failure, roll back every
   optimistic write made by step 2.

Concurrent calls are independent: invalidation follows each call's own
completion, so the cache reflects the most recently *completed* write.

Usage::

    pipeline = MutationPipeline(cache)

    create_devise = MutationSpec(
        name="create_devise",
        operation=api_create_devise,
        affected_keys=("devises",),
        schema=devise_schema,
    )

    result = await pipeline.execute(create_devise, {"code": "EUR", "nom": "Euro"})
    if not result:
        show_error(result.error)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeAlias

from roost._internal.invoke import invoke
from roost.audit import emit_event
from roost.errors import MutationError, RoostError, ValidationError
from roost.query.cache import QueryCache, RollbackToken
from roost.query.keys import KeyMatcher
from roost.validation.engine import validate_async
from roost.validation.schema import Schema, SchemaRegistry

_log = logging.getLogger("roost.mutation")

Operation: TypeAlias = Callable[[Any], Any | Awaitable[Any]]
OptimisticUpdate: TypeAlias = Callable[[QueryCache, Any], RollbackToken | None]


@dataclass(frozen=True, slots=True)
class MutationSpec:
    """Declaration of one kind of write.

    Attributes:
        operation: ``(payload) -> result``; sync or async. Invoked exactly
            once per ``execute()``.
        affected_keys: Keys, query names or key predicates to invalidate
            after a successful write.
        optimistic: ``(cache, payload) -> RollbackToken`` applied before the
            operation runs; usually ``cache.apply_optimistic(...)``. Tokens from
            ``apply_optimistic`` calls inside it are collected even if it
            raises, and are rolled back when the write fails.
        schema: Validates the payload before anything else happens.
        name: Used in logs, audit events and ``MutationError``.
    """

    operation: Operation
    affected_keys: tuple[KeyMatcher, ...] = ()
    optimistic: OptimisticUpdate | None = None
    schema: Schema | str | None = None
    name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "affected_keys", tuple(self.affected_keys))


@dataclass(frozen=True, slots=True)
class Success:
    """A completed write. Truthy."""

    value: Any = None

    ok = True

    def __bool__(self) -> bool:
        return True

    def unwrap(self) -> Any:
        return self.value


@dataclass(frozen=True, slots=True)
class Failure:
    """A rejected or failed write. Falsy.

    ``error`` is a ``ValidationError`` (the operation never ran) or a
    ``MutationError`` (the operation ran and failed).
    """

    error: RoostError

    ok = False

    def __bool__(self) -> bool:
        return False

    def unwrap(self) -> Any:
        raise self.error


Result: TypeAlias = Success | Failure


class MutationPipeline:
    """Executes ``MutationSpec`` writes against one ``QueryCache``.

    Holds no per-write state; any number of ``execute()`` calls may be in
    flight at once.
    """

    __slots__ = ("_cache", "_schemas")

    def __init__(self, cache: QueryCache, *, schemas: SchemaRegistry | None = None) -> None:
        self._cache = cache
        self._schemas = schemas

    @property
    def cache(self) -> QueryCache:
        return self._cache

    async def execute(self, spec: MutationSpec, payload: Any) -> Result:
        """Run one write. Returns ``Success(value)`` or ``Failure(error)``."""
        label = spec.name or getattr(spec.operation, "__name__", None) or repr(spec.operation)

        if spec.schema is not None:
            validation = await validate_async(spec.schema, payload, registry=self._schemas)
            if not validation:
                _log.debug("%s rejected by validation: %s", label, sorted(validation.errors))
                return Failure(ValidationError(validation))

        applied: list[RollbackToken] = []
        try:
            if spec.optimistic is not None:
                with self._cache.collect_rollbacks(applied):
                    returned = spec.optimistic(self._cache, payload)
                if returned and not any(token is returned for token in applied):
                    applied.append(returned)
            value = await invoke(spec.operation, payload)
        except asyncio.CancelledError:
            self._rollback(applied, label)
            raise
        except Exception as exc:
            rolled_back = self._rollback(applied, label)
            _log.warning("%s failed: %s", label, exc)
            emit_event(
                "mutation.failed",
                mutation=label,
                details={"error": type(exc).__name__, "rolled_back": rolled_back},
            )
            return Failure(MutationError(label, exc))

        invalidated = self._cache.invalidate(*spec.affected_keys) if spec.affected_keys else []
        _log.debug("%s succeeded; invalidated %d key(s)", label, len(invalidated))
        return Success(value)

    def _rollback(self, applied: list[RollbackToken], label: str) -> bool:
        token = sum(applied, RollbackToken())
        if not token:
            return False
        restored = self._cache.rollback(token)
        _log.debug("%s rolled back %d of %d optimistic entries", label, len(restored), len(token.entries))
        return True
