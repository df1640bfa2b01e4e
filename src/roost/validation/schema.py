"""Validation schemas — immutable trees of field rules.

A schema maps field paths to ``Field`` nodes. A field holds an ordered
rule list and, optionally, a nested schema for object or list-of-object
values. Nested schemas are embedded by reference: either the ``Schema``
object itself or the name it is registered under in a ``SchemaRegistry``.

Usage::

    address = Schema("address", {
        "city": [required, max_length(80)],
        "zip": [matches(r"^\\d{5}$")],
    })

    customer = Schema("customer", {
        "name": [required, max_length(50)],
        "address": Field(schema=address),
        "contacts": Field(schema="contact", many=True),
    }, checks=(
        CrossFieldRule(lambda c: c.get("name") != c.get("alias"),
                       "Alias must differ from name", path="alias"),
    ))
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from roost.errors import ConfigurationError, SchemaCycleError
from roost.validation.rules import Rule

# Error key for cross-field rules that do not target a single field
NON_FIELD_ERRORS = "__all__"


@dataclass(frozen=True, slots=True, eq=False)
class Field:
    """One node of a schema: its rules and an optional nested schema.

    ``many=True`` means the value is a list and every item is validated
    against ``schema``.
    """

    rules: tuple[Rule, ...] = ()
    schema: Schema | str | None = None
    many: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "rules", tuple(self.rules))
        if self.many and self.schema is None:
            msg = "Field(many=True) requires a nested schema"
            raise ConfigurationError(msg)


@dataclass(frozen=True, slots=True, eq=False)
class CrossFieldRule:
    """A root-level rule that sees the whole candidate value.

    Runs after every per-field rule. Failures are reported under ``path``
    (relative to the schema) or ``NON_FIELD_ERRORS``.
    """

    check: Callable[[Mapping[str, Any]], bool | Awaitable[bool]]
    message: str
    path: str = NON_FIELD_ERRORS
    is_async: bool = False


@dataclass(frozen=True, slots=True, eq=False)
class Schema:
    """A named, immutable validation schema.

    ``fields`` accepts either ``Field`` objects or plain rule sequences,
    which are wrapped in a ``Field``. The stored mapping is read-only.
    """

    name: str
    fields: Mapping[str, Field | Sequence[Rule]]
    checks: tuple[CrossFieldRule, ...] = ()

    def __post_init__(self) -> None:
        normalized: dict[str, Field] = {}
        for path, node in self.fields.items():
            if isinstance(node, Field):
                normalized[path] = node
            elif isinstance(node, Rule):
                normalized[path] = Field(rules=(node,))
            else:
                normalized[path] = Field(rules=tuple(node))
        object.__setattr__(self, "fields", MappingProxyType(normalized))
        object.__setattr__(self, "checks", tuple(self.checks))

    def references(self) -> Iterator[Schema | str]:
        """Nested schema references, in field order."""
        for node in self.fields.values():
            if node.schema is not None:
                yield node.schema

    @property
    def has_async_rules(self) -> bool:
        """True if any rule declared directly on this schema is async."""
        return any(r.is_async for node in self.fields.values() for r in node.rules) or any(
            c.is_async for c in self.checks
        )

    def __repr__(self) -> str:
        return f"Schema({self.name!r}, fields={list(self.fields)!r})"


class SchemaRegistry:
    """Named schemas, shared across forms.

    Registration rejects duplicate names and cyclic composition, so a
    schema that validates here can never recurse forever at validation
    time. References to names not registered yet are allowed; a cycle
    closed by a later registration is detected then.

    Usage::

        registry = SchemaRegistry([address, customer])
        registry.get("customer")
    """

    __slots__ = ("_schemas",)

    def __init__(self, schemas: Iterable[Schema] = ()) -> None:
        self._schemas: dict[str, Schema] = {}
        for schema in schemas:
            self.register(schema)

    def register(self, schema: Schema) -> Schema:
        """Add *schema* under its name and return it."""
        existing = self._schemas.get(schema.name)
        if existing is schema:
            return schema
        if existing is not None:
            msg = f"A different schema is already registered as {schema.name!r}"
            raise ConfigurationError(msg)

        cycle = self._find_cycle(schema)
        if cycle is not None:
            raise SchemaCycleError(cycle)

        self._schemas[schema.name] = schema
        return schema

    def get(self, name: str) -> Schema:
        """Return the schema registered as *name*."""
        try:
            return self._schemas[name]
        except KeyError:
            msg = f"No schema registered as {name!r}"
            raise ConfigurationError(msg) from None

    def resolve(self, ref: Schema | str) -> Schema:
        """Turn a reference (object or name) into a ``Schema``."""
        if isinstance(ref, Schema):
            return ref
        return self.get(ref)

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def _find_cycle(self, candidate: Schema) -> tuple[str, ...] | None:
        """Depth-first search for a composition cycle reachable from *candidate*."""
        on_path: list[Schema] = []
        done: set[int] = set()

        def lookup(ref: Schema | str) -> Schema | None:
            if isinstance(ref, Schema):
                return ref
            if ref == candidate.name:
                return candidate
            return self._schemas.get(ref)

        def visit(schema: Schema) -> tuple[str, ...] | None:
            if any(s is schema for s in on_path):
                start = next(i for i, s in enumerate(on_path) if s is schema)
                return (*(s.name for s in on_path[start:]), schema.name)
            if id(schema) in done:
                return None
            on_path.append(schema)
            for ref in schema.references():
                child = lookup(ref)
                if child is None:
                    continue
                found = visit(child)
                if found is not None:
                    return found
            on_path.pop()
            done.add(id(schema))
            return None

        return visit(candidate)
