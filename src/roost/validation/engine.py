"""Schema evaluation, shared by ``validate()`` and ``validate_async()``.

The walk over a schema is written once, as a generator. Each time it needs
a predicate evaluated it yields a ``_Check``; the driver evaluates it and
sends back the boolean outcome. The sync driver refuses async predicates,
the async driver awaits them. Rule order and short-circuiting are therefore
identical in both modes.
"""

from __future__ import annotations

from collections.abc import Callable, Generator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeAlias

from roost._internal.invoke import invoke, needs_loop
from roost.errors import ConfigurationError
from roost.validation.result import ValidationResult
from roost.validation.rules import is_blank, render_message
from roost.validation.schema import NON_FIELD_ERRORS, Schema, SchemaRegistry


@dataclass(frozen=True, slots=True)
class _Check:
    """One predicate evaluation requested by the walk."""

    func: Callable[[Any], Any]
    value: Any
    is_async: bool
    label: str


_Walk: TypeAlias = Generator[_Check, bool, None]


def _join(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name


def _lookup(value: Any, path: str) -> Any:
    """Read a (possibly dotted) field path from a mapping; missing -> None."""
    current = value
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def _walk_schema(
    schema: Schema,
    value: Any,
    prefix: str,
    registry: SchemaRegistry,
    errors: dict[str, list[str]],
) -> _Walk:
    for name, node in schema.fields.items():
        path = _join(prefix, name)
        field_value = _lookup(value, name)

        failed = False
        for rule in node.rules:
            if not rule.applies_to(field_value):
                continue
            ok = yield _Check(rule.check, field_value, rule.is_async, f"{path}:{rule.name}")
            if not ok:
                errors.setdefault(path, []).append(rule.format(path, field_value))
                failed = True
                break

        if failed or node.schema is None or is_blank(field_value):
            continue

        child = registry.resolve(node.schema)
        if node.many:
            if isinstance(field_value, (str, bytes)) or not isinstance(field_value, Sequence):
                errors.setdefault(path, []).append("Must be a list")
                continue
            for index, item in enumerate(field_value):
                yield from _walk_object(child, item, _join(path, str(index)), registry, errors)
        else:
            yield from _walk_object(child, field_value, path, registry, errors)

    # Cross-field rules run last and see the whole value
    for check in schema.checks:
        ok = yield _Check(check.check, value, check.is_async, f"{schema.name}:{check.path}")
        if not ok:
            target = prefix if check.path == NON_FIELD_ERRORS and prefix else _join(prefix, check.path)
            errors.setdefault(target, []).append(render_message(check.message, field=target))


def _walk_object(
    schema: Schema,
    value: Any,
    path: str,
    registry: SchemaRegistry,
    errors: dict[str, list[str]],
) -> _Walk:
    if not isinstance(value, Mapping):
        errors.setdefault(path, []).append("Must be an object")
        return
    yield from _walk_schema(schema, value, path, registry, errors)


def _prepare(
    schema: Schema | str,
    registry: SchemaRegistry | None,
) -> tuple[Schema, SchemaRegistry]:
    registry = registry if registry is not None else SchemaRegistry()
    return registry.resolve(schema), registry


def validate(
    schema: Schema | str,
    value: Any,
    *,
    registry: SchemaRegistry | None = None,
) -> ValidationResult:
    """Validate *value* against *schema*. Pure and synchronous.

    Args:
        schema: A ``Schema``, or the name of one in *registry*.
        value: The candidate value — usually a dict of form fields.
        registry: Resolves schemas embedded by name.

    Returns:
        A ``ValidationResult`` with ``.valid`` and ``.errors``
        (dotted field path → list of messages).

    Raises:
        ConfigurationError: if the schema contains an async rule; use
            ``validate_async()`` for those.

    Example::

        result = validate(devise, {"code": "", "nom": "A"})
        # result.errors == {"code": ["This field is required"]}
    """
    root, registry = _prepare(schema, registry)
    errors: dict[str, list[str]] = {}
    walk = _walk_schema(root, value, "", registry, errors)

    try:
        check = next(walk)
        while True:
            if check.is_async:
                _refuse_async(walk, check)
            outcome = check.func(check.value)
            if needs_loop(outcome):
                _refuse_async(walk, check)
            check = walk.send(bool(outcome))
    except StopIteration:
        pass

    return ValidationResult(value=value, errors=errors)


def _refuse_async(walk: _Walk, check: _Check) -> None:
    walk.close()
    msg = (
        f"Rule {check.label!r} is asynchronous. "
        "Use validate_async() for schemas with async rules."
    )
    raise ConfigurationError(msg)


async def validate_async(
    schema: Schema | str,
    value: Any,
    *,
    registry: SchemaRegistry | None = None,
) -> ValidationResult:
    """Validate *value*, awaiting async rules in declaration order.

    Same semantics and result shape as ``validate()``.
    """
    root, registry = _prepare(schema, registry)
    errors: dict[str, list[str]] = {}
    walk = _walk_schema(root, value, "", registry, errors)

    try:
        check = next(walk)
        while True:
            outcome = await invoke(check.func, check.value)
            check = walk.send(bool(outcome))
    except StopIteration:
        pass

    return ValidationResult(value=value, errors=errors)
