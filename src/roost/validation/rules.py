"""Built-in validation rules.

A rule pairs a predicate with an error message template::

    Rule(name="max_length", check=lambda v: len(v) <= 3,
         message="Must be at most {n} characters", params={"n": 3})

Templates use ``str.format`` placeholders. Available names are ``{field}``
(the dotted field path), ``{value}`` (the rejected value) and every entry
of ``params``. Anything else in braces, such as ``{YYYY-MM-DD}``, is left
as written.

Parameterized rules are factory functions that return a ``Rule``::

    def max_length(n: int) -> Rule:
        return Rule("max_length", lambda value: len(value) <= n,
                    "Must be at most {n} characters", {"n": n})

Every rule except ``required`` passes on a missing or blank value, so
presence is expressed once, with ``required``, at the head of the list.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, TypeAlias

Predicate: TypeAlias = Callable[[Any], bool | Awaitable[bool]]

_PLACEHOLDER = re.compile(r"\{(\w+)(![rsa])?(:[^{}]*)?\}")


def is_blank(value: Any) -> bool:
    """True for ``None``, whitespace-only strings, and empty collections."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return not value
    return False


def render_message(template: str, **values: Any) -> str:
    """Fill the ``{name}`` placeholders of *template* that appear in *values*.

    Conversions and format specs work as in ``str.format``
    (``{n:.2f}``). Unknown names and stray braces are kept verbatim.
    """

    def fill(match: re.Match[str]) -> str:
        name, conversion, spec = match.groups()
        if name not in values:
            return match.group(0)
        return ("{0" + (conversion or "") + (spec or "") + "}").format(values[name])

    return _PLACEHOLDER.sub(fill, template)


@dataclass(frozen=True, slots=True, eq=False)
class Rule:
    """A named predicate plus the message shown when it fails.

    ``is_async`` marks rules whose predicate returns an awaitable (remote
    uniqueness checks and the like); schemas containing one must be
    validated with ``validate_async()``.
    """

    name: str
    check: Predicate
    message: str
    params: Mapping[str, Any] = field(default_factory=dict)
    is_async: bool = False
    skip_blank: bool = True

    def applies_to(self, value: Any) -> bool:
        """False when the rule should be skipped for *value*."""
        return not (self.skip_blank and is_blank(value))

    def format(self, field_path: str, value: Any) -> str:
        """Render the message template for a failure on *field_path*."""
        return render_message(self.message, field=field_path, value=value, **self.params)

    def with_message(self, message: str) -> Rule:
        """Return a copy of this rule with a different message template."""
        return replace(self, message=message)


# ---------------------------------------------------------------------------
# Custom rules
# ---------------------------------------------------------------------------


def rule(check: Callable[[Any], bool], message: str, *, name: str | None = None) -> Rule:
    """Wrap a synchronous predicate as a rule."""
    return Rule(name=name or getattr(check, "__name__", "rule"), check=check, message=message)


def async_rule(
    check: Callable[[Any], Awaitable[bool]],
    message: str,
    *,
    name: str | None = None,
) -> Rule:
    """Wrap an async predicate (e.g. a server-side uniqueness check) as a rule."""
    return Rule(
        name=name or getattr(check, "__name__", "async_rule"),
        check=check,
        message=message,
        is_async=True,
    )


# ---------------------------------------------------------------------------
# Presence
# ---------------------------------------------------------------------------


required = Rule(
    name="required",
    check=lambda value: not is_blank(value),
    message="This field is required",
    skip_blank=False,
)


# ---------------------------------------------------------------------------
# Length
# ---------------------------------------------------------------------------


def _length(value: Any) -> int | None:
    try:
        return len(value)
    except TypeError:
        return None


def max_length(n: int) -> Rule:
    """String (or list) must have at most *n* characters (items)."""

    def check(value: Any) -> bool:
        size = _length(value)
        return size is not None and size <= n

    return Rule("max_length", check, "Must be at most {n} characters", {"n": n})


def min_length(n: int) -> Rule:
    """String (or list) must have at least *n* characters (items)."""

    def check(value: Any) -> bool:
        size = _length(value)
        return size is not None and size >= n

    return Rule("min_length", check, "Must be at least {n} characters", {"n": n})


# ---------------------------------------------------------------------------
# Format
# ---------------------------------------------------------------------------

# Basic email pattern — checks structure, not deliverability
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")

# Basic URL pattern — checks scheme + host structure
_URL_RE = re.compile(r"^https?://[^\s/$.?#].\S*$", re.IGNORECASE)


email = Rule(
    name="email",
    check=lambda value: isinstance(value, str) and bool(_EMAIL_RE.match(value)),
    message="Must be a valid email address",
)

url = Rule(
    name="url",
    check=lambda value: isinstance(value, str) and bool(_URL_RE.match(value)),
    message="Must be a valid URL",
)


def matches(pattern: str, message: str | None = None) -> Rule:
    """Value must match the given regex pattern."""
    compiled = re.compile(pattern)
    return Rule(
        "matches",
        lambda value: isinstance(value, str) and bool(compiled.match(value)),
        message or "Must match pattern: {pattern}",
        {"pattern": pattern},
    )


# ---------------------------------------------------------------------------
# Choice
# ---------------------------------------------------------------------------


def one_of(*choices: Any) -> Rule:
    """Value must be one of the given choices."""
    allowed = frozenset(choices)
    options = ", ".join(sorted(str(c) for c in allowed))

    def check(value: Any) -> bool:
        try:
            return value in allowed
        except TypeError:
            return False

    return Rule("one_of", check, "Must be one of: {options}", {"options": options})


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return value.is_integer()
    try:
        int(value)
    except (TypeError, ValueError):
        return False
    return True


integer = Rule(name="integer", check=_is_integer, message="Must be a whole number")

number = Rule(
    name="number",
    check=lambda value: _as_number(value) is not None,
    message="Must be a number",
)


def min_value(n: float) -> Rule:
    """Numeric value must be >= *n*."""

    def check(value: Any) -> bool:
        as_number = _as_number(value)
        return as_number is not None and as_number >= n

    return Rule("min_value", check, "Must be at least {n}", {"n": n})


def max_value(n: float) -> Rule:
    """Numeric value must be <= *n*."""

    def check(value: Any) -> bool:
        as_number = _as_number(value)
        return as_number is not None and as_number <= n

    return Rule("max_value", check, "Must be at most {n}", {"n": n})
