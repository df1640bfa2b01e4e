"""Form validation — composable rules, named schemas, clean results.

Usage::

    from roost.validation import Schema, max_length, required, validate

    devise = Schema("devise", {
        "code": [required, max_length(3)],
        "nom": [required, max_length(50)],
    })

    result = validate(devise, {"code": "", "nom": "Dollar"})
    if not result:
        # result.errors == {"code": ["This field is required"]}
        ...

Schemas with async rules (remote uniqueness checks) go through
``await validate_async(...)``; the result has the same shape.
"""

from roost.validation.engine import validate, validate_async
from roost.validation.result import ValidationResult
from roost.validation.rules import (
    Rule,
    async_rule,
    email,
    integer,
    is_blank,
    matches,
    max_length,
    max_value,
    min_length,
    min_value,
    number,
    one_of,
    required,
    rule,
    url,
)
from roost.validation.schema import (
    NON_FIELD_ERRORS,
    CrossFieldRule,
    Field,
    Schema,
    SchemaRegistry,
)

__all__ = [
    "NON_FIELD_ERRORS",
    "CrossFieldRule",
    "Field",
    "Rule",
    "Schema",
    "SchemaRegistry",
    "ValidationResult",
    "async_rule",
    "email",
    "integer",
    "is_blank",
    "matches",
    "max_length",
    "max_value",
    "min_length",
    "min_value",
    "number",
    "one_of",
    "required",
    "rule",
    "url",
    "validate",
    "validate_async",
]
