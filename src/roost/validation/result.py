"""Validation result — immutable container for the checked value and its errors."""

from dataclasses import dataclass
from typing import Any

from roost.errors import ValidationError


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """The outcome of validating a value against a schema.

    ``valid`` is True when there are no errors.
    The result is falsy when invalid, so you can write::

        result = validate(devise_schema, payload)
        if not result:
            show_errors(result.errors)

    ``errors`` maps dotted field paths to lists of messages::

        {"code": ["This field is required"],
         "lines.0.amount": ["Must be a number"]}
    """

    value: Any
    errors: dict[str, list[str]]

    @property
    def valid(self) -> bool:
        """True if validation passed with no errors."""
        return not self.errors

    @property
    def is_valid(self) -> bool:
        """Alias of ``valid``."""
        return not self.errors

    def __bool__(self) -> bool:
        """Falsy when invalid — enables ``if not result:`` pattern."""
        return not self.errors

    def first_error(self, path: str) -> str | None:
        """The first message for *path*, or ``None``."""
        messages = self.errors.get(path)
        return messages[0] if messages else None

    def raise_for_errors(self) -> None:
        """Raise ``ValidationError`` if the value is invalid."""
        if self.errors:
            raise ValidationError(self)
