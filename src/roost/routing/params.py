"""Path parameter converters.

A converter is named in a route template (``{id:int}``) and owns both
directions of one segment: recognising and parsing it on the way in
(``RouteRegistry.match()``), and checking and quoting a value on the way out
(``RouteRegistry.build()``).
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote


@dataclass(frozen=True, slots=True)
class Converter:
    """One ``{name:type}`` segment type.

    Attributes:
        name: The type as written in templates.
        pattern: Regular expression a raw segment must match in full.
        parse: Turns the matched text into the Python value handed to views.
        keeps_slashes: ``True`` for catch-all segments, whose slashes are
            path separators rather than data.
    """

    name: str
    pattern: str
    parse: Callable[[str], Any]
    keeps_slashes: bool = False
    regex: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "regex", re.compile(self.pattern))

    def accepts(self, raw: str) -> bool:
        return self.regex.fullmatch(raw) is not None

    def to_url(self, value: Any) -> str:
        """Render *value* as a quoted path segment."""
        raw = str(value)
        if not self.accepts(raw):
            msg = f"{raw!r} does not match {self.name!r}"
            raise ValueError(msg)
        return quote(raw, safe="/" if self.keeps_slashes else "")


CONVERTERS: dict[str, Converter] = {
    converter.name: converter
    for converter in (
        Converter("str", r"[^/]+", str),
        Converter("int", r"-?\d+", int),
        Converter("float", r"-?\d+(?:\.\d+)?", float),
        Converter("path", r".+", str, keeps_slashes=True),
    )
}

