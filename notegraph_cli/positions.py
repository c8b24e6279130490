"""Position specs: where an edit instruction lands in a note.

The model writes positions as short strings (``start``, ``end``,
``after:## Heading``, ``insert:5``, ``replace:3-4``, ``delete:7``, ``create``,
``open``). :func:`parse_position` turns that string into one of the variant
classes below once, so everything downstream works on typed values.
"""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass
from typing import Optional, Union

from .models import EditKind

_RANGE_RE = re.compile(r"^(\d+)(?:-(\d+))?$")
_LINE_RE = re.compile(r"^\s*(-?\d+)")

# Sort keys for bottom-to-top application: "after" sits just below "end"
_END_KEY = float("inf")
_AFTER_KEY = sys.float_info.max


@dataclass(frozen=True)
class LineRange:
    start: int
    end: int

    def __str__(self) -> str:
        return str(self.start) if self.start == self.end else f"{self.start}-{self.end}"


@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class End:
    pass


@dataclass(frozen=True)
class Create:
    pass


@dataclass(frozen=True)
class Open:
    pass


@dataclass(frozen=True)
class After:
    heading: str


@dataclass(frozen=True)
class Insert:
    """Insert before *line*. ``line`` is ``None`` when the spec was not a number."""
    line: Optional[int]
    raw: str = ""


@dataclass(frozen=True)
class Replace:
    """Replace a line range, or (``range is None``) a literal text match."""
    range: Optional[LineRange]
    raw: str = ""


@dataclass(frozen=True)
class Delete:
    """Delete a line range. ``range`` is ``None`` when the spec did not parse."""
    range: Optional[LineRange]
    raw: str = ""


@dataclass(frozen=True)
class Unknown:
    raw: str


Position = Union[Start, End, Create, Open, After, Insert, Replace, Delete, Unknown]


def parse_range(spec: str) -> Optional[LineRange]:
    """Parse ``"5"`` or ``"5-7"``; anything else gives ``None``."""
    match = _RANGE_RE.match(spec)
    if not match:
        return None
    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else start
    return LineRange(start, end)


def parse_position(spec: str) -> Position:
    """Parse a position string into its variant."""
    if spec == "start":
        return Start()
    if spec == "end":
        return End()
    if spec == "create":
        return Create()
    if spec == "open":
        return Open()
    if spec.startswith("after:"):
        return After(spec[len("after:"):])
    if spec.startswith("insert:"):
        raw = spec[len("insert:"):]
        match = _LINE_RE.match(raw)
        return Insert(int(match.group(1)) if match else None, raw)
    if spec.startswith("replace:"):
        raw = spec[len("replace:"):]
        return Replace(parse_range(raw), raw)
    if spec.startswith("delete:"):
        raw = spec[len("delete:"):]
        return Delete(parse_range(raw), raw)
    return Unknown(spec)


def edit_sort_key(position: Position) -> float:
    """Effective line number used to order edits bottom-to-top."""
    if isinstance(position, End):
        return _END_KEY
    if isinstance(position, After):
        return _AFTER_KEY
    if isinstance(position, Insert):
        return float(position.line or 0)
    if isinstance(position, (Replace, Delete)) and position.range is not None:
        return float(position.range.start)
    return 0.0


def edit_kind(position: Position) -> EditKind:
    if isinstance(position, Delete):
        return EditKind.DELETE
    if isinstance(position, (Start, End, After, Insert)):
        return EditKind.ADD
    return EditKind.REPLACE
