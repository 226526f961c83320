# src/fluxrest/core/query/paths.py
"""JSON path columns: `data->key`, `data->>key`, `items->0->>name`.

`->` steps keep a json value, a final `->>` extracts text. Numeric steps
index into arrays. Path keys are restricted to plain identifiers and
integers, so they can be rendered as SQL literals without escaping.
"""

import re
from dataclasses import dataclass
from typing import Tuple

from ..errors import ValidationError

_ARROW = re.compile(r"(->>|->)")
_KEY_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*|[0-9]+")

TEXT_ARROW = "->>"


@dataclass(frozen=True)
class ColumnPath:
    base: str
    steps: Tuple[Tuple[str, str], ...] = ()  # (arrow, key)

    @property
    def is_path(self) -> bool:
        return bool(self.steps)

    @property
    def extracts_text(self) -> bool:
        return bool(self.steps) and self.steps[-1][0] == TEXT_ARROW

    @property
    def output_name(self) -> str:
        """Name of the result column when the path is selected: the last key
        that is not an array index, else the base column."""
        for _, key in reversed(self.steps):
            if not key.isdigit():
                return key
        return self.base


def parse_column_path(column: str) -> ColumnPath:
    parts = _ARROW.split(column.strip())
    base = parts[0].strip()
    steps = []
    for arrow, key in zip(parts[1::2], parts[2::2]):
        key = key.strip()
        if _KEY_PATTERN.fullmatch(key) is None:
            raise ValidationError(f"Invalid JSON path: {column}")
        steps.append((arrow, key))
    return ColumnPath(base=base, steps=tuple(steps))


def base_column(column: str) -> str:
    """The table column a possibly path-qualified name refers to."""
    return parse_column_path(column).base


def render_steps(path: ColumnPath) -> str:
    rendered = []
    for arrow, key in path.steps:
        rendered.append(f"{arrow}{key}" if key.isdigit() else f"{arrow}'{key}'")
    return "".join(rendered)
