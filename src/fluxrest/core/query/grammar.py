# src/fluxrest/core/query/grammar.py
"""Parser for string-encoded filter expressions.

A filter expression is a `column.operator.value` triple. Groups of triples are
comma separated, e.g. `status.eq.active,status.eq.pending`. Only the first two
dots of a triple are significant, so values may contain dots.
"""

from typing import Any, List, Optional, Tuple

from ..errors import ValidationError
from .models import Filter, FilterValue
from .operators import FilterOperator

OR = "OR"
AND = "AND"


class GroupCounter:
    """Hands out OR-group ids. One instance per request."""

    def __init__(self, start: int = 1):
        self._next = start

    def allocate(self) -> int:
        group_id = self._next
        self._next += 1
        return group_id


def split_top_level(text: str) -> List[str]:
    """Split on commas that are not nested inside parentheses."""
    parts: List[str] = []
    depth = 0
    current: List[str] = []
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise ValidationError(f"Unbalanced parentheses in filter expression: {text}")
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    if depth != 0:
        raise ValidationError(f"Unbalanced parentheses in filter expression: {text}")
    parts.append("".join(current))
    return parts


def split_triple(segment: str) -> Optional[Tuple[str, str, str]]:
    parts = segment.strip().split(".", 2)
    if len(parts) != 3:
        return None
    return parts[0], parts[1], parts[2]


def coerce_value(operator: Optional[FilterOperator], raw: Any) -> Any:
    """Apply the few token coercions the grammar defines.

    `is.null` becomes None, `is.true`/`is.false` become booleans and `in`
    values become a list. Everything else stays an untyped string.
    """
    if not isinstance(raw, str):
        return raw
    if operator is FilterOperator.IS:
        token = raw.strip().lower()
        if token == "null":
            return None
        if token == "true":
            return True
        if token == "false":
            return False
        return raw
    if operator is FilterOperator.IN:
        inner = raw.strip()
        if inner.startswith("(") and inner.endswith(")"):
            inner = inner[1:-1]
        if not inner:
            return []
        return [item.strip().strip('"') for item in inner.split(",")]
    return raw


def build_filter(
    column: str,
    operator_token: str,
    raw_value: Any,
    is_or: bool = False,
    or_group_id: int = 0,
) -> Filter:
    operator = FilterOperator.parse(operator_token)
    return Filter(
        column=column.strip(),
        operator=operator,
        value=FilterValue.of(coerce_value(operator, raw_value)),
        is_or=is_or,
        or_group_id=or_group_id,
    )


def format_filter(f: Filter) -> str:
    """Encode a filter back to its `column.operator.value` form."""
    op = f.operator.value if f.operator is not None else ""
    raw = f.value.raw
    if isinstance(raw, list):
        value = "(" + ",".join(str(item) for item in raw) + ")"
    elif raw is None:
        value = "null"
    elif isinstance(raw, bool):
        value = "true" if raw else "false"
    else:
        value = str(raw)
    return f"{f.column}.{op}.{value}"


def unwrap_group(text: str, keyword: str) -> str:
    """Strip the outer parentheses of a query-string `or=(...)` value."""
    value = text.strip()
    if value.startswith("(") or value.endswith(")"):
        if not (value.startswith("(") and value.endswith(")")):
            raise ValidationError(f"invalid {keyword} filter format: {text}")
        value = value[1:-1]
    return value


def _nested_group(segment: str) -> Optional[Tuple[str, str]]:
    seg = segment.strip()
    for keyword in (OR, AND):
        prefix = keyword.lower() + "("
        if seg.lower().startswith(prefix) and seg.endswith(")"):
            return keyword, seg[len(prefix):-1]
    return None


def parse_filter_group(
    text: str,
    keyword: str,
    counter: GroupCounter,
    group_id: Optional[int] = None,
) -> List[Filter]:
    """Parse a comma-separated group of filter triples.

    Every filter of an OR group gets the same freshly allocated group id.
    AND groups are flat, except that a nested `or(...)` segment becomes its
    own OR group.
    """
    if not text.strip():
        return []
    segments = split_top_level(text)
    if group_id is None:
        group_id = counter.allocate() if keyword == OR else 0

    filters: List[Filter] = []
    for segment in segments:
        nested = _nested_group(segment)
        if nested is not None:
            nested_keyword, inner = nested
            if keyword == OR and nested_keyword == AND:
                raise ValidationError(f"invalid {keyword} filter format: {segment}")
            # or(...) inside an OR group joins the enclosing group
            inherited = group_id if keyword == nested_keyword == OR else None
            filters.extend(parse_filter_group(inner, nested_keyword, counter, inherited))
            continue

        triple = split_triple(segment)
        if triple is None:
            raise ValidationError(f"invalid {keyword} filter format: {segment}")
        column, op, value = triple
        filters.append(
            build_filter(column, op, value, is_or=keyword == OR, or_group_id=group_id)
        )
    return filters
