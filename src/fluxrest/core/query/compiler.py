# src/fluxrest/core/query/compiler.py
"""Compiles request input into `QueryParams`.

Two entry points produce the same canonical structure:

- `convert(request)` for the JSON body of the POST query endpoint.
- `QueryStringParser().parse(items)` for PostgREST-style query strings.
"""

import re
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl

from ..errors import ValidationError
from .cursor import parse_cursor_column, resolve_cursor
from .grammar import (
    AND,
    OR,
    GroupCounter,
    build_filter,
    coerce_value,
    parse_filter_group,
    split_top_level,
    unwrap_group,
)
from .models import (
    AggregateFunction,
    Aggregation,
    CountType,
    Filter,
    FilterValue,
    OrderBy,
    PostQueryBetweenFilter,
    PostQueryRequest,
    QueryParams,
)
from .operators import FilterOperator

RESERVED_KEYS = {
    "select",
    "order",
    "limit",
    "offset",
    "or",
    "and",
    "on_conflict",
    "count",
    "group_by",
    "cursor",
    "cursor_column",
}

_AGGREGATE_PATTERN = re.compile(r"^(?:(?P<alias>[^:()]+):)?(?P<fn>\w+)\((?P<arg>[^()]*)\)$")
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


# ===== Shared clause parsers =====


def parse_select(text: Optional[str]) -> Tuple[Tuple[str, ...], Tuple[Aggregation, ...]]:
    """Split a select list into plain columns and aggregate expressions.

    `*` and an empty list both mean every column. `count(*)`, `sum(price)`
    and `total:sum(price)` become aggregations.
    """
    columns: List[str] = []
    aggregations: List[Aggregation] = []
    if not text or not text.strip():
        return (), ()

    for item in split_top_level(text):
        item = item.strip()
        if not item or item == "*":
            continue
        if "(" not in item and ")" not in item:
            columns.append(item)
            continue

        match = _AGGREGATE_PATTERN.match(item)
        if match is None:
            raise ValidationError(f"Invalid select expression: {item}")
        try:
            function = AggregateFunction(match.group("fn").lower())
        except ValueError:
            raise ValidationError(f"Unknown aggregate function: {match.group('fn')}")
        arg = match.group("arg").strip()
        if arg in ("", "*"):
            if function is not AggregateFunction.COUNT:
                raise ValidationError(f"{function.value}() requires a column")
            column = None
        else:
            column = arg
        alias = (match.group("alias") or "").strip()
        aggregations.append(Aggregation(function=function, column=column, alias=alias))

    return tuple(columns), tuple(aggregations)


def parse_order(text: Optional[str]) -> Tuple[OrderBy, ...]:
    """Parse `col.asc|desc.nullsfirst|nullslast` entries, order preserved."""
    if not text or not text.strip():
        return ()
    order: List[OrderBy] = []
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        parts = item.split(".")
        column = parts[0].strip()
        if not column:
            raise ValidationError(f"Invalid order format: {item}")
        desc = False
        nulls = ""
        for token in (p.strip().lower() for p in parts[1:]):
            if token == "desc":
                desc = True
            elif token == "asc":
                desc = False
            elif token == "nullsfirst":
                nulls = "first"
            elif token == "nullslast":
                nulls = "last"
        order.append(OrderBy(column=column, desc=desc, nulls=nulls))
    return tuple(order)


def parse_column_list(text: Optional[str]) -> Tuple[str, ...]:
    """Comma list with whitespace trimmed per entry and empty entries dropped."""
    if not text:
        return ()
    return tuple(part.strip() for part in text.split(",") if part.strip())


parse_group_by = parse_column_list
parse_on_conflict = parse_column_list


def parse_bound(value: Optional[str], name: str) -> Optional[int]:
    if value is None or value.strip() == "":
        return None
    try:
        number = int(value.strip())
    except ValueError:
        raise ValidationError(f"Invalid {name}: {value}")
    if number < 0:
        raise ValidationError(f"Invalid {name}: {value}")
    return number


# ===== JSON body path =====


def desugar_between(bf: PostQueryBetweenFilter, counter: GroupCounter) -> List[Filter]:
    """Rewrite a BETWEEN filter as two comparison filters.

    `min <= col <= max` becomes two AND-ed filters. The negated form
    `col < min OR col > max` becomes one OR group of two filters.
    """
    column = bf.column.strip()
    if not bf.negated:
        return [
            Filter(column, FilterOperator.GTE, FilterValue.of(bf.min)),
            Filter(column, FilterOperator.LTE, FilterValue.of(bf.max)),
        ]
    group_id = counter.allocate()
    return [
        Filter(column, FilterOperator.LT, FilterValue.of(bf.min), is_or=True, or_group_id=group_id),
        Filter(column, FilterOperator.GT, FilterValue.of(bf.max), is_or=True, or_group_id=group_id),
    ]


def convert(request: PostQueryRequest) -> QueryParams:
    """Compile a `PostQueryRequest` body into `QueryParams`.

    Filters are concatenated as direct, then BETWEEN-derived, then OR groups,
    then AND groups. Limit and offset pass through untouched.
    """
    counter = GroupCounter()
    select, aggregations = parse_select(request.select)

    filters: List[Filter] = []
    for item in request.filters:
        operator = FilterOperator.parse(item.operator)
        filters.append(
            Filter(
                column=item.column.strip(),
                operator=operator,
                value=FilterValue.of(coerce_value(operator, item.value)),
            )
        )

    for between in request.between_filters:
        filters.extend(desugar_between(between, counter))

    for group in request.or_filters:
        filters.extend(parse_filter_group(unwrap_group(group, OR), OR, counter))

    for group in request.and_filters:
        filters.extend(parse_filter_group(unwrap_group(group, AND), AND, counter))

    order = tuple(
        OrderBy(
            column=o.column.strip(),
            desc=o.direction.strip().lower() == "desc",
            nulls=o.nulls.strip().lower(),
        )
        for o in request.order
    )
    cursor_column = parse_cursor_column(request.cursor_column)

    return QueryParams(
        select=select,
        aggregations=aggregations,
        filters=tuple(filters),
        order=order,
        limit=request.limit,
        offset=request.offset,
        count=CountType.parse(request.count),
        group_by=tuple(g.strip() for g in request.group_by if g.strip()),
        cursor=resolve_cursor(request.cursor, cursor_column),
        cursor_column=cursor_column,
    )


# ===== Query string path =====


def parse_query_string(raw: str) -> List[Tuple[str, str]]:
    """Decode a raw query string into ordered `(key, value)` pairs.

    Malformed percent escapes and byte sequences that are not UTF-8 are
    rejected instead of being passed through.
    """
    if _BAD_ESCAPE.search(raw):
        raise ValidationError("Invalid query string")
    try:
        return parse_qsl(raw, keep_blank_values=True, errors="strict")
    except (UnicodeDecodeError, ValueError):
        raise ValidationError("Invalid query string")


def _first(items: Sequence[Tuple[str, str]], key: str) -> Optional[str]:
    for k, v in items:
        if k == key:
            return v
    return None


def extract_on_conflict(items: Sequence[Tuple[str, str]]) -> Tuple[str, ...]:
    return parse_on_conflict(_first(items, "on_conflict"))


class QueryStringParser:
    """Turns decoded query-string pairs into `QueryParams`.

    Non-reserved keys are filters in either `col=op.value` or
    `col.op=value` form. Repeated keys each add a filter, so
    `age=gte.18&age=lte.65` is a range.
    """

    def parse(self, items: Iterable[Tuple[str, str]]) -> QueryParams:
        items = list(items)
        counter = GroupCounter()
        select, aggregations = parse_select(_first(items, "select"))

        filters: List[Filter] = []
        for key, value in items:
            if key in RESERVED_KEYS:
                continue
            filters.append(self._parse_filter(key, value))

        for key, value in items:
            if key == "or":
                filters.extend(parse_filter_group(unwrap_group(value, OR), OR, counter))
            elif key == "and":
                filters.extend(parse_filter_group(unwrap_group(value, AND), AND, counter))

        cursor_column = parse_cursor_column(_first(items, "cursor_column"))
        return QueryParams(
            select=select,
            aggregations=aggregations,
            filters=tuple(filters),
            order=parse_order(_first(items, "order")),
            limit=parse_bound(_first(items, "limit"), "limit"),
            offset=parse_bound(_first(items, "offset"), "offset"),
            count=CountType.parse(_first(items, "count")),
            group_by=parse_group_by(_first(items, "group_by")),
            cursor=resolve_cursor(_first(items, "cursor"), cursor_column),
            cursor_column=cursor_column,
        )

    def _parse_filter(self, key: str, value: str) -> Filter:
        key = key.strip()
        if not key:
            raise ValidationError("Invalid filter: empty column name")

        # col.op=value
        if "." in key:
            column, op = key.split(".", 1)
            if not column or not op:
                raise ValidationError(f"Invalid filter: {key}={value}")
            return build_filter(column, op, value)

        # col=op.value; without a known operator prefix the filter is left
        # operator-less and fails validation
        op, dot, raw = value.partition(".")
        if not dot:
            return build_filter(key, "", value)
        return build_filter(key, op, raw)
