# src/fluxrest/core/query/models.py
"""Canonical, per-request query representation.

Both the query-string path and the JSON body path (`PostQueryRequest`)
compile into `QueryParams`; nothing downstream knows which one was used.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field

from ..errors import ValidationError
from .operators import FilterOperator
from .paths import base_column


# ===== Filter values =====


class ValueKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"
    SEQUENCE = "sequence"


@dataclass(frozen=True)
class FilterValue:
    """Tagged filter value. The builder picks a bind strategy from `kind`."""

    kind: ValueKind
    value: Any = None

    @classmethod
    def of(cls, raw: Any) -> "FilterValue":
        if isinstance(raw, FilterValue):
            return raw
        if raw is None:
            return cls(ValueKind.NULL)
        # bool before int: bool is an int subclass
        if isinstance(raw, bool):
            return cls(ValueKind.BOOLEAN, raw)
        if isinstance(raw, (int, float, Decimal)):
            return cls(ValueKind.NUMBER, raw)
        if isinstance(raw, str):
            return cls(ValueKind.STRING, raw)
        if isinstance(raw, (list, tuple)):
            items = tuple(raw)
            for item in items:
                if isinstance(item, (list, tuple, dict)):
                    raise ValidationError("Nested sequences are not supported in filter values")
            return cls(ValueKind.SEQUENCE, items)
        raise ValidationError(f"Unsupported filter value type: {type(raw).__name__}")

    @property
    def raw(self) -> Any:
        if self.kind is ValueKind.SEQUENCE:
            return list(self.value)
        return self.value


# ===== Clauses =====


@dataclass(frozen=True)
class Filter:
    """One `column OP value` clause.

    Filters with `is_or=False` are AND-ed at the top level. Filters sharing a
    nonzero `or_group_id` render as one parenthesized OR group.
    """

    column: str
    operator: Optional[FilterOperator]
    value: FilterValue = field(default_factory=lambda: FilterValue(ValueKind.NULL))
    is_or: bool = False
    or_group_id: int = 0


@dataclass(frozen=True)
class OrderBy:
    column: str
    desc: bool = False
    nulls: str = ""  # "first" | "last" | ""


class CountType(str, Enum):
    EXACT = "exact"
    PLANNED = "planned"
    ESTIMATED = "estimated"

    @classmethod
    def parse(cls, token: Optional[str]) -> Optional["CountType"]:
        if token is None or not str(token).strip():
            return None
        try:
            return cls(str(token).strip().lower())
        except ValueError:
            raise ValidationError(f"Invalid count type: {token}")


class AggregateFunction(str, Enum):
    COUNT = "count"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


@dataclass(frozen=True)
class Aggregation:
    function: AggregateFunction
    column: Optional[str] = None  # None means `*`, only valid for COUNT
    alias: str = ""

    @property
    def output_name(self) -> str:
        if self.alias:
            return self.alias
        if self.column is None:
            return self.function.value
        return f"{self.function.value}_{self.column}"


@dataclass(frozen=True)
class Cursor:
    """Decoded keyset position: rows after `value` on `column`."""

    column: str
    value: Any
    desc: bool = False


@dataclass(frozen=True)
class QueryParams:
    select: Tuple[str, ...] = ()
    aggregations: Tuple[Aggregation, ...] = ()
    filters: Tuple[Filter, ...] = ()
    order: Tuple[OrderBy, ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None
    count: Optional[CountType] = None
    group_by: Tuple[str, ...] = ()
    cursor: Optional[Cursor] = None
    cursor_column: Optional[str] = None

    @property
    def keyset_column(self) -> Optional[str]:
        if self.cursor_column:
            return self.cursor_column
        return self.cursor.column if self.cursor is not None else None

    @property
    def keyset_desc(self) -> bool:
        """Keyset direction: an explicit order on the column wins over the cursor."""
        column = self.keyset_column
        for o in self.order:
            if o.column == column:
                return o.desc
        return self.cursor.desc if self.cursor is not None else False

    def referenced_columns(self) -> List[str]:
        """Every table column the params point at, in a stable order.

        JSON path columns such as `data->>key` count as their base column.
        """
        columns = [c for c in self.select if c != "*"]
        columns += [a.column for a in self.aggregations if a.column is not None]
        columns += [f.column for f in self.filters]
        columns += [o.column for o in self.order]
        columns += list(self.group_by)
        if self.keyset_column is not None:
            columns.append(self.keyset_column)
        return [base_column(c) for c in columns]


# ===== JSON request body =====


class PostQueryFilter(BaseModel):
    column: str
    operator: str
    value: Any = None


class PostQueryBetweenFilter(BaseModel):
    column: str
    min: Any
    max: Any
    negated: bool = False


class PostQueryOrderBy(BaseModel):
    column: str
    direction: str = "asc"
    nulls: str = ""


class PostQueryRequest(BaseModel):
    """Body of the POST-based complex query endpoint."""

    select: str = ""
    filters: List[PostQueryFilter] = Field(default_factory=list)
    or_filters: List[str] = Field(default_factory=list)
    and_filters: List[str] = Field(default_factory=list)
    between_filters: List[PostQueryBetweenFilter] = Field(default_factory=list)
    order: List[PostQueryOrderBy] = Field(default_factory=list)
    limit: Optional[int] = Field(None, ge=0)
    offset: Optional[int] = Field(None, ge=0)
    count: Optional[str] = None
    group_by: List[str] = Field(default_factory=list)
    cursor: Optional[str] = None
    cursor_column: Optional[str] = None
