# src/fluxrest/core/query/builder.py
"""Renders parameterized PostgreSQL statements for one table.

Every value goes through a positional `$n` placeholder. Identifiers are
checked against an allow-list and double-quoted; nothing user supplied is
ever spliced into the SQL text unquoted.
"""

import dataclasses
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

from ..errors import ValidationError
from ..models.tables import TableInfo
from .models import Filter, FilterValue, OrderBy, QueryParams, ValueKind
from .operators import IS_KEYWORDS, LIST_OPERATORS, FilterOperator
from .paths import ColumnPath, parse_column_path, render_steps

IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
NULLS_ORDERING = {"": "", "first": " NULLS FIRST", "last": " NULLS LAST"}
NUMERIC_OPERATORS = {FilterOperator.GT, FilterOperator.GTE, FilterOperator.LT, FilterOperator.LTE}


# ===== Identifiers =====


def is_valid_identifier(name: str) -> bool:
    return isinstance(name, str) and IDENTIFIER_PATTERN.fullmatch(name) is not None


def quote_identifier(name: str) -> str:
    """Double-quote a column, table or schema name after validating it."""
    if not is_valid_identifier(name):
        raise ValidationError(f"Invalid identifier: {name!r}")
    return f'"{name}"'


def quote_table(table: TableInfo) -> str:
    return f"{quote_identifier(table.schema_name)}.{quote_identifier(table.name)}"


# ===== Validation =====


def validate_params(params: QueryParams, table: TableInfo) -> None:
    """Reject unknown operators, unknown columns, JSON paths into non-JSON
    columns and bad NULLS ordering."""
    for f in params.filters:
        if f.operator is None:
            raise ValidationError(f"Unknown operator for column: {f.column}")
    for column in params.referenced_columns():
        if not table.has_column(column):
            raise ValidationError(f"Unknown column: {column}")
    path_columns = [c for c in params.select if c != "*"]
    path_columns += [f.column for f in params.filters] + [o.column for o in params.order]
    for column in path_columns:
        path = parse_column_path(column)
        if path.is_path and not table.is_json_column(path.base):
            raise ValidationError(f"Column is not JSON: {path.base}")
    for order in params.order:
        if order.nulls not in NULLS_ORDERING:
            raise ValidationError(f"Invalid nulls ordering: {order.nulls}")


# ===== Upsert =====


@dataclass(frozen=True)
class UpsertOptions:
    on_conflict: Sequence[str] = ()
    ignore_duplicates: bool = False
    default_to_null: bool = False


def is_in_conflict_target(column: str, target: Optional[Sequence[str]]) -> bool:
    """Exact, case-sensitive membership test. An absent target holds nothing."""
    return bool(target) and column in target


def resolve_conflict_target(table: TableInfo, on_conflict: Sequence[str] = ()) -> List[str]:
    """Pick the ON CONFLICT columns: explicit list first, else the primary key."""
    if on_conflict:
        for column in on_conflict:
            if not table.has_column(column):
                raise ValidationError(f"Unknown column in on_conflict: {column}")
        return list(on_conflict)
    if table.primary_key:
        return list(table.primary_key)
    raise ValidationError(
        f"Cannot perform upsert on table {table.key}: no primary key or unique constraint"
    )


# ===== Statements =====


@dataclass
class SqlStatement:
    sql: str
    args: List[Any] = field(default_factory=list)


class _Args:
    """Collects bound values and hands out sequential placeholders."""

    def __init__(self):
        self.values: List[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"


class QueryBuilder:
    """Builds SELECT / COUNT / INSERT / UPDATE / DELETE statements for a table."""

    def __init__(self, table: TableInfo):
        self.table = table
        self.table_sql = quote_table(table)

    # ===== Read =====

    def build_select(self, params: QueryParams) -> SqlStatement:
        args = _Args()
        sql = f"SELECT {self._select_list(params)} FROM {self.table_sql}"
        sql += self._where(self._keyset_filters(params), args)
        sql += self._group_by(params.group_by)
        sql += self._order_by(self._keyset_order(params))
        if params.limit is not None:
            sql += f" LIMIT {args.add(params.limit)}"
        if params.offset is not None:
            sql += f" OFFSET {args.add(params.offset)}"
        return SqlStatement(sql, args.values)

    def build_count(self, params: QueryParams) -> SqlStatement:
        """COUNT over the filtered rows; the keyset position does not narrow the total."""
        args = _Args()
        where = self._where(params.filters, args)
        if params.group_by:
            inner = f"SELECT 1 FROM {self.table_sql}{where}{self._group_by(params.group_by)}"
            return SqlStatement(f'SELECT COUNT(*) FROM ({inner}) AS "grouped"', args.values)
        return SqlStatement(f"SELECT COUNT(*) FROM {self.table_sql}{where}", args.values)

    def build_explain(self, params: QueryParams) -> SqlStatement:
        """Planner estimate for the full, unpaginated result."""
        statement = self.build_select(dataclasses.replace(params, limit=None, offset=None, cursor=None))
        return SqlStatement(f"EXPLAIN (FORMAT JSON) {statement.sql}", statement.args)

    def build_select_by_pk(self, pk_values: Sequence[Any], params: Optional[QueryParams] = None) -> SqlStatement:
        params = params or QueryParams()
        args = _Args()
        sql = f"SELECT {self._select_list(params)} FROM {self.table_sql}"
        # query-string filters narrow the by-id lookup further
        sql += self._where(self._pk_filters(pk_values) + list(params.filters), args)
        return SqlStatement(sql, args.values)

    # ===== Insert =====

    def build_insert(self, record: Dict[str, Any], upsert: Optional[UpsertOptions] = None) -> SqlStatement:
        if not record:
            sql = f"INSERT INTO {self.table_sql} DEFAULT VALUES"
            if upsert is not None:
                sql += self._conflict_clause([], upsert)
            return SqlStatement(sql + self._returning())
        return self.build_batch_insert([record], upsert)

    def build_batch_insert(
        self,
        records: Sequence[Dict[str, Any]],
        upsert: Optional[UpsertOptions] = None,
    ) -> SqlStatement:
        """Multi-row INSERT, optionally with an ON CONFLICT clause.

        The column list comes from the keys of the first record, in order.
        Later records may omit columns (bound as NULL) but may not add any.
        """
        if not records:
            raise ValidationError("Empty array provided")
        for record in records:
            if not isinstance(record, dict):
                raise ValidationError("Invalid request body: expected an array of objects")

        columns = list(records[0].keys())
        if not columns:
            raise ValidationError("Cannot insert an empty record in a batch")
        for column in columns:
            if not self.table.has_column(column):
                raise ValidationError(f"Unknown column: {column}")

        known: Set[str] = set(columns)
        for index, record in enumerate(records[1:], start=1):
            for key in record:
                if key in known:
                    continue
                if not self.table.has_column(key):
                    raise ValidationError(f"Unknown column: {key}")
                raise ValidationError(
                    f"Inconsistent columns: record {index} has column {key} "
                    f"which is missing from the first record"
                )

        args = _Args()
        rows = []
        for record in records:
            placeholders = [args.add(self._bind(c, record.get(c))) for c in columns]
            rows.append("(" + ", ".join(placeholders) + ")")

        column_sql = ", ".join(quote_identifier(c) for c in columns)
        sql = f"INSERT INTO {self.table_sql} ({column_sql}) VALUES {', '.join(rows)}"
        if upsert is not None:
            sql += self._conflict_clause(columns, upsert)
        return SqlStatement(sql + self._returning(), args.values)

    def _conflict_clause(self, record_columns: Sequence[str], upsert: UpsertOptions) -> str:
        target = resolve_conflict_target(self.table, upsert.on_conflict)
        target_sql = ", ".join(quote_identifier(c) for c in target)
        if upsert.ignore_duplicates:
            return f" ON CONFLICT ({target_sql}) DO NOTHING"

        assignments = []
        if upsert.default_to_null:
            # every non-target column is overwritten, absent ones with NULL
            for column in self.table.column_names:
                if is_in_conflict_target(column, target):
                    continue
                quoted = quote_identifier(column)
                if column in record_columns:
                    assignments.append(f"{quoted} = EXCLUDED.{quoted}")
                else:
                    assignments.append(f"{quoted} = NULL")
        else:
            for column in record_columns:
                if is_in_conflict_target(column, target):
                    continue
                quoted = quote_identifier(column)
                assignments.append(f"{quoted} = EXCLUDED.{quoted}")

        if not assignments:
            return f" ON CONFLICT ({target_sql}) DO NOTHING"
        return f" ON CONFLICT ({target_sql}) DO UPDATE SET {', '.join(assignments)}"

    # ===== Update =====

    def build_update(self, values: Dict[str, Any], params: QueryParams) -> SqlStatement:
        if not params.filters:
            raise ValidationError("Batch update requires at least one filter")
        return self._update(values, params.filters)

    def build_update_by_pk(self, pk_values: Sequence[Any], values: Dict[str, Any]) -> SqlStatement:
        return self._update(values, self._pk_filters(pk_values))

    def _update(self, values: Dict[str, Any], filters: Sequence[Filter]) -> SqlStatement:
        if not values:
            raise ValidationError("No fields to update")
        for column in values:
            if not self.table.has_column(column):
                raise ValidationError(f"Unknown column: {column}")

        args = _Args()
        assignments = ", ".join(
            f"{quote_identifier(c)} = {args.add(self._bind(c, v))}" for c, v in values.items()
        )
        sql = f"UPDATE {self.table_sql} SET {assignments}"
        sql += self._where(filters, args)
        return SqlStatement(sql + self._returning(), args.values)

    # ===== Delete =====

    def build_delete(self, params: QueryParams) -> SqlStatement:
        if not params.filters:
            raise ValidationError("Batch delete requires at least one filter")
        args = _Args()
        sql = f"DELETE FROM {self.table_sql}{self._where(params.filters, args)}"
        return SqlStatement(sql + self._returning(), args.values)

    def build_delete_by_pk(self, pk_values: Sequence[Any]) -> SqlStatement:
        args = _Args()
        sql = f"DELETE FROM {self.table_sql}{self._where(self._pk_filters(pk_values), args)}"
        return SqlStatement(sql + self._returning(), args.values)

    # ===== Clause helpers =====

    def _select_list(self, params: QueryParams) -> str:
        parts = []
        for c in params.select:
            if c == "*":
                continue
            path = parse_column_path(c)
            if path.is_path:
                parts.append(f"{self._path_sql(path)} AS {quote_identifier(path.output_name)}")
            else:
                parts.append(quote_identifier(c))
        for agg in params.aggregations:
            argument = "*" if agg.column is None else quote_identifier(agg.column)
            parts.append(f"{agg.function.value.upper()}({argument}) AS {quote_identifier(agg.output_name)}")
        return ", ".join(parts) if parts else "*"

    def _where(self, filters: Sequence[Filter], args: _Args) -> str:
        """AND together plain filters and parenthesized OR groups.

        An OR group renders at the position of its first member.
        """
        units: List[str] = []
        rendered_groups: Set[int] = set()
        for f in filters:
            if f.is_or and f.or_group_id:
                if f.or_group_id in rendered_groups:
                    continue
                rendered_groups.add(f.or_group_id)
                members = [
                    self._render_filter(m, args)
                    for m in filters
                    if m.is_or and m.or_group_id == f.or_group_id
                ]
                units.append("(" + " OR ".join(members) + ")")
            else:
                units.append(self._render_filter(f, args))
        if not units:
            return ""
        return " WHERE " + " AND ".join(units)

    def _render_filter(self, f: Filter, args: _Args) -> str:
        operator = f.operator
        value = f.value
        if operator is None:
            raise ValidationError(f"Unknown operator for column: {f.column}")
        path = parse_column_path(f.column)
        column = self._path_sql(path)
        if path.extracts_text and operator in NUMERIC_OPERATORS:
            # ->> yields text; compare numerically
            column = f"({column})::numeric"

        if operator is FilterOperator.IS:
            return f"{column} IS {self._is_keyword(f)}"

        if operator in LIST_OPERATORS:
            if value.kind is ValueKind.NULL:
                raise ValidationError(f"Operator {operator.value} requires a list value: {f.column}")
            items = value.value if value.kind is ValueKind.SEQUENCE else (value.value,)
            if not items:
                return "FALSE"
            placeholders = ", ".join(args.add(item) for item in items)
            return f"{column} {operator.sql} ({placeholders})"

        if value.kind is ValueKind.NULL:
            if operator is FilterOperator.EQ:
                return f"{column} IS NULL"
            if operator is FilterOperator.NEQ:
                return f"{column} IS NOT NULL"
            raise ValidationError(f"Operator {operator.value} does not accept null: {f.column}")
        if value.kind is ValueKind.SEQUENCE:
            raise ValidationError(f"Operator {operator.value} does not accept a list value: {f.column}")
        return f"{column} {operator.sql} {args.add(value.value)}"

    @staticmethod
    def _is_keyword(f: Filter) -> str:
        value = f.value
        if value.kind is ValueKind.NULL:
            return "NULL"
        if value.kind is ValueKind.BOOLEAN:
            return "TRUE" if value.value else "FALSE"
        if value.kind is ValueKind.STRING:
            keyword = IS_KEYWORDS.get(value.value.strip().lower())
            if keyword is not None:
                return keyword
        raise ValidationError(f"Invalid value for is: {value.raw!r}")

    def _group_by(self, group_by: Sequence[str]) -> str:
        if not group_by:
            return ""
        return " GROUP BY " + ", ".join(quote_identifier(c) for c in group_by)

    def _order_by(self, order: Sequence[OrderBy]) -> str:
        if not order:
            return ""
        parts = []
        for o in order:
            if o.nulls not in NULLS_ORDERING:
                raise ValidationError(f"Invalid nulls ordering: {o.nulls}")
            direction = "DESC" if o.desc else "ASC"
            parts.append(f"{self._path_sql(parse_column_path(o.column))} {direction}{NULLS_ORDERING[o.nulls]}")
        return " ORDER BY " + ", ".join(parts)

    def _keyset_filters(self, params: QueryParams) -> List[Filter]:
        filters = list(params.filters)
        if params.cursor is not None:
            operator = FilterOperator.LT if params.keyset_desc else FilterOperator.GT
            filters.append(Filter(params.keyset_column, operator, FilterValue.of(params.cursor.value)))
        return filters

    @staticmethod
    def _keyset_order(params: QueryParams) -> List[OrderBy]:
        """The requested order, plus the keyset column when it is not ordered on yet."""
        order = list(params.order)
        column = params.keyset_column
        if column is not None and all(o.column != column for o in order):
            order.append(OrderBy(column, desc=params.keyset_desc))
        return order

    @staticmethod
    def _path_sql(path: ColumnPath) -> str:
        return quote_identifier(path.base) + render_steps(path)

    def _returning(self) -> str:
        if not self.table.columns:
            return " RETURNING *"
        return " RETURNING " + ", ".join(quote_identifier(c) for c in self.table.column_names)

    def _pk_filters(self, pk_values: Sequence[Any]) -> List[Filter]:
        if not self.table.primary_key:
            raise ValidationError(f"Table {self.table.key} has no primary key")
        if len(pk_values) != len(self.table.primary_key):
            raise ValidationError(
                f"Expected {len(self.table.primary_key)} primary key value(s), got {len(pk_values)}"
            )
        return [
            Filter(column, FilterOperator.EQ, FilterValue.of(value))
            for column, value in zip(self.table.primary_key, pk_values)
        ]

    def _bind(self, column: str, value: Any) -> Any:
        if isinstance(value, dict):
            return json.dumps(value)
        if isinstance(value, list) and self.table.is_json_column(column):
            return json.dumps(value)
        return value
