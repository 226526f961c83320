# src/fluxrest/core/engine.py
"""Executes compiled statements against the database.

Each public operation validates first, builds every statement it needs, and
only then opens one connection/transaction through `DbClient.begin()`.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from rich.markup import escape
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError
from sqlalchemy.sql.elements import TextClause

from ..db.client import DbClient
from .config import RestConfig
from .decoder import Row, decode_rows
from .errors import ExecutionError, NotFoundError, ValidationError
from .logging import color_palette, log
from .models.tables import SchemaCatalog, TableInfo
from .query.builder import QueryBuilder, SqlStatement, UpsertOptions, validate_params
from .query.models import CountType, QueryParams

_PLACEHOLDER = re.compile(r"\$(\d+)")


def to_text_clause(statement: SqlStatement) -> Tuple[TextClause, Dict[str, Any]]:
    """Rewrite `$n` placeholders to SQLAlchemy named binds `:pn`."""
    sql = _PLACEHOLDER.sub(lambda m: f":p{m.group(1)}", statement.sql)
    params = {f"p{i}": value for i, value in enumerate(statement.args, start=1)}
    return text(sql), params


@dataclass
class ReadResult:
    rows: List[Row] = field(default_factory=list)
    total: Optional[int] = None


@dataclass
class MutationResult:
    rows: List[Row] = field(default_factory=list)

    @property
    def affected(self) -> int:
        return len(self.rows)


class RestEngine:
    def __init__(self, catalog: SchemaCatalog, db: DbClient, config: Optional[RestConfig] = None):
        self.catalog = catalog
        self.db = db
        self.config = config or RestConfig()

    def resolve_table(self, schema: str, name: str) -> TableInfo:
        table = self.catalog.get_table(schema, name)
        if table is None:
            raise NotFoundError(f"Table not found: {schema}.{name}")
        return table

    # ===== Reads =====

    def select(self, table: TableInfo, params: QueryParams) -> ReadResult:
        validate_params(params, table)
        builder = QueryBuilder(table)
        statement = builder.build_select(params)
        count_statements = self._count_statements(builder, params, params.count)

        with self.db.begin() as connection:
            rows = decode_rows(self._execute(connection, statement))
            total = None
            if params.count is not None:
                total = self._run_count(connection, params.count, count_statements)
        return ReadResult(rows=rows, total=total)

    def get_by_pk(self, table: TableInfo, pk: Any, params: Optional[QueryParams] = None) -> Row:
        if params is not None:
            validate_params(params, table)
        statement = QueryBuilder(table).build_select_by_pk(self._pk_values(pk), params)
        with self.db.begin() as connection:
            rows = decode_rows(self._execute(connection, statement))
        if not rows:
            raise NotFoundError(f"No {table.key} record with id {pk}")
        return rows[0]

    # ===== Writes =====

    def insert(
        self,
        table: TableInfo,
        body: Union[Dict[str, Any], List[Dict[str, Any]]],
        upsert: Optional[UpsertOptions] = None,
    ) -> MutationResult:
        builder = QueryBuilder(table)
        if isinstance(body, dict):
            statement = builder.build_insert(body, upsert)
        elif isinstance(body, list):
            statement = builder.build_batch_insert(body, upsert)
        else:
            raise ValidationError("Invalid request body")
        return self._mutate(statement)

    def update_by_pk(self, table: TableInfo, pk: Any, values: Dict[str, Any]) -> MutationResult:
        statement = QueryBuilder(table).build_update_by_pk(self._pk_values(pk), values)
        result = self._mutate(statement)
        if not result.rows:
            raise NotFoundError(f"No {table.key} record with id {pk}")
        return result

    def update_batch(self, table: TableInfo, values: Dict[str, Any], params: QueryParams) -> MutationResult:
        validate_params(params, table)
        return self._mutate(QueryBuilder(table).build_update(values, params))

    def delete_by_pk(self, table: TableInfo, pk: Any) -> MutationResult:
        statement = QueryBuilder(table).build_delete_by_pk(self._pk_values(pk))
        result = self._mutate(statement)
        if not result.rows:
            raise NotFoundError(f"No {table.key} record with id {pk}")
        return result

    def delete_batch(self, table: TableInfo, params: QueryParams) -> MutationResult:
        validate_params(params, table)
        return self._mutate(QueryBuilder(table).build_delete(params))

    # ===== Internals =====

    def _mutate(self, statement: SqlStatement) -> MutationResult:
        with self.db.begin() as connection:
            return MutationResult(rows=decode_rows(self._execute(connection, statement)))

    def _execute(self, connection: Connection, statement: SqlStatement) -> Any:
        clause, params = to_text_clause(statement)
        if self.config.log_sql:
            log.debug(f"{color_palette['sql'](escape(statement.sql))} {escape(repr(statement.args))}")
        try:
            return connection.execute(clause, params)
        except DBAPIError as exc:
            log.error(f"Statement failed: {escape(str(exc.orig or exc))}")
            raise ExecutionError(f"Query execution failed: {exc.orig or exc}") from exc

    def _count_statements(
        self,
        builder: QueryBuilder,
        params: QueryParams,
        count_type: Optional[CountType],
    ) -> Dict[str, SqlStatement]:
        if count_type is None:
            return {}
        statements = {}
        if count_type in (CountType.EXACT, CountType.ESTIMATED):
            statements["exact"] = builder.build_count(params)
        if count_type in (CountType.PLANNED, CountType.ESTIMATED):
            statements["planned"] = builder.build_explain(params)
        return statements

    def _run_count(
        self,
        connection: Connection,
        count_type: CountType,
        statements: Dict[str, SqlStatement],
    ) -> int:
        if count_type is CountType.EXACT:
            return self._exact_count(connection, statements["exact"])
        planned = self._planned_count(connection, statements["planned"])
        if count_type is CountType.PLANNED:
            return planned
        # estimated: exact below the threshold, planner figure above it
        if planned < self.config.estimated_count_threshold:
            return self._exact_count(connection, statements["exact"])
        return planned

    def _exact_count(self, connection: Connection, statement: SqlStatement) -> int:
        return int(self._execute(connection, statement).scalar() or 0)

    def _planned_count(self, connection: Connection, statement: SqlStatement) -> int:
        plan = self._execute(connection, statement).scalar()
        if isinstance(plan, (bytes, bytearray)):
            plan = plan.decode("utf-8")
        if isinstance(plan, str):
            plan = json.loads(plan)
        try:
            return int(plan[0]["Plan"]["Plan Rows"])
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ExecutionError(f"Unexpected EXPLAIN output: {plan!r}") from exc

    @staticmethod
    def _pk_values(pk: Any) -> Sequence[Any]:
        if isinstance(pk, (list, tuple)):
            return list(pk)
        return [pk]
