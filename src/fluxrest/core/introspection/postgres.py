# src/fluxrest/core/introspection/postgres.py
from typing import List, Sequence

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from ..logging import color_palette, log
from ..models.tables import ColumnInfo, StaticCatalog, TableInfo


class PostgresIntrospector:
    """Reads table metadata from a live PostgreSQL database, once."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.inspector = inspect(engine)

    def get_tables(self, schema: str) -> List[TableInfo]:
        results: List[TableInfo] = []
        for table_name in self.inspector.get_table_names(schema=schema):
            pks = self.inspector.get_pk_constraint(table_name, schema).get("constrained_columns", [])
            results.append(
                TableInfo(
                    schema=schema,
                    name=table_name,
                    primary_key=pks or [],
                    columns=self._get_columns(schema, table_name),
                )
            )
        return results

    def _get_columns(self, schema: str, table_name: str) -> List[ColumnInfo]:
        return [
            ColumnInfo(
                name=col["name"],
                data_type=str(col["type"]).lower(),
                is_nullable=col["nullable"],
            )
            for col in self.inspector.get_columns(table_name, schema)
        ]

    def load_catalog(self, schemas: Sequence[str]) -> StaticCatalog:
        tables: List[TableInfo] = []
        with log.timed("Schema introspection"):
            for schema in schemas:
                found = self.get_tables(schema)
                log.info(f"Found {len(found)} tables in {color_palette['schema'](schema)}")
                tables.extend(found)
        return StaticCatalog(tables)
