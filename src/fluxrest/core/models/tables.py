# src/fluxrest/core/models/tables.py
from typing import Dict, Iterable, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

JSON_TYPES = {"json", "jsonb"}


class ColumnInfo(BaseModel):
    name: str
    data_type: str = "text"
    is_nullable: bool = True

    @property
    def is_json(self) -> bool:
        return self.data_type.lower() in JSON_TYPES


class TableInfo(BaseModel):
    """Catalog entry for one table. Ground truth for column validation."""

    schema_name: str = Field(alias="schema")
    name: str
    primary_key: List[str] = Field(default_factory=list)
    columns: List[ColumnInfo] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @property
    def key(self) -> str:
        return f"{self.schema_name}.{self.name}"

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def has_column(self, name: str) -> bool:
        return any(c.name == name for c in self.columns)

    def get_column(self, name: str) -> Optional[ColumnInfo]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def is_json_column(self, name: str) -> bool:
        column = self.get_column(name)
        return column is not None and column.is_json


class SchemaCatalog(Protocol):
    """Read-only view of the discovered schema."""

    def get_table(self, schema: str, name: str) -> Optional[TableInfo]:
        ...

    def tables(self) -> List[TableInfo]:
        ...


class StaticCatalog:
    """In-memory catalog built once from a list of tables."""

    def __init__(self, tables: Iterable[TableInfo] = ()):
        self._tables: Dict[str, TableInfo] = {t.key: t for t in tables}

    def get_table(self, schema: str, name: str) -> Optional[TableInfo]:
        return self._tables.get(f"{schema}.{name}")

    def tables(self) -> List[TableInfo]:
        return list(self._tables.values())

