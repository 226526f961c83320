# test/conftest.py
"""Shared fixtures: a small catalog and a fake database that records SQL."""

from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from fluxrest.core.config import RestConfig
from fluxrest.core.engine import RestEngine
from fluxrest.core.models.tables import ColumnInfo, StaticCatalog, TableInfo

_UNSET = object()


def make_table(schema: str, name: str, columns: Sequence[Tuple[str, str]], primary_key=()) -> TableInfo:
    return TableInfo(
        schema=schema,
        name=name,
        primary_key=list(primary_key),
        columns=[ColumnInfo(name=c, data_type=t) for c, t in columns],
    )


USERS = make_table(
    "public",
    "users",
    [
        ("id", "integer"),
        ("name", "text"),
        ("email", "text"),
        ("age", "integer"),
        ("status", "text"),
        ("price", "numeric"),
        ("deleted_at", "timestamp"),
        ("profile", "jsonb"),
    ],
    primary_key=["id"],
)

CONTACTS = make_table(
    "public",
    "contacts",
    [("id", "integer"), ("name", "text"), ("email", "text"), ("phone", "text")],
    primary_key=["id"],
)

MEMBERSHIPS = make_table(
    "public",
    "memberships",
    [("tenant_id", "integer"), ("user_id", "integer"), ("role", "text")],
)


class FakeResult:
    def __init__(self, columns: Sequence[str] = (), rows: Sequence[Sequence[Any]] = (), scalar: Any = _UNSET):
        self.columns = list(columns)
        self.rows = [tuple(r) for r in rows]
        self._scalar = scalar

    def keys(self) -> List[str]:
        return list(self.columns)

    def __iter__(self):
        return iter(self.rows)

    def scalar(self) -> Any:
        if self._scalar is not _UNSET:
            return self._scalar
        return self.rows[0][0] if self.rows else None


class FakeConnection:
    def __init__(self, db: "FakeDb"):
        self.db = db

    def execute(self, clause, params: Optional[Dict[str, Any]] = None) -> Any:
        self.db.executed.append((str(clause), dict(params or {})))
        if self.db.error is not None:
            raise self.db.error
        if self.db.results:
            return self.db.results.pop(0)
        return FakeResult()


class FakeDb:
    """Stands in for `DbClient`: hands out connections that record statements."""

    def __init__(self):
        self.executed: List[Tuple[str, Dict[str, Any]]] = []
        self.results: List[FakeResult] = []
        self.error: Optional[Exception] = None
        self.transactions = 0

    def queue(self, *results: FakeResult) -> None:
        self.results.extend(results)

    @contextmanager
    def begin(self):
        self.transactions += 1
        yield FakeConnection(self)

    @property
    def last_sql(self) -> str:
        return self.executed[-1][0]

    @property
    def last_params(self) -> Dict[str, Any]:
        return self.executed[-1][1]


@pytest.fixture
def catalog() -> StaticCatalog:
    return StaticCatalog([USERS, CONTACTS, MEMBERSHIPS])


@pytest.fixture
def fake_db() -> FakeDb:
    return FakeDb()


@pytest.fixture
def config() -> RestConfig:
    return RestConfig(project_name="fluxrest-test", debug_mode=True)


@pytest.fixture
def engine(catalog, fake_db, config) -> RestEngine:
    return RestEngine(catalog, fake_db, config)
