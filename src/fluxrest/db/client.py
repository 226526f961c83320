# src/fluxrest/db/client.py
"""Database connection handling."""

from contextlib import contextmanager
from typing import Iterator, Optional

from pydantic import BaseModel
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine, URL

from ..core.logging import log


class PoolConfig(BaseModel):
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_pre_ping: bool = True


class DbConfig(BaseModel):
    db_type: str = "postgresql"
    driver_type: str = "psycopg"
    user: str = "postgres"
    password: str = ""
    host: str = "localhost"
    port: int = 5432
    database: str = "postgres"
    echo: bool = False
    pool_config: PoolConfig = PoolConfig()

    @property
    def url(self) -> URL:
        return URL.create(
            drivername=f"{self.db_type}+{self.driver_type}",
            username=self.user,
            password=self.password or None,
            host=self.host,
            port=self.port,
            database=self.database,
        )


class DbClient:
    """Owns the SQLAlchemy engine and hands out per-operation transactions."""

    def __init__(self, config: Optional[DbConfig] = None, engine: Optional[Engine] = None):
        self.config = config or DbConfig()
        self.engine = engine or create_engine(
            self.config.url,
            echo=self.config.echo,
            pool_size=self.config.pool_config.pool_size,
            max_overflow=self.config.pool_config.max_overflow,
            pool_timeout=self.config.pool_config.pool_timeout,
            pool_pre_ping=self.config.pool_config.pool_pre_ping,
        )

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """One connection and one transaction; committed on success, rolled back on error."""
        with self.engine.begin() as connection:
            yield connection

    def test_connection(self) -> bool:
        try:
            with self.engine.connect() as connection:
                version = connection.execute(text("SELECT version()")).scalar()
            log.success(f"Connected to {self.config.host}:{self.config.port}/{self.config.database}")
            log.info(f"[dim]{version}[/dim]")
            return True
        except Exception as exc:
            log.error(f"Database connection failed: {exc}")
            raise
