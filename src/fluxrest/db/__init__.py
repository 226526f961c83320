"""Database interaction components."""

from fluxrest.db.client import DbClient, DbConfig, PoolConfig

__all__ = ["DbClient", "DbConfig", "PoolConfig"]
