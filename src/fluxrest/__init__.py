"""
fluxrest: PostgREST-style REST endpoints compiled from a PostgreSQL schema.
"""

from fluxrest.app import FluxRest
from fluxrest.core.config import PaginationConfig, RestConfig
from fluxrest.core.engine import RestEngine
from fluxrest.db import DbClient, DbConfig, PoolConfig

__version__ = "0.1.0"

__all__ = [
    "FluxRest",
    "RestConfig",
    "PaginationConfig",
    "RestEngine",
    "DbClient",
    "DbConfig",
    "PoolConfig",
]
