# src/fluxrest/core/config.py
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

UNBOUNDED = -1


class PaginationConfig(BaseModel):
    """Limit defaults and caps applied at the HTTP boundary. -1 disables a bound."""

    default_limit: int = 25
    max_limit: int = 100
    max_total_results: int = UNBOUNDED

    @classmethod
    def administrative(cls) -> "PaginationConfig":
        return cls(default_limit=100, max_limit=1000)


class RestConfig(BaseModel):
    """Configuration for the generated REST API."""

    project_name: str = "fluxrest"
    version: str = "0.1.0"
    description: Optional[str] = None
    author: Optional[str] = None
    email: Optional[str] = None
    license_info: Optional[dict] = None
    debug_mode: bool = False
    include_schemas: List[str] = Field(default_factory=lambda: ["public"])
    log_sql: bool = False
    estimated_count_threshold: int = 100_000
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)


def apply_pagination(
    limit: Optional[int],
    offset: Optional[int],
    pagination: PaginationConfig,
) -> Tuple[int, int]:
    """Default and cap a requested page.

    With `max_total_results` set, the window `offset + limit` never reaches
    past that many rows.
    """
    offset = offset or 0
    if limit is None:
        limit = pagination.default_limit
    if pagination.max_limit != UNBOUNDED and limit > pagination.max_limit:
        limit = pagination.max_limit

    if pagination.max_total_results != UNBOUNDED:
        remaining = pagination.max_total_results - offset
        limit = max(0, min(limit, remaining))
    return limit, offset
