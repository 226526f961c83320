# src/fluxrest/core/response.py
"""PostgREST-compatible response headers and status codes."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .query.models import CountType

# carries the keyset cursor of the following page
NEXT_CURSOR_HEADER = "X-Next-Cursor"


class ReturnMode(str, Enum):
    REPRESENTATION = "representation"
    MINIMAL = "minimal"
    HEADERS_ONLY = "headers-only"


class Resolution(str, Enum):
    MERGE_DUPLICATES = "merge-duplicates"
    IGNORE_DUPLICATES = "ignore-duplicates"


class Operation(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class PreferOptions:
    return_mode: ReturnMode = ReturnMode.REPRESENTATION
    resolution: Optional[Resolution] = None
    missing_default: bool = False
    count: Optional[CountType] = None

    @property
    def is_upsert(self) -> bool:
        return self.resolution is not None


def parse_prefer(header: Optional[str]) -> PreferOptions:
    """Parse a `Prefer` header such as `return=minimal, resolution=merge-duplicates`."""
    if not header:
        return PreferOptions()

    tokens = [t.strip().lower() for t in header.replace(";", ",").split(",") if t.strip()]
    return_mode = ReturnMode.REPRESENTATION
    resolution = None
    missing_default = False
    count = None
    for token in tokens:
        name, _, value = token.partition("=")
        name, value = name.strip(), value.strip()
        if name == "return":
            try:
                return_mode = ReturnMode(value)
            except ValueError:
                pass  # unknown preferences are ignored
        elif name == "resolution":
            try:
                resolution = Resolution(value)
            except ValueError:
                pass
        elif name == "missing" and value == "default":
            missing_default = True
        elif name == "count":
            try:
                count = CountType(value)
            except ValueError:
                pass
    return PreferOptions(
        return_mode=return_mode,
        resolution=resolution,
        missing_default=missing_default,
        count=count,
    )


def content_range(offset: Optional[int], result_count: int, total: Optional[int] = None) -> str:
    """`start-end/total` for a page of results.

    With zero results the end is clamped to the start (`0-0/*`). An unknown
    total renders as `*`.
    """
    start = offset or 0
    end = start + result_count - 1 if result_count > 0 else start
    total_part = "*" if total is None else str(total)
    return f"{start}-{end}/{total_part}"


def mutation_content_range(affected: int) -> str:
    return f"*/{affected}"


def affected_count_header(affected: int) -> str:
    return str(affected)


def mutation_headers(affected: int) -> Dict[str, str]:
    return {
        "Content-Range": mutation_content_range(affected),
        "X-Affected-Count": affected_count_header(affected),
    }


def status_for(operation: Operation, return_mode: ReturnMode = ReturnMode.REPRESENTATION) -> int:
    if operation is Operation.CREATE:
        return 201
    if operation is Operation.READ:
        return 200
    if return_mode is ReturnMode.REPRESENTATION:
        return 200
    return 204
