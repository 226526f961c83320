# src/fluxrest/core/decoder.py
"""Turns driver rows into JSON-ready dictionaries."""

import json
import uuid
from typing import Any, Dict, List

from sqlalchemy.exc import SQLAlchemyError

from .errors import ExecutionError

Row = Dict[str, Any]


def decode_value(value: Any) -> Any:
    """Normalize one wire value.

    - `uuid.UUID` and 16-element integer tuples become canonical UUID strings.
    - Byte buffers become parsed JSON when they hold valid JSON, else text.
    - Lists are decoded element by element.
    - Everything else passes through unchanged.
    """
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return _decode_bytes(bytes(value))
    if isinstance(value, tuple) and _is_uuid_bytes(value):
        return str(uuid.UUID(bytes=bytes(value)))
    if isinstance(value, list):
        return [decode_value(item) for item in value]
    return value


def _is_uuid_bytes(value: tuple) -> bool:
    return len(value) == 16 and all(
        isinstance(b, int) and not isinstance(b, bool) and 0 <= b <= 255 for b in value
    )


def _reject_constant(token: str) -> Any:
    raise ValueError(f"not a JSON literal: {token}")


def _decode_bytes(data: bytes) -> Any:
    # json/jsonb columns may arrive as raw bytes; NaN and Infinity stay text
    try:
        return json.loads(data, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError):
        return data.decode("utf-8", errors="replace")


def decode_rows(result: Any) -> List[Row]:
    """Decode every row of a SQLAlchemy result.

    Keys follow the result's column order. A failure while fetching aborts
    the whole decode; partial rows are never returned.
    """
    try:
        keys = list(result.keys())
        rows = [
            {key: decode_value(value) for key, value in zip(keys, row)}
            for row in result
        ]
    except SQLAlchemyError as exc:
        raise ExecutionError(f"Failed to read result rows: {exc}") from exc
    return rows
