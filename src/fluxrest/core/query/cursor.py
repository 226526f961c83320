# src/fluxrest/core/query/cursor.py
"""Opaque keyset-pagination cursors.

A cursor is URL-safe base64 over `{"c": column, "v": value, "d": desc}`.
The next page holds the rows past `value` on `column`, in the direction
given by `desc`.
"""

import base64
import binascii
import dataclasses
import json
from typing import Any, List, Optional

from ..errors import ValidationError
from .builder import is_valid_identifier
from ..decoder import Row
from .models import Cursor, QueryParams

_SCALARS = (str, int, float, bool)


def encode_cursor(column: str, value: Any, desc: bool = False) -> str:
    payload = json.dumps({"c": column, "v": value, "d": desc}, separators=(",", ":"), default=str)
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(token: str) -> Cursor:
    try:
        raw = base64.b64decode(token, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("invalid cursor encoding")
    try:
        payload = json.loads(raw)
    except ValueError:
        raise ValidationError("invalid cursor format")
    if not isinstance(payload, dict):
        raise ValidationError("invalid cursor format")

    column = payload.get("c")
    if not isinstance(column, str) or not column.strip():
        raise ValidationError("cursor missing column")
    value = payload.get("v")
    if not isinstance(value, _SCALARS):
        raise ValidationError("invalid cursor format")
    return Cursor(column=column.strip(), value=value, desc=payload.get("d") is True)


def parse_cursor_column(column: Optional[str]) -> Optional[str]:
    if column is None or not column.strip():
        return None
    column = column.strip()
    if not is_valid_identifier(column):
        raise ValidationError(f"invalid cursor_column: {column}")
    return column


def resolve_cursor(token: Optional[str], column: Optional[str] = None) -> Optional[Cursor]:
    """Decode `cursor`, letting an explicit `cursor_column` override its column."""
    if token is None or not token.strip():
        return None
    cursor = decode_cursor(token.strip())
    if column:
        return dataclasses.replace(cursor, column=column)
    return cursor


def next_cursor(rows: List[Row], params: QueryParams, limit: Optional[int]) -> Optional[str]:
    """Cursor for the page after `rows`; None once a short page shows the end."""
    column = params.keyset_column
    if column is None or not rows or limit is None or len(rows) < limit:
        return None
    value = rows[-1].get(column)
    if value is None:
        return None
    return encode_cursor(column, value, params.keyset_desc)
