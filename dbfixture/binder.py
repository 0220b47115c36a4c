"""
Value Binder

Converts dataset cell values (text read from delimited files) into Python
values matching the reflected SQLAlchemy column type, so drivers that are
strict about bind types (SQLite DATETIME, for example) accept them.

Values that cannot be converted are passed through unchanged and left for the
database to accept or reject.
"""

import base64
import binascii
import re
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import types as sqltypes

from .models import CellValue

BASE64_PREFIX = "[BASE64]"

_TRUE_VALUES = {"true", "1", "yes", "y", "t"}
_FALSE_VALUES = {"false", "0", "no", "n", "f"}
_TIMESTAMP = re.compile(
    r"^(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(?::\d{2})?)(?:\.(\d+))?(Z|[+-]\d{2}:?\d{2})?$", re.IGNORECASE
)


def parse_boolean(text: str) -> bool:
    """Parse 1/0/true/false/yes/no/y/n (case-insensitive)."""
    normalized = text.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"'{text}' is not a valid boolean")


def parse_datetime(text: str) -> datetime:
    """
    Parse an ISO-8601 style timestamp.

    Accepts a 'T' or space separator, fractional seconds of any length
    (truncated to microseconds) and an optional 'Z', '+HH:MM' or '+HHMM'
    offset. A bare date parses as midnight.
    """
    normalized = text.strip()
    match = _TIMESTAMP.match(normalized)
    if match:
        base, fraction, offset = match.groups()
        normalized = base
        if fraction:
            normalized += "." + fraction[:6].ljust(6, "0")
        if offset:
            if offset.upper() == "Z":
                offset = "+00:00"
            elif ":" not in offset:
                offset = f"{offset[:3]}:{offset[3:]}"
            normalized += offset
    return datetime.fromisoformat(normalized)


def parse_date(text: str) -> date:
    normalized = text.strip()
    return date.fromisoformat(normalized.split("T")[0].split(" ")[0])


def parse_time(text: str) -> time:
    return time.fromisoformat(text.strip())


def parse_binary(text: str) -> bytes:
    """Decode "[BASE64]..." values; anything else is taken as UTF-8 text."""
    if text.startswith(BASE64_PREFIX):
        try:
            return base64.b64decode(text[len(BASE64_PREFIX):], validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 payload: {e}") from e
    return text.encode("utf-8")


def parse_decimal(text: str) -> Decimal:
    try:
        return Decimal(text.strip())
    except InvalidOperation as e:
        raise ValueError(f"'{text}' is not a valid number") from e


def _convert(text: str, sql_type: sqltypes.TypeEngine) -> Any:
    # Boolean before Integer and Float before Numeric: subclasses first.
    if isinstance(sql_type, sqltypes.Boolean):
        return parse_boolean(text)
    if isinstance(sql_type, sqltypes.Integer):
        return int(text.strip())
    if isinstance(sql_type, sqltypes.Float):
        return float(text.strip())
    if isinstance(sql_type, sqltypes.Numeric):
        return parse_decimal(text)
    if isinstance(sql_type, sqltypes.DateTime):
        return parse_datetime(text)
    if isinstance(sql_type, sqltypes.Date):
        return parse_date(text)
    if isinstance(sql_type, sqltypes.Time):
        return parse_time(text)
    if isinstance(sql_type, (sqltypes.LargeBinary, sqltypes.BINARY, sqltypes.VARBINARY)):
        return parse_binary(text)
    return text


def to_bind_value(cell: CellValue, sql_type: Optional[sqltypes.TypeEngine]) -> Any:
    """
    Convert a cell into a bind parameter value for a column type.

    Args:
        cell: Dataset cell
        sql_type: Reflected column type (None = no conversion)

    Returns:
        None for NULL, the converted value, or the raw value when it is not
        text or cannot be converted
    """
    if cell.is_null:
        return None
    value = cell.value
    if not isinstance(value, str) or sql_type is None:
        return value
    try:
        return _convert(value, sql_type)
    except ValueError:
        return value
