#!/usr/bin/env python3
"""
Value Marshaller - turns source driver values into target bind values

Dispatch is driven by the column's declared type first:

    DATE / TIMESTAMP   -> datetime (ISO text passes through for the target to cast)
    NUMBER / NUMERIC   -> int or Decimal, never narrowed
    CLOB / TEXT        -> str (LOB locators are read)
    BLOB / RAW         -> bytes (hex text decoded, LOBs read directly or streamed)

Values whose runtime type comes from the source driver's namespace get a
last look when the declared type says nothing useful.

This runs once per column per row; it does not log.

Author: Apollo & Claude
Version: 1.0.0
"""

import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, List, Sequence, Tuple

from migrator.errors import BinaryConversionError, ValueConversionError

STREAM_CHUNK_SIZE = 64 * 1024
VENDOR_NAMESPACE = "oracledb"

_STANDARD_SCALARS = (str, int, float, Decimal, bool, bytes, datetime, date, time, timedelta, uuid.UUID)
_BYTES_LIKE = (bytes, bytearray, memoryview)


def marshal_value(column: str, declared_type: str, value: Any) -> Any:
    """
    Convert one source value into the value bound for the target column

    Args:
        column: Source column name, used in error messages
        declared_type: Declared source (or target) type of the column
        value: Value as returned by the source driver

    Returns:
        Value suitable for the target driver's parameter binding
    """
    if value is None:
        return None

    type_upper = (declared_type or "").upper()
    if "DATE" in type_upper or "TIMESTAMP" in type_upper:
        return _bind_temporal(column, declared_type, value)
    if "NUMBER" in type_upper or "NUMERIC" in type_upper:
        return _bind_numeric(column, declared_type, value)
    if "CLOB" in type_upper or "TEXT" in type_upper:
        return _bind_text(column, declared_type, value)
    if "BLOB" in type_upper or "RAW" in type_upper:
        return to_bytes(column, value)
    return _bind_generic(column, declared_type, value)


def marshal_row(columns: Sequence[Tuple[str, str]], row: Sequence[Any]) -> Tuple[Any, ...]:
    """Marshal a full row given (column, declared_type) pairs in select order"""
    return tuple(marshal_value(name, declared, value) for (name, declared), value in zip(columns, row))


def hex_to_bytes(text: str) -> bytes:
    """Decode hex text; whitespace is ignored and odd lengths are left-padded with 0"""
    cleaned = "".join(text.split())
    if not cleaned:
        return b""
    if len(cleaned) % 2:
        cleaned = "0" + cleaned
    return bytes.fromhex(cleaned)


def to_bytes(column: str, value: Any) -> bytes:
    """Binary extraction chain: native bytes, hex text, direct fetch, streaming fetch, generic fallback"""
    if isinstance(value, _BYTES_LIKE):
        return bytes(value)
    if isinstance(value, str):
        try:
            return hex_to_bytes(value)
        except ValueError as e:
            raise BinaryConversionError(column, e) from e

    last_error = None
    for strategy in (_direct_fetch, _streaming_fetch, _generic_fetch):
        try:
            data = strategy(value)
        except Exception as e:
            last_error = e
            continue
        if data is not None:
            return data
    raise BinaryConversionError(column, last_error)


def _direct_fetch(value: Any):
    read = getattr(value, "read", None)
    if callable(read):
        data = read()
        if isinstance(data, _BYTES_LIKE):
            return bytes(data)
        return None
    # buffer protocol
    return memoryview(value).tobytes()


def _streaming_fetch(value: Any):
    read = getattr(value, "read", None)
    if not callable(read):
        return None
    buffer = bytearray()
    offset = 1  # LOB offsets are 1-based
    while True:
        chunk = read(offset, STREAM_CHUNK_SIZE)
        if not chunk:
            break
        if not isinstance(chunk, _BYTES_LIKE):
            return None
        buffer.extend(chunk)
        if len(chunk) < STREAM_CHUNK_SIZE:
            break
        offset += len(chunk)
    return bytes(buffer)


def _generic_fetch(value: Any) -> bytes:
    for accessor_name in ("getvalue", "tobytes", "get_bytes"):
        accessor = getattr(value, accessor_name, None)
        if callable(accessor):
            data = accessor()
            if isinstance(data, _BYTES_LIKE):
                return bytes(data)
    return hex_to_bytes(str(value))


def _bind_temporal(column: str, declared_type: str, value: Any) -> Any:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            # Let the target cast the literal
            return value

    timetuple = getattr(value, "timetuple", None)
    if callable(timetuple):
        try:
            return datetime(*timetuple()[:6])
        except (TypeError, ValueError) as e:
            raise ValueConversionError(
                f"Cannot convert {type(value).__name__} to timestamp for column {column}: {e}",
                column=column, declared_type=declared_type) from e

    raise ValueConversionError(
        f"Cannot convert {type(value).__name__} to timestamp for column {column}",
        column=column, declared_type=declared_type)


def _bind_numeric(column: str, declared_type: str, value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, Decimal)):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation as e:
            raise ValueConversionError(
                f"Invalid numeric value {value!r} for column {column}",
                column=column, declared_type=declared_type) from e
    raise ValueConversionError(
        f"Cannot convert {type(value).__name__} to numeric for column {column}",
        column=column, declared_type=declared_type)


def _bind_text(column: str, declared_type: str, value: Any) -> str:
    if isinstance(value, str):
        return value
    if not isinstance(value, _BYTES_LIKE):
        read = getattr(value, "read", None)
        if callable(read):
            value = read()
    if isinstance(value, _BYTES_LIKE):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValueConversionError(
                f"Large text value for column {column} is not valid UTF-8",
                column=column, declared_type=declared_type) from e
    return value if isinstance(value, str) else str(value)


def _bind_generic(column: str, declared_type: str, value: Any) -> Any:
    if isinstance(value, _STANDARD_SCALARS):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)

    value_type = type(value)
    if (value_type.__module__ or "").startswith(VENDOR_NAMESPACE):
        type_name = value_type.__name__.upper()
        if "TIMESTAMP" in type_name or "DATE" in type_name:
            return _bind_temporal(column, declared_type, value)
        if "LOB" in type_name:
            data = value.read()
            return bytes(data) if isinstance(data, _BYTES_LIKE) else data
    return value


def declared_columns(column_mappings: List) -> List[Tuple[str, str]]:
    """(source_column, declared_type) pairs for a list of ColumnMapping"""
    return [(c.source_column, c.declared_type) for c in column_mappings]
