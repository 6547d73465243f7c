#!/usr/bin/env python3
"""
SQL text builders for the copy engine.

Identifiers are always double-quoted. Values only reach SQL text as Python
ints (chunk bounds); everything else is bound as a parameter.
"""

import re
from typing import List, Optional, Sequence

from migrator.models import ChunkRange, ColumnMapping
from migrator.type_registry import TypeRegistry

_LEADING_WHERE = re.compile(r'^\s*where\s+', re.IGNORECASE)
_LENGTH_PLACEHOLDER = re.compile(r'\(\s*n\s*\)', re.IGNORECASE)


def quote_identifier(identifier: str) -> str:
    return '"' + str(identifier).replace('"', '""') + '"'


def qualified_name(schema: Optional[str], table: str) -> str:
    if schema:
        return f"{quote_identifier(schema)}.{quote_identifier(table)}"
    return quote_identifier(table)


def normalize_filter(condition: Optional[str]) -> Optional[str]:
    """Strip an optional leading WHERE keyword; blank filters become None."""
    if condition is None:
        return None
    cleaned = _LEADING_WHERE.sub('', condition.strip()).strip()
    return cleaned or None


def build_where_clause(filter_condition: Optional[str], extra: Optional[str] = None) -> str:
    """Compose ' WHERE (filter) AND (extra)' from whichever parts are present."""
    parts = [p for p in (normalize_filter(filter_condition), extra) if p]
    if not parts:
        return ""
    return " WHERE " + " AND ".join(f"({p})" for p in parts)


def chunk_predicate(column: str, chunk_range: ChunkRange) -> str:
    col = quote_identifier(column)
    return f"{col} >= {int(chunk_range.start)} AND {col} <= {int(chunk_range.end)}"


def build_select(table_ref: str, columns: Sequence[str], where: str = "") -> str:
    column_list = ", ".join(quote_identifier(c) for c in columns)
    return f"SELECT {column_list} FROM {table_ref}{where}"


def build_insert(table_ref: str, columns: Sequence[str], placeholders: str) -> str:
    column_list = ", ".join(quote_identifier(c) for c in columns)
    return f"INSERT INTO {table_ref} ({column_list}) VALUES ({placeholders})"


def build_count(table_ref: str, where: str = "") -> str:
    return f"SELECT COUNT(*) FROM {table_ref}{where}"


def build_bounds_query(table_ref: str, column: str, where: str = "") -> str:
    col = quote_identifier(column)
    return f"SELECT MIN({col}) AS min_val, MAX({col}) AS max_val FROM {table_ref}{where}"


def clean_data_type(data_type: Optional[str]) -> str:
    """
    Sanitize a target type for DDL

    Drops "(n)" length placeholders left by mapping templates, and turns a
    bare VARCHAR/VARCHAR2 (no length) into TEXT.
    """
    if not data_type or not data_type.strip():
        return "TEXT"
    cleaned = _LENGTH_PLACEHOLDER.sub('', data_type).strip()
    if cleaned.upper() in ("VARCHAR", "VARCHAR2"):
        return "TEXT"
    return cleaned or "TEXT"


def column_ddl_type(column: ColumnMapping) -> str:
    if column.target_data_type and column.target_data_type.strip():
        return clean_data_type(column.target_data_type)
    if column.source_data_type:
        return clean_data_type(TypeRegistry.to_postgres(column.source_data_type))
    return "TEXT"


def build_create_table(table_ref: str, columns: List[ColumnMapping]) -> str:
    definitions = []
    for column in columns:
        definition = f"{quote_identifier(column.target_column)} {column_ddl_type(column)}"
        if column.nullable is False:
            definition += " NOT NULL"
        definitions.append(definition)
    return f"CREATE TABLE {table_ref} ({', '.join(definitions)})"
