#!/usr/bin/env python3
"""
Range Partitioner - splits a numeric partition column into inclusive ranges

Usage:
    ranges = build_chunk_ranges(1, 25, 10)
    # [ChunkRange(1, 10), ChunkRange(11, 20), ChunkRange(21, 25)]
"""

import logging
from typing import List, Optional, Tuple

from migrator.errors import PartitionBoundsUnavailable
from migrator.models import ChunkRange, ColumnMapping, TableMapping
from migrator.sql_builder import build_bounds_query, build_where_clause
from migrator.type_registry import TypeRegistry

logger = logging.getLogger(__name__)

CHUNKABLE_TYPE_TOKENS = ("INT", "NUMBER", "DECIMAL", "NUMERIC")


def parse_long_safe(value) -> Optional[int]:
    """Parse an integer bound, returning None for blanks and garbage"""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    # Oracle NUMBER bounds can come back as '10.0' or Decimal
    try:
        as_float = float(text)
    except ValueError:
        return None
    if as_float != as_float or as_float in (float('inf'), float('-inf')):
        return None
    return int(as_float)


def build_chunk_ranges(min_value: Optional[int], max_value: Optional[int], chunk_size: int) -> List[ChunkRange]:
    """
    Split [min, max] into contiguous, non-overlapping inclusive ranges

    Bounds given in the wrong order are swapped. Missing bounds or a
    non-positive chunk size yield no ranges.
    """
    if min_value is None or max_value is None or chunk_size is None or chunk_size <= 0:
        return []
    if max_value < min_value:
        min_value, max_value = max_value, min_value

    ranges = []
    start = min_value
    while start <= max_value:
        end = min(start + chunk_size - 1, max_value)
        ranges.append(ChunkRange(start, end))
        start += chunk_size
    return ranges


def find_partition_column(table: TableMapping) -> Optional[ColumnMapping]:
    """Case-insensitive lookup of the partition column among the column mappings"""
    if not table.partition_column:
        return None
    wanted = table.partition_column.strip().lower()
    for column in table.column_mappings:
        if column.source_column and column.source_column.lower() == wanted:
            return column
    return None


def is_chunkable_type(column: ColumnMapping) -> bool:
    declared = column.declared_type.upper()
    return any(token in declared for token in CHUNKABLE_TYPE_TOKENS)


def declared_scale(column: ColumnMapping) -> Optional[int]:
    """Scale of the partition column: the mapped source scale, else the one in NUMBER(p,s)"""
    if column.source_data_scale is not None:
        return column.source_data_scale
    _, _, scale = TypeRegistry.parse_type_string(column.declared_type)
    return scale


def chunking_requested(table: TableMapping) -> bool:
    return bool(table.partition_column and table.partition_column.strip()) \
        and (table.chunk_workers or 0) > 1 \
        and (table.chunk_size or 0) > 0


def chunking_eligibility(table: TableMapping) -> Tuple[bool, Optional[str]]:
    """
    Decide whether a table may be copied in parallel ranges

    Returns:
        (eligible, reason) where reason explains a refusal, or is None
    """
    if not chunking_requested(table):
        return False, None
    column = find_partition_column(table)
    if column is None:
        return False, f"partition column {table.partition_column} is not mapped"
    if not is_chunkable_type(column):
        return False, f"partition column {table.partition_column} is not numeric ({column.declared_type or 'unknown type'})"
    # Ranges are integer; fractional keys between two bounds would be skipped
    scale = declared_scale(column)
    if scale is not None and scale > 0:
        return False, f"partition column {table.partition_column} has fractional scale {scale}"
    return True, None


def resolve_partition_bounds(source, table_ref: str, table: TableMapping) -> Tuple[int, int]:
    """
    Determine the partition bounds, probing MIN/MAX on the source for any that are missing

    Args:
        source: Open source adapter
        table_ref: Quoted source table reference
        table: Table mapping carrying the configured bounds and filter

    Raises:
        PartitionBoundsUnavailable: If a bound is still unknown after probing
    """
    min_value = parse_long_safe(table.partition_min_value)
    max_value = parse_long_safe(table.partition_max_value)

    if min_value is None or max_value is None:
        column = find_partition_column(table)
        column_name = column.source_column if column else table.partition_column
        sql = build_bounds_query(table_ref, column_name, build_where_clause(table.filter_condition))
        row = source.query_one(sql)
        if row:
            if min_value is None:
                min_value = parse_long_safe(row[0])
            if max_value is None:
                max_value = parse_long_safe(row[1])
        logger.debug(f"Probed partition bounds for {table.source_name}: {min_value}..{max_value}")

    if min_value is None or max_value is None:
        raise PartitionBoundsUnavailable(table.source_name, table.partition_column)
    return min_value, max_value
