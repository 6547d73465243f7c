#!/usr/bin/env python3
"""
Row Copy Engine - streams one table (or one partition range) from source to target

Each copy opens its own source and target connections, reads the source in
cursor order, marshals every value, and writes parameterized batches to the
target. Progress is only counted after a batch is committed (or executed, in
autocommit mode).

Author: Apollo & Claude
Version: 1.0.0
"""

import logging
from contextlib import closing
from typing import List, Optional

from migrator.connections import ConnectionConfig, ConnectionProvider
from migrator.errors import MigrationError, sanitize_error
from migrator.job_registry import JobContext
from migrator.models import ChunkRange, LogLevel, TableMapping
from migrator.partitioner import find_partition_column
from migrator.sql_builder import build_insert, build_select, build_where_clause, chunk_predicate
from migrator.value_marshaller import declared_columns, marshal_row

logger = logging.getLogger(__name__)


class RowCopyEngine:
    """Copies rows for a table mapping, optionally restricted to a partition range"""

    def __init__(self, connections: ConnectionProvider, source_config: ConnectionConfig,
                 target_config: ConnectionConfig, settings):
        self.connections = connections
        self.source_config = source_config
        self.target_config = target_config
        self.settings = settings

    def copy(self, job: JobContext, table: TableMapping, chunk_range: Optional[ChunkRange] = None) -> int:
        """
        Copy rows for one table or one range of it

        Args:
            job: Context of the owning job (pause token, counters, log)
            table: Table mapping to copy
            chunk_range: Inclusive partition range, or None for the whole table

        Returns:
            Number of rows written to the target
        """
        columns = table.column_mappings
        if not columns:
            raise MigrationError(f"No column mappings defined for {table.source_name}")

        batch_size = max(1, self.settings.batch_size)
        commit_interval = max(1, self.settings.commit_interval)
        label = table.source_name if chunk_range is None else \
            f"{table.source_name} [{chunk_range.start}..{chunk_range.end}]"

        with self.connections.open(self.source_config, read_only=True) as source, \
                self.connections.open(self.target_config) as target:
            select_sql = self._select_sql(source, table, chunk_range)
            insert_sql = build_insert(target.qualify(table.target_schema, table.target_table),
                                      [c.target_column for c in columns],
                                      target.placeholders(len(columns)))
            declared = declared_columns(columns)

            original_autocommit = target.autocommit
            target.autocommit = bool(self.settings.auto_commit)
            try:
                total_rows = 0
                batch: List[tuple] = []
                with closing(source.stream(select_sql, arraysize=batch_size)) as rows:
                    for row in rows:
                        job.wait_if_paused()
                        batch.append(marshal_row(declared, row))
                        if len(batch) >= batch_size:
                            total_rows = self._flush(job, target, insert_sql, batch, total_rows,
                                                     commit_interval, label)
                            batch = []
                if batch:
                    total_rows = self._flush(job, target, insert_sql, batch, total_rows,
                                             commit_interval, label)
                logger.debug(f"Copied {total_rows} rows for {label}")
                return total_rows
            except Exception:
                if not target.autocommit:
                    target.rollback()
                raise
            finally:
                try:
                    target.autocommit = original_autocommit
                except Exception as e:
                    logger.warning(f"Failed to restore autocommit on target for {label}: {sanitize_error(e)}")

    def _select_sql(self, source, table: TableMapping, chunk_range: Optional[ChunkRange]) -> str:
        extra = None
        if chunk_range is not None:
            partition = find_partition_column(table)
            column_name = partition.source_column if partition else table.partition_column
            extra = chunk_predicate(column_name, chunk_range)
        return build_select(source.qualify(table.source_schema, table.source_table),
                            [c.source_column for c in table.column_mappings],
                            build_where_clause(table.filter_condition, extra))

    def _flush(self, job: JobContext, target, insert_sql: str, batch: List[tuple],
               total_rows: int, commit_interval: int, label: str) -> int:
        target.execute_batch(insert_sql, batch)
        if not target.autocommit:
            target.commit()
        job.add_migrated_rows(len(batch))

        new_total = total_rows + len(batch)
        if new_total // commit_interval > total_rows // commit_interval:
            job.log(LogLevel.INFO, f"Migrated {new_total} rows from {label}")
        return new_total
