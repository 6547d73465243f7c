#!/usr/bin/env python3
"""
Table Migration Unit - migrates one table mapping end to end

Prepares the target table (drop/recreate or truncate) on fresh runs, decides
whether to copy in parallel partition ranges, runs the copy, and records the
table's final status.

Author: Apollo & Claude
Version: 1.0.0
"""

import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import List

from migrator.connections import ConnectionConfig, ConnectionProvider
from migrator.errors import PartitionBoundsUnavailable
from migrator.job_registry import JobContext
from migrator.models import ChunkRange, LogLevel, TableMapping, TableStatus
from migrator.partitioner import build_chunk_ranges, chunking_eligibility, chunking_requested, \
    resolve_partition_bounds
from migrator.row_copy import RowCopyEngine
from migrator.sql_builder import build_create_table

logger = logging.getLogger(__name__)


class TableMigrationUnit:
    """Runs a single table's migration within a job"""

    def __init__(self, engine: RowCopyEngine, connections: ConnectionProvider,
                 source_config: ConnectionConfig, target_config: ConnectionConfig, settings):
        self.engine = engine
        self.connections = connections
        self.source_config = source_config
        self.target_config = target_config
        self.settings = settings

    def run(self, job: JobContext, table: TableMapping, is_resume: bool) -> int:
        """
        Migrate one table

        Args:
            job: Owning job context
            table: Table mapping to migrate
            is_resume: True when the job resumes a previous run (target preparation is skipped)

        Returns:
            Number of rows migrated

        Raises:
            Whatever aborted the copy; the table is marked as failed first.
        """
        job.wait_if_paused()
        job.set_current_table(table.source_name)
        job.log(LogLevel.INFO, f"Migrating table: {table.source_name}")

        try:
            if not is_resume:
                self.prepare_target(job, table)
            elif not table.has_primary_key:
                job.log(LogLevel.WARNING,
                        f"Restarting {table.source_name} from the first row; "
                        f"target has no primary key so rows copied before the interruption may be duplicated")
            rows = self._copy(job, table)
        except Exception as e:
            # Tables still queued must not start once any table has failed
            job.abort()
            job.set_table_status(table, TableStatus.ERROR)
            job.log(LogLevel.ERROR, f"Failed to migrate table: {table.source_name} - {e}",
                    details=type(e).__name__)
            raise

        job.set_table_status(table, TableStatus.MIGRATED)
        job.increment_completed_tables()
        job.save_checkpoint()
        job.log(LogLevel.SUCCESS, f"Completed table: {table.source_name} ({rows} rows migrated)")
        return rows

    def prepare_target(self, job: JobContext, table: TableMapping):
        """Apply drop+recreate or truncate to the target table"""
        if not table.drop_before_insert and not table.truncate_before_insert:
            return

        with self.connections.open(self.target_config) as target:
            target.autocommit = True
            if table.drop_before_insert:
                target.drop_table(table.target_schema, table.target_table)
                job.log(LogLevel.INFO, f"Dropped table: {table.target_table}")
                table_ref = target.qualify(table.target_schema, table.target_table)
                target.execute(build_create_table(table_ref, table.column_mappings))
                job.log(LogLevel.INFO, f"Recreated table: {table.target_table}")
            elif table.truncate_before_insert:
                target.truncate_table(table.target_schema, table.target_table)
                job.log(LogLevel.INFO, f"Truncated table: {table.target_table}")

    def _copy(self, job: JobContext, table: TableMapping) -> int:
        eligible, reason = chunking_eligibility(table)
        if not eligible:
            if chunking_requested(table):
                job.log(LogLevel.WARNING,
                        f"Chunking disabled for {table.source_name} ({reason})")
            return self.engine.copy(job, table)

        try:
            with self.connections.open(self.source_config, read_only=True) as source:
                table_ref = source.qualify(table.source_schema, table.source_table)
                min_value, max_value = resolve_partition_bounds(source, table_ref, table)
        except PartitionBoundsUnavailable:
            job.log(LogLevel.WARNING,
                    f"Unable to determine partition bounds for {table.source_name}. "
                    f"Falling back to single-thread copy.")
            return self.engine.copy(job, table)

        ranges = build_chunk_ranges(min_value, max_value, table.chunk_size)
        if not ranges:
            job.log(LogLevel.WARNING,
                    f"Unable to determine partition bounds for {table.source_name}. "
                    f"Falling back to single-thread copy.")
            return self.engine.copy(job, table)

        return self._copy_ranges(job, table, ranges)

    def _copy_ranges(self, job: JobContext, table: TableMapping, ranges: List[ChunkRange]) -> int:
        workers = max(1, min(table.chunk_workers, len(ranges)))
        job.log(LogLevel.INFO,
                f"Chunking {table.source_name} using {workers} worker(s) across {len(ranges)} range(s)")

        executor = ThreadPoolExecutor(max_workers=workers,
                                      thread_name_prefix=f"Chunk-{table.source_table}")
        futures = [executor.submit(self.engine.copy, job, table, chunk_range) for chunk_range in ranges]
        try:
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            failed = [f for f in done if not f.cancelled() and f.exception() is not None]
            if failed:
                for future in pending:
                    future.cancel()
                # A failed table fails the job; running siblings stop at their next row
                job.abort()
                raise failed[0].exception()
            return sum(f.result() for f in futures)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            await_workers(futures, self.settings.shutdown_grace_seconds, f"chunk workers of {table.source_name}")


def await_workers(futures, grace_seconds: float, description: str):
    """Give running workers a bounded time to finish after a shutdown"""
    _, still_running = wait(futures, timeout=grace_seconds)
    if still_running:
        logger.warning(f"{len(still_running)} {description} still running after {grace_seconds}s shutdown grace period")
