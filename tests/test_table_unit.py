#!/usr/bin/env python3
"""
Table Migration Unit tests - target preparation, chunked copies and fallbacks
"""

import sqlite3
import pytest
from unittest.mock import patch

from conftest import count_rows, create_source_table, fetch_all, make_settings, make_table
from migrator.connections import ConnectionProvider
from migrator.errors import StatementExecutionError, ValueConversionError
from migrator.job_registry import JobContext
from migrator.models import ChunkRange, ColumnMapping, LogLevel, MigrationProgress, TableStatus
from migrator.row_copy import RowCopyEngine
from migrator.sql_builder import build_create_table
from migrator.store import MemoryStore
from migrator.table_unit import TableMigrationUnit


def create_target_table(db_path, table, rows=0):
    conn = sqlite3.connect(db_path)
    try:
        conn.execute(build_create_table(f'"{table.target_table}"', table.column_mappings))
        for i in range(rows):
            conn.execute(f'INSERT INTO "{table.target_table}" ("id") VALUES (?)', (1000 + i,))
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def unit_setup(connections, project_factory):
    source_config, target_config = connections

    def build(table, **setting_overrides):
        settings = make_settings(**setting_overrides)
        project = project_factory([table])
        store = MemoryStore()
        store.save_project(project)
        job = JobContext(project, store, settings, MigrationProgress(job_id=project.id))
        provider = ConnectionProvider()
        engine = RowCopyEngine(provider, source_config, target_config, settings)
        unit = TableMigrationUnit(engine, provider, source_config, target_config, settings)
        return unit, job, store
    return build


def messages(job, level=None):
    return [log.message for log in job.progress.logs if level is None or log.level == level]


@pytest.mark.integration
class TestChunkedCopy:

    def test_ranges_copied_in_parallel_without_gaps_or_duplicates(self, db_paths, unit_setup):
        source_path, target_path = db_paths
        create_source_table(source_path, "CHUNKED", 25)
        table = make_table("CHUNKED", partition_column="ID", chunk_size=10, chunk_workers=3)
        create_target_table(target_path, table)
        unit, job, store = unit_setup(table)

        with patch.object(RowCopyEngine, 'copy', autospec=True, side_effect=RowCopyEngine.copy) as copy_spy:
            rows = unit.run(job, table, is_resume=False)

        assert rows == 25
        ranges = sorted((call.args[3] for call in copy_spy.call_args_list), key=lambda r: r.start)
        assert ranges == [ChunkRange(1, 10), ChunkRange(11, 20), ChunkRange(21, 25)]
        ids = [r[0] for r in fetch_all(target_path, 'SELECT "id" FROM "chunked" ORDER BY "id"')]
        assert ids == list(range(1, 26))
        assert "Chunking HR.CHUNKED using 3 worker(s) across 3 range(s)" in messages(job)
        assert job.progress.migrated_rows == 25

    def test_workers_capped_by_range_count(self, db_paths, unit_setup):
        source_path, target_path = db_paths
        create_source_table(source_path, "FEW", 15)
        table = make_table("FEW", partition_column="ID", chunk_size=10, chunk_workers=8)
        create_target_table(target_path, table)
        unit, job, _ = unit_setup(table)

        unit.run(job, table, is_resume=False)

        assert "Chunking HR.FEW using 2 worker(s) across 2 range(s)" in messages(job)
        assert count_rows(target_path, "few") == 15

    def test_configured_bounds_limit_the_copy(self, db_paths, unit_setup):
        source_path, target_path = db_paths
        create_source_table(source_path, "BOUNDED", 50)
        table = make_table("BOUNDED", partition_column="ID", chunk_size=10, chunk_workers=2,
                           partition_min_value="11", partition_max_value="30")
        create_target_table(target_path, table)
        unit, job, _ = unit_setup(table)

        assert unit.run(job, table, is_resume=False) == 20

    def test_non_numeric_partition_column_falls_back(self, db_paths, unit_setup):
        source_path, target_path = db_paths
        create_source_table(source_path, "NAMED", 12)
        table = make_table("NAMED", partition_column="name", chunk_size=5, chunk_workers=3)
        create_target_table(target_path, table)
        unit, job, _ = unit_setup(table)

        assert unit.run(job, table, is_resume=False) == 12

        warnings = messages(job, LogLevel.WARNING)
        assert len(warnings) == 1
        assert warnings[0].startswith("Chunking disabled for HR.NAMED (")
        assert "not numeric" in warnings[0]

    def test_fractional_partition_column_copies_every_row(self, db_paths, unit_setup):
        source_path, target_path = db_paths
        conn = sqlite3.connect(source_path)
        conn.execute('CREATE TABLE "PRICES" (id INTEGER, amount REAL)')
        conn.executemany('INSERT INTO "PRICES" VALUES (?, ?)',
                         [(i, i + 0.5) for i in range(1, 13)] + [(13, 12.7)])
        conn.commit()
        conn.close()
        columns = [ColumnMapping("id", "id", "NUMBER(10)", "BIGINT", is_primary_key=True),
                   ColumnMapping("amount", "amount", "NUMBER(6,2)", "NUMERIC(6,2)")]
        table = make_table("PRICES", column_mappings=columns, partition_column="amount",
                           chunk_size=5, chunk_workers=3)
        create_target_table(target_path, table)
        unit, job, _ = unit_setup(table)

        assert unit.run(job, table, is_resume=False) == 13

        assert count_rows(target_path, "prices") == 13
        warnings = messages(job, LogLevel.WARNING)
        assert warnings == ["Chunking disabled for HR.PRICES (partition column amount has fractional scale 2)"]

    def test_empty_source_falls_back_to_single_copy(self, db_paths, unit_setup):
        source_path, target_path = db_paths
        create_source_table(source_path, "EMPTY", 0)
        table = make_table("EMPTY", partition_column="ID", chunk_size=10, chunk_workers=3)
        create_target_table(target_path, table)
        unit, job, _ = unit_setup(table)

        assert unit.run(job, table, is_resume=False) == 0

        assert "Unable to determine partition bounds for HR.EMPTY. Falling back to single-thread copy." \
            in messages(job, LogLevel.WARNING)
        assert table.status == TableStatus.MIGRATED

    def test_failed_range_aborts_siblings_and_fails_table(self, db_paths, unit_setup):
        source_path, target_path = db_paths
        conn = sqlite3.connect(source_path)
        conn.execute('CREATE TABLE "MIXED" (id INTEGER, amount TEXT)')
        conn.executemany('INSERT INTO "MIXED" VALUES (?, ?)',
                         [(i, "oops" if i == 15 else str(i)) for i in range(1, 26)])
        conn.commit()
        conn.close()
        table = make_table("MIXED", partition_column="ID", chunk_size=10, chunk_workers=3,
                           column_mappings=[ColumnMapping("id", "id", "NUMBER(10)", "BIGINT"),
                                            ColumnMapping("amount", "amount", "NUMBER(10)", "BIGINT")])
        create_target_table(target_path, table)
        unit, job, _ = unit_setup(table)

        with pytest.raises(ValueConversionError):
            unit.run(job, table, is_resume=False)

        assert job.cancel.is_set()
        assert table.status == TableStatus.ERROR


@pytest.mark.integration
class TestTargetPreparation:

    def test_drop_and_recreate(self, db_paths, unit_setup):
        source_path, target_path = db_paths
        create_source_table(source_path, "DROPPED", 5)
        conn = sqlite3.connect(target_path)
        conn.execute('CREATE TABLE "dropped" (legacy TEXT)')
        conn.execute('INSERT INTO "dropped" VALUES (\'old\')')
        conn.commit()
        conn.close()
        table = make_table("DROPPED", drop_before_insert=True)
        unit, job, _ = unit_setup(table)

        unit.run(job, table, is_resume=False)

        assert "Dropped table: dropped" in messages(job)
        assert "Recreated table: dropped" in messages(job)
        assert fetch_all(target_path, 'SELECT "id" FROM "dropped" ORDER BY "id"') == [(i,) for i in range(1, 6)]

    def test_truncate(self, db_paths, unit_setup):
        source_path, target_path = db_paths
        create_source_table(source_path, "TRUNCATED", 4)
        table = make_table("TRUNCATED", truncate_before_insert=True)
        create_target_table(target_path, table, rows=3)
        unit, job, _ = unit_setup(table)

        unit.run(job, table, is_resume=False)

        assert "Truncated table: truncated" in messages(job)
        assert count_rows(target_path, "truncated") == 4

    def test_resume_skips_preparation(self, db_paths, unit_setup):
        source_path, target_path = db_paths
        create_source_table(source_path, "KEPT", 4)
        table = make_table("KEPT", truncate_before_insert=True)
        create_target_table(target_path, table, rows=3)
        unit, job, _ = unit_setup(table)

        unit.run(job, table, is_resume=True)

        assert not any(m.startswith("Truncated table") for m in messages(job))
        assert count_rows(target_path, "kept") == 7

    def test_resume_without_primary_key_warns_about_duplicates(self, db_paths, unit_setup):
        source_path, target_path = db_paths
        create_source_table(source_path, "NOKEY", 2)
        table = make_table("NOKEY")
        for column in table.column_mappings:
            column.is_primary_key = False
        create_target_table(target_path, table)
        unit, job, _ = unit_setup(table)

        unit.run(job, table, is_resume=True)

        warnings = messages(job, LogLevel.WARNING)
        assert len(warnings) == 1
        assert "may be duplicated" in warnings[0]


@pytest.mark.integration
class TestTableOutcome:

    def test_success_marks_table_and_counts(self, db_paths, unit_setup):
        source_path, target_path = db_paths
        create_source_table(source_path, "DONE", 7)
        table = make_table("DONE")
        create_target_table(target_path, table)
        unit, job, store = unit_setup(table)

        unit.run(job, table, is_resume=False)

        assert table.status == TableStatus.MIGRATED
        assert store.load_project(job.job_id).table_mappings[0].status == TableStatus.MIGRATED
        assert job.progress.completed_tables == 1
        assert job.progress.current_table == "HR.DONE"
        assert messages(job)[0] == "Migrating table: HR.DONE"
        assert messages(job, LogLevel.SUCCESS) == ["Completed table: HR.DONE (7 rows migrated)"]
        assert store.load_checkpoint(job.job_id).completed_tables == 1

    def test_missing_source_table_fails(self, db_paths, unit_setup):
        table = make_table("MISSING")
        create_target_table(db_paths[1], table)
        unit, job, store = unit_setup(table)

        with pytest.raises(StatementExecutionError):
            unit.run(job, table, is_resume=False)

        assert table.status == TableStatus.ERROR
        assert store.load_project(job.job_id).table_mappings[0].status == TableStatus.ERROR
        errors = [log for log in job.progress.logs if log.level == LogLevel.ERROR]
        assert len(errors) == 1
        assert errors[0].message.startswith("Failed to migrate table: HR.MISSING - ")
        assert errors[0].details == "StatementExecutionError"
        assert job.progress.completed_tables == 0
