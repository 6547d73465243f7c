#!/usr/bin/env python3
"""
Migration store tests (memory and JSON file backends)
"""

import json
import pytest
from datetime import datetime

from config.settings import MigrationSettings
from migrator.connections import ConnectionConfig
from migrator.models import (ColumnMapping, JobStatus, LogLevel, MigrationLog, MigrationProgress,
                             Project, TableMapping, TableStatus)
from migrator.store import JsonFileStore, MemoryStore, create_store


def sample_project(project_id="hr/prod"):
    table = TableMapping(source_table="EMP", target_table="emp", source_schema="HR",
                         partition_column="ID", chunk_size=500, chunk_workers=2,
                         column_mappings=[ColumnMapping("ID", "id", "NUMBER(10)", "BIGINT",
                                                        nullable=False, is_primary_key=True)])
    return Project(id=project_id, name="HR",
                   source_connection=ConnectionConfig.from_url("oracle://hr:pw@ora:1521/ORCL"),
                   target_connection=ConnectionConfig(type="postgres", host="pg", database="hr"),
                   table_mappings=[table])


@pytest.fixture(params=["memory", "json"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return JsonFileStore(str(tmp_path / "state"))


@pytest.mark.unit
class TestStores:

    def test_project_round_trip(self, any_store):
        project = sample_project()
        any_store.save_project(project)

        loaded = any_store.load_project(project.id)

        assert loaded.id == project.id
        assert loaded.source_connection.type == "oracle"
        assert loaded.source_connection.port == 1521
        assert loaded.target_connection.type == "postgresql"
        table = loaded.table_mappings[0]
        assert table.partition_column == "ID"
        assert table.column_mappings[0].is_primary_key is True
        assert table.status == TableStatus.PENDING

    def test_unknown_project(self, any_store):
        assert any_store.load_project("missing") is None
        assert any_store.load_checkpoint("missing") is None
        assert any_store.load_logs("missing") == []

    def test_table_status_update(self, any_store):
        project = sample_project()
        any_store.save_project(project)

        any_store.update_table_status(project.id, project.table_mappings[0].id, TableStatus.MIGRATED)

        assert any_store.load_project(project.id).table_mappings[0].status == TableStatus.MIGRATED

    def test_checkpoint_excludes_logs(self, any_store):
        progress = MigrationProgress(job_id="hr/prod", status=JobStatus.PAUSED, total_tables=3,
                                     completed_tables=1, migrated_rows=12000,
                                     start_time=datetime(2024, 1, 1, 8, 0, 0),
                                     logs=[MigrationLog(LogLevel.INFO, "Migration started")])
        any_store.save_checkpoint(progress)

        loaded = any_store.load_checkpoint("hr/prod")

        assert loaded.status == JobStatus.PAUSED
        assert loaded.completed_tables == 1
        assert loaded.migrated_rows == 12000
        assert loaded.start_time == datetime(2024, 1, 1, 8, 0, 0)
        assert loaded.logs == []

    def test_logs_appended_in_order(self, any_store):
        any_store.append_log("hr/prod", MigrationLog(LogLevel.INFO, "first"))
        any_store.append_log("hr/prod", MigrationLog(LogLevel.ERROR, "second", details="boom"))

        logs = any_store.load_logs("hr/prod")

        assert [l.message for l in logs] == ["first", "second"]
        assert logs[1].level == LogLevel.ERROR
        assert logs[1].details == "boom"


@pytest.mark.unit
class TestJsonFileStore:

    def test_logs_kept_out_of_state_document(self, tmp_path):
        store = JsonFileStore(str(tmp_path))
        project = sample_project()
        store.save_project(project)
        state_before = (tmp_path / "hr_prod.json").read_text()

        store.append_log(project.id, MigrationLog(LogLevel.INFO, "hello"))
        store.append_log(project.id, MigrationLog(LogLevel.WARNING, "world"))

        assert (tmp_path / "hr_prod.json").read_text() == state_before
        assert set(json.loads(state_before)) == {"project"}
        lines = (tmp_path / "hr_prod.log.jsonl").read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["message"] for line in lines] == ["hello", "world"]

    def test_partial_log_line_is_skipped(self, tmp_path):
        store = JsonFileStore(str(tmp_path))
        store.append_log("job", MigrationLog(LogLevel.INFO, "kept"))
        with open(tmp_path / "job.log.jsonl", "a", encoding="utf-8") as f:
            f.write('{"level": "info", "mess')

        assert [l.message for l in store.load_logs("job")] == ["kept"]

    def test_corrupt_file_treated_as_empty(self, tmp_path):
        (tmp_path / "broken.json").write_text("{")
        store = JsonFileStore(str(tmp_path))
        assert store.load_project("broken") is None

    def test_state_survives_new_instance(self, tmp_path):
        project = sample_project()
        JsonFileStore(str(tmp_path)).save_project(project)
        assert JsonFileStore(str(tmp_path)).load_project(project.id).name == "HR"


@pytest.mark.unit
def test_create_store_picks_backend(tmp_path):
    assert isinstance(create_store(MigrationSettings(state_dir=None)), MemoryStore)
    assert isinstance(create_store(MigrationSettings(state_dir=str(tmp_path))), JsonFileStore)
