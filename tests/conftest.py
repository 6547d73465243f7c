#!/usr/bin/env python3
"""
Migrator Test Configuration - PyTest Configuration and Fixtures

Provides SQLite-file source/target databases, project builders and fast
settings so the full engine can run end to end without Oracle or PostgreSQL.

Author: Apollo & Claude
Version: 1.0.0
"""

import os
import sys
import sqlite3
import threading
import time
from typing import Callable, List

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.settings import MigrationSettings
from migrator.connections import ConnectionConfig
from migrator.models import ColumnMapping, Project, TableMapping
from migrator.store import MemoryStore


def make_settings(**overrides) -> MigrationSettings:
    values = dict(parallel_jobs=2, batch_size=100, commit_interval=1000, auto_commit=False,
                  shutdown_grace_seconds=5.0, pause_poll_seconds=0.01)
    values.update(overrides)
    return MigrationSettings(**values)


def create_source_table(db_path: str, table: str, rows: int, start: int = 1,
                        with_payload: bool = False):
    """Create table (id INTEGER, name TEXT, created TEXT[, payload BLOB]) with sequential ids"""
    conn = sqlite3.connect(db_path)
    try:
        columns = "id INTEGER PRIMARY KEY, name TEXT, created TEXT"
        if with_payload:
            columns += ", payload BLOB"
        conn.execute(f'CREATE TABLE "{table}" ({columns})')
        data = []
        for i in range(start, start + rows):
            row = (i, f"name-{i}", f"2024-01-{(i % 28) + 1:02d} 10:00:00")
            if with_payload:
                row += (bytes([i % 256]) * 4,)
            data.append(row)
        placeholders = ", ".join(["?"] * len(data[0])) if data else ""
        if data:
            conn.executemany(f'INSERT INTO "{table}" VALUES ({placeholders})', data)
        conn.commit()
    finally:
        conn.close()


def count_rows(db_path: str, table: str) -> int:
    conn = sqlite3.connect(db_path)
    try:
        return conn.execute(f'SELECT COUNT(*) FROM "{table}"').fetchone()[0]
    finally:
        conn.close()


def fetch_all(db_path: str, sql: str) -> list:
    conn = sqlite3.connect(db_path)
    try:
        return conn.execute(sql).fetchall()
    finally:
        conn.close()


def standard_columns(with_payload: bool = False) -> List[ColumnMapping]:
    columns = [
        ColumnMapping("id", "id", "NUMBER(10)", "BIGINT", nullable=False, is_primary_key=True),
        ColumnMapping("name", "name", "VARCHAR2(100)", "VARCHAR(100)"),
        ColumnMapping("created", "created", "DATE", "TIMESTAMP"),
    ]
    if with_payload:
        columns.append(ColumnMapping("payload", "payload", "BLOB", "BYTEA"))
    return columns


def make_table(name: str, **options) -> TableMapping:
    columns = options.pop('column_mappings', None) or standard_columns(options.pop('with_payload', False))
    return TableMapping(source_schema="HR", source_table=name,
                        target_schema="public", target_table=name.lower(),
                        column_mappings=columns, **options)


def wait_until(predicate: Callable[[], bool], timeout: float = 10.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RowGate:
    """Blocks the copying thread once a given number of rows has been marshalled"""

    def __init__(self, after_rows: int):
        self.after_rows = after_rows
        self.calls = 0
        self.reached = threading.Event()
        self.release = threading.Event()
        self._lock = threading.Lock()

    def wrap(self, marshal_row):
        def gated(columns, row):
            with self._lock:
                self.calls += 1
                hit = self.calls == self.after_rows
            if hit:
                self.reached.set()
                self.release.wait(10)
            return marshal_row(columns, row)
        return gated


@pytest.fixture
def db_paths(tmp_path):
    """Paths of an empty source and target SQLite database"""
    return str(tmp_path / "source.db"), str(tmp_path / "target.db")


@pytest.fixture
def connections(db_paths):
    source_path, target_path = db_paths
    return ConnectionConfig(type="sqlite", path=source_path), ConnectionConfig(type="sqlite", path=target_path)


@pytest.fixture
def project_factory(connections):
    source_config, target_config = connections

    def build(tables: List[TableMapping], project_id: str = "proj-1") -> Project:
        return Project(id=project_id, name="Test project",
                       source_connection=source_config, target_connection=target_config,
                       table_mappings=tables)
    return build


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store():
    return MemoryStore()


# Custom markers for test organization
def pytest_configure(config):
    """Configure custom pytest markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that test individual components"
    )
    config.addinivalue_line(
        "markers", "integration: End-to-end copies between SQLite databases"
    )
