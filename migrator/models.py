#!/usr/bin/env python3
"""
Migrator Data Model

Dataclasses describing what to copy (Project, TableMapping, ColumnMapping)
and how a run is going (MigrationProgress, MigrationLog). Everything here
round-trips through plain dicts so the JSON store can persist it.

Author: Apollo & Claude
Version: 1.0.0
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from migrator.connections import ConnectionConfig


class JobStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class TableStatus(Enum):
    PENDING = "pending"
    MAPPED = "mapped"
    MIGRATED = "migrated"
    ERROR = "error"


class LogLevel(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.strftime(TIMESTAMP_FORMAT) if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class ColumnMapping:
    """Maps one source column onto one target column"""
    source_column: str
    target_column: str
    source_data_type: Optional[str] = None
    target_data_type: Optional[str] = None
    nullable: bool = True
    is_primary_key: bool = False
    is_foreign_key: bool = False
    transformation: Optional[str] = None
    source_data_length: Optional[int] = None
    source_data_precision: Optional[int] = None
    source_data_scale: Optional[int] = None
    target_data_length: Optional[int] = None
    target_data_precision: Optional[int] = None
    target_data_scale: Optional[int] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def declared_type(self) -> str:
        """Type used to pick a bind strategy: source type first, then target."""
        return (self.source_data_type or self.target_data_type or "").strip()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ColumnMapping':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if known.get('nullable') is None:
            known['nullable'] = True
        return cls(**known)


@dataclass
class TableMapping:
    """Maps one source table onto one target table, with copy options"""
    source_table: str
    target_table: str
    source_schema: Optional[str] = None
    target_schema: Optional[str] = None
    enabled: bool = True
    column_mappings: List[ColumnMapping] = field(default_factory=list)
    status: TableStatus = TableStatus.PENDING
    filter_condition: Optional[str] = None
    drop_before_insert: bool = False
    truncate_before_insert: bool = False
    partition_column: Optional[str] = None
    chunk_size: Optional[int] = None
    chunk_workers: Optional[int] = None
    partition_min_value: Optional[str] = None
    partition_max_value: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def source_name(self) -> str:
        return f"{self.source_schema}.{self.source_table}" if self.source_schema else self.source_table

    @property
    def target_name(self) -> str:
        return f"{self.target_schema}.{self.target_table}" if self.target_schema else self.target_table

    @property
    def has_primary_key(self) -> bool:
        return any(c.is_primary_key for c in self.column_mappings)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TableMapping':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known['column_mappings'] = [
            c if isinstance(c, ColumnMapping) else ColumnMapping.from_dict(c)
            for c in known.get('column_mappings') or []
        ]
        known['status'] = TableStatus(known.get('status') or TableStatus.PENDING.value)
        for flag in ('enabled', 'drop_before_insert', 'truncate_before_insert'):
            if known.get(flag) is None:
                known.pop(flag, None)
        return cls(**known)


@dataclass
class Project:
    """A source/target pair and the tables to copy between them"""
    id: str
    name: str
    source_connection: ConnectionConfig
    target_connection: ConnectionConfig
    table_mappings: List[TableMapping] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'source_connection': self.source_connection.to_dict(),
            'target_connection': self.target_connection.to_dict(),
            'table_mappings': [t.to_dict() for t in self.table_mappings],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Project':
        return cls(
            id=data['id'],
            name=data.get('name', data['id']),
            source_connection=ConnectionConfig.from_dict(data['source_connection']),
            target_connection=ConnectionConfig.from_dict(data['target_connection']),
            table_mappings=[TableMapping.from_dict(t) for t in data.get('table_mappings', [])],
        )


@dataclass(frozen=True)
class ChunkRange:
    """Inclusive integer range of partition column values"""
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start + 1


@dataclass
class MigrationLog:
    level: LogLevel
    message: str
    details: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'timestamp': _format_ts(self.timestamp),
            'level': self.level.value,
            'message': self.message,
            'details': self.details,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MigrationLog':
        return cls(
            id=data.get('id') or str(uuid.uuid4()),
            timestamp=_parse_ts(data.get('timestamp')) or datetime.now(),
            level=LogLevel(data.get('level', 'info')),
            message=data.get('message', ''),
            details=data.get('details'),
        )


@dataclass
class MigrationProgress:
    """Progress snapshot of one migration job"""
    job_id: str
    status: JobStatus = JobStatus.IDLE
    total_tables: int = 0
    completed_tables: int = 0
    total_rows: int = 0
    migrated_rows: int = 0
    current_table: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    estimated_end_time: Optional[datetime] = None
    logs: List[MigrationLog] = field(default_factory=list)

    def update_estimate(self, now: Optional[datetime] = None):
        """Extrapolate the finish time from the observed row rate."""
        if not self.start_time or self.migrated_rows <= 0 or self.total_rows <= 0:
            self.estimated_end_time = None
            return
        now = now or datetime.now()
        elapsed = (now - self.start_time).total_seconds()
        remaining = max(self.total_rows - self.migrated_rows, 0)
        rate = self.migrated_rows / elapsed if elapsed > 0 else 0
        if rate <= 0:
            self.estimated_end_time = None
            return
        self.estimated_end_time = now + timedelta(seconds=remaining / rate)

    def copy(self) -> 'MigrationProgress':
        """Detached snapshot safe to hand to callers."""
        return MigrationProgress(
            job_id=self.job_id,
            status=self.status,
            total_tables=self.total_tables,
            completed_tables=self.completed_tables,
            total_rows=self.total_rows,
            migrated_rows=self.migrated_rows,
            current_table=self.current_table,
            start_time=self.start_time,
            end_time=self.end_time,
            estimated_end_time=self.estimated_end_time,
            logs=list(self.logs),
        )

    def to_dict(self, include_logs: bool = True) -> Dict[str, Any]:
        data = {
            'job_id': self.job_id,
            'status': self.status.value,
            'total_tables': self.total_tables,
            'completed_tables': self.completed_tables,
            'total_rows': self.total_rows,
            'migrated_rows': self.migrated_rows,
            'current_table': self.current_table,
            'start_time': _format_ts(self.start_time),
            'end_time': _format_ts(self.end_time),
            'estimated_end_time': _format_ts(self.estimated_end_time),
        }
        if include_logs:
            data['logs'] = [log.to_dict() for log in self.logs]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MigrationProgress':
        return cls(
            job_id=data['job_id'],
            status=JobStatus(data.get('status', 'idle')),
            total_tables=int(data.get('total_tables') or 0),
            completed_tables=int(data.get('completed_tables') or 0),
            total_rows=int(data.get('total_rows') or 0),
            migrated_rows=int(data.get('migrated_rows') or 0),
            current_table=data.get('current_table'),
            start_time=_parse_ts(data.get('start_time')),
            end_time=_parse_ts(data.get('end_time')),
            estimated_end_time=_parse_ts(data.get('estimated_end_time')),
            logs=[MigrationLog.from_dict(l) for l in data.get('logs', [])],
        )
