#!/usr/bin/env python3
"""
Oracle -> PostgreSQL Migration Engine Package Initialization
Exports the main components for clean imports

Author: Apollo & Claude
Version: 1.0.0
"""

from migrator.connections import ConnectionConfig, ConnectionProvider
from migrator.errors import (
    ErrorCode,
    MigrationError,
    ConfigurationError,
    ValueConversionError,
    BinaryConversionError,
    StatementExecutionError,
    PartitionBoundsUnavailable,
    JobStateError,
    MigrationAborted,
)
from migrator.models import (
    ChunkRange,
    ColumnMapping,
    JobStatus,
    LogLevel,
    MigrationLog,
    MigrationProgress,
    Project,
    TableMapping,
    TableStatus,
)
from migrator.orchestrator import MigrationOrchestrator
from migrator.store import JsonFileStore, MemoryStore, MigrationStore

__version__ = "1.0.0"

__all__ = [
    'ConnectionConfig', 'ConnectionProvider',
    'ErrorCode', 'MigrationError', 'ConfigurationError', 'ValueConversionError',
    'BinaryConversionError', 'StatementExecutionError', 'PartitionBoundsUnavailable',
    'JobStateError', 'MigrationAborted',
    'ChunkRange', 'ColumnMapping', 'JobStatus', 'LogLevel', 'MigrationLog',
    'MigrationProgress', 'Project', 'TableMapping', 'TableStatus',
    'MigrationOrchestrator',
    'JsonFileStore', 'MemoryStore', 'MigrationStore',
]
