#!/usr/bin/env python3
"""
SQLite Adapter - local source/target for dry local runs and the test suite

SQLite has no schemas: table references drop the schema part, TRUNCATE is
emulated with DELETE, and DROP has no CASCADE.

Author: Apollo & Claude
Version: 1.0.0
"""

import sqlite3
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from extensions.plugins.base_adapter import DialectAdapter
from migrator.sql_builder import quote_identifier

logger = logging.getLogger(__name__)

# sqlite3 has no native Decimal/datetime binding
sqlite3.register_adapter(Decimal, str)
sqlite3.register_adapter(datetime, lambda v: v.isoformat(" "))
sqlite3.register_adapter(date, lambda v: v.isoformat())


class SQLiteAdapter(DialectAdapter):
    """SQLite adapter over a single database file."""

    dialect = "sqlite"
    placeholder = "?"
    driver_error = (sqlite3.Error,)

    def __init__(self, config):
        super().__init__(config)
        self.database = config.path or ':memory:'
        self.timeout = config.timeout or 30.0
        self._connect()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._connection = sqlite3.connect(
                self.database,
                timeout=self.timeout,
                check_same_thread=False
            )
            logger.debug(f"Connected to SQLite database: {self.database}")
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to SQLite: {e}")
            raise

    @property
    def autocommit(self) -> bool:
        return self._connection.isolation_level is None

    @autocommit.setter
    def autocommit(self, value: bool):
        self._connection.isolation_level = None if value else ""

    def qualify(self, schema: Optional[str], table: str) -> str:
        return quote_identifier(table)

    def table_exists(self, schema: Optional[str], table: str) -> bool:
        row = self.query_one("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,))
        return row is not None

    def drop_table(self, schema: Optional[str], table: str):
        self.execute(f"DROP TABLE IF EXISTS {self.qualify(schema, table)}")

    def truncate_table(self, schema: Optional[str], table: str):
        self.execute(f"DELETE FROM {self.qualify(schema, table)}")
