#!/usr/bin/env python3
"""
Oracle Adapter - migration source (python-oracledb, Thin Mode)

NUMBER columns are fetched as decimal.Decimal so precision survives the
copy. CLOB/BLOB columns are fetched inline as str/bytes unless
inline_lobs=False, in which case LOB locators reach the value marshaller.

Author: Apollo & Claude
Version: 1.0.0
"""

import decimal
import logging
from typing import Optional

import oracledb

from extensions.plugins.base_adapter import DialectAdapter
from migrator.errors import sanitize_error

logger = logging.getLogger(__name__)


def _output_type_handler(inline_lobs: bool):
    def output_type_handler(cursor, name, default_type, size, precision, scale):
        if default_type == oracledb.DB_TYPE_NUMBER:
            return cursor.var(decimal.Decimal, arraysize=cursor.arraysize)
        if inline_lobs:
            if default_type == oracledb.DB_TYPE_CLOB:
                return cursor.var(oracledb.DB_TYPE_LONG, arraysize=cursor.arraysize)
            if default_type == oracledb.DB_TYPE_BLOB:
                return cursor.var(oracledb.DB_TYPE_LONG_RAW, arraysize=cursor.arraysize)
        return None
    return output_type_handler


class OracleAdapter(DialectAdapter):
    """Oracle adapter over a single oracledb connection"""

    dialect = "oracle"
    placeholder = ":1"
    driver_error = (oracledb.Error,)

    def __init__(self, config, read_only: bool = False, inline_lobs: bool = True):
        super().__init__(config)
        self.read_only = read_only
        self.inline_lobs = inline_lobs
        self._connect()

    def _connect(self):
        try:
            self._connection = oracledb.connect(
                user=self.config.username,
                password=self.config.password,
                dsn=self.config.dsn()
            )
            self._connection.outputtypehandler = _output_type_handler(self.inline_lobs)
            if self.read_only:
                cursor = self._connection.cursor()
                cursor.execute("SET TRANSACTION READ ONLY")
                cursor.close()
            logger.debug(f"Connected to Oracle {self.config.describe()} (read_only={self.read_only})")
        except oracledb.Error as e:
            logger.error(f"Failed to connect to Oracle: {sanitize_error(e)}")
            raise

    def placeholders(self, count: int) -> str:
        return ", ".join(f":{i}" for i in range(1, count + 1))

    def table_exists(self, schema: Optional[str], table: str) -> bool:
        if schema:
            row = self.query_one(
                "SELECT COUNT(*) FROM all_tables WHERE owner = :1 AND table_name = :2", (schema, table))
        else:
            row = self.query_one("SELECT COUNT(*) FROM user_tables WHERE table_name = :1", (table,))
        return bool(row and row[0])

    def drop_table(self, schema: Optional[str], table: str):
        self.execute(f"DROP TABLE {self.qualify(schema, table)} CASCADE CONSTRAINTS")
