#!/usr/bin/env python3
"""
Dialect adapter base class

Every adapter wraps exactly one DB-API connection. Adapters are not shared
between threads: each copy opens its own and closes it when done.

Author: Apollo & Claude
Version: 1.0.0
"""

import logging
from typing import Any, Iterator, Optional, Sequence, Tuple

from migrator.errors import StatementExecutionError, sanitize_error
from migrator.sql_builder import qualified_name

logger = logging.getLogger(__name__)


class DialectAdapter:
    """Base class for dialect adapters"""

    dialect = "generic"
    placeholder = "%s"
    driver_error: Tuple[type, ...] = (Exception,)

    def __init__(self, config):
        self.config = config
        self._connection = None

    @property
    def connection(self):
        return self._connection

    @property
    def autocommit(self) -> bool:
        return bool(self._connection.autocommit)

    @autocommit.setter
    def autocommit(self, value: bool):
        self._connection.autocommit = bool(value)

    def placeholders(self, count: int) -> str:
        return ", ".join([self.placeholder] * count)

    def qualify(self, schema: Optional[str], table: str) -> str:
        """Quoted table reference"""
        return qualified_name(schema, table)

    def commit(self):
        try:
            self._connection.commit()
        except self.driver_error as e:
            raise StatementExecutionError(f"Commit failed: {e}") from e

    def rollback(self):
        try:
            self._connection.rollback()
        except self.driver_error as e:
            logger.warning(f"Rollback failed on {self.dialect}: {sanitize_error(e)}")

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """Execute one statement and return the affected row count"""
        cursor = self._connection.cursor()
        try:
            if params:
                cursor.execute(sql, params)
            else:
                cursor.execute(sql)
            return cursor.rowcount
        except self.driver_error as e:
            raise StatementExecutionError(str(e), sql=sql) from e
        finally:
            cursor.close()

    def query_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Tuple[Any, ...]]:
        cursor = self._connection.cursor()
        try:
            if params:
                cursor.execute(sql, params)
            else:
                cursor.execute(sql)
            row = cursor.fetchone()
            return tuple(row) if row is not None else None
        except self.driver_error as e:
            raise StatementExecutionError(str(e), sql=sql) from e
        finally:
            cursor.close()

    def _open_stream_cursor(self, arraysize: int):
        cursor = self._connection.cursor()
        cursor.arraysize = arraysize
        return cursor

    def stream(self, sql: str, params: Optional[Sequence[Any]] = None,
               arraysize: int = 1000) -> Iterator[Tuple[Any, ...]]:
        """Yield rows in cursor order, fetching arraysize rows per round trip"""
        cursor = self._open_stream_cursor(arraysize)
        try:
            try:
                if params:
                    cursor.execute(sql, params)
                else:
                    cursor.execute(sql)
            except self.driver_error as e:
                raise StatementExecutionError(str(e), sql=sql) from e
            while True:
                try:
                    rows = cursor.fetchmany(arraysize)
                except self.driver_error as e:
                    raise StatementExecutionError(str(e), sql=sql) from e
                if not rows:
                    break
                for row in rows:
                    yield row
        finally:
            cursor.close()

    def execute_batch(self, sql: str, rows: Sequence[Sequence[Any]]):
        """Execute one parameterized statement for every row"""
        if not rows:
            return
        cursor = self._connection.cursor()
        try:
            cursor.executemany(sql, rows)
        except self.driver_error as e:
            raise StatementExecutionError(str(e), sql=sql, details={'batch_size': len(rows)}) from e
        finally:
            cursor.close()

    def table_exists(self, schema: Optional[str], table: str) -> bool:
        raise NotImplementedError("Subclasses must implement table_exists")

    def drop_table(self, schema: Optional[str], table: str):
        self.execute(f"DROP TABLE IF EXISTS {self.qualify(schema, table)} CASCADE")

    def truncate_table(self, schema: Optional[str], table: str):
        self.execute(f"TRUNCATE TABLE {self.qualify(schema, table)}")

    def close(self):
        if self._connection is not None:
            try:
                self._connection.close()
            except self.driver_error as e:
                logger.debug(f"Error closing {self.dialect} connection: {sanitize_error(e)}")
            self._connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

