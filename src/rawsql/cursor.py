"""
Forward-only cursor over DB-API results.

Wraps a driver cursor and yields Row objects, one result set at a time.
Implements the read side of Python DB-API 2.0 (PEP-249) used by the facade.
"""
import logging
import time
from collections.abc import Iterator
from functools import wraps
from typing import Any

import pandas as pd

from rawsql.mapping import Row

__all__ = [
    'Cursor',
    'IterChunk',
    'rows_to_frame',
]

logger = logging.getLogger(__name__)


def dumpsql(func):
    """Decorator for logging SQL queries and parameters."""
    @wraps(func)
    def wrapper(self, operation: str, *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{operation}\nargs: {args}')
        try:
            return func(self, operation, *args, **kwargs)
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{operation}\nargs: {args}')
            raise
        finally:
            elapsed = time.time() - start
            if self.connwrapper is not None:
                self.connwrapper.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


class Cursor:
    """Single-use, forward-only cursor yielding Row objects.

    Multiple result sets are walked with ``next_result_set()`` on drivers
    that support ``nextset`` (pyodbc, psycopg); others expose one set.
    """

    def __init__(self, cursor: Any, connection_wrapper: Any = None) -> None:
        """Initialize cursor wrapper.

        Args:
            cursor: The underlying DB-API cursor
            connection_wrapper: The connection wrapper that created this cursor
        """
        self.dbapi_cursor = cursor
        self.connwrapper = connection_wrapper
        self.closed = False

    def __enter__(self) -> 'Cursor':
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __iter__(self) -> Iterator[Row]:
        """Iterate the remaining rows of the current result set."""
        columns = self.columns
        for values in IterChunk(self.dbapi_cursor):
            yield Row(columns, values)

    @property
    def description(self) -> list[tuple] | None:
        """Column descriptions of the current result set."""
        return self.dbapi_cursor.description

    @property
    def rowcount(self) -> int:
        """Number of rows affected by the last operation."""
        return self.dbapi_cursor.rowcount

    @property
    def columns(self) -> tuple[str, ...]:
        """Column names of the current result set, in result order."""
        return tuple(d[0] for d in (self.description or ()))

    @property
    def column_count(self) -> int:
        return len(self.description or ())

    def column_name(self, i: int) -> str:
        return self.columns[i]

    def close(self) -> None:
        """Close cursor."""
        if not self.closed:
            self.dbapi_cursor.close()
            self.closed = True

    def fetchone(self) -> Row | None:
        """Fetch the next row of the current result set."""
        if self.description is None:
            return None
        values = self.dbapi_cursor.fetchone()
        if values is None:
            return None
        return Row(self.columns, values)

    def fetchall(self) -> list[Row]:
        """Fetch all remaining rows of the current result set."""
        if self.description is None:
            return []
        return list(self)

    def next_result_set(self) -> bool:
        """Advance to the next result set.

        Returns False when there is none, or when the driver does not
        support multiple result sets.
        """
        nextset = getattr(self.dbapi_cursor, 'nextset', None)
        if nextset is None:
            return False
        return bool(nextset())

    @dumpsql
    def execute(self, operation: str, params: dict | tuple | None = None) -> int:
        """Execute a database operation."""
        if params:
            self.dbapi_cursor.execute(operation, params)
        else:
            self.dbapi_cursor.execute(operation)
        return self.dbapi_cursor.rowcount


def IterChunk(cursor: Any, size: int = 5000) -> Iterator[tuple]:
    """Iterate through cursor results in chunks."""
    while True:
        chunked = cursor.fetchmany(size)
        if not chunked:
            break
        yield from chunked


def rows_to_frame(columns: list[str] | tuple[str, ...], rows: list[tuple]) -> pd.DataFrame:
    """Standard pandas DataFrame loader.

    Always returns a DataFrame, with columns preserved for empty results.
    """
    if not rows:
        return pd.DataFrame(columns=list(columns))
    return pd.DataFrame.from_records(rows, columns=list(columns))
