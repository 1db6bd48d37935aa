"""
Database connection handling with SQLAlchemy.

This module provides:
1. The `connect()` function for creating new database connections
2. The `ConnectionWrapper` class, the execution facade over one connection
3. Engine creation and management through a thread-safe registry

Every query method accepts either raw text with a parameter bag or a query
template, compiles it to a CompiledQuery, and runs it inside the ambient
transaction of the connection when there is one:

- select_value(query, params) - last row's first column across result sets
- select_entity(target, query, params) - first row materialized, or None
- select_entities(target, query, params) - every row materialized
- select_column / select_raw / select_raw_with_columns - untyped rows
- select_dict(query, params) - key -> value from the first two columns
- select_row_map(query, params) - name -> value of the first row
- execute(query, params) - affected row count
- execute_identity(query, params) - identity generated by the command
"""
import atexit
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import fields
from typing import Any, Self, TypeVar

import pandas as pd
import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from libb import load_options
from rawsql.cursor import Cursor, rows_to_frame
from rawsql.exceptions import TransactionError, ValidationError
from rawsql.mapping import RowMap, materialize
from rawsql.options import DatabaseOptions
from rawsql.strategy import DatabaseStrategy, get_strategy
from rawsql.template import compile_query
from rawsql.transaction import TransactionHandle, current_transaction
from rawsql.types import IsolationLevel
from rawsql.utils import get_dialect_name, rollback_quietly

__all__ = [
    'ConnectionWrapper',
    'connect',
    'dispose_all_engines',
    'get_engine_for_options',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')
_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def get_engine_for_options(options: DatabaseOptions,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.

    Engines are shared by every connection made with an equal option set.
    Pooling is off (NullPool) unless ``options.use_pool`` is set.
    """
    key = f'{options!s}'

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.drivername}')
            return _engine_registry[key]

        strategy = get_strategy(options.drivername)
        url = strategy.build_connection_url(options)

        engine_kwargs: dict[str, Any] = {'echo': False}
        engine_kwargs.update(strategy.get_engine_kwargs(options))

        if not options.use_pool:
            engine_kwargs['poolclass'] = NullPool
        else:
            engine_kwargs['pool_size'] = options.pool_max_connections
            engine_kwargs['pool_recycle'] = options.pool_max_idle_time
            engine_kwargs['pool_timeout'] = options.pool_wait_timeout
            engine_kwargs['pool_pre_ping'] = True
            engine_kwargs['pool_reset_on_return'] = 'rollback'

        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.drivername}')

        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in _engine_registry.values():
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


class ConnectionWrapper:
    """Execution facade over one SQLAlchemy connection.

    The connection is opened lazily by the first command (or by ``open()``)
    and tracks query counts and timing. Commands run on raw DB-API cursors;
    outside an ambient transaction each command is committed on success and
    rolled back on failure.
    """

    def __init__(self, engine: Engine, options: DatabaseOptions | None = None) -> None:
        self.engine = engine
        self.options = options
        self.sa_connection: sa.engine.Connection | None = None
        self._dialect = get_dialect_name(engine)
        self._strategy = get_strategy(self._dialect)
        self.calls = 0
        self.time = 0

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __repr__(self) -> str:
        state = 'open' if self.is_open else 'closed'
        return f'<ConnectionWrapper {self._dialect} {state}>'

    @property
    def dialect(self) -> str:
        """Return the dialect name ('postgresql', 'sqlite' or 'mssql')."""
        return self._dialect

    @property
    def strategy(self) -> DatabaseStrategy:
        return self._strategy

    @property
    def default_isolation_level(self) -> IsolationLevel:
        """Isolation level used by transactional scopes that name none."""
        if self.options is None:
            return IsolationLevel.READ_UNCOMMITTED
        return self.options.isolation_level

    @property
    def is_open(self) -> bool:
        return self.sa_connection is not None and not self.sa_connection.closed

    @property
    def dbapi_connection(self) -> Any:
        """The pooled DB-API connection behind the SQLAlchemy connection."""
        return self.sa_connection.connection

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    def open(self) -> None:
        """Open the connection if it is not open already."""
        if self.is_open:
            return
        self.sa_connection = self.engine.connect()
        self.strategy.configure_connection(self.dbapi_connection.dbapi_connection)
        logger.debug(f'Opened {self._dialect} connection')

    def close(self) -> None:
        """Close the connection, committing work done outside a transaction.
        """
        if not self.is_open:
            return
        if current_transaction(self) is None and not self.sa_connection.in_transaction():
            self.dbapi_connection.commit()
        self.sa_connection.close()
        logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s (avg: {self.time/max(1,self.calls):.3f}s per query)')

    def begin_transaction(self, isolation_level: IsolationLevel | str) -> TransactionHandle:
        """Begin a driver transaction at the closest supported isolation level.

        Used by the transactional scopes in ``rawsql.transaction``; callers
        normally enter ``transactional(cn)`` instead.
        """
        isolation_level = IsolationLevel.parse(isolation_level)
        self.open()
        if self.sa_connection.in_transaction():
            raise TransactionError('Connection already has a transaction in progress')
        self.dbapi_connection.commit()
        previous = self.sa_connection.default_isolation_level
        level_name = self.strategy.isolation_level_name(isolation_level)
        self.sa_connection.execution_options(isolation_level=level_name)
        transaction = self.sa_connection.begin()
        return TransactionHandle(self, transaction, isolation_level,
                                 on_close=lambda cn: cn.reset_isolation_level(previous))

    def reset_isolation_level(self, level_name: str | None) -> None:
        """Return the connection to an isolation level once a scope has ended.
        """
        if level_name is None or not self.is_open or self.sa_connection.in_transaction():
            return
        self.sa_connection.execution_options(isolation_level=level_name)
        logger.debug(f'Isolation level reset to {level_name}')

    @contextmanager
    def _command(self, query: Any, params: Any = None) -> Iterator[Cursor]:
        """Run one command and yield its cursor.

        Commits when the block exits cleanly outside an ambient transaction;
        rolls back on error. The cursor is always closed.
        """
        compiled = compile_query(query, params)
        self.open()
        handle = current_transaction(self)
        if handle is not None and not handle.is_active:
            raise TransactionError('The ambient transaction was already committed or rolled back')

        operation, args = self.strategy.render_query(compiled, self.engine.dialect)
        cursor = Cursor(self.dbapi_connection.cursor(), self)
        try:
            cursor.execute(operation, args)
            yield cursor
        except Exception:
            if handle is None:
                rollback_quietly(self.dbapi_connection)
            raise
        else:
            if handle is None:
                self.dbapi_connection.commit()
        finally:
            cursor.close()

    @contextmanager
    def reader(self, query: Any, params: Any = None) -> Iterator[Cursor]:
        """Open a cursor over the results; the caller drains it inside the block.

        Examples
            with cn.reader(sql('select * from t where kind = {0}', kind)) as cursor:
                for row in cursor:
                    ...
        """
        with self._command(query, params) as cursor:
            yield cursor

    def select_value(self, query: Any, params: Any = None, default: Any = None) -> Any:
        """Return the first column of the last row, reading every result set.

        Returns ``default`` when no row is produced or the value is NULL.
        """
        value = None
        with self._command(query, params) as cursor:
            while True:
                rows = cursor.fetchall()
                if rows:
                    value = rows[-1][0]
                if not cursor.next_result_set():
                    break
        return default if value is None else value

    def select_entity(self, target: type[T], query: Any, params: Any = None) -> T | None:
        """Materialize the first row into ``target``, or return None.
        """
        with self._command(query, params) as cursor:
            row = cursor.fetchone()
            return None if row is None else materialize(target, row)

    def select_entities(self, target: type[T], query: Any, params: Any = None) -> list[T]:
        """Materialize every row into ``target``, in cursor order.
        """
        with self._command(query, params) as cursor:
            return [materialize(target, row) for row in cursor.fetchall()]

    def select_column(self, query: Any, params: Any = None) -> list[Any]:
        """Return the first column of every row.
        """
        with self._command(query, params) as cursor:
            return [row[0] for row in cursor.fetchall()]

    def select_raw(self, query: Any, params: Any = None) -> list[tuple]:
        """Return every row as a tuple of values.
        """
        with self._command(query, params) as cursor:
            return [tuple(row) for row in cursor.fetchall()]

    def select_raw_with_columns(self, query: Any, params: Any = None) -> tuple[list[str], list[tuple]]:
        """Return the column names and every row as a tuple of values.

        Column names come from the cursor, so they are present even when the
        query returns no rows.
        """
        with self._command(query, params) as cursor:
            rows = [tuple(row) for row in cursor.fetchall()]
            return list(cursor.columns), rows

    def select_dict(self, query: Any, params: Any = None) -> dict[Any, Any]:
        """Map the first column of every row to its second column.

        Rows whose key is NULL are dropped; later rows win on duplicate keys.
        """
        with self._command(query, params) as cursor:
            if cursor.description is not None and cursor.column_count < 2:
                raise ValidationError(f'select_dict needs two columns, got {cursor.column_count}')
            result = {}
            dropped = 0
            for row in cursor.fetchall():
                if row[0] is None:
                    dropped += 1
                    continue
                result[row[0]] = row[1]
        if dropped:
            logger.debug(f'Dropped {dropped} row(s) with a NULL key')
        return result

    def select_row_map(self, query: Any, params: Any = None) -> RowMap:
        """Return the first row as a case-insensitive name -> value map.

        The map is empty when the query returns no rows.
        """
        with self._command(query, params) as cursor:
            row = cursor.fetchone()
            return RowMap() if row is None else row.as_map()

    def select_frame(self, query: Any, params: Any = None) -> pd.DataFrame:
        """Return the rows as a pandas DataFrame.
        """
        with self._command(query, params) as cursor:
            rows = [tuple(row) for row in cursor.fetchall()]
            return rows_to_frame(cursor.columns, rows)

    def execute(self, query: Any, params: Any = None) -> int:
        """Execute a command and return the affected row count.
        """
        with self._command(query, params) as cursor:
            rowcount = cursor.rowcount
        logger.debug(f'Command affected {rowcount} row(s)')
        return rowcount

    def execute_identity(self, query: Any, params: Any = None,
                         identity_type: Callable[[Any], T] = int) -> T:
        """Execute a command, then read the identity it generated.

        The identity is read on the same connection and transaction as the
        command. Returns ``identity_type(0)`` when no identity is available.
        """
        with self._command(query, params) as cursor:
            cursor.execute(self.strategy.identity_query)
            row = cursor.fetchone()
        value = row[0] if row is not None else None
        if value is None:
            logger.debug('No identity value returned; using 0')
            value = 0
        return identity_type(value)


@load_options(cls=DatabaseOptions)
def connect(options: DatabaseOptions | dict[str, Any] | str,
            config: Any | None = None, **kw: Any) -> ConnectionWrapper:
    """Connect to a database using SQLAlchemy for connection management

    Args:
        options: Can be:
                - DatabaseOptions object
                - String path to configuration
                - Dictionary of options
                - Options specified as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Returns
        ConnectionWrapper, opened on first use
    """
    if isinstance(options, DatabaseOptions):
        for field in fields(options):
            kw.pop(field.name, None)
    else:
        options_func = load_options(cls=DatabaseOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)

    engine = get_engine_for_options(options)
    return ConnectionWrapper(engine, options)
