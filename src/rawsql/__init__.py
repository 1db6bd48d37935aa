"""
Raw SQL convenience layer with support for PostgreSQL, SQLite, and SQL Server.

Queries are written as templates or raw text with a parameter bag:

    cn = rawsql.connect(drivername='sqlite', database='app.db')
    ids = [1, 2, 3]
    users = rawsql.select_entities(cn, User, sql('select * from users where id in ({0})', ids))
    with rawsql.transaction(cn):
        rawsql.execute(cn, 'update users set active = 0 where name = :name', {'name': 'bob'})

All query operations can be called either as:
- Module functions: rawsql.select_value(cn, query, params)
- ConnectionWrapper methods: cn.select_value(query, params)
"""
__version__ = '0.1.0'

from typing import Any, TypeVar

import pandas as pd

from rawsql.connection import ConnectionWrapper, connect
from rawsql.exceptions import CompilationError, ConnectionFailure, DatabaseError
from rawsql.exceptions import DriverError, IntegrityError, OperationalError
from rawsql.exceptions import QueryError, TransactionError, TypeConversionError
from rawsql.exceptions import TypeMismatch, ValidationError
from rawsql.mapping import Row, RowMap, materialize
from rawsql.options import DatabaseOptions
from rawsql.params import Binding, bind, expand_bag
from rawsql.template import CompiledQuery, QueryTemplate, compile_query, sql
from rawsql.transaction import Transaction as transaction
from rawsql.transaction import current_transaction, run_scoped, transactional
from rawsql.types import IsolationLevel

T = TypeVar('T')


def select_value(cn: ConnectionWrapper, query: Any, params: Any = None,
                 default: Any = None) -> Any:
    """Return the first column of the last row across every result set.
    """
    return cn.select_value(query, params, default=default)


def select_entity(cn: ConnectionWrapper, target: type[T], query: Any,
                  params: Any = None) -> T | None:
    """Materialize the first row into ``target``, or return None.
    """
    return cn.select_entity(target, query, params)


def select_entities(cn: ConnectionWrapper, target: type[T], query: Any,
                    params: Any = None) -> list[T]:
    """Materialize every row into ``target``.
    """
    return cn.select_entities(target, query, params)


def select_column(cn: ConnectionWrapper, query: Any, params: Any = None) -> list[Any]:
    """Return the first column of every row.
    """
    return cn.select_column(query, params)


def select_raw(cn: ConnectionWrapper, query: Any, params: Any = None) -> list[tuple]:
    """Return every row as a tuple of values.
    """
    return cn.select_raw(query, params)


def select_raw_with_columns(cn: ConnectionWrapper, query: Any,
                            params: Any = None) -> tuple[list[str], list[tuple]]:
    """Return the column names and every row as a tuple of values.
    """
    return cn.select_raw_with_columns(query, params)


def select_dict(cn: ConnectionWrapper, query: Any, params: Any = None) -> dict[Any, Any]:
    """Map the first column of every row to its second column.
    """
    return cn.select_dict(query, params)


def select_row_map(cn: ConnectionWrapper, query: Any, params: Any = None) -> RowMap:
    """Return the first row as a case-insensitive name -> value map.
    """
    return cn.select_row_map(query, params)


def select_frame(cn: ConnectionWrapper, query: Any, params: Any = None) -> pd.DataFrame:
    """Return the rows as a pandas DataFrame.
    """
    return cn.select_frame(query, params)


def execute(cn: ConnectionWrapper, query: Any, params: Any = None) -> int:
    """Execute a command and return the affected row count.
    """
    return cn.execute(query, params)


delete = execute
insert = execute
update = execute


def execute_identity(cn: ConnectionWrapper, query: Any, params: Any = None,
                     identity_type: Any = int) -> Any:
    """Execute a command and return the identity it generated (0 when none).
    """
    return cn.execute_identity(query, params, identity_type=identity_type)


__all__ = [
    'connect',
    'ConnectionWrapper',
    'transaction',
    'transactional',
    'run_scoped',
    'current_transaction',
    'IsolationLevel',
    'DatabaseOptions',
    'sql',
    'QueryTemplate',
    'CompiledQuery',
    'compile_query',
    'Binding',
    'bind',
    'expand_bag',
    'Row',
    'RowMap',
    'materialize',
    'select_value',
    'select_entity',
    'select_entities',
    'select_column',
    'select_raw',
    'select_raw_with_columns',
    'select_dict',
    'select_row_map',
    'select_frame',
    'execute',
    'execute_identity',
    'delete',
    'insert',
    'update',
    'CompilationError',
    'ConnectionFailure',
    'DatabaseError',
    'DriverError',
    'IntegrityError',
    'OperationalError',
    'QueryError',
    'TransactionError',
    'TypeConversionError',
    'TypeMismatch',
    'ValidationError',
]
