"""
Database-specific exception classes.

Driver error tuples include pyodbc's classes when the ``sqlserver`` extra is
installed.
"""
import sqlite3

import psycopg
import sqlalchemy as sa

try:
    import pyodbc
    PYODBC_AVAILABLE = True
except ImportError:
    pyodbc = None
    PYODBC_AVAILABLE = False


class DatabaseError(Exception):
    """Base class for all rawsql errors.
    """


class ConnectionFailure(DatabaseError):
    """Error establishing or maintaining database connection.
    """


class QueryError(DatabaseError):
    """Error in query construction or execution.
    """


class CompilationError(QueryError):
    """Malformed query template, e.g. a placeholder with no matching argument.
    """


class TypeConversionError(DatabaseError):
    """Error converting types between Python and database.
    """


class TypeMismatch(TypeConversionError):
    """A column value cannot be converted to the declared type of a field.
    """


class TransactionError(DatabaseError):
    """Misuse of an ambient transaction.
    """


class ValidationError(DatabaseError):
    """Error in input validation.
    """


DriverError = (
    sa.exc.DBAPIError,
    psycopg.Error,
    sqlite3.Error,
    ConnectionFailure,
    )

IntegrityError = (
    sa.exc.IntegrityError,
    psycopg.IntegrityError,
    sqlite3.IntegrityError,
    )

OperationalError = (
    sa.exc.OperationalError,
    psycopg.OperationalError,
    sqlite3.OperationalError,
    )

if PYODBC_AVAILABLE:
    DriverError += (pyodbc.Error,)
    IntegrityError += (pyodbc.IntegrityError,)
    OperationalError += (pyodbc.OperationalError,)
