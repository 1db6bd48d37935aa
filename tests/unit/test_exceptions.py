"""Tests for the driver error groupings.
"""
import sqlite3

import psycopg
import pytest
from rawsql.exceptions import DriverError, IntegrityError, OperationalError


def test_driver_errors_cover_bundled_drivers():
    assert issubclass(sqlite3.OperationalError, DriverError)
    assert issubclass(psycopg.errors.UniqueViolation, IntegrityError)
    assert issubclass(sqlite3.OperationalError, OperationalError)


def test_driver_errors_cover_pyodbc():
    pyodbc = pytest.importorskip('pyodbc')
    assert pyodbc.Error in DriverError
    assert issubclass(pyodbc.ProgrammingError, DriverError)
    assert pyodbc.IntegrityError in IntegrityError
    assert pyodbc.OperationalError in OperationalError
