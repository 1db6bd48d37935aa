"""
Mock connections and cursors for unit tests.

Provides:
- a stand-in for ConnectionWrapper that records how often a
  transaction was begun, for the transaction scope tests
- a sqlite connection whose commands replay scripted result sets, for
  behaviour sqlite cannot produce (several result sets, missing identities)

Usage:
    def test_nesting(mock_connection):
        cn = mock_connection()
        with transactional(cn):
            ...
        assert cn.begin_transaction.call_count == 1
"""
import pytest
from rawsql.connection import connect
from rawsql.cursor import Cursor
from rawsql.transaction import TransactionHandle
from rawsql.types import IsolationLevel


class MockConnection:
    """Connection double exposing the hooks the transaction scopes use."""

    default_isolation_level = IsolationLevel.READ_UNCOMMITTED

    def __init__(self, mocker):
        self.is_open = False
        self.open = mocker.Mock(side_effect=self._open)
        self.begin_transaction = mocker.Mock(side_effect=self._begin)
        self.transactions = []
        self._mocker = mocker

    def _open(self):
        self.is_open = True

    def _begin(self, isolation_level):
        driver_tx = self._mocker.Mock(name='driver_transaction')
        handle = TransactionHandle(self, driver_tx, isolation_level)
        self.transactions.append(handle)
        return handle


@pytest.fixture
def mock_connection(mocker):
    """Factory fixture creating MockConnection instances.
    """
    def factory():
        return MockConnection(mocker)

    return factory



class ScriptedCursor:
    """DB-API cursor double replaying one scripted response per execute.

    A response is a list of result sets; a result set is a list of
    one-column rows, or None for a statement that returns no rows.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.executed = []
        self.rowcount = -1
        self.closed = False
        self._sets = []
        self._rows = None

    @property
    def description(self):
        if self._rows is None:
            return None
        return [('value', None, None, None, None, None, None)]

    def execute(self, operation, params=None):
        self.executed.append((operation, params))
        self._sets = list(self.responses.pop(0)) if self.responses else [None]
        self.nextset()

    def nextset(self):
        if not self._sets:
            self._rows = None
            return None
        rows = self._sets.pop(0)
        self._rows = None if rows is None else list(rows)
        return True

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchmany(self, size):
        chunk, self._rows = self._rows[:size], self._rows[size:]
        return chunk

    def close(self):
        self.closed = True


@pytest.fixture
def scripted_connection(mocker):
    """Factory fixture: a sqlite connection whose commands run on a ScriptedCursor.

    Returns the connection and the scripted cursor.
    """
    connections = []

    def factory(*responses):
        cn = connect({'drivername': 'sqlite', 'database': ':memory:'})
        scripted = ScriptedCursor(*responses)

        def wrap(dbapi_cursor, wrapper):
            dbapi_cursor.close()
            return Cursor(scripted, wrapper)

        mocker.patch('rawsql.connection.Cursor', side_effect=wrap)
        connections.append(cn)
        return cn, scripted

    yield factory
    for cn in connections:
        cn.close()
