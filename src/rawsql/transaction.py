"""
Ambient transactions shared by nested call sites on one connection.

The first (outermost) scope on a connection opens a transaction and records
it in a process-wide map keyed by the connection; nested scopes on the same
connection find that entry and reuse the transaction instead of opening a
second one. Only the outermost scope removes the entry, on every exit path.

Examples
    with transactional(cn) as tx:
        cn.execute('delete from ...', params)
        save_audit(cn)              # nested transactional() reuses tx
        tx.commit()

    with Transaction(cn):
        cn.execute('update ...', params)   # committed on success
"""
import logging
import threading
import weakref
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from typing import Any, TypeVar

from rawsql.exceptions import TransactionError
from rawsql.types import IsolationLevel

__all__ = [
    'AmbientTransactions',
    'IsolationLevel',
    'Transaction',
    'TransactionHandle',
    'current_transaction',
    'run_scoped',
    'transactional',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')


class TransactionHandle:
    """A driver transaction and the isolation level it was opened with.

    Owned by the outermost scope on its connection. ``commit`` and
    ``rollback`` are left to the code running inside the scope; ``close``
    rolls back whatever was not settled when the scope ends.
    """

    def __init__(self, connection: Any, transaction: Any,
                 isolation_level: IsolationLevel,
                 on_close: Callable[[Any], None] | None = None) -> None:
        self._connection = weakref.ref(connection)
        self.transaction = transaction
        self.isolation_level = isolation_level
        self._on_close = on_close
        self.committed = False
        self.rolled_back = False

    def __repr__(self) -> str:
        state = 'committed' if self.committed else 'rolled back' if self.rolled_back else 'active'
        return f'<TransactionHandle {self.isolation_level.value} {state} on {id(self.connection):#x}>'

    @property
    def connection(self) -> Any:
        """The owning connection, or None once it has been collected."""
        return self._connection()

    @property
    def is_active(self) -> bool:
        return not (self.committed or self.rolled_back)

    def commit(self) -> None:
        if not self.is_active:
            raise TransactionError(f'Cannot commit a transaction that is already {self._state}')
        self.transaction.commit()
        self.committed = True
        logger.debug(f'Committed transaction for connection {id(self.connection)}')

    def rollback(self) -> None:
        if not self.is_active:
            raise TransactionError(f'Cannot roll back a transaction that is already {self._state}')
        self.transaction.rollback()
        self.rolled_back = True
        logger.warning('Rolling back the current transaction')

    def close(self) -> None:
        """Roll back if still active, then run the close callback once.

        The callback receives the owning connection and is skipped once that
        connection has been collected. Idempotent.
        """
        try:
            if self.is_active:
                logger.debug(f'Transaction for connection {id(self.connection)} ended unsettled; rolling back')
                self.transaction.rollback()
                self.rolled_back = True
        finally:
            on_close, self._on_close = self._on_close, None
            connection = self.connection
            if on_close is not None and connection is not None:
                on_close(connection)

    @property
    def _state(self) -> str:
        return 'committed' if self.committed else 'rolled back'


class AmbientTransactions:
    """Map of connection to its active transaction handle.

    Keys are held weakly so a forgotten connection does not pin its entry.
    The lock only guards individual map operations; independent connections
    never wait on each other's transactions.
    """

    def __init__(self) -> None:
        self._entries: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, connection: Any) -> bool:
        with self._lock:
            return connection in self._entries

    def get(self, connection: Any) -> TransactionHandle | None:
        with self._lock:
            return self._entries.get(connection)

    def add(self, connection: Any, handle: TransactionHandle) -> None:
        with self._lock:
            if connection in self._entries:
                raise TransactionError(f'Connection {id(connection)} already has an active transaction')
            self._entries[connection] = handle

    def remove(self, connection: Any) -> None:
        with self._lock:
            self._entries.pop(connection, None)


ambient = AmbientTransactions()


def current_transaction(connection: Any) -> TransactionHandle | None:
    """Return the ambient transaction of a connection, if any."""
    return ambient.get(connection)


@contextmanager
def transactional(connection: Any,
                  isolation_level: IsolationLevel | str | None = None) -> Iterator[TransactionHandle]:
    """Enter a transactional scope on a connection.

    Reuses the connection's ambient transaction when there is one (the
    requested isolation level is then ignored). Otherwise opens the
    connection if needed, begins a transaction, and records it for nested
    scopes until this scope exits.
    """
    handle = ambient.get(connection)
    if handle is not None:
        logger.debug(f'Reusing transaction for connection {id(connection)}')
        yield handle
        return

    if isolation_level is None:
        isolation_level = connection.default_isolation_level
    isolation_level = IsolationLevel.parse(isolation_level)

    connection.open()
    handle = connection.begin_transaction(isolation_level)
    try:
        ambient.add(connection, handle)
    except TransactionError:
        handle.close()
        raise
    logger.debug(f'Started {isolation_level.value} transaction for connection {id(connection)}')
    try:
        yield handle
    finally:
        ambient.remove(connection)
        handle.close()
        logger.debug(f'Transaction cleanup complete for connection {id(connection)}')


def run_scoped(connection: Any, body: Callable[[TransactionHandle], T],
               isolation_level: IsolationLevel | str | None = None) -> T:
    """Run ``body(handle)`` inside a transactional scope and return its result.
    """
    with transactional(connection, isolation_level) as handle:
        return body(handle)


class Transaction:
    """Context manager for running multiple commands in a transaction.

    The outermost block commits on success and rolls back on error. Blocks
    nested inside another scope on the same connection leave the decision
    to that scope.

    Examples
        with Transaction(cn) as tx:
            cn.execute('delete from ...', params)
            cn.execute('update ...', params)
    """

    def __init__(self, cn: Any, isolation_level: IsolationLevel | str | None = None) -> None:
        self.cn = cn
        self.isolation_level = isolation_level
        self.handle: TransactionHandle | None = None
        self._stack: ExitStack | None = None
        self._outermost = False

    def __enter__(self) -> TransactionHandle:
        self._outermost = current_transaction(self.cn) is None
        self._stack = ExitStack()
        self.handle = self._stack.enter_context(transactional(self.cn, self.isolation_level))
        return self.handle

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        stack, self._stack = self._stack, None
        with stack:
            if self._outermost and self.handle.is_active:
                if exc_type is None:
                    self.handle.commit()
                else:
                    self.handle.rollback()
