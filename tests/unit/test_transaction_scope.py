"""Tests for ambient transaction scopes, without a database.
"""
import gc
import threading

import pytest
from rawsql.exceptions import TransactionError
from rawsql.transaction import AmbientTransactions, Transaction, TransactionHandle
from rawsql.transaction import ambient, current_transaction, run_scoped
from rawsql.transaction import transactional
from rawsql.types import IsolationLevel


def test_nested_scopes_begin_once(mock_connection):
    cn = mock_connection()
    with transactional(cn) as outer:
        with transactional(cn) as inner:
            assert inner is outer
    assert cn.begin_transaction.call_count == 1


def test_nested_scope_does_not_change_map(mock_connection):
    cn = mock_connection()
    with transactional(cn):
        before = len(ambient)
        with transactional(cn):
            assert len(ambient) == before
        assert current_transaction(cn) is not None
    assert current_transaction(cn) is None


def test_outermost_exit_removes_entry_on_error(mock_connection):
    cn = mock_connection()
    with pytest.raises(RuntimeError), transactional(cn):
        raise RuntimeError('boom')
    assert current_transaction(cn) is None


@pytest.mark.parametrize('interrupt', [KeyboardInterrupt, SystemExit])
def test_outermost_exit_removes_entry_on_interrupt(mock_connection, interrupt):
    cn = mock_connection()
    with pytest.raises(interrupt), transactional(cn):
        raise interrupt()
    assert current_transaction(cn) is None
    assert cn.transactions[0].rolled_back


def test_transaction_block_rolls_back_on_interrupt(mock_connection):
    cn = mock_connection()
    with pytest.raises(KeyboardInterrupt), Transaction(cn) as tx:
        raise KeyboardInterrupt
    assert tx.rolled_back
    assert current_transaction(cn) is None


def test_scope_opens_connection(mock_connection):
    cn = mock_connection()
    with transactional(cn):
        assert cn.is_open
    cn.open.assert_called_once_with()


def test_default_isolation_level(mock_connection):
    cn = mock_connection()
    with transactional(cn) as tx:
        assert tx.isolation_level is IsolationLevel.READ_UNCOMMITTED
    cn.begin_transaction.assert_called_once_with(IsolationLevel.READ_UNCOMMITTED)


@pytest.mark.parametrize(('requested', 'expected'), [
    (IsolationLevel.SERIALIZABLE, IsolationLevel.SERIALIZABLE),
    ('read committed', IsolationLevel.READ_COMMITTED),
    ('REPEATABLE_READ', IsolationLevel.REPEATABLE_READ),
])
def test_requested_isolation_level(mock_connection, requested, expected):
    cn = mock_connection()
    with transactional(cn, requested) as tx:
        assert tx.isolation_level is expected


def test_nested_scope_ignores_isolation_level(mock_connection):
    cn = mock_connection()
    with transactional(cn, IsolationLevel.SERIALIZABLE), \
         transactional(cn, IsolationLevel.READ_COMMITTED) as inner:
        assert inner.isolation_level is IsolationLevel.SERIALIZABLE


def test_unsettled_transaction_rolled_back_on_exit(mock_connection):
    cn = mock_connection()
    with transactional(cn) as tx:
        pass
    assert tx.rolled_back
    tx.transaction.rollback.assert_called_once_with()


def test_committed_transaction_not_rolled_back(mock_connection):
    cn = mock_connection()
    with transactional(cn) as tx:
        tx.commit()
    tx.transaction.commit.assert_called_once_with()
    tx.transaction.rollback.assert_not_called()


def test_independent_connections_get_separate_handles(mock_connection):
    first, second = mock_connection(), mock_connection()
    with transactional(first) as a, transactional(second) as b:
        assert a is not b
        assert current_transaction(first) is a
        assert current_transaction(second) is b


def test_run_scoped_returns_body_result(mock_connection):
    cn = mock_connection()
    def body(tx):
        return run_scoped(cn, lambda inner: inner is tx)

    assert run_scoped(cn, body) is True
    assert cn.begin_transaction.call_count == 1
    assert current_transaction(cn) is None


class TestTransaction:
    """The with-block form settles the transaction itself."""

    def test_commits_on_success(self, mock_connection):
        cn = mock_connection()
        with Transaction(cn) as tx:
            pass
        assert tx.committed

    def test_rolls_back_on_error(self, mock_connection):
        cn = mock_connection()
        with pytest.raises(ValueError), Transaction(cn) as tx:
            raise ValueError('fail')
        assert tx.rolled_back
        tx.transaction.commit.assert_not_called()

    def test_nested_block_does_not_settle(self, mock_connection):
        cn = mock_connection()
        with Transaction(cn) as outer:
            with Transaction(cn) as inner:
                assert inner is outer
            assert outer.is_active
        assert outer.committed
        assert cn.begin_transaction.call_count == 1

    def test_explicit_commit_inside_block(self, mock_connection):
        cn = mock_connection()
        with Transaction(cn) as tx:
            tx.commit()
        tx.transaction.commit.assert_called_once_with()


class TestTransactionHandle:

    def test_double_commit_raises(self, mocker):
        handle = TransactionHandle(mocker.Mock(), mocker.Mock(), IsolationLevel.SERIALIZABLE)
        handle.commit()
        with pytest.raises(TransactionError):
            handle.commit()

    def test_rollback_after_commit_raises(self, mocker):
        handle = TransactionHandle(mocker.Mock(), mocker.Mock(), IsolationLevel.SERIALIZABLE)
        handle.commit()
        with pytest.raises(TransactionError):
            handle.rollback()

    def test_close_is_idempotent(self, mocker):
        driver_tx = mocker.Mock()
        handle = TransactionHandle(mocker.Mock(), driver_tx, IsolationLevel.SERIALIZABLE)
        handle.close()
        handle.close()
        driver_tx.rollback.assert_called_once_with()

    def test_close_callback_runs_once_with_connection(self, mocker):
        cn = mocker.Mock()
        on_close = mocker.Mock()
        handle = TransactionHandle(cn, mocker.Mock(), IsolationLevel.SERIALIZABLE, on_close=on_close)
        handle.commit()
        handle.close()
        handle.close()
        on_close.assert_called_once_with(cn)

    def test_close_callback_runs_when_rollback_fails(self, mocker):
        cn = mocker.Mock()
        on_close = mocker.Mock()
        driver_tx = mocker.Mock()
        driver_tx.rollback.side_effect = RuntimeError('lost connection')
        handle = TransactionHandle(cn, driver_tx, IsolationLevel.SERIALIZABLE, on_close=on_close)
        with pytest.raises(RuntimeError):
            handle.close()
        on_close.assert_called_once_with(cn)


class TestAmbientTransactions:

    def test_add_twice_raises(self, mocker):
        store = AmbientTransactions()
        cn = mocker.Mock()
        store.add(cn, mocker.Mock())
        with pytest.raises(TransactionError):
            store.add(cn, mocker.Mock())

    def test_entries_are_weak(self, mocker):
        class Key:
            pass

        store = AmbientTransactions()
        cn = Key()
        store.add(cn, mocker.Mock())
        assert len(store) == 1
        del cn
        gc.collect()
        assert len(store) == 0

    def test_threads_on_separate_connections(self, mock_connection):
        results = {}
        barrier = threading.Barrier(4)

        def worker(i):
            cn = mock_connection()
            with transactional(cn) as tx:
                barrier.wait(timeout=5)
                results[i] = current_transaction(cn) is tx
            results[f'{i}-after'] = current_transaction(cn) is None

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(results.values())
        assert len(results) == 8
