"""
Unit tests for dialect strategies: registry, URLs, isolation levels and
rendering of compiled queries into driver paramstyles.
"""
import pytest
import sqlalchemy as sa
from rawsql.options import DatabaseOptions
from rawsql.params import bind
from rawsql.strategy import PostgresStrategy, SQLiteStrategy, SQLServerStrategy
from rawsql.strategy import get_available_dialects, get_strategy, get_strategy_class
from rawsql.strategy import is_supported_dialect
from rawsql.template import CompiledQuery, sql
from rawsql.types import IsolationLevel
from rawsql.utils import get_dialect_name
from sqlalchemy.dialects import mssql, postgresql, sqlite


def test_registry_contains_all_dialects():
    assert set(get_available_dialects()) >= {'sqlite', 'postgresql', 'mssql'}
    assert is_supported_dialect('sqlite')
    assert not is_supported_dialect('oracle')


def test_get_strategy_is_cached():
    assert get_strategy('sqlite') is get_strategy('sqlite')
    assert isinstance(get_strategy('postgresql'), PostgresStrategy)


def test_unknown_dialect_raises():
    with pytest.raises(ValueError, match='Unsupported dialect'):
        get_strategy('oracle')


def test_strategy_class_lookup():
    assert get_strategy_class('mssql') is SQLServerStrategy
    with pytest.raises(ValueError, match='Available'):
        get_strategy_class('oracle')


def test_dialect_name_from_engine():
    assert get_dialect_name(sa.create_engine('sqlite://')) == 'sqlite'
    with pytest.raises(AttributeError):
        get_dialect_name(object())


class TestIsolationLevels:

    @pytest.mark.parametrize(('strategy', 'level', 'expected'), [
        (SQLiteStrategy(), IsolationLevel.READ_UNCOMMITTED, 'READ UNCOMMITTED'),
        (SQLiteStrategy(), IsolationLevel.READ_COMMITTED, 'SERIALIZABLE'),
        (SQLiteStrategy(), IsolationLevel.SNAPSHOT, 'SERIALIZABLE'),
        (PostgresStrategy(), IsolationLevel.READ_COMMITTED, 'READ COMMITTED'),
        (PostgresStrategy(), IsolationLevel.SNAPSHOT, 'REPEATABLE READ'),
        (SQLServerStrategy(), IsolationLevel.SNAPSHOT, 'SNAPSHOT'),
        (SQLServerStrategy(), 'serializable', 'SERIALIZABLE'),
    ])
    def test_level_name(self, strategy, level, expected):
        assert strategy.isolation_level_name(level) == expected


class TestConnectionUrl:

    def test_sqlite(self):
        options = DatabaseOptions(drivername='sqlite', database=':memory:')
        url = SQLiteStrategy().build_connection_url(options)
        assert url.drivername == 'sqlite'
        assert url.database == ':memory:'

    def test_postgres(self):
        options = DatabaseOptions(hostname='db', username='app', password='secret',
                                  database='main', port=5433, timeout=10, appname='tests')
        url = PostgresStrategy().build_connection_url(options)
        assert url.drivername == 'postgresql+psycopg'
        assert url.host == 'db'
        assert url.port == 5433
        assert url.query['connect_timeout'] == '10'
        assert url.query['application_name'] == 'tests'

    def test_sqlserver_default_driver(self):
        options = DatabaseOptions(drivername='mssql', hostname='db', username='sa',
                                  password='secret', database='main')
        url = SQLServerStrategy().build_connection_url(options)
        assert url.drivername == 'mssql+pyodbc'
        assert url.query['driver'] == 'ODBC Driver 18 for SQL Server'


class TestRenderQuery:
    """Compiled ``:name`` text is rendered in the driver's paramstyle."""

    def test_qmark_positional(self):
        compiled = sql('select * from t where a = {0} and b in ({1}) and c = {0}',
                       1, ['x', 'y']).compile()
        text, params = SQLiteStrategy().render_query(compiled, sqlite.dialect())
        assert text == 'select * from t where a = ? and b in (?,?) and c = ?'
        assert params == (1, 'x', 'y', 1)

    def test_pyformat_named(self):
        compiled = sql('select * from t where a = {0}', 1).compile()
        text, params = PostgresStrategy().render_query(compiled, postgresql.psycopg.dialect())
        assert text == 'select * from t where a = %(p0)s'
        assert params == {'p0': 1}

    def test_pyformat_escapes_percent(self):
        compiled = sql("select * from t where name like 'a%' and id = {0}", 1).compile()
        text, _ = PostgresStrategy().render_query(compiled, postgresql.psycopg.dialect())
        assert "like 'a%%'" in text

    def test_sqlserver_qmark(self):
        compiled = sql('select {0}, {1}', 1, 'two').compile()
        text, params = SQLServerStrategy().render_query(
            compiled, mssql.pyodbc.dialect(paramstyle='qmark'))
        assert text == 'select ?, ?'
        assert params == (1, 'two')

    def test_no_bindings_passes_text_through(self):
        compiled = CompiledQuery("select '10:30', 'a%' from t")
        text, params = PostgresStrategy().render_query(compiled, postgresql.psycopg.dialect())
        assert text == "select '10:30', 'a%' from t"
        assert params == ()

    def test_cast_after_binding_keeps_parameter(self):
        compiled = sql('select {0}::int', '5').compile()
        text, params = PostgresStrategy().render_query(compiled, postgresql.psycopg.dialect())
        assert text == 'select %(p0)s::int'
        assert params == {'p0': '5'}

    def test_colon_word_in_literal_is_not_a_binding(self):
        compiled = sql("select ' :tag' as t, {0} as v", 1).compile()
        text, params = SQLiteStrategy().render_query(compiled, sqlite.dialect())
        assert text == "select ' :tag' as t, ? as v"
        assert params == (1,)

    def test_longer_names_are_not_split(self):
        compiled = CompiledQuery('select :id, :id_list',
                                 (bind('id', 1), bind('id_list', 2)))
        text, params = SQLiteStrategy().render_query(compiled, sqlite.dialect())
        assert text == 'select ?, ?'
        assert params == (1, 2)

    def test_unreferenced_bindings_pass_text_through(self):
        compiled = CompiledQuery("select 'a%' from t", (bind('unused', 1),))
        text, params = PostgresStrategy().render_query(compiled, postgresql.psycopg.dialect())
        assert text == "select 'a%' from t"
        assert params == ()

    def test_only_referenced_bindings_are_sent(self):
        compiled = CompiledQuery('select :a', (bind('a', 1), bind('b', 2)))
        _, params = PostgresStrategy().render_query(compiled, postgresql.psycopg.dialect())
        assert params == {'a': 1}
