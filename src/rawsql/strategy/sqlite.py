"""
SQLite-specific strategy implementation.

SQLite only distinguishes dirty reads (``PRAGMA read_uncommitted``) from
serializable isolation, so the intermediate levels map onto SERIALIZABLE.
Identity values come from ``last_insert_rowid()``, which is per-connection.
"""
import logging
import sqlite3
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from rawsql.strategy.base import DatabaseStrategy, register_strategy
from rawsql.types import IsolationLevel, adapt_decimal, adapt_json
from rawsql.types import convert_date, convert_datetime

if TYPE_CHECKING:
    from rawsql.options import DatabaseOptions

logger = logging.getLogger(__name__)


@register_strategy('sqlite')
class SQLiteStrategy(DatabaseStrategy):
    """SQLite-specific operations.
    """

    isolation_levels = {
        IsolationLevel.READ_UNCOMMITTED: 'READ UNCOMMITTED',
        IsolationLevel.READ_COMMITTED: 'SERIALIZABLE',
        IsolationLevel.REPEATABLE_READ: 'SERIALIZABLE',
        IsolationLevel.SERIALIZABLE: 'SERIALIZABLE',
        IsolationLevel.SNAPSHOT: 'SERIALIZABLE',
    }

    identity_query = 'select last_insert_rowid()'

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for SQLite."""
        return sa.URL.create(drivername='sqlite', database=options.database)

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite."""
        return {
            'connect_args': {
                'detect_types': sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES
            }
        }

    def configure_connection(self, dbapi_connection: Any) -> None:
        """Register adapters and converters for SQLite.

        Adapters let dict/list payloads bind as JSON text and Decimal values
        bind as exact text; converters parse DATE/DATETIME columns.
        """
        sqlite3.register_adapter(dict, adapt_json)
        sqlite3.register_adapter(list, adapt_json)
        sqlite3.register_adapter(Decimal, adapt_decimal)

        sqlite3.register_converter('date', convert_date)
        sqlite3.register_converter('datetime', convert_datetime)
        logger.debug('Registered SQLite adapters and converters')

    @classmethod
    def get_required_options(cls) -> list[str]:
        """SQLite only needs a database path."""
        return ['database']
