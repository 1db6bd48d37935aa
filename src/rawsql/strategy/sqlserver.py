"""
SQL Server-specific strategy implementation.

Connects through pyodbc (``mssql+pyodbc``), which is an optional extra. SQL
Server supports every isolation level including SNAPSHOT, and reports the
last identity of the session through ``@@IDENTITY``.
"""
import logging
from typing import TYPE_CHECKING

import sqlalchemy as sa

from rawsql.strategy.base import DatabaseStrategy, register_strategy
from rawsql.types import IsolationLevel

if TYPE_CHECKING:
    from rawsql.options import DatabaseOptions

logger = logging.getLogger(__name__)

DEFAULT_ODBC_DRIVER = 'ODBC Driver 18 for SQL Server'


@register_strategy('mssql')
class SQLServerStrategy(DatabaseStrategy):
    """SQL Server-specific operations"""

    isolation_levels = {level: level.value for level in IsolationLevel}

    identity_query = 'select @@IDENTITY'

    @property
    def dialect_name(self) -> str:
        return 'mssql'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for pyodbc."""
        query = {
            'driver': options.driver or DEFAULT_ODBC_DRIVER,
            'TrustServerCertificate': 'yes',
            'APP': options.appname,
        }
        return sa.URL.create(
            drivername='mssql+pyodbc',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port or None,
            database=options.database,
            query=query
        )

    @classmethod
    def get_required_options(cls) -> list[str]:
        return ['hostname', 'username', 'database']
