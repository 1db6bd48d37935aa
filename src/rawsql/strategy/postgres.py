"""
PostgreSQL-specific strategy implementation.

PostgreSQL runs READ UNCOMMITTED as READ COMMITTED and has no SNAPSHOT
level; SNAPSHOT maps onto REPEATABLE READ, which is snapshot isolation
there. Identity values come from ``lastval()``.
"""
import logging
from typing import TYPE_CHECKING

import sqlalchemy as sa

from rawsql.strategy.base import DatabaseStrategy, register_strategy
from rawsql.types import IsolationLevel

if TYPE_CHECKING:
    from rawsql.options import DatabaseOptions

logger = logging.getLogger(__name__)


@register_strategy('postgresql')
class PostgresStrategy(DatabaseStrategy):
    """PostgreSQL-specific operations.
    """

    isolation_levels = {
        IsolationLevel.READ_UNCOMMITTED: 'READ UNCOMMITTED',
        IsolationLevel.READ_COMMITTED: 'READ COMMITTED',
        IsolationLevel.REPEATABLE_READ: 'REPEATABLE READ',
        IsolationLevel.SERIALIZABLE: 'SERIALIZABLE',
        IsolationLevel.SNAPSHOT: 'REPEATABLE READ',
    }

    identity_query = 'select lastval()'

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for PostgreSQL."""
        return 'postgresql'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL using the psycopg driver."""
        query = {'application_name': options.appname}
        if options.timeout:
            query['connect_timeout'] = str(options.timeout)

        return sa.URL.create(
            drivername='postgresql+psycopg',
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
