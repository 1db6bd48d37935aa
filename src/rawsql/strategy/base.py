"""
Base strategy interface for dialect-specific behavior.

The strategy pattern encapsulates what differs between database drivers
(connection URLs, paramstyles, isolation levels, identity retrieval) while
the rest of rawsql works against one consistent interface.
"""
import logging
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from rawsql.types import IsolationLevel

if TYPE_CHECKING:
    from rawsql.options import DatabaseOptions
    from rawsql.template import CompiledQuery

logger = logging.getLogger(__name__)

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('postgresql')
        class PostgresStrategy(DatabaseStrategy):
            ...
    """
    def decorator(cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


class DatabaseStrategy(ABC):
    """Base class for dialect-specific operations.
    """

    #: Isolation level names accepted by the SQLAlchemy dialect
    isolation_levels: dict[IsolationLevel, str] = {}

    #: Query returning the identity generated by the last insert
    identity_query: str = ''

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g., 'postgresql', 'sqlite')."""

    @abstractmethod
    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for this dialect.

        Args:
            options: DatabaseOptions containing connection parameters
        """

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this dialect.
        """
        return {}

    def configure_connection(self, dbapi_connection: Any) -> None:
        """Apply dialect-specific settings to a freshly opened DBAPI connection.
        """

    @classmethod
    @abstractmethod
    def get_required_options(cls) -> list[str]:
        """Return list of required option field names for this dialect.
        """

    @classmethod
    def validate_options(cls, options: 'DatabaseOptions') -> None:
        """Validate options for this dialect.

        Raises
            ValueError: If any required field is None or 0
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or 0')

    def isolation_level_name(self, level: IsolationLevel | str) -> str:
        """Map an isolation level onto the closest one the dialect supports.
        """
        level = IsolationLevel.parse(level)
        try:
            return self.isolation_levels[level]
        except KeyError:
            raise ValueError(f'{self.dialect_name} does not support {level.value}') from None

    def render_query(self, compiled: 'CompiledQuery',
                     dialect: sa.engine.Dialect) -> tuple[str, dict[str, Any] | tuple]:
        """Render a compiled query into the driver's paramstyle.

        Only the ``:name`` tokens of the query's own bindings are replaced;
        casts (``::int``) and colons inside literals are left as written. For
        the ``format`` and ``pyformat`` styles literal percent signs are
        doubled. Text that references no binding is passed through untouched.

        Returns
            Tuple of driver SQL and its parameters (dict for named
            paramstyles, tuple in placeholder order for positional ones)
        """
        values = compiled.parameters
        if not values:
            return compiled.query_string, ()

        style = dialect.paramstyle
        names = '|'.join(re.escape(name) for name in sorted(values, key=len, reverse=True))
        token = rf'(?<![:\w]):(?P<name>{names})(?!\w)'
        if style in {'format', 'pyformat'}:
            token = rf'(?P<percent>%)|{token}'
        order: list[str] = []

        def substitute(match: re.Match) -> str:
            if match.group('name') is None:
                return '%%'
            name = match.group('name')
            order.append(name)
            return _placeholder(style, name, len(order))

        text = re.sub(token, substitute, compiled.query_string)
        if not order:
            return compiled.query_string, ()
        if style in _NAMED_PARAMSTYLES:
            return text, {name: values[name] for name in order}
        return text, tuple(values[name] for name in order)


_NAMED_PARAMSTYLES = {'named', 'pyformat'}


def _placeholder(style: str, name: str, position: int) -> str:
    """Placeholder text for one binding in a DBAPI paramstyle."""
    if style == 'pyformat':
        return f'%({name})s'
    if style == 'named':
        return f':{name}'
    if style == 'numeric':
        return f':{position}'
    if style == 'format':
        return '%s'
    return '?'
