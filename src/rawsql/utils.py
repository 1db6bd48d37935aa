"""Low-level connection utilities with no internal dependencies.

These utilities work with any database connection type (ConnectionWrapper,
SQLAlchemy connections and engines, raw DBAPI connections) and have no
imports from other rawsql modules.
"""
import logging
from typing import Any

logger = logging.getLogger(__name__)


def get_dialect_name(obj: Any) -> str:
    """Get the dialect name of an engine, SQLAlchemy connection or wrapper.
    """
    dialect = getattr(obj, 'dialect', None)
    if isinstance(dialect, str):
        return dialect.lower()
    if dialect is not None:
        return str(dialect.name).lower()
    raise AttributeError(f'Cannot determine dialect for {type(obj)}')


def rollback_quietly(connection: Any) -> None:
    """Roll back a raw DBAPI connection after a failed command.

    A failure to roll back is only logged; the command error propagates.
    """
    try:
        connection.rollback()
    except Exception as e:
        logger.debug(f'Could not roll back after failed command: {e}')
