"""
Dialect strategies, looked up by dialect name.

Concrete strategies register themselves on import through
``register_strategy``; a strategy instance is shared per dialect.
"""
from functools import lru_cache

from rawsql.strategy.base import _STRATEGY_REGISTRY
from rawsql.strategy.base import DatabaseStrategy as DatabaseStrategy
from rawsql.strategy.base import register_strategy as register_strategy
from rawsql.strategy.postgres import PostgresStrategy as PostgresStrategy
from rawsql.strategy.sqlite import SQLiteStrategy as SQLiteStrategy
from rawsql.strategy.sqlserver import SQLServerStrategy as SQLServerStrategy


def get_strategy_class(dialect: str) -> type[DatabaseStrategy]:
    """Return the registered strategy class of a dialect.

    Raises ValueError for a dialect with no registered strategy.
    """
    try:
        return _STRATEGY_REGISTRY[dialect]
    except KeyError:
        available = get_available_dialects()
        raise ValueError(f'Unsupported dialect: {dialect}. Available: {available}') from None


@lru_cache(maxsize=8)
def get_strategy(dialect: str) -> DatabaseStrategy:
    """Return the shared strategy instance of a dialect."""
    return get_strategy_class(dialect)()


def get_available_dialects() -> list[str]:
    """Return list of registered dialect names."""
    return list(_STRATEGY_REGISTRY.keys())


def is_supported_dialect(dialect: str) -> bool:
    return dialect in _STRATEGY_REGISTRY
