from dataclasses import dataclass

from libb import ConfigOptions, scriptname

from rawsql.strategy import get_available_dialects, get_strategy_class
from rawsql.strategy import is_supported_dialect
from rawsql.types import IsolationLevel

__all__ = [
    'DatabaseOptions',
]


@dataclass
class DatabaseOptions(ConfigOptions):
    """Options

    supported driver names: `postgresql`, `sqlite`, `mssql`

    Transaction options:
    - isolation_level: Default level for transactional scopes (default: READ UNCOMMITTED)

    Connection pooling options:
    - use_pool: Whether to use connection pooling (default: False)
    - pool_max_connections: Maximum connections in pool (default: 5)
    - pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
    - pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)
    """
    drivername: str = 'postgresql'
    hostname: str = None
    username: str = None
    password: str = None
    database: str = None
    port: int = 0
    timeout: int = 0
    appname: str = None
    driver: str = None
    isolation_level: IsolationLevel | str = IsolationLevel.READ_UNCOMMITTED
    # Connection pooling parameters
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30

    def __post_init__(self):
        if not is_supported_dialect(self.drivername):
            available = get_available_dialects()
            raise ValueError(f'drivername must be one of: {available}')
        self.appname = self.appname or scriptname() or 'python_console'
        self.isolation_level = IsolationLevel.parse(self.isolation_level)
        strategy_cls = get_strategy_class(self.drivername)
        strategy_cls.validate_options(self)
