"""
Shared value types: transaction isolation levels and SQLite converters.
"""
import datetime
import json
from decimal import Decimal
from enum import Enum
from typing import Any

import dateutil.parser

__all__ = [
    'IsolationLevel',
    'adapt_decimal',
    'adapt_json',
    'convert_date',
    'convert_datetime',
]


class IsolationLevel(Enum):
    """Transaction isolation levels, named as in SQL.

    Each dialect strategy maps a level onto one its driver supports.
    """

    READ_UNCOMMITTED = 'READ UNCOMMITTED'
    READ_COMMITTED = 'READ COMMITTED'
    REPEATABLE_READ = 'REPEATABLE READ'
    SERIALIZABLE = 'SERIALIZABLE'
    SNAPSHOT = 'SNAPSHOT'

    @classmethod
    def parse(cls, value: 'IsolationLevel | str') -> 'IsolationLevel':
        """Accept a member, its value ('READ COMMITTED') or its name ('read_committed')."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().upper()
        for member in cls:
            if text in {member.value, member.name}:
                return member
        raise ValueError(f'Unknown isolation level: {value!r}')


def convert_date(val: bytes) -> datetime.date:
    """Convert ISO 8601 date string to date object."""
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime string to datetime object."""
    return dateutil.parser.isoparse(val.decode())


def adapt_json(val: Any) -> str:
    return json.dumps(val, default=str)


def adapt_decimal(val: Decimal) -> str:
    return str(val)
