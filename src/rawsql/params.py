"""
Parameter binding: turns loose values and parameter bags into named bindings.

A parameter bag can be:
- a mapping of names to values
- a list or tuple of pre-built Binding objects (passed through untouched)
- a dataclass instance, whose fields become bindings
- any other object with public attributes

Names always carry the bind sigil ``:`` understood by SQLAlchemy text
clauses; it is added when missing.
"""
import dataclasses
import datetime
import logging
import math
from collections.abc import Mapping
from enum import Enum
from typing import Any, NamedTuple

import numpy as np
import pandas as pd

from rawsql.exceptions import ValidationError

__all__ = [
    'PARAM_SIGIL',
    'Binding',
    'bind',
    'convert_value',
    'expand_bag',
    'param_name',
]

logger = logging.getLogger(__name__)

PARAM_SIGIL = ':'


class Binding(NamedTuple):
    """A single named value attached to a compiled query."""

    name: str
    value: Any

    @property
    def key(self) -> str:
        """Binding name without the sigil, as the driver expects it."""
        return self.name[len(PARAM_SIGIL):]


def param_name(name: str) -> str:
    """Prefix the bind sigil if missing.
    """
    if not name:
        raise ValidationError('Parameter name cannot be empty')
    return name if name.startswith(PARAM_SIGIL) else f'{PARAM_SIGIL}{name}'


def convert_value(value: Any) -> Any:
    """Normalize a value before it reaches the driver.

    Enum members become their underlying value, NumPy scalars become Python
    scalars, and float NaN, pandas NaT/NA and NumPy NaT become None (SQL NULL).
    """
    if value is None:
        return None

    if isinstance(value, Enum):
        value = value.value

    if isinstance(value, float) and math.isnan(value):
        return None

    if isinstance(value, np.datetime64):
        if np.isnat(value):
            return None
        return pd.Timestamp(value).to_pydatetime()

    if isinstance(value, np.generic):
        value = value.item()
        if isinstance(value, float) and math.isnan(value):
            return None
        return value

    if value is pd.NaT or value is pd.NA:
        return None

    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()

    return value


def bind(name: str, value: Any) -> Binding:
    """Create a binding, normalizing the name and the value.
    """
    return Binding(param_name(name), convert_value(value))


def _is_binding_sequence(bag: Any) -> bool:
    return isinstance(bag, list | tuple) and all(isinstance(b, Binding) for b in bag)


def expand_bag(bag: Any) -> list[Binding]:
    """Expand a parameter bag into bindings.
    """
    if bag is None:
        return []

    if isinstance(bag, Mapping):
        bindings = []
        for key, value in bag.items():
            if not isinstance(key, str):
                raise ValidationError(f'Parameter names must be strings, got {type(key).__name__}')
            bindings.append(bind(key, value))
        return bindings

    if _is_binding_sequence(bag):
        return list(bag)

    if isinstance(bag, str | bytes | list | tuple | set | frozenset):
        raise ValidationError(
            f'Cannot bind a {type(bag).__name__} as a parameter bag; '
            'use a mapping, an object, or a sql() template for positional values')

    if isinstance(bag, datetime.date | int | float):
        raise ValidationError(f'Cannot bind a scalar {type(bag).__name__} as a parameter bag')

    if dataclasses.is_dataclass(bag) and not isinstance(bag, type):
        return [bind(f.name, getattr(bag, f.name)) for f in dataclasses.fields(bag)]

    if not hasattr(bag, '__dict__'):
        raise ValidationError(f'Cannot read parameters from {type(bag).__name__}')

    return [bind(name, value) for name, value in vars(bag).items()
            if not name.startswith('_')]
