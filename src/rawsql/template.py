"""
Query template compilation.

A template is a query string with numbered placeholders ``{0}``, ``{1}``, ...
paired with positional arguments, the shape produced by formatting an
interpolated string. Compiling a template yields a CompiledQuery: the final
query text plus the ordered bindings it references.

Each argument is classified once into an ArgumentShape:

1. SCALAR: bound as ``:p{i}``
   - Input: sql('select * from t where id = {0}', 42)
   - Output: 'select * from t where id = :p0' with p0=42

2. LITERAL_LIST: a collection of numbers or booleans, rendered inline
   - Input: sql('select * from t where id in ({0})', [1, 2, 3])
   - Output: 'select * from t where id in (1,2,3)' with no bindings

3. BOUND_LIST: any other collection, one binding per element
   - Input: sql('select * from t where name in ({0})', ['a', 'b'])
   - Output: 'select * from t where name in (:p0_0,:p0_1)'
             with p0_0='a', p0_1='b'

Empty collections render as an empty string; callers guard their IN lists.
The compiler never looks at the surrounding SQL.
"""
import logging
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

import numpy as np
from libb import isiterable

from rawsql.exceptions import CompilationError, ValidationError
from rawsql.params import Binding, bind, expand_bag

__all__ = [
    'ArgumentShape',
    'CompiledQuery',
    'QueryTemplate',
    'classify_argument',
    'compile_query',
    'compile_template',
    'from_interpolation',
    'render_literal',
    'sql',
]

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r'\{(\d+)\}')

_LITERAL_TYPES = (bool, int, float, Decimal, np.bool_, np.integer, np.floating)

_SCALAR_ITERABLES = (str, bytes, bytearray, memoryview, Mapping)


class ArgumentShape(Enum):
    """How a template argument is substituted into the query text."""

    SCALAR = 'scalar'
    LITERAL_LIST = 'literal_list'
    BOUND_LIST = 'bound_list'


@dataclass(frozen=True)
class CompiledQuery:
    """Final query text and the ordered bindings it references.
    """
    query_string: str
    bindings: tuple[Binding, ...] = ()

    @property
    def parameters(self) -> dict[str, Any]:
        """Bindings keyed by name without sigil; later duplicates win."""
        return {b.key: b.value for b in self.bindings}

    def __str__(self) -> str:
        return self.query_string


@dataclass(frozen=True)
class QueryTemplate:
    """Query text with ``{i}`` placeholders and the arguments they refer to.
    """
    format: str
    args: tuple[Any, ...] = ()

    def compile(self) -> CompiledQuery:
        return compile_template(self.format, self.args)


def sql(format: str, *args: Any) -> QueryTemplate:
    """Build a query template from text and positional arguments.

    Examples
        >>> sql('select * from t where id in ({0}) and kind = {1}', [1, 2], 'x').compile().query_string
        'select * from t where id in (1,2) and kind = :p1'
    """
    return QueryTemplate(format, tuple(args))


def from_interpolation(template: Any) -> QueryTemplate:
    """Convert a template string literal (PEP 750 ``t'...'``) to a QueryTemplate.

    Static parts are kept verbatim and every interpolation becomes the next
    numbered placeholder.
    """
    parts = []
    args = []
    strings = list(template.strings)
    interpolations = list(template.interpolations)
    for i, text in enumerate(strings):
        parts.append(text)
        if i < len(interpolations):
            parts.append(f'{{{len(args)}}}')
            args.append(interpolations[i].value)
    return QueryTemplate(''.join(parts), tuple(args))


def _is_interpolation(query: Any) -> bool:
    return hasattr(query, 'strings') and hasattr(query, 'interpolations')


def _unwrap_enum(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _is_collection(value: Any) -> bool:
    if not isiterable(value) or isinstance(value, _SCALAR_ITERABLES):
        return False
    return not (isinstance(value, np.ndarray) and value.ndim == 0)


def classify_argument(value: Any) -> ArgumentShape:
    """Classify a template argument into one of the substitution shapes.

    Single-pass iterators are consumed; pass a list or tuple to inspect one.
    """
    value = _unwrap_enum(value)
    if not _is_collection(value):
        return ArgumentShape.SCALAR
    if all(isinstance(_unwrap_enum(v), _LITERAL_TYPES) for v in value):
        return ArgumentShape.LITERAL_LIST
    return ArgumentShape.BOUND_LIST


def render_literal(value: Any) -> str:
    """Render a numeric or boolean value as locale-independent SQL text.
    """
    value = _unwrap_enum(value)
    if isinstance(value, bool | np.bool_):
        return '1' if value else '0'
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, int):
        return str(int(value))
    if isinstance(value, float):
        if not math.isfinite(value):
            raise CompilationError(f'Cannot render non-finite float {value!r} as a literal')
        return repr(value)
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise CompilationError(f'Cannot render non-finite decimal {value!r} as a literal')
        return str(value)
    raise CompilationError(f'Cannot render {type(value).__name__} as a literal')


def _substitute(i: int, value: Any, bindings: list[Binding]) -> str:
    """Return the text for placeholder ``{i}``, appending any bindings."""
    value = _unwrap_enum(value)
    if _is_collection(value):
        value = list(value)
    shape = classify_argument(value)

    if shape is ArgumentShape.SCALAR:
        binding = bind(f'p{i}', value)
        bindings.append(binding)
        return binding.name

    if shape is ArgumentShape.LITERAL_LIST:
        return ','.join(render_literal(v) for v in value)

    names = []
    for j, element in enumerate(value):
        binding = bind(f'p{i}_{j}', element)
        bindings.append(binding)
        names.append(binding.name)
    return ','.join(names)


def compile_template(format: str, args: Sequence[Any]) -> CompiledQuery:
    """Compile a template and its positional arguments into a CompiledQuery.

    Raises CompilationError when a placeholder refers to a missing argument.
    """
    args = tuple(args)
    referenced = {int(m) for m in _PLACEHOLDER.findall(format)}

    missing = sorted(i for i in referenced if i >= len(args))
    if missing:
        raise CompilationError(
            f'Placeholder {{{missing[0]}}} has no matching argument '
            f'({len(args)} argument(s) supplied)')

    query = format
    bindings: list[Binding] = []
    for i, value in enumerate(args):
        if i not in referenced:
            logger.debug(f'Argument {i} is not referenced by the template; skipping')
            continue
        query = query.replace(f'{{{i}}}', _substitute(i, value, bindings))

    logger.debug(f'Compiled template with {len(args)} argument(s) into {len(bindings)} binding(s)')
    return CompiledQuery(query, tuple(bindings))


def compile_query(query: Any, params: Any = None) -> CompiledQuery:
    """Normalize every supported call shape into a CompiledQuery.

    - CompiledQuery: returned as-is
    - QueryTemplate or template string literal: compiled
    - str: raw text plus the bindings of the parameter bag
    """
    if isinstance(query, CompiledQuery):
        if params is not None:
            raise ValidationError('Parameters cannot be combined with a compiled query')
        return query

    if isinstance(query, QueryTemplate):
        if params is not None:
            raise ValidationError('Parameters cannot be combined with a query template')
        return query.compile()

    if isinstance(query, str):
        return CompiledQuery(query, tuple(expand_bag(params)))

    if _is_interpolation(query):
        if params is not None:
            raise ValidationError('Parameters cannot be combined with a query template')
        return from_interpolation(query).compile()

    raise ValidationError(f'Unsupported query type: {type(query).__name__}')
