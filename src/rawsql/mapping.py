"""
Materialization of result rows onto typed records.

Columns are matched to fields by case-insensitive name. Each target type is
described once by a FieldTable (cached), so per-row work is a dictionary
lookup and a coercion.

Coercion rules, in order:
1. NULL (None) leaves the field at its default
2. Enum fields accept member names as text, case-insensitively; unknown
   names leave the field at its default
3. Structured fields (dataclasses, dict/list/tuple/set types) accept JSON
   text starting with '{' or '['
4. Everything else is assigned with implicit conversion, raising
   TypeMismatch when the value cannot be converted
"""
import dataclasses
import datetime
import json
import logging
import types
import typing
import uuid
from collections.abc import Iterator, Mapping, Sequence
from decimal import Decimal
from enum import Enum
from typing import Any, NamedTuple, TypeVar

import dateutil.parser
from libb import attrdict

from rawsql.cache import cacheable_by_type
from rawsql.exceptions import TypeMismatch, ValidationError

__all__ = [
    'FieldDescriptor',
    'FieldKind',
    'FieldTable',
    'Row',
    'RowMap',
    'coerce_value',
    'materialize',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')

_STRUCTURED_ORIGINS = (dict, list, tuple, set, frozenset, Mapping, Sequence)


class RowMap(attrdict):
    """Attribute dictionary of column name to value with case-insensitive keys.

    Keys keep the casing reported by the driver. Setting a key that differs
    only in case from an existing one replaces it.
    """

    def __init__(self, items: typing.Iterable[tuple[str, Any]] = ()) -> None:
        super().__init__()
        self.update(items)

    def _resolve(self, key: Any) -> Any:
        if not isinstance(key, str) or dict.__contains__(self, key):
            return key
        lowered = key.lower()
        for existing in dict.keys(self):
            if isinstance(existing, str) and existing.lower() == lowered:
                return existing
        return key

    def __setitem__(self, key: str, value: Any) -> None:
        resolved = self._resolve(key)
        if resolved != key:
            dict.__delitem__(self, resolved)
        dict.__setitem__(self, key, value)

    def __getitem__(self, key: str) -> Any:
        return dict.__getitem__(self, self._resolve(key))

    def __delitem__(self, key: str) -> None:
        dict.__delitem__(self, self._resolve(key))

    def __contains__(self, key: object) -> bool:
        return dict.__contains__(self, self._resolve(key))

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None

    def get(self, key: str, default: Any = None) -> Any:
        return self[key] if key in self else default

    def pop(self, key: str, *default: Any) -> Any:
        return dict.pop(self, self._resolve(key), *default)

    def setdefault(self, key: str, default: Any = None) -> Any:
        if key not in self:
            self[key] = default
        return self[key]

    def update(self, *args: Any, **kwargs: Any) -> None:
        for key, value in dict(*args, **kwargs).items():
            self[key] = value

    def copy(self) -> 'RowMap':
        return RowMap(self.items())


class Row:
    """A single result row: ordered column names and their values.
    """

    __slots__ = ('columns', 'values')

    def __init__(self, columns: Sequence[str], values: Sequence[Any]) -> None:
        if len(columns) != len(values):
            raise ValidationError(f'Row has {len(columns)} columns but {len(values)} values')
        self.columns = tuple(columns)
        self.values = tuple(values)

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.values)

    def __getitem__(self, key: int | str) -> Any:
        if isinstance(key, str):
            lowered = key.lower()
            for name, value in zip(self.columns, self.values):
                if name.lower() == lowered:
                    return value
            raise KeyError(key)
        return self.values[key]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Row):
            return NotImplemented
        return self.columns == other.columns and self.values == other.values

    def __repr__(self) -> str:
        pairs = ', '.join(f'{c}={v!r}' for c, v in zip(self.columns, self.values))
        return f'Row({pairs})'

    def as_map(self) -> RowMap:
        """Return the row as a case-insensitive name to value mapping."""
        return RowMap(zip(self.columns, self.values))


class FieldKind(Enum):
    """Which coercion rule applies to a field."""

    PLAIN = 'plain'
    ENUM = 'enum'
    STRUCTURED = 'structured'


class FieldDescriptor(NamedTuple):
    """Name, declared type and coercion kind of one settable field."""

    name: str
    annotation: Any
    kind: FieldKind
    init: bool = True


def _unwrap_optional(annotation: Any) -> Any:
    """Strip ``None`` from ``X | None`` / ``Optional[X]``."""
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        arms = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(arms) == 1:
            return arms[0]
    return annotation


def _field_kind(annotation: Any) -> FieldKind:
    if isinstance(annotation, type) and issubclass(annotation, Enum):
        return FieldKind.ENUM
    if isinstance(annotation, type) and dataclasses.is_dataclass(annotation):
        return FieldKind.STRUCTURED
    origin = typing.get_origin(annotation) or annotation
    if origin is typing.Union or origin is types.UnionType:
        arms = [a for a in typing.get_args(annotation) if a is not type(None)]
        if arms and all(_field_kind(a) is FieldKind.STRUCTURED for a in arms):
            return FieldKind.STRUCTURED
        return FieldKind.PLAIN
    if isinstance(origin, type) and origin not in {str, bytes, bytearray} \
       and issubclass(origin, _STRUCTURED_ORIGINS):
        return FieldKind.STRUCTURED
    return FieldKind.PLAIN


def _type_hints(target: type) -> dict[str, Any]:
    try:
        return typing.get_type_hints(target)
    except Exception as e:
        logger.debug(f'Could not resolve type hints for {target.__qualname__}: {e}')
        return dict(getattr(target, '__annotations__', {}))


class FieldTable:
    """Descriptor table for one materialization target type.
    """

    def __init__(self, target: type, fields: Sequence[FieldDescriptor]) -> None:
        self.target = target
        self.fields = tuple(fields)
        self._index = {f.name.lower(): f for f in self.fields}

    def __len__(self) -> int:
        return len(self.fields)

    def lookup(self, column: str) -> FieldDescriptor | None:
        """Find the field matching a column name, ignoring case."""
        return self._index.get(column.lower())

    @property
    def is_dataclass(self) -> bool:
        return dataclasses.is_dataclass(self.target)

    @classmethod
    def for_type(cls, target: type) -> 'FieldTable':
        """Return the descriptor table of a target type, built once per type.

        Dataclasses are described by their fields. Other classes by their
        public annotated attributes, or, lacking annotations, by the public
        attributes a zero-argument instance carries.
        """
        if not isinstance(target, type):
            raise ValidationError(f'Materialization target must be a class, got {target!r}')
        return cls._describe(target)

    @classmethod
    @cacheable_by_type('field_tables')
    def _describe(cls, target: type) -> 'FieldTable':
        hints = _type_hints(target)

        if dataclasses.is_dataclass(target):
            fields = []
            for f in dataclasses.fields(target):
                annotation = _unwrap_optional(hints.get(f.name, Any))
                fields.append(FieldDescriptor(f.name, annotation, _field_kind(annotation), f.init))
            return cls(target, fields)

        names = [n for n, h in hints.items()
                 if not n.startswith('_') and typing.get_origin(h) is not typing.ClassVar]
        if not names:
            names = [n for n in vars(_instantiate(target)) if not n.startswith('_')]

        fields = []
        for name in names:
            annotation = _unwrap_optional(hints.get(name, Any))
            fields.append(FieldDescriptor(name, annotation, _field_kind(annotation)))
        return cls(target, fields)


def _instantiate(target: type[T]) -> T:
    try:
        return target()
    except TypeError as e:
        raise ValidationError(
            f'{target.__qualname__} must be constructible without arguments: {e}') from e


def _mismatch(value: Any, annotation: Any, name: str | None = None) -> TypeMismatch:
    where = f' to field {name!r}' if name else ''
    return TypeMismatch(f'Cannot assign {type(value).__name__} value {value!r}{where} '
                        f'of type {getattr(annotation, "__name__", annotation)}')


def _parse_enum(enum_type: type[Enum], text: str) -> Enum | None:
    lowered = text.strip().lower()
    for name, member in enum_type.__members__.items():
        if name.lower() == lowered:
            return member
    return None


def _convert(value: Any, annotation: Any) -> Any:
    """Implicit conversion of a driver value to a declared type.

    Raises TypeMismatch when no conversion applies.
    """
    if annotation is Any or annotation is object or annotation is None:
        return value

    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        arms = [a for a in typing.get_args(annotation) if a is not type(None)]
        for arm in arms:
            check = typing.get_origin(arm) or arm
            if isinstance(check, type) and isinstance(value, check):
                return value
        for arm in arms:
            try:
                return _convert(value, arm)
            except TypeMismatch:
                continue
        raise _mismatch(value, annotation)

    check = origin or annotation
    if not isinstance(check, type):
        return value

    if check is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in {0, 1}:
            return bool(value)
        raise _mismatch(value, annotation)

    if check is int and isinstance(value, Decimal) and value == value.to_integral_value():
        return int(value)

    if check is datetime.date and isinstance(value, datetime.datetime):
        return value.date()

    if isinstance(value, check):
        return value

    if check is float and isinstance(value, int | Decimal) and not isinstance(value, bool):
        return float(value)

    if check is Decimal and isinstance(value, int | float) and not isinstance(value, bool):
        return Decimal(str(value))

    if check is datetime.datetime and isinstance(value, str):
        return _parse_temporal(value, annotation)

    if check is datetime.date and isinstance(value, str):
        return _parse_temporal(value, annotation).date()

    if check is datetime.time and isinstance(value, str):
        try:
            return datetime.time.fromisoformat(value)
        except ValueError as e:
            raise _mismatch(value, annotation) from e

    if check is uuid.UUID:
        try:
            if isinstance(value, str):
                return uuid.UUID(value)
            if isinstance(value, bytes) and len(value) == 16:
                return uuid.UUID(bytes=value)
        except ValueError as e:
            raise _mismatch(value, annotation) from e

    if check is bytes and isinstance(value, bytearray | memoryview):
        return bytes(value)

    if issubclass(check, Enum):
        try:
            return check(value)
        except ValueError as e:
            raise _mismatch(value, annotation) from e

    raise _mismatch(value, annotation)


def _parse_temporal(value: str, annotation: Any) -> datetime.datetime:
    try:
        return dateutil.parser.isoparse(value)
    except ValueError as e:
        raise _mismatch(value, annotation) from e


def _structure(value: Any, annotation: Any) -> Any:
    """Build a structured value from decoded JSON."""
    if isinstance(annotation, type) and dataclasses.is_dataclass(annotation):
        if not isinstance(value, Mapping):
            raise _mismatch(value, annotation)
        return _build(annotation, list(value.keys()), list(value.values()))

    origin = typing.get_origin(annotation) or annotation
    args = typing.get_args(annotation)
    if origin is typing.Union or origin is types.UnionType:
        for arm in args:
            if arm is type(None):
                continue
            try:
                return _structure(value, arm)
            except TypeMismatch:
                continue
        raise _mismatch(value, annotation)
    if origin in {list, tuple, set, frozenset} and isinstance(value, list):
        item = _unwrap_optional(args[0]) if args else Any
        if isinstance(item, type) and dataclasses.is_dataclass(item):
            value = [_structure(v, item) for v in value]
        return origin(value)
    return _convert(value, annotation)


def coerce_value(field: FieldDescriptor, value: Any) -> Any:
    """Convert a column value for a field.

    Returns the converted value, or raises TypeMismatch. Callers handle
    NULL and unparsable enum text before reaching the plain conversion.
    """
    if field.kind is FieldKind.STRUCTURED:
        if isinstance(value, str) and value[:1] in {'{', '['}:
            try:
                decoded = json.loads(value)
            except json.JSONDecodeError as e:
                raise TypeMismatch(f'Invalid JSON for field {field.name!r}: {e}') from e
            return _structure(decoded, field.annotation)
        if isinstance(value, Mapping | list):
            return _structure(value, field.annotation)

    try:
        return _convert(value, field.annotation)
    except TypeMismatch as e:
        raise _mismatch(value, field.annotation, field.name) from e.__cause__


def _column_values(table: FieldTable, columns: Sequence[str],
                   values: Sequence[Any]) -> dict[str, Any]:
    """Resolve the converted value of each matched field."""
    resolved: dict[str, Any] = {}
    for column, value in zip(columns, values):
        field = table.lookup(column)
        if field is None or value is None:
            continue
        if field.kind is FieldKind.ENUM and isinstance(value, str):
            member = _parse_enum(field.annotation, value)
            if member is None:
                logger.debug(f'Ignoring unknown {field.annotation.__name__} name {value!r} '
                             f'for field {field.name!r}')
                continue
            resolved[field.name] = member
            continue
        resolved[field.name] = coerce_value(field, value)
    return resolved


def _build(target: type[T], columns: Sequence[str], values: Sequence[Any]) -> T:
    table = FieldTable.for_type(target)
    resolved = _column_values(table, columns, values)

    if table.is_dataclass:
        init_names = {f.name for f in table.fields if f.init}
        kwargs = {k: v for k, v in resolved.items() if k in init_names}
        try:
            instance = target(**kwargs)
        except TypeError as e:
            raise ValidationError(f'Cannot build {target.__qualname__} from row: {e}') from e
        for name, value in resolved.items():
            if name not in init_names:
                object.__setattr__(instance, name, value)
        return instance

    instance = _instantiate(target)
    for name, value in resolved.items():
        setattr(instance, name, value)
    return instance


def materialize(target: type[T], row: Row | Mapping[str, Any]) -> T:
    """Populate a new instance of ``target`` from a result row.

    Examples
        >>> from dataclasses import dataclass
        >>> @dataclass
        ... class User:
        ...     id: int = 0
        ...     name: str = ''
        >>> materialize(User, Row(['ID', 'Name'], [7, 'ada']))
        User(id=7, name='ada')
    """
    if isinstance(row, Row):
        return _build(target, row.columns, row.values)
    return _build(target, list(row.keys()), list(row.values()))
