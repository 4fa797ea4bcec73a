"""Record declarations: the ``Record`` base class and how field annotations are described."""

import copy
import enum
import types
import typing
import decimal
import pathlib
import datetime
import ipaddress
import uuid
import dataclasses
from typing import Generic, NewType, Optional, TypeVar

from ._errors import SchemaError


__all__ = [
    'Record', 'Embedded', 'ini', 'IniField', 'Kind', 'TypeInfo', 'FieldSpec',
    'declared_fields', 'describe', 'ensure_present', 'TEXT_DECODERS',
    'Int8', 'Int16', 'Int32', 'Int64', 'UInt', 'UInt8', 'UInt16', 'UInt32', 'UInt64',
    'Float32', 'Float64',
]


Int8    = NewType('Int8', int)
Int16   = NewType('Int16', int)
Int32   = NewType('Int32', int)
Int64   = NewType('Int64', int)
UInt    = NewType('UInt', int)
UInt8   = NewType('UInt8', int)
UInt16  = NewType('UInt16', int)
UInt32  = NewType('UInt32', int)
UInt64  = NewType('UInt64', int)
Float32 = NewType('Float32', float)
Float64 = NewType('Float64', float)


class Kind(enum.Enum):
    INT         = 'int'
    UINT        = 'uint'
    FLOAT       = 'float'
    BOOL        = 'bool'
    STR         = 'str'
    SEQUENCE    = 'sequence'
    RECORD      = 'record'
    EMBEDDED    = 'embedded'
    DECODED     = 'decoded'
    UNSUPPORTED = 'unsupported'


PRIMITIVES = {                      # {annotation : (kind, bits, display name)}
    int     : (Kind.INT, 64, 'int'),
    Int8    : (Kind.INT, 8, 'int8'),
    Int16   : (Kind.INT, 16, 'int16'),
    Int32   : (Kind.INT, 32, 'int32'),
    Int64   : (Kind.INT, 64, 'int64'),
    UInt    : (Kind.UINT, 64, 'uint'),
    UInt8   : (Kind.UINT, 8, 'uint8'),
    UInt16  : (Kind.UINT, 16, 'uint16'),
    UInt32  : (Kind.UINT, 32, 'uint32'),
    UInt64  : (Kind.UINT, 64, 'uint64'),
    float   : (Kind.FLOAT, 64, 'float'),
    Float32 : (Kind.FLOAT, 32, 'float32'),
    Float64 : (Kind.FLOAT, 64, 'float64'),
    bool    : (Kind.BOOL, 0, 'bool'),
    str     : (Kind.STR, 0, 'str'),
}


def _decode_decimal(text):
    try:
        return decimal.Decimal(text)
    except decimal.InvalidOperation:
        raise ValueError(f'invalid decimal literal: {text}') from None


TEXT_DECODERS = {
    decimal.Decimal          : _decode_decimal,
    datetime.date            : datetime.date.fromisoformat,
    datetime.time            : datetime.time.fromisoformat,
    datetime.datetime        : datetime.datetime.fromisoformat,
    ipaddress.IPv4Address    : ipaddress.IPv4Address,
    ipaddress.IPv6Address    : ipaddress.IPv6Address,
    uuid.UUID                : uuid.UUID,
    pathlib.Path             : pathlib.Path,
}


R = TypeVar('R')


class Embedded(Generic[R]):

    """Annotation marker: ``common: Embedded[Common]`` promotes the fields of
    ``Common`` into the enclosing record instead of binding them to a section."""


class IniField:

    __slots__ = ('tag', 'default')

    def __init__(self, tag=None, default=None):
        self.tag = tag
        self.default = default

    def __repr__(self):
        return f'ini({self.tag!r}, default={self.default!r})'


def ini(tag: Optional[str] = None, *, default: Optional[str] = None) -> typing.Any:
    """Bind a record field to an explicit dialect key and/or give it a default literal.

        port: UInt16 = ini('listen_port', default='8080')

    The default is a string in the dialect's own syntax; it is coerced like any
    other value when parsing starts.
    """
    return IniField(tag, default)


@dataclasses.dataclass(frozen=True)
class TypeInfo:
    kind: Kind
    name: str                                   # used in error messages
    bits: int = 0
    optional: bool = False
    element: Optional['TypeInfo'] = None        # sequences
    record: Optional[type] = None               # nested and embedded records
    decoder: Optional[typing.Callable] = None   # decoded types

    def zero(self):
        if self.optional:
            return None
        if self.kind in (Kind.RECORD, Kind.EMBEDDED):
            return self.record()
        if self.kind is Kind.SEQUENCE:
            return []
        return ZERO_VALUES.get(self.kind)


ZERO_VALUES = {Kind.INT: 0, Kind.UINT: 0, Kind.FLOAT: 0.0, Kind.BOOL: False, Kind.STR: ''}


@dataclasses.dataclass(frozen=True)
class FieldSpec:
    name: str                       # declared attribute name
    tag: Optional[str]
    default: Optional[str]
    type: TypeInfo
    initial: typing.Any = dataclasses.field(default=None, compare=False)    # plain class-level value

    def zero(self):
        if self.initial is not None:
            return copy.deepcopy(self.initial)
        return self.type.zero()


def _type_name(tp):
    return getattr(tp, '__name__', None) or str(tp)


def describe(tp) -> TypeInfo:
    """Describe an annotation as a :class:`TypeInfo`."""
    origin = typing.get_origin(tp)
    args = typing.get_args(tp)
    if origin is typing.Union or origin is types.UnionType:
        inner = [a for a in args if a is not type(None)]
        if len(inner) == 1 and len(args) == 2:
            info = describe(inner[0])
            if info.optional or info.kind in (Kind.EMBEDDED, Kind.UNSUPPORTED):
                return TypeInfo(Kind.UNSUPPORTED, f'Optional[{info.name}]')
            return dataclasses.replace(info, optional=True)
        return TypeInfo(Kind.UNSUPPORTED, str(tp))
    if origin is list:
        if len(args) != 1:
            return TypeInfo(Kind.UNSUPPORTED, 'list')
        element = describe(args[0])
        if element.optional or element.kind not in (Kind.INT, Kind.UINT, Kind.FLOAT, Kind.BOOL, Kind.STR, Kind.DECODED):
            return TypeInfo(Kind.UNSUPPORTED, f'list[{element.name}]')
        return TypeInfo(Kind.SEQUENCE, f'list[{element.name}]', element=element)
    if origin is Embedded:
        record = args[0] if args else None
        if not (isinstance(record, type) and issubclass(record, Record)):
            return TypeInfo(Kind.UNSUPPORTED, f'Embedded[{_type_name(record)}]')
        return TypeInfo(Kind.EMBEDDED, record.__name__, record=record)
    if origin is not None:
        return TypeInfo(Kind.UNSUPPORTED, _type_name(origin))
    if tp in PRIMITIVES:
        kind, bits, name = PRIMITIVES[tp]
        return TypeInfo(kind, name, bits=bits)
    if isinstance(tp, type) and issubclass(tp, Record):
        return TypeInfo(Kind.RECORD, tp.__name__, record=tp)
    if callable(from_text := getattr(tp, 'from_text', None)):
        return TypeInfo(Kind.DECODED, _type_name(tp), decoder=from_text)
    if tp in TEXT_DECODERS:
        return TypeInfo(Kind.DECODED, _type_name(tp), decoder=TEXT_DECODERS[tp])
    return TypeInfo(Kind.UNSUPPORTED, _type_name(tp))


def declared_fields(record_type) -> 'tuple[FieldSpec, ...]':
    """Return the fields declared on ``record_type`` (base classes first), cached per class."""
    cached = vars(record_type).get('_ini_declared')
    if cached is not None:
        return cached
    try:
        hints = typing.get_type_hints(record_type)
    except NameError as e:
        raise SchemaError(f'Unable to resolve the annotations of {record_type.__name__}: {e}') from e
    markers = {}
    initials = {}
    for klass in reversed(record_type.__mro__):
        markers.update(vars(klass).get('_ini_markers', {}))
        initials.update(vars(klass).get('_ini_initials', {}))
    fields = []
    for name, hint in hints.items():
        if name.startswith('_') or typing.get_origin(hint) is typing.ClassVar:
            continue
        marker = markers.get(name) or IniField()
        fields.append(FieldSpec(name, marker.tag, marker.default, describe(hint), initials.get(name)))
    fields = tuple(fields)
    record_type._ini_declared = fields          # write-once; recomputing gives the same tuple
    return fields


def ensure_present(owner, spec):
    """Return the record stored in ``spec``'s field, allocating it first if it is absent."""
    value = getattr(owner, spec.name)
    if value is None:
        value = spec.type.record()
        setattr(owner, spec.name, value)
    return value


class Record(types.SimpleNamespace):

    """Base class for configuration records.

    Fields are declared with class annotations. Each field starts at the zero
    value of its type (``0``, ``''``, ``False``, ``[]``, ``None`` for optional
    and decoded fields, a fresh instance for nested records) unless a plain
    class-level value or a keyword argument says otherwise.
    """

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        markers = {}
        initials = {}
        for name, value in list(vars(cls).items()):
            if isinstance(value, IniField):
                markers[name] = value
                delattr(cls, name)
            elif not name.startswith('_') and not callable(value) and not isinstance(value, (property, classmethod, staticmethod)):
                initials[name] = value
        cls._ini_markers = markers
        cls._ini_initials = initials

    def __init__(self, **kwargs):
        values = {spec.name: spec.zero() for spec in declared_fields(type(self))}
        if unknown := set(kwargs) - set(values):
            raise TypeError(f'{type(self).__name__} got unexpected fields: {", ".join(sorted(unknown))}')
        values.update(kwargs)
        super().__init__(**values)

    def __getitem__(self, key):
        return getattr(self, key)
