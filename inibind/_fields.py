"""Field resolution: effective keys, the field-map cache and section/key lookup."""

import logging
import threading
import collections.abc

from ._errors import (
    StructuralError, SchemaError, UnknownKeyError, UnknownSectionError, NotASectionError,
)
from ._record import Record, Kind, declared_fields, ensure_present


__all__ = [
    'FieldRegistry', 'FieldMap', 'BoundField', 'default_registry',
    'pascal_to_snake', 'snake_to_pascal', 'resolve_key', 'resolve_section', 'resolve_section_type',
]

logger = logging.getLogger(__name__)


def snake_to_pascal(name):
    """``max_conns`` -> ``MaxConns``"""
    parts = []
    upper_next = True
    for ch in name:
        if ch == '_':
            upper_next = True
            continue
        parts.append(ch.upper() if upper_next else ch)
        upper_next = False
    return ''.join(parts)


def pascal_to_snake(name):
    """``MaxConns`` -> ``max_conns``; names that are already snake_case are unchanged."""
    parts = []
    for i, ch in enumerate(name):
        if ch.isupper():
            if i > 0 and name[i-1] != '_':
                parts.append('_')
            parts.append(ch.lower())
        else:
            parts.append(ch)
    return ''.join(parts)


class BoundField:

    """A field reachable under an effective key, possibly through embedded records."""

    __slots__ = ('key', 'spec', 'via')

    def __init__(self, key, spec, via=()):
        self.key = key
        self.spec = spec
        self.via = via                  # attribute names of the embedded records holding the field

    def owner(self, record):
        for name in self.via:
            record = getattr(record, name)
        return record

    def __repr__(self):
        return f'BoundField({self.key!r}, {self.spec.name!r}, via={self.via!r})'


class FieldMap(collections.abc.Mapping):

    """Immutable, ordered ``{effective key : BoundField}`` for one record type."""

    def __init__(self, record_type, bound_fields):
        self.record_type = record_type
        self._fields = {b.key: b for b in bound_fields}
        self._folded = {b.key.lower(): b for b in bound_fields}
        self._names = {}                # declared names of untagged fields only
        for b in bound_fields:
            if b.spec.tag:
                continue
            self._names.setdefault(b.spec.name, b)
            self._names.setdefault(b.spec.name.lower(), b)

    def __getitem__(self, key):
        return self._fields[key]

    def __iter__(self):
        return iter(self._fields)

    def __len__(self):
        return len(self._fields)

    def lookup(self, key):
        """Find a field by key: exact, case-insensitive, then by the declared name of an untagged field."""
        if (bound := self._fields.get(key)) is not None:
            return bound
        if (bound := self._folded.get(key.lower())) is not None:
            return bound
        if (bound := self._names.get(snake_to_pascal(key))) is not None:
            return bound
        return self._names.get(key.lower())

    def __repr__(self):
        return f'FieldMap({self.record_type.__name__}, {list(self._fields)})'


class FieldRegistry:

    """Memoized field maps, keyed by record type.

    Entries are built outside the lock and published with insert-if-absent, so
    concurrent first use of a type from several threads is safe and every
    caller sees the same published map.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._maps = {}                 # {record type : FieldMap}
        self._has_defaults = {}         # {record type : bool}

    def field_map(self, record_type) -> FieldMap:
        if not (isinstance(record_type, type) and issubclass(record_type, Record)):
            raise StructuralError(f'configuration must be a Record, not {record_type!r}')
        if (fmap := self._maps.get(record_type)) is not None:
            return fmap
        fmap = self._build(record_type, ())
        with self._lock:
            return self._maps.setdefault(record_type, fmap)

    def _build(self, record_type, embedding):
        if record_type in embedding:
            raise SchemaError(f'{record_type.__name__} embeds itself')
        bound_fields = []
        for spec in declared_fields(record_type):
            if spec.type.kind is Kind.EMBEDDED:
                if spec.tag:
                    raise SchemaError(
                        f"Embedded record '{spec.name}' in {record_type.__name__} cannot have an explicit tag '{spec.tag}'"
                    )
                inner = self._maps.get(spec.type.record)
                if inner is None:
                    inner = self._build(spec.type.record, embedding + (record_type,))
                bound_fields.extend(BoundField(b.key, b.spec, (spec.name,) + b.via) for b in inner.values())
            else:
                bound_fields.append(BoundField(spec.tag or pascal_to_snake(spec.name), spec))
        seen = set()
        for bound in bound_fields:
            folded = bound.key.lower()
            if folded in seen:
                raise SchemaError(f"duplicate tag name '{bound.key}' in record {record_type.__name__}")
            seen.add(folded)
        logger.debug('Built field map for %s: %s', record_type.__name__, [b.key for b in bound_fields])
        return FieldMap(record_type, bound_fields)

    def has_defaults(self, record_type):
        """Whether any field inside ``record_type``, at any depth, carries a default literal."""
        if (known := self._has_defaults.get(record_type)) is not None:
            return known
        result = False
        pending = [record_type]
        seen = {record_type}
        while pending and not result:
            for bound in self.field_map(pending.pop()).values():
                spec = bound.spec
                if spec.default is not None:
                    result = True
                    break
                if spec.type.kind is Kind.RECORD and spec.type.record not in seen:
                    seen.add(spec.type.record)
                    pending.append(spec.type.record)
        with self._lock:
            return self._has_defaults.setdefault(record_type, result)

    def resolve_key(self, record_type, key) -> BoundField:
        if (bound := self.field_map(record_type).lookup(key)) is None:
            raise UnknownKeyError(f"no matching field found for key '{key}'")
        return bound

    def _section_field(self, record_type, part, section):
        bound = self.field_map(record_type).lookup(part)
        if bound is None:
            raise UnknownSectionError(f"no matching field found for section '{section}'")
        if bound.spec.type.kind is not Kind.RECORD:
            raise NotASectionError(f"field for section '{section}' is not a record")
        return bound

    def resolve_section_type(self, record_type, segments):
        """Walk a section path on types only; nothing is allocated."""
        section = '.'.join(segments)
        for part in segments:
            record_type = self._section_field(record_type, part, section).spec.type.record
        return record_type

    def resolve_section(self, record, segments):
        """Walk a section path on ``record``, allocating absent optional records on the way."""
        section = '.'.join(segments)
        for part in segments:
            bound = self._section_field(type(record), part, section)
            record = ensure_present(bound.owner(record), bound.spec)
        return record

    def find_section(self, record, segments):
        """Walk a section path on ``record`` without allocating; None when a record on the way is absent."""
        section = '.'.join(segments)
        for part in segments:
            bound = self._section_field(type(record), part, section)
            record = getattr(bound.owner(record), bound.spec.name)
            if record is None:
                return None
        return record


default_registry = FieldRegistry()


def resolve_key(record_type, key, registry=None):
    return (registry or default_registry).resolve_key(record_type, key)


def resolve_section(record, segments, registry=None):
    return (registry or default_registry).resolve_section(record, segments)


def resolve_section_type(record_type, segments, registry=None):
    return (registry or default_registry).resolve_section_type(record_type, segments)
