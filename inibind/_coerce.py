"""Value coercion: raw dialect strings to typed field values and back."""

import re
import math
import struct

from ._errors import CoercionError, UnsupportedTypeError
from ._record import Kind


__all__ = ['coerce', 'set_value', 'format_value', 'TRUE_STRINGS', 'FALSE_STRINGS']


INT_REGEX  = re.compile(r'[+-]?[0-9]+\Z')
UINT_REGEX = re.compile(r'[0-9]+\Z')
TRUE_STRINGS  = frozenset(('1', 't', 'T', 'TRUE', 'true', 'True'))
FALSE_STRINGS = frozenset(('0', 'f', 'F', 'FALSE', 'false', 'False'))


def _invalid(info, raw):
    return CoercionError(f'invalid value for field type {info.name}: {raw}', info.name, raw)


def _parse_int(info, raw):
    if not (INT_REGEX if info.kind is Kind.INT else UINT_REGEX).match(raw):
        raise _invalid(info, raw)
    value = int(raw)
    if info.kind is Kind.INT:
        limit = 1 << (info.bits - 1)
        in_range = -limit <= value < limit
    else:
        in_range = value < 1 << info.bits
    if not in_range:
        raise _invalid(info, raw)
    return value


def _parse_float(info, raw):
    if '_' in raw:
        raise _invalid(info, raw)
    try:
        value = float(raw)
    except ValueError:
        raise _invalid(info, raw) from None
    if math.isinf(value) and 'inf' not in raw.lower():       # overflow, not an explicit infinity
        raise _invalid(info, raw)
    if info.bits == 32 and math.isfinite(value):
        try:
            value = struct.unpack('f', struct.pack('f', value))[0]
        except OverflowError:
            raise _invalid(info, raw) from None
    return value


def _parse_bool(info, raw):
    if raw in TRUE_STRINGS:
        return True
    if raw in FALSE_STRINGS:
        return False
    raise _invalid(info, raw)


def _split_lines(raw):
    lines = [line.strip() for line in raw.split('\n')]
    if len(lines) > 1 and not lines[0]:         # "key =" followed by continuation lines
        lines = lines[1:]
    return lines


def coerce(info, raw):
    """Convert ``raw`` to a value of the type described by ``info`` (a TypeInfo)."""
    kind = info.kind
    if kind is Kind.DECODED:
        try:
            return info.decoder(raw)
        except ValueError as e:
            raise CoercionError(str(e), info.name, raw) from e
        except (TypeError, LookupError) as e:      # lookup-table decoders
            raise _invalid(info, raw) from e
    if kind is Kind.SEQUENCE:
        if not raw:
            return []
        return [coerce(info.element, line) for line in _split_lines(raw)]
    if kind in (Kind.INT, Kind.UINT):
        return _parse_int(info, raw)
    if kind is Kind.FLOAT:
        return _parse_float(info, raw)
    if kind is Kind.BOOL:
        return _parse_bool(info, raw)
    if kind is Kind.STR:
        return raw
    raise UnsupportedTypeError(f'unsupported field type: {info.name}', info.name, raw)


def set_value(owner, spec, raw, *, is_default=False):
    """Coerce ``raw`` and store it in ``owner``'s field described by ``spec`` (a FieldSpec).

    An absent optional field stays absent when ``raw`` is empty, unless the
    value is the field's default. The field is left untouched when coercion
    fails, so a bad sequence element never leaves a half-filled list behind.
    """
    if spec.type.optional and not raw and not is_default and getattr(owner, spec.name) is None:
        return
    setattr(owner, spec.name, coerce(spec.type, raw))


def format_value(info, value):
    """Render a field value as dialect text; the inverse of :func:`coerce`."""
    kind = info.kind
    if kind in (Kind.UNSUPPORTED, Kind.RECORD, Kind.EMBEDDED):
        raise UnsupportedTypeError(f'unsupported field type: {info.name}', info.name)
    if value is None:
        return ''
    if kind is Kind.SEQUENCE:
        return '\n'.join(format_value(info.element, v) for v in value)
    if kind is Kind.BOOL:
        return 'true' if value else 'false'
    if kind is Kind.FLOAT:
        return repr(float(value))
    if kind in (Kind.INT, Kind.UINT):
        return str(int(value))
    if kind is Kind.STR:
        return value
    to_text = getattr(value, 'to_text', None)         # decoded types
    return to_text() if callable(to_text) else str(value)
