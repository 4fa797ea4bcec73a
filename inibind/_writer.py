import io
import logging

from ._errors import StructuralError, SchemaError
from ._record import Record, Kind
from ._fields import default_registry
from ._coerce import format_value


__all__ = ['IniWriter', 'dump', 'dumps']

logger = logging.getLogger(__name__)

CONTINUATION_INDENT = '    '


class IniWriter:

    """Render a record tree as INI text.

    Leaf fields come first, in declaration order, followed by one section per
    nested record. An absent optional record is written as a commented-out
    section so the available keys stay visible in the output.
    """

    def __init__(self, delimiter='=', registry=None):
        self.delimiter = delimiter
        self.registry = registry or default_registry

    def render(self, record):
        if not isinstance(record, Record):
            raise StructuralError(f'configuration must be a Record instance, not {type(record).__name__}')
        buf = io.StringIO()
        self._write_record(buf, record, type(record), '', ())
        return buf.getvalue()

    def _write_record(self, buf, record, record_type, section, parents):
        # record is None inside a commented-out section
        if record is not None and any(record is p for p in parents):
            raise SchemaError(f'{record_type.__name__} record contains itself')
        fmap = self.registry.field_map(record_type)
        for bound in fmap.values():
            if bound.spec.type.kind is not Kind.RECORD:
                self._write_field(buf, record, bound)
        parents += (record_type if record is None else record,)
        for bound in fmap.values():
            if bound.spec.type.kind is Kind.RECORD:
                self._write_section(buf, record, bound, section, parents)

    def _write_field(self, buf, record, bound):
        info = bound.spec.type
        value = None if record is None else getattr(bound.owner(record), bound.spec.name)
        text = format_value(info, value)            # also rejects unsupported types in commented sections
        if record is None:
            buf.write(f'; {bound.key} {self.delimiter}\n')
            return
        first, *rest = text.split('\n')
        buf.write(f'{bound.key} {self.delimiter} {first}\n')
        for line in rest:
            buf.write(f'{CONTINUATION_INDENT}{line}\n')

    def _write_section(self, buf, record, bound, section, parents):
        spec = bound.spec
        path = f'{section}.{bound.key}' if section else bound.key
        child = None if record is None else getattr(bound.owner(record), spec.name)
        if child is None:
            if spec.type.record in parents:         # absent and recursive: one placeholder is enough
                return
            buf.write(f'\n; [{path}]\n')
        else:
            buf.write(f'\n[{path}]\n')
        self._write_record(buf, child, spec.type.record, path, parents)


def dumps(record: Record, delimiter: str = '=', registry=None) -> str:
    """Serialize ``record`` to INI text."""
    return IniWriter(delimiter, registry).render(record)


def dump(record: Record, fp, delimiter: str = '=', registry=None) -> None:
    """Serialize ``record`` to the text file object ``fp``.

    Nothing is written when the record holds a field of an unsupported type.
    """
    text = dumps(record, delimiter, registry)
    logger.debug('Writing %d characters of INI text', len(text))
    fp.write(text)
