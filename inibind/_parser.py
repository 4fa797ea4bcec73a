#!/usr/bin/env python3

import os
import re
import logging
import pathlib
from typing import Union

from ._errors import (
    IniError, StructuralError, CoercionError, ResolutionError,
    MalformedLineError, InvalidKeyError, InvalidSectionError, EncodingError,
    IncludeError, CircularIncludeError, IncludeDepthError,
)
from ._record import Record, Kind, ensure_present
from ._fields import default_registry
from ._coerce import coerce, set_value


__all__ = ['parse', 'load', 'loads', 'apply_defaults', 'expand_env', 'ParseContext', 'IniLexer', 'MAX_INCLUDE_DEPTH']

logger = logging.getLogger(__name__)

MAX_INCLUDE_DEPTH = 10
INCLUDE_REGEX = re.compile(r'!include(?:\s+(.*))?\Z')
KEY_REGEX     = re.compile(r'\w+\Z')
SECTION_REGEX = re.compile(r'\w+(?:\.\w+)*\Z')
ENV_REGEX     = re.compile(r'\$(?:\{(\w+)\}|(\w+))', re.ASCII)


def expand_env(value, environ=None):
    """Replace ``${NAME}`` and ``$NAME`` with values from ``environ`` (``os.environ`` by default)."""
    if environ is None:
        environ = os.environ
    return ENV_REGEX.sub(lambda m: environ.get(m.group(1) or m.group(2), ''), value)


def apply_defaults(record, registry=None, errors=None):
    """Store every ``default=`` literal found in ``record``'s field tree.

    Nested records are always visited. An absent optional record is only
    allocated when a default exists somewhere inside it, and never when its
    type already encloses it. Coercion errors are collected into ``errors``
    (and returned) so that one bad default does not hide the others.
    """
    registry = registry or default_registry
    if errors is None:
        errors = []
    _apply_defaults(record, registry, errors, (type(record),))
    return errors


def _apply_defaults(record, registry, errors, parents):
    for bound in registry.field_map(type(record)).values():
        owner = bound.owner(record)
        spec = bound.spec
        if spec.default is not None:
            try:
                set_value(owner, spec, spec.default, is_default=True)
            except CoercionError as e:
                e.message = f"invalid default for '{bound.key}': {e.message}"
                e.args = (e.message,)
                errors.append(e)
        if spec.type.kind is Kind.RECORD:
            child_type = spec.type.record
            if getattr(owner, spec.name) is None \
                    and (child_type in parents or not registry.has_defaults(child_type)):
                continue
            _apply_defaults(ensure_present(owner, spec), registry, errors, parents + (child_type,))


def _read_bytes(path):
    return pathlib.Path(path).read_bytes()


class ParseContext:

    """State shared by the top-level source and all of its includes."""

    def __init__(self, record, delimiter='=', environ=None, reader=None, registry=None,
                 max_include_depth=MAX_INCLUDE_DEPTH):
        if not isinstance(record, Record):
            raise StructuralError(f'configuration must be a Record instance, not {type(record).__name__}')
        if not delimiter:
            raise ValueError('delimiter must be a non-empty string')
        self.record = record
        self.delimiter = delimiter
        self.environ = os.environ if environ is None else environ
        self.reader = reader or _read_bytes
        self.registry = registry or default_registry
        self.max_include_depth = max_include_depth
        self.errors = []                # [IniError,...] in the order they were found
        self.visited = set()            # {real path of every file parsed so far}


class IniLexer:

    @classmethod
    def from_path(cls, context, path, depth=0):
        if depth > context.max_include_depth:
            raise IncludeDepthError(f'maximum include depth ({context.max_include_depth}) exceeded at {path}')
        identity = os.path.realpath(path)
        if identity in context.visited:
            raise CircularIncludeError(f'circular include detected: {path}')
        context.visited.add(identity)
        try:
            content = context.reader(path)
        except OSError as e:
            raise IncludeError(f'failed to open file: {e}') from e
        lexer = cls(context, content, path, depth)
        lexer.process()
        return lexer

    @classmethod
    def from_string(cls, context, content, path=None):
        lexer = cls(context, content, path)
        lexer.process()
        return lexer

    def __init__(self, context, content, path=None, depth=0):
        self.context = context
        self.path = path                                    # None when not file-backed
        self.name = path or '<string>'
        self.base_dir = os.path.dirname(os.path.abspath(path)) if path else None
        self.depth = depth
        self.lines = list(self._split_lines(content))       # [(line number, text or None),...]
        self.section = ()                                   # current section path segments
        self.section_type = type(context.record)            # None when the section did not resolve
        self.pending = None                                 # [key, [value lines], line number]

    @staticmethod
    def _split_lines(content):
        if isinstance(content, bytes):
            content = content.removeprefix(b'\xef\xbb\xbf')
            lines = [line.removesuffix(b'\r') for line in content.split(b'\n')]
        else:
            content = content.removeprefix('\ufeff')
            lines = [line.removesuffix('\r') for line in content.split('\n')]
        if lines and not lines[-1]:
            lines.pop()
        for number, line in enumerate(lines, start=1):
            try:
                if isinstance(line, bytes):
                    line = line.decode('utf-8')
                else:
                    line.encode('utf-8')        # lone surrogates
            except UnicodeError:
                line = None
            yield number, line

    def _report(self, error, number):
        self.context.errors.append(error.at(self.name, number))

    def process(self):
        for number, line in self.lines:
            if line is None:
                self._report(EncodingError('invalid UTF-8 encoding'), number)
                continue
            if line[:1] in (' ', '\t') and (self.pending is not None or line.strip()):
                self._continue_value(number, line)
                continue
            self._commit()
            content = line.strip()
            if not content or content[0] in ';#':
                continue
            if match := INCLUDE_REGEX.match(content):
                self._include(number, match.group(1))
            elif content.startswith('[') and content.endswith(']'):
                self._enter_section(number, content[1:-1])
            else:
                self._assign(number, content)
        self._commit()

    def _continue_value(self, number, line):
        if self.pending is None:
            self._report(MalformedLineError(f'continuation line without a key: {line.strip()}'), number)
            return
        self.pending[1].append(line.strip())

    def _enter_section(self, number, name):
        name = name.strip().lower()
        self.section = ()
        self.section_type = None
        if name and not SECTION_REGEX.match(name):
            self._report(InvalidSectionError(f"invalid section name '{name}'"), number)
            return
        segments = tuple(name.split('.')) if name else ()
        try:
            self.section_type = self.context.registry.resolve_section_type(type(self.context.record), segments)
        except ResolutionError as e:
            self._report(e, number)
            return
        self.section = segments
        logger.debug('%s:%d: entering section [%s]', self.name, number, name)

    def _assign(self, number, content):
        delimiter = self.context.delimiter
        if delimiter not in content:
            self._report(MalformedLineError(f'invalid line format: {content}'), number)
            return
        key, value = content.split(delimiter, 1)
        key = key.strip().lower()
        if not KEY_REGEX.match(key):
            self._report(InvalidKeyError(f"invalid key name '{key}'"), number)
            return
        self.pending = [key, [value.strip()], number]

    def _commit(self):
        if self.pending is None:
            return
        key, parts, number = self.pending
        self.pending = None
        if self.section_type is None:               # already reported at the section header
            return
        context = self.context
        value = expand_env('\n'.join(parts), context.environ)
        registry = context.registry
        try:
            bound = registry.resolve_key(self.section_type, key)
            target = registry.find_section(context.record, self.section)
            if target is not None:
                set_value(bound.owner(target), bound.spec, value)
                return
            # the section is absent: allocate it only once there is a value to store
            spec = bound.spec
            if spec.type.optional and not value and spec.initial is None:
                return
            converted = coerce(spec.type, value)
            target = registry.resolve_section(context.record, self.section)
            setattr(bound.owner(target), spec.name, converted)
        except (ResolutionError, CoercionError) as e:
            self._report(e, number)

    def _include(self, number, target):
        if not target or not target.strip():
            self._report(MalformedLineError('include directive without a path'), number)
            return
        path = target.strip()
        if not os.path.isabs(path):
            if self.base_dir is None:
                self._report(IncludeError(f"relative include path '{path}' needs a file-backed source"), number)
                return
            path = os.path.join(self.base_dir, path)
        logger.debug('%s:%d: including %s', self.name, number, path)
        try:
            self.__class__.from_path(self.context, path, self.depth + 1)
        except IncludeError as e:
            self._report(e, number)


def _parse(content, record, path, delimiter, options):
    context = ParseContext(record, delimiter, **options)
    apply_defaults(record, context.registry, context.errors)
    if path is None:
        IniLexer.from_string(context, content)
    else:
        context.visited.add(os.path.realpath(path))
        lexer = IniLexer(context, content, path)
        lexer.process()
    return context.errors


def loads(content: Union[str, bytes], record: Record, delimiter: str = '=', **options) -> 'list[IniError]':
    """
    Parse INI text into ``record`` and return the list of errors found.

    An empty list means every line was applied. ``record`` is populated in
    place, including by the lines that did parse when errors are returned.
    Only absolute ``!include`` paths are allowed since there is no file to be
    relative to. ``options`` are ``environ``, ``reader``, ``registry`` and
    ``max_include_depth``.
    """
    return _parse(content, record, None, delimiter, options)


def load(path: Union[str, pathlib.Path], record: Record, delimiter: str = '=', **options) -> 'list[IniError]':
    """
    Parse the INI file at ``path`` into ``record`` and return the list of errors found.

    Relative ``!include`` paths resolve against the directory of the file
    containing the directive.
    """
    path = os.fspath(path)
    reader = options.get('reader') or _read_bytes
    try:
        content = reader(path)
    except OSError as e:
        raise IniError(f'Unable to read {path}: {e}') from e
    return _parse(content, record, path, delimiter, options)


def parse(stream, record: Record, delimiter: str = '=', **options) -> 'list[IniError]':
    """Parse an open text or binary file object into ``record``.

    When the stream's ``name`` is the path of a regular file, relative
    includes resolve against its directory, exactly as with :func:`load`.
    """
    content = stream.read()
    name = getattr(stream, 'name', None)
    path = name if isinstance(name, str) and os.path.isfile(name) else None
    return _parse(content, record, path, delimiter, options)
