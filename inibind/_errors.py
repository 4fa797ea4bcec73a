"""Exception hierarchy shared by the parser, the field resolver and the writer."""

__all__ = [
    'IniError', 'StructuralError', 'SchemaError',
    'IniSyntaxError', 'MalformedLineError', 'InvalidKeyError', 'InvalidSectionError', 'EncodingError',
    'ResolutionError', 'UnknownKeyError', 'UnknownSectionError', 'NotASectionError',
    'CoercionError', 'UnsupportedTypeError',
    'IncludeError', 'CircularIncludeError', 'IncludeDepthError',
]


class IniError(Exception):

    """Base exception for all errors raised or reported by inibind."""

    def __init__(self, message: str, path: 'str | None' = None, line: 'int | None' = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = path                # file name, '<string>' or None
        self.line = line                # 1-based, None when not tied to a line

    def at(self, path, line):
        """Attach a source location unless one is already set, and return self."""
        if self.path is None:
            self.path = path
        if self.line is None:
            self.line = line
        return self

    def __str__(self) -> str:
        if self.line is None:
            if self.path is None:
                return self.message
            return f'File "{self.path}": {self.message}'
        return f'File "{self.path or "<string>"}", line {self.line}: {self.message}'


class StructuralError(IniError):
    """The target is not a record; nothing was parsed."""


class SchemaError(IniError):
    """A record type cannot be bound to the dialect (duplicate keys, tagged embedding)."""


class IniSyntaxError(IniError):
    pass


class MalformedLineError(IniSyntaxError):
    pass


class InvalidKeyError(IniSyntaxError):
    pass


class InvalidSectionError(IniSyntaxError):
    pass


class EncodingError(IniSyntaxError):
    pass


class ResolutionError(IniError):
    pass


class UnknownKeyError(ResolutionError):
    pass


class UnknownSectionError(ResolutionError):
    pass


class NotASectionError(ResolutionError):
    pass


class CoercionError(IniError):

    """A raw value could not be converted to the field's type."""

    def __init__(self, message, kind=None, value=None, path=None, line=None):
        super().__init__(message, path, line)
        self.kind = kind
        self.value = value


class UnsupportedTypeError(CoercionError):
    pass


class IncludeError(IniError):
    pass


class CircularIncludeError(IncludeError):
    pass


class IncludeDepthError(IncludeError):
    pass
