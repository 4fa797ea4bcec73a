from ._parser import load, loads, parse, apply_defaults, expand_env, MAX_INCLUDE_DEPTH
from ._writer import dump, dumps
from ._record import (
    Record, Embedded, ini,
    Int8, Int16, Int32, Int64, UInt, UInt8, UInt16, UInt32, UInt64, Float32, Float64,
)
from ._fields import FieldRegistry, resolve_key, resolve_section, pascal_to_snake, snake_to_pascal
from ._coerce import set_value
from ._errors import (
    IniError, StructuralError, SchemaError,
    IniSyntaxError, MalformedLineError, InvalidKeyError, InvalidSectionError, EncodingError,
    ResolutionError, UnknownKeyError, UnknownSectionError, NotASectionError,
    CoercionError, UnsupportedTypeError,
    IncludeError, CircularIncludeError, IncludeDepthError,
)
