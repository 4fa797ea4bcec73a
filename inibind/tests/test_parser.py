import io
import re
import ipaddress
from typing import Optional

import pytest

from inibind import (
    Record, ini, loads, parse, UInt, Int8, Float32,
    StructuralError, SchemaError, MalformedLineError, InvalidKeyError, InvalidSectionError,
    EncodingError, UnknownKeyError, UnknownSectionError, NotASectionError, CoercionError,
    UnsupportedTypeError,
)


class Duration:

    """Durations written like ``1h30m`` or ``250ms``."""

    TOKEN_REGEX = r'(\d+(?:\.\d+)?)(ms|h|m|s)'
    SECONDS = {'h': 3600, 'm': 60, 's': 1, 'ms': 0.001}

    def __init__(self, seconds):
        self.seconds = seconds

    @classmethod
    def from_text(cls, text):
        if not re.fullmatch(f'(?:{cls.TOKEN_REGEX})+', text):
            raise ValueError(f'invalid duration: {text}')
        return cls(sum(float(n) * cls.SECONDS[u] for n, u in re.findall(cls.TOKEN_REGEX, text)))

    def __eq__(self, other):
        return isinstance(other, Duration) and self.seconds == other.seconds

    def __repr__(self):
        return f'Duration({self.seconds})'


class FileConfig(Record):
    path: str
    size: int


class LoggingConfig(Record):
    level: str
    file: Optional[str]
    file_config: FileConfig


class ServerConfig(Record):
    host: str
    port: UInt
    username: Optional[str]
    password: str
    timeout: float
    enabled: Optional[bool]
    description: str
    notes: str
    logging: Optional[LoggingConfig]
    ip: Optional[ipaddress.IPv4Address] = ini('ip_address')


class DatabaseConfig(Record):
    host: str
    port: UInt
    username: str
    password: Optional[str]
    max_conns: int


class Config(Record):
    app_name: str
    version: Optional[str]
    server: ServerConfig
    database: DatabaseConfig
    duration: Duration


FULL_CONFIG = """
; This is a comment
# This is another comment

app_name = MyApp
version = 1.0.0
duration = 1h30m

[server]
host = localhost
port = 8080
username = admin
password = secret
timeout = 30.5
enabled = true
ip_address = 192.168.1.1

[server.logging]
level = debug
file = /var/log/myapp.log

[server.logging.file_config]
path = /var/log/myapp.log
size = 1024

[database]
host = db.local
port = 5432
username = dbadmin
password = dbsecret
max_conns = 100
"""


def check_config(config):
    assert config.app_name == 'MyApp'
    assert config.version == '1.0.0'
    assert config.duration == Duration(5400)
    server = config.server
    assert server.host == 'localhost'
    assert server.port == 8080
    assert server.username == 'admin'
    assert server.password == 'secret'
    assert server.timeout == 30.5
    assert server.enabled is True
    assert server.ip == ipaddress.IPv4Address('192.168.1.1')
    assert server.logging.level == 'debug'
    assert server.logging.file == '/var/log/myapp.log'
    assert server.logging.file_config.path == '/var/log/myapp.log'
    assert server.logging.file_config.size == 1024
    database = config.database
    assert database.host == 'db.local'
    assert database.port == 5432
    assert database.username == 'dbadmin'
    assert database.password == 'dbsecret'
    assert database.max_conns == 100


def test_loads_full_config():
    """Test that every section, subsection and field kind is populated."""
    config = Config()
    assert loads(FULL_CONFIG, config) == []
    check_config(config)


def test_loads_custom_delimiter():
    """Test parsing the same document with ':' as the delimiter."""
    content = re.sub(r' = ', ': ', FULL_CONFIG)
    config = Config()
    assert loads(content, config, delimiter=':') == []
    check_config(config)


def test_loads_multi_character_delimiter():
    config = Config()
    assert loads('app_name => a=b\n[server]\nport=>81\n', config, delimiter='=>') == []
    assert config.app_name == 'a=b'
    assert config.server.port == 81


def test_parse_text_and_binary_streams():
    """Test parse() with both text and binary file objects."""
    for stream in (io.StringIO(FULL_CONFIG), io.BytesIO(FULL_CONFIG.encode())):
        config = Config()
        assert parse(stream, config) == []
        check_config(config)


def test_subsections_allocate_optional_records():
    content = """
[server]
host = localhost

[server.logging]
level = info
"""
    config = Config()
    assert config.server.logging is None
    assert loads(content, config) == []
    assert config.server.host == 'localhost'
    assert config.server.logging.level == 'info'
    assert config.server.logging.file is None


def test_empty_section_does_not_allocate():
    """Test that a header alone never allocates an optional record."""
    config = Config()
    assert loads('[server.logging]\n', config) == []
    assert config.server.logging is None


def test_failed_assignment_does_not_allocate_section():
    content = """
[server.logging.file_config]
size = big
[server.logging]
file =
unknown = 1
"""
    config = Config()
    errors = loads(content, config)
    assert [type(e) for e in errors] == [CoercionError, UnknownKeyError]
    assert config.server.logging is None
    assert loads('[server.logging]\nlevel = warn\n', config) == []
    assert config.server.logging.level == 'warn'


@pytest.mark.parametrize('header', ['[SERVER]', '[Server]', '[server]', '[ server ]'])
def test_sections_are_case_insensitive(header):
    config = Config()
    assert loads(f'{header}\nhost = example.org\n', config) == []
    assert config.server.host == 'example.org'


def test_keys_are_case_insensitive():
    content = """
APP_NAME = Loud
[Database]
Max_Conns = 7
HOST = db
[SERVER.LOGGING.FILE_CONFIG]
Size = 3
"""
    config = Config()
    assert loads(content, config) == []
    assert config.app_name == 'Loud'
    assert config.database.max_conns == 7
    assert config.database.host == 'db'
    assert config.server.logging.file_config.size == 3


def test_empty_input_and_comment_only_input():
    for content in ('', '; comment\n# another\n\n'):
        config = Config()
        assert loads(content, config) == []
        assert config == Config()


def test_empty_values():
    content = """
version =
[server]
host =
username =
"""
    config = Config()
    assert loads(content, config) == []
    assert config.server.host == ''
    assert config.version is None               # absent optionals stay absent
    assert config.server.username is None


def test_invalid_line_reports_line_number():
    content = """
[server]
host = localhost
port
"""
    config = Config()
    errors = loads(content, config)
    assert len(errors) == 1
    assert isinstance(errors[0], MalformedLineError)
    assert errors[0].line == 4
    assert str(errors[0]) == 'File "<string>", line 4: invalid line format: port'
    assert config.server.host == 'localhost'


def test_invalid_key_characters():
    config = Config()
    errors = loads('app name = x\n= y\napp_name = ok\n', config)
    assert [type(e) for e in errors] == [InvalidKeyError, InvalidKeyError]
    assert [e.line for e in errors] == [1, 2]
    assert config.app_name == 'ok'


def test_invalid_section_skips_its_assignments():
    content = """
[serv er]
host = skipped
[server..logging]
level = skipped
[server]
host = kept
"""
    config = Config()
    errors = loads(content, config)
    assert [type(e) for e in errors] == [InvalidSectionError, InvalidSectionError]
    assert [e.line for e in errors] == [2, 4]
    assert config.server.host == 'kept'


def test_unknown_section_reported_once():
    content = """
[missing]
a = 1
b = 2
"""
    errors = loads(content, Config())
    assert len(errors) == 1
    assert isinstance(errors[0], UnknownSectionError)
    assert "no matching field found for section 'missing'" in str(errors[0])
    assert errors[0].line == 2


def test_section_that_is_not_a_record():
    errors = loads('[app_name]\nx = 1\n', Config())
    assert len(errors) == 1
    assert isinstance(errors[0], NotASectionError)
    assert "field for section 'app_name' is not a record" in str(errors[0])


def test_missing_section_header():
    errors = loads('host = localhost\nport = 8080\n', Config())
    assert [type(e) for e in errors] == [UnknownKeyError, UnknownKeyError]
    assert "no matching field found for key 'host'" in str(errors[0])


def test_empty_header_returns_to_root():
    config = Config()
    assert loads('[server]\nhost = h\n[]\napp_name = root\n', config) == []
    assert config.app_name == 'root'


def test_multiline_string():
    content = """
[server]
description = This is a
    multiline
\tdescription
notes = These are
    additional
    notes

[database]
host = db.local
"""
    config = Config()
    assert loads(content, config) == []
    assert config.server.description == 'This is a\nmultiline\ndescription'
    assert config.server.notes == 'These are\nadditional\nnotes'
    assert config.database.host == 'db.local'


def test_multiline_value_committed_at_end_of_input():
    config = Config()
    assert loads('[server]\nnotes = a\n    b', config) == []
    assert config.server.notes == 'a\nb'


def test_whitespace_only_continuation_line():
    config = Config()
    assert loads('[server]\nnotes = a\n    \n\t\n    b\nhost = h\n', config) == []
    assert config.server.notes == 'a\n\n\nb'
    assert config.server.host == 'h'


def test_whitespace_only_line_without_key_is_blank():
    config = Config()
    assert loads('   \napp_name = x\n', config) == []
    assert config.app_name == 'x'


def test_multiline_int_is_a_single_coercion_error():
    content = """
[database]
max_conns = 100
    200
port = 5432
"""
    config = Config()
    errors = loads(content, config)
    assert len(errors) == 1
    assert isinstance(errors[0], CoercionError)
    assert 'invalid value for field type int' in str(errors[0])
    assert errors[0].value == '100\n200'
    assert errors[0].line == 3
    assert config.database.max_conns == 0
    assert config.database.port == 5432


@pytest.mark.parametrize('key, kind', [('timeout', 'float'), ('enabled', 'bool')])
def test_multiline_float_and_bool(key, kind):
    errors = loads(f'[server]\n{key} = 1\n    0\n', Config())
    assert len(errors) == 1
    assert f'invalid value for field type {kind}' in str(errors[0])


def test_multiline_followed_by_errors():
    content = """
[server]
description = This is a
    multiline
invalid_field = value
[database]
max_conns = 100
    200
invalid_line
"""
    config = Config()
    errors = loads(content, config)
    assert [type(e) for e in errors] == [UnknownKeyError, CoercionError, MalformedLineError]
    assert "no matching field found for key 'invalid_field'" in str(errors[0])
    assert config.server.description == 'This is a\nmultiline'


def test_continuation_without_key():
    config = Config()
    errors = loads('    orphan\napp_name = x\n', config)
    assert len(errors) == 1
    assert isinstance(errors[0], MalformedLineError)
    assert errors[0].line == 1
    assert config.app_name == 'x'


def test_coercion_error_does_not_stop_parsing():
    content = """
app_name = Still
[server]
port = not_a_uint
host = parsed
[database]
max_conns = 12
"""
    config = Config()
    errors = loads(content, config)
    assert len(errors) == 1
    error = errors[0]
    assert isinstance(error, CoercionError)
    assert error.kind == 'uint'
    assert error.value == 'not_a_uint'
    assert str(error) == 'File "<string>", line 4: invalid value for field type uint: not_a_uint'
    assert config.app_name == 'Still'
    assert config.server.host == 'parsed'
    assert config.database.max_conns == 12


def test_custom_type_error_message():
    errors = loads('duration = forever\n[server]\nip_address = invalid_ip\n', Config())
    assert [type(e) for e in errors] == [CoercionError, CoercionError]
    assert 'invalid duration: forever' in str(errors[0])
    assert 'invalid_ip' in str(errors[1])


def test_env_var_substitution():
    content = """
app_name = ${APP_NAME}
[server]
host = $SERVER_HOST:8080
password = ${UNSET_VAR}fallback
description = first $SERVER_HOST
    second ${APP_NAME}
"""
    environ = {'APP_NAME': 'EnvApp', 'SERVER_HOST': 'env.local'}
    config = Config()
    assert loads(content, config, environ=environ) == []
    assert config.app_name == 'EnvApp'
    assert config.server.host == 'env.local:8080'
    assert config.server.password == 'fallback'
    assert config.server.description == 'first env.local\nsecond EnvApp'


def test_env_var_substitution_runs_once():
    config = Config()
    assert loads('app_name = ${A} costs $\n', config, environ={'A': '$B', 'B': 'twice'}) == []
    assert config.app_name == '$B costs $'


def test_env_var_substitution_uses_process_environment(monkeypatch):
    monkeypatch.setenv('INIBIND_TEST_HOST', 'from-env')
    config = Config()
    assert loads('[server]\nhost = ${INIBIND_TEST_HOST}\n', config) == []
    assert config.server.host == 'from-env'


def test_invalid_utf8_line_is_skipped():
    content = b'app_name = ok\nversion = \xff\xfe\n[server]\nhost = h\n'
    config = Config()
    errors = loads(content, config)
    assert len(errors) == 1
    assert isinstance(errors[0], EncodingError)
    assert errors[0].line == 2
    assert config.app_name == 'ok'
    assert config.version is None
    assert config.server.host == 'h'


def test_crlf_and_bom():
    config = Config()
    assert loads(b'\xef\xbb\xbfapp_name = crlf\r\n[server]\r\nport = 1\r\n', config) == []
    assert config.app_name == 'crlf'
    assert config.server.port == 1


def test_config_must_be_a_record_instance():
    with pytest.raises(StructuralError, match='configuration must be a Record'):
        loads('app_name = x', object())
    with pytest.raises(StructuralError):
        loads('app_name = x', Config)


class WidthConfig(Record):
    small: Int8
    single: Float32


def test_declared_width_is_enforced():
    config = WidthConfig()
    errors = loads('small = 128\nsingle = 1e39\n', config)
    assert [e.kind for e in errors] == ['int8', 'float32']
    assert loads('small = -128\nsingle = 0.5\n', config) == []
    assert config.small == -128
    assert config.single == 0.5


class MapConfig(Record):
    data: dict


def test_unsupported_field_type():
    errors = loads('data = value\n', MapConfig())
    assert len(errors) == 1
    assert isinstance(errors[0], UnsupportedTypeError)
    assert 'unsupported field type: dict' in str(errors[0])


class DuplicateTagConfig(Record):
    field1: str = ini('duplicate')
    field2: str = ini('duplicate')


class DuplicateNameConfig(Record):
    field1: str
    field2: str = ini('Field1')


def test_duplicate_tag_is_a_schema_error():
    with pytest.raises(SchemaError, match="duplicate tag name 'duplicate'"):
        loads('duplicate = value\n', DuplicateTagConfig())
    with pytest.raises(SchemaError, match="duplicate tag name 'Field1'"):
        loads('field1 = value\n', DuplicateNameConfig())


class NestedDefaults(Record):
    field1: str = ini(default='nested_default')
    field2: int = ini(default='100')


class DefaultsConfig(Record):
    name: str = ini(default='default_name')
    age: Optional[UInt] = ini(default='25')
    score: float = ini(default='75.5')
    active: Optional[bool] = ini(default='true')
    comment: str = ini(default='')
    plain: Optional[str]
    nested: Optional[NestedDefaults]
    empty: Optional[FileConfig]


def test_defaults_applied_before_parsing():
    config = DefaultsConfig()
    assert loads('name = custom_name\n[nested]\nfield2 = 7\n', config) == []
    assert config.name == 'custom_name'
    assert config.age == 25
    assert config.score == 75.5
    assert config.active is True
    assert config.comment == ''
    assert config.plain is None
    assert config.nested.field1 == 'nested_default'
    assert config.nested.field2 == 7
    assert config.empty is None


def test_defaults_fill_optional_records_on_empty_input():
    config = DefaultsConfig()
    assert loads('', config) == []
    assert config.nested == NestedDefaults(field1='nested_default', field2=100)


class BadDefaults(Record):
    count: int = ini(default='many')
    flag: bool = ini(default='yes')
    name: str = ini(default='fine')


def test_invalid_defaults_are_all_reported():
    config = BadDefaults()
    errors = loads('name = parsed\n', config)
    assert [type(e) for e in errors] == [CoercionError, CoercionError]
    assert str(errors[0]) == "invalid default for 'count': invalid value for field type int: many"
    assert errors[1].kind == 'bool'
    assert config.name == 'parsed'
    assert config.count == 0
