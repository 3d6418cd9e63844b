"""
build settings

Settings are read from an ini style file (a single ``[build]`` section) with
environment overrides layered on top::

    [build]
    jobs = 8
    load_average = 6.5
    precedence = pypy3_11 python3_12 python3_13
    allow_wheel_reuse = yes
    stable_abi_reuse = yes

``MAKEOPTS`` supplies ``jobs`` and ``load_average`` when the file doesn't,
and any ``DISTBUILD_<KEY>`` variable overrides the matching key.
"""

__all__ = ("BuildSettings", "ConfigError", "load_settings", "parse_makeopts")

import configparser
import os
import shlex
from multiprocessing import cpu_count

from snakeoil import klass

from . import const
from .exceptions import DistbuildUserException


class ConfigError(DistbuildUserException):
    """Invalid build settings."""


class CaseSensitiveConfigParser(configparser.ConfigParser):
    """Parse to enforce case sensitivity for configparser"""

    def optionxform(self, optionstr: str) -> str:
        """preserve case sensitivity"""
        return optionstr


def _bool(value):
    if isinstance(value, bool):
        return value
    value = value.strip().lower()
    if value in ('1', 'y', 'yes', 'true', 'on'):
        return True
    elif value in ('', '0', 'n', 'no', 'false', 'off'):
        return False
    raise ValueError(f'not a boolean: {value!r}')


def _seq(value):
    if isinstance(value, str):
        return tuple(value.split())
    return tuple(value)


def _optional_str(value):
    return value or None


class BuildSettings(metaclass=klass.immutable_instance):
    """Immutable settings shared by every build in a run.

    :ivar jobs: backend parallelism, passed through to the backend
    :ivar load_average: backend load average limit, or None
    :ivar prefix: install prefix inside the staging/destination trees
    :ivar interpreter_dir: directory holding the python interpreters
    :ivar dispatch_exec: executable that script wrappers symlink to
    :ivar precedence: implementation ids, least to most preferred
    :ivar allow_wheel_reuse: reuse wheels across implementations at all
    :ivar stable_abi_reuse: reuse abi3 wheels across CPython versions; this
        assumes implementations build oldest to newest and abi3 wheels are
        forward compatible
    :ivar compile_bytecode: byte-compile installed modules
    :ivar run_tests: run the test phase
    :ivar debug: build extensions in debug mode
    :ivar single_target: implementation used in single-implementation mode
    """

    _converters = {
        'jobs': int,
        'load_average': float,
        'prefix': str,
        'interpreter_dir': str,
        'dispatch_exec': str,
        'precedence': _seq,
        'allow_wheel_reuse': _bool,
        'stable_abi_reuse': _bool,
        'compile_bytecode': _bool,
        'run_tests': _bool,
        'debug': _bool,
        'single_target': _optional_str,
    }

    def __init__(self, jobs=None, load_average=None, prefix=const.PREFIX,
                 interpreter_dir=const.INTERPRETER_DIR, dispatch_exec=const.DISPATCH_EXEC,
                 precedence=const.PYTHON_IMPLS, allow_wheel_reuse=True,
                 stable_abi_reuse=True, compile_bytecode=True, run_tests=True,
                 debug=False, single_target=None):
        sf = object.__setattr__
        sf(self, 'jobs', jobs if jobs is not None else cpu_count())
        sf(self, 'load_average', load_average)
        sf(self, 'prefix', prefix)
        sf(self, 'interpreter_dir', interpreter_dir)
        sf(self, 'dispatch_exec', dispatch_exec)
        sf(self, 'precedence', tuple(precedence))
        sf(self, 'allow_wheel_reuse', allow_wheel_reuse)
        sf(self, 'stable_abi_reuse', stable_abi_reuse)
        sf(self, 'compile_bytecode', compile_bytecode)
        sf(self, 'run_tests', run_tests)
        sf(self, 'debug', debug)
        sf(self, 'single_target', single_target)
        if self.jobs < 1:
            raise ConfigError(f'jobs must be positive: {self.jobs}')

    def interpreter(self, impl):
        return os.path.join(self.interpreter_dir, impl.epython)

    @classmethod
    def from_mapping(cls, data, source='<mapping>'):
        kwargs = {}
        for key, value in data.items():
            converter = cls._converters.get(key)
            if converter is None:
                raise ConfigError(f'{source}: unknown setting: {key!r}')
            try:
                kwargs[key] = converter(value)
            except ValueError as e:
                raise ConfigError(f'{source}: invalid value for {key!r}: {e}') from e
        return cls(**kwargs)


def parse_makeopts(makeopts):
    """Extract jobs and load average from a MAKEOPTS-style string.

    :return: mapping holding ``jobs`` and/or ``load_average`` when found
    """
    opts = {}
    args = shlex.split(makeopts)
    i = 0
    while i < len(args):
        arg = args[i]
        for short, long, key in (('-j', '--jobs', 'jobs'), ('-l', '--load-average', 'load_average')):
            value = None
            if arg.startswith(long + '='):
                value = arg[len(long) + 1:]
            elif arg in (short, long):
                if i + 1 < len(args) and args[i + 1][:1].isdigit():
                    i += 1
                    value = args[i]
            elif arg.startswith(short) and arg[2:3].isdigit():
                value = arg[2:]
            if value is not None:
                opts[key] = value
        i += 1
    return opts


def load_settings(path=None, environ=None):
    """Load settings from an ini file and the environment.

    :param path: settings file; if None, the user then system files are tried
    :param environ: environment mapping, defaults to :obj:`os.environ`
    :return: :obj:`BuildSettings` instance
    """
    if environ is None:
        environ = os.environ

    data = {}
    if path is None:
        for candidate in (const.USER_CONF_FILE, const.SYSTEM_CONF_FILE):
            if os.path.exists(candidate):
                path = candidate
                break

    source = path or '<environment>'
    if path is not None:
        cparser = CaseSensitiveConfigParser()
        try:
            with open(path) as f:
                cparser.read_file(f)
        except FileNotFoundError as e:
            raise ConfigError(f'missing settings file: {path!r}') from e
        except configparser.Error as e:
            raise ConfigError(f'failed parsing {path!r}: {e}') from e
        if cparser.has_section('build'):
            data.update(cparser.items('build'))

    makeopts = environ.get('MAKEOPTS')
    if makeopts:
        for key, value in parse_makeopts(makeopts).items():
            data.setdefault(key, value)

    for key in BuildSettings._converters:
        value = environ.get(f'DISTBUILD_{key.upper()}')
        if value is not None:
            data[key] = value

    return BuildSettings.from_mapping(data, source=source)
