"""
PEP 517 build backend registry

Every supported backend is registered once at import time as an immutable
:obj:`Backend` carrying its entry point, the build dependencies it pulls in,
the entry point aliases it tolerates and how package level arguments are
translated into the backend's ``config_settings``.
"""

__all__ = (
    "Backend", "resolve_backend", "translate_args", "verify_declared_backend",
    "find_source_backend", "build_dependencies", "distutils_deps",
)

import os
import tomllib

from snakeoil import klass, mappings
from snakeoil.osutils import pjoin

from . import const
from .errors import (BackendMismatchError, MissingBuildBackendError,
                     UnknownBackendError, UnsupportedArgumentError)


def _no_args(backend, args, **kwargs):
    if args:
        raise UnsupportedArgumentError(backend.key, args)
    return {}


def _setuptools_args(backend, args, **kwargs):
    if not args:
        return {}
    return {'--build-option': list(args)}


def _meson_args(backend, args, build_dir=None, jobs=None, load_average=None, **kwargs):
    config = {'setup-args': list(args)}
    if build_dir is not None:
        config['builddir'] = [pjoin(build_dir, 'build')]
    compile_args = ['-v']
    if jobs is not None:
        compile_args.append(f'--jobs={jobs}')
    if load_average is not None:
        compile_args.append(f'--load-average={load_average}')
    config['compile-args'] = compile_args
    return config


def _scikit_build_core_args(backend, args, build_dir=None, jobs=None,
                            load_average=None, debug=False):
    config = {
        'cmake.args': [';'.join(args)] if args else [],
        'cmake.build-type': ['Debug' if debug else 'Release'],
        'build.verbose': ['true'],
        'install.strip': ['false'],
    }
    if build_dir is not None:
        config['build-dir'] = [build_dir]
    tool_args = []
    if jobs is not None:
        tool_args.append(f'-j{jobs}')
    if load_average is not None:
        tool_args.append(f'-l{load_average}')
    config['build.tool-args'] = tool_args
    return config


def _maturin_args(backend, args, jobs=None, debug=False, **kwargs):
    build_args = ['--auditwheel=skip']
    if jobs is not None:
        build_args.append(f'--jobs={jobs}')
    build_args.append('--profile=dev' if debug else '--profile=release')
    build_args.extend(args)
    return {'build-args': build_args}


def _sip_args(backend, args, build_dir=None, jobs=None, debug=False, **kwargs):
    config = {'--verbose': ['']}
    if build_dir is not None:
        config['--build-dir'] = [pjoin(build_dir, 'sip')]
    if jobs is not None:
        config['--jobs'] = [str(jobs)]
    if debug:
        config['--debug'] = ['']
    for arg in args:
        if not arg.startswith('--'):
            raise UnsupportedArgumentError(
                backend.key, args, f'{arg!r} is not a --key or --key=value option')
        key, sep, value = arg.partition('=')
        config.setdefault(key, []).append(value)
    return config


class Backend(metaclass=klass.immutable_instance):

    known_backends = {}

    def __init__(self, key, entry_point, build_deps=(), aliases=(),
                 deprecated=None, translate=_no_args):
        sf = object.__setattr__
        sf(self, 'key', key)
        sf(self, 'entry_point', entry_point)
        sf(self, 'build_dependencies', tuple(build_deps))
        # alternate entry points accepted as-is
        sf(self, 'aliases', frozenset(aliases))
        # deprecated entry point -> replacement
        sf(self, 'deprecated', mappings.ImmutableDict(deprecated or {}))
        sf(self, '_translate', translate)

    @classmethod
    def register(cls, *args, **kwds):
        backend = cls(*args, **kwds)
        pre_existing = cls.known_backends.get(backend.key)
        if pre_existing is not None:
            raise ValueError(
                f"backend {backend.key!r} is already registered: {pre_existing!r}")
        cls.known_backends[backend.key] = backend
        return backend

    @property
    def builds_wheels(self):
        return self.key != 'no'

    def accepts(self, entry_point):
        return entry_point == self.entry_point or entry_point in self.aliases

    def translate(self, args, **kwargs):
        return self._translate(self, tuple(args), **kwargs)

    def __str__(self):
        return self.key

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.key} entry_point={self.entry_point!r}>'


FLIT = Backend.register(
    'flit', 'flit_core.buildapi', ('>=dev-python/flit-core-3.11.0',),
    deprecated={'flit.buildapi': 'flit_core.buildapi'})
FLIT_SCM = Backend.register(
    'flit_scm', 'flit_scm:buildapi', ('>=dev-python/flit-scm-1.7.0',))
HATCHLING = Backend.register(
    'hatchling', 'hatchling.build',
    ('>=dev-python/hatchling-1.27.0', 'dev-python/hatch-vcs'))
JUPYTER = Backend.register(
    'jupyter', 'jupyter_packaging.build_api', ('>=dev-python/jupyter-packaging-0.12.3',))
MATURIN = Backend.register(
    'maturin', 'maturin', ('>=dev-util/maturin-1.8.2',), translate=_maturin_args)
MESON_PYTHON = Backend.register(
    'meson-python', 'mesonpy', ('>=dev-python/meson-python-0.17.1',),
    translate=_meson_args)
NO = Backend.register('no', None)
PBR = Backend.register('pbr', 'pbr.build', ('>=dev-python/pbr-6.1.1',))
PDM_BACKEND = Backend.register(
    'pdm-backend', 'pdm.backend', ('>=dev-python/pdm-backend-2.4.3',),
    deprecated={'pdm.pep517.api': 'pdm.backend'})
POETRY = Backend.register(
    'poetry', 'poetry.core.masonry.api', ('>=dev-python/poetry-core-2.1.1',),
    deprecated={'poetry.masonry.api': 'poetry.core.masonry.api'})
SCIKIT_BUILD_CORE = Backend.register(
    'scikit-build-core', 'scikit_build_core.build',
    ('>=dev-python/scikit-build-core-0.10.7',), translate=_scikit_build_core_args)
SETUPTOOLS = Backend.register(
    'setuptools', 'setuptools.build_meta', ('>=dev-python/setuptools-75.8.2',),
    aliases=('setuptools.build_meta:__legacy__',), translate=_setuptools_args)
SIP = Backend.register('sip', 'sipbuild.api', ('>=dev-python/sip-6.10.0',), translate=_sip_args)
# the package is its own backend; the entry point comes from the source tree
STANDALONE = Backend.register('standalone', None)
UV_BUILD = Backend.register('uv-build', 'uv_build', ('dev-python/uv-build',))


def resolve_backend(identifier):
    """Look up a backend by its declared identifier.

    :raise UnknownBackendError: for unregistered identifiers
    """
    if isinstance(identifier, Backend):
        return identifier
    try:
        return Backend.known_backends[identifier]
    except KeyError:
        raise UnknownBackendError(identifier) from None


def translate_args(identifier, raw_args, build_dir=None, jobs=None,
                   load_average=None, debug=False):
    """Translate package level backend arguments into ``config_settings``.

    :return: mapping of setting name to a list of string values
    :raise UnsupportedArgumentError: if the backend can't take the arguments
    """
    backend = resolve_backend(identifier)
    return backend.translate(
        raw_args, build_dir=build_dir, jobs=jobs,
        load_average=load_average, debug=debug)


def _backend_for_entry_point(entry_point):
    for backend in Backend.known_backends.values():
        if backend.accepts(entry_point) or entry_point in backend.deprecated:
            return backend
    return None


def verify_declared_backend(identifier, actual, warn_once=None):
    """Check the declared backend against the one found in the source tree.

    :param identifier: declared backend identifier
    :param actual: entry point found in the source tree
    :param warn_once: callable taking ``(key, msg, *args)`` used to emit the
        deprecation warning once per build
    :return: the entry point to invoke
    :raise BackendMismatchError: if they differ and ``actual`` isn't a
        deprecated alias of the declared backend
    """
    backend = resolve_backend(identifier)
    if backend is STANDALONE or backend.accepts(actual):
        return actual
    replacement = backend.deprecated.get(actual)
    if replacement is not None:
        if warn_once is not None:
            warn_once(
                ('deprecated-backend', actual),
                '%s backend is deprecated, please migrate to %s', actual, replacement)
        return replacement
    expected = _backend_for_entry_point(actual)
    raise BackendMismatchError(
        backend.key, actual, expected.key if expected is not None else None)


def find_source_backend(source_dir, identifier=None):
    """Read the build backend configured in a source tree.

    :return: tuple of (entry point, backend-path sequence)
    :raise MissingBuildBackendError: if no backend can be determined
    """
    pyproject = pjoin(source_dir, 'pyproject.toml')
    build_system = {}
    try:
        with open(pyproject, 'rb') as f:
            build_system = tomllib.load(f).get('build-system', {})
    except FileNotFoundError:
        pass
    except tomllib.TOMLDecodeError as e:
        raise MissingBuildBackendError(pyproject) from e

    entry_point = build_system.get('build-backend')
    if entry_point:
        backend_path = tuple(
            os.path.normpath(pjoin(source_dir, x))
            for x in build_system.get('backend-path', ()))
        return entry_point, backend_path

    # setup.py-only trees get the legacy setuptools backend
    if identifier == SETUPTOOLS.key and os.path.exists(pjoin(source_dir, 'setup.py')):
        return 'setuptools.build_meta:__legacy__', ()
    raise MissingBuildBackendError(source_dir)


def distutils_deps(descriptor):
    """Build dependencies of a descriptor, whether or not it declares them itself."""
    backend = resolve_backend(descriptor.backend)
    if not backend.builds_wheels:
        return ()
    deps = [const.WHEEL_FRONTEND_DEP]
    deps.extend(backend.build_dependencies)
    return tuple(deps)


def build_dependencies(descriptor):
    """Build dependencies injected on behalf of the descriptor.

    Descriptors in optional mode declare dependencies themselves, using
    :func:`distutils_deps`; nothing is injected for them.
    """
    if descriptor.optional:
        return ()
    return distutils_deps(descriptor)
