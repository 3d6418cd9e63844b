"""
package build descriptors
"""

__all__ = ("BuildDescriptor", "load_descriptor")

import os
import tomllib
from importlib import import_module

from snakeoil import klass

from . import backends
from .exceptions import DistbuildUserException
from .impls import get_impl


class DescriptorError(DistbuildUserException):
    """Invalid package descriptor."""

    def __init__(self, path, msg):
        self.path = path
        self.error = msg
        super().__init__(str(self))

    def __str__(self):
        return f'{self.path}: {self.error}'


class BuildDescriptor(metaclass=klass.immutable_instance):
    """Per-package build configuration, fixed once the package is loaded.

    :ivar backend: declared backend identifier
    :ivar impls: declared implementation ids, in build order
    :ivar ext: the package builds native extensions
    :ivar optional: the package declares build dependencies itself
    :ivar args: backend argument strings
    :ivar single_impl: build for exactly one implementation
    :ivar in_source_build: give every implementation its own source copy
    :ivar all_subphase_impls: patterns restricting the implementation used
        for combined sub-phases
    :ivar test_runner: test module run by the default test handler
    :ivar docs: documentation files installed by the default install handler
    :ivar handlers: object implementing the package's phase handlers
    """

    def __init__(self, name, version, backend, impls, source_dir, ext=False,
                 optional=False, args=(), single_impl=False, in_source_build=False,
                 all_subphase_impls=('*',), test_runner=None, docs=(), handlers=None):
        # validate up front so broken descriptors fail on load
        backends.resolve_backend(backend)
        impls = tuple(get_impl(x).id for x in impls)
        if not impls:
            raise ValueError(f'{name}: no python implementations declared')
        if test_runner not in (None, 'pytest', 'unittest'):
            raise ValueError(f'{name}: unsupported test runner: {test_runner!r}')

        if handlers is None:
            from .phases import Handlers
            handlers = Handlers()

        sf = object.__setattr__
        sf(self, 'name', name)
        sf(self, 'version', version)
        sf(self, 'backend', backend)
        sf(self, 'impls', impls)
        sf(self, 'source_dir', os.path.abspath(source_dir))
        sf(self, 'ext', bool(ext))
        sf(self, 'optional', bool(optional))
        sf(self, 'args', tuple(args))
        sf(self, 'single_impl', bool(single_impl))
        sf(self, 'in_source_build', bool(in_source_build))
        sf(self, 'all_subphase_impls', tuple(all_subphase_impls))
        sf(self, 'test_runner', test_runner)
        sf(self, 'docs', tuple(docs))
        sf(self, 'handlers', handlers)

    @property
    def pf(self):
        return f'{self.name}-{self.version}'

    @klass.jit_attr
    def build_dependencies(self):
        return backends.build_dependencies(self)

    @klass.jit_attr
    def distutils_deps(self):
        return backends.distutils_deps(self)

    def __str__(self):
        return self.pf

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.pf} backend={self.backend}>'


def _load_handlers(path, spec):
    module, sep, attr = spec.partition(':')
    if not sep or not attr:
        raise DescriptorError(path, f'handlers must be "module:attribute": {spec!r}')
    try:
        obj = import_module(module)
        for name in attr.split('.'):
            obj = getattr(obj, name)
    except (ImportError, AttributeError) as e:
        raise DescriptorError(path, f'failed loading handlers {spec!r}: {e}') from e
    return obj() if isinstance(obj, type) else obj


def load_descriptor(path):
    """Load a descriptor from a TOML file.

    Example::

        name = "foo"
        version = "1.2"
        backend = "setuptools"
        impls = ["python3_12", "python3_13"]
        source = "foo-1.2"
        ext = true
        handlers = "foo_build:Handlers"

    ``source`` is relative to the descriptor's directory.
    """
    try:
        with open(path, 'rb') as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise DescriptorError(path, 'no such file') from e
    except tomllib.TOMLDecodeError as e:
        raise DescriptorError(path, f'invalid TOML: {e}') from e

    kwargs = {}
    for key in ('name', 'version', 'backend', 'impls'):
        try:
            kwargs[key] = data.pop(key)
        except KeyError:
            raise DescriptorError(path, f'missing required key: {key!r}') from None
    base = os.path.dirname(os.path.abspath(path))
    kwargs['source_dir'] = os.path.join(base, data.pop('source', '.'))
    handlers = data.pop('handlers', None)
    if handlers is not None:
        kwargs['handlers'] = _load_handlers(path, handlers)

    for key in ('ext', 'optional', 'args', 'single-impl', 'in-source-build',
                'all-subphase-impls', 'test-runner', 'docs'):
        if key in data:
            kwargs[key.replace('-', '_')] = data.pop(key)
    if data:
        raise DescriptorError(path, f"unknown keys: {', '.join(sorted(data))}")

    try:
        return BuildDescriptor(**kwargs)
    except (DistbuildUserException, ValueError) as e:
        raise DescriptorError(path, str(e)) from e
