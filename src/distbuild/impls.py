"""
python implementation objects and per-iteration build contexts
"""

__all__ = (
    "Implementation", "ImplementationContext", "get_impl",
    "preferred_impl", "impl_matches",
)

import fnmatch
import re

from snakeoil import klass
from snakeoil.osutils import pjoin

from . import const
from .errors import InvalidImplementation, NoMatchingImplementation

_impl_re = re.compile(r'^(?P<family>python|pypy)(?P<major>\d+)_(?P<minor>\d+)(?P<ft>t?)$')


class Implementation(metaclass=klass.immutable_instance):
    """A concrete python runtime, e.g. ``python3_12`` or ``pypy3_11``."""

    known_impls = {}

    def __init__(self, impl_id):
        m = _impl_re.match(impl_id)
        if m is None:
            raise InvalidImplementation(impl_id)
        sf = object.__setattr__
        sf(self, 'id', impl_id)
        sf(self, 'family', m.group('family'))
        sf(self, 'version', (int(m.group('major')), int(m.group('minor'))))
        sf(self, 'freethreading', bool(m.group('ft')))
        if self.freethreading and self.family != 'python':
            raise InvalidImplementation(impl_id, 'free-threading is CPython only')

    @klass.jit_attr
    def epython(self):
        """Interpreter name, e.g. ``python3.12`` or ``python3.13t``."""
        major, minor = self.version
        suffix = 't' if self.freethreading else ''
        return f'{self.family}{major}.{minor}{suffix}'

    @property
    def is_cpython(self):
        return self.family == 'python'

    def sitedir(self, prefix=const.PREFIX):
        return pjoin(prefix, 'lib', self.epython, 'site-packages')

    def scriptdir(self, prefix=const.PREFIX):
        return pjoin(prefix, 'lib', 'python-exec', self.epython)

    def includedir(self, prefix=const.PREFIX):
        return pjoin(prefix, 'include', self.epython)

    def matches(self, pattern):
        return (fnmatch.fnmatchcase(self.id, pattern) or
                fnmatch.fnmatchcase(self.epython, pattern))

    def __str__(self):
        return self.id

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.id} @#{id(self):x}>'

    def __eq__(self, other):
        if not isinstance(other, Implementation):
            return False
        return self.id == other.id

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash(self.id)


def get_impl(impl_id):
    """Return the :obj:`Implementation` for an id, instantiating it once."""
    if isinstance(impl_id, Implementation):
        return impl_id
    impl = Implementation.known_impls.get(impl_id)
    if impl is None:
        impl = Implementation(impl_id)
        Implementation.known_impls[impl_id] = impl
    return impl


def impl_matches(impl, patterns):
    return any(impl.matches(p) for p in patterns)


def preferred_impl(impls, patterns=('*',), precedence=const.PYTHON_IMPLS):
    """Select the most preferred implementation matching any of ``patterns``.

    :param impls: enabled implementations (ids or :obj:`Implementation`)
    :param patterns: fnmatch patterns applied to both the id and the
        interpreter name
    :param precedence: implementation ids ordered least to most preferred;
        implementations missing from it rank below every listed one
    :raise NoMatchingImplementation: if nothing matches
    """
    rank = {impl_id: i for i, impl_id in enumerate(precedence)}
    candidates = [get_impl(x) for x in impls]
    candidates = [x for x in candidates if impl_matches(x, patterns)]
    if not candidates:
        raise NoMatchingImplementation(patterns)
    return max(candidates, key=lambda x: rank.get(x.id, -1))


class ImplementationContext:
    """State owned by a single fan-out iteration.

    :ivar impl: :obj:`Implementation` being built for
    :ivar python: interpreter path
    :ivar build_dir: per-implementation build directory
    :ivar install_root: per-implementation staging root
    :ivar source_dir: source directory the iteration works from
    """

    __slots__ = ('impl', 'python', 'build_dir', 'install_root', 'source_dir')

    def __init__(self, impl, python, build_dir, install_root, source_dir):
        self.impl = impl
        self.python = python
        self.build_dir = build_dir
        self.install_root = install_root
        self.source_dir = source_dir

    epython = klass.alias_attr('impl.epython')

    @property
    def wheel_dir(self):
        return pjoin(self.build_dir, 'wheel')

    def __str__(self):
        return str(self.impl)

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.impl} build_dir={self.build_dir!r}>'
