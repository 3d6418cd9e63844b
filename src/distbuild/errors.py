"""
build orchestration exceptions
"""

__all__ = (
    "BackendError", "UnknownBackendError", "UnsupportedArgumentError",
    "BackendMismatchError", "MissingBuildBackendError", "BackendBuildError",
    "ArtifactInstallError", "BrokenOverrideError", "NamespacePolicyError",
    "StrayFilesError", "MergeConflictError", "TestFailure", "PhaseOrderError",
    "InvalidImplementation", "NoMatchingImplementation",
    "ImplementationFailure", "AggregateImplementationFailure", "PhaseFailure",
)

from snakeoil.strings import pluralism

from .exceptions import DistbuildException, DistbuildUserException


class BackendError(DistbuildUserException):
    """Generic build backend selection error."""


class UnknownBackendError(BackendError):
    """Declared backend identifier isn't in the registry."""

    def __init__(self, identifier):
        self.identifier = identifier
        super().__init__(str(self))

    def __str__(self):
        return f'unknown build backend: {self.identifier!r}'


class UnsupportedArgumentError(BackendError):
    """Backend arguments that can't be passed to the given backend."""

    def __init__(self, identifier, args, msg=None):
        self.identifier = identifier
        self.args_ = tuple(args)
        self.error = msg
        super().__init__(str(self))

    def __str__(self):
        s = f'backend arguments are not supported by {self.identifier!r}: {" ".join(self.args_)}'
        if self.error:
            s += f': {self.error}'
        return s


class BackendMismatchError(BackendError):
    """Declared backend doesn't match the one configured in the source tree."""

    def __init__(self, identifier, actual, expected=None):
        self.identifier = identifier
        self.actual = actual
        self.expected = expected
        super().__init__(str(self))

    def __str__(self):
        s = (f'declared backend {self.identifier!r} does not match '
             f'build-backend {self.actual!r} from the source tree')
        if self.expected is not None:
            s += f'; declare {self.expected!r} instead'
        return s


class MissingBuildBackendError(BackendError):
    """Source tree doesn't name a build backend."""

    def __init__(self, source_dir):
        self.source_dir = source_dir
        super().__init__(str(self))

    def __str__(self):
        return f'unable to obtain build-backend from {self.source_dir!r}'


class BackendBuildError(DistbuildUserException):
    """Backend failed producing a wheel."""

    origin = 'backend'

    def __init__(self, entry_point, msg):
        self.entry_point = entry_point
        self.error = msg
        super().__init__(str(self))

    def __str__(self):
        return f'{self.entry_point}: wheel build failed: {self.error}'


class ArtifactInstallError(DistbuildUserException):
    """Wheel couldn't be installed into a staging root."""

    def __init__(self, path, msg, origin=None):
        self.path = path
        self.error = msg
        if origin is not None:
            self.origin = origin
        super().__init__(str(self))

    def __str__(self):
        return f'failed installing {self.path!r}: {self.error}'


class BrokenOverrideError(DistbuildUserException):
    """Overridden sub-phase never called through to the default routine."""

    def __init__(self, handler, default):
        self.handler = handler
        self.default = default
        super().__init__(str(self))

    def __str__(self):
        return f"{self.handler}() didn't call {self.default}()"


class _PathListError(DistbuildUserException):

    _header = None

    def __init__(self, paths):
        self.paths = tuple(sorted(paths))
        super().__init__(str(self))

    def __str__(self):
        return f"{self._header}: {', '.join(self.paths)}"


class NamespacePolicyError(_PathListError):
    """Banned namespace compatibility files were installed."""

    _header = 'installing *-nspkg.pth files is banned'


class StrayFilesError(_PathListError):
    """Unexpected files or directories found in the staging image."""

    _header = 'stray files in the install image'

    def __init__(self, paths, header=None):
        if header is not None:
            self._header = header
        super().__init__(paths)


class MergeConflictError(_PathListError):
    """Image entries clash with entries of a different type in the destination."""

    _header = 'file/directory conflicts in the destination'


class TestFailure(DistbuildUserException):
    """Test suite run by the default test handler failed."""

    def __init__(self, impl, ret):
        self.impl = impl
        self.ret = ret
        super().__init__(str(self))

    def __str__(self):
        return f'tests failed with {self.impl} (exit status {self.ret})'


class PhaseOrderError(DistbuildException):
    """Phase requested out of order."""

    def __init__(self, phase, msg):
        self.phase = phase
        self.error = msg
        super().__init__(str(self))

    def __str__(self):
        return f'phase {self.phase!r} rejected: {self.error}'


class InvalidImplementation(DistbuildUserException):
    """Implementation identifier that can't be parsed or isn't supported."""

    def __init__(self, impl_id, msg=None):
        self.impl_id = impl_id
        self.error = msg
        super().__init__(str(self))

    def __str__(self):
        s = f'invalid python implementation: {self.impl_id!r}'
        if self.error:
            s += f': {self.error}'
        return s


class NoMatchingImplementation(DistbuildUserException):
    """No enabled implementation matches the combined phase filter."""

    def __init__(self, patterns):
        self.patterns = tuple(patterns)
        super().__init__(str(self))

    def __str__(self):
        return f"no enabled implementation matches: {' '.join(self.patterns)}"


class ImplementationFailure(DistbuildException):
    """Failure of one fan-out iteration."""

    def __init__(self, impl, error):
        self.impl = impl
        self.error = error
        super().__init__(str(self))

    @property
    def origin(self):
        return getattr(self.error, 'origin', 'package')

    def __str__(self):
        return f'{self.impl}: {self.error}'


class AggregateImplementationFailure(DistbuildException):
    """One or more fan-out iterations of a phase failed."""

    def __init__(self, phase, failures):
        self.phase = phase
        self.failures = tuple(failures)
        super().__init__(str(self))

    @property
    def impls(self):
        return tuple(str(f.impl) for f in self.failures)

    @property
    def origin(self):
        if any(f.origin == 'backend' for f in self.failures):
            return 'backend'
        return 'package'

    def __str__(self):
        s = f"failed for implementation{pluralism(self.failures)}: {', '.join(self.impls)}"
        if self.phase is not None:
            s = f'{self.phase}: {s}'
        return s


class PhaseFailure(DistbuildUserException):
    """A build phase failed; the remaining phases are aborted."""

    def __init__(self, phase, error, impls=()):
        self.phase = phase
        self.error = error
        if not impls and isinstance(error, AggregateImplementationFailure):
            impls = error.impls
        self.impls = tuple(impls)
        super().__init__(str(self))

    @property
    def origin(self):
        return getattr(self.error, 'origin', 'package')

    def __str__(self):
        s = f'phase {self.phase} failed'
        if self.impls:
            s += f" ({', '.join(self.impls)})"
        return f'{s}: {self.error}'

    def msg(self, verbosity=0, prefix='  '):
        header = f'>>> {self}'
        if verbosity <= 0:
            return header
        lines = [header, f'{prefix}caused by: {self.origin}']
        failures = getattr(self.error, 'failures', ())
        for failure in failures:
            lines.append(f'{prefix}{failure.impl}: {failure.error}')
        return '\n'.join(lines)
