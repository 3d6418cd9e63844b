"""
phase dispatch

A build walks prepare, configure, compile, test and install in that order.
Every phase has a per-implementation sub-phase (``python_<phase>``), fanned
out across the enabled implementations, and a combined sub-phase
(``python_<phase>_all``) run once with the preferred implementation.
Packages customize a build by overriding these handlers on a
:obj:`Handlers` subclass; handlers without a default that a package
doesn't define are skipped.
"""

__all__ = ("Handlers", "PhaseState", "build", "HANDLER_NAMES")

import errno
import os
import shutil
from functools import partial
from itertools import takewhile

from snakeoil.compatibility import IGNORED_EXCEPTIONS
from snakeoil.fileutils import touch
from snakeoil.osutils import ensure_dirs, listdir_files, pjoin

from . import engine, finalize
from .const import PHASES
from .errors import BrokenOverrideError, PhaseFailure, PhaseOrderError, TestFailure
from .exceptions import DistbuildException
from .log import logger
from .multibuild import foreach_impl, run_common

HANDLER_NAMES = tuple(
    f'python_{phase}{suffix}' for phase in PHASES for suffix in ('', '_all'))

_test_commands = {
    'pytest': ('pytest', '-vv', '-ra', '-p', 'no:cacheprovider'),
    'unittest': ('unittest', 'discover', '-v'),
}


class Handlers:
    """Default phase handlers.

    Every handler takes the :obj:`distbuild.session.BuildSession` and an
    :obj:`distbuild.impls.ImplementationContext`; combined handlers get the
    context of the implementation selected for them.  Overrides of
    :meth:`python_prepare_all` must call through to this implementation.
    """

    def python_prepare_all(self, session, ctx):
        if session.descriptor.in_source_build:
            for other in session.contexts():
                logger.debug('%s: copying sources to %s', other.impl, other.source_dir)
                shutil.copytree(
                    session.source_dir, other.source_dir, symlinks=True, dirs_exist_ok=True)
        if session.phase_state is not None:
            session.phase_state.reach_default_prepare()

    def python_compile(self, session, ctx):
        if session.descriptor.backend == 'no':
            logger.debug('%s: no build backend, nothing to compile', ctx.impl)
            return None
        return engine.build_and_install(session, ctx)

    def python_test(self, session, ctx):
        runner = session.descriptor.test_runner
        if runner is None:
            return
        sitedir = pjoin(ctx.install_root, ctx.impl.sitedir(session.settings.prefix).lstrip(os.sep))
        env = session.build_env(ctx, {'PYTHONPATH': sitedir})
        ret = session.runner.run_tests(ctx, _test_commands[runner], env)
        if ret != 0:
            raise TestFailure(ctx.impl, ret)

    def python_install(self, session, ctx):
        finalize.install_impl(session, ctx)

    def python_install_all(self, session, ctx):
        finalize.install_docs(session, ctx)


def _overrides(handlers, name):
    func = getattr(type(handlers), name, None)
    if func is None:
        return False
    return func is not getattr(Handlers, name, None)


class PhaseState:
    """Progress of a build through its phases.

    :ivar completed: phases finished so far, in order
    :ivar overridden: handler names the package overrides
    :ivar default_prepare_reached: whether the default prepare-all routine ran
    """

    stage_depends = {
        'prepare': None,
        'configure': 'prepare',
        'compile': 'configure',
        'test': 'compile',
        'install': 'test',
    }

    _state_names = {
        None: 'idle',
        'prepare': 'prepared',
        'configure': 'configured',
        'compile': 'compiled',
        'test': 'tested',
        'install': 'installed',
    }

    def __init__(self, handlers, state_dir=None):
        self.completed = []
        self.state_dir = state_dir
        self.overridden = frozenset(x for x in HANDLER_NAMES if _overrides(handlers, x))
        self.default_prepare_reached = False

    @property
    def state(self):
        last = self.completed[-1] if self.completed else None
        return self._state_names[last]

    @property
    def pending(self):
        return tuple(x for x in PHASES if x not in self.completed)

    def check(self, phase):
        """Verify ``phase`` may run now.

        :raise PhaseOrderError: if it already ran or its predecessor didn't
        """
        if phase not in self.stage_depends:
            raise PhaseOrderError(phase, 'unknown phase')
        if phase in self.completed:
            raise PhaseOrderError(phase, 'already completed')
        dep = self.stage_depends[phase]
        if dep is not None and dep not in self.completed:
            raise PhaseOrderError(phase, f'requires {dep!r} to complete first (state: {self.state})')

    def complete(self, phase):
        self.check(phase)
        self.completed.append(phase)
        if self.state_dir is not None:
            ensure_dirs(self.state_dir, mode=0o755, minimal=True)
            touch(self._marker(phase))

    def _marker(self, phase):
        return pjoin(self.state_dir, f'.{phase}')

    def reload(self):
        """Pick up the phases completed by earlier runs using the same state dir."""
        try:
            markers = frozenset(
                x[1:] for x in listdir_files(self.state_dir) if x.startswith('.'))
        except EnvironmentError as e:
            if e.errno not in (errno.ENOTDIR, errno.ENOENT):
                raise
            markers = frozenset()
        self.completed = list(takewhile(lambda x: x in markers, PHASES))

    def clear(self):
        """Forget every completed phase, on disk too."""
        if self.state_dir is not None:
            for phase in PHASES:
                try:
                    os.unlink(self._marker(phase))
                except FileNotFoundError:
                    pass
        self.completed = []
        self.default_prepare_reached = False

    def reach_default_prepare(self):
        self.default_prepare_reached = True


class build:
    """Drive one package build through its phases.

    Each phase method either completes the phase or raises
    :obj:`distbuild.errors.PhaseFailure`; failed builds can't progress.
    """

    def __init__(self, session):
        self.session = session
        self.descriptor = session.descriptor
        self.handlers = self.descriptor.handlers
        self._defaults = Handlers()
        self.state = PhaseState(self.handlers, state_dir=session.workdir)
        session.phase_state = self.state

    def reload_state(self):
        """Resume from the phases an earlier run in the same workdir completed."""
        self.state.reload()
        if self.state.completed:
            logger.info(
                '%s: resuming after %s', self.descriptor.pf, self.state.completed[-1])

    def _lookup(self, name):
        func = getattr(self.handlers, name, None)
        if func is None:
            func = getattr(self._defaults, name, None)
        return func

    def _callback(self, name, func, post=None):
        def callback(ctx):
            ret = func(self.session, ctx)
            if post is not None:
                post(self.session, ctx)
            return ret
        callback.__name__ = name
        return callback

    def _foreach(self, phase, name, post=None):
        func = self._lookup(name)
        if func is None:
            return {}
        return foreach_impl(
            self.session.contexts(), self._callback(name, func, post),
            phase=phase, log_dir=self.session.temp_dir)

    def _common(self, phase, name):
        func = self._lookup(name)
        if func is None:
            return None
        return run_common(
            self.session.contexts(), self._callback(name, func),
            patterns=self.descriptor.all_subphase_impls,
            precedence=self.session.settings.precedence,
            phase=phase, log_dir=self.session.temp_dir)

    def _run_phase(self, phase, body):
        self.state.check(phase)
        logger.info('>>> %s: %s', self.descriptor.pf, phase)
        try:
            body()
        except IGNORED_EXCEPTIONS:
            raise
        except PhaseFailure:
            raise
        except (DistbuildException, OSError) as e:
            raise PhaseFailure(phase, e) from e
        self.state.complete(phase)
        return True

    def prepare(self):
        """Run the combined then per-implementation prepare sub-phases."""
        return self._run_phase('prepare', self._prepare)

    def _prepare(self):
        # start over from a clean workdir
        self.session.clean()
        self.state.clear()
        self._common('prepare', 'python_prepare_all')
        if not self.state.default_prepare_reached:
            raise BrokenOverrideError(
                'python_prepare_all', f'{Handlers.__name__}.python_prepare_all')
        self._foreach('prepare', 'python_prepare')

    def configure(self):
        return self._run_phase('configure', partial(self._simple_phase, 'configure'))

    def compile(self):
        return self._run_phase('compile', self._compile)

    def _compile(self):
        self._foreach('compile', 'python_compile', post=finalize.post_compile)
        self._common('compile', 'python_compile_all')

    def test(self):
        if not self.session.settings.run_tests:
            logger.info('%s: tests disabled, skipping', self.descriptor.pf)
            return self._run_phase('test', lambda: None)
        return self._run_phase('test', partial(self._simple_phase, 'test'))

    def install(self):
        """Install every implementation, check the image and merge it."""
        return self._run_phase('install', self._install)

    def _install(self):
        self._simple_phase('install')
        session = self.session
        finalize.check_namespace_pth(session.image_dir)
        finalize.check_stray_files(
            session.image_dir, session.impls, prefix=session.settings.prefix)
        finalize.merge_tree(session.image_dir, session.destdir)
        logger.info('>>> %s: merged into %s', self.descriptor.pf, session.destdir)

    def _simple_phase(self, phase):
        self._foreach(phase, f'python_{phase}')
        self._common(phase, f'python_{phase}_all')

    def run(self, phases=None):
        """Run ``phases`` (default: every pending phase) in order."""
        if phases is None:
            phases = self.state.pending
        for phase in phases:
            getattr(self, phase)()
        return True
