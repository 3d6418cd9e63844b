"""
per-package build session

A session holds everything shared by the fan-out iterations of one package
build: the wheel records consulted for artifact reuse, the implementation
contexts, the shared install image and the once-per-build warnings.  A new
session is created for every package build.
"""

__all__ = ("BuildSession", "WheelRecord")

import os
import shutil
from collections import namedtuple

from snakeoil.osutils import ensure_dirs, pjoin

from .config import BuildSettings
from .impls import ImplementationContext, get_impl, preferred_impl
from .log import logger

WheelRecord = namedtuple('WheelRecord', ('path', 'source_dir'))


class BuildSession:

    def __init__(self, descriptor, workdir, destdir, settings=None, runner=None):
        """
        :param descriptor: :obj:`distbuild.descriptor.BuildDescriptor` being built
        :param workdir: scratch directory holding build dirs, the image and logs
        :param destdir: destination tree the image gets merged into
        :param settings: :obj:`distbuild.config.BuildSettings` instance
        :param runner: :obj:`distbuild.engine.PythonRunner` instance
        """
        if settings is None:
            settings = BuildSettings()
        if runner is None:
            from .engine import PythonRunner
            runner = PythonRunner()
        self.descriptor = descriptor
        self.settings = settings
        self.runner = runner
        self.workdir = os.path.abspath(workdir)
        self.destdir = os.path.abspath(destdir)
        self.image_dir = pjoin(self.workdir, 'image')
        self.temp_dir = pjoin(self.workdir, 'temp')
        self.debug = settings.debug
        # set by the phase dispatcher driving this session
        self.phase_state = None
        self.reset()

    def reset(self):
        """Forget per-build state; wheel records never carry across builds."""
        self.wheels = {}
        self._contexts = {}
        self._warned = set()

    def clean(self):
        """Wipe the image, logs and build directories left by earlier builds."""
        paths = [self.image_dir, self.temp_dir]
        paths.extend(self._build_dir(impl) for impl in self.impls)
        for path in paths:
            if os.path.lexists(path):
                logger.debug('%s: removing %s', self.descriptor.pf, path)
                shutil.rmtree(path)
        self.reset()

    def _build_dir(self, impl):
        return pjoin(self.workdir, f'{self.descriptor.pf}-{impl.id}')

    @property
    def source_dir(self):
        return self.descriptor.source_dir

    @property
    def impls(self):
        """Implementations iterated over, in declared order."""
        declared = tuple(get_impl(x) for x in self.descriptor.impls)
        if not self.descriptor.single_impl:
            return declared
        target = self.settings.single_target
        if target is not None:
            impl = get_impl(target)
            if impl in declared:
                return (impl,)
            logger.warning(
                '%s: single target %s is not declared, using the preferred implementation',
                self.descriptor.pf, target)
        return (preferred_impl(declared, precedence=self.settings.precedence),)

    def context(self, impl):
        """Return the context for ``impl``, creating its directories on first use."""
        impl = get_impl(impl)
        ctx = self._contexts.get(impl.id)
        if ctx is None:
            build_dir = self._build_dir(impl)
            if self.descriptor.in_source_build:
                source_dir = build_dir
            else:
                source_dir = self.source_dir
            ctx = ImplementationContext(
                impl=impl,
                python=self.settings.interpreter(impl),
                build_dir=build_dir,
                install_root=pjoin(build_dir, 'install'),
                source_dir=source_dir)
            ensure_dirs(ctx.build_dir, mode=0o755, minimal=True)
            self._contexts[impl.id] = ctx
        return ctx

    def contexts(self):
        return [self.context(impl) for impl in self.impls]

    def record_wheel(self, path, source_dir):
        """Register a freshly built wheel for reuse by later iterations."""
        existing = self.wheels.get(path)
        if existing is not None and existing != source_dir:
            raise ValueError(f'wheel {path!r} already recorded for {existing!r}')
        self.wheels[path] = source_dir

    def records(self):
        return [WheelRecord(path, source_dir) for path, source_dir in self.wheels.items()]

    def warn_once(self, key, msg, *args):
        """Log a warning at most once per build."""
        if key in self._warned:
            return False
        self._warned.add(key)
        logger.warning(msg, *args)
        return True

    def build_env(self, ctx, extra=None):
        """Environment for processes run on behalf of ``ctx``."""
        env = dict(os.environ)
        prefix = self.settings.prefix.lstrip(os.sep)
        env['PATH'] = os.pathsep.join(
            [pjoin(ctx.install_root, prefix, 'bin'), env.get('PATH', os.defpath)])
        env['EPYTHON'] = ctx.epython
        env['PYTHON'] = ctx.python
        env['BUILD_DIR'] = ctx.build_dir
        env['PYTHONDONTWRITEBYTECODE'] = '1'
        if extra:
            env.update(extra)
        return env
