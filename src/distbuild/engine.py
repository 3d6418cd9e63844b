"""
backend invocation: build wheels and install them into staging roots
"""

__all__ = (
    "PythonRunner", "build_and_install", "install_artifact", "build_wheel",
    "resolve_entry_point",
)

import json
import os

from snakeoil.osutils import ensure_dirs, pjoin
from snakeoil.process.spawn import spawn

from . import backends, wheel
from .cache import try_reuse
from .errors import ArtifactInstallError, BackendBuildError
from .log import logger

# run by the target interpreter; argv: backend, backend-path (json),
# wheel dir, config settings (json), output file
_BUILD_WHEEL_SCRIPT = """\
import importlib, json, sys
backend_name, backend_path, wheel_dir, config, output = sys.argv[1:6]
sys.path[:0] = json.loads(backend_path)
module, _, obj = backend_name.partition(':')
backend = importlib.import_module(module)
for attr in filter(None, obj.split('.')):
    backend = getattr(backend, attr)
name = backend.build_wheel(wheel_dir, json.loads(config) or None)
with open(output, 'w') as f:
    f.write(name)
"""


class PythonRunner:
    """Run the target interpreter on behalf of a build."""

    def build_wheel(self, ctx, entry_point, backend_path, wheel_dir, config, env):
        """Invoke a backend's ``build_wheel`` hook.

        :return: wheel filename reported by the backend, '' if none was
        :raise BackendBuildError: on nonzero exit status
        """
        output = pjoin(ctx.build_dir, '.wheel-name')
        if os.path.exists(output):
            os.unlink(output)
        cmd = [
            ctx.python, '-c', _BUILD_WHEEL_SCRIPT, entry_point,
            json.dumps(list(backend_path)), wheel_dir, json.dumps(config), output,
        ]
        ret = spawn(cmd, env=env, cwd=ctx.source_dir)
        if ret != 0:
            raise BackendBuildError(entry_point, f'backend exited with status {ret}')
        try:
            with open(output) as f:
                return f.read().strip()
        except FileNotFoundError:
            return ''

    def compile_bytecode(self, ctx, paths, env):
        """Byte-compile installed modules for every optimization level."""
        cmd = [ctx.python, '-m', 'compileall', '-q', '-f', '-j', '1',
               '-o', '0', '-o', '1', '-o', '2']
        cmd.extend(paths)
        return spawn(cmd, env=env) == 0

    def run_tests(self, ctx, args, env):
        """Run a test module (e.g. ``pytest``) with the target interpreter.

        :return: exit status
        """
        return spawn([ctx.python, '-m'] + list(args), env=env, cwd=ctx.source_dir)


def _setuptools_extra_config(session, ctx):
    path = pjoin(ctx.build_dir, 'distbuild-setuptools.cfg')
    with open(path, 'w') as f:
        f.write('[build]\n')
        f.write(f"build_base = {pjoin(ctx.build_dir, 'build')}\n")
        f.write('\n[build_ext]\n')
        f.write(f'parallel = {session.settings.jobs}\n')
    return {'DIST_EXTRA_CONFIG': path}


def install_artifact(session, path, ctx):
    """Install a wheel into the staging root of ``ctx``."""
    prefix = session.settings.prefix
    wheel.install_wheel(path, ctx.install_root, ctx.impl, ctx.python, prefix=prefix)
    if session.settings.compile_bytecode:
        sitedir = pjoin(ctx.install_root, ctx.impl.sitedir(prefix).lstrip(os.sep))
        if not session.runner.compile_bytecode(ctx, [sitedir], session.build_env(ctx)):
            raise ArtifactInstallError(
                path, f'{ctx.impl}: byte-compiling {sitedir} failed', origin='backend')


def resolve_entry_point(session, ctx):
    """Find the source tree's backend and check it against the declared one.

    :return: tuple of (entry point to invoke, backend-path sequence)
    """
    descriptor = session.descriptor
    found, backend_path = backends.find_source_backend(ctx.source_dir, descriptor.backend)
    entry_point = backends.verify_declared_backend(
        descriptor.backend, found, warn_once=session.warn_once)
    return entry_point, backend_path


def build_wheel(session, ctx, entry_point, backend_path=()):
    """Invoke the backend, returning the built wheel's path."""
    descriptor = session.descriptor
    settings = session.settings
    config = backends.translate_args(
        descriptor.backend, descriptor.args, build_dir=ctx.build_dir,
        jobs=settings.jobs, load_average=settings.load_average, debug=session.debug)

    extra_env = {}
    if backends.resolve_backend(descriptor.backend) is backends.SETUPTOOLS:
        extra_env.update(_setuptools_extra_config(session, ctx))

    ensure_dirs(ctx.wheel_dir, mode=0o755, minimal=True)
    logger.info('%s: building wheel via %s', ctx.impl, entry_point)
    name = session.runner.build_wheel(
        ctx, entry_point, backend_path, ctx.wheel_dir, config,
        session.build_env(ctx, extra_env))
    if not name:
        raise BackendBuildError(entry_point, 'no wheel name returned')
    path = pjoin(ctx.wheel_dir, name)
    if not os.path.isfile(path):
        raise BackendBuildError(entry_point, f'reported wheel does not exist: {path!r}')
    return path


def build_and_install(session, ctx):
    """Produce a wheel for ``ctx`` (reusing one when possible) and install it.

    :return: path of the installed wheel
    :raise BackendBuildError: if the backend fails; never retried
    """
    entry_point, backend_path = resolve_entry_point(session, ctx)
    path = try_reuse(session, ctx)
    if path is not None:
        return path
    path = build_wheel(session, ctx, entry_point, backend_path)
    install_artifact(session, path, ctx)
    session.record_wheel(path, ctx.source_dir)
    return path
