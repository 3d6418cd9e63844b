import os
import zipfile

from snakeoil.osutils import pjoin

import pytest

from distbuild.config import BuildSettings
from distbuild.descriptor import BuildDescriptor
from distbuild.errors import BackendBuildError
from distbuild.session import BuildSession


def native_tag(impl):
    """Return the platform specific wheel tag an implementation builds."""
    major, minor = impl.version
    if impl.is_cpython:
        abi = f'cp{major}{minor}{"t" if impl.freethreading else ""}'
        return f'cp{major}{minor}-{abi}-linux_x86_64'
    return f'pp{major}{minor}-pypy{major}{minor}_pp73-linux_x86_64'


def make_wheel(wheel_dir, name, version, tag='py3-none-any', modules=None,
               scripts=None, entry_points=None, extra=None):
    """Write a wheel into ``wheel_dir``, returning its filename.

    :param modules: mapping of archive path to content, installed into
        site-packages; defaults to a single package ``__init__.py``
    :param scripts: mapping of script name to content stored under
        ``.data/scripts``
    :param entry_points: mapping of console script name to ``module:attr``
    :param extra: mapping of archive path to content added verbatim
    """
    dist = name.replace('-', '_')
    filename = f'{dist}-{version}-{tag}.whl'
    dist_info = f'{dist}-{version}.dist-info'
    if modules is None:
        modules = {f'{dist}/__init__.py': f"__version__ = '{version}'\n"}

    os.makedirs(wheel_dir, exist_ok=True)
    with zipfile.ZipFile(pjoin(wheel_dir, filename), 'w') as zf:
        for path, data in modules.items():
            zf.writestr(path, data)
        for script, data in (scripts or {}).items():
            info = zipfile.ZipInfo(f'{dist}-{version}.data/scripts/{script}')
            info.external_attr = 0o755 << 16
            zf.writestr(info, data)
        for path, data in (extra or {}).items():
            zf.writestr(path, data)
        zf.writestr(
            f'{dist_info}/METADATA',
            f'Metadata-Version: 2.1\nName: {name}\nVersion: {version}\n')
        zf.writestr(
            f'{dist_info}/WHEEL',
            f'Wheel-Version: 1.0\nGenerator: distbuild-tests\nTag: {tag}\n')
        zf.writestr(f'{dist_info}/LICENSE', 'BSD\n')
        if entry_points:
            lines = ['[console_scripts]']
            lines.extend(f'{k} = {v}' for k, v in entry_points.items())
            zf.writestr(f'{dist_info}/entry_points.txt', '\n'.join(lines) + '\n')
        zf.writestr(f'{dist_info}/RECORD', '')
    return filename


class FakeRunner:
    """Stand-in for :obj:`distbuild.engine.PythonRunner` producing real wheels.

    :param tag: wheel tag, or a callable taking the implementation
    :param fail: implementation ids whose backend invocations fail
    :param test_status: mapping of implementation id to test exit status
    :ivar builds: ``(impl id, entry point, config)`` per backend invocation
    """

    def __init__(self, name='pkg', version='1.0', tag='py3-none-any', fail=(),
                 test_status=None, **wheel_kwargs):
        self.name = name
        self.version = version
        self.tag = tag
        self.fail = frozenset(fail)
        self.test_status = dict(test_status or {})
        self.wheel_kwargs = wheel_kwargs
        self.builds = []
        self.compiled = []
        self.tests = []

    @property
    def built_impls(self):
        return [impl_id for impl_id, _entry_point, _config in self.builds]

    def build_wheel(self, ctx, entry_point, backend_path, wheel_dir, config, env):
        self.builds.append((ctx.impl.id, entry_point, config))
        if ctx.impl.id in self.fail:
            raise BackendBuildError(entry_point, 'backend exited with status 1')
        tag = self.tag(ctx.impl) if callable(self.tag) else self.tag
        return make_wheel(wheel_dir, self.name, self.version, tag, **self.wheel_kwargs)

    def compile_bytecode(self, ctx, paths, env):
        self.compiled.append((ctx.impl.id, tuple(paths)))
        return True

    def run_tests(self, ctx, args, env):
        self.tests.append((ctx.impl.id, tuple(args)))
        return self.test_status.get(ctx.impl.id, 0)


class SourceTree:
    """Python package source tree declaring its build backend."""

    def __init__(self, path, build_backend='setuptools.build_meta',
                 backend_path=(), setup_py=False):
        self.path = path
        os.makedirs(path, exist_ok=True)
        if build_backend is not None:
            with open(pjoin(path, 'pyproject.toml'), 'w') as f:
                f.write('[build-system]\n')
                f.write('requires = []\n')
                f.write(f'build-backend = "{build_backend}"\n')
                if backend_path:
                    paths = ', '.join(f'"{x}"' for x in backend_path)
                    f.write(f'backend-path = [{paths}]\n')
        if setup_py:
            self.create_file('setup.py', 'from setuptools import setup\nsetup()\n')

    def create_file(self, relpath, data=''):
        path = pjoin(self.path, relpath)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w') as f:
            f.write(data)
        return path


@pytest.fixture
def source_tree(tmp_path_factory):
    """Create a setuptools based source tree."""
    return SourceTree(str(tmp_path_factory.mktemp('source')))


@pytest.fixture
def make_source_tree(tmp_path_factory):
    """Factory for source tree creation."""
    def _make_source_tree(path=None, **kwargs):
        path = str(tmp_path_factory.mktemp('source')) if path is None else path
        return SourceTree(path, **kwargs)
    return _make_source_tree


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def make_session(tmp_path_factory, source_tree, fake_runner):
    """Factory for build sessions.

    Keyword arguments other than ``settings`` and ``runner`` are passed to
    :obj:`distbuild.descriptor.BuildDescriptor`; ``settings`` may be a
    mapping of :obj:`distbuild.config.BuildSettings` arguments.
    """
    def _make_session(settings=None, runner=None, **kwargs):
        kwargs.setdefault('name', 'pkg')
        kwargs.setdefault('version', '1.0')
        kwargs.setdefault('backend', 'setuptools')
        kwargs.setdefault('impls', ('python3_12', 'python3_13'))
        kwargs.setdefault('source_dir', source_tree.path)
        descriptor = BuildDescriptor(**kwargs)

        if not isinstance(settings, BuildSettings):
            settings = BuildSettings(**dict({'jobs': 2}, **(settings or {})))
        workdir = tmp_path_factory.mktemp('work')
        return BuildSession(
            descriptor, str(workdir), str(workdir / 'destdir'), settings=settings,
            runner=fake_runner if runner is None else runner)
    return _make_session
