import sys
import textwrap

import pytest

from distbuild.descriptor import BuildDescriptor, DescriptorError, load_descriptor
from distbuild.errors import InvalidImplementation, UnknownBackendError
from distbuild.phases import Handlers


class TestBuildDescriptor:

    def test_defaults(self, tmp_path):
        descriptor = BuildDescriptor('foo', '1.0', 'setuptools', ['python3_12'], str(tmp_path))
        assert descriptor.pf == 'foo-1.0'
        assert str(descriptor) == 'foo-1.0'
        assert descriptor.impls == ('python3_12',)
        assert descriptor.all_subphase_impls == ('*',)
        assert not descriptor.ext
        assert not descriptor.single_impl
        assert descriptor.test_runner is None
        assert isinstance(descriptor.handlers, Handlers)

    def test_immutable(self, tmp_path):
        descriptor = BuildDescriptor('foo', '1.0', 'setuptools', ['python3_12'], str(tmp_path))
        with pytest.raises(AttributeError):
            descriptor.ext = True

    def test_invalid(self, tmp_path):
        with pytest.raises(UnknownBackendError):
            BuildDescriptor('foo', '1.0', 'distutils', ['python3_12'], str(tmp_path))
        with pytest.raises(InvalidImplementation):
            BuildDescriptor('foo', '1.0', 'setuptools', ['jython2_7'], str(tmp_path))
        with pytest.raises(ValueError):
            BuildDescriptor('foo', '1.0', 'setuptools', [], str(tmp_path))
        with pytest.raises(ValueError):
            BuildDescriptor('foo', '1.0', 'setuptools', ['python3_12'], str(tmp_path),
                            test_runner='nose')


class TestLoadDescriptor:

    def _write(self, tmp_path, data):
        path = tmp_path / 'build.toml'
        path.write_text(textwrap.dedent(data))
        return str(path)

    def test_load(self, tmp_path):
        path = self._write(tmp_path, """\
            name = "foo"
            version = "1.2"
            backend = "meson-python"
            impls = ["python3_12", "python3_13"]
            source = "foo-1.2"
            ext = true
            args = ["-Dblas=openblas"]
            single-impl = false
            all-subphase-impls = ["python3*"]
            test-runner = "pytest"
            docs = ["README.md"]
        """)
        descriptor = load_descriptor(path)
        assert descriptor.pf == 'foo-1.2'
        assert descriptor.backend == 'meson-python'
        assert descriptor.impls == ('python3_12', 'python3_13')
        assert descriptor.source_dir == str(tmp_path / 'foo-1.2')
        assert descriptor.ext
        assert descriptor.args == ('-Dblas=openblas',)
        assert descriptor.all_subphase_impls == ('python3*',)
        assert descriptor.test_runner == 'pytest'
        assert descriptor.docs == ('README.md',)

    def test_handlers(self, tmp_path, monkeypatch):
        (tmp_path / 'foo_build.py').write_text(textwrap.dedent("""\
            from distbuild.phases import Handlers

            class FooHandlers(Handlers):
                def python_compile_all(self, session, ctx):
                    pass
        """))
        monkeypatch.syspath_prepend(str(tmp_path))
        monkeypatch.delitem(sys.modules, 'foo_build', raising=False)
        path = self._write(tmp_path, """\
            name = "foo"
            version = "1.2"
            backend = "setuptools"
            impls = ["python3_12"]
            handlers = "foo_build:FooHandlers"
        """)
        descriptor = load_descriptor(path)
        assert type(descriptor.handlers).__name__ == 'FooHandlers'
        assert descriptor.source_dir == str(tmp_path)

    @pytest.mark.parametrize(("data", "error"), (
        ('name = "foo"\nversion = "1"\nbackend = "setuptools"\n', "missing required key: 'impls'"),
        ('name = "foo"\nversion = "1"\nbackend = "setuptools"\nimpls = ["python3_12"]\n'
         'bogus = 1\n', 'unknown keys: bogus'),
        ('name = "foo"\nversion = "1"\nbackend = "setuptoolz"\nimpls = ["python3_12"]\n',
         "unknown build backend: 'setuptoolz'"),
        ('name = "foo"\nversion = "1"\nbackend = "setuptools"\nimpls = ["python3_12"]\n'
         'handlers = "foo"\n', 'handlers must be'),
        ('name = "foo"\nversion = "1"\nbackend = "setuptools"\nimpls = ["python3_12"]\n'
         'handlers = "missing_module_xyz:Handlers"\n', 'failed loading handlers'),
        ('name = "foo\n', 'invalid TOML'),
    ))
    def test_errors(self, tmp_path, data, error):
        path = self._write(tmp_path, data)
        with pytest.raises(DescriptorError) as excinfo:
            load_descriptor(path)
        assert error in str(excinfo.value)
        assert excinfo.value.path == path

    def test_missing_file(self, tmp_path):
        with pytest.raises(DescriptorError) as excinfo:
            load_descriptor(str(tmp_path / 'missing.toml'))
        assert 'no such file' in str(excinfo.value)
