import os
from unittest import mock

import pytest
from snakeoil.osutils import pjoin

from distbuild import errors, finalize
from distbuild.errors import (BackendMismatchError, BrokenOverrideError,
                              NamespacePolicyError, PhaseFailure, PhaseOrderError)
from distbuild.phases import HANDLER_NAMES, Handlers, PhaseState, build
from distbuild.pytest.plugin import FakeRunner
from distbuild.session import BuildSession


class RecordingHandlers(Handlers):
    """Handlers recording every sub-phase invocation."""

    def __init__(self):
        self.calls = []

    def python_prepare_all(self, session, ctx):
        self.calls.append(('prepare_all', ctx.impl.id))
        super().python_prepare_all(session, ctx)

    def python_prepare(self, session, ctx):
        self.calls.append(('prepare', ctx.impl.id))

    def python_configure(self, session, ctx):
        self.calls.append(('configure', ctx.impl.id))

    def python_configure_all(self, session, ctx):
        self.calls.append(('configure_all', ctx.impl.id))

    def python_compile(self, session, ctx):
        self.calls.append(('compile', ctx.impl.id))
        return super().python_compile(session, ctx)

    def python_compile_all(self, session, ctx):
        self.calls.append(('compile_all', ctx.impl.id))


class FullRecordingHandlers(RecordingHandlers):
    """Also records the test and install sub-phases."""

    def python_test(self, session, ctx):
        self.calls.append(('test', ctx.impl.id))

    def python_test_all(self, session, ctx):
        self.calls.append(('test_all', ctx.impl.id))

    def python_install(self, session, ctx):
        self.calls.append(('install', ctx.impl.id))
        super().python_install(session, ctx)

    def python_install_all(self, session, ctx):
        self.calls.append(('install_all', ctx.impl.id))
        super().python_install_all(session, ctx)


class BrokenHandlers(Handlers):

    def python_prepare_all(self, session, ctx):
        pass


class TestPhaseState:

    def test_order(self):
        state = PhaseState(Handlers())
        assert state.state == 'idle'
        with pytest.raises(PhaseOrderError):
            state.check('compile')
        state.complete('prepare')
        assert state.state == 'prepared'
        with pytest.raises(PhaseOrderError) as excinfo:
            state.complete('prepare')
        assert 'already completed' in str(excinfo.value)
        for phase in ('configure', 'compile', 'test', 'install'):
            state.complete(phase)
        assert state.state == 'installed'
        assert state.pending == ()

    def test_unknown_phase(self):
        with pytest.raises(PhaseOrderError):
            PhaseState(Handlers()).check('package')

    def test_overridden(self):
        assert PhaseState(Handlers()).overridden == frozenset()
        assert PhaseState(RecordingHandlers()).overridden == frozenset([
            'python_prepare_all', 'python_prepare', 'python_configure',
            'python_configure_all', 'python_compile', 'python_compile_all'])
        assert len(HANDLER_NAMES) == 10

    def test_markers(self, tmp_path):
        state = PhaseState(Handlers(), state_dir=str(tmp_path / 'work'))
        state.complete('prepare')
        state.complete('configure')
        assert sorted(os.listdir(tmp_path / 'work')) == ['.configure', '.prepare']

        resumed = PhaseState(Handlers(), state_dir=str(tmp_path / 'work'))
        resumed.reload()
        assert resumed.completed == ['prepare', 'configure']
        resumed.complete('compile')

        resumed.clear()
        assert resumed.completed == []
        assert os.listdir(tmp_path / 'work') == []

    def test_reload_gap(self, tmp_path):
        # markers past a missing phase are ignored
        for name in ('.prepare', '.compile', '.unrelated'):
            (tmp_path / name).touch()
        state = PhaseState(Handlers(), state_dir=str(tmp_path))
        state.reload()
        assert state.completed == ['prepare']

    def test_reload_missing_dir(self, tmp_path):
        state = PhaseState(Handlers(), state_dir=str(tmp_path / 'missing'))
        state.reload()
        assert state.completed == []

    def test_no_state_dir(self, tmp_path):
        state = PhaseState(Handlers())
        state.complete('prepare')
        state.clear()
        assert state.state == 'idle'


class TestBuild:

    def test_full_build(self, make_session, fake_runner):
        session = make_session(impls=('python3_11', 'python3_12', 'python3_13'))
        builder = build(session)
        assert builder.run()
        assert builder.state.state == 'installed'
        # pure wheel built once, reused by the rest
        assert fake_runner.built_impls == ['python3_11']
        for epython in ('python3.11', 'python3.12', 'python3.13'):
            assert os.path.exists(pjoin(
                session.destdir, f'usr/lib/{epython}/site-packages/pkg/__init__.py'))

    def test_sub_phase_order(self, make_session):
        handlers = RecordingHandlers()
        session = make_session(impls=('python3_12', 'python3_13'), handlers=handlers)
        builder = build(session)
        builder.prepare()
        builder.configure()
        builder.compile()
        assert handlers.calls == [
            ('prepare_all', 'python3_13'),
            ('prepare', 'python3_12'),
            ('prepare', 'python3_13'),
            ('configure', 'python3_12'),
            ('configure', 'python3_13'),
            ('configure_all', 'python3_13'),
            ('compile', 'python3_12'),
            ('compile', 'python3_13'),
            ('compile_all', 'python3_13'),
        ]
        assert builder.state.overridden == PhaseState(handlers).overridden

    def test_all_subphase_impls(self, make_session):
        handlers = RecordingHandlers()
        session = make_session(
            impls=('python3_12', 'python3_13'), handlers=handlers,
            all_subphase_impls=('python3_12',))
        build(session).prepare()
        assert handlers.calls[0] == ('prepare_all', 'python3_12')

    def test_native_builds(self, make_session):
        runner = FakeRunner(tag='cp312-cp312-linux_x86_64')
        session = make_session(
            runner=runner, ext=True, impls=('python3_11', 'python3_12', 'python3_13'))
        build(session).run(['prepare', 'configure', 'compile'])
        assert runner.built_impls == ['python3_11', 'python3_12', 'python3_13']

    def test_abi3_reuse(self, make_session):
        runner = FakeRunner(tag='cp311-abi3-linux_x86_64')
        session = make_session(
            runner=runner, ext=True, impls=('python3_11', 'python3_12', 'python3_13'))
        build(session).run(['prepare', 'configure', 'compile'])
        assert runner.built_impls == ['python3_11']

    def test_out_of_order(self, make_session, fake_runner):
        builder = build(make_session())
        with pytest.raises(PhaseOrderError):
            builder.compile()
        builder.prepare()
        with pytest.raises(PhaseOrderError):
            builder.compile()
        assert not fake_runner.builds

    def test_backend_mismatch(self, make_session, fake_runner):
        session = make_session(backend='hatchling')
        builder = build(session)
        with pytest.raises(PhaseFailure) as excinfo:
            builder.run()
        e = excinfo.value
        assert e.phase == 'compile'
        assert e.impls == ('python3_12', 'python3_13')
        assert isinstance(e.error.failures[0].error, BackendMismatchError)
        assert not fake_runner.builds
        # the build is aborted
        assert builder.state.completed == ['prepare', 'configure']
        with pytest.raises(PhaseOrderError):
            builder.test()
        assert not os.path.exists(session.destdir)

    def test_backend_failure(self, make_session):
        runner = FakeRunner(fail=('python3_13',))
        session = make_session(runner=runner, settings={'allow_wheel_reuse': False})
        with pytest.raises(PhaseFailure) as excinfo:
            build(session).run()
        e = excinfo.value
        assert e.impls == ('python3_13',)
        assert e.origin == 'backend'
        # sibling iterations still ran
        assert runner.built_impls == ['python3_12', 'python3_13']
        assert 'caused by: backend' in e.msg(verbosity=1)

    def test_broken_override(self, make_session):
        session = make_session(handlers=BrokenHandlers())
        with pytest.raises(PhaseFailure) as excinfo:
            build(session).prepare()
        assert excinfo.value.phase == 'prepare'
        assert isinstance(excinfo.value.error, BrokenOverrideError)
        assert 'python_prepare_all' in str(excinfo.value)

    def test_handler_failure(self, make_session):
        class Handlers_(Handlers):
            def python_configure(self, session, ctx):
                if ctx.impl.id == 'python3_12':
                    raise ValueError('bad configure')

        session = make_session(handlers=Handlers_())
        builder = build(session)
        builder.prepare()
        with pytest.raises(PhaseFailure) as excinfo:
            builder.configure()
        assert excinfo.value.impls == ('python3_12',)
        assert excinfo.value.origin == 'package'
        assert 'bad configure' in excinfo.value.msg(verbosity=1)

    def test_namespace_pth(self, make_session, fake_runner):
        fake_runner.wheel_kwargs['modules'] = {
            'pkg/__init__.py': '', 'pkg-1.0-nspkg.pth': 'import sys\n'}
        session = make_session()
        builder = build(session)
        with pytest.raises(PhaseFailure) as excinfo:
            builder.run()
        assert excinfo.value.phase == 'install'
        assert isinstance(excinfo.value.error, NamespacePolicyError)
        # the image is never merged
        assert not os.path.exists(session.destdir)

    def test_stray_files(self, make_session, fake_runner):
        fake_runner.wheel_kwargs['modules'] = {'pkg/__init__.py': '', 'tests/__init__.py': ''}
        session = make_session()
        with pytest.raises(PhaseFailure) as excinfo:
            build(session).run()
        assert isinstance(excinfo.value.error, errors.StrayFilesError)
        assert not os.path.exists(session.destdir)

    def test_no_backend(self, make_session, fake_runner):
        class Handlers_(Handlers):
            def python_install(self, session, ctx):
                path = pjoin(ctx.install_root, ctx.impl.sitedir().lstrip('/'), 'plain.py')
                os.makedirs(os.path.dirname(path))
                with open(path, 'w') as f:
                    f.write('')
                super().python_install(session, ctx)

        session = make_session(backend='no', handlers=Handlers_())
        build(session).run()
        assert not fake_runner.builds
        assert os.path.exists(pjoin(
            session.destdir, 'usr/lib/python3.12/site-packages/plain.py'))

    def test_tests(self, make_session):
        runner = FakeRunner(test_status={'python3_13': 1})
        session = make_session(runner=runner, test_runner='pytest')
        builder = build(session)
        with pytest.raises(PhaseFailure) as excinfo:
            builder.run()
        e = excinfo.value
        assert e.phase == 'test'
        assert isinstance(e.error.failures[0].error, errors.TestFailure)
        assert [x[0] for x in runner.tests] == ['python3_12', 'python3_13']
        assert runner.tests[0][1][:3] == ('pytest', '-vv', '-ra')

    def test_tests_disabled(self, make_session):
        runner = FakeRunner(test_status={'python3_13': 1})
        session = make_session(
            runner=runner, test_runner='unittest', settings={'run_tests': False})
        builder = build(session)
        builder.run()
        assert not runner.tests
        assert 'test' in builder.state.completed

    def test_in_source_build(self, make_session, fake_runner, source_tree):
        source_tree.create_file('pkg/__init__.py')
        session = make_session(in_source_build=True)
        build(session).run(['prepare', 'configure', 'compile'])
        for ctx in session.contexts():
            assert os.path.exists(pjoin(ctx.source_dir, 'pkg', '__init__.py'))
            assert os.path.exists(pjoin(ctx.source_dir, 'pyproject.toml'))
        # every copy is its own source, nothing to reuse across them
        assert fake_runner.built_impls == ['python3_12', 'python3_13']

    def test_single_impl(self, make_session, fake_runner):
        fake_runner.wheel_kwargs['entry_points'] = {'pkg-cli': 'pkg:main'}
        session = make_session(single_impl=True, impls=('python3_12', 'python3_13'))
        build(session).run()
        assert fake_runner.built_impls == ['python3_13']
        script = pjoin(session.destdir, 'usr/bin/pkg-cli')
        assert not os.path.islink(script)
        assert not os.path.exists(pjoin(session.destdir, 'usr/lib/python3.12'))

    def test_scripts_wrapped(self, make_session, fake_runner):
        fake_runner.wheel_kwargs['entry_points'] = {'pkg-cli': 'pkg:main'}
        session = make_session()
        build(session).run()
        link = pjoin(session.destdir, 'usr/bin/pkg-cli')
        assert os.readlink(link) == '../lib/python-exec/python-exec2'
        assert os.path.exists(pjoin(session.destdir, 'usr/lib/python-exec/python3.13/pkg-cli'))

    def test_sub_phase_counts(self, make_session, fake_runner):
        handlers = FullRecordingHandlers()
        session = make_session(
            impls=('python3_11', 'python3_12', 'python3_13'), handlers=handlers)
        with mock.patch('distbuild.finalize.merge_tree', wraps=finalize.merge_tree) as merge:
            build(session).run()
        names = [name for name, _impl in handlers.calls]
        for name in ('prepare', 'configure', 'compile', 'test', 'install'):
            assert names.count(name) == 3, name
        for name in ('prepare_all', 'configure_all', 'compile_all', 'test_all', 'install_all'):
            assert names.count(name) == 1, name
        # combined steps run for the preferred implementation
        assert ('install_all', 'python3_13') in handlers.calls
        dest_merges = [x for x in merge.call_args_list if x[0][1] == session.destdir]
        assert len(dest_merges) == 1
        assert fake_runner.built_impls == ['python3_11']

    def test_rebuild(self, make_session, fake_runner):
        fake_runner.wheel_kwargs['entry_points'] = {'pkg-cli': 'pkg:main'}
        session = make_session()
        build(session).run()
        stale = pjoin(session.image_dir, 'usr/share/stale')
        os.makedirs(os.path.dirname(stale))
        with open(stale, 'w') as f:
            f.write('')

        session = BuildSession(
            session.descriptor, session.workdir, session.destdir,
            settings=session.settings, runner=fake_runner)
        builder = build(session)
        assert builder.run()
        assert builder.state.state == 'installed'
        assert fake_runner.built_impls == ['python3_12', 'python3_12']
        assert not os.path.exists(pjoin(session.destdir, 'usr/share/stale'))
        assert os.path.islink(pjoin(session.destdir, 'usr/bin/pkg-cli'))

    def test_resume(self, make_session, fake_runner):
        session = make_session()
        build(session).run(['prepare', 'configure'])
        builder = build(BuildSession(
            session.descriptor, session.workdir, session.destdir,
            settings=session.settings, runner=fake_runner))
        builder.reload_state()
        assert builder.state.state == 'configured'
        builder.compile()
        assert fake_runner.built_impls == ['python3_12']
        assert builder.state.completed == ['prepare', 'configure', 'compile']

    def test_prepare_clears_markers(self, make_session):
        session = make_session()
        build(session).run(['prepare', 'configure', 'compile'])
        assert os.path.exists(pjoin(session.workdir, '.compile'))
        build(session).prepare()
        assert not os.path.exists(pjoin(session.workdir, '.compile'))
        assert os.path.exists(pjoin(session.workdir, '.prepare'))
