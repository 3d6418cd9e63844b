"""build a python package for every enabled implementation"""

import os

from snakeoil.cli import arghparse
from snakeoil.cli.exceptions import ExitException
from snakeoil.osutils import pjoin
from snakeoil.strings import pluralism

from .. import const
from ..commandline import ArgumentParser
from ..config import ConfigError, load_settings
from ..descriptor import DescriptorError, load_descriptor
from ..errors import PhaseFailure, PhaseOrderError
from ..phases import build
from ..session import BuildSession

argparser = ArgumentParser(description=__doc__, script=(__file__, __name__))
argparser.add_argument(
    'descriptor', type=arghparse.existent_path,
    help="package build descriptor (TOML)")
argparser.add_argument(
    'phase', nargs='+',
    help="phases to run; 'clean' wipes the workdir first, "
         "'deps' lists the package's build dependencies")
build_opts = argparser.add_argument_group("build options")
build_opts.add_argument(
    '--workdir', metavar='PATH', type=os.path.abspath,
    help="scratch directory (defaults to 'work' next to the descriptor)")
build_opts.add_argument(
    '--destdir', metavar='PATH', type=os.path.abspath,
    help="tree the install image is merged into (defaults to WORKDIR/destdir)")
build_opts.add_argument(
    '--no-auto', action='store_true', default=False,
    help="run just the specified phases, resuming from the phases earlier "
         "runs completed in the workdir; "
         "it's up to the invoker to get the order right")

_pseudo_phases = ('clean', 'deps')


@argparser.bind_final_check
def _validate_args(parser, namespace):
    unknown = [x for x in namespace.phase
               if x not in const.PHASES and x not in _pseudo_phases]
    if unknown:
        parser.error("unknown phase%s: %s" % (
            pluralism(unknown), ', '.join(map(repr, unknown))))

    path = os.path.abspath(namespace.descriptor)
    try:
        namespace.descriptor = load_descriptor(path)
        namespace.settings = load_settings(namespace.config_file)
    except (ConfigError, DescriptorError) as e:
        parser.error(str(e))

    if namespace.workdir is None:
        namespace.workdir = pjoin(os.path.dirname(path), 'work')
    if namespace.destdir is None:
        namespace.destdir = pjoin(namespace.workdir, 'destdir')

    phases = [x for x in namespace.phase if x not in _pseudo_phases]
    namespace.clean = 'clean' in namespace.phase
    namespace.show_deps = 'deps' in namespace.phase
    if phases and not namespace.no_auto:
        # pull in every preceding phase
        last = max(const.PHASES.index(x) for x in phases)
        phases = list(const.PHASES[:last + 1])
    namespace.phase = phases


@argparser.bind_main_func
def main(options, out, err):
    descriptor = options.descriptor

    if options.show_deps:
        for dep in descriptor.distutils_deps:
            out.write(dep)
    if not (options.phase or options.clean):
        return 0

    session = BuildSession(
        descriptor, options.workdir, options.destdir, settings=options.settings)
    builder = build(session)
    if options.clean:
        try:
            session.clean()
            builder.state.clear()
        except OSError as e:
            raise ExitException(f'failed cleaning {session.workdir}: {e}') from e
    elif options.no_auto:
        builder.reload_state()
    try:
        for phase in options.phase:
            out.write(f'executing phase {phase}')
            getattr(builder, phase)()
    except PhaseFailure as e:
        raise ExitException(e.msg(verbosity=options.verbosity)) from e
    except PhaseOrderError as e:
        raise ExitException(f'caught exception executing phase {phase}: {e}') from e
    if 'install' in options.phase:
        out.write(f'{descriptor.pf} merged into {session.destdir}')
    return 0
