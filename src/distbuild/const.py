"""
Internal constants.
"""

import os
import sys

from snakeoil import mappings

from . import __title__

osp = os.path
_module = sys.modules[__name__]


def _GET_CONST(attr, default_value, allow_environment_override=False):
    consts = mappings.ProxiedAttrs(_module)
    is_tuple = not isinstance(default_value, str)
    if is_tuple:
        default_value = tuple(x % consts for x in default_value)
    else:
        default_value %= consts

    result = default_value
    if allow_environment_override:
        result = os.environ.get(f'DISTBUILD_OVERRIDE_{attr}', result)
        if is_tuple and isinstance(result, str):
            result = result.split()
    if is_tuple:
        result = tuple(result)
    return result


USER_CONFIG_PATH = osp.join(
    os.environ.get('XDG_CONFIG_HOME', osp.expanduser('~/.config')), __title__)
USER_CONF_FILE = osp.join(USER_CONFIG_PATH, 'distbuild.conf')
SYSTEM_CONF_FILE = '/etc/distbuild/distbuild.conf'

# build phases, in execution order
PHASES = ('prepare', 'configure', 'compile', 'test', 'install')

PREFIX = _GET_CONST('PREFIX', '/usr', allow_environment_override=True)
# every implementation known, least to most preferred; the combined ("all")
# sub-phases pick the last entry that is enabled for the package
PYTHON_IMPLS = _GET_CONST(
    'PYTHON_IMPLS',
    ('pypy3_11', 'python3_13t', 'python3_14t',
     'python3_11', 'python3_12', 'python3_13', 'python3_14'),
    allow_environment_override=True)
INTERPRETER_DIR = _GET_CONST('INTERPRETER_DIR', '%(PREFIX)s/bin')
SCRIPT_ROOT = _GET_CONST('SCRIPT_ROOT', '%(PREFIX)s/lib/python-exec')
DISPATCH_EXEC = _GET_CONST(
    'DISPATCH_EXEC', '%(SCRIPT_ROOT)s/python-exec2', allow_environment_override=True)

# frontend every PEP 517 build pulls in
WHEEL_FRONTEND_DEP = '>=dev-python/gpep517-16'

# metadata payload that has no runtime purpose; matched case-insensitively
# against paths relative to the *.dist-info directory
DIST_INFO_JUNK = (
    'AUTHORS*', 'CHANGELOG*', 'CODE_OF_CONDUCT*', 'COPYING*', '*LICEN[CS]E*',
    'NOTICE*', '*Apache*', '*GPL*', '*MIT*', 'RECORD', 'WHEEL',
    'license_files', 'license_files/*', 'licenses', 'licenses/*',
    'sboms', 'sboms/*',
)

# namespace compatibility markers that must never be installed
NSPKG_PTH_GLOB = '*-nspkg.pth'

# top-level site-packages entries that are always stray
FORBIDDEN_TOPLEVEL_DIRS = (
    'examples', 'test', 'tests', '.pytest_cache', '.hypothesis', '_trial_temp')
# suffixes allowed for top-level site-packages files
ALLOWED_TOPLEVEL_SUFFIXES = ('.py', '.pyc', '.pyd', '.pth', '.so', '.typed', '.jar')
