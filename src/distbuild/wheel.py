"""
wheel artifacts: filename tags and unpacking into a staging root
"""

__all__ = ("WheelName", "install_wheel", "prune_dist_info")

import configparser
import fnmatch
import os
import re
import shutil
import zipfile

from packaging.utils import canonicalize_name, parse_wheel_filename
from snakeoil.osutils import ensure_dirs, normpath, pjoin

from . import const
from .errors import ArtifactInstallError
from .log import logger

_cpython_tag_re = re.compile(r'^cp(?P<major>\d)(?P<minor>\d+)$')

_script_template = """\
#!{python}
import sys
from {module} import {import_name}
if __name__ == '__main__':
    sys.exit({call}())
"""


class WheelName:
    """Parsed wheel filename, exposing its compatibility tags.

    :ivar name: canonicalized distribution name
    :ivar version: :obj:`packaging.version.Version`
    :ivar build: build tag, an empty tuple if there is none
    :ivar tags: frozenset of :obj:`packaging.tags.Tag`, compressed tag sets expanded
    """

    __slots__ = ('filename', 'name', 'version', 'build', 'tags')

    def __init__(self, filename):
        filename = os.path.basename(filename)
        self.filename = filename
        self.name, self.version, self.build, self.tags = parse_wheel_filename(filename)

    @property
    def distribution(self):
        """Distribution name as used for on-disk directories."""
        return self.name.replace('-', '_')

    @property
    def python_tags(self):
        return frozenset(t.interpreter for t in self.tags)

    @property
    def abi_tags(self):
        return frozenset(t.abi for t in self.tags)

    @property
    def platform_tags(self):
        return frozenset(t.platform for t in self.tags)

    @property
    def is_pure(self):
        """Universal pure python 3 wheel (``py3-none-any``)."""
        return any(
            t.interpreter == 'py3' and t.abi == 'none' and t.platform == 'any'
            for t in self.tags)

    @property
    def is_stable_abi(self):
        return 'abi3' in self.abi_tags

    @property
    def stable_abi_minimum(self):
        """Oldest CPython version an ``abi3`` wheel loads on, e.g. ``(3, 11)``.

        None if the wheel doesn't target the stable ABI of any CPython version.
        """
        versions = []
        for tag in self.tags:
            m = _cpython_tag_re.match(tag.interpreter)
            if tag.abi == 'abi3' and m is not None:
                versions.append((int(m.group('major')), int(m.group('minor'))))
        return min(versions, default=None)

    def find_dist_info(self, members):
        """Locate the ``*.dist-info`` directory among archive member names.

        Older wheels don't normalize the directory name, so names are
        matched after canonicalization.

        :return: directory name, or None if there is none
        """
        found = set()
        for member in members:
            top = member.split('/', 1)[0]
            if not top.endswith('.dist-info'):
                continue
            dist, _, _version = top[:-len('.dist-info')].rpartition('-')
            if canonicalize_name(dist) == self.name:
                found.add(top)
        if len(found) > 1:
            raise ArtifactInstallError(
                self.filename, f"multiple .dist-info directories: {', '.join(sorted(found))}")
        return found.pop() if found else None

    def __str__(self):
        return self.filename


def _safe_target(root, relpath, path):
    target = normpath(pjoin(root, relpath))
    if not (target + os.sep).startswith(normpath(root) + os.sep):
        raise ArtifactInstallError(path, f'member escapes install root: {relpath!r}')
    return target


def _write_member(zf, info, target, path):
    ensure_dirs(os.path.dirname(target), mode=0o755, minimal=True)
    try:
        with zf.open(info) as src, open(target, 'wb') as dest:
            shutil.copyfileobj(src, dest)
    except OSError as e:
        raise ArtifactInstallError(path, f'failed writing {target!r}: {e}') from e
    mode = (info.external_attr >> 16) & 0o777
    if mode & 0o111:
        os.chmod(target, 0o755)


def _rewrite_shebang(target, python):
    with open(target, 'rb') as f:
        data = f.read()
    if not data.startswith(b'#!python'):
        return
    first, sep, rest = data.partition(b'\n')
    with open(target, 'wb') as f:
        f.write(b'#!' + python.encode() + first[len(b'#!python'):] + sep + rest)
    os.chmod(target, 0o755)


def _entry_point_scripts(zf, dist_info, path):
    try:
        data = zf.read(f'{dist_info}/entry_points.txt').decode()
    except KeyError:
        return
    parser = configparser.ConfigParser(delimiters=('=',), interpolation=None)
    parser.optionxform = str
    parser.read_string(data)
    for section in ('console_scripts', 'gui_scripts'):
        if not parser.has_section(section):
            continue
        for name, value in parser.items(section):
            module, _, attr = value.partition(':')
            module = module.strip()
            attr = attr.split('[')[0].strip()
            if not module or not attr:
                raise ArtifactInstallError(
                    path, f'invalid entry point {name!r}: {value!r} is not "module:attribute"')
            yield name, module, attr


def install_wheel(path, root, impl, python, prefix=const.PREFIX):
    """Unpack a wheel into a staging root.

    Library contents land in the implementation's site-packages directory,
    ``.data/scripts`` and entry point scripts in ``<prefix>/bin`` with their
    shebangs pointing at ``python``, headers in the implementation's include
    directory and ``.data/data`` relative to ``prefix``.  Non-functional
    metadata is pruned afterwards.

    :param path: wheel file path
    :param root: staging root
    :param impl: :obj:`distbuild.impls.Implementation` installing for
    :param python: interpreter path used for script shebangs
    :return: absolute path of the installed ``*.dist-info`` directory
    :raise ArtifactInstallError: on malformed wheels or I/O failures
    """
    name = WheelName(path)
    rel_prefix = prefix.lstrip(os.sep)
    sitedir = pjoin(root, impl.sitedir(prefix).lstrip(os.sep))
    bindir = pjoin(root, rel_prefix, 'bin')
    data_dirs = {
        'purelib': sitedir,
        'platlib': sitedir,
        'scripts': bindir,
        'headers': pjoin(root, impl.includedir(prefix).lstrip(os.sep), name.distribution),
        'data': pjoin(root, rel_prefix),
    }

    try:
        zf = zipfile.ZipFile(path)
    except (OSError, zipfile.BadZipFile) as e:
        raise ArtifactInstallError(path, str(e)) from e

    with zf:
        members = [x for x in zf.infolist() if not x.is_dir()]
        dist_info_name = name.find_dist_info(x.filename for x in members)
        if dist_info_name is None:
            raise ArtifactInstallError(path, f'missing {name.distribution}-*.dist-info')
        data_dir = dist_info_name[:-len('.dist-info')] + '.data'

        for info in members:
            relpath = info.filename
            scripts = False
            if relpath.startswith(data_dir + '/'):
                try:
                    _, key, relpath = relpath.split('/', 2)
                except ValueError as e:
                    raise ArtifactInstallError(
                        path, f'stray file in {data_dir}: {relpath!r}') from e
                base = data_dirs.get(key)
                if base is None:
                    raise ArtifactInstallError(path, f'unknown data directory: {key!r}')
                scripts = key == 'scripts'
            else:
                base = sitedir
            target = _safe_target(base, relpath, path)
            _write_member(zf, info, target, path)
            if scripts:
                _rewrite_shebang(target, python)

        for script, module, attr in _entry_point_scripts(zf, dist_info_name, path):
            import_name = attr.split('.')[0]
            target = _safe_target(bindir, script, path)
            ensure_dirs(bindir, mode=0o755, minimal=True)
            with open(target, 'w') as f:
                f.write(_script_template.format(
                    python=python, module=module, import_name=import_name, call=attr))
            os.chmod(target, 0o755)

    dist_info = pjoin(sitedir, dist_info_name)
    prune_dist_info(dist_info)
    logger.debug('installed %s into %s', name, root)
    return dist_info


def prune_dist_info(dist_info, patterns=const.DIST_INFO_JUNK):
    """Remove license texts, changelogs and other payload with no runtime use.

    :raise ArtifactInstallError: if anything matching can't be removed
    """
    patterns = [p.lower() for p in patterns]
    doomed = []
    for dirpath, dirnames, filenames in os.walk(dist_info):
        for entry in dirnames + filenames:
            full = pjoin(dirpath, entry)
            relpath = os.path.relpath(full, dist_info).lower()
            if any(fnmatch.fnmatchcase(relpath, p) for p in patterns):
                doomed.append(full)
    # deepest first so directory contents go before the directories
    for full in sorted(doomed, key=len, reverse=True):
        try:
            if os.path.isdir(full) and not os.path.islink(full):
                shutil.rmtree(full)
            else:
                os.unlink(full)
        except FileNotFoundError:
            continue
        except OSError as e:
            raise ArtifactInstallError(full, f'failed removing: {e}') from e
