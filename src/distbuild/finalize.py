"""
install tree finalization

Per implementation, executables installed by a wheel are split between the
implementation's python-exec directory and the shared bin directory, the
staging root is merged into the shared image and python scripts get a
relative symlink to the dispatch executable which picks the implementation
at run time.  Once every implementation was installed the image is checked
and merged into the destination tree.
"""

__all__ = (
    "post_compile", "install_impl", "wrap_scripts", "check_namespace_pth",
    "check_stray_files", "merge_tree", "install_docs", "prune_empty_dirs",
)

import fnmatch
import os
import shutil

from snakeoil.osutils import ensure_dirs, listdir_files, pjoin

from . import const
from .errors import MergeConflictError, NamespacePolicyError, StrayFilesError
from .log import logger


def _rooted(root, path):
    return pjoin(root, path.lstrip(os.sep))


def _walk_files(root):
    for dirpath, dirnames, filenames in os.walk(root):
        for name in filenames:
            yield pjoin(dirpath, name)
        for name in dirnames:
            full = pjoin(dirpath, name)
            if os.path.islink(full):
                yield full


def _relative_listing(root):
    if not os.path.isdir(root):
        return frozenset()
    return frozenset(os.path.relpath(x, root) for x in _walk_files(root))


def post_compile(session, ctx):
    """Mirror bin into the implementation's script dir and run extension QA."""
    prefix = session.settings.prefix
    bindir = _rooted(ctx.install_root, pjoin(prefix, 'bin'))
    scriptdir = _rooted(ctx.install_root, ctx.impl.scriptdir(prefix))
    if os.path.exists(scriptdir):
        raise StrayFilesError([scriptdir], header='script directory should not exist yet')
    if os.path.isdir(bindir):
        shutil.copytree(bindir, scriptdir, symlinks=True)

    if not os.path.isdir(ctx.install_root):
        return
    extensions = [
        x for x in _walk_files(ctx.install_root)
        if x.endswith(('.so', '.pyd')) and not os.path.islink(x)]
    descriptor = session.descriptor
    if extensions and not descriptor.ext:
        session.warn_once(
            'ext-unset', '%s: extension modules installed but ext is not set: %s',
            descriptor.pf, ', '.join(os.path.relpath(x, ctx.install_root) for x in extensions))
    elif not extensions and descriptor.ext:
        session.warn_once(
            'ext-unneeded', '%s: ext is set but no extension modules were installed',
            descriptor.pf)


def prune_empty_dirs(root):
    """Remove empty directories below and including ``root``."""
    if not os.path.isdir(root):
        return
    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        if not os.listdir(dirpath):
            os.rmdir(dirpath)


def install_impl(session, ctx):
    """Move the staging root of ``ctx`` into the shared image."""
    prefix = session.settings.prefix
    root = ctx.install_root
    bindir = _rooted(root, pjoin(prefix, 'bin'))
    scriptdir = _rooted(root, ctx.impl.scriptdir(prefix))

    # post_compile mirrored bin into the script dir; verify nothing changed since
    bin_files = _relative_listing(bindir)
    script_files = _relative_listing(scriptdir)
    if bin_files != script_files:
        differing = sorted(bin_files.symmetric_difference(script_files))
        raise StrayFilesError(
            differing, header=f'file lists for {bindir} and {scriptdir} differ')
    if os.path.isdir(bindir):
        shutil.rmtree(bindir)
    if session.descriptor.single_impl and os.path.isdir(scriptdir):
        ensure_dirs(os.path.dirname(bindir), mode=0o755, minimal=True)
        os.rename(scriptdir, bindir)

    prune_empty_dirs(root)
    if os.path.isdir(root):
        merge_tree(root, session.image_dir)
    if not session.descriptor.single_impl:
        wrap_scripts(
            session.image_dir, ctx.impl, pjoin(prefix, 'bin'),
            session.settings.dispatch_exec, prefix=prefix)


def wrap_scripts(image, impl, bindir, dispatch, prefix=const.PREFIX):
    """Expose the implementation's executables through the shared bin dir.

    Scripts whose shebang names ``impl`` stay in the python-exec directory
    and get a relative symlink in ``bindir`` to ``dispatch``; everything else
    is moved into ``bindir``.

    :return: tuple of (wrapped names, moved names)
    """
    scriptdir = _rooted(image, impl.scriptdir(prefix))
    if not os.path.isdir(scriptdir):
        return (), ()
    target_bindir = _rooted(image, bindir)
    link = os.path.relpath(dispatch, bindir)

    python_files, other_files = [], []
    for name in sorted(os.listdir(scriptdir)):
        path = pjoin(scriptdir, name)
        if os.path.isdir(path) and not os.path.islink(path):
            raise StrayFilesError([path], header='unexpected directory in script dir')
        with open(path, 'rb') as f:
            shebang = f.readline().decode(errors='replace')
        if shebang.startswith('#!') and impl.epython in shebang:
            python_files.append(name)
        else:
            other_files.append(name)

    ensure_dirs(target_bindir, mode=0o755, minimal=True)
    for name in python_files:
        dest = pjoin(target_bindir, name)
        logger.debug('installing wrapper at %s', pjoin(bindir, name))
        if os.path.lexists(dest):
            os.unlink(dest)
        os.symlink(link, dest)
    for name in other_files:
        logger.debug('moving %s to %s', name, bindir)
        os.replace(pjoin(scriptdir, name), pjoin(target_bindir, name))
    return tuple(python_files), tuple(other_files)


def check_namespace_pth(image):
    """Refuse images carrying ``*-nspkg.pth`` namespace markers.

    :raise NamespacePolicyError: listing the offending files
    """
    found = []
    for dirpath, dirnames, filenames in os.walk(image):
        found.extend(
            pjoin(dirpath, x) for x in fnmatch.filter(filenames, const.NSPKG_PTH_GLOB))
    if found:
        raise NamespacePolicyError([os.path.relpath(x, image) for x in found])


def check_stray_files(image, impls, prefix=const.PREFIX):
    """Refuse stray top-level entries in the site-packages dirs of the image.

    :raise StrayFilesError: listing the offending paths
    """
    strays = []
    for impl in impls:
        sitedir = _rooted(image, impl.sitedir(prefix))
        if not os.path.isdir(sitedir):
            continue
        strays.extend(
            pjoin(sitedir, x) for x in listdir_files(sitedir)
            if not x.endswith(const.ALLOWED_TOPLEVEL_SUFFIXES))
        strays.extend(
            pjoin(sitedir, x) for x in const.FORBIDDEN_TOPLEVEL_DIRS
            if os.path.isdir(pjoin(sitedir, x)))
    if strays:
        raise StrayFilesError(
            [os.path.relpath(x, image) for x in strays],
            header='unexpected top-level files in site-packages')


def install_docs(session, ctx):
    """Install the descriptor's documentation into the image."""
    descriptor = session.descriptor
    if not descriptor.docs:
        return
    docdir = _rooted(
        session.image_dir, pjoin(session.settings.prefix, 'share', 'doc', descriptor.pf))
    ensure_dirs(docdir, mode=0o755, minimal=True)
    for doc in descriptor.docs:
        src = pjoin(ctx.source_dir, doc)
        dest = pjoin(docdir, os.path.basename(doc.rstrip(os.sep)))
        if os.path.isdir(src):
            shutil.copytree(src, dest, symlinks=True, dirs_exist_ok=True)
        else:
            shutil.copy2(src, dest)


def _merge_conflicts(src, dest):
    conflicts = []
    for dirpath, dirnames, filenames in os.walk(src):
        reldir = os.path.relpath(dirpath, src)
        for name in dirnames + filenames:
            path = pjoin(dirpath, name)
            target = os.path.normpath(pjoin(dest, reldir, name))
            if not os.path.lexists(target):
                continue
            if os.path.isdir(path) and not os.path.islink(path):
                # directories merge into directories or links to them
                if not os.path.isdir(target):
                    conflicts.append(target)
            elif os.path.isdir(target) and not os.path.islink(target):
                conflicts.append(target)
    return conflicts


def merge_tree(src, dest):
    """Recursively merge ``src`` into ``dest``, replacing existing files.

    Symlinks are copied as symlinks; directories are merged.

    :raise MergeConflictError: if a file would replace a directory or the
        reverse; ``dest`` is left untouched
    """
    conflicts = _merge_conflicts(src, dest)
    if conflicts:
        raise MergeConflictError([os.path.relpath(x, dest) for x in conflicts])
    ensure_dirs(dest, mode=0o755, minimal=True)
    for dirpath, dirnames, filenames in os.walk(src):
        reldir = os.path.relpath(dirpath, src)
        target_dir = os.path.normpath(pjoin(dest, reldir))
        for name in list(dirnames):
            path = pjoin(dirpath, name)
            if os.path.islink(path):
                # not descended into by os.walk; merge the link itself
                filenames.append(name)
                dirnames.remove(name)
            else:
                ensure_dirs(pjoin(target_dir, name), mode=0o755, minimal=True)
        for name in filenames:
            path = pjoin(dirpath, name)
            target = pjoin(target_dir, name)
            if os.path.lexists(target):
                os.unlink(target)
            if os.path.islink(path):
                os.symlink(os.readlink(path), target)
            else:
                shutil.copy2(path, target)
