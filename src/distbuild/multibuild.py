"""
run a callback across python implementations

Iterations run sequentially in declared order.  A failing iteration doesn't
stop its siblings; failures are collected and reported together once every
implementation had its turn.
"""

__all__ = ("foreach_impl", "run_common")

import logging
from contextlib import contextmanager

from snakeoil.compatibility import IGNORED_EXCEPTIONS
from snakeoil.osutils import ensure_dirs, pjoin

from .errors import AggregateImplementationFailure, ImplementationFailure
from .impls import preferred_impl
from .log import logger


@contextmanager
def _impl_log(log_dir, ctx):
    """Tee log records emitted during an iteration to ``build-<impl>.log``."""
    if log_dir is None:
        yield
        return
    ensure_dirs(log_dir, mode=0o755, minimal=True)
    handler = logging.FileHandler(pjoin(log_dir, f'build-{ctx.impl}.log'))
    handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    logger.addHandler(handler)
    try:
        yield
    finally:
        logger.removeHandler(handler)
        handler.close()


def foreach_impl(contexts, callback, phase=None, log_dir=None):
    """Invoke ``callback(ctx)`` once per implementation context.

    :param contexts: :obj:`distbuild.impls.ImplementationContext` instances,
        in the order they should run
    :param phase: phase name used when reporting failures
    :param log_dir: if not None, directory receiving per-implementation logs
    :return: mapping of implementation id to callback return value
    :raise AggregateImplementationFailure: after all iterations ran, if any failed
    """
    results = {}
    failures = []
    for ctx in contexts:
        logger.debug('%s: running %s', ctx.impl, getattr(callback, '__name__', callback))
        with _impl_log(log_dir, ctx):
            try:
                results[ctx.impl.id] = callback(ctx)
            except IGNORED_EXCEPTIONS:
                raise
            except Exception as e:
                logger.error('%s: %s', ctx.impl, e)
                failures.append(ImplementationFailure(ctx.impl, e))
    if failures:
        raise AggregateImplementationFailure(phase, failures)
    return results


def run_common(contexts, callback, patterns=('*',), precedence=None, phase=None, log_dir=None):
    """Invoke ``callback(ctx)`` once using the preferred implementation.

    :param contexts: candidate contexts
    :param patterns: inclusion patterns restricting which implementations
        may be selected
    :param precedence: implementation ids, least to most preferred
    :return: callback return value
    """
    by_impl = {ctx.impl: ctx for ctx in contexts}
    kwargs = {} if precedence is None else {'precedence': precedence}
    impl = preferred_impl(by_impl, patterns, **kwargs)
    ctx = by_impl[impl]
    logger.debug('%s: running combined %s', impl, getattr(callback, '__name__', callback))
    return foreach_impl([ctx], callback, phase=phase, log_dir=log_dir)[impl.id]
