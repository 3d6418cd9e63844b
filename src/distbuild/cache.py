"""
wheel reuse across implementations

Once a wheel was built for one implementation, later iterations working on
the same source directory may install it directly instead of invoking the
backend again.  Two kinds of wheels qualify: universal pure python wheels
(unless the package builds extensions, in which case an implementation that
skipped its extension would poison the rest) and stable ABI wheels on
regular CPython.
"""

__all__ = ("ReusePolicy", "try_reuse")

from .log import logger
from .wheel import WheelName


class ReusePolicy:
    """Eligibility rules for reusing a recorded wheel.

    :param allow_pure: reuse ``py3-none-any`` wheels for non-extension packages
    :param allow_stable_abi: reuse ``abi3`` wheels on regular CPython versions
        no older than the wheel's ``cpXY`` tag; this trusts abi3 wheels to be
        forward compatible, a heuristic rather than a guarantee
    """

    def __init__(self, allow_pure=True, allow_stable_abi=True):
        self.allow_pure = allow_pure
        self.allow_stable_abi = allow_stable_abi

    @classmethod
    def from_settings(cls, settings):
        if not settings.allow_wheel_reuse:
            return cls(allow_pure=False, allow_stable_abi=False)
        return cls(allow_stable_abi=settings.stable_abi_reuse)

    def eligible(self, wheel, impl, ext):
        """Return the reason ``wheel`` may be reused for ``impl``, or None."""
        if not isinstance(wheel, WheelName):
            wheel = WheelName(wheel)
        if self.allow_pure and not ext and wheel.is_pure:
            return 'pure'
        # free-threading builds don't support the stable ABI
        if self.allow_stable_abi and impl.is_cpython and not impl.freethreading:
            minimum = wheel.stable_abi_minimum
            if minimum is not None and minimum <= impl.version:
                return 'abi3'
        return None


def try_reuse(session, ctx, policy=None):
    """Install a previously built compatible wheel, if there is one.

    Only wheels recorded for ``ctx.source_dir`` are considered.

    :return: path of the reused wheel, or None if a fresh build is needed
    """
    from .engine import install_artifact

    if policy is None:
        policy = ReusePolicy.from_settings(session.settings)
    for record in session.records():
        if record.source_dir != ctx.source_dir:
            continue
        reason = policy.eligible(record.path, ctx.impl, session.descriptor.ext)
        if reason is None:
            continue
        logger.info('%s: reusing %s wheel %s', ctx.impl, reason, record.path)
        install_artifact(session, record.path, ctx)
        return record.path
    return None
