"""Base distbuild exceptions."""

from snakeoil.cli.exceptions import UserException


class DistbuildException(Exception):
    """Generic distbuild exception.

    :ivar origin: either ``'package'`` when the package descriptor (or one of
        its phase handlers) is at fault, or ``'backend'`` when the build
        backend failed.
    """

    origin = 'package'


class DistbuildUserException(DistbuildException, UserException):
    """Generic distbuild exception with a sane string for non-debug, user-facing output."""
