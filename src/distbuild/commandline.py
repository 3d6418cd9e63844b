"""Utilities for writing commandline utilities.

distbuild scripts should use the :obj:`ArgumentParser` subclass here for a
consistent commandline "look and feel" and run through :obj:`Tool`, which
takes care of exception handling and log levels.
"""

__all__ = ("ArgumentParser", "Tool")

import logging

from snakeoil.cli import arghparse, tool

from .log import logger


class ArgumentParser(arghparse.ArgumentParser):

    def __init__(self, suppress=False, config=True, script=None, **kwds):
        super().__init__(suppress=suppress, script=script, **kwds)
        if not suppress and config:
            config_opts = self.add_argument_group("config options")
            config_opts.add_argument(
                '--config', metavar='PATH', dest='config_file',
                type=arghparse.existent_path,
                help='use custom build settings file')


class Tool(tool.Tool):
    """distbuild-specific commandline utility functionality."""

    def post_parse(self, options):
        """Adjust the log level to the requested verbosity."""
        if getattr(options, 'debug', False):
            logger.setLevel(logging.DEBUG)
        elif getattr(options, 'verbosity', 0) > 0:
            logger.setLevel(logging.INFO)
        return options
