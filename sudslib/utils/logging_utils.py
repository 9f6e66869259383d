"""
Console logging for the command line tools.

Library modules only create module loggers; handlers are attached here,
once, by the entry point.
"""

import logging
import sys


class LogColors:
    """ANSI color codes for terminal output formatting."""
    BLUE = '\033[94m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    ENDC = '\033[0m'


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the message according to its level."""

    def __init__(self, fmt=None, datefmt=None, use_color: bool = True):
        super().__init__(fmt, datefmt)
        self.use_color = use_color

    def format(self, record):
        message = super().format(record)
        if not self.use_color:
            return message
        if record.levelno >= logging.ERROR:
            color = LogColors.RED
        elif record.levelno >= logging.WARNING:
            color = LogColors.YELLOW
        elif record.levelno >= logging.INFO:
            color = LogColors.GREEN
        else:
            color = LogColors.BLUE
        return f"{color}{message}{LogColors.ENDC}"


def setup_logging(verbose: bool = False, quiet: bool = False,
                  format_string: str = '%(levelname)s - %(name)s - %(message)s') -> logging.Logger:
    """
    Attach a console handler to the `sudslib` logger.

    Args:
        verbose: Log DEBUG messages
        quiet: Only log warnings and errors
        format_string: Log message format

    Returns:
        The configured package logger
    """
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logger = logging.getLogger('sudslib')
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, '_sudslib_console', False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ColoredFormatter(format_string, use_color=sys.stderr.isatty()))
    handler._sudslib_console = True
    logger.addHandler(handler)
    return logger
