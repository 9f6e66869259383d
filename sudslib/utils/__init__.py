"""Utilities shared by the command line tools."""

from .logging_utils import ColoredFormatter, LogColors, setup_logging

__all__ = ['ColoredFormatter', 'LogColors', 'setup_logging']
