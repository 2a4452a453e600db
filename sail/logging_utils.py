#!/usr/bin/env python3
# Logging Module
# Console and file sinks for the installer's progress messages

import sys

from loguru import logger


def setup_logging(debug=False, log_file=None):
    """Send progress to stderr, and optionally everything at DEBUG to a file.

    Commands and their captured output are logged at DEBUG, so they only
    reach the console with --debug.
    """
    logger.remove()

    logger.add(
        sys.stderr,
        level="DEBUG" if debug else "INFO",
        backtrace=False,
        diagnose=False,
        colorize=True,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )

    if log_file:
        logger.add(
            log_file,
            level="DEBUG",
            backtrace=True,
            diagnose=False,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}",
        )

    return logger
