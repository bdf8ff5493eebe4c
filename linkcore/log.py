"""
Logging configuration for ProcLink.

Routes the package loggers through rich so log lines share the console
used for graph output.
"""

from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(verbose: bool = False, console: Optional[Console] = None) -> logging.Logger:
    """
    Configure the "linkcore" logger hierarchy.

    Args:
        verbose: Log debug messages
        console: Console to log to (stderr if None)

    Returns:
        The package logger
    """
    logger = logging.getLogger("linkcore")
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
