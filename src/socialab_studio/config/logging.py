"""Logging configuration using rich for console output."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_LOGGER_NAME = "socialab_studio"
_configured = False


def setup_logging(level: str = "INFO", console: Console | None = None) -> None:
    """Install a rich handler on the package logger.

    Safe to call more than once; later calls only change the level.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        console: Optional console to render into (defaults to stderr).
    """
    global _configured
    root = logging.getLogger(_LOGGER_NAME)
    root.setLevel(level.upper())
    if _configured:
        return
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root.addHandler(handler)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the package namespace."""
    if name == _LOGGER_NAME or name.startswith(_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")
