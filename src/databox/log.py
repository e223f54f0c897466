"""Logging setup shared by the CLI and long-running pipelines."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "databox"


def configure_logging(level: str | int = "INFO", *, rich: bool = True, console: Console | None = None) -> logging.Logger:
    """Attach a single handler to the package logger and set its level.

    Calling it again replaces the previous handler, so the CLI and tests can
    reconfigure freely.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler: logging.Handler
    if rich:
        handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger
