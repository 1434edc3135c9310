"""Logging helpers with consistent formatting."""

from __future__ import annotations

import logging
import sys

from rich.logging import RichHandler

PACKAGE_LOGGER = "quorumlock"


def configure_logging(level: int = logging.INFO, *, rich: bool = True) -> logging.Logger:
    """Attach a handler to the package logger and return it.

    The library itself only emits records; applications call this once if
    they want them printed.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    if rich:
        handler: logging.Handler = RichHandler(
            level=level,
            markup=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            show_time=True,
            show_path=False,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(name)s %(levelname)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logger.addHandler(handler)
    logger.propagate = False
    return logger
