from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "bionic"


def configure_logging(debug: bool = False) -> logging.Logger:
    """Attach a rich stderr handler to the package logger (once)."""
    logger = logging.getLogger(LOGGER_NAME)
    if not any(getattr(handler, "_bionic_handler", False) for handler in logger.handlers):
        handler = RichHandler(console=Console(stderr=True), show_path=False, markup=False)
        handler._bionic_handler = True  # type: ignore[attr-defined]
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False
    set_debug_logging(debug)
    return logger


def set_debug_logging(enabled: bool) -> None:
    logging.getLogger(LOGGER_NAME).setLevel(logging.DEBUG if enabled else logging.INFO)
