"""Centralized logging configuration for nestcorpus."""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

_ROOT = "nestcorpus"
_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_configured = False


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    rich_console: bool = True,
) -> None:
    """Configure the ``nestcorpus`` logger once per process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional path to a log file, in addition to stderr.
        rich_console: Render console records with Rich (CLI) instead of plain text.
    """
    global _configured
    if _configured:
        return

    log_level = getattr(logging, level.upper(), logging.WARNING)

    env_level = os.getenv("NESTCORPUS_LOG_LEVEL")
    if env_level:
        log_level = getattr(logging, env_level.upper(), log_level)

    env_file = os.getenv("NESTCORPUS_LOG_FILE")
    if env_file is not None:
        log_file = env_file

    root = logging.getLogger(_ROOT)
    root.setLevel(log_level)
    root.handlers.clear()

    if rich_console:
        console_handler: logging.Handler = RichHandler(
            console=Console(stderr=True), show_path=False, rich_tracebacks=False
        )
    else:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    console_handler.setLevel(log_level)
    root.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            root.addHandler(file_handler)
        except OSError:
            root.warning("Could not open log file %s, logging to stderr only", log_file)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``nestcorpus`` namespace."""
    if name == _ROOT or name.startswith(f"{_ROOT}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT}.{name}")
