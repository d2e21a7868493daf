"""Helpers shared by the nestcorpus commands: config, logging, engine."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from nestcorpus.cli.errors import err_config, err_storage
from nestcorpus.config import ConfigError, CorpusConfig, load_config
from nestcorpus.engine import DEFAULT_DB, CorpusEngine
from nestcorpus.errors import StorageError
from nestcorpus.logging_config import setup_logging

console = Console()

DEFAULT_DB_PATH = DEFAULT_DB


def load_settings() -> CorpusConfig:
    """Load config and configure logging; exit 1 on a bad config."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    setup_logging(cfg.logging.level, cfg.logging.file)
    return cfg


def open_engine(cfg: CorpusConfig, db: Path) -> CorpusEngine:
    try:
        return CorpusEngine.from_config(cfg, db)
    except StorageError as exc:
        console.print(err_storage(str(exc)))
        raise typer.Exit(1) from exc
