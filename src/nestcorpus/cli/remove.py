"""nestcorpus remove: delete a source from the index.

Removes, in one transaction:
  - chunks
  - embeddings
  - the source's index metadata

Usage:
  nestcorpus remove --source item-42
  nestcorpus remove --source item-42 --yes
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from nestcorpus.cli.common import DEFAULT_DB_PATH, console, load_settings, open_engine
from nestcorpus.cli.errors import err_no_db, err_source_not_found, err_storage
from nestcorpus.errors import StorageError


def remove_cmd(
    source: Annotated[
        str,
        typer.Option("--source", "-s", help="Source id to remove."),
    ],
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .nestcorpus.db."),
    ] = DEFAULT_DB_PATH,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a source and all its chunks from the index."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    cfg = load_settings()
    engine = open_engine(cfg, db)
    try:
        existing = engine.store.get_metadata(source)
        if existing is None:
            console.print(err_source_not_found(source))
            raise typer.Exit(0)

        chunk_count = engine.store.count(source)
        console.print(f"\nRemove source: [bold]{source}[/]  {existing.title}")
        console.print(f"  Chunks: {chunk_count}  |  Status: {existing.status.value}")

        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        asyncio.run(engine.remove_source(source))
        console.print(f"\n[green]✓[/] Removed: {source}")
        console.print(f"  {chunk_count} chunks deleted")
    except StorageError as exc:
        console.print(err_storage(str(exc)))
        raise typer.Exit(1) from exc
    finally:
        engine.close()
