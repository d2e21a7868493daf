"""nestcorpus status: index overview and per-source state."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from nestcorpus.cli.common import DEFAULT_DB_PATH, console, load_settings, open_engine
from nestcorpus.config import CorpusConfig
from nestcorpus.db.models import IndexStats, IndexStatus, SourceIndexMetadata

_STATUS_STYLE = {
    IndexStatus.INDEXED: "[green]✓ indexed[/]",
    IndexStatus.PARTIALLY_INDEXED: "[yellow]⚠ partial[/]",
    IndexStatus.FAILED: "[red]✗ failed[/]",
    IndexStatus.INDEXING: "[cyan]… indexing[/]",
    IndexStatus.UNINDEXED: "[dim]unindexed[/]",
}


def status_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .nestcorpus.db."),
    ] = DEFAULT_DB_PATH,
) -> None:
    """Show index statistics and the state of every source."""
    cfg = load_settings()
    _show_config_panel(db, cfg)

    if not db.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  nestcorpus index --source <file>",
                title="[bold]Index[/]",
                expand=False,
            )
        )
        return

    engine = open_engine(cfg, db)
    try:
        stats = engine.get_index_stats()
        sources = engine.store.list_metadata()
    finally:
        engine.close()

    _show_index_panel(stats)
    _show_sources_panel(sources)


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_config_panel(db: Path, cfg: CorpusConfig) -> None:
    db_info = f"{db}"
    if db.exists():
        size_mb = db.stat().st_size / (1024 * 1024)
        db_info = f"{db} ({size_mb:.1f} MB)"
    generation = cfg.generation.model if cfg.generation.enabled else "[dim]disabled[/]"
    lines = [
        f"Database:    {db_info}",
        f"Embedding:   {cfg.embedding.model} ({cfg.embedding.dimensions} dims)",
        f"Generation:  {generation}",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Corpus[/]", expand=False))


def _show_index_panel(stats: IndexStats) -> None:
    last = stats.last_updated.strftime("%Y-%m-%d %H:%M") if stats.last_updated else None
    lines = [
        f"Sources: [bold]{stats.total_sources}[/]  |  Chunks: [bold]{stats.total_chunks:,}[/]",
        f"Last updated: [dim]{last}[/]" if last else "[dim]Nothing indexed yet.[/]",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Index[/]", expand=False))


def _show_sources_panel(sources: list[SourceIndexMetadata]) -> None:
    if not sources:
        return

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Source", style="bold")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Pending", justify="right", style="dim")

    for meta in sources:
        table.add_row(
            escape(meta.source_id),
            escape(meta.title),
            _STATUS_STYLE.get(meta.status, meta.status.value),
            str(meta.chunk_count),
            str(len(meta.failed_chunks)) if meta.failed_chunks else "",
        )

    pending = sum(
        1 for m in sources
        if m.status in (IndexStatus.PARTIALLY_INDEXED, IndexStatus.FAILED)
    )
    title = "[bold]Sources[/]"
    if pending:
        title += f" [dim]({pending} need a retry pass)[/]"
    console.print(Panel(table, title=title, expand=False))
