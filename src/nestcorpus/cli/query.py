"""nestcorpus query: ask a question over the indexed corpus.

Prints the answer (synthesized, or the raw best-matching excerpts when
generation is unavailable), one citation per source, and the confidence.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from nestcorpus.cli.common import DEFAULT_DB_PATH, console, load_settings, open_engine
from nestcorpus.cli.errors import err_no_db, err_storage
from nestcorpus.db.models import QueryResult
from nestcorpus.errors import StorageError, ValidationError


def query_cmd(
    text: Annotated[str, typer.Argument(help="Question to answer from your saved items.")],
    scope: Annotated[
        list[str] | None,
        typer.Option("--scope", help="Restrict the search to this source id (repeatable)."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .nestcorpus.db."),
    ] = DEFAULT_DB_PATH,
) -> None:
    """Answer a question using only the indexed saved items."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    cfg = load_settings()
    engine = open_engine(cfg, db)
    try:
        result = asyncio.run(engine.query(text, scope))
    except ValidationError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1) from exc
    except StorageError as exc:
        console.print(err_storage(str(exc)))
        raise typer.Exit(1) from exc
    finally:
        engine.close()

    _show_result(result)


def _show_result(result: QueryResult) -> None:
    title = "[bold]Answer[/]" if result.synthesized else "[bold]Answer[/] [dim](not synthesized)[/]"
    console.print(Panel(escape(result.answer), title=title, expand=False))

    if result.sources:
        table = Table(show_header=True, box=None, padding=(0, 1))
        table.add_column("#", style="dim", width=3)
        table.add_column("Source", style="bold")
        table.add_column("Score", justify="right")
        table.add_column("URL", style="dim")
        for i, citation in enumerate(result.sources, start=1):
            table.add_row(
                str(i),
                escape(citation.title),
                f"{citation.relevance_score:.2f}",
                escape(citation.url),
            )
        console.print(Panel(table, title="[bold]Sources[/]", expand=False))

    console.print(
        f"Confidence: [bold]{result.confidence:.0%}[/]  |  "
        f"[dim]{result.processing_time_ms} ms[/]"
    )
