"""nestcorpus index: index saved items into .nestcorpus.db.

Two input forms:
  --source FILE        one plain-text file becomes one source item
                       (id/title default to the file stem, url to its file:// URI)
  --items FILE.json    a JSON list of items, indexed concurrently:
                       [{"id": ..., "title": ..., "url": ..., "combined_text": ...}]
                       Instead of combined_text an item may carry raw parts
                       (user_note, ai_summary, extracted_text, highlights,
                       attachment_texts), combined the same way the app does.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated, Any

import typer

from nestcorpus.cli.common import DEFAULT_DB_PATH, console, load_settings, open_engine
from nestcorpus.cli.errors import (
    err_bad_items_file,
    err_no_api_key,
    err_storage,
    warn_partial_index,
)
from nestcorpus.db.models import (
    Failed,
    IndexOutcome,
    IndexStatus,
    SavedItemParts,
    SourceItem,
    Unchanged,
)
from nestcorpus.errors import AuthError, StorageError, ValidationError

_PART_KEYS = ("user_note", "ai_summary", "extracted_text", "highlights", "attachment_texts")


def index_cmd(
    source: Annotated[
        Path | None,
        typer.Option("--source", "-s", help="Plain-text file to index as one source."),
    ] = None,
    items: Annotated[
        Path | None,
        typer.Option("--items", help="JSON file with a list of source items."),
    ] = None,
    source_id: Annotated[
        str | None,
        typer.Option("--id", help="Source id (default: file stem)."),
    ] = None,
    title: Annotated[
        str | None,
        typer.Option("--title", help="Source title (default: file stem)."),
    ] = None,
    url: Annotated[
        str | None,
        typer.Option("--url", help="Source URL (default: file:// URI)."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .nestcorpus.db (created if missing)."),
    ] = DEFAULT_DB_PATH,
) -> None:
    """Index saved items so they can be queried."""
    if (source is None) == (items is None):
        console.print("[red]Error:[/] Pass exactly one of --source FILE or --items FILE.json.")
        raise typer.Exit(1)

    if source is not None:
        batch = [_item_from_file(source, source_id, title, url)]
    elif items is not None:
        batch = _items_from_json(items)

    if not batch:
        console.print("[yellow]No items to index.[/]")
        raise typer.Exit(0)

    cfg = load_settings()
    engine = open_engine(cfg, db)
    try:
        outcomes = asyncio.run(engine.index_many(batch))
    except StorageError as exc:
        console.print(err_storage(str(exc)))
        raise typer.Exit(1) from exc
    except ValidationError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1) from exc
    finally:
        engine.close()

    for outcome in outcomes:
        _report(outcome)

    if any(isinstance(o, Failed) and not o.cancelled for o in outcomes):
        raise typer.Exit(1)


# ------------------------------------------------------------------
# Input parsing
# ------------------------------------------------------------------


def _item_from_file(
    path: Path, source_id: str | None, title: str | None, url: str | None
) -> SourceItem:
    if not path.is_file():
        console.print(f"[red]Error:[/] File not found: '{path}'")
        raise typer.Exit(1)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        console.print(f"[red]Error:[/] Cannot read '{path}': {exc}")
        raise typer.Exit(1) from exc
    return SourceItem(
        id=source_id or path.stem,
        title=title or path.stem,
        url=url or path.resolve().as_uri(),
        combined_text=text,
    )


def _items_from_json(path: Path) -> list[SourceItem]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        console.print(err_bad_items_file(str(path), str(exc)))
        raise typer.Exit(1) from exc
    if not isinstance(data, list):
        console.print(err_bad_items_file(str(path), "top level is not a list"))
        raise typer.Exit(1)

    result: list[SourceItem] = []
    for n, raw in enumerate(data):
        if not isinstance(raw, dict) or not str(raw.get("id", "")).strip():
            console.print(err_bad_items_file(str(path), f"item {n} has no 'id'"))
            raise typer.Exit(1)
        result.append(_item_from_dict(raw))
    return result


def _item_from_dict(raw: dict[str, Any]) -> SourceItem:
    item_id = str(raw["id"])
    title = str(raw.get("title") or "")
    url = str(raw.get("url") or "")
    if "combined_text" in raw or not any(k in raw for k in _PART_KEYS):
        return SourceItem(
            id=item_id, title=title, url=url, combined_text=str(raw.get("combined_text") or "")
        )
    parts = SavedItemParts(
        user_note=str(raw.get("user_note") or ""),
        ai_summary=str(raw.get("ai_summary") or ""),
        extracted_text=str(raw.get("extracted_text") or ""),
        highlights=[
            (str(h.get("text") or ""), str(h.get("note") or ""))
            for h in raw.get("highlights") or []
            if isinstance(h, dict)
        ],
        attachment_texts=[str(t) for t in raw.get("attachment_texts") or []],
    )
    return SourceItem.from_parts(item_id, title, url, parts)


# ------------------------------------------------------------------
# Output
# ------------------------------------------------------------------


def _report(outcome: IndexOutcome) -> None:
    sid = outcome.source_id
    if isinstance(outcome, Unchanged):
        console.print(f"[dim]=[/] {sid}: unchanged ({outcome.chunk_count} chunks)")
    elif outcome.status is IndexStatus.INDEXED:
        console.print(f"[green]✓[/] {sid}: indexed {outcome.chunk_count} chunks")
    elif outcome.status is IndexStatus.PARTIALLY_INDEXED:
        console.print(warn_partial_index(sid, outcome.failed_chunks))
    elif outcome.cancelled:
        console.print(f"[yellow]✗[/] {sid}: cancelled before any chunk was stored")
    elif isinstance(outcome.error, AuthError):
        console.print(f"[red]✗[/] {sid}: failed: {outcome.error}")
        console.print(err_no_api_key(outcome.error.provider or "openai"))
    else:
        console.print(f"[red]✗[/] {sid}: failed: {outcome.error}")
