"""nestcorpus rich error messages.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from nestcorpus.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from nestcorpus.rag.llm_client import provider_env_var, provider_of


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    if "/" in provider:
        provider = provider_of(provider)
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {provider_env_var(provider)}=sk-..."
    )


def err_no_db(db_path: str = ".nestcorpus.db") -> str:
    """No corpus database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  nestcorpus index --source <file>  to create it."
    )


def err_source_not_found(source_id: str) -> str:
    return (
        f"[yellow]Source not found:[/] '{source_id}' is not in the index.\n"
        "  Run:  nestcorpus status  to see all indexed sources."
    )


def err_storage(detail: str) -> str:
    """Database read/write failed."""
    return (
        f"[red]Error:[/] Database operation failed: {detail}\n"
        "  Check that the database file is writable and not locked by another process."
    )


def err_config(detail: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration.\n  {detail}\n"
        "  Fix nestcorpus.yaml (or ~/.nestcorpus/config.yaml) and retry."
    )


def err_bad_items_file(path: str, detail: str) -> str:
    return (
        f"[red]Error:[/] Cannot read items file '{path}': {detail}\n"
        '  Expected a JSON list of objects: [{"id": ..., "title": ..., "url": ..., '
        '"combined_text": ...}]'
    )


def warn_partial_index(source_id: str, failed_chunks: list[int]) -> str:
    """Some chunks failed to embed; the source is searchable with reduced coverage."""
    return (
        f"[yellow]⚠[/] '{source_id}' is partially indexed: "
        f"{len(failed_chunks)} chunk(s) failed {failed_chunks}.\n"
        "  Run the same index command again to retry only the failed chunks."
    )
