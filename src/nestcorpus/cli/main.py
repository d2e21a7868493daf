"""nestcorpus CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from nestcorpus.cli.index import index_cmd
from nestcorpus.cli.query import query_cmd
from nestcorpus.cli.remove import remove_cmd
from nestcorpus.cli.status import status_cmd
from nestcorpus.logging_config import setup_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("nestcorpus")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"nestcorpus {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="nestcorpus",
    help=(
        "nestcorpus: semantic search over your saved items.\n\n"
        "  nestcorpus index   Chunk and embed saved items into the local index.\n"
        "  nestcorpus query   Answer a question from the indexed items, with citations."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log progress (INFO) to stderr."),
    ] = False,
) -> None:
    """nestcorpus: semantic search over your saved items."""
    if verbose:
        setup_logging("INFO")


app.command("index")(index_cmd)
app.command("query")(query_cmd)
app.command("remove")(remove_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed nestcorpus version."""
    typer.echo(f"nestcorpus {_installed_version()}")


if __name__ == "__main__":
    app()
