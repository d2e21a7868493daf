"""Tests for nestcorpus status command."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from nestcorpus.cli.main import app
from nestcorpus.db.connection import Database
from nestcorpus.db.schema import initialize

runner = CliRunner()


def test_status_no_db(cli_env) -> None:
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "No database found" in result.output
    assert "text-embedding-3-small" in result.output


def test_status_empty_db(cli_env, tmp_path: Path) -> None:
    conn = Database(tmp_path / ".nestcorpus.db").connect()
    initialize(conn)
    conn.close()

    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "Nothing indexed yet" in result.output


def test_status_lists_sources(cli_env, tmp_path: Path) -> None:
    src = tmp_path / "fox.txt"
    src.write_text("The quick fox jumps over the lazy dog.", encoding="utf-8")
    runner.invoke(app, ["index", "--source", str(src), "--title", "Quick fox"])

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 0, result.output
    assert "Sources: 1" in result.output
    assert "Quick fox" in result.output
    assert "indexed" in result.output
    assert "disabled" in result.output
