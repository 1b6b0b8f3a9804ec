"""Shared fixtures for CLI tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from fattable import TableContext, pydantic_codec
from fattable.cli import app

# Reuse the model types from the main conftest
from tests.conftest import User

if TYPE_CHECKING:
    from click.testing import Result


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_db(tmp_path):
    """Create a temp DB path for the CLI."""
    return str(tmp_path / "cli_test.db")


@pytest.fixture
def seeded_db(cli_db):
    """Create a DB holding a UserTable with an ActiveUsers index."""
    with TableContext.open(pydantic_codec(User), db_path=cli_db) as ctx:
        ctx.create_index("ActiveUsers").where(lambda u: u.status == "Active")
        ctx.save(
            [
                User(id="u1", status="Active", name="Ada", age=36),
                User(id="u2", status="Archived", name="Bob", age=41),
                User(id="a/b", status="Active", name="Slash"),
            ]
        ).raise_for_failures()
    return cli_db


def invoke(
    runner: CliRunner, args: list[str], db_path: str | None = None, table: str | None = "UserTable"
) -> "Result":
    """Invoke CLI with storage and table options injected before the subcommand."""
    prefix: list[str] = []
    if db_path:
        prefix += ["--db", db_path]
    if table:
        prefix += ["--table", table]
    return runner.invoke(app, prefix + args, catch_exceptions=False)
