"""fattable CLI: operator console for inspecting table stores."""

from __future__ import annotations

from typing import Optional

import typer
from click.core import ParameterSource

from fattable.cli import info, keys, records

app = typer.Typer(
    name="fattable",
    help="fattable CLI: inspect partitions, records, and encoded keys.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    db: str = "fattable.db"
    storage_uri: str | None = None
    table: str | None = None
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        from fattable import __version__

        print(f"fattable {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None,
        "--db",
        envvar="FATTABLE_DB",
        help="SQLite database file path (default: fattable.db)",
    ),
    storage_uri: Optional[str] = typer.Option(
        None,
        "--storage-uri",
        envvar="FATTABLE_STORAGE_URI",
        help="Backend storage URI (e.g. sqlite:///fattable.db or dynamodb://us-east-1/prefix-)",
    ),
    table: Optional[str] = typer.Option(
        None,
        "--table",
        "-t",
        envvar="FATTABLE_TABLE",
        help="Table name",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all fattable commands."""
    from fattable.storage import parse_storage_target

    resolved_uri = storage_uri
    # Explicit --db wins over FATTABLE_STORAGE_URI from the environment.
    if (
        ctx.get_parameter_source("db") == ParameterSource.COMMANDLINE
        and ctx.get_parameter_source("storage_uri") == ParameterSource.ENVIRONMENT
    ):
        resolved_uri = None
    if resolved_uri:
        try:
            parse_storage_target(resolved_uri)
        except Exception as e:
            raise typer.BadParameter(str(e))

    state.db = db or "fattable.db"
    state.storage_uri = resolved_uri
    state.table = table
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.add_typer(keys.app, name="keys", help="Encode and decode backend keys")

app.command(name="info")(info.info_cmd)
app.command(name="get")(records.get_cmd)
app.command(name="scan")(records.scan_cmd)


def main() -> None:
    """Entry point for the fattable CLI."""
    app()
