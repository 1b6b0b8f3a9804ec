"""fattable get / scan: read records from one table."""

from __future__ import annotations

import json
from typing import Any, Optional

import typer

from fattable.cli import _exitcodes as ec
from fattable.cli._output import preview, print_error, print_object, print_table, record_to_dict
from fattable.cli._storage import open_store
from fattable.errors import FatTableError
from fattable.query import QueryFacade


def parse_where(raw: str) -> tuple[str, Any]:
    """Parse ``NAME=VALUE``; VALUE is read as JSON when it parses, else as text."""
    name, sep, text = raw.partition("=")
    name = name.strip()
    if not sep or not name:
        raise ValueError(f"Invalid --where '{raw}': expected NAME=VALUE")
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        value = text
    if value is None or isinstance(value, (list, dict)):
        raise ValueError(f"Invalid --where value '{text}': expected a scalar")
    return name, value


def _open_facade() -> QueryFacade:
    try:
        store = open_store()
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    except FatTableError as e:
        print_error(f"Cannot open storage backend: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)
    return QueryFacade(store)


def get_cmd(
    partition_key: str = typer.Argument(..., help="Partition key (unencoded)"),
    sort_key: str = typer.Argument(..., help="Sort key (unencoded)"),
) -> None:
    """Show one record and its joined payload."""
    from fattable.cli import state

    facade = _open_facade()
    try:
        record = facade.get(partition_key, sort_key)
    except FatTableError as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        facade.store.close()

    if record is None:
        print_error(f"Record not found: ({partition_key!r}, {sort_key!r})")
        raise typer.Exit(ec.NOT_FOUND)
    print_object(record_to_dict(record), json_mode=state.json_output)


def scan_cmd(
    partition_key: str = typer.Argument(..., help="Partition key (unencoded)"),
    min_sort_key: str = typer.Option("", "--min", help="Lowest sort key, inclusive"),
    max_sort_key: str = typer.Option("", "--max", help="Highest sort key, inclusive"),
    where: Optional[str] = typer.Option(None, "--where", help="Property filter NAME=VALUE"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Stop after N records"),
) -> None:
    """List the records of one partition."""
    from fattable.cli import state

    if where is not None and (min_sort_key or max_sort_key):
        print_error("--where cannot be combined with --min/--max")
        raise typer.Exit(ec.USAGE_ERROR)
    try:
        condition = parse_where(where) if where is not None else None
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    facade = _open_facade()
    try:
        if condition is not None:
            scan = facade.scan_where(partition_key, *condition)
        else:
            scan = facade.scan_range(partition_key, min_sort_key, max_sort_key)
        found = []
        for record in scan:
            found.append(record_to_dict(record))
            if limit is not None and len(found) >= limit:
                break
    except FatTableError as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        facade.store.close()

    if state.json_output:
        print(json.dumps(found, indent=2, default=str))
        return
    rows = [[r["sort_key"], r["slots"], preview(r["payload"])] for r in found]
    print_table(["sort_key", "slots", "payload"], rows)
