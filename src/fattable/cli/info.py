"""fattable info: show backend status and the table's known partitions."""

from __future__ import annotations

import json
import os
from typing import Any

import typer

from fattable.catalog import (
    METADATA_PARTITION,
    METADATA_SORT_KEY,
    PARTITION_KEYS_PROPERTY,
    VERSION_PROPERTY,
)
from fattable.cli import _exitcodes as ec
from fattable.cli._output import print_error, print_object
from fattable.cli._storage import open_store, resolve_storage_binding
from fattable.errors import FatTableError
from fattable.operations import TableOperation
from fattable.storage import parse_storage_target


def info_cmd() -> None:
    """Show backend status and the partitions recorded in the table catalog."""
    from fattable.cli import state

    db_path, storage_uri = resolve_storage_binding()
    try:
        target = parse_storage_target(storage_uri, db_path=db_path)
    except FatTableError as e:
        print_error(f"Invalid storage URI: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)

    if target.backend == "sqlite" and target.db_path != ":memory:":
        if not os.path.exists(str(target.db_path)):
            print_error(f"Database not found: {target.db_path}")
            raise typer.Exit(ec.DATABASE_ERROR)

    try:
        store = open_store()
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    except FatTableError as e:
        print_error(f"Cannot open storage backend: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        data: dict[str, Any] = dict(store.storage_info())
        catalog = store.execute(TableOperation.retrieve(METADATA_PARTITION, METADATA_SORT_KEY))
        if catalog is None:
            data["partitions"] = []
            data["catalog_version"] = None
        else:
            data["partitions"] = json.loads(catalog.get(PARTITION_KEYS_PROPERTY, "[]"))
            data["catalog_version"] = catalog.get(VERSION_PROPERTY)
        if target.backend == "sqlite" and target.db_path != ":memory:":
            data["file_size_bytes"] = os.path.getsize(str(target.db_path))
    except FatTableError as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        store.close()

    if state.json_output:
        print_object(data, json_mode=True)
        return

    print(f"Backend: {data.get('backend', 'unknown')}")
    print(f"Table: {data.get('table_name')}")
    if data.get("backend") == "sqlite":
        print(f"Database: {data.get('db_path')}")
        if "file_size_bytes" in data:
            print(f"File size: {int(data['file_size_bytes']):,} bytes")
    elif data.get("backend") == "dynamodb":
        print(f"Region: {data.get('region') or '(default)'}")
        print(f"Status: {data.get('status')}")
    print(f"Records: {data.get('record_count')}")
    if not data["partitions"]:
        print("Partitions: (no catalog)")
        return
    print("Partitions:")
    for key in data["partitions"]:
        print(f"  {key}")
