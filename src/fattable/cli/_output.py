"""Output formatting helpers for the CLI."""

from __future__ import annotations

import json
import sys
from typing import Any

from fattable.fat_entity import FatEntityCodec, is_slot_key
from fattable.operations import TableRecord

PREVIEW_WIDTH = 60


def record_to_dict(record: TableRecord) -> dict[str, Any]:
    """Flatten a record: keys, plain non-slot properties, and the joined payload."""
    slots = sorted(name for name in record.properties if is_slot_key(name))
    return {
        "partition_key": record.partition_key,
        "sort_key": record.sort_key,
        "etag": record.etag,
        "properties": {
            name: typed.wire_value()
            for name, typed in record.properties.items()
            if not is_slot_key(name)
        },
        "slots": len(slots),
        "payload": FatEntityCodec.join(record.properties) if slots else None,
    }


def preview(text: str | None, width: int = PREVIEW_WIDTH) -> str:
    if text is None:
        return ""
    text = text.replace("\n", " ")
    return text if len(text) <= width else text[: width - 3] + "..."


def print_table(headers: list[str], rows: list[list[Any]], *, json_mode: bool = False) -> None:
    """Print rows as aligned text columns or as a JSON array."""
    if json_mode:
        print(json.dumps([dict(zip(headers, row)) for row in rows], indent=2, default=str))
        return
    if not rows:
        print("(no records)")
        return

    cells = [[str(v) for v in row] for row in rows]
    widths = [max(len(h), *(len(row[i]) for row in cells)) for i, h in enumerate(headers)]
    print("  ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
    print("  ".join("-" * w for w in widths))
    for row in cells:
        print("  ".join(val.ljust(widths[i]) for i, val in enumerate(row)).rstrip())


def print_object(data: dict[str, Any], *, json_mode: bool = False) -> None:
    """Print one object as JSON or as ``key: value`` lines."""
    if json_mode:
        print(json.dumps(data, indent=2, default=str))
        return
    for k, v in data.items():
        if isinstance(v, dict):
            print(f"{k}:")
            for inner_k, inner_v in v.items():
                print(f"  {inner_k}: {inner_v}")
        elif isinstance(v, list):
            print(f"{k}:")
            for item in v:
                print(f"  {item}")
        else:
            print(f"{k}: {v}")


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {msg}", file=sys.stderr)
