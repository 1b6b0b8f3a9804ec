"""Index definitions: how one domain value maps onto a denormalized copy."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from fattable.codecs import DomainCodec, serialize_identity
from fattable.values import TypedValue

# 100ns ticks between 0001-01-01 and the maximum representable instant.
MAX_TICKS = 3_155_378_975_999_999_999
_EPOCH = datetime(1, 1, 1, tzinfo=timezone.utc)
# 100ns ticks between 0001-01-01 and 1970-01-01.
_UNIX_EPOCH_TICKS = 621_355_968_000_000_000

INDEXED_PROPERTY = "IndexedProperty"


def indexed_property_value(value: Any) -> TypedValue:
    """Typed form of an indexed value; unsupported types are stored as compact JSON."""
    try:
        return TypedValue.of(value)
    except TypeError:
        return TypedValue.of(serialize_identity(value))


def _ticks(now: datetime | None = None) -> int:
    if now is None:
        return _UNIX_EPOCH_TICKS + time.time_ns() // 100
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    delta = now - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 10_000_000 + delta.microseconds * 10


def chronological_key(now: datetime | None = None) -> str:
    """Sort key that orders records by creation time, oldest first."""
    return f"{_ticks(now):020d}_{uuid.uuid4().hex}"


def reverse_chronological_key(now: datetime | None = None) -> str:
    """Sort key that orders records by creation time, newest first."""
    return f"{MAX_TICKS - _ticks(now):020d}_{uuid.uuid4().hex}"


class IndexDefinition:
    """Rules that project a domain value into one index.

    Each rule takes the domain value. Unset rules fall back to: every value
    qualifies, the partition key is the index name, the sort key is the
    serialized identity (or a chronological key when the codec has no
    identity), and the indexed value is empty.
    """

    def __init__(
        self,
        name: str,
        predicate: Callable[[Any], bool] | None = None,
        partition_key_fn: Callable[[Any], str] | None = None,
        sort_key_fn: Callable[[Any], str] | None = None,
        indexed_value_fn: Callable[[Any], Any] | None = None,
        property_fns: dict[str, Callable[[Any], Any]] | None = None,
    ) -> None:
        if not name:
            raise ValueError("Index name must not be empty")
        self.name = name
        self.predicate = predicate
        self.partition_key_fn = partition_key_fn
        self.sort_key_fn = sort_key_fn
        self.indexed_value_fn = indexed_value_fn
        self.property_fns: dict[str, Callable[[Any], Any]] = dict(property_fns or {})

    def __repr__(self) -> str:
        return f"IndexDefinition(name={self.name!r})"

    # --- Fluent builders ---

    def where(self, predicate: Callable[[Any], bool]) -> IndexDefinition:
        self.predicate = predicate
        return self

    def partitioned_by(self, fn: Callable[[Any], str]) -> IndexDefinition:
        self.partition_key_fn = fn
        return self

    def sorted_by(self, fn: Callable[[Any], str]) -> IndexDefinition:
        self.sort_key_fn = fn
        return self

    def indexing(self, fn: Callable[[Any], Any]) -> IndexDefinition:
        self.indexed_value_fn = fn
        return self

    def projecting(self, name: str, fn: Callable[[Any], Any]) -> IndexDefinition:
        """Copy an attribute of the value into a named, filterable record property."""
        self.property_fns[name] = fn
        return self

    # --- Evaluation ---

    def applies_to(self, value: Any) -> bool:
        return True if self.predicate is None else bool(self.predicate(value))

    def partition_key_for(self, value: Any) -> str:
        if self.partition_key_fn is None:
            return self.name
        return str(self.partition_key_fn(value))

    def sort_key_for(self, value: Any, codec: DomainCodec[Any]) -> str:
        if self.sort_key_fn is not None:
            return str(self.sort_key_fn(value))
        if codec.identity is not None:
            return serialize_identity(codec.identity(value))
        return chronological_key()

    def indexed_value_for(self, value: Any) -> Any:
        if self.indexed_value_fn is None:
            return ""
        return self.indexed_value_fn(value)

    def properties_for(self, value: Any) -> dict[str, Any]:
        return {name: fn(value) for name, fn in self.property_fns.items()}
