"""Records, operations, and queries exchanged with a table store."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from fattable.filters import FilterExpression
from fattable.values import TypedValue, coerce_properties

# Backend transaction limits for one entity group transaction.
MAX_BATCH_OPERATIONS = 100
MAX_BATCH_BYTES = 4_194_304


class OperationKind(str, Enum):
    INSERT = "insert"
    UPSERT_MERGE = "upsert_merge"
    UPSERT_REPLACE = "upsert_replace"
    REPLACE = "replace"
    DELETE = "delete"
    RETRIEVE = "retrieve"


WRITE_KINDS = frozenset(
    {
        OperationKind.INSERT,
        OperationKind.UPSERT_MERGE,
        OperationKind.UPSERT_REPLACE,
        OperationKind.REPLACE,
        OperationKind.DELETE,
    }
)


@dataclass
class TableRecord:
    """One row of a table: a two-part key plus typed properties."""

    partition_key: str
    sort_key: str
    properties: dict[str, TypedValue] = field(default_factory=dict)
    etag: str | None = None

    def __post_init__(self) -> None:
        self.properties = coerce_properties(self.properties)

    def get(self, name: str, default: Any = None) -> Any:
        """Return the plain value of property ``name``."""
        typed = self.properties.get(name)
        return default if typed is None else typed.value

    def to_json(self) -> dict[str, Any]:
        return {
            "PartitionKey": self.partition_key,
            "SortKey": self.sort_key,
            "Properties": {name: v.to_json() for name, v in self.properties.items()},
        }

    def serialized_size(self) -> int:
        """Byte size of the record's UTF-8 JSON form, counted against the batch size limit."""
        body = json.dumps(self.to_json(), separators=(",", ":"), ensure_ascii=False)
        return len(body.encode("utf-8"))

    def with_keys(self, partition_key: str, sort_key: str) -> TableRecord:
        return TableRecord(
            partition_key=partition_key,
            sort_key=sort_key,
            properties=dict(self.properties),
            etag=self.etag,
        )


@dataclass
class TableOperation:
    kind: OperationKind
    record: TableRecord

    @classmethod
    def retrieve(cls, partition_key: str, sort_key: str) -> TableOperation:
        return cls(OperationKind.RETRIEVE, TableRecord(partition_key, sort_key))

    @property
    def partition_key(self) -> str:
        return self.record.partition_key

    @property
    def sort_key(self) -> str:
        return self.record.sort_key


@dataclass
class TableQuery:
    """A filter plus the page size to request from the backend."""

    filter: FilterExpression
    page_size: int | None = None


@dataclass
class QueryPage:
    records: list[TableRecord]
    # Opaque cursor; None means the backend has nothing further.
    continuation: str | None = None
