"""Index catalog: registered index definitions and the persisted partition list."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Iterable

from fattable.index import IndexDefinition
from fattable.operations import OperationKind, TableOperation, TableRecord
from fattable.storage import TableStoreProtocol

logger = logging.getLogger(__name__)

METADATA_PARTITION = "TableMetaData"
METADATA_SORT_KEY = "PartitionSchemas"
PARTITION_KEYS_PROPERTY = "PartitionKeys"
VERSION_PROPERTY = "CatalogVersion"


class IndexCatalog:
    """Index definitions for one table plus the set of partitions ever written.

    The partition list lives in a reserved metadata row and is rewritten in
    full whenever it grows. Writes are unconditional overwrites: two
    processes adding different partitions at once can lose one of them until
    the next write notes it again.
    """

    def __init__(
        self,
        store: TableStoreProtocol,
        default_index_name: str,
        *,
        timeout: float | None = None,
    ) -> None:
        self._store = store
        self._timeout = timeout
        self._lock = threading.Lock()
        self._definitions: dict[str, IndexDefinition] = {}
        self._partition_keys: list[str] = []
        self.version: str | None = None
        self.default_index_name = default_index_name
        self.register(IndexDefinition(default_index_name))

    # --- Definitions ---

    def register(self, definition: IndexDefinition) -> bool:
        """Add ``definition``; a name that is already registered is ignored."""
        if definition.name in self._definitions:
            return False
        self._definitions[definition.name] = definition
        return True

    @property
    def definitions(self) -> list[IndexDefinition]:
        return list(self._definitions.values())

    def get(self, name: str) -> IndexDefinition | None:
        return self._definitions.get(name)

    @property
    def default_index(self) -> IndexDefinition:
        return self._definitions[self.default_index_name]

    # --- Partitions ---

    @property
    def partition_keys(self) -> list[str]:
        with self._lock:
            return list(self._partition_keys)

    def bootstrap(self) -> None:
        """Load the persisted partition list, creating it on first use."""
        existing = self._store.execute(
            TableOperation.retrieve(METADATA_PARTITION, METADATA_SORT_KEY),
            timeout=self._timeout,
        )
        with self._lock:
            if existing is None:
                self._partition_keys = [METADATA_PARTITION, self.default_index_name]
                self._persist()
                logger.info(
                    "created index catalog for %s with partitions %s",
                    getattr(self._store, "table_name", "?"),
                    self._partition_keys,
                )
                return

            stored = json.loads(existing.get(PARTITION_KEYS_PROPERTY, "[]"))
            self.version = existing.get(VERSION_PROPERTY)
            merged = list(stored)
            for key in self._partition_keys:
                if key not in merged:
                    merged.append(key)
            if METADATA_PARTITION not in merged:
                merged.insert(0, METADATA_PARTITION)
            self._partition_keys = merged
            logger.debug("loaded index catalog with %d partitions", len(merged))

    def note_partition_key(self, key: str) -> bool:
        """Record ``key``; persists and returns True only when it is new."""
        return self.note_partition_keys([key])

    def note_partition_keys(self, keys: Iterable[str]) -> bool:
        """Record several keys with at most one catalog write."""
        with self._lock:
            new = [k for k in dict.fromkeys(keys) if k not in self._partition_keys]
            if not new:
                return False
            self._partition_keys.extend(new)
            self._persist()
        logger.info("noted new partitions %s", new)
        return True

    def _persist(self) -> None:
        self.version = uuid.uuid4().hex
        record = TableRecord(
            METADATA_PARTITION,
            METADATA_SORT_KEY,
            {
                PARTITION_KEYS_PROPERTY: json.dumps(self._partition_keys),
                VERSION_PROPERTY: self.version,
            },
        )
        self._store.execute(
            TableOperation(OperationKind.UPSERT_REPLACE, record), timeout=self._timeout
        )
