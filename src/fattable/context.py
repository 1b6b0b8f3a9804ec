"""Typed table facade: one logical table for one domain type."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import Any, Generic, TypeVar

from fattable.catalog import IndexCatalog
from fattable.codecs import DomainCodec, serialize_identity
from fattable.config import FatTableConfig
from fattable.fat_entity import FatEntityCodec
from fattable.index import INDEXED_PROPERTY, IndexDefinition, indexed_property_value
from fattable.keys import KeyEncoder, clean_table_name
from fattable.materialize import MaterializationEngine, WriteReport
from fattable.operations import OperationKind, TableRecord
from fattable.query import QueryFacade, RecordScan
from fattable.storage import TableStoreProtocol, open_table_store

logger = logging.getLogger(__name__)

T = TypeVar("T")


def default_table_name(codec: DomainCodec[Any]) -> str:
    return clean_table_name(f"{codec.type_name}Table")


def _as_list(values: Any) -> list[Any]:
    if isinstance(values, (list, tuple, set, frozenset, Iterator)):
        return list(values)
    return [values]


class TableContext(Generic[T]):
    """Reads and writes domain values of one type through their indexes.

    Every value is written to the default index, keyed by its identity, plus
    to each registered index whose predicate holds for it.
    """

    def __init__(
        self,
        store: TableStoreProtocol,
        codec: DomainCodec[T],
        *,
        default_index_name: str | None = None,
        config: FatTableConfig | None = None,
    ) -> None:
        self.config = config or FatTableConfig()
        self.store = store
        self.codec = codec
        self.encoder = KeyEncoder()

        max_slots = self.config.max_slots
        if store.max_value_slots is not None:
            max_slots = min(max_slots, store.max_value_slots)
        self.fat_codec = FatEntityCodec(self.config.max_chunk_size, max_slots)

        store.ensure_table_exists()
        self.catalog = IndexCatalog(
            store,
            default_index_name or self.config.default_index_name,
            timeout=self.config.request_timeout_s,
        )
        self.catalog.bootstrap()
        self.engine = MaterializationEngine(
            store,
            codec,
            self.catalog,
            config=self.config,
            fat_codec=self.fat_codec,
            encoder=self.encoder,
        )
        self.reader = self.engine.reader

    @classmethod
    def open(
        cls,
        codec: DomainCodec[T],
        *,
        storage_uri: str | None = None,
        db_path: str | None = None,
        table_name: str | None = None,
        default_index_name: str | None = None,
        config: FatTableConfig | None = None,
    ) -> TableContext[T]:
        """Open a context on a storage URI; the table defaults to ``<TypeName>Table``."""
        name = clean_table_name(table_name) if table_name else default_table_name(codec)
        store = open_table_store(name, storage_uri=storage_uri, db_path=db_path, config=config)
        return cls(store, codec, default_index_name=default_index_name, config=config)

    @property
    def table_name(self) -> str:
        return self.store.table_name

    def close(self) -> None:
        self.engine.close()
        self.store.close()

    def __enter__(self) -> TableContext[T]:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # --- Indexes ---

    @property
    def default_index(self) -> IndexDefinition:
        return self.catalog.default_index

    def create_index(self, name: str) -> IndexDefinition:
        """Create and register an index with default rules; configure it fluently."""
        existing = self.catalog.get(name)
        if existing is not None:
            return existing
        definition = IndexDefinition(name)
        self.catalog.register(definition)
        return definition

    def add_index(self, definition: IndexDefinition) -> IndexDefinition:
        """Register ``definition``; an existing index of that name wins."""
        if not self.catalog.register(definition):
            logger.debug("index %r already registered", definition.name)
        return self.catalog.get(definition.name)  # type: ignore[return-value]

    def refresh_indexes(self) -> int:
        """Re-save every value of the default index through all indexes."""
        count, results = self.engine.backfill()
        failed = [r for r in results if not r.ok]
        if failed:
            raise failed[0].error  # type: ignore[misc]
        return count

    # --- Writes ---

    def write(self, values: T | Iterable[T], kind: OperationKind) -> WriteReport:
        return self.engine.write(_as_list(values), kind)

    def insert(self, values: T | Iterable[T]) -> WriteReport:
        return self.write(values, OperationKind.INSERT)

    def upsert(self, values: T | Iterable[T]) -> WriteReport:
        return self.write(values, OperationKind.UPSERT_MERGE)

    def insert_or_replace(self, values: T | Iterable[T]) -> WriteReport:
        return self.write(values, OperationKind.UPSERT_REPLACE)

    save = insert_or_replace

    def replace(self, values: T | Iterable[T]) -> WriteReport:
        return self.write(values, OperationKind.REPLACE)

    def delete(self, values: T | Iterable[T]) -> WriteReport:
        return self.write(values, OperationKind.DELETE)

    # --- Reads ---

    def decode(self, record: TableRecord) -> T:
        """Rebuild the domain value held in a record's fat-entity slots."""
        return self.codec.loads(FatEntityCodec.join(record.properties))

    def _index(self, name: str | None) -> IndexDefinition:
        if name is None:
            return self.default_index
        definition = self.catalog.get(name)
        if definition is None:
            raise KeyError(f"Unknown index '{name}'")
        return definition

    def _partition(self, name: str | None, partition_key: str | None) -> str:
        definition = self._index(name)
        if partition_key is not None:
            return partition_key
        if definition.partition_key_fn is not None:
            raise ValueError(
                f"Index '{definition.name}' derives partition keys from values; "
                "pass partition_key explicitly"
            )
        return definition.name

    def get_by_id(
        self, identity: Any, index_name: str | None = None, *, partition_key: str | None = None
    ) -> T | None:
        """Point lookup by identity; None when absent."""
        record = self.reader.get(
            self._partition(index_name, partition_key), serialize_identity(identity)
        )
        return None if record is None else self.decode(record)

    def get_all(self) -> RecordScan[T]:
        return self.get_from_index(None)

    def get_from_index(
        self, name: str | None, *, partition_key: str | None = None
    ) -> RecordScan[T]:
        return self.reader.scan(self._partition(name, partition_key)).map(self.decode)

    def get_range(
        self,
        name: str | None,
        min_sort_key: str = "",
        max_sort_key: str = "",
        *,
        partition_key: str | None = None,
    ) -> RecordScan[T]:
        return self.reader.scan_range(
            self._partition(name, partition_key), min_sort_key, max_sort_key
        ).map(self.decode)

    def get_by_indexed_value(
        self, name: str | None, value: Any, *, partition_key: str | None = None
    ) -> RecordScan[T]:
        return self.reader.scan_where(
            self._partition(name, partition_key), INDEXED_PROPERTY, indexed_property_value(value)
        ).map(self.decode)

    def get_where(
        self,
        name: str | None,
        property_name: str,
        value: Any,
        *,
        partition_key: str | None = None,
    ) -> RecordScan[T]:
        return self.reader.scan_where(
            self._partition(name, partition_key), property_name, value
        ).map(self.decode)
