"""Write-time fan-out of domain values into every matching index."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from fattable.batching import BatchAssembler, GroupResult
from fattable.catalog import IndexCatalog
from fattable.codecs import DomainCodec
from fattable.config import FatTableConfig
from fattable.errors import ObjectTooLargeError, PartialWriteError, RecordTooLargeError
from fattable.fat_entity import FatEntityCodec
from fattable.index import INDEXED_PROPERTY, IndexDefinition, indexed_property_value
from fattable.keys import KeyEncoder
from fattable.operations import MAX_BATCH_BYTES, WRITE_KINDS, OperationKind, TableRecord
from fattable.query import QueryFacade
from fattable.storage import TableStoreProtocol

logger = logging.getLogger(__name__)


@dataclass
class MaterializedRecord:
    """One derived copy of a domain value, located in one index."""

    index_name: str
    value: Any
    partition_key: str
    sort_key: str
    record: TableRecord


@dataclass
class FailedRecord:
    index_name: str
    value: Any
    error: Exception


@dataclass
class WriteReport:
    """Outcome of one write call, per record and per transaction group."""

    kind: OperationKind
    succeeded_records: list[MaterializedRecord] = field(default_factory=list)
    failed_records: list[FailedRecord] = field(default_factory=list)
    group_results: list[GroupResult] = field(default_factory=list)
    backfilled: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed_records and all(g.ok for g in self.group_results)

    def raise_for_failures(self) -> WriteReport:
        if not self.ok:
            raise PartialWriteError(self)
        return self


class MaterializationEngine:
    """Builds index records for domain values and writes them in batches."""

    def __init__(
        self,
        store: TableStoreProtocol,
        codec: DomainCodec[Any],
        catalog: IndexCatalog,
        *,
        config: FatTableConfig | None = None,
        fat_codec: FatEntityCodec | None = None,
        encoder: KeyEncoder | None = None,
    ) -> None:
        self.store = store
        self.codec = codec
        self.catalog = catalog
        self.config = config or FatTableConfig()
        self.fat_codec = fat_codec or FatEntityCodec(
            self.config.max_chunk_size, self.config.max_slots
        )
        self.encoder = encoder or KeyEncoder()
        self.max_record_bytes = MAX_BATCH_BYTES
        if store.max_record_bytes is not None:
            self.max_record_bytes = min(MAX_BATCH_BYTES, store.max_record_bytes)
        self.assembler = BatchAssembler(store)
        self.reader = QueryFacade(
            store,
            encoder=self.encoder,
            page_size=self.config.page_size,
            timeout=self.config.request_timeout_s,
        )
        self._executor: ThreadPoolExecutor | None = None

    @property
    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.max_workers, thread_name_prefix="fattable-write"
            )
        return self._executor

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    @property
    def upsert_before_delete(self) -> bool:
        if self.config.upsert_before_delete is not None:
            return self.config.upsert_before_delete
        return self.store.requires_upsert_before_delete

    # --- Record construction ---

    def build_record(self, value: Any, definition: IndexDefinition) -> MaterializedRecord:
        """Build the record ``definition`` derives from ``value``.

        Raises ObjectTooLargeError when the serialized value needs too many
        slots, or RecordTooLargeError when the whole record is over the byte
        limit of one item or batch.
        """
        properties: dict[str, Any] = dict(self.fat_codec.split(self.codec.dumps(value)))
        indexed = definition.indexed_value_for(value)
        if indexed is not None:
            properties[INDEXED_PROPERTY] = indexed_property_value(indexed)
        for name, projected in definition.properties_for(value).items():
            if projected is not None:
                properties[name] = projected

        pk = definition.partition_key_for(value)
        sk = definition.sort_key_for(value, self.codec)
        record = TableRecord(self.encoder.encode(pk), self.encoder.encode(sk), properties)
        size = record.serialized_size()
        if size > self.max_record_bytes:
            raise RecordTooLargeError(pk, sk, size, self.max_record_bytes)
        return MaterializedRecord(definition.name, value, pk, sk, record)

    def materialize(
        self, values: Iterable[Any]
    ) -> tuple[list[MaterializedRecord], list[FailedRecord]]:
        """Evaluate every registered definition against every value."""
        built: list[MaterializedRecord] = []
        failed: list[FailedRecord] = []
        definitions = self.catalog.definitions
        for value in values:
            for definition in definitions:
                if not definition.applies_to(value):
                    continue
                try:
                    built.append(self.build_record(value, definition))
                except ObjectTooLargeError as e:
                    logger.warning(
                        "skipping %s record for index %r: %s",
                        self.codec.type_name,
                        definition.name,
                        e,
                    )
                    failed.append(FailedRecord(definition.name, value, e))
        return built, failed

    # --- Writes ---

    def write(self, values: Iterable[Any], kind: OperationKind) -> WriteReport:
        """Fan ``values`` out to every matching index and write them with ``kind``."""
        if kind not in WRITE_KINDS:
            raise ValueError(f"{kind.value} is not a write operation")
        values = list(values)
        # The whole serialized value travels in every record, so a merge is a replace.
        if kind is OperationKind.UPSERT_MERGE:
            kind = OperationKind.UPSERT_REPLACE

        report = WriteReport(kind=kind)
        # Fixed partitions are noted whether or not any value matches them.
        new_fixed = self.catalog.note_partition_keys(
            d.name for d in self.catalog.definitions if d.partition_key_fn is None
        )
        built, failed = self.materialize(values)
        report.failed_records.extend(failed)
        new_derived = self.catalog.note_partition_keys(m.partition_key for m in built)

        if new_fixed or new_derived:
            backfill_count, backfill_results = self.backfill()
            report.backfilled = backfill_count
            report.group_results.extend(backfill_results)

        report.group_results.extend(self._dispatch(built, kind, report))
        if not report.ok:
            logger.warning(
                "%s of %d %s value(s): %d record(s) failed, %d group(s) failed",
                kind.value,
                len(values),
                self.codec.type_name,
                len(report.failed_records),
                sum(1 for g in report.group_results if not g.ok),
            )
        return report

    def _dispatch(
        self, built: list[MaterializedRecord], kind: OperationKind, report: WriteReport
    ) -> list[GroupResult]:
        if not built:
            return []
        by_record = {id(m.record): m for m in built}
        groups = self.assembler.assemble([m.record for m in built], kind)
        results = self.assembler.dispatch(
            groups,
            executor=self.executor,
            timeout=self.config.request_timeout_s,
            upsert_before_delete=self.upsert_before_delete,
        )
        for result in results:
            members = [by_record[id(r)] for r in result.group.records]
            if result.ok:
                report.succeeded_records.extend(members)
            else:
                assert result.error is not None
                report.failed_records.extend(
                    FailedRecord(m.index_name, m.value, result.error) for m in members
                )
        return results

    def backfill(self) -> tuple[int, list[GroupResult]]:
        """Re-save the default index partition through every registered index.

        Returns the number of values re-saved and the group results.
        """
        default_partition = self.catalog.default_index.partition_key_for(None)
        values = [
            self.codec.loads(FatEntityCodec.join(record.properties))
            for record in self.reader.scan(default_partition)
        ]
        if not values:
            return 0, []

        built, failed = self.materialize(values)
        for f in failed:
            logger.warning("backfill could not rebuild a record for %r: %s", f.index_name, f.error)
        # Partitions found here are written below; no further backfill is needed.
        self.catalog.note_partition_keys(m.partition_key for m in built)
        groups = self.assembler.assemble([m.record for m in built], OperationKind.UPSERT_REPLACE)
        results = self.assembler.dispatch(
            groups, executor=self.executor, timeout=self.config.request_timeout_s
        )
        logger.info(
            "backfilled %d %s value(s) from partition %r into %d group(s)",
            len(values),
            self.codec.type_name,
            default_partition,
            len(groups),
        )
        return len(values), results
