"""Packing of record writes into backend-legal transaction groups."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field

from fattable.errors import FatTableError
from fattable.operations import (
    MAX_BATCH_BYTES,
    MAX_BATCH_OPERATIONS,
    OperationKind,
    TableOperation,
    TableRecord,
)
from fattable.storage import TableStoreProtocol, check_batch

logger = logging.getLogger(__name__)


@dataclass
class TransactionGroup:
    """Records of one partition written in a single atomic batch."""

    partition_key: str
    kind: OperationKind
    records: list[TableRecord] = field(default_factory=list)
    size_bytes: int = 0

    def operations(self, kind: OperationKind | None = None) -> list[TableOperation]:
        return [TableOperation(kind or self.kind, r) for r in self.records]


@dataclass
class GroupResult:
    group: TransactionGroup
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BatchAssembler:
    """Greedy first-fit packer and dispatcher for one table store."""

    def __init__(
        self,
        store: TableStoreProtocol,
        *,
        max_operations: int = MAX_BATCH_OPERATIONS,
        max_bytes: int = MAX_BATCH_BYTES,
    ) -> None:
        self.store = store
        self.max_operations = max_operations
        self.max_bytes = max_bytes

    def assemble(
        self, records: Sequence[TableRecord], kind: OperationKind
    ) -> list[TransactionGroup]:
        """Group ``records`` by partition key, then pack each partition in order.

        Partitions appear in first-seen order and records keep their input
        order inside a partition.
        """
        by_partition: dict[str, list[TableRecord]] = {}
        for record in records:
            by_partition.setdefault(record.partition_key, []).append(record)

        groups: list[TransactionGroup] = []
        for partition_key, members in by_partition.items():
            current = TransactionGroup(partition_key, kind)
            for record in members:
                size = record.serialized_size()
                fits = (
                    current.size_bytes + size <= self.max_bytes
                    and len(current.records) < self.max_operations
                )
                if current.records and not fits:
                    groups.append(current)
                    current = TransactionGroup(partition_key, kind)
                current.records.append(record)
                current.size_bytes += size
            groups.append(current)

        for group in groups:
            check_batch(group.operations())
        return groups

    def dispatch(
        self,
        groups: Sequence[TransactionGroup],
        *,
        executor: Executor | None = None,
        timeout: float | None = None,
        upsert_before_delete: bool = False,
    ) -> list[GroupResult]:
        """Write each group as one batch and report per-group outcomes.

        Partitions are dispatched concurrently when an executor is given; the
        groups of one partition are issued one after another in packer order.
        Nothing is retried. ``timeout`` applies to each store call, so a slow
        call fails only its own group.
        """
        by_partition: dict[str, list[TransactionGroup]] = {}
        for group in groups:
            by_partition.setdefault(group.partition_key, []).append(group)

        if executor is None:
            results: list[GroupResult] = []
            for partition_groups in by_partition.values():
                results.extend(self._run_partition(partition_groups, timeout, upsert_before_delete))
            return results

        futures: list[Future[list[GroupResult]]] = [
            executor.submit(self._run_partition, partition_groups, timeout, upsert_before_delete)
            for partition_groups in by_partition.values()
        ]
        # Store calls carry the timeout; the wait here only collects outcomes.
        results = []
        for future in futures:
            results.extend(future.result())
        return results

    def _run_partition(
        self,
        groups: list[TransactionGroup],
        timeout: float | None,
        upsert_before_delete: bool,
    ) -> list[GroupResult]:
        results = []
        for group in groups:
            try:
                if upsert_before_delete and group.kind is OperationKind.DELETE:
                    self.store.execute_batch(
                        group.operations(OperationKind.UPSERT_REPLACE), timeout=timeout
                    )
                self.store.execute_batch(group.operations(), timeout=timeout)
            except FatTableError as e:
                logger.warning(
                    "batch of %d %s ops on partition %r failed: %s",
                    len(group.records),
                    group.kind.value,
                    group.partition_key,
                    e,
                )
                results.append(GroupResult(group, e))
                continue
            logger.debug(
                "dispatched %d %s ops (%d bytes) to partition %r",
                len(group.records),
                group.kind.value,
                group.size_bytes,
                group.partition_key,
            )
            results.append(GroupResult(group))
        return results
