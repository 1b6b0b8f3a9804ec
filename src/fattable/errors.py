"""Structured error types for fattable."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fattable.materialize import WriteReport


class FatTableError(Exception):
    """Base error for all fattable errors."""


class ObjectTooLargeError(FatTableError):
    """Raised when a serialized value needs more fat-entity slots than allowed."""

    def __init__(self, payload: str, slots_needed: int, max_slots: int) -> None:
        self.payload = payload
        self.slots_needed = slots_needed
        self.max_slots = max_slots
        super().__init__(
            f"Object is too large for a fat entity: {len(payload)} characters need "
            f"{slots_needed} slots, at most {max_slots} allowed"
        )


class RecordTooLargeError(ObjectTooLargeError):
    """Raised when a built record exceeds the byte limit of one backend item or batch."""

    def __init__(
        self, partition_key: str, sort_key: str, size_bytes: int, max_bytes: int
    ) -> None:
        self.partition_key = partition_key
        self.sort_key = sort_key
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes
        FatTableError.__init__(
            self,
            f"Record ({partition_key!r}, {sort_key!r}) is {size_bytes} bytes, "
            f"at most {max_bytes} allowed",
        )


class BatchConstraintViolation(FatTableError):
    """Raised when a transaction group breaks the backend batch limits.

    The batch assembler never produces such a group; seeing this error means a
    defect, not a condition to recover from.
    """

    def __init__(self, partition_keys: list[str], count: int, size_bytes: int) -> None:
        self.partition_keys = partition_keys
        self.count = count
        self.size_bytes = size_bytes
        super().__init__(
            f"Invalid batch: {count} operations, {size_bytes} bytes, "
            f"partition keys {partition_keys}"
        )


class StorageBackendError(FatTableError):
    """Raised when backend storage operations fail."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage backend error during {operation}: {detail}")


class BackendTransientError(StorageBackendError):
    """Raised for throttling, timeouts, and connection failures worth retrying."""


class ConditionFailedError(StorageBackendError):
    """Raised when an insert hits an existing key or a replace/delete a missing one."""

    def __init__(self, operation: str, partition_key: str, sort_key: str) -> None:
        self.partition_key = partition_key
        self.sort_key = sort_key
        super().__init__(
            operation,
            f"precondition failed for ({partition_key!r}, {sort_key!r})",
        )


class PartialWriteError(FatTableError):
    """Raised by WriteReport.raise_for_failures() when any record or group failed."""

    def __init__(self, report: WriteReport) -> None:
        self.report = report
        failed = len(report.failed_records)
        groups = sum(1 for g in report.group_results if not g.ok)
        super().__init__(f"Write partially failed: {failed} record(s), {groups} group(s)")
