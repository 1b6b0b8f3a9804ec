"""Point lookups and paged partition scans."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Any, Generic, TypeVar

from fattable.filters import FilterExpression, partition_key, prop, sort_key
from fattable.keys import KeyEncoder
from fattable.operations import TableOperation, TableQuery, TableRecord
from fattable.storage import TableStoreProtocol

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RecordScan(Generic[T]):
    """Lazy, finite, restartable scan over the pages of one query.

    Every call to ``iter()`` starts again from the first page.
    """

    def __init__(
        self,
        fetch_pages: Callable[[], Iterator[list[TableRecord]]],
        transform: Callable[[TableRecord], T],
    ) -> None:
        self._fetch_pages = fetch_pages
        self._transform = transform

    def __iter__(self) -> Iterator[T]:
        for page in self._fetch_pages():
            for record in page:
                yield self._transform(record)

    def map(self, fn: Callable[[T], Any]) -> RecordScan[Any]:
        transform = self._transform
        return RecordScan(self._fetch_pages, lambda r: fn(transform(r)))

    def first(self) -> T | None:
        for item in self:
            return item
        return None

    def to_list(self) -> list[T]:
        return list(self)


class QueryFacade:
    """Reads one table, encoding keys on the way in and decoding on the way out."""

    def __init__(
        self,
        store: TableStoreProtocol,
        *,
        encoder: KeyEncoder | None = None,
        page_size: int | None = None,
        timeout: float | None = None,
    ) -> None:
        self.store = store
        self.encoder = encoder or KeyEncoder()
        self.page_size = page_size
        self.timeout = timeout

    def _decode(self, record: TableRecord) -> TableRecord:
        return record.with_keys(
            self.encoder.decode(record.partition_key),
            self.encoder.decode(record.sort_key),
        )

    def get(self, pk: str, sk: str) -> TableRecord | None:
        """Point lookup; None when the key does not exist."""
        op = TableOperation.retrieve(self.encoder.encode(pk), self.encoder.encode(sk))
        record = self.store.execute(op, timeout=self.timeout)
        return None if record is None else self._decode(record)

    def scan(self, pk: str) -> RecordScan[TableRecord]:
        return self._scan(partition_key() == self.encoder.encode(pk))

    def scan_range(self, pk: str, min_sk: str = "", max_sk: str = "") -> RecordScan[TableRecord]:
        """Scan one partition within a closed sort key range; empty bounds are open."""
        expr: FilterExpression = partition_key() == self.encoder.encode(pk)
        if min_sk:
            expr = expr & (sort_key() >= self.encoder.encode(min_sk))
        if max_sk:
            expr = expr & (sort_key() <= self.encoder.encode(max_sk))
        return self._scan(expr)

    def scan_where(self, pk: str, property_name: str, value: Any) -> RecordScan[TableRecord]:
        """Scan one partition for records whose property equals ``value``.

        The runtime type of ``value`` selects the comparison encoding.
        """
        expr = (partition_key() == self.encoder.encode(pk)) & (prop(property_name) == value)
        return self._scan(expr)

    def _scan(self, expr: FilterExpression) -> RecordScan[TableRecord]:
        query = TableQuery(expr, page_size=self.page_size)

        def fetch_pages() -> Iterator[list[TableRecord]]:
            continuation = None
            pages = 0
            while True:
                page = self.store.execute_query_segmented(
                    query, continuation, timeout=self.timeout
                )
                pages += 1
                logger.debug("fetched page %d with %d records", pages, len(page.records))
                yield page.records
                continuation = page.continuation
                if continuation is None:
                    return

        return RecordScan(fetch_pages, self._decode)
