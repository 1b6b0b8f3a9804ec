"""Table store backends and shared filter/batch helpers."""

from __future__ import annotations

import base64
import json
import logging
import os
import sqlite3
import threading
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlparse

from fattable.config import FatTableConfig
from fattable.errors import (
    BackendTransientError,
    BatchConstraintViolation,
    ConditionFailedError,
    StorageBackendError,
)
from fattable.filters import (
    PARTITION_KEY_FIELD,
    SORT_KEY_FIELD,
    ComparisonExpression,
    FilterExpression,
    flatten,
)
from fattable.operations import (
    MAX_BATCH_BYTES,
    MAX_BATCH_OPERATIONS,
    OperationKind,
    QueryPage,
    TableOperation,
    TableQuery,
    TableRecord,
)
from fattable.values import TypedValue

logger = logging.getLogger(__name__)


def check_batch(ops: Sequence[TableOperation]) -> None:
    """Enforce the entity group transaction preconditions.

    One partition key, at most 100 operations, at most 4,194,304 bytes.
    """
    partition_keys = sorted({op.partition_key for op in ops})
    size = sum(op.record.serialized_size() for op in ops)
    if (
        not ops
        or len(partition_keys) != 1
        or len(ops) > MAX_BATCH_OPERATIONS
        or size > MAX_BATCH_BYTES
    ):
        raise BatchConstraintViolation(partition_keys, len(ops), size)
    if any(op.kind is OperationKind.RETRIEVE for op in ops):
        raise StorageBackendError("execute_batch", "retrieve cannot be part of a batch")


def encode_continuation(partition_key: str, sort_key: str) -> str:
    raw = json.dumps([partition_key, sort_key], separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_continuation(token: str) -> tuple[str, str]:
    try:
        partition_key, sort_key = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
    except Exception as e:
        raise StorageBackendError("decode_continuation", f"invalid token {token!r}") from e
    return partition_key, sort_key


def _compile_filter(expr: FilterExpression, params: list[Any]) -> str:
    """Compile a conjunctive FilterExpression into a SQL WHERE clause fragment."""
    parts = [_compile_comparison(c, params) for c in flatten(expr)]
    return " AND ".join(f"({p})" for p in parts)


def _compile_comparison(expr: ComparisonExpression, params: list[Any]) -> str:
    """Compile a single comparison expression to SQL."""
    sql_op = {"==": "=", ">=": ">=", "<=": "<="}[expr.op]
    if expr.field_path == PARTITION_KEY_FIELD:
        params.append(expr.value)
        return f"partition_key {sql_op} ?"
    if expr.field_path == SORT_KEY_FIELD:
        params.append(expr.value)
        return f"sort_key {sql_op} ?"

    typed: TypedValue = expr.value
    name = expr.property_name
    params.append(typed.kind.value)
    params.append(typed.wire_value())
    return (
        f"json_extract(properties_json, '$.{name}.t') = ? "
        f"AND json_extract(properties_json, '$.{name}.v') {sql_op} ?"
    )


@dataclass(frozen=True)
class StorageTarget:
    """Resolved storage target from a storage URI."""

    backend: str
    uri: str
    db_path: str | None = None
    region: str | None = None
    table_prefix: str = ""


def parse_storage_target(
    storage_uri: str | None = None,
    *,
    db_path: str | None = None,
) -> StorageTarget:
    """Resolve backend target from a db_path or a storage URI."""
    if storage_uri is None and db_path is None:
        db_path = "fattable.db"

    if storage_uri is None and db_path is not None:
        return StorageTarget(backend="sqlite", uri=f"sqlite:///{db_path}", db_path=db_path)

    assert storage_uri is not None
    parsed = urlparse(storage_uri)

    if parsed.scheme == "sqlite":
        sqlite_path = parsed.path
        if parsed.netloc:
            sqlite_path = f"{parsed.netloc}{sqlite_path}"
        elif sqlite_path.startswith("//"):
            # sqlite:////abs/path -> /abs/path
            sqlite_path = sqlite_path[1:]
        elif sqlite_path.startswith("/"):
            # sqlite:///rel/path -> rel/path
            sqlite_path = sqlite_path[1:]
        if sqlite_path in ("/:memory:", ":memory:"):
            sqlite_path = ":memory:"
        if not sqlite_path:
            raise StorageBackendError("parse_storage_uri", f"Invalid sqlite URI: {storage_uri}")
        if db_path is not None and os.path.abspath(db_path) != os.path.abspath(sqlite_path):
            raise StorageBackendError(
                "parse_storage_uri",
                f"Conflicting db_path '{db_path}' and storage_uri '{storage_uri}'",
            )
        return StorageTarget(backend="sqlite", uri=storage_uri, db_path=sqlite_path)

    if parsed.scheme == "dynamodb":
        if db_path is not None:
            raise StorageBackendError(
                "parse_storage_uri",
                "db_path cannot be provided for dynamodb storage targets",
            )
        return StorageTarget(
            backend="dynamodb",
            uri=storage_uri,
            region=parsed.netloc or None,
            table_prefix=parsed.path.strip("/"),
        )

    raise StorageBackendError(
        "parse_storage_uri",
        f"Unsupported storage URI scheme '{parsed.scheme}' for '{storage_uri}'",
    )


@runtime_checkable
class TableStoreProtocol(Protocol):
    """Contract of the partitioned key-value table service, bound to one table."""

    table_name: str
    requires_upsert_before_delete: bool
    max_value_slots: int | None
    max_record_bytes: int | None

    def ensure_table_exists(self) -> None: ...

    def execute(
        self, op: TableOperation, *, timeout: float | None = None
    ) -> TableRecord | None: ...

    def execute_batch(
        self, ops: Sequence[TableOperation], *, timeout: float | None = None
    ) -> None: ...

    def execute_query_segmented(
        self,
        query: TableQuery,
        continuation: str | None,
        *,
        timeout: float | None = None,
    ) -> QueryPage: ...

    def storage_info(self) -> dict[str, Any]: ...

    def close(self) -> None: ...


class SqliteTableStore:
    """SQLite-backed table store.

    Mirrors the strict contract of hosted table services: inserts fail on an
    existing key, replaces and deletes fail on a missing one, and a batch is
    applied all-or-nothing.
    """

    requires_upsert_before_delete = True
    max_value_slots: int | None = None
    max_record_bytes: int | None = None

    def __init__(
        self,
        db_path: str,
        table_name: str,
        *,
        config: FatTableConfig | None = None,
        connection: sqlite3.Connection | None = None,
    ) -> None:
        cfg = config or FatTableConfig()
        self.db_path = db_path
        self.table_name = table_name
        self.page_size = cfg.page_size
        self._owns_connection = connection is None
        self._conn = connection or sqlite3.connect(
            db_path,
            timeout=cfg.sqlite_busy_timeout_s,
            check_same_thread=False,
            isolation_level=None,
        )
        # One connection is shared by the write engine's worker threads.
        self._lock = threading.RLock()
        if db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def _create_tables(self) -> None:
        with self._lock:
            self._conn.executescript("""
                CREATE TABLE IF NOT EXISTS tables (
                    table_name TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS table_rows (
                    table_name TEXT NOT NULL,
                    partition_key TEXT NOT NULL,
                    sort_key TEXT NOT NULL,
                    properties_json TEXT NOT NULL,
                    etag TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (table_name, partition_key, sort_key)
                );
            """)

    def close(self) -> None:
        if self._owns_connection:
            self._conn.close()

    def storage_info(self) -> dict[str, Any]:
        """Return backend info for operator commands."""
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM table_rows WHERE table_name = ?",
                (self.table_name,),
            ).fetchone()
        return {
            "backend": "sqlite",
            "db_path": self.db_path,
            "table_name": self.table_name,
            "record_count": row[0],
        }

    def ensure_table_exists(self) -> None:
        with self._locked("ensure_table_exists", None):
            self._conn.execute(
                "INSERT OR IGNORE INTO tables (table_name, created_at) VALUES (?, ?)",
                (self.table_name, datetime.now(timezone.utc).isoformat()),
            )

    # --- Locking / error mapping ---

    def _locked(self, operation: str, timeout: float | None) -> _LockedCall:
        return _LockedCall(self._lock, operation, timeout)

    # --- Single operations ---

    def execute(self, op: TableOperation, *, timeout: float | None = None) -> TableRecord | None:
        with self._locked(op.kind.value, timeout):
            if op.kind is OperationKind.RETRIEVE:
                return self._fetch(op.partition_key, op.sort_key)
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                result = self._apply(op)
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
            return result

    def execute_batch(
        self, ops: Sequence[TableOperation], *, timeout: float | None = None
    ) -> None:
        check_batch(ops)
        with self._locked("execute_batch", timeout):
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                for op in ops:
                    self._apply(op)
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
        logger.debug(
            "sqlite batch of %d %s ops on partition %r",
            len(ops),
            ops[0].kind.value,
            ops[0].partition_key,
        )

    def _fetch(self, partition_key: str, sort_key: str) -> TableRecord | None:
        row = self._conn.execute(
            "SELECT partition_key, sort_key, properties_json, etag FROM table_rows "
            "WHERE table_name = ? AND partition_key = ? AND sort_key = ?",
            (self.table_name, partition_key, sort_key),
        ).fetchone()
        if row is None:
            return None
        return _row_to_record(row)

    def _apply(self, op: TableOperation) -> TableRecord | None:
        record = op.record
        pk, sk = record.partition_key, record.sort_key
        existing = self._fetch(pk, sk)

        if op.kind is OperationKind.INSERT and existing is not None:
            raise ConditionFailedError(op.kind.value, pk, sk)
        if op.kind in (OperationKind.REPLACE, OperationKind.DELETE) and existing is None:
            raise ConditionFailedError(op.kind.value, pk, sk)

        if op.kind is OperationKind.DELETE:
            self._conn.execute(
                "DELETE FROM table_rows WHERE table_name = ? AND partition_key = ? AND sort_key = ?",
                (self.table_name, pk, sk),
            )
            return None

        properties = dict(record.properties)
        if op.kind is OperationKind.UPSERT_MERGE and existing is not None:
            properties = {**existing.properties, **properties}

        etag = uuid.uuid4().hex
        self._conn.execute(
            "INSERT OR REPLACE INTO table_rows "
            "(table_name, partition_key, sort_key, properties_json, etag, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                self.table_name,
                pk,
                sk,
                json.dumps({n: v.to_json() for n, v in properties.items()}),
                etag,
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        return TableRecord(pk, sk, properties, etag=etag)

    # --- Queries ---

    def execute_query_segmented(
        self,
        query: TableQuery,
        continuation: str | None,
        *,
        timeout: float | None = None,
    ) -> QueryPage:
        params: list[Any] = [self.table_name]
        sql = (
            "SELECT partition_key, sort_key, properties_json, etag FROM table_rows "
            "WHERE table_name = ?"
        )
        where = _compile_filter(query.filter, params)
        if where:
            sql += f" AND {where}"
        if continuation is not None:
            last_pk, last_sk = decode_continuation(continuation)
            sql += " AND (partition_key > ? OR (partition_key = ? AND sort_key > ?))"
            params.extend([last_pk, last_pk, last_sk])
        page_size = query.page_size or self.page_size
        sql += " ORDER BY partition_key, sort_key LIMIT ?"
        params.append(page_size + 1)

        with self._locked("query", timeout):
            rows = self._conn.execute(sql, params).fetchall()

        has_more = len(rows) > page_size
        records = [_row_to_record(r) for r in rows[:page_size]]
        next_token = None
        if has_more:
            last = records[-1]
            next_token = encode_continuation(last.partition_key, last.sort_key)
        return QueryPage(records=records, continuation=next_token)


class _LockedCall:
    """Serializes access to the shared connection and maps sqlite errors."""

    def __init__(self, lock: threading.RLock, operation: str, timeout: float | None) -> None:
        self._lock = lock
        self._operation = operation
        self._timeout = timeout

    def __enter__(self) -> None:
        acquired = self._lock.acquire(timeout=-1 if self._timeout is None else self._timeout)
        if not acquired:
            raise BackendTransientError(
                self._operation, f"timed out after {self._timeout}s waiting for connection"
            )

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> bool:
        self._lock.release()
        if isinstance(exc, sqlite3.OperationalError):
            message = str(exc)
            if "locked" in message or "busy" in message:
                raise BackendTransientError(self._operation, message) from exc
            raise StorageBackendError(self._operation, message) from exc
        if isinstance(exc, sqlite3.Error):
            raise StorageBackendError(self._operation, str(exc)) from exc
        return False


def _row_to_record(row: tuple[Any, ...]) -> TableRecord:
    pk, sk, properties_json, etag = row
    properties = {name: TypedValue.from_json(v) for name, v in json.loads(properties_json).items()}
    return TableRecord(pk, sk, properties, etag=etag)


def open_table_store(
    table_name: str,
    *,
    storage_uri: str | None = None,
    db_path: str | None = None,
    config: FatTableConfig | None = None,
) -> TableStoreProtocol:
    """Open a table store from a db_path or a URI-style storage binding."""
    target = parse_storage_target(storage_uri, db_path=db_path)
    cfg = config or FatTableConfig()
    if target.backend == "sqlite":
        assert target.db_path is not None
        return SqliteTableStore(target.db_path, table_name, config=cfg)
    if target.backend == "dynamodb":
        from fattable.storage_dynamodb import DynamoTableStore

        if target.region and not cfg.dynamodb_region:
            cfg = replace(cfg, dynamodb_region=target.region)
        return DynamoTableStore(f"{target.table_prefix}{table_name}", config=cfg)
    raise StorageBackendError(
        "open_table_store",
        f"Unsupported backend '{target.backend}'",
    )
