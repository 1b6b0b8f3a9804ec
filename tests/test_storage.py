"""Tests for the SQLite table store and storage target parsing."""

from __future__ import annotations

import pytest

from fattable.config import FatTableConfig
from fattable.errors import (
    BatchConstraintViolation,
    ConditionFailedError,
    StorageBackendError,
)
from fattable.filters import partition_key, prop, sort_key
from fattable.operations import (
    MAX_BATCH_OPERATIONS,
    OperationKind,
    TableOperation,
    TableQuery,
    TableRecord,
)
from fattable.storage import (
    SqliteTableStore,
    TableStoreProtocol,
    check_batch,
    decode_continuation,
    encode_continuation,
    open_table_store,
    parse_storage_target,
)


def _op(kind, pk="p", sk="s", **props):
    return TableOperation(kind, TableRecord(pk, sk, props))


def _all(store, expr, page_size=None):
    query = TableQuery(expr, page_size=page_size)
    records, token = [], None
    while True:
        page = store.execute_query_segmented(query, token)
        records.extend(page.records)
        token = page.continuation
        if token is None:
            return records


class TestSingleOperations:
    def test_satisfies_protocol(self, store):
        assert isinstance(store, TableStoreProtocol)

    def test_insert_and_retrieve(self, store):
        store.execute(_op(OperationKind.INSERT, name="Alice", age=30))
        record = store.execute(TableOperation.retrieve("p", "s"))
        assert record is not None
        assert record.get("name") == "Alice"
        assert record.get("age") == 30
        assert record.etag

    def test_retrieve_missing_returns_none(self, store):
        assert store.execute(TableOperation.retrieve("p", "nope")) is None

    def test_insert_existing_fails(self, store):
        store.execute(_op(OperationKind.INSERT, a=1))
        with pytest.raises(ConditionFailedError):
            store.execute(_op(OperationKind.INSERT, a=2))

    def test_replace_missing_fails(self, store):
        with pytest.raises(ConditionFailedError):
            store.execute(_op(OperationKind.REPLACE, a=1))

    def test_delete_missing_fails(self, store):
        with pytest.raises(ConditionFailedError):
            store.execute(_op(OperationKind.DELETE))

    def test_upsert_merge_keeps_other_properties(self, store):
        store.execute(_op(OperationKind.INSERT, a=1, b="x"))
        store.execute(_op(OperationKind.UPSERT_MERGE, b="y", c=True))
        record = store.execute(TableOperation.retrieve("p", "s"))
        assert record.get("a") == 1
        assert record.get("b") == "y"
        assert record.get("c") is True

    def test_upsert_replace_overwrites(self, store):
        store.execute(_op(OperationKind.INSERT, a=1, b="x"))
        store.execute(_op(OperationKind.UPSERT_REPLACE, b="y"))
        record = store.execute(TableOperation.retrieve("p", "s"))
        assert record.get("a") is None
        assert record.get("b") == "y"

    def test_etag_changes_on_write(self, store):
        first = store.execute(_op(OperationKind.INSERT, a=1)).etag
        second = store.execute(_op(OperationKind.REPLACE, a=2)).etag
        assert first != second

    def test_tables_are_isolated(self, tmp_db, store):
        other = SqliteTableStore(tmp_db, "OtherTable")
        try:
            store.execute(_op(OperationKind.INSERT, a=1))
            assert other.execute(TableOperation.retrieve("p", "s")) is None
        finally:
            other.close()


class TestBatches:
    def test_batch_is_atomic(self, store):
        store.execute(_op(OperationKind.INSERT, sk="2", a=0))
        ops = [
            _op(OperationKind.INSERT, sk="1", a=1),
            _op(OperationKind.INSERT, sk="2", a=2),
        ]
        with pytest.raises(ConditionFailedError):
            store.execute_batch(ops)
        assert store.execute(TableOperation.retrieve("p", "1")) is None

    def test_batch_applies_all(self, store):
        store.execute_batch([_op(OperationKind.INSERT, sk=str(i), n=i) for i in range(10)])
        assert len(_all(store, partition_key() == "p")) == 10

    def test_batch_rejects_mixed_partitions(self, store):
        ops = [_op(OperationKind.INSERT, pk="a"), _op(OperationKind.INSERT, pk="b")]
        with pytest.raises(BatchConstraintViolation) as exc_info:
            store.execute_batch(ops)
        assert exc_info.value.partition_keys == ["a", "b"]

    def test_batch_rejects_too_many(self):
        ops = [_op(OperationKind.INSERT, sk=str(i)) for i in range(MAX_BATCH_OPERATIONS + 1)]
        with pytest.raises(BatchConstraintViolation):
            check_batch(ops)

    def test_batch_rejects_too_large(self):
        ops = [_op(OperationKind.INSERT, sk=str(i), blob="x" * 60_000) for i in range(70)]
        with pytest.raises(BatchConstraintViolation) as exc_info:
            check_batch(ops)
        assert exc_info.value.size_bytes > 4_194_304

    def test_batch_rejects_empty(self):
        with pytest.raises(BatchConstraintViolation):
            check_batch([])


class TestQueries:
    @pytest.fixture
    def seeded(self, store):
        ops = [
            _op(OperationKind.INSERT, pk="users", sk=f"u{i:02d}", status=s, age=20 + i)
            for i, s in enumerate(["Active", "Archived", "Active", "Active", "Archived"])
        ]
        store.execute_batch(ops)
        store.execute(_op(OperationKind.INSERT, pk="other", sk="u00", status="Active"))
        return store

    def test_partition_scan_sorted(self, seeded):
        records = _all(seeded, partition_key() == "users")
        assert [r.sort_key for r in records] == ["u00", "u01", "u02", "u03", "u04"]

    def test_sort_key_range(self, seeded):
        expr = (partition_key() == "users") & (sort_key() >= "u01") & (sort_key() <= "u03")
        assert [r.sort_key for r in _all(seeded, expr)] == ["u01", "u02", "u03"]

    def test_property_equality(self, seeded):
        expr = (partition_key() == "users") & (prop("status") == "Archived")
        assert [r.sort_key for r in _all(seeded, expr)] == ["u01", "u04"]

    def test_property_range(self, seeded):
        expr = (partition_key() == "users") & (prop("age") >= 22)
        assert [r.sort_key for r in _all(seeded, expr)] == ["u02", "u03", "u04"]

    def test_property_kind_must_match(self, seeded):
        expr = (partition_key() == "users") & (prop("age") == "20")
        assert _all(seeded, expr) == []

    def test_pagination(self, seeded):
        query = TableQuery(partition_key() == "users", page_size=2)
        first = seeded.execute_query_segmented(query, None)
        assert len(first.records) == 2
        assert first.continuation is not None
        assert len(_all(seeded, partition_key() == "users", page_size=2)) == 5

    def test_last_page_has_no_continuation(self, seeded):
        page = seeded.execute_query_segmented(TableQuery(partition_key() == "users"), None)
        assert page.continuation is None

    def test_continuation_round_trip(self):
        token = encode_continuation("p/1", "s_2")
        assert decode_continuation(token) == ("p/1", "s_2")

    def test_bad_continuation(self):
        with pytest.raises(StorageBackendError):
            decode_continuation("not-a-token")


class TestStorageTarget:
    def test_default_sqlite(self):
        target = parse_storage_target()
        assert target.backend == "sqlite"
        assert target.db_path == "fattable.db"

    def test_relative_sqlite_uri(self):
        assert parse_storage_target("sqlite:///data/t.db").db_path == "data/t.db"

    def test_absolute_sqlite_uri(self):
        assert parse_storage_target("sqlite:////var/t.db").db_path == "/var/t.db"

    def test_memory_uri(self):
        assert parse_storage_target("sqlite:///:memory:").db_path == ":memory:"

    def test_dynamodb_uri(self):
        target = parse_storage_target("dynamodb://eu-west-1/prod-")
        assert target.backend == "dynamodb"
        assert target.region == "eu-west-1"
        assert target.table_prefix == "prod-"

    def test_unknown_scheme(self):
        with pytest.raises(StorageBackendError):
            parse_storage_target("s3://bucket/prefix")

    def test_dynamodb_with_db_path_conflict(self):
        with pytest.raises(StorageBackendError):
            parse_storage_target("dynamodb://us-east-1/x", db_path="a.db")

    def test_open_memory_store(self):
        store = open_table_store("T", storage_uri="sqlite:///:memory:")
        try:
            store.ensure_table_exists()
            assert store.storage_info()["backend"] == "sqlite"
            assert store.storage_info()["record_count"] == 0
        finally:
            store.close()

    def test_open_dynamodb_leaves_caller_config_untouched(self):
        config = FatTableConfig()
        store = open_table_store("T", storage_uri="dynamodb://eu-west-1/prod-", config=config)
        assert store.table_name == "prod-T"
        assert store.config.dynamodb_region == "eu-west-1"
        assert config.dynamodb_region is None
