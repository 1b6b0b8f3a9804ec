"""Focused unit tests for DynamoDB store logic that do not require a live endpoint."""

from __future__ import annotations

import json
from operator import itemgetter
from typing import Any

import pytest
from botocore.exceptions import ClientError, ReadTimeoutError

from fattable.catalog import IndexCatalog
from fattable.codecs import DomainCodec
from fattable.errors import (
    BackendTransientError,
    BatchConstraintViolation,
    ConditionFailedError,
    RecordTooLargeError,
    StorageBackendError,
)
from fattable.fat_entity import FatEntityCodec
from fattable.filters import partition_key, prop, sort_key
from fattable.materialize import MaterializationEngine
from fattable.operations import OperationKind, TableOperation, TableQuery, TableRecord
from fattable.storage import decode_continuation, encode_continuation
from fattable.storage_dynamodb import (
    DYNAMODB_MAX_ITEM_BYTES,
    DYNAMODB_MAX_VALUE_SLOTS,
    DynamoTableStore,
)


def _client_error(code: str, operation: str = "PutItem", **extra: Any) -> ClientError:
    response: dict[str, Any] = {"Error": {"Code": code, "Message": "boom"}, **extra}
    return ClientError(response, operation)


class _Waiter:
    def __init__(self, client: _FakeClient) -> None:
        self.client = client

    def wait(self, **kwargs: Any) -> None:
        self.client.calls.append(("wait", kwargs))


class _FakeClient:
    """Records requests and replays canned responses."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.responses: dict[str, list[Any]] = {}

    def queue(self, method: str, response: Any) -> None:
        self.responses.setdefault(method, []).append(response)

    def _respond(self, method: str, kwargs: dict[str, Any]) -> Any:
        self.calls.append((method, kwargs))
        queued = self.responses.get(method)
        if not queued:
            return {}
        response = queued.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def __getattr__(self, method: str) -> Any:
        if method.startswith("_"):
            raise AttributeError(method)
        return lambda **kwargs: self._respond(method, kwargs)

    def get_waiter(self, name: str) -> _Waiter:
        return _Waiter(self)


@pytest.fixture
def client():
    return _FakeClient()


@pytest.fixture
def dynamo(client):
    return DynamoTableStore("UserTable", client=client)


def _record(**props: Any) -> TableRecord:
    return TableRecord("users", "u1", props)


class TestFlags:
    def test_backend_flags(self, dynamo):
        assert dynamo.requires_upsert_before_delete is False
        assert dynamo.max_value_slots == DYNAMODB_MAX_VALUE_SLOTS
        assert dynamo.max_record_bytes == DYNAMODB_MAX_ITEM_BYTES


class TestEnsureTable:
    def test_existing_table_not_created(self, dynamo, client):
        dynamo.ensure_table_exists()
        assert [c[0] for c in client.calls] == ["describe_table"]

    def test_missing_table_created_on_demand(self, dynamo, client):
        client.queue("describe_table", _client_error("ResourceNotFoundException", "DescribeTable"))
        dynamo.ensure_table_exists()
        methods = [c[0] for c in client.calls]
        assert methods == ["describe_table", "create_table", "wait"]
        create = client.calls[1][1]
        assert create["BillingMode"] == "PAY_PER_REQUEST"
        assert {k["AttributeName"] for k in create["KeySchema"]} == {"PartitionKey", "SortKey"}

    def test_provisioned_capacity(self, client):
        from fattable.config import FatTableConfig

        store = DynamoTableStore(
            "T",
            client=client,
            config=FatTableConfig(dynamodb_read_capacity=5, dynamodb_write_capacity=2),
        )
        client.queue("describe_table", _client_error("ResourceNotFoundException", "DescribeTable"))
        store.ensure_table_exists()
        create = client.calls[1][1]
        assert create["BillingMode"] == "PROVISIONED"
        assert create["ProvisionedThroughput"] == {"ReadCapacityUnits": 5, "WriteCapacityUnits": 2}


class TestItemConversion:
    def test_item_round_trip(self, dynamo):
        record = _record(E01="payload", age=31, score=1.5, active=True, blob=b"\x01")
        item = dynamo._to_item(record, "etag-1")
        assert item["PartitionKey"] == {"S": "users"}
        assert item["age"] == {"M": {"t": {"S": "int32"}, "v": {"N": "31"}}}
        back = dynamo._from_item(item)
        assert back.properties == record.properties
        assert back.etag == "etag-1"


class TestWrites:
    def test_insert_is_conditional(self, dynamo, client):
        dynamo.execute(TableOperation(OperationKind.INSERT, _record(a="x")))
        method, req = client.calls[0]
        assert method == "put_item"
        assert req["ConditionExpression"] == "attribute_not_exists(#pk)"

    def test_replace_requires_existing(self, dynamo, client):
        dynamo.execute(TableOperation(OperationKind.REPLACE, _record(a="x")))
        assert client.calls[0][1]["ConditionExpression"] == "attribute_exists(#pk)"

    def test_upsert_replace_unconditional(self, dynamo, client):
        dynamo.execute(TableOperation(OperationKind.UPSERT_REPLACE, _record(a="x")))
        assert "ConditionExpression" not in client.calls[0][1]

    def test_upsert_merge_uses_update(self, dynamo, client):
        item = dynamo._to_item(_record(a="x", b="y"), "e")
        client.queue("update_item", {"Attributes": item})
        result = dynamo.execute(TableOperation(OperationKind.UPSERT_MERGE, _record(a="x")))
        method, req = client.calls[0]
        assert method == "update_item"
        assert req["UpdateExpression"].startswith("SET ")
        assert result.get("b") == "y"

    def test_delete(self, dynamo, client):
        assert dynamo.execute(TableOperation(OperationKind.DELETE, _record())) is None
        assert client.calls[0][0] == "delete_item"

    def test_condition_failure_mapped(self, dynamo, client):
        client.queue("put_item", _client_error("ConditionalCheckFailedException"))
        with pytest.raises(ConditionFailedError) as exc_info:
            dynamo.execute(TableOperation(OperationKind.INSERT, _record(a="x")))
        assert exc_info.value.sort_key == "u1"

    def test_throttling_is_transient(self, dynamo, client):
        client.queue("put_item", _client_error("ProvisionedThroughputExceededException"))
        with pytest.raises(BackendTransientError):
            dynamo.execute(TableOperation(OperationKind.UPSERT_REPLACE, _record(a="x")))

    def test_timeout_is_transient(self, dynamo, client):
        client.queue("put_item", ReadTimeoutError(endpoint_url="http://localhost"))
        with pytest.raises(BackendTransientError):
            dynamo.execute(TableOperation(OperationKind.UPSERT_REPLACE, _record(a="x")))

    def test_other_errors(self, dynamo, client):
        client.queue("put_item", _client_error("ValidationException"))
        with pytest.raises(StorageBackendError) as exc_info:
            dynamo.execute(TableOperation(OperationKind.UPSERT_REPLACE, _record(a="x")))
        assert not isinstance(exc_info.value, BackendTransientError)

    def test_retrieve_missing(self, dynamo, client):
        assert dynamo.execute(TableOperation.retrieve("users", "nope")) is None
        assert client.calls[0][1]["ConsistentRead"] is True


class TestBatches:
    def test_transaction_items(self, dynamo, client):
        ops = [
            TableOperation(OperationKind.INSERT, TableRecord("users", "u1", {"a": 1})),
            TableOperation(OperationKind.DELETE, TableRecord("users", "u2")),
            TableOperation(OperationKind.UPSERT_MERGE, TableRecord("users", "u3", {"a": 3})),
        ]
        dynamo.execute_batch(ops)
        method, req = client.calls[0]
        assert method == "transact_write_items"
        kinds = [next(iter(item)) for item in req["TransactItems"]]
        assert kinds == ["Put", "Delete", "Update"]
        assert "ReturnValues" not in req["TransactItems"][2]["Update"]

    def test_batch_preconditions_checked(self, dynamo, client):
        ops = [
            TableOperation(OperationKind.INSERT, TableRecord("a", "1")),
            TableOperation(OperationKind.INSERT, TableRecord("b", "1")),
        ]
        with pytest.raises(BatchConstraintViolation):
            dynamo.execute_batch(ops)
        assert client.calls == []

    def test_cancelled_transaction_condition(self, dynamo, client):
        client.queue(
            "transact_write_items",
            _client_error(
                "TransactionCanceledException",
                "TransactWriteItems",
                CancellationReasons=[{"Code": "None"}, {"Code": "ConditionalCheckFailed"}],
            ),
        )
        ops = [
            TableOperation(OperationKind.INSERT, TableRecord("users", "u1")),
            TableOperation(OperationKind.INSERT, TableRecord("users", "u2")),
        ]
        with pytest.raises(ConditionFailedError) as exc_info:
            dynamo.execute_batch(ops)
        assert exc_info.value.sort_key == "u2"


class TestItemSizeLimit:
    def test_multibyte_value_within_slots_fails_alone(self, dynamo, client):
        codec = DomainCodec(
            dumps=lambda v: json.dumps(v, ensure_ascii=False),
            loads=json.loads,
            identity=itemgetter("id"),
            type_name="Doc",
        )
        catalog = IndexCatalog(dynamo, "Default")
        catalog.bootstrap()
        engine = MaterializationEngine(
            dynamo,
            codec,
            catalog,
            fat_codec=FatEntityCodec(max_slots=DYNAMODB_MAX_VALUE_SLOTS),
        )
        client.calls.clear()
        # 300k Cyrillic characters fit in five slots but take about 600KB as UTF-8.
        big = {"id": "big", "text": "\u0436" * 300_000}
        report = engine.write([big, {"id": "small"}], OperationKind.INSERT)
        engine.close()

        assert [m.value["id"] for m in report.succeeded_records] == ["small"]
        assert len(report.failed_records) == 1
        error = report.failed_records[0].error
        assert isinstance(error, RecordTooLargeError)
        assert error.max_bytes == DYNAMODB_MAX_ITEM_BYTES
        transactions = [req for method, req in client.calls if method == "transact_write_items"]
        assert len(transactions) == 1
        assert len(transactions[0]["TransactItems"]) == 1


class TestQueries:
    def test_partition_query_with_range_and_property(self, dynamo, client):
        expr = (
            (partition_key() == "users")
            & (sort_key() >= "u1")
            & (sort_key() <= "u5")
            & (prop("status") == "Active")
        )
        dynamo.execute_query_segmented(TableQuery(expr, page_size=10), None)
        method, req = client.calls[0]
        assert method == "query"
        assert req["KeyConditionExpression"] == "#f0 = :f0 AND #sk BETWEEN :f1 AND :f2"
        assert req["FilterExpression"] == "#f3.#t = :t3 AND #f3.#v = :f3"
        assert req["ExpressionAttributeValues"][":t3"] == {"S": "string"}
        assert req["Limit"] == 10

    def test_single_sort_bound(self, dynamo, client):
        expr = (partition_key() == "users") & (sort_key() >= "u3")
        dynamo.execute_query_segmented(TableQuery(expr), None)
        assert client.calls[0][1]["KeyConditionExpression"] == "#f0 = :f0 AND #sk >= :f1"

    def test_continuation_passed_through(self, dynamo, client):
        item = dynamo._to_item(TableRecord("users", "u1", {"E01": "{}"}), "e")
        client.queue(
            "query",
            {"Items": [item], "LastEvaluatedKey": dynamo._to_key("users", "u1")},
        )
        page = dynamo.execute_query_segmented(TableQuery(partition_key() == "users"), None)
        assert [r.sort_key for r in page.records] == ["u1"]
        assert decode_continuation(page.continuation) == ("users", "u1")

        dynamo.execute_query_segmented(TableQuery(partition_key() == "users"), page.continuation)
        assert client.calls[1][1]["ExclusiveStartKey"] == dynamo._to_key("users", "u1")

    def test_without_partition_falls_back_to_scan(self, dynamo, client):
        dynamo.execute_query_segmented(TableQuery(prop("a") == 1), None)
        assert client.calls[0][0] == "scan"

    def test_encoded_token_format(self):
        assert decode_continuation(encode_continuation("a", "b")) == ("a", "b")
