"""DynamoDB-backed table store.

Each logical table maps to one DynamoDB table keyed by ``PartitionKey`` (hash)
and ``SortKey`` (range). Every property is stored as a map attribute holding
the kind tag ``t`` and the wire value ``v`` so typed filters survive the trip.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from fattable.config import FatTableConfig
from fattable.errors import (
    BackendTransientError,
    ConditionFailedError,
    StorageBackendError,
)
from fattable.filters import (
    PARTITION_KEY_FIELD,
    SORT_KEY_FIELD,
    ComparisonExpression,
    flatten,
)
from fattable.operations import (
    OperationKind,
    QueryPage,
    TableOperation,
    TableQuery,
    TableRecord,
)
from fattable.storage import check_batch, decode_continuation, encode_continuation
from fattable.values import PropertyKind, TypedValue

logger = logging.getLogger(__name__)

ETAG_ATTRIBUTE = "__etag"
_KEY_ATTRIBUTES = (PARTITION_KEY_FIELD, SORT_KEY_FIELD, ETAG_ATTRIBUTE)

# 400KB item limit. Five ASCII slots fit; multi-byte text is caught by the byte limit.
DYNAMODB_MAX_VALUE_SLOTS = 5
DYNAMODB_MAX_ITEM_BYTES = 400 * 1024

_TRANSIENT_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
        "InternalServerError",
        "ServiceUnavailable",
        "TransactionConflictException",
        "TransactionInProgressException",
    }
)

_SQL_TO_DYNAMO_OP = {"==": "=", ">=": ">=", "<=": "<="}


class DynamoTableStore:
    """Table store bound to one DynamoDB table.

    Deletes of absent keys succeed, so no upsert is needed before a delete.
    """

    requires_upsert_before_delete = False
    max_value_slots: int | None = DYNAMODB_MAX_VALUE_SLOTS
    max_record_bytes: int | None = DYNAMODB_MAX_ITEM_BYTES

    def __init__(
        self,
        table_name: str,
        *,
        config: FatTableConfig | None = None,
        client: Any | None = None,
    ) -> None:
        self.table_name = table_name
        self.config = config or FatTableConfig()
        self._client: Any = client or self._make_client(self.config.dynamodb_request_timeout_s)
        # Clients for per-call timeouts that differ from the configured one.
        self._timeout_clients: dict[float, Any] = {}
        self._injected_client = client is not None
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    def _make_client(self, read_timeout: float) -> Any:
        cfg = self.config
        boto_config = Config(
            connect_timeout=read_timeout,
            read_timeout=read_timeout,
            retries={"max_attempts": cfg.dynamodb_max_attempts, "mode": "standard"},
        )
        return boto3.client(
            "dynamodb",
            region_name=cfg.dynamodb_region,
            endpoint_url=cfg.dynamodb_endpoint_url,
            config=boto_config,
        )

    def _client_for(self, timeout: float | None) -> Any:
        if timeout is None or self._injected_client:
            return self._client
        if timeout == self.config.dynamodb_request_timeout_s:
            return self._client
        client = self._timeout_clients.get(timeout)
        if client is None:
            client = self._make_client(timeout)
            self._timeout_clients[timeout] = client
        return client

    def close(self) -> None:
        self._timeout_clients.clear()

    def storage_info(self) -> dict[str, Any]:
        """Return backend info for operator commands."""
        info: dict[str, Any] = {
            "backend": "dynamodb",
            "table_name": self.table_name,
            "region": self.config.dynamodb_region,
        }
        if self.config.dynamodb_endpoint_url:
            info["endpoint_url"] = self.config.dynamodb_endpoint_url
        try:
            desc = self._client.describe_table(TableName=self.table_name)["Table"]
        except ClientError as err:
            raise _map_client_error("describe_table", err) from err
        info["record_count"] = desc.get("ItemCount")
        info["status"] = desc.get("TableStatus")
        return info

    def ensure_table_exists(self) -> None:
        try:
            self._client.describe_table(TableName=self.table_name)
            return
        except ClientError as err:
            if _error_code(err) != "ResourceNotFoundException":
                raise _map_client_error("describe_table", err) from err

        req: dict[str, Any] = {
            "TableName": self.table_name,
            "KeySchema": [
                {"AttributeName": PARTITION_KEY_FIELD, "KeyType": "HASH"},
                {"AttributeName": SORT_KEY_FIELD, "KeyType": "RANGE"},
            ],
            "AttributeDefinitions": [
                {"AttributeName": PARTITION_KEY_FIELD, "AttributeType": "S"},
                {"AttributeName": SORT_KEY_FIELD, "AttributeType": "S"},
            ],
        }
        read_units = self.config.dynamodb_read_capacity
        write_units = self.config.dynamodb_write_capacity
        if read_units is None or write_units is None:
            req["BillingMode"] = "PAY_PER_REQUEST"
        else:
            req["BillingMode"] = "PROVISIONED"
            req["ProvisionedThroughput"] = {
                "ReadCapacityUnits": read_units,
                "WriteCapacityUnits": write_units,
            }

        try:
            self._client.create_table(**req)
        except ClientError as err:
            # Another writer created it first.
            if _error_code(err) != "ResourceInUseException":
                raise _map_client_error("create_table", err) from err
        logger.info("created dynamodb table %s", self.table_name)
        self._client.get_waiter("table_exists").wait(TableName=self.table_name)

    # --- Item conversion ---

    def _to_key(self, partition_key: str, sort_key: str) -> dict[str, Any]:
        return {
            PARTITION_KEY_FIELD: {"S": partition_key},
            SORT_KEY_FIELD: {"S": sort_key},
        }

    def _serialize_value(self, typed: TypedValue) -> dict[str, Any]:
        wire = typed.wire_value()
        if typed.kind in (PropertyKind.DOUBLE, PropertyKind.INT32, PropertyKind.INT64):
            wire = Decimal(str(wire))
        return self._serializer.serialize(wire)

    def _serialize_property(self, typed: TypedValue) -> dict[str, Any]:
        return {"M": {"t": {"S": typed.kind.value}, "v": self._serialize_value(typed)}}

    def _to_item(self, record: TableRecord, etag: str) -> dict[str, Any]:
        item = self._to_key(record.partition_key, record.sort_key)
        item[ETAG_ATTRIBUTE] = {"S": etag}
        for name, typed in record.properties.items():
            item[name] = self._serialize_property(typed)
        return item

    def _from_item(self, item: dict[str, Any]) -> TableRecord:
        plain = {k: self._deserializer.deserialize(v) for k, v in item.items()}
        properties = {
            name: TypedValue.from_wire(value["t"], value["v"])
            for name, value in plain.items()
            if name not in _KEY_ATTRIBUTES
        }
        return TableRecord(
            plain[PARTITION_KEY_FIELD],
            plain[SORT_KEY_FIELD],
            properties,
            etag=plain.get(ETAG_ATTRIBUTE),
        )

    # --- Single operations ---

    def execute(self, op: TableOperation, *, timeout: float | None = None) -> TableRecord | None:
        client = self._client_for(timeout)
        try:
            if op.kind is OperationKind.RETRIEVE:
                resp = client.get_item(
                    TableName=self.table_name,
                    Key=self._to_key(op.partition_key, op.sort_key),
                    ConsistentRead=True,
                )
                item = resp.get("Item")
                return self._from_item(item) if item else None

            if op.kind is OperationKind.DELETE:
                client.delete_item(
                    TableName=self.table_name,
                    Key=self._to_key(op.partition_key, op.sort_key),
                )
                return None

            if op.kind is OperationKind.UPSERT_MERGE:
                resp = client.update_item(**self._update_request(op.record))
                return self._from_item(resp["Attributes"])

            etag = uuid.uuid4().hex
            client.put_item(**self._put_request(op, etag))
            return TableRecord(
                op.partition_key, op.sort_key, dict(op.record.properties), etag=etag
            )
        except ClientError as err:
            raise _map_client_error(op.kind.value, err, op) from err
        except BotoCoreError as err:
            raise _map_botocore_error(op.kind.value, err) from err

    def _put_request(self, op: TableOperation, etag: str) -> dict[str, Any]:
        req: dict[str, Any] = {
            "TableName": self.table_name,
            "Item": self._to_item(op.record, etag),
        }
        if op.kind is OperationKind.INSERT:
            req["ConditionExpression"] = "attribute_not_exists(#pk)"
            req["ExpressionAttributeNames"] = {"#pk": PARTITION_KEY_FIELD}
        elif op.kind is OperationKind.REPLACE:
            req["ConditionExpression"] = "attribute_exists(#pk)"
            req["ExpressionAttributeNames"] = {"#pk": PARTITION_KEY_FIELD}
        return req

    def _update_request(self, record: TableRecord) -> dict[str, Any]:
        names: dict[str, str] = {"#etag": ETAG_ATTRIBUTE}
        values: dict[str, Any] = {":etag": {"S": uuid.uuid4().hex}}
        assignments = ["#etag = :etag"]
        for i, (name, typed) in enumerate(record.properties.items()):
            names[f"#p{i}"] = name
            values[f":p{i}"] = self._serialize_property(typed)
            assignments.append(f"#p{i} = :p{i}")
        return {
            "TableName": self.table_name,
            "Key": self._to_key(record.partition_key, record.sort_key),
            "UpdateExpression": "SET " + ", ".join(assignments),
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
            "ReturnValues": "ALL_NEW",
        }

    # --- Batches ---

    def execute_batch(
        self, ops: Sequence[TableOperation], *, timeout: float | None = None
    ) -> None:
        check_batch(ops)
        items: list[dict[str, Any]] = []
        for op in ops:
            if op.kind is OperationKind.DELETE:
                items.append(
                    {
                        "Delete": {
                            "TableName": self.table_name,
                            "Key": self._to_key(op.partition_key, op.sort_key),
                        }
                    }
                )
            elif op.kind is OperationKind.UPSERT_MERGE:
                req = self._update_request(op.record)
                req.pop("ReturnValues")
                items.append({"Update": req})
            else:
                items.append({"Put": self._put_request(op, uuid.uuid4().hex)})

        try:
            self._client_for(timeout).transact_write_items(TransactItems=items)
        except ClientError as err:
            raise _map_transaction_error(ops, err) from err
        except BotoCoreError as err:
            raise _map_botocore_error("execute_batch", err) from err
        logger.debug(
            "dynamodb transaction of %d %s ops on partition %r",
            len(ops),
            ops[0].kind.value,
            ops[0].partition_key,
        )

    # --- Queries ---

    def execute_query_segmented(
        self,
        query: TableQuery,
        continuation: str | None,
        *,
        timeout: float | None = None,
    ) -> QueryPage:
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        key_parts: list[str] = []
        filter_parts: list[str] = []
        sort_bounds: dict[str, int] = {}
        has_partition = False

        for i, comparison in enumerate(flatten(query.filter)):
            if comparison.field_path == SORT_KEY_FIELD:
                names["#sk"] = SORT_KEY_FIELD
                values[f":f{i}"] = {"S": comparison.value}
                if comparison.op in sort_bounds:
                    raise StorageBackendError("query", "duplicate sort key bound")
                sort_bounds[comparison.op] = i
                continue
            part = self._compile_comparison(i, comparison, names, values)
            is_partition_eq = comparison.field_path == PARTITION_KEY_FIELD and comparison.op == "=="
            if is_partition_eq and not has_partition:
                key_parts.append(part)
                has_partition = True
            else:
                filter_parts.append(part)

        # A key condition allows one sort key clause; a range becomes BETWEEN.
        if "==" in sort_bounds and len(sort_bounds) > 1:
            raise StorageBackendError("query", "sort key equality cannot be combined with a range")
        if ">=" in sort_bounds and "<=" in sort_bounds:
            key_parts.append(f"#sk BETWEEN :f{sort_bounds['>=']} AND :f{sort_bounds['<=']}")
        else:
            for op, i in sort_bounds.items():
                key_parts.append(f"#sk {_SQL_TO_DYNAMO_OP[op]} :f{i}")

        req: dict[str, Any] = {"TableName": self.table_name}
        if names:
            req["ExpressionAttributeNames"] = names
            req["ExpressionAttributeValues"] = values
        if query.page_size or self.config.page_size:
            req["Limit"] = query.page_size or self.config.page_size
        if continuation is not None:
            last_pk, last_sk = decode_continuation(continuation)
            req["ExclusiveStartKey"] = self._to_key(last_pk, last_sk)

        if has_partition:
            req["KeyConditionExpression"] = " AND ".join(key_parts)
            if filter_parts:
                req["FilterExpression"] = " AND ".join(filter_parts)
            operation = "query"
        else:
            # No partition equality: a full scan is the only option.
            all_parts = key_parts + filter_parts
            if all_parts:
                req["FilterExpression"] = " AND ".join(all_parts)
            operation = "scan"

        client = self._client_for(timeout)
        try:
            resp = getattr(client, operation)(**req)
        except ClientError as err:
            raise _map_client_error(operation, err) from err
        except BotoCoreError as err:
            raise _map_botocore_error(operation, err) from err

        records = [self._from_item(item) for item in resp.get("Items", [])]
        last = resp.get("LastEvaluatedKey")
        next_token = None
        if last:
            next_token = encode_continuation(
                last[PARTITION_KEY_FIELD]["S"], last[SORT_KEY_FIELD]["S"]
            )
        logger.debug("dynamodb %s returned %d items", operation, len(records))
        return QueryPage(records=records, continuation=next_token)

    def _compile_comparison(
        self,
        index: int,
        comparison: ComparisonExpression,
        names: dict[str, str],
        values: dict[str, Any],
    ) -> str:
        op = _SQL_TO_DYNAMO_OP[comparison.op]
        if comparison.is_key:
            names[f"#f{index}"] = comparison.field_path
            values[f":f{index}"] = {"S": comparison.value}
            return f"#f{index} {op} :f{index}"

        typed: TypedValue = comparison.value
        names[f"#f{index}"] = comparison.property_name
        names["#t"] = "t"
        names["#v"] = "v"
        values[f":t{index}"] = {"S": typed.kind.value}
        values[f":f{index}"] = self._serialize_value(typed)
        return f"#f{index}.#t = :t{index} AND #f{index}.#v {op} :f{index}"


def _error_code(err: ClientError) -> str:
    return err.response.get("Error", {}).get("Code", "")


def _map_client_error(
    operation: str, err: ClientError, op: TableOperation | None = None
) -> StorageBackendError:
    code = _error_code(err)
    message = err.response.get("Error", {}).get("Message", str(err))
    if code == "ConditionalCheckFailedException" and op is not None:
        return ConditionFailedError(operation, op.partition_key, op.sort_key)
    if code in _TRANSIENT_CODES:
        return BackendTransientError(operation, f"{code}: {message}")
    return StorageBackendError(operation, f"{code}: {message}")


def _map_transaction_error(ops: Sequence[TableOperation], err: ClientError) -> StorageBackendError:
    if _error_code(err) == "TransactionCanceledException":
        reasons = err.response.get("CancellationReasons", [])
        for op, reason in zip(ops, reasons):
            code = reason.get("Code")
            if code == "ConditionalCheckFailed":
                return ConditionFailedError("execute_batch", op.partition_key, op.sort_key)
            if code in ("ThrottlingError", "TransactionConflict", "ProvisionedThroughputExceeded"):
                return BackendTransientError("execute_batch", f"transaction cancelled: {code}")
    return _map_client_error("execute_batch", err)


def _map_botocore_error(operation: str, err: BotoCoreError) -> StorageBackendError:
    if isinstance(err, (ReadTimeoutError, ConnectTimeoutError, EndpointConnectionError)):
        return BackendTransientError(operation, str(err))
    return StorageBackendError(operation, str(err))
