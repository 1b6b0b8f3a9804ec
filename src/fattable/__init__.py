"""fattable: fat entities and materialized secondary indexes over partitioned tables."""

__version__ = "0.1.0"

from fattable.batching import BatchAssembler, GroupResult, TransactionGroup
from fattable.catalog import IndexCatalog
from fattable.codecs import DomainCodec, json_codec, pydantic_codec, serialize_identity
from fattable.config import FatTableConfig
from fattable.context import TableContext
from fattable.errors import (
    BackendTransientError,
    BatchConstraintViolation,
    ConditionFailedError,
    FatTableError,
    ObjectTooLargeError,
    PartialWriteError,
    RecordTooLargeError,
    StorageBackendError,
)
from fattable.fat_entity import FatEntityCodec, Fits, Overflows
from fattable.filters import partition_key, prop, sort_key
from fattable.index import IndexDefinition, chronological_key, reverse_chronological_key
from fattable.keys import KeyEncoder, clean_table_name
from fattable.materialize import MaterializationEngine, WriteReport
from fattable.operations import OperationKind, TableOperation, TableQuery, TableRecord
from fattable.query import QueryFacade, RecordScan
from fattable.storage import SqliteTableStore, TableStoreProtocol, open_table_store
from fattable.values import PropertyKind, TypedValue

__all__ = [
    "__version__",
    "TableContext",
    "DomainCodec",
    "pydantic_codec",
    "json_codec",
    "serialize_identity",
    "IndexDefinition",
    "IndexCatalog",
    "chronological_key",
    "reverse_chronological_key",
    "MaterializationEngine",
    "WriteReport",
    "BatchAssembler",
    "TransactionGroup",
    "GroupResult",
    "QueryFacade",
    "RecordScan",
    "KeyEncoder",
    "clean_table_name",
    "FatEntityCodec",
    "Fits",
    "Overflows",
    "PropertyKind",
    "TypedValue",
    "partition_key",
    "sort_key",
    "prop",
    "OperationKind",
    "TableOperation",
    "TableQuery",
    "TableRecord",
    "TableStoreProtocol",
    "SqliteTableStore",
    "open_table_store",
    "FatTableConfig",
    "FatTableError",
    "ObjectTooLargeError",
    "RecordTooLargeError",
    "BatchConstraintViolation",
    "StorageBackendError",
    "BackendTransientError",
    "ConditionFailedError",
    "PartialWriteError",
]
