"""Tests for the index catalog."""

from __future__ import annotations

import json

from fattable.catalog import (
    METADATA_PARTITION,
    METADATA_SORT_KEY,
    PARTITION_KEYS_PROPERTY,
    IndexCatalog,
)
from fattable.index import IndexDefinition
from fattable.operations import TableOperation


def _stored_keys(store):
    row = store.execute(TableOperation.retrieve(METADATA_PARTITION, METADATA_SORT_KEY))
    return None if row is None else json.loads(row.get(PARTITION_KEYS_PROPERTY))


class TestRegistration:
    def test_default_index_always_present(self, store):
        catalog = IndexCatalog(store, "Default")
        assert [d.name for d in catalog.definitions] == ["Default"]
        assert catalog.default_index.name == "Default"

    def test_duplicate_name_is_noop(self, store):
        catalog = IndexCatalog(store, "Default")
        first = IndexDefinition("ByStatus")
        assert catalog.register(first) is True
        assert catalog.register(IndexDefinition("ByStatus")) is False
        assert catalog.get("ByStatus") is first
        assert len(catalog.definitions) == 2

    def test_get_unknown(self, store):
        assert IndexCatalog(store, "Default").get("nope") is None


class TestBootstrap:
    def test_creates_entry_when_absent(self, store):
        catalog = IndexCatalog(store, "Default")
        catalog.bootstrap()
        assert _stored_keys(store) == [METADATA_PARTITION, "Default"]
        assert catalog.version is not None

    def test_loads_existing_entry(self, store):
        first = IndexCatalog(store, "Default")
        first.bootstrap()
        first.note_partition_key("ActiveUsers")

        second = IndexCatalog(store, "Default")
        second.bootstrap()
        assert second.partition_keys == [METADATA_PARTITION, "Default", "ActiveUsers"]
        assert second.version == first.version

    def test_bootstrap_does_not_write_when_present(self, store):
        IndexCatalog(store, "Default").bootstrap()
        before = store.execute(TableOperation.retrieve(METADATA_PARTITION, METADATA_SORT_KEY))
        IndexCatalog(store, "Default").bootstrap()
        after = store.execute(TableOperation.retrieve(METADATA_PARTITION, METADATA_SORT_KEY))
        assert before.etag == after.etag


class TestNotePartitionKey:
    def test_new_key_persisted(self, store):
        catalog = IndexCatalog(store, "Default")
        catalog.bootstrap()
        assert catalog.note_partition_key("ActiveUsers") is True
        assert "ActiveUsers" in _stored_keys(store)

    def test_known_key_is_not_new(self, store):
        catalog = IndexCatalog(store, "Default")
        catalog.bootstrap()
        catalog.note_partition_key("ActiveUsers")
        etag = store.execute(TableOperation.retrieve(METADATA_PARTITION, METADATA_SORT_KEY)).etag
        assert catalog.note_partition_key("ActiveUsers") is False
        assert catalog.note_partition_key("Default") is False
        after = store.execute(TableOperation.retrieve(METADATA_PARTITION, METADATA_SORT_KEY))
        assert after.etag == etag

    def test_many_keys_one_write(self, store):
        catalog = IndexCatalog(store, "Default")
        catalog.bootstrap()
        assert catalog.note_partition_keys(["a", "b", "a", "Default"]) is True
        assert _stored_keys(store) == [METADATA_PARTITION, "Default", "a", "b"]
        assert catalog.note_partition_keys(["b", "a"]) is False
