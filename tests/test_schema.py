"""Tests for table specs and the schema manager."""

from __future__ import annotations

import pytest

from conftest import ThrottlingStore, book_page_spec, person_spec
from dynaplan.adapters.MemoryAdapter import MemoryAdapter
from dynaplan.errors import FatalStoreError, SchemaChangeTimeoutError, ValidationError
from dynaplan.metadata import TableMetadataCache
from dynaplan.models import ProjectionKind
from dynaplan.schema import (
    IndexSpec,
    SchemaManager,
    TableAlteration,
    TableSpec,
    convert_type,
    non_active_statuses,
)
from dynaplan.types import StoreAction


class StatusStore:
    """Reports the table as UPDATING for the first `busy_polls` DescribeTable calls"""

    def __init__(self, store, busy_polls):
        self.store = store
        self.busy_polls = busy_polls
        self.actions = []

    def send(self, request):
        self.actions.append(request.action)
        response = self.store.send(request)
        if request.action == StoreAction.DESCRIBE_TABLE and self.busy_polls > 0:
            self.busy_polls -= 1
            response["Table"]["TableStatus"] = "UPDATING"
        return response


class TestTableSpec:
    def test_create_table_params(self):
        params = person_spec().to_create_table()
        assert params["TableName"] == "person"
        assert params["KeySchema"] == [{"AttributeName": "id", "KeyType": "HASH"}]
        assert params["AttributeDefinitions"] == [
            {"AttributeName": "id", "AttributeType": "S"},
            {"AttributeName": "email", "AttributeType": "S"},
        ]
        assert params["ProvisionedThroughput"] == {"ReadCapacityUnits": 1, "WriteCapacityUnits": 1}
        [index] = params["GlobalSecondaryIndexes"]
        assert index["IndexName"] == "email"
        assert index["Projection"] == {"ProjectionType": "ALL"}
        assert index["ProvisionedThroughput"] == {"ReadCapacityUnits": 1, "WriteCapacityUnits": 1}

    def test_composite_key(self):
        params = book_page_spec().to_create_table()
        assert params["KeySchema"] == [
            {"AttributeName": "id", "KeyType": "HASH"},
            {"AttributeName": "page_num", "KeyType": "RANGE"},
        ]
        assert {"AttributeName": "page_num", "AttributeType": "N"} in params["AttributeDefinitions"]

    def test_non_key_attributes_are_not_defined(self):
        params = TableSpec("post").add("id", primary_key=True).add("content", "string").to_create_table()
        assert params["AttributeDefinitions"] == [{"AttributeName": "id", "AttributeType": "S"}]

    def test_local_index_and_include_projection(self):
        spec = (
            TableSpec("post", provisioned_throughput=(20, 20))
            .add("email", primary_key=True)
            .add("title", range_key=True)
            .add("created_at", "string")
            .add_local_index(IndexSpec("by_created", ["email", "created_at"], "include", ["title"]))
        )
        params = spec.to_create_table()
        [local] = params["LocalSecondaryIndexes"]
        assert "ProvisionedThroughput" not in local
        assert local["Projection"] == {"ProjectionType": "INCLUDE", "NonKeyAttributes": ["title"]}
        assert params["ProvisionedThroughput"]["ReadCapacityUnits"] == 20

    def test_no_primary_key(self):
        with pytest.raises(ValidationError):
            TableSpec("post").add("content").to_create_table()

    def test_undeclared_index_key(self):
        spec = TableSpec("post").add("id", primary_key=True).add_global_index(IndexSpec("by_x", ["x"]))
        with pytest.raises(ValidationError):
            spec.to_create_table()

    def test_invalid_table_name(self):
        with pytest.raises(ValidationError):
            TableSpec("a b")

    @pytest.mark.parametrize("type_name,expected", [
        ("bigint", "N"), ("serial", "N"), ("integer", "N"),
        ("binary", "B"), ("binary_id", "B"), ("string", "S"), ("N", "N"),
    ])
    def test_convert_type(self, type_name, expected):
        assert convert_type(type_name) == expected

    def test_convert_type_rejects_unknown(self):
        with pytest.raises(ValidationError):
            convert_type("map")

    def test_include_needs_attributes(self):
        with pytest.raises(ValidationError):
            IndexSpec("x", ["a"], ProjectionKind.INCLUDE)


class TestTableAlteration:
    def test_create_sends_attribute_definitions(self):
        alteration = TableAlteration().add("content").create_index(
            IndexSpec("content", ["content"], ProjectionKind.INCLUDE, ["email"])
        )
        params = alteration.to_update_table("post")
        assert params["AttributeDefinitions"] == [{"AttributeName": "content", "AttributeType": "S"}]
        create = params["GlobalSecondaryIndexUpdates"][0]["Create"]
        assert create["Projection"] == {"ProjectionType": "INCLUDE", "NonKeyAttributes": ["email"]}

    def test_modify_and_remove(self):
        params = TableAlteration().modify_index("email_content", (2, 2)).remove_index("content") \
            .to_update_table("post")
        assert "AttributeDefinitions" not in params
        assert params["GlobalSecondaryIndexUpdates"] == [
            {"Delete": {"IndexName": "content"}},
            {"Update": {"IndexName": "email_content",
                        "ProvisionedThroughput": {"ReadCapacityUnits": 2, "WriteCapacityUnits": 2}}},
        ]

    def test_create_needs_key_types(self):
        with pytest.raises(ValidationError):
            TableAlteration().create_index(IndexSpec("content", ["content"])).to_update_table("post")

    def test_empty_alteration(self):
        with pytest.raises(ValidationError):
            TableAlteration().to_update_table("post")


class TestSchemaManager:
    def test_create_and_list(self, backoff):
        manager = SchemaManager(MemoryAdapter(), backoff)
        manager.create_table(person_spec(), wait=True)
        assert manager.list_tables() == ["person"]

    def test_create_if_not_exists(self, backoff):
        manager = SchemaManager(MemoryAdapter(), backoff)
        assert manager.create_table_if_not_exists(person_spec()) is True
        assert manager.create_table_if_not_exists(person_spec()) is False

    def test_create_existing_table_fails(self, store, backoff):
        with pytest.raises(FatalStoreError):
            SchemaManager(store, backoff).create_table(person_spec())

    def test_create_retries_throttling(self, backoff, sleeper):
        throttling = ThrottlingStore(MemoryAdapter(), failures=2, actions={StoreAction.CREATE_TABLE},
                                     code="LimitExceededException")
        SchemaManager(throttling, backoff).create_table(person_spec())
        assert sleeper.waits == [10, round(10 ** 1.05)]

    def test_create_throttled_past_ceiling(self, backoff):
        throttling = ThrottlingStore(MemoryAdapter(), failures=10_000, actions={StoreAction.CREATE_TABLE})
        with pytest.raises(SchemaChangeTimeoutError):
            SchemaManager(throttling, backoff).create_table(person_spec())

    def test_drop(self, store, backoff):
        cache = TableMetadataCache(store)
        cache.get("person")
        manager = SchemaManager(store, backoff, cache)
        manager.drop_table("person")
        assert manager.list_tables() == ["book_page"]
        assert manager.drop_table_if_exists("person") is False
        assert manager.drop_table_if_exists("book_page") is True

    def test_alter_waits_for_active_then_refreshes_metadata(self, store, backoff, sleeper):
        busy = StatusStore(store, busy_polls=2)
        cache = TableMetadataCache(store)
        assert [i.name for i in cache.get("person").secondary_indexes] == ["email"]

        manager = SchemaManager(busy, backoff, cache)
        manager.alter_table("person", TableAlteration().add("name").create_index(IndexSpec("name", ["name"])))

        assert len(sleeper.waits) == 2
        assert busy.actions.count(StoreAction.DESCRIBE_TABLE) == 3
        assert busy.actions.count(StoreAction.UPDATE_TABLE) == 1
        assert [i.name for i in cache.get("person").secondary_indexes] == ["email", "name"]

    def test_alter_times_out_without_updating(self, store, backoff):
        busy = StatusStore(store, busy_polls=10_000)
        manager = SchemaManager(busy, backoff)
        with pytest.raises(SchemaChangeTimeoutError):
            manager.alter_table("person", TableAlteration().remove_index("email"))
        assert StoreAction.UPDATE_TABLE not in busy.actions

    def test_alter_shares_backoff_between_polling_and_throttling(self, store, backoff, sleeper):
        busy = StatusStore(store, busy_polls=1)
        throttling = ThrottlingStore(busy, failures=1, actions={StoreAction.UPDATE_TABLE})
        manager = SchemaManager(throttling, backoff)
        manager.alter_table("person", TableAlteration().remove_index("email"))
        assert sleeper.waits == [10, round(10 ** 1.05)]

    def test_non_active_statuses(self):
        table = {
            "TableStatus": "ACTIVE",
            "GlobalSecondaryIndexes": [
                {"IndexName": "a", "IndexStatus": "ACTIVE"},
                {"IndexName": "b", "IndexStatus": "CREATING"},
            ],
        }
        assert non_active_statuses(table) == [("b", "CREATING")]
