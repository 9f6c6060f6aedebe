# src/dynaplan/schema.py
"""
Schema management: declarative table specs and create / alter / drop calls.

DynamoDB rejects most table changes while the table or one of its global
indexes is not ACTIVE, and throttles control-plane calls. Both conditions are
waited out with one backoff state per schema change.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .backoff import Backoff
from .errors import RetryableStoreError, SchemaChangeTimeoutError, ValidationError
from .metadata import TableMetadataCache, describe_table
from .models import BackoffState, ProjectionKind
from .types import JsonDict, OperationDescriptor, Store, StoreAction
from .utils import validate_attribute_name, validate_table_name

logger = logging.getLogger(__name__)

# Field types accepted by TableSpec, mapped to DynamoDB attribute types
TYPE_ALIASES = {
    "string": "S",
    "str": "S",
    "uuid": "S",
    "number": "N",
    "integer": "N",
    "int": "N",
    "bigint": "N",
    "serial": "N",
    "float": "N",
    "decimal": "N",
    "binary": "B",
    "binary_id": "B",
    "blob": "B",
    "bytes": "B",
}


def convert_type(type_name: str) -> str:
    """DynamoDB attribute type (S, N or B) for a field type name"""
    if type_name in ("S", "N", "B"):
        return type_name
    converted = TYPE_ALIASES.get(str(type_name).lower())
    if converted is None:
        raise ValidationError(f"Unsupported key attribute type: {type_name!r}")
    return converted


def _throughput(capacity: Tuple[int, int]) -> JsonDict:
    read_capacity, write_capacity = capacity
    return {"ReadCapacityUnits": read_capacity, "WriteCapacityUnits": write_capacity}


@dataclass
class IndexSpec:
    name: str
    keys: List[str]
    projection: ProjectionKind = ProjectionKind.ALL
    non_key_attributes: List[str] = field(default_factory=list)
    provisioned_throughput: Tuple[int, int] = (1, 1)

    def __post_init__(self):
        if len(self.keys) not in (1, 2):
            raise ValidationError(f"Index '{self.name}' needs a hash key and at most one range key")
        if isinstance(self.projection, str):
            self.projection = ProjectionKind(self.projection.upper())
        if self.projection == ProjectionKind.INCLUDE and not self.non_key_attributes:
            raise ValidationError(f"Index '{self.name}' uses INCLUDE projection without non_key_attributes")

    def key_schema(self) -> List[JsonDict]:
        schema = [{"AttributeName": self.keys[0], "KeyType": "HASH"}]
        if len(self.keys) == 2:
            schema.append({"AttributeName": self.keys[1], "KeyType": "RANGE"})
        return schema

    def to_definition(self, with_throughput: bool = True) -> JsonDict:
        projection: JsonDict = {"ProjectionType": self.projection.value}
        if self.projection == ProjectionKind.INCLUDE:
            projection["NonKeyAttributes"] = list(self.non_key_attributes)
        definition = {
            "IndexName": self.name,
            "KeySchema": self.key_schema(),
            "Projection": projection,
        }
        if with_throughput:
            definition["ProvisionedThroughput"] = _throughput(self.provisioned_throughput)
        return definition


class TableSpec:
    """Build CreateTable requests"""

    def __init__(self, name: str, provisioned_throughput: Tuple[int, int] = (1, 1)):
        self.name = validate_table_name(name)
        self.provisioned_throughput = provisioned_throughput
        self.attributes: Dict[str, str] = {}
        self.hash_key: Optional[str] = None
        self.range_key: Optional[str] = None
        self.global_indexes: List[IndexSpec] = []
        self.local_indexes: List[IndexSpec] = []

    def add(self, name: str, type_name: str = "string", primary_key: bool = False,
            range_key: bool = False) -> TableSpec:
        validate_attribute_name(name)
        self.attributes[name] = convert_type(type_name)
        if primary_key:
            if self.hash_key and self.hash_key != name:
                raise ValidationError(f"Table '{self.name}' already has hash key '{self.hash_key}'")
            self.hash_key = name
        if range_key:
            if self.range_key and self.range_key != name:
                raise ValidationError(f"Table '{self.name}' already has range key '{self.range_key}'")
            self.range_key = name
        return self

    def add_global_index(self, index: IndexSpec) -> TableSpec:
        self.global_indexes.append(index)
        return self

    def add_local_index(self, index: IndexSpec) -> TableSpec:
        self.local_indexes.append(index)
        return self

    def key_attributes(self) -> List[str]:
        names = [self.hash_key, self.range_key]
        for index in self.global_indexes + self.local_indexes:
            names.extend(index.keys)
        return [n for n in dict.fromkeys(names) if n]

    def to_create_table(self) -> JsonDict:
        """CreateTable parameters"""
        if not self.hash_key:
            raise ValidationError(f"No primary key was found for table '{self.name}'")

        key_schema = [{"AttributeName": self.hash_key, "KeyType": "HASH"}]
        if self.range_key:
            key_schema.append({"AttributeName": self.range_key, "KeyType": "RANGE"})

        definitions = []
        for name in self.key_attributes():
            if name not in self.attributes:
                raise ValidationError(f"Key attribute '{name}' of table '{self.name}' has no declared type")
            definitions.append({"AttributeName": name, "AttributeType": self.attributes[name]})

        params: JsonDict = {
            "TableName": self.name,
            "KeySchema": key_schema,
            "AttributeDefinitions": definitions,
            "ProvisionedThroughput": _throughput(self.provisioned_throughput),
        }
        if self.global_indexes:
            params["GlobalSecondaryIndexes"] = [i.to_definition() for i in self.global_indexes]
        if self.local_indexes:
            # local indexes share the table's throughput
            params["LocalSecondaryIndexes"] = [i.to_definition(with_throughput=False) for i in self.local_indexes]
        return params


@dataclass
class TableAlteration:
    """Global-index changes for one UpdateTable call"""
    attributes: Dict[str, str] = field(default_factory=dict)
    create_indexes: List[IndexSpec] = field(default_factory=list)
    delete_indexes: List[str] = field(default_factory=list)
    update_throughput: Dict[str, Tuple[int, int]] = field(default_factory=dict)

    def add(self, name: str, type_name: str = "string") -> TableAlteration:
        self.attributes[validate_attribute_name(name)] = convert_type(type_name)
        return self

    def create_index(self, index: IndexSpec) -> TableAlteration:
        self.create_indexes.append(index)
        return self

    def remove_index(self, name: str) -> TableAlteration:
        self.delete_indexes.append(name)
        return self

    def modify_index(self, name: str, provisioned_throughput: Tuple[int, int]) -> TableAlteration:
        self.update_throughput[name] = provisioned_throughput
        return self

    def to_update_table(self, table_name: str) -> JsonDict:
        """UpdateTable parameters; attribute definitions are sent only with index creation"""
        updates: List[JsonDict] = []
        for index in self.create_indexes:
            missing = [k for k in index.keys if k not in self.attributes]
            if missing:
                raise ValidationError(f"Index '{index.name}' keys {missing} need a declared type")
            updates.append({"Create": index.to_definition()})
        for name in self.delete_indexes:
            updates.append({"Delete": {"IndexName": name}})
        for name, capacity in self.update_throughput.items():
            updates.append({"Update": {"IndexName": name, "ProvisionedThroughput": _throughput(capacity)}})
        if not updates:
            raise ValidationError(f"Nothing to alter on table '{table_name}'")

        params: JsonDict = {"TableName": table_name, "GlobalSecondaryIndexUpdates": updates}
        if self.create_indexes:
            params["AttributeDefinitions"] = [
                {"AttributeName": name, "AttributeType": type_code} for name, type_code in self.attributes.items()
            ]
        return params


def non_active_statuses(table: JsonDict) -> List[Tuple[str, str]]:
    """(name, status) of the table and each global index that is not ACTIVE"""
    statuses = [("TableStatus", table.get("TableStatus"))]
    statuses += [(i["IndexName"], i.get("IndexStatus")) for i in table.get("GlobalSecondaryIndexes") or []]
    return [(name, status) for name, status in statuses if status != "ACTIVE"]


class SchemaManager:
    """Create, alter and drop tables, waiting out throttling and in-progress changes"""

    def __init__(self, store: Store, backoff: Optional[Backoff] = None,
                 metadata_cache: Optional[TableMetadataCache] = None):
        self.store = store
        self.backoff = backoff or Backoff()
        self.metadata_cache = metadata_cache

    def _send(self, action: StoreAction, table: Optional[str], params: JsonDict) -> JsonDict:
        return self.store.send(OperationDescriptor(action=action, table=table, params=params))

    def _refresh_metadata(self, table: str) -> None:
        if self.metadata_cache is not None:
            self.metadata_cache.refresh(table)

    def list_tables(self) -> List[str]:
        response = self.backoff.call(lambda: self._send(StoreAction.LIST_TABLES, None, {}), "ListTables")
        return list(response.get("TableNames", []))

    def _wait_or_fail(self, state: BackoffState, reason: str, table: str) -> BackoffState:
        next_state = self.backoff.wait(state, reason)
        if next_state is None:
            raise SchemaChangeTimeoutError(
                f"{reason}: wait exceeding configured max wait time, stopping schema change on table '{table}'"
            )
        return next_state

    def create_table(self, spec: TableSpec, wait: bool = False) -> JsonDict:
        params = spec.to_create_table()
        logger.info(f"Creating table {spec.name}")
        state = self.backoff.config.initial_state()
        while True:
            try:
                response = self._send(StoreAction.CREATE_TABLE, spec.name, params)
                break
            except RetryableStoreError as e:
                state = self._wait_or_fail(state, f"{e.code} on create table {spec.name}", spec.name)

        logger.info(f"Table {spec.name} created successfully")
        if wait and not self.wait_until_active(spec.name):
            raise SchemaChangeTimeoutError(f"Table '{spec.name}' did not become ACTIVE")
        self._refresh_metadata(spec.name)
        return response

    def create_table_if_not_exists(self, spec: TableSpec, wait: bool = False) -> bool:
        if spec.name in self.list_tables():
            logger.info(f"create_table_if_not_exists {spec.name}: table already exists. Done.")
            return False
        self.create_table(spec, wait=wait)
        return True

    def wait_until_active(self, table: str) -> bool:
        """Poll DescribeTable until the table and its global indexes are ACTIVE; False on timeout"""
        def _check() -> bool:
            statuses = non_active_statuses(describe_table(self.store, table))
            if statuses:
                logger.info(f"Non-active status found in table {table}: {statuses}")
            return not statuses

        return self.backoff.poll(_check, f"Table {table}")

    def alter_table(self, table: str, alteration: TableAlteration) -> JsonDict:
        """
        Send UpdateTable once the table and all its global indexes are ACTIVE.

        Waiting for in-progress changes and throttling share one backoff
        state; exceeding it raises SchemaChangeTimeoutError. Changes applied
        before the timeout are left in place.
        """
        params = alteration.to_update_table(table)
        state = self.backoff.config.initial_state()
        while True:
            logger.info(f"alter_table: polling table {table}...")
            statuses = non_active_statuses(describe_table(self.store, table))
            if statuses:
                state = self._wait_or_fail(state, f"Non-active status found in table {table}: {statuses}", table)
                continue
            try:
                response = self._send(StoreAction.UPDATE_TABLE, table, params)
            except RetryableStoreError as e:
                state = self._wait_or_fail(state, f"{e.code} on update table {table}", table)
                continue
            logger.info(f"Table {table} altered successfully")
            self._refresh_metadata(table)
            return response

    def drop_table(self, table: str) -> None:
        logger.info(f"Removing table {table}")
        self.backoff.call(lambda: self._send(StoreAction.DELETE_TABLE, table, {"TableName": table}),
                          f"DeleteTable on {table}")
        if self.metadata_cache is not None:
            self.metadata_cache.invalidate(table)

    def drop_table_if_exists(self, table: str) -> bool:
        if table not in self.list_tables():
            logger.info(f"drop_table_if_exists {table}: table does not exist. Done.")
            return False
        self.drop_table(table)
        return True
