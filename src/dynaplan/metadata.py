# src/dynaplan/metadata.py
"""
Table metadata: key schemas and secondary indexes, cached for the process lifetime
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .cache import KeyedCache
from .errors import MetadataFetchError, StoreError
from .models import IndexDescriptor, ProjectionKind, TableMetadata
from .types import JsonDict, OperationDescriptor, Store, StoreAction

logger = logging.getLogger(__name__)


def _key_schema(key_schema: List[Dict[str, str]]) -> Dict[str, Optional[str]]:
    result: Dict[str, Optional[str]] = {"HASH": None, "RANGE": None}
    for element in key_schema:
        result[element["KeyType"]] = element["AttributeName"]
    return result


def _descriptor(name: Optional[str], key_schema: List[Dict[str, str]],
                types: Dict[str, str], projection: Optional[Dict[str, Any]] = None) -> IndexDescriptor:
    keys = _key_schema(key_schema)
    hash_attribute = keys["HASH"]
    if not hash_attribute:
        raise ValueError(f"Key schema of {name or 'primary key'} has no HASH attribute")
    range_attribute = keys["RANGE"]
    projection = projection or {"ProjectionType": "ALL"}

    return IndexDescriptor(
        name=name,
        hash_attribute=hash_attribute,
        hash_type=types.get(hash_attribute, "S"),
        range_attribute=range_attribute,
        range_type=types.get(range_attribute) if range_attribute else None,
        projection_kind=ProjectionKind(projection.get("ProjectionType", "ALL")),
        non_key_attributes=tuple(projection.get("NonKeyAttributes") or ()),
    )


def parse_table_description(table: JsonDict) -> TableMetadata:
    """Build TableMetadata from the `Table` member of a DescribeTable response"""
    types = {d["AttributeName"]: d["AttributeType"] for d in table.get("AttributeDefinitions", [])}
    primary = _descriptor(None, table["KeySchema"], types)

    # global indexes first, then local, each in the order the store lists them
    secondary = []
    for index in (table.get("GlobalSecondaryIndexes") or []) + (table.get("LocalSecondaryIndexes") or []):
        secondary.append(_descriptor(index["IndexName"], index["KeySchema"], types, index.get("Projection")))

    return TableMetadata(
        table_name=table["TableName"],
        primary_index=primary,
        secondary_indexes=tuple(secondary),
    )


def describe_table(store: Store, table: str) -> JsonDict:
    response = store.send(OperationDescriptor(
        action=StoreAction.DESCRIBE_TABLE, table=table, params={"TableName": table}
    ))
    return response["Table"]


class TableMetadataCache:
    """
    Per-table metadata, fetched with DescribeTable on first access.

    Entries never expire; `refresh` replaces one atomically and `invalidate`
    drops it so the next `get` fetches again.
    """

    def __init__(self, store: Store, cache: Optional[KeyedCache] = None):
        self.store = store
        self._cache = cache or KeyedCache()

    def _fetch(self, table: str) -> TableMetadata:
        logger.debug(f"Fetching metadata for table {table}")
        try:
            description = describe_table(self.store, table)
            metadata = parse_table_description(description)
        except (StoreError, KeyError, ValueError) as e:
            raise MetadataFetchError(table, e) from e
        logger.info(
            f"Loaded metadata for {table}: primary={metadata.primary_index.key_attributes}, "
            f"secondary={[idx.name for idx in metadata.secondary_indexes]}"
        )
        return metadata

    def get(self, table: str) -> TableMetadata:
        return self._cache.get_or_compute(table, lambda: self._fetch(table))

    def refresh(self, table: str) -> TableMetadata:
        return self._cache.refresh(table, lambda: self._fetch(table))

    def invalidate(self, table: str) -> None:
        self._cache.invalidate(table)

    def put(self, metadata: TableMetadata) -> None:
        """Seed an entry without a DescribeTable round-trip"""
        self._cache.put(metadata.table_name, metadata)
