# src/dynaplan/adapters/MemoryAdapter.py
"""
In-process store for local development and tests.

Evaluates the structured side of each OperationDescriptor (key conditions,
filters, update actions, write conditions) with DynamoDB's semantics: items
ordered by range key within a partition, `Limit` counted before filtering,
cursors as LastEvaluatedKey, sparse secondary indexes.
"""
import copy
import threading
from typing import Dict, List, Optional, Tuple

from ..base.StoreAdapter import StoreAdapter
from ..errors import ConditionalCheckFailed, FatalStoreError
from ..metadata import parse_table_description
from ..models import IndexDescriptor, ProjectionKind, TableMetadata
from ..query import apply_filters, evaluate
from ..types import JsonDict, Key, OperationDescriptor, UpdateActions

BATCH_GET_MAX_KEYS = 100


class _MemoryTable:
    def __init__(self, description: JsonDict):
        self.description = description
        self.items: Dict[Tuple, JsonDict] = {}
        self.reload()

    def reload(self):
        self.metadata: TableMetadata = parse_table_description(self.description)

    def key_tuple(self, key: Key) -> Tuple:
        return tuple(key.get(a) for a in self.metadata.key_attributes)


class MemoryAdapter(StoreAdapter):
    """Dict-backed store honoring key schemas, indexes, limits and cursors"""

    def __init__(self):
        super().__init__()
        self._tables: Dict[str, _MemoryTable] = {}
        self._lock = threading.RLock()

    # -------------------------
    # Helpers
    # -------------------------
    def _table(self, name: Optional[str]) -> _MemoryTable:
        table = self._tables.get(name)  # type: ignore[arg-type]
        if table is None:
            raise FatalStoreError(f"Requested resource not found: Table: {name} not found",
                                  "ResourceNotFoundException")
        return table

    @staticmethod
    def _project(item: JsonDict, attributes: Optional[List[str]]) -> JsonDict:
        if not attributes:
            return copy.deepcopy(item)
        return {k: copy.deepcopy(v) for k, v in item.items() if k in attributes}

    @staticmethod
    def _index_view(table: _MemoryTable, index: IndexDescriptor, item: JsonDict) -> JsonDict:
        if index.is_primary or index.projection_kind == ProjectionKind.ALL:
            return item
        keep = set(table.metadata.key_attributes) | set(index.key_attributes)
        if index.projection_kind == ProjectionKind.INCLUDE:
            keep |= set(index.non_key_attributes)
        return {k: v for k, v in item.items() if k in keep}

    def _check_condition(self, table: _MemoryTable, request: OperationDescriptor, existing: Optional[JsonDict]):
        condition = request.condition
        if condition is None:
            return
        present = existing is not None and condition.attribute in existing
        if condition.kind == "attribute_not_exists" and present:
            raise ConditionalCheckFailed("The conditional request failed", key=request.key)
        if condition.kind == "attribute_exists" and not present:
            raise ConditionalCheckFailed("The conditional request failed", key=request.key)

    @staticmethod
    def _order_key(table: _MemoryTable, index: IndexDescriptor, item: JsonDict) -> Tuple:
        """Store order: index range key (secondary indexes only), then primary key"""
        primary = table.key_tuple(item)
        if index.range_attribute and not index.is_primary:
            return (item.get(index.range_attribute),) + primary
        return primary

    def _read(self, request: OperationDescriptor, index: IndexDescriptor,
              candidates: List[JsonDict]) -> JsonDict:
        table = self._table(request.table)
        forward = request.scan_index_forward
        candidates = sorted(candidates, key=lambda item: self._order_key(table, index, item), reverse=not forward)

        start = 0
        if request.exclusive_start_key:
            # resume after the cursor position, whether or not that item still exists
            marker = self._order_key(table, index, request.exclusive_start_key)
            start = len(candidates)
            for i, item in enumerate(candidates):
                position = self._order_key(table, index, item)
                if (position > marker) if forward else (position < marker):
                    start = i
                    break

        remaining = candidates[start:]
        evaluated = remaining[:request.limit] if request.limit else remaining
        views = [self._index_view(table, index, item) for item in evaluated]
        matched = apply_filters(views, request.filters)

        response: JsonDict = {
            "Items": [self._project(item, request.projection) for item in matched],
            "Count": len(matched),
            "ScannedCount": len(evaluated),
        }
        if evaluated and len(evaluated) < len(remaining):
            last = evaluated[-1]
            response["LastEvaluatedKey"] = {
                a: last[a] for a in dict.fromkeys(table.metadata.key_attributes + index.key_attributes)
            }
        return response

    # -------------------------
    # Item operations
    # -------------------------
    def _get_item_raw(self, request: OperationDescriptor) -> JsonDict:
        with self._lock:
            table = self._table(request.table)
            item = table.items.get(table.key_tuple(request.key or {}))
            if item is None:
                return {}
            return {"Item": self._project(item, request.projection)}

    def _batch_get_item_raw(self, request: OperationDescriptor) -> JsonDict:
        if len(request.keys) > BATCH_GET_MAX_KEYS:
            raise FatalStoreError("Too many items requested for the BatchGetItem call", "ValidationException")
        with self._lock:
            table = self._table(request.table)
            found = []
            for key in request.keys:
                item = table.items.get(table.key_tuple(key))
                if item is not None:
                    found.append(self._project(item, request.projection))
            return {"Responses": {request.table: found}, "UnprocessedKeys": {}}

    def _query_raw(self, request: OperationDescriptor) -> JsonDict:
        with self._lock:
            table = self._table(request.table)
            index = table.metadata.index(request.index_name)
            # sparse index: items lacking an index key attribute are not in it
            candidates = [
                item for item in table.items.values()
                if all(a in item for a in index.key_attributes)
                and all(evaluate(p, item) for p in request.key_conditions)
            ]
            return self._read(request, index, candidates)

    def _scan_raw(self, request: OperationDescriptor) -> JsonDict:
        with self._lock:
            table = self._table(request.table)
            index = table.metadata.index(request.index_name)
            candidates = [item for item in table.items.values() if all(a in item for a in index.key_attributes)]
            return self._read(request, index, candidates)

    def _put_item_raw(self, request: OperationDescriptor) -> JsonDict:
        with self._lock:
            table = self._table(request.table)
            item = copy.deepcopy(request.item or {})
            key = table.key_tuple(item)
            if any(part is None for part in key):
                raise FatalStoreError("One or more parameter values were invalid: missing key", "ValidationException")
            self._check_condition(table, request, table.items.get(key))
            table.items[key] = item
            return {}

    def _update_item_raw(self, request: OperationDescriptor) -> JsonDict:
        with self._lock:
            table = self._table(request.table)
            key = table.key_tuple(request.key or {})
            existing = table.items.get(key)
            self._check_condition(table, request, existing)
            item = copy.deepcopy(existing) if existing else dict(request.key or {})
            self._apply_updates(item, request.updates or UpdateActions())
            table.items[key] = item
            return {"Attributes": copy.deepcopy(item)}

    def _delete_item_raw(self, request: OperationDescriptor) -> JsonDict:
        with self._lock:
            table = self._table(request.table)
            key = table.key_tuple(request.key or {})
            self._check_condition(table, request, table.items.get(key))
            table.items.pop(key, None)
            return {}

    @staticmethod
    def _apply_updates(item: JsonDict, actions: UpdateActions) -> None:
        for attribute, value in actions.set.items():
            item[attribute] = copy.deepcopy(value)
        for attribute, values in actions.prepend.items():
            item[attribute] = list(values) + list(item.get(attribute) or [])
        for attribute, values in actions.append.items():
            item[attribute] = list(item.get(attribute) or []) + list(values)
        for attribute in actions.remove:
            item.pop(attribute, None)
        for attribute, indexes in actions.pull_indexes.items():
            current = item.get(attribute)
            if isinstance(current, list):
                for i in sorted(indexes, reverse=True):
                    if i < len(current):
                        del current[i]
        for attribute, value in actions.add.items():
            current = item.get(attribute)
            if isinstance(value, (set, frozenset)):
                item[attribute] = set(current or set()) | set(value)
            elif current is None:
                item[attribute] = value
            else:
                item[attribute] = current + value
        for attribute, value in actions.delete.items():
            current = item.get(attribute)
            if isinstance(current, (set, frozenset)):
                remaining = set(current) - set(value)
                if remaining:
                    item[attribute] = remaining
                else:
                    item.pop(attribute)

    # -------------------------
    # Table operations
    # -------------------------
    def _describe_table_raw(self, request: OperationDescriptor) -> JsonDict:
        with self._lock:
            table = self._table(request.table)
            description = copy.deepcopy(table.description)
            description["ItemCount"] = len(table.items)
            return {"Table": description}

    def _create_table_raw(self, request: OperationDescriptor) -> JsonDict:
        params = request.params
        name = params["TableName"]
        with self._lock:
            if name in self._tables:
                raise FatalStoreError(f"Table already exists: {name}", "ResourceInUseException")
            description: JsonDict = {
                "TableName": name,
                "KeySchema": copy.deepcopy(params["KeySchema"]),
                "AttributeDefinitions": copy.deepcopy(params.get("AttributeDefinitions", [])),
                "TableStatus": "ACTIVE",
            }
            for kind in ("GlobalSecondaryIndexes", "LocalSecondaryIndexes"):
                if params.get(kind):
                    description[kind] = [dict(copy.deepcopy(i), IndexStatus="ACTIVE") for i in params[kind]]
            self._tables[name] = _MemoryTable(description)
            self.logger.info(f"Created in-memory table {name}")
            return {"TableDescription": copy.deepcopy(description)}

    def _update_table_raw(self, request: OperationDescriptor) -> JsonDict:
        params = request.params
        with self._lock:
            table = self._table(params["TableName"])
            description = table.description
            definitions = {d["AttributeName"]: d for d in description.get("AttributeDefinitions", [])}
            for definition in params.get("AttributeDefinitions", []):
                definitions[definition["AttributeName"]] = definition
            description["AttributeDefinitions"] = list(definitions.values())

            indexes = description.setdefault("GlobalSecondaryIndexes", [])
            for change in params.get("GlobalSecondaryIndexUpdates", []):
                if "Create" in change:
                    indexes.append(dict(copy.deepcopy(change["Create"]), IndexStatus="ACTIVE"))
                elif "Delete" in change:
                    name = change["Delete"]["IndexName"]
                    description["GlobalSecondaryIndexes"] = indexes = [i for i in indexes if i["IndexName"] != name]
                elif "Update" in change:
                    for index in indexes:
                        if index["IndexName"] == change["Update"]["IndexName"]:
                            index["ProvisionedThroughput"] = change["Update"].get("ProvisionedThroughput")
            if "ProvisionedThroughput" in params:
                description["ProvisionedThroughput"] = params["ProvisionedThroughput"]
            table.reload()
            return {"TableDescription": copy.deepcopy(description)}

    def _list_tables_raw(self, request: OperationDescriptor) -> JsonDict:
        with self._lock:
            return {"TableNames": sorted(self._tables)}

    def _delete_table_raw(self, request: OperationDescriptor) -> JsonDict:
        with self._lock:
            table = self._table(request.table)
            del self._tables[request.table]
            return {"TableDescription": copy.deepcopy(table.description)}
