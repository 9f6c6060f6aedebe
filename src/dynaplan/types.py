from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from .models import Predicate

JsonDict = Dict[str, Any]
Key = Dict[str, Any]


class StoreAction(Enum):
    GET_ITEM = "GetItem"
    BATCH_GET_ITEM = "BatchGetItem"
    QUERY = "Query"
    SCAN = "Scan"
    PUT_ITEM = "PutItem"
    UPDATE_ITEM = "UpdateItem"
    DELETE_ITEM = "DeleteItem"
    DESCRIBE_TABLE = "DescribeTable"
    CREATE_TABLE = "CreateTable"
    UPDATE_TABLE = "UpdateTable"
    LIST_TABLES = "ListTables"
    DELETE_TABLE = "DeleteTable"


READ_ACTIONS = (StoreAction.GET_ITEM, StoreAction.BATCH_GET_ITEM, StoreAction.QUERY, StoreAction.SCAN)


@dataclass(frozen=True)
class WriteCondition:
    """Conditional-write clause: `attribute_exists` or `attribute_not_exists` on one attribute"""
    kind: str
    attribute: str


@dataclass
class UpdateActions:
    """Structured form of an UpdateExpression"""
    set: JsonDict = field(default_factory=dict)
    remove: List[str] = field(default_factory=list)
    add: JsonDict = field(default_factory=dict)
    delete: JsonDict = field(default_factory=dict)
    pull_indexes: Dict[str, List[int]] = field(default_factory=dict)
    prepend: Dict[str, List[Any]] = field(default_factory=dict)
    append: Dict[str, List[Any]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.set or self.remove or self.add or self.delete
                    or self.pull_indexes or self.prepend or self.append)


@dataclass
class OperationDescriptor:
    """
    One store request.

    `params` is the wire form (expressions with placeholders) consumed by the
    DynamoDB adapter; the structured fields carry the same request for
    adapters that evaluate it directly.
    """
    action: StoreAction
    table: Optional[str] = None
    params: JsonDict = field(default_factory=dict)
    index_name: Optional[str] = None
    key: Optional[Key] = None
    keys: List[Key] = field(default_factory=list)
    item: Optional[JsonDict] = None
    key_conditions: Tuple[Predicate, ...] = ()
    filters: Tuple[Predicate, ...] = ()
    projection: Optional[List[str]] = None
    limit: Optional[int] = None
    exclusive_start_key: Optional[Key] = None
    scan_index_forward: bool = True
    consistent_read: bool = False
    condition: Optional[WriteCondition] = None
    updates: Optional[UpdateActions] = None
    parts: List["OperationDescriptor"] = field(default_factory=list)

    def with_cursor(self, cursor: Optional[Key]) -> OperationDescriptor:
        params = dict(self.params)
        if cursor is None:
            params.pop("ExclusiveStartKey", None)
        else:
            params["ExclusiveStartKey"] = cursor
        return replace(self, exclusive_start_key=cursor, params=params)

    def with_keys(self, keys: List[Key]) -> OperationDescriptor:
        params = dict(self.params)
        if "RequestItems" in params and self.table:
            request = dict(params["RequestItems"][self.table])
            request["Keys"] = list(keys)
            params["RequestItems"] = {self.table: request}
        return replace(self, keys=list(keys), params=params)


@runtime_checkable
class Store(Protocol):
    """Store collaborator: one request in, one response payload out, typed StoreError on failure"""

    def send(self, request: OperationDescriptor) -> JsonDict: ...
