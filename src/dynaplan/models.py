# src/dynaplan/models.py
"""
Data models: predicates, index descriptors, plans, pages and call options
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationError


class StoreBackend(Enum):
    """Supported store adapters"""
    DYNAMODB = "dynamodb"
    MEMORY = "memory"


class Operator(Enum):
    EQ = "eq"
    IN = "in"
    IS_NIL = "is_nil"
    BETWEEN = "between"
    BEGINS_WITH = "begins_with"


class ProjectionKind(Enum):
    ALL = "ALL"
    KEYS_ONLY = "KEYS_ONLY"
    INCLUDE = "INCLUDE"


class PlanOperation(Enum):
    POINT_GET = "point_get"
    BATCH_GET = "batch_get"
    QUERY = "query"
    SCAN = "scan"


@dataclass(frozen=True)
class Predicate:
    field: str
    operator: Operator
    value: Any = None

    def __repr__(self) -> str:
        return f"Predicate({self.field} {self.operator.value} {self.value!r})"


@dataclass(frozen=True)
class IndexDescriptor:
    """Key schema of the primary key (name=None) or of a secondary index"""
    name: Optional[str]
    hash_attribute: str
    hash_type: str = "S"
    range_attribute: Optional[str] = None
    range_type: Optional[str] = None
    projection_kind: ProjectionKind = ProjectionKind.ALL
    non_key_attributes: Tuple[str, ...] = ()

    @property
    def is_primary(self) -> bool:
        return self.name is None

    @property
    def key_attributes(self) -> Tuple[str, ...]:
        if self.range_attribute:
            return (self.hash_attribute, self.range_attribute)
        return (self.hash_attribute,)

    def attribute_type(self, attribute: str) -> Optional[str]:
        if attribute == self.hash_attribute:
            return self.hash_type
        if attribute == self.range_attribute:
            return self.range_type
        return None


@dataclass(frozen=True)
class TableMetadata:
    table_name: str
    primary_index: IndexDescriptor
    secondary_indexes: Tuple[IndexDescriptor, ...] = ()

    @property
    def key_attributes(self) -> Tuple[str, ...]:
        return self.primary_index.key_attributes

    def index(self, name: Optional[str]) -> IndexDescriptor:
        if name is None:
            return self.primary_index
        for idx in self.secondary_indexes:
            if idx.name == name:
                return idx
        raise ValidationError(f"Table '{self.table_name}' has no index '{name}'")

    def attribute_type(self, attribute: str) -> Optional[str]:
        for idx in (self.primary_index,) + tuple(self.secondary_indexes):
            found = idx.attribute_type(attribute)
            if found:
                return found
        return None

    def key_for(self, record: Dict[str, Any], range_key: Optional[Tuple[str, Any]] = None) -> Dict[str, Any]:
        """Primary key of `record`; `range_key` supplies the range component when the record lacks it"""
        primary = self.primary_index
        if record.get(primary.hash_attribute) is None:
            raise ValidationError(
                f"Record for '{self.table_name}' is missing hash key '{primary.hash_attribute}'"
            )
        key = {primary.hash_attribute: record[primary.hash_attribute]}

        if primary.range_attribute:
            if record.get(primary.range_attribute) is not None:
                key[primary.range_attribute] = record[primary.range_attribute]
            elif range_key and range_key[0] == primary.range_attribute:
                key[primary.range_attribute] = range_key[1]
            else:
                raise ValidationError(
                    f"Record for '{self.table_name}' is missing range key '{primary.range_attribute}'; "
                    f"pass range_key=('{primary.range_attribute}', value)"
                )
        return key


@dataclass(frozen=True)
class AccessPlan:
    table_name: str
    operation: PlanOperation
    chosen_index: Optional[IndexDescriptor] = None
    key_conditions: Tuple[Predicate, ...] = ()
    residual_filters: Tuple[Predicate, ...] = ()

    @property
    def index_name(self) -> Optional[str]:
        return self.chosen_index.name if self.chosen_index else None


@dataclass
class Page:
    items: List[Dict[str, Any]] = field(default_factory=list)
    count: int = 0
    scanned_count: int = 0
    last_key: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": self.items,
            "count": self.count,
            "scanned_count": self.scanned_count,
            "last_key": self.last_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Page:
        return cls(
            items=list(data.get("items") or []),
            count=data.get("count", 0),
            scanned_count=data.get("scanned_count", 0),
            last_key=data.get("last_key"),
        )


@dataclass
class ScanCacheEntry:
    table_name: str
    page: Page
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class BackoffState:
    wait_interval: int
    total_waited: int = 0


class _Exceeded:
    """Backoff ceiling reached; the caller must fail instead of waiting again"""

    def __repr__(self) -> str:
        return "EXCEEDED"

    def __bool__(self) -> bool:
        return False


EXCEEDED = _Exceeded()


@dataclass(frozen=True)
class QueryInfo:
    count: int
    scanned_count: int
    last_evaluated_key: Optional[Dict[str, Any]] = None


ON_CONFLICT_POLICIES = ("raise", "nothing", "replace")


@dataclass
class CallOptions:
    """Per-call options recognized by the repository"""
    scan: bool = False
    scan_limit: Optional[int] = None
    recursive: Optional[bool] = None
    page_limit: Optional[int] = None
    exclusive_start_key: Optional[Dict[str, Any]] = None
    scan_index_forward: bool = True
    consistent_read: bool = False
    range_key: Optional[Tuple[str, Any]] = None
    on_conflict: str = "raise"
    insert_nil_fields: Optional[bool] = None
    remove_nil_fields: Optional[bool] = None
    add: Dict[str, Any] = field(default_factory=dict)
    delete: Dict[str, Any] = field(default_factory=dict)
    pull_indexes: Dict[str, List[int]] = field(default_factory=dict)
    prepend_to_list: Dict[str, List[Any]] = field(default_factory=dict)
    push: Dict[str, List[Any]] = field(default_factory=dict)
    query_info_key: Optional[str] = None
    select: Optional[List[str]] = None
    no_cache: bool = False

    @classmethod
    def from_kwargs(cls, **kwargs: Any) -> CallOptions:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(kwargs) - known)
        if unknown:
            raise ValidationError(f"Unknown option(s): {', '.join(unknown)}")
        options = cls(**{k: v for k, v in kwargs.items() if v is not None})
        options.validate()
        return options

    def validate(self) -> None:
        if self.on_conflict not in ON_CONFLICT_POLICIES:
            raise ValidationError(
                f"on_conflict must be one of {ON_CONFLICT_POLICIES}, got {self.on_conflict!r}"
            )
        for name in ("scan_limit", "page_limit"):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, int) or value < 1):
                raise ValidationError(f"{name} must be a positive integer, got {value!r}")
        if self.range_key is not None:
            if not isinstance(self.range_key, (tuple, list)) or len(self.range_key) != 2:
                raise ValidationError("range_key must be a (attribute, value) pair")
            self.range_key = tuple(self.range_key)  # type: ignore[assignment]

    @property
    def has_update_directives(self) -> bool:
        return bool(self.add or self.delete or self.pull_indexes or self.prepend_to_list or self.push)
