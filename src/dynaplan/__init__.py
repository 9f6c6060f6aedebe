# src/dynaplan/__init__.py
"""
dynaplan - relational-style predicates planned onto DynamoDB
Index selection, metadata and scan caches, pagination, bounded backoff
"""

__version__ = "0.1.0"

from .config import Settings
from .repository import Repository
from .factory import StoreFactory
from .models import (
    AccessPlan,
    CallOptions,
    IndexDescriptor,
    Operator,
    Page,
    PlanOperation,
    Predicate,
    QueryInfo,
    TableMetadata,
)
from .query import PredicateBuilder, normalize_predicates
from .planner import IndexSelector, ScanPolicy
from .schema import IndexSpec, SchemaManager, TableAlteration, TableSpec
from .errors import (
    ConditionalCheckFailed,
    DynaPlanError,
    ErrorKind,
    FatalStoreError,
    InvalidOperatorError,
    MetadataFetchError,
    NoMatchingIndexError,
    RetryableStoreError,
    ScanNotAllowedError,
    SchemaChangeTimeoutError,
    StoreError,
    UnsupportedKeyFilterError,
    ValidationError,
)

__all__ = [
    # Entry points
    "Repository",
    "Settings",
    "StoreFactory",
    # Models
    "AccessPlan",
    "CallOptions",
    "IndexDescriptor",
    "Operator",
    "Page",
    "PlanOperation",
    "Predicate",
    "QueryInfo",
    "TableMetadata",
    # Query & planning
    "PredicateBuilder",
    "normalize_predicates",
    "IndexSelector",
    "ScanPolicy",
    # Schema
    "IndexSpec",
    "SchemaManager",
    "TableAlteration",
    "TableSpec",
    # Errors
    "ConditionalCheckFailed",
    "DynaPlanError",
    "ErrorKind",
    "FatalStoreError",
    "InvalidOperatorError",
    "MetadataFetchError",
    "NoMatchingIndexError",
    "RetryableStoreError",
    "ScanNotAllowedError",
    "SchemaChangeTimeoutError",
    "StoreError",
    "UnsupportedKeyFilterError",
    "ValidationError",
]
