# src/dynaplan/errors.py
"""
Structured exceptions for planning and store operations
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(Enum):
    """Coarse error classes callers can branch on without matching types"""
    CONFIGURATION = "configuration"
    INVALID_QUERY = "invalid_query"
    CONFLICT = "conflict"
    TRANSIENT = "transient"
    FATAL = "fatal"


class DynaPlanError(Exception):
    """Base exception for all dynaplan errors"""

    kind: ErrorKind = ErrorKind.FATAL


class NoMatchingIndexError(DynaPlanError):
    """No index satisfies the predicates and scanning is not permitted"""

    kind = ErrorKind.CONFIGURATION

    def __init__(self, table: str, fields: List[str]):
        self.table = table
        self.fields = fields
        super().__init__(
            f"No index on table '{table}' matches fields {fields}. "
            f"Add an index, or allow a scan with scan=True or the scan_tables setting."
        )


class ScanNotAllowedError(DynaPlanError):
    """A scan was requested on a table that is not approved for scanning"""

    kind = ErrorKind.CONFIGURATION

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Scan not allowed on table '{table}'")


class ValidationError(DynaPlanError):
    """Input validation failed"""

    kind = ErrorKind.INVALID_QUERY


class UnsupportedKeyFilterError(DynaPlanError):
    """Predicate cannot be applied to a key attribute of the chosen index"""

    kind = ErrorKind.INVALID_QUERY


class InvalidOperatorError(DynaPlanError):
    """Operator is unknown or unsupported for the attribute it targets"""

    kind = ErrorKind.INVALID_QUERY


class StoreError(DynaPlanError):
    """Store call failed"""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)


class RetryableStoreError(StoreError):
    """Throttling or limit-exceeded failure, safe to retry after a wait"""

    kind = ErrorKind.TRANSIENT


class FatalStoreError(StoreError):
    """Any store failure that is not worth retrying"""

    kind = ErrorKind.FATAL


class ConditionalCheckFailed(StoreError):
    """Conditional write rejected, e.g. insert over an existing key"""

    kind = ErrorKind.CONFLICT

    def __init__(self, message: str, code: Optional[str] = "ConditionalCheckFailedException",
                 key: Optional[Dict[str, Any]] = None):
        self.key = key
        super().__init__(message, code)


class MetadataFetchError(DynaPlanError):
    """DescribeTable failed while loading table metadata"""

    kind = ErrorKind.FATAL

    def __init__(self, table: str, cause: Exception):
        self.table = table
        self.cause = cause
        super().__init__(f"Could not load metadata for table '{table}': {cause}")


class SchemaChangeTimeoutError(DynaPlanError):
    """Schema change did not complete before the backoff ceiling"""

    kind = ErrorKind.FATAL
