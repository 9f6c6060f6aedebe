# src/dynaplan/repository.py
"""
Repository facade: predicate lists in, records out.

Wires settings, store, caches, planner, request builder, pagination engine
and schema manager. Each call plans against cached table metadata, builds
one descriptor and runs it through the pagination engine.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from .backoff import Backoff, BackoffConfig
from .cache import ScanResultCache
from .config import Settings
from .errors import ConditionalCheckFailed, ValidationError
from .factory import StoreFactory
from .metadata import TableMetadataCache
from .models import AccessPlan, CallOptions, QueryInfo, TableMetadata
from .pagination import PagePolicy, PaginationEngine, summarize
from .planner import IndexSelector, ScanPolicy
from .query import PredicateBuilder, normalize_predicates
from .request import RequestBuilder
from .schema import SchemaManager
from .types import JsonDict, OperationDescriptor, Store
from .utils import setup_logger, validate_attributes, validate_table_name


class Repository:
    """DynamoDB access through relational-style predicates"""

    def __init__(self, settings: Optional[Settings] = None, store: Optional[Store] = None,
                 sleeper: Optional[Callable[[int], None]] = None,
                 scan_cache: Optional[ScanResultCache] = None):
        self.settings = settings or Settings.from_env()
        self.logger = setup_logger(__name__, self.settings.log_level_value)
        logging.getLogger("dynaplan").setLevel(self.settings.log_level_value)

        self.store = store or StoreFactory(self.settings).get_store()
        backoff_config = BackoffConfig.from_settings(self.settings)
        self.backoff = Backoff(backoff_config, sleeper) if sleeper else Backoff(backoff_config)
        self.metadata = TableMetadataCache(self.store)
        self.scan_cache = scan_cache or ScanResultCache.from_settings(self.settings)
        self.scan_policy = ScanPolicy.from_settings(self.settings)
        self.selector = IndexSelector()
        self.builder = RequestBuilder(self.settings)
        self.engine = PaginationEngine(self.store, self.backoff, self.scan_cache, self.scan_policy, self.builder)
        self.schema = SchemaManager(self.store, self.backoff, self.metadata)

    # -------------------------
    # Planning
    # -------------------------
    @staticmethod
    def _options(conditions: Any, options: Dict[str, Any]) -> CallOptions:
        opts = CallOptions.from_kwargs(**options)
        if isinstance(conditions, PredicateBuilder) and conditions.descending:
            opts.scan_index_forward = False
        return opts

    def _plan(self, table: str, conditions: Any, opts: CallOptions) -> AccessPlan:
        metadata = self.metadata.get(validate_table_name(table))
        return self.selector.plan(metadata, normalize_predicates(conditions), self.scan_policy, opts.scan)

    def plan(self, table: str, conditions: Any = None, **options) -> AccessPlan:
        """The access plan a read with these conditions would use"""
        return self._plan(table, conditions, self._options(conditions, options))

    def _read(self, table: str, conditions: Any, opts: CallOptions,
              select: Optional[Sequence[str]] = None) -> OperationDescriptor:
        plan = self._plan(table, conditions, opts)
        return self.builder.build(plan, opts, select)

    def _pages(self, descriptor: OperationDescriptor, opts: CallOptions):
        return self.engine.fetch_all(
            descriptor,
            PagePolicy.from_options(opts),
            allow_scan=opts.scan,
            refresh_cache=opts.no_cache,
        )

    # -------------------------
    # Reads
    # -------------------------
    def all(self, table: str, conditions: Any = None, **options) -> List[JsonDict]:
        """Every matching record, in store page order"""
        opts = self._options(conditions, options)
        pages = list(self._pages(self._read(table, conditions, opts), opts))
        if opts.query_info_key:
            self.engine.record_query_info(opts.query_info_key, summarize(pages))
        return [item for page in pages for item in page.items]

    def stream(self, table: str, conditions: Any = None, **options) -> Iterator[JsonDict]:
        """Matching records, fetched lazily page by page"""
        opts = self._options(conditions, options)
        pages = self._pages(self._read(table, conditions, opts), opts)
        seen = []
        for page in pages:
            seen.append(page)
            yield from page.items
        if opts.query_info_key:
            self.engine.record_query_info(opts.query_info_key, summarize(seen))

    def get(self, table: str, conditions: Any, **options) -> Optional[JsonDict]:
        """The single matching record, or None; more than one match raises ValidationError"""
        records = self.all(table, conditions, **options)
        if len(records) > 1:
            raise ValidationError(f"Expected at most one record from '{table}', got {len(records)}")
        return records[0] if records else None

    # -------------------------
    # Writes
    # -------------------------
    def insert(self, table: str, record: JsonDict, **options) -> JsonDict:
        """
        Put one record.

        With `on_conflict="nothing"` an existing key is not an error: the
        returned record then holds only the key fields.
        """
        opts = CallOptions.from_kwargs(**options)
        metadata = self.metadata.get(validate_table_name(table))
        request = self.builder.build_put(metadata, validate_attributes(dict(record)), opts)
        try:
            self.engine.send(request)
        except ConditionalCheckFailed:
            if opts.on_conflict == "nothing":
                self.logger.info(f"Insert into {table} skipped: key {request.key} already exists")
                return dict(request.key)
            raise
        return dict(request.item)

    def insert_all(self, table: str, records: Iterable[JsonDict], **options) -> List[JsonDict]:
        return [self.insert(table, record, **options) for record in records]

    def _key(self, metadata: TableMetadata, key: JsonDict, opts: CallOptions) -> JsonDict:
        return metadata.key_for(key, opts.range_key)

    def update(self, table: str, key: JsonDict, changes: Optional[JsonDict] = None, **options) -> JsonDict:
        """Update an existing record; `key` may be the full record. Returns the updated record."""
        opts = CallOptions.from_kwargs(**options)
        metadata = self.metadata.get(validate_table_name(table))
        request = self.builder.build_update(metadata, self._key(metadata, key, opts),
                                            validate_attributes(dict(changes or {})), opts)
        response = self.engine.send(request)
        return response.get("Attributes", {})

    def delete(self, table: str, key: JsonDict, **options) -> JsonDict:
        """Delete an existing record; a missing key raises ConditionalCheckFailed"""
        opts = CallOptions.from_kwargs(**options)
        metadata = self.metadata.get(validate_table_name(table))
        request = self.builder.build_delete(metadata, self._key(metadata, key, opts), require_existing=True)
        self.engine.send(request)
        return dict(request.key)

    def update_all(self, table: str, conditions: Any, changes: Optional[JsonDict] = None, **options) -> int:
        """Update every matching record one by one; not atomic. Returns the number updated."""
        opts = self._options(conditions, options)
        changes = validate_attributes(dict(changes or {}))
        if not changes and not opts.has_update_directives:
            raise ValidationError(f"Nothing to update on table '{table}'")
        metadata = self.metadata.get(validate_table_name(table))
        descriptor = self._read(table, conditions, opts, select=list(metadata.key_attributes))
        return self.engine.update_all(descriptor, metadata, changes, opts)

    def delete_all(self, table: str, conditions: Any = None, **options) -> int:
        """Delete every matching record one by one; not atomic. Returns the number deleted."""
        opts = self._options(conditions, options)
        metadata = self.metadata.get(validate_table_name(table))
        descriptor = self._read(table, conditions, opts, select=list(metadata.key_attributes))
        return self.engine.delete_all(descriptor, metadata, opts)

    # -------------------------
    # Administration
    # -------------------------
    def refresh_table_metadata(self, table: str) -> TableMetadata:
        return self.metadata.refresh(table)

    def invalidate_scan_cache(self, table: str) -> None:
        self.scan_cache.invalidate(table)

    def take_query_info(self, key: str) -> Optional[QueryInfo]:
        return self.engine.take_query_info(key)

    def list_tables(self) -> List[str]:
        return self.schema.list_tables()
