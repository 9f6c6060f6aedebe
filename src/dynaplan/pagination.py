# src/dynaplan/pagination.py
"""
Pagination and batch-mutation engine.

Turns one OperationDescriptor into a lazy sequence of Pages, one per store
round-trip, and drives the fetch-then-mutate paths of `update_all` and
`delete_all`. Every round-trip retries throttling under the backoff engine.

The mutate paths are not atomic: a concurrent write to a key between the read
and the single-item mutation is neither detected nor prevented, and a failure
mid-sequence leaves the mutations already sent in place.
"""
from __future__ import annotations

import itertools
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional

from .backoff import Backoff
from .cache import ScanResultCache
from .errors import RetryableStoreError, ScanNotAllowedError, ValidationError
from .models import CallOptions, Page, QueryInfo, TableMetadata
from .planner import ScanPolicy
from .query import apply_filters
from .request import RequestBuilder
from .types import JsonDict, Key, OperationDescriptor, Store, StoreAction
from .utils import chunked

logger = logging.getLogger(__name__)

BATCH_GET_LIMIT = 100
QUERY_INFO_LIMIT = 1000


@dataclass(frozen=True)
class PagePolicy:
    """How many pages to fetch and where to start"""
    recursive: Optional[bool] = None
    page_limit: Optional[int] = None
    exclusive_start_key: Optional[Key] = None

    @classmethod
    def from_options(cls, options: CallOptions) -> PagePolicy:
        return cls(
            recursive=options.recursive,
            page_limit=options.page_limit,
            exclusive_start_key=options.exclusive_start_key,
        )

    def is_recursive(self, action: StoreAction) -> bool:
        # a page limit overrides the recursive flag; scans fetch one page unless asked
        if self.page_limit is not None:
            return True
        if self.recursive is not None:
            return self.recursive
        return action != StoreAction.SCAN


def summarize(pages: Iterable[Page]) -> QueryInfo:
    """Totals across the pages of one call, with the final cursor"""
    count = scanned = 0
    last_key = None
    for page in pages:
        count += page.count
        scanned += page.scanned_count
        last_key = page.last_key
    return QueryInfo(count=count, scanned_count=scanned, last_evaluated_key=last_key)


def _key_marker(key: Key, attributes: List[str]) -> tuple:
    return tuple(key.get(a) for a in attributes)


class PaginationEngine:
    """Executes descriptors against a store, page by page"""

    def __init__(self, store: Store, backoff: Optional[Backoff] = None,
                 scan_cache: Optional[ScanResultCache] = None,
                 scan_policy: Optional[ScanPolicy] = None,
                 builder: Optional[RequestBuilder] = None):
        self.store = store
        self.backoff = backoff or Backoff()
        self.scan_cache = scan_cache
        self.scan_policy = scan_policy or ScanPolicy()
        self.builder = builder or RequestBuilder()
        self._query_info: OrderedDict[str, QueryInfo] = OrderedDict()
        self._query_info_lock = threading.Lock()

    # -------------------------
    # Store round-trips
    # -------------------------
    def send(self, request: OperationDescriptor) -> JsonDict:
        """One store call, retried while throttled"""
        return self.backoff.call(
            lambda: self.store.send(request),
            f"{request.action.value} on {request.table}",
        )

    def _page(self, request: OperationDescriptor) -> Page:
        response = self.send(request)
        items = list(response.get("Items", []))
        return Page(
            items=items,
            count=response.get("Count", len(items)),
            scanned_count=response.get("ScannedCount", len(items)),
            last_key=response.get("LastEvaluatedKey"),
        )

    # -------------------------
    # Read path
    # -------------------------
    def fetch_all(self, descriptor: OperationDescriptor, page_policy: Optional[PagePolicy] = None,
                  allow_scan: bool = False, use_cache: bool = True,
                  refresh_cache: bool = False) -> Iterator[Page]:
        """
        Lazy pages for `descriptor`.

        Scans are checked against the scan policy (plus `allow_scan`) before
        the first page is requested. First-page scans of cached tables are
        answered from the scan-result cache when they carry no filter,
        projection or consistent read and use the configured page size.
        `refresh_cache` forces a rescan that replaces the cached page.
        """
        policy = page_policy or PagePolicy()
        if descriptor.action == StoreAction.SCAN and not self.scan_policy.allows(descriptor.table, allow_scan):
            raise ScanNotAllowedError(descriptor.table)
        if descriptor.action not in (StoreAction.GET_ITEM, StoreAction.BATCH_GET_ITEM,
                                     StoreAction.QUERY, StoreAction.SCAN):
            raise ValidationError(f"{descriptor.action.value} is not a read operation")

        pages = self._pages(descriptor, policy, use_cache, refresh_cache)
        if policy.page_limit is not None:
            pages = itertools.islice(pages, policy.page_limit)
        return pages

    def _pages(self, descriptor: OperationDescriptor, policy: PagePolicy,
               use_cache: bool, refresh_cache: bool) -> Iterator[Page]:
        if descriptor.action == StoreAction.GET_ITEM:
            yield self._point_get(descriptor)
        elif descriptor.action == StoreAction.BATCH_GET_ITEM:
            yield from self._batch_get(descriptor)
        elif descriptor.parts:
            yield from self._fan_out(descriptor, policy)
        else:
            yield from self._paged(descriptor, policy.exclusive_start_key,
                                   policy.is_recursive(descriptor.action), use_cache, refresh_cache)

    def _paged(self, descriptor: OperationDescriptor, cursor: Optional[Key], recursive: bool,
               use_cache: bool = False, refresh_cache: bool = False) -> Iterator[Page]:
        cached = (
            use_cache
            and self.scan_cache is not None
            and descriptor.action == StoreAction.SCAN
            and cursor is None
            and not descriptor.filters
            and not descriptor.projection
            and not descriptor.consistent_read
            and descriptor.limit == self.builder.settings.scan_limit
            and self.scan_cache.is_cached_table(descriptor.table)
        )
        fetched = 0
        while True:
            request = descriptor.with_cursor(cursor)
            if cached and fetched == 0:
                page = self.scan_cache.get_or_scan(descriptor.table, lambda: self._page(request),
                                                   override=refresh_cache)
            else:
                page = self._page(request)
            fetched += 1
            logger.debug(f"{descriptor.action.value} page {fetched} on {descriptor.table}: "
                         f"{page.count} item(s), cursor={page.last_key}")
            yield page
            cursor = page.last_key
            if cursor is None or not recursive:
                return

    def _fan_out(self, descriptor: OperationDescriptor, policy: PagePolicy) -> Iterator[Page]:
        """One query per hash value, in list order; a cursor resumes inside its own part"""
        parts = descriptor.parts
        cursor = policy.exclusive_start_key
        start = 0
        if cursor:
            hash_field = parts[0].key_conditions[0].field
            for i, part in enumerate(parts):
                if part.key_conditions[0].value == cursor.get(hash_field):
                    start = i
                    break
            else:
                raise ValidationError(f"exclusive_start_key {cursor} does not belong to any queried hash value")

        recursive = policy.is_recursive(descriptor.action)
        for i, part in enumerate(parts[start:], start):
            yield from self._paged(part, cursor if i == start else None, recursive)

    def _point_get(self, descriptor: OperationDescriptor) -> Page:
        response = self.send(descriptor)
        item = response.get("Item")
        found = [item] if item else []
        items = apply_filters(found, descriptor.filters)
        return Page(items=items, count=len(items), scanned_count=len(found))

    def _batch_get(self, descriptor: OperationDescriptor) -> Iterator[Page]:
        """Chunks of BATCH_GET_LIMIT keys; unprocessed keys are resubmitted under the backoff"""
        table = descriptor.table
        for chunk in chunked(descriptor.keys, BATCH_GET_LIMIT):
            attributes = list(chunk[0])
            request = descriptor.with_keys(chunk)
            state = self.backoff.config.initial_state()
            found: List[JsonDict] = []
            while True:
                response = self.send(request)
                found.extend((response.get("Responses") or {}).get(table, []))
                unprocessed = ((response.get("UnprocessedKeys") or {}).get(table) or {}).get("Keys")
                if not unprocessed:
                    break
                logger.warning(f"BatchGetItem on {table}: {len(unprocessed)} unprocessed key(s)")
                state = self.backoff.wait(state, f"Unprocessed keys on {table}")
                if state is None:
                    raise RetryableStoreError(
                        f"BatchGetItem on {table}: {len(unprocessed)} key(s) still unprocessed "
                        f"after the maximum wait",
                        "UnprocessedKeys",
                    )
                request = request.with_keys(unprocessed)

            by_key = {_key_marker(item, attributes): item for item in found}
            ordered = [by_key[m] for m in (_key_marker(k, attributes) for k in chunk) if m in by_key]
            items = apply_filters(ordered, descriptor.filters)
            yield Page(items=items, count=len(items), scanned_count=len(found))

    def fetch_items(self, descriptor: OperationDescriptor, page_policy: Optional[PagePolicy] = None,
                    **kwargs) -> List[JsonDict]:
        items: List[JsonDict] = []
        for page in self.fetch_all(descriptor, page_policy, **kwargs):
            items.extend(page.items)
        return items

    # -------------------------
    # Mutate path
    # -------------------------
    def _mutation_pages(self, descriptor: OperationDescriptor, options: CallOptions,
                        allow_scan: bool) -> Iterator[Page]:
        # mutations read every page unless the caller turned recursion off
        policy = PagePolicy(
            recursive=True if options.recursive is None else options.recursive,
            page_limit=options.page_limit,
            exclusive_start_key=options.exclusive_start_key,
        )
        return self.fetch_all(descriptor, policy, allow_scan=allow_scan, use_cache=False)

    def update_all(self, descriptor: OperationDescriptor, metadata: TableMetadata, changes: JsonDict,
                   options: Optional[CallOptions] = None) -> int:
        """Update every matching item, one UpdateItem per key; returns the number sent"""
        options = options or CallOptions()
        updated = 0
        for page in self._mutation_pages(descriptor, options, options.scan):
            for item in page.items:
                key = metadata.key_for(item)
                request = self.builder.build_update(metadata, key, changes, options, require_existing=False)
                self.send(request)
                updated += 1
        logger.info(f"update_all on {metadata.table_name}: {updated} item(s) updated")
        return updated

    def delete_all(self, descriptor: OperationDescriptor, metadata: TableMetadata,
                   options: Optional[CallOptions] = None) -> int:
        """Delete every matching item, one DeleteItem per key; returns the number sent"""
        options = options or CallOptions()
        deleted = 0
        for page in self._mutation_pages(descriptor, options, options.scan):
            for item in page.items:
                self.send(self.builder.build_delete(metadata, metadata.key_for(item)))
                deleted += 1
        logger.info(f"delete_all on {metadata.table_name}: {deleted} item(s) deleted")
        return deleted

    # -------------------------
    # Query info
    # -------------------------
    def record_query_info(self, key: str, info: QueryInfo) -> None:
        """Keep `info` under `key`; past QUERY_INFO_LIMIT untaken entries the oldest is dropped"""
        with self._query_info_lock:
            self._query_info.pop(key, None)
            self._query_info[key] = info
            while len(self._query_info) > QUERY_INFO_LIMIT:
                dropped, _ = self._query_info.popitem(last=False)
                logger.debug(f"Query info for {dropped} dropped before it was taken")

    def take_query_info(self, key: str) -> Optional[QueryInfo]:
        """Metadata recorded under `key`, returned once and then discarded"""
        with self._query_info_lock:
            return self._query_info.pop(key, None)
