# src/dynaplan/base/StoreAdapter.py
from __future__ import annotations

from typing import Callable, Dict

from ..errors import FatalStoreError, StoreError
from ..types import JsonDict, OperationDescriptor, StoreAction


class StoreAdapter:
    """Base store: dispatches descriptors to per-action raw calls"""

    def __init__(self):
        from ..utils import setup_logger
        self.logger = setup_logger(self.__class__.__name__)
        self._handlers: Dict[StoreAction, Callable[[OperationDescriptor], JsonDict]] = {
            StoreAction.GET_ITEM: self._get_item_raw,
            StoreAction.BATCH_GET_ITEM: self._batch_get_item_raw,
            StoreAction.QUERY: self._query_raw,
            StoreAction.SCAN: self._scan_raw,
            StoreAction.PUT_ITEM: self._put_item_raw,
            StoreAction.UPDATE_ITEM: self._update_item_raw,
            StoreAction.DELETE_ITEM: self._delete_item_raw,
            StoreAction.DESCRIBE_TABLE: self._describe_table_raw,
            StoreAction.CREATE_TABLE: self._create_table_raw,
            StoreAction.UPDATE_TABLE: self._update_table_raw,
            StoreAction.LIST_TABLES: self._list_tables_raw,
            StoreAction.DELETE_TABLE: self._delete_table_raw,
        }

    def send(self, request: OperationDescriptor) -> JsonDict:
        handler = self._handlers[request.action]
        try:
            return handler(request)
        except StoreError:
            raise
        except Exception as e:
            raise FatalStoreError(f"{request.action.value} on {request.table} failed: {str(e)}") from e

    # Abstract methods to implement
    def _get_item_raw(self, request: OperationDescriptor) -> JsonDict:
        raise NotImplementedError

    def _batch_get_item_raw(self, request: OperationDescriptor) -> JsonDict:
        raise NotImplementedError

    def _query_raw(self, request: OperationDescriptor) -> JsonDict:
        raise NotImplementedError

    def _scan_raw(self, request: OperationDescriptor) -> JsonDict:
        raise NotImplementedError

    def _put_item_raw(self, request: OperationDescriptor) -> JsonDict:
        raise NotImplementedError

    def _update_item_raw(self, request: OperationDescriptor) -> JsonDict:
        raise NotImplementedError

    def _delete_item_raw(self, request: OperationDescriptor) -> JsonDict:
        raise NotImplementedError

    def _describe_table_raw(self, request: OperationDescriptor) -> JsonDict:
        raise NotImplementedError

    def _create_table_raw(self, request: OperationDescriptor) -> JsonDict:
        raise NotImplementedError

    def _update_table_raw(self, request: OperationDescriptor) -> JsonDict:
        raise NotImplementedError

    def _list_tables_raw(self, request: OperationDescriptor) -> JsonDict:
        raise NotImplementedError

    def _delete_table_raw(self, request: OperationDescriptor) -> JsonDict:
        raise NotImplementedError
