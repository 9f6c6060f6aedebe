# src/dynaplan/adapters/DynamoDBAdapter.py
import os
import threading
from typing import Any, Callable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..base.StoreAdapter import StoreAdapter
from ..errors import ConditionalCheckFailed, FatalStoreError, RetryableStoreError, StoreError
from ..types import JsonDict, OperationDescriptor

RETRYABLE_ERROR_CODES = frozenset({
    "LimitExceededException",
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
})


def translate_client_error(error: ClientError, action: str) -> StoreError:
    """Map a botocore ClientError onto the store error taxonomy"""
    details = error.response.get("Error", {})
    code = details.get("Code", "")
    message = f"DynamoDB {action} failed: {code}: {details.get('Message', str(error))}"
    if code in RETRYABLE_ERROR_CODES:
        return RetryableStoreError(message, code)
    if code == "ConditionalCheckFailedException":
        return ConditionalCheckFailed(message, code)
    return FatalStoreError(message, code)


class DynamoDBAdapter(StoreAdapter):
    """DynamoDB through the boto3 resource layer (plain Python values on the wire)"""

    def __init__(self, endpoint_url: Optional[str] = None, region: Optional[str] = None,
                 resource: Optional[Any] = None):
        super().__init__()
        self.endpoint_url = endpoint_url or os.getenv("DYNAMODB_ENDPOINT_URL")
        self.region = region or os.getenv("AWS_REGION")
        self._resource = resource
        self._client_lock = threading.Lock()
        self._initialize()

    def _initialize(self):
        try:
            with self._client_lock:
                if not self._resource:
                    kwargs = {}
                    if self.endpoint_url:
                        kwargs["endpoint_url"] = self.endpoint_url
                    if self.region:
                        kwargs["region_name"] = self.region
                    self._resource = boto3.resource("dynamodb", **kwargs)
                    self.logger.info(f"DynamoDB initialized (endpoint: {self.endpoint_url or 'default'})")
        except BotoCoreError as e:
            raise FatalStoreError(f"DynamoDB init failed: {str(e)}")

    @property
    def client(self):
        return self._resource.meta.client

    def _table(self, request: OperationDescriptor):
        return self._resource.Table(request.table)

    def _call(self, request: OperationDescriptor, fn: Callable[..., JsonDict], **kwargs) -> JsonDict:
        try:
            return fn(**kwargs)
        except ClientError as e:
            raise translate_client_error(e, request.action.value) from e
        except BotoCoreError as e:
            raise FatalStoreError(f"DynamoDB {request.action.value} failed: {str(e)}") from e

    def _get_item_raw(self, request: OperationDescriptor) -> JsonDict:
        return self._call(request, self._table(request).get_item, **request.params)

    def _batch_get_item_raw(self, request: OperationDescriptor) -> JsonDict:
        return self._call(request, self._resource.batch_get_item, **request.params)

    def _query_raw(self, request: OperationDescriptor) -> JsonDict:
        return self._call(request, self._table(request).query, **request.params)

    def _scan_raw(self, request: OperationDescriptor) -> JsonDict:
        return self._call(request, self._table(request).scan, **request.params)

    def _put_item_raw(self, request: OperationDescriptor) -> JsonDict:
        return self._call(request, self._table(request).put_item, **request.params)

    def _update_item_raw(self, request: OperationDescriptor) -> JsonDict:
        return self._call(request, self._table(request).update_item, **request.params)

    def _delete_item_raw(self, request: OperationDescriptor) -> JsonDict:
        return self._call(request, self._table(request).delete_item, **request.params)

    def _describe_table_raw(self, request: OperationDescriptor) -> JsonDict:
        return self._call(request, self.client.describe_table, TableName=request.table)

    def _create_table_raw(self, request: OperationDescriptor) -> JsonDict:
        return self._call(request, self.client.create_table, **request.params)

    def _update_table_raw(self, request: OperationDescriptor) -> JsonDict:
        return self._call(request, self.client.update_table, **request.params)

    def _list_tables_raw(self, request: OperationDescriptor) -> JsonDict:
        names = []
        kwargs = dict(request.params)
        while True:
            response = self._call(request, self.client.list_tables, **kwargs)
            names.extend(response.get("TableNames", []))
            last = response.get("LastEvaluatedTableName")
            if not last:
                return {"TableNames": names}
            kwargs["ExclusiveStartTableName"] = last

    def _delete_table_raw(self, request: OperationDescriptor) -> JsonDict:
        return self._call(request, self.client.delete_table, TableName=request.table)
