"""Shared test fixtures for dynaplan tests."""

from __future__ import annotations

from typing import List

import pytest

from dynaplan.adapters.MemoryAdapter import MemoryAdapter
from dynaplan.backoff import Backoff, BackoffConfig
from dynaplan.config import Settings
from dynaplan.errors import RetryableStoreError
from dynaplan.models import StoreBackend
from dynaplan.repository import Repository
from dynaplan.schema import IndexSpec, TableSpec
from dynaplan.types import OperationDescriptor, StoreAction

# --- Test tables ---


def person_spec() -> TableSpec:
    return (
        TableSpec("person")
        .add("id", "string", primary_key=True)
        .add("email", "string")
        .add_global_index(IndexSpec("email", ["email"]))
    )


def book_page_spec() -> TableSpec:
    return (
        TableSpec("book_page")
        .add("id", "string", primary_key=True)
        .add("page_num", "integer", range_key=True)
    )


class RecordingSleeper:
    """Sleeper that records requested waits instead of sleeping"""

    def __init__(self):
        self.waits: List[int] = []

    def __call__(self, milliseconds: int) -> None:
        self.waits.append(milliseconds)


class ThrottlingStore:
    """Raises a throttling error for the first `failures` calls of the given actions"""

    def __init__(self, store, failures: int = 1, actions=None,
                 code: str = "ProvisionedThroughputExceededException"):
        self.store = store
        self.failures = failures
        self.actions = set(actions) if actions else None
        self.code = code
        self.calls: List[OperationDescriptor] = []

    def send(self, request: OperationDescriptor):
        self.calls.append(request)
        if (self.actions is None or request.action in self.actions) and self.failures > 0:
            self.failures -= 1
            raise RetryableStoreError(f"{request.action.value} throttled", self.code)
        return self.store.send(request)


def create(store, spec: TableSpec) -> None:
    store.send(OperationDescriptor(
        action=StoreAction.CREATE_TABLE, table=spec.name, params=spec.to_create_table()
    ))


# --- Fixtures ---


@pytest.fixture
def settings():
    return Settings(store=StoreBackend.MEMORY, initial_wait=10, wait_exponent=1.05, max_wait=1000)


@pytest.fixture
def sleeper():
    return RecordingSleeper()


@pytest.fixture
def backoff(settings, sleeper):
    return Backoff(BackoffConfig.from_settings(settings), sleeper)


@pytest.fixture
def store():
    """In-memory store holding empty `person` and `book_page` tables"""
    s = MemoryAdapter()
    create(s, person_spec())
    create(s, book_page_spec())
    return s


@pytest.fixture
def repo(settings, store, sleeper):
    return Repository(settings, store=store, sleeper=sleeper)
