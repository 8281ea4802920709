"""Shared fixtures for the engine tests."""

import pytest
from fakes import FakeFetcher, FakeSource

from aircache.storage.memory import MemoryStore
from aircache.sync.lock import LockCoordinator
from aircache.sync.version import VersionManager


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def versions(store: MemoryStore) -> VersionManager:
    return VersionManager(store, store)


@pytest.fixture
def locks(store: MemoryStore) -> LockCoordinator:
    return LockCoordinator(store)


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()
