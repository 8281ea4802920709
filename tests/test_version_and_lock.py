"""
Tests for the active-slot pointer and the refresh lock.
"""

import asyncio

import pytest

from aircache.core.types import SlotId
from aircache.exceptions import LockError, StoreUnavailableError
from aircache.storage.memory import MemoryStore
from aircache.sync.lock import LockCoordinator, lock_key
from aircache.sync.version import VersionManager
from fakes import make_record


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.mark.unit
class TestVersionManager:
    async def test_defaults_to_a(self, versions):
        assert await versions.get_active() is SlotId.A
        assert await versions.get_inactive() is SlotId.B

    async def test_flip_alternates(self, versions):
        seen = [await versions.flip() for _ in range(4)]
        assert seen == [SlotId.B, SlotId.A, SlotId.B, SlotId.A]

    async def test_clear_inactive_leaves_active_alone(self, store, versions):
        await store.set_record(SlotId.A, "t", make_record("rec1"))
        await store.set_record(SlotId.B, "t", make_record("rec2"))
        assert await versions.clear_inactive() is SlotId.B
        assert await store.count_records(SlotId.B, "t") == 0
        assert await store.count_records(SlotId.A, "t") == 1

    async def test_failed_flip_keeps_pointer(self, store, versions, monkeypatch):
        async def broken_set(key, value, ttl=None):
            raise StoreUnavailableError("write failed")

        monkeypatch.setattr(store, "set", broken_set)
        with pytest.raises(StoreUnavailableError):
            await versions.flip()
        assert await versions.get_active() is SlotId.A

    async def test_read_failure_propagates(self, store, versions):
        store.available = False
        with pytest.raises(StoreUnavailableError):
            await versions.get_active()

    async def test_reads_legacy_pointer(self, store, versions):
        await store.set("active_slot", "v2")
        assert await versions.get_active() is SlotId.B


@pytest.mark.unit
class TestLockCoordinator:
    async def test_busy_then_released(self, locks):
        token_a = await locks.acquire("refresh", ttl=60)
        assert token_a is not None
        assert await locks.acquire("refresh", ttl=60) is None
        assert await locks.release("refresh", token_a)
        assert await locks.acquire("refresh", ttl=60) is not None

    async def test_release_with_wrong_token_is_noop(self, locks, store):
        token = await locks.acquire("refresh", ttl=60)
        assert not await locks.release("refresh", "not-the-token")
        assert await store.get(lock_key("refresh")) == token

    async def test_ttl_expiry_frees_lock(self):
        clock = _Clock()
        locks = LockCoordinator(MemoryStore(clock=clock))
        assert await locks.acquire("refresh", ttl=30) is not None
        clock.now = 31
        assert await locks.acquire("refresh", ttl=30) is not None

    async def test_concurrent_acquires_yield_one_token(self, locks):
        tokens = await asyncio.gather(*(locks.acquire("refresh", ttl=60) for _ in range(10)))
        assert len([t for t in tokens if t is not None]) == 1

    async def test_hold_releases(self, locks):
        async with locks.hold("refresh", ttl=60) as token:
            assert token is not None
            assert await locks.is_locked("refresh")
        assert not await locks.is_locked("refresh")

    async def test_hold_busy_yields_none(self, locks):
        await locks.acquire("refresh", ttl=60)
        async with locks.hold("refresh", ttl=60) as token:
            assert token is None
        assert await locks.is_locked("refresh")

    async def test_backend_failure_is_lock_error(self, store, locks):
        store.available = False
        with pytest.raises(LockError):
            await locks.acquire("refresh", ttl=60)

    async def test_lock_key_format(self):
        assert lock_key("refresh") == "lock:refresh"
