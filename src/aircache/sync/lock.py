"""
Named TTL locks on the shared key/value store.

A lock is the key ``lock:{name}`` holding a random token. Only the holder
of the token can release it early; otherwise it expires after ``ttl``
seconds. Locks are not extended while held, so ``ttl`` must exceed the
longest expected refresh.
"""

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from aircache.exceptions import LockError, StoreError
from aircache.storage.base import KeyValueStore
from aircache.utils.logging import get_logger

logger = get_logger("aircache.sync.lock")


def lock_key(name: str) -> str:
    return f"lock:{name}"


class LockCoordinator:
    """Acquire and release named locks."""

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    async def acquire(self, name: str, ttl: int) -> str | None:
        """
        Try to take the lock.

        Returns:
            A token when acquired, None when someone else holds it.

        Raises:
            LockError: The key/value store failed.
        """
        token = uuid.uuid4().hex
        try:
            acquired = await self.kv.set_if_absent(lock_key(name), token, ttl=ttl)
        except StoreError as e:
            raise LockError(f"Could not acquire lock '{name}': {e}", details={"lock": name}) from e
        if acquired:
            logger.debug(f"Acquired lock '{name}' (ttl {ttl}s)")
            return token
        logger.debug(f"Lock '{name}' is busy")
        return None

    async def release(self, name: str, token: str) -> bool:
        """Release the lock if ``token`` still owns it. False otherwise."""
        try:
            released = await self.kv.delete_if_equals(lock_key(name), token)
        except StoreError as e:
            raise LockError(f"Could not release lock '{name}': {e}", details={"lock": name}) from e
        if released:
            logger.debug(f"Released lock '{name}'")
        else:
            logger.warning(f"Lock '{name}' was not held by this token (expired or taken over)")
        return released

    async def is_locked(self, name: str) -> bool:
        return await self.kv.get(lock_key(name)) is not None

    @asynccontextmanager
    async def hold(self, name: str, ttl: int) -> AsyncIterator[str | None]:
        """
        Hold the lock for the duration of the block.

        Yields the token, or None when the lock was busy (the block still
        runs and should check).
        """
        token = await self.acquire(name, ttl)
        try:
            yield token
        finally:
            if token is not None:
                await self.release(name, token)
