"""
Active-slot pointer.

Exactly one of the two slots is active. Readers always go through
``get_active``; a full refresh writes the other slot and publishes it
with ``flip``, which is a single key write on the shared store.
"""

from aircache.core.types import DEFAULT_ACTIVE_SLOT, SlotId
from aircache.storage.base import KeyValueStore, RecordStore
from aircache.utils.logging import get_logger

logger = get_logger("aircache.sync.version")

ACTIVE_SLOT_KEY = "active_slot"


class VersionManager:
    """Reads and flips the active slot pointer."""

    def __init__(self, store: RecordStore, kv: KeyValueStore, key: str = ACTIVE_SLOT_KEY) -> None:
        self.store = store
        self.kv = kv
        self.key = key

    async def get_active(self) -> SlotId:
        """Current active slot, ``A`` when the pointer was never written.

        Store failures propagate; they are never read as "no pointer".
        """
        value = await self.kv.get(self.key)
        return SlotId.parse(value, default=DEFAULT_ACTIVE_SLOT)

    async def get_inactive(self) -> SlotId:
        return (await self.get_active()).other

    async def clear_inactive(self) -> SlotId:
        """Empty the inactive slot and return it."""
        slot = await self.get_inactive()
        await self.store.clear_slot(slot)
        logger.info(f"Cleared inactive slot {slot.value}")
        return slot

    async def flip(self) -> SlotId:
        """Make the inactive slot active. Returns the new active slot.

        If the write fails the exception propagates and the old pointer
        stays in place.
        """
        current = await self.get_active()
        target = current.other
        await self.kv.set(self.key, target.value)
        logger.info(f"Active slot flipped {current.value} -> {target.value}")
        return target
