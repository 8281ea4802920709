"""
Storage interfaces.

RecordStore holds the cached data in two slots; KeyValueStore holds small
shared values with optional expiry (the active-slot pointer, lock keys and
processed-webhook markers). A backend usually implements both.

Error contract:
    StoreError             - one record/attachment could not be written;
                             callers count it and move on
    StoreUnavailableError  - the backend is down; callers must propagate
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from aircache.core.types import Attachment, SlotId, SourceRecord, TableMapping


class KeyValueStore(ABC):
    """String keys to string values, with optional TTL in seconds."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value, or None when absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Unconditionally write a value in one step."""

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl: int | None = None) -> bool:
        """Create the key only if it does not exist. True when created."""

    @abstractmethod
    async def delete_if_equals(self, key: str, expected: str) -> bool:
        """Delete the key only if it currently holds ``expected``. True when deleted."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete the key if present."""


class RecordStore(ABC):
    """
    Two-slot record cache.

    Every data method takes the slot explicitly; the store itself has no
    notion of which slot is active. Records are stored per
    ``(slot, table, record_id)`` as their JSON-serialized fields, and
    writing a record replaces that record's attachment rows.
    """

    async def connect(self) -> None:
        """Open connections / create schema. Idempotent."""

    async def close(self) -> None:
        """Release connections."""

    async def __aenter__(self) -> "RecordStore":
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    @abstractmethod
    async def health_check(self) -> bool:
        """True when the backend answers."""

    # --- records -------------------------------------------------------------

    @abstractmethod
    async def get_record(self, slot: SlotId, table: str, record_id: str) -> dict[str, Any] | None:
        """Return ``{"id": ..., "fields": {...}}`` or None."""

    @abstractmethod
    async def list_records(
        self, slot: SlotId, table: str, limit: int | None = None, offset: int = 0
    ) -> list[dict[str, Any]]:
        """Records of one table ordered by id."""

    @abstractmethod
    async def count_records(self, slot: SlotId, table: str) -> int:
        ...

    @abstractmethod
    async def set_record(self, slot: SlotId, table: str, record: SourceRecord) -> None:
        """Upsert one record. Raises StoreError when it cannot be stored."""

    @abstractmethod
    async def set_records_batch(self, slot: SlotId, table: str, records: Sequence[SourceRecord]) -> None:
        """
        Upsert many records at once.

        Either every record in the batch is stored or none is; any bad
        record makes the whole call raise StoreError so the caller can
        retry record by record.
        """

    @abstractmethod
    async def delete_record(self, slot: SlotId, table: str, record_id: str) -> bool:
        """Delete a record and its attachment rows. True if it existed."""

    @abstractmethod
    async def clear_slot(self, slot: SlotId) -> None:
        """Delete every record and attachment row in the slot."""

    @abstractmethod
    async def list_table_names(self, slot: SlotId) -> list[str]:
        """Normalized names of tables holding at least one record in the slot."""

    # --- table mappings (not slotted) ----------------------------------------

    @abstractmethod
    async def upsert_table_mapping(self, mapping: TableMapping) -> None:
        ...

    @abstractmethod
    async def delete_table_mapping(self, external_id: str) -> bool:
        """Forget one mapping. Returns False when it was not stored."""

    @abstractmethod
    async def list_tables(self) -> list[TableMapping]:
        """All known mappings ordered by normalized name."""

    @abstractmethod
    async def resolve_table(self, external_id: str) -> TableMapping | None:
        ...

    async def get_table(self, normalized_name: str) -> TableMapping | None:
        for mapping in await self.list_tables():
            if mapping.normalized_name == normalized_name:
                return mapping
        return None

    # --- attachments ---------------------------------------------------------

    @abstractmethod
    async def get_attachment(self, slot: SlotId, attachment_id: str) -> Attachment | None:
        ...

    @abstractmethod
    async def list_record_attachments(self, slot: SlotId, table: str, record_id: str) -> list[Attachment]:
        ...

    @abstractmethod
    async def get_pending_attachments(self, slot: SlotId) -> list[Attachment]:
        """Attachments not yet marked downloaded, ordered by id."""

    @abstractmethod
    async def mark_attachment_downloaded(self, slot: SlotId, attachment_id: str, local_path: str, size: int) -> None:
        ...

    # --- stats ---------------------------------------------------------------

    async def stats(self, slot: SlotId) -> dict[str, Any]:
        """Record counts per table plus attachment totals for one slot."""
        tables = {}
        for name in await self.list_table_names(slot):
            tables[name] = await self.count_records(slot, name)
        attachments = await self._attachment_counts(slot)
        return {
            "slot": slot.value,
            "tables": tables,
            "records": sum(tables.values()),
            "attachments": attachments["total"],
            "attachments_downloaded": attachments["downloaded"],
        }

    @abstractmethod
    async def _attachment_counts(self, slot: SlotId) -> dict[str, int]:
        """``{"total": n, "downloaded": m}`` for the slot."""


def merge_attachment_state(new: list[Attachment], old: list[Attachment]) -> list[Attachment]:
    """Carry download state over to rewritten rows whose URL did not change."""
    previous = {a.id: a for a in old}
    for attachment in new:
        prior = previous.get(attachment.id)
        if prior and prior.downloaded and prior.original_url == attachment.original_url:
            attachment.downloaded = True
            attachment.local_path = prior.local_path
    return new
