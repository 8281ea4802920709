"""
In-memory store for tests and local development.

Records are kept as JSON text exactly like the persistent backends so a
value that cannot be serialized fails here too.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable, Sequence
from typing import Any

from aircache.core.types import Attachment, SlotId, SourceRecord, TableMapping, extract_attachments
from aircache.exceptions import StoreError, StoreUnavailableError
from aircache.storage.base import KeyValueStore, RecordStore, merge_attachment_state


def _serialize(record: SourceRecord) -> str:
    try:
        return record.to_json()
    except (TypeError, ValueError) as e:
        raise StoreError(
            f"Record {record.id} is not serializable: {e}",
            details={"record_id": record.id},
        ) from e


class _Slot:
    def __init__(self) -> None:
        # table -> record_id -> json text
        self.records: dict[str, dict[str, str]] = {}
        self.attachments: dict[str, Attachment] = {}

    def record_attachments(self, table: str, record_id: str) -> list[Attachment]:
        return [a for a in self.attachments.values() if a.table_name == table and a.record_id == record_id]

    def drop_attachments(self, table: str, record_id: str) -> list[Attachment]:
        dropped = self.record_attachments(table, record_id)
        for attachment in dropped:
            del self.attachments[attachment.id]
        return dropped


class MemoryStore(RecordStore, KeyValueStore):
    """Process-local RecordStore + KeyValueStore."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._slots: dict[SlotId, _Slot] = {SlotId.A: _Slot(), SlotId.B: _Slot()}
        self._mappings: dict[str, TableMapping] = {}
        # key -> (value, expires_at or None)
        self._kv: dict[str, tuple[str, float | None]] = {}
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailableError("memory store marked unavailable")

    async def health_check(self) -> bool:
        return self.available

    # --- key/value -----------------------------------------------------------

    def _live(self, key: str) -> str | None:
        entry = self._kv.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._kv[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        self._check()
        return self._live(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        self._check()
        self._kv[key] = (value, self._clock() + ttl if ttl else None)

    async def set_if_absent(self, key: str, value: str, ttl: int | None = None) -> bool:
        self._check()
        if self._live(key) is not None:
            return False
        self._kv[key] = (value, self._clock() + ttl if ttl else None)
        return True

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        self._check()
        if self._live(key) != expected:
            return False
        del self._kv[key]
        return True

    async def delete(self, key: str) -> None:
        self._check()
        self._kv.pop(key, None)

    # --- records -------------------------------------------------------------

    async def get_record(self, slot: SlotId, table: str, record_id: str) -> dict[str, Any] | None:
        self._check()
        raw = self._slots[slot].records.get(table, {}).get(record_id)
        if raw is None:
            return None
        return {"id": record_id, "fields": json.loads(raw)}

    async def list_records(
        self, slot: SlotId, table: str, limit: int | None = None, offset: int = 0
    ) -> list[dict[str, Any]]:
        self._check()
        rows = self._slots[slot].records.get(table, {})
        ids = sorted(rows)[offset:]
        if limit is not None:
            ids = ids[:limit]
        return [{"id": rid, "fields": json.loads(rows[rid])} for rid in ids]

    async def count_records(self, slot: SlotId, table: str) -> int:
        self._check()
        return len(self._slots[slot].records.get(table, {}))

    def _put(self, slot: SlotId, table: str, record: SourceRecord, raw: str) -> None:
        data = self._slots[slot]
        data.records.setdefault(table, {})[record.id] = raw
        old = data.drop_attachments(table, record.id)
        for attachment in merge_attachment_state(extract_attachments(table, record.id, record.fields), old):
            data.attachments[attachment.id] = attachment

    async def set_record(self, slot: SlotId, table: str, record: SourceRecord) -> None:
        self._check()
        self._put(slot, table, record, _serialize(record))

    async def set_records_batch(self, slot: SlotId, table: str, records: Sequence[SourceRecord]) -> None:
        self._check()
        # serialize everything first so a bad record leaves the slot untouched
        serialized = [(record, _serialize(record)) for record in records]
        for record, raw in serialized:
            self._put(slot, table, record, raw)

    async def delete_record(self, slot: SlotId, table: str, record_id: str) -> bool:
        self._check()
        data = self._slots[slot]
        existed = data.records.get(table, {}).pop(record_id, None) is not None
        data.drop_attachments(table, record_id)
        if table in data.records and not data.records[table]:
            del data.records[table]
        return existed

    async def clear_slot(self, slot: SlotId) -> None:
        self._check()
        self._slots[slot] = _Slot()

    async def list_table_names(self, slot: SlotId) -> list[str]:
        self._check()
        return sorted(name for name, rows in self._slots[slot].records.items() if rows)

    # --- mappings ------------------------------------------------------------

    async def upsert_table_mapping(self, mapping: TableMapping) -> None:
        self._check()
        self._mappings[mapping.external_id] = mapping

    async def delete_table_mapping(self, external_id: str) -> bool:
        self._check()
        return self._mappings.pop(external_id, None) is not None

    async def list_tables(self) -> list[TableMapping]:
        self._check()
        return sorted(self._mappings.values(), key=lambda m: m.normalized_name)

    async def resolve_table(self, external_id: str) -> TableMapping | None:
        self._check()
        return self._mappings.get(external_id)

    # --- attachments ---------------------------------------------------------

    async def get_attachment(self, slot: SlotId, attachment_id: str) -> Attachment | None:
        self._check()
        return self._slots[slot].attachments.get(attachment_id)

    async def list_record_attachments(self, slot: SlotId, table: str, record_id: str) -> list[Attachment]:
        self._check()
        return sorted(self._slots[slot].record_attachments(table, record_id), key=lambda a: a.id)

    async def get_pending_attachments(self, slot: SlotId) -> list[Attachment]:
        self._check()
        pending = [a for a in self._slots[slot].attachments.values() if not a.downloaded]
        return sorted(pending, key=lambda a: a.id)

    async def mark_attachment_downloaded(self, slot: SlotId, attachment_id: str, local_path: str, size: int) -> None:
        self._check()
        attachment = self._slots[slot].attachments.get(attachment_id)
        if attachment is None:
            raise StoreError(f"Attachment {attachment_id} not found in slot {slot.value}")
        attachment.local_path = local_path
        attachment.downloaded = True
        if attachment.expected_size is None:
            attachment.expected_size = size

    async def _attachment_counts(self, slot: SlotId) -> dict[str, int]:
        self._check()
        attachments = self._slots[slot].attachments.values()
        return {"total": len(attachments), "downloaded": sum(1 for a in attachments if a.downloaded)}
