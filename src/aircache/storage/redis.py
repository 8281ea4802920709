"""
Redis-backed store, shared by every aircache process pointing at it.

Key layout (``{p}`` is the configured prefix)::

    {p}:kv:{key}                              string values with TTL
    {p}:mappings                              hash external_id -> mapping JSON
    {p}:{slot}:tables                         set of table names with records
    {p}:{slot}:records:{table}                hash record_id -> fields JSON
    {p}:{slot}:attachments                    hash attachment_id -> attachment JSON
    {p}:{slot}:attachments:pending            set of attachment ids not downloaded
    {p}:{slot}:attachments:{table}:{record}   set of attachment ids of one record
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from aircache.core.types import Attachment, SlotId, SourceRecord, TableMapping, extract_attachments
from aircache.exceptions import StoreError, StoreUnavailableError
from aircache.storage.base import KeyValueStore, RecordStore, merge_attachment_state
from aircache.utils.logging import get_logger

logger = get_logger("aircache.storage.redis")

# delete only when the stored value still equals the caller's token
_COMPARE_AND_DELETE = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
else
    return 0
end
"""


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as e:
        raise StoreUnavailableError(f"Redis unavailable during {operation}: {e}") from e
    except RedisError as e:
        raise StoreError(f"Redis error during {operation}: {e}") from e


class RedisStore(RecordStore, KeyValueStore):
    """
    RecordStore + KeyValueStore on Redis.

    Args:
        url: Redis connection URL (redis://localhost:6379/0)
        prefix: Namespace for every key
        client: Pre-built ``redis.asyncio`` client, mainly for tests
    """

    def __init__(self, url: str = "redis://localhost:6379/0", prefix: str = "aircache", client: Any = None) -> None:
        self.url = url
        self.prefix = prefix
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            raise StoreUnavailableError("Redis store is not connected")
        return self._client

    async def connect(self) -> None:
        if self._client is None:
            self._client = aioredis.from_url(self.url, decode_responses=True)
        with _translate_errors("connect"):
            await self._client.ping()
        logger.info(f"Connected to Redis at {self.url}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def health_check(self) -> bool:
        try:
            with _translate_errors("ping"):
                return bool(await self.client.ping())
        except StoreError:
            return False

    # --- keys ----------------------------------------------------------------

    def _kv_key(self, key: str) -> str:
        return f"{self.prefix}:kv:{key}"

    def _slot_key(self, slot: SlotId, *parts: str) -> str:
        return ":".join([self.prefix, slot.value, *parts])

    # --- key/value -----------------------------------------------------------

    async def get(self, key: str) -> str | None:
        with _translate_errors("get"):
            return await self.client.get(self._kv_key(key))

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        with _translate_errors("set"):
            await self.client.set(self._kv_key(key), value, ex=ttl or None)

    async def set_if_absent(self, key: str, value: str, ttl: int | None = None) -> bool:
        with _translate_errors("set_if_absent"):
            return bool(await self.client.set(self._kv_key(key), value, nx=True, ex=ttl or None))

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        with _translate_errors("delete_if_equals"):
            return bool(await self.client.eval(_COMPARE_AND_DELETE, 1, self._kv_key(key), expected))

    async def delete(self, key: str) -> None:
        with _translate_errors("delete"):
            await self.client.delete(self._kv_key(key))

    # --- records -------------------------------------------------------------

    async def get_record(self, slot: SlotId, table: str, record_id: str) -> dict[str, Any] | None:
        with _translate_errors("get_record"):
            raw = await self.client.hget(self._slot_key(slot, "records", table), record_id)
        if raw is None:
            return None
        return {"id": record_id, "fields": json.loads(raw)}

    async def list_records(
        self, slot: SlotId, table: str, limit: int | None = None, offset: int = 0
    ) -> list[dict[str, Any]]:
        with _translate_errors("list_records"):
            rows = await self.client.hgetall(self._slot_key(slot, "records", table))
        ids = sorted(rows)[offset:]
        if limit is not None:
            ids = ids[:limit]
        return [{"id": rid, "fields": json.loads(rows[rid])} for rid in ids]

    async def count_records(self, slot: SlotId, table: str) -> int:
        with _translate_errors("count_records"):
            return int(await self.client.hlen(self._slot_key(slot, "records", table)))

    @staticmethod
    def _serialize(record: SourceRecord) -> str:
        try:
            return record.to_json()
        except (TypeError, ValueError) as e:
            raise StoreError(f"Record {record.id} is not serializable: {e}", details={"record_id": record.id}) from e

    async def _existing_attachments(self, slot: SlotId, table: str, record_ids: list[str]) -> dict[str, list[Attachment]]:
        pipe = self.client.pipeline(transaction=False)
        for record_id in record_ids:
            pipe.smembers(self._slot_key(slot, "attachments", table, record_id))
        id_sets = await pipe.execute()
        all_ids = sorted({aid for ids in id_sets for aid in ids})
        by_id: dict[str, Attachment] = {}
        if all_ids:
            raws = await self.client.hmget(self._slot_key(slot, "attachments"), all_ids)
            by_id = {aid: Attachment.from_dict(json.loads(raw)) for aid, raw in zip(all_ids, raws) if raw}
        return {rid: [by_id[aid] for aid in ids if aid in by_id] for rid, ids in zip(record_ids, id_sets)}

    async def set_record(self, slot: SlotId, table: str, record: SourceRecord) -> None:
        await self.set_records_batch(slot, table, [record])

    async def set_records_batch(self, slot: SlotId, table: str, records: Sequence[SourceRecord]) -> None:
        rows = [(record, self._serialize(record)) for record in records]
        if not rows:
            return
        with _translate_errors("set_records_batch"):
            old = await self._existing_attachments(slot, table, [r.id for r, _ in rows])
            attachments_key = self._slot_key(slot, "attachments")
            pending_key = self._slot_key(slot, "attachments", "pending")

            pipe = self.client.pipeline(transaction=True)
            pipe.hset(self._slot_key(slot, "records", table), mapping={r.id: raw for r, raw in rows})
            pipe.sadd(self._slot_key(slot, "tables"), table)
            for record, _ in rows:
                index_key = self._slot_key(slot, "attachments", table, record.id)
                previous = old.get(record.id, [])
                if previous:
                    stale = [a.id for a in previous]
                    pipe.hdel(attachments_key, *stale)
                    pipe.srem(pending_key, *stale)
                    pipe.delete(index_key)
                current = merge_attachment_state(extract_attachments(table, record.id, record.fields), previous)
                for attachment in current:
                    pipe.hset(attachments_key, attachment.id, json.dumps(attachment.to_dict()))
                    pipe.sadd(index_key, attachment.id)
                    if not attachment.downloaded:
                        pipe.sadd(pending_key, attachment.id)
            await pipe.execute()

    async def delete_record(self, slot: SlotId, table: str, record_id: str) -> bool:
        with _translate_errors("delete_record"):
            index_key = self._slot_key(slot, "attachments", table, record_id)
            attachment_ids = list(await self.client.smembers(index_key))
            pipe = self.client.pipeline(transaction=True)
            pipe.hdel(self._slot_key(slot, "records", table), record_id)
            if attachment_ids:
                pipe.hdel(self._slot_key(slot, "attachments"), *attachment_ids)
                pipe.srem(self._slot_key(slot, "attachments", "pending"), *attachment_ids)
            pipe.delete(index_key)
            results = await pipe.execute()
            if not await self.client.hlen(self._slot_key(slot, "records", table)):
                await self.client.srem(self._slot_key(slot, "tables"), table)
        return bool(results[0])

    async def clear_slot(self, slot: SlotId) -> None:
        with _translate_errors("clear_slot"):
            batch: list[str] = []
            async for key in self.client.scan_iter(match=self._slot_key(slot, "*"), count=500):
                batch.append(key)
                if len(batch) >= 500:
                    await self.client.delete(*batch)
                    batch = []
            if batch:
                await self.client.delete(*batch)

    async def list_table_names(self, slot: SlotId) -> list[str]:
        with _translate_errors("list_table_names"):
            return sorted(await self.client.smembers(self._slot_key(slot, "tables")))

    # --- mappings ------------------------------------------------------------

    async def upsert_table_mapping(self, mapping: TableMapping) -> None:
        with _translate_errors("upsert_table_mapping"):
            await self.client.hset(f"{self.prefix}:mappings", mapping.external_id, json.dumps(mapping.to_dict()))

    async def delete_table_mapping(self, external_id: str) -> bool:
        with _translate_errors("delete_table_mapping"):
            return bool(await self.client.hdel(f"{self.prefix}:mappings", external_id))

    async def list_tables(self) -> list[TableMapping]:
        with _translate_errors("list_tables"):
            rows = await self.client.hgetall(f"{self.prefix}:mappings")
        mappings = [TableMapping.from_dict(json.loads(raw)) for raw in rows.values()]
        return sorted(mappings, key=lambda m: m.normalized_name)

    async def resolve_table(self, external_id: str) -> TableMapping | None:
        with _translate_errors("resolve_table"):
            raw = await self.client.hget(f"{self.prefix}:mappings", external_id)
        return TableMapping.from_dict(json.loads(raw)) if raw else None

    # --- attachments ---------------------------------------------------------

    async def get_attachment(self, slot: SlotId, attachment_id: str) -> Attachment | None:
        with _translate_errors("get_attachment"):
            raw = await self.client.hget(self._slot_key(slot, "attachments"), attachment_id)
        return Attachment.from_dict(json.loads(raw)) if raw else None

    async def list_record_attachments(self, slot: SlotId, table: str, record_id: str) -> list[Attachment]:
        found = await self._existing_attachments(slot, table, [record_id])
        return sorted(found.get(record_id, []), key=lambda a: a.id)

    async def get_pending_attachments(self, slot: SlotId) -> list[Attachment]:
        with _translate_errors("get_pending_attachments"):
            ids = sorted(await self.client.smembers(self._slot_key(slot, "attachments", "pending")))
            if not ids:
                return []
            raws = await self.client.hmget(self._slot_key(slot, "attachments"), ids)
        return [Attachment.from_dict(json.loads(raw)) for raw in raws if raw]

    async def mark_attachment_downloaded(self, slot: SlotId, attachment_id: str, local_path: str, size: int) -> None:
        attachment = await self.get_attachment(slot, attachment_id)
        if attachment is None:
            raise StoreError(f"Attachment {attachment_id} not found in slot {slot.value}")
        attachment.local_path = local_path
        attachment.downloaded = True
        if attachment.expected_size is None:
            attachment.expected_size = size
        with _translate_errors("mark_attachment_downloaded"):
            pipe = self.client.pipeline(transaction=True)
            pipe.hset(self._slot_key(slot, "attachments"), attachment_id, json.dumps(attachment.to_dict()))
            pipe.srem(self._slot_key(slot, "attachments", "pending"), attachment_id)
            await pipe.execute()

    async def _attachment_counts(self, slot: SlotId) -> dict[str, int]:
        with _translate_errors("stats"):
            total = int(await self.client.hlen(self._slot_key(slot, "attachments")))
            pending = int(await self.client.scard(self._slot_key(slot, "attachments", "pending")))
        return {"total": total, "downloaded": total - pending}
