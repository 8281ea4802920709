"""
DuckDB-backed store.

Layout under ``path``::

    slot_a.duckdb    records + attachments for slot A
    slot_b.duckdb    records + attachments for slot B
    metadata.duckdb  kv (pointer, locks, webhook markers) + table mappings

DuckDB connections are not safe for concurrent use, so every call runs in
a worker thread while holding that database's lock.
"""

from __future__ import annotations

import asyncio
import json
import threading
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, TypeVar

import duckdb

from aircache.core.types import Attachment, SlotId, SourceRecord, TableMapping, extract_attachments
from aircache.exceptions import StoreError, StoreUnavailableError
from aircache.storage.base import KeyValueStore, RecordStore, merge_attachment_state
from aircache.utils.logging import get_logger

logger = get_logger("aircache.storage.duckdb")

T = TypeVar("T")

_SLOT_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS records (
        table_name VARCHAR NOT NULL,
        record_id VARCHAR NOT NULL,
        fields VARCHAR NOT NULL,
        updated_at DOUBLE NOT NULL,
        PRIMARY KEY (table_name, record_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attachments (
        id VARCHAR PRIMARY KEY,
        table_name VARCHAR NOT NULL,
        record_id VARCHAR NOT NULL,
        field_name VARCHAR NOT NULL,
        original_url VARCHAR NOT NULL,
        filename VARCHAR,
        expected_size BIGINT,
        content_type VARCHAR,
        local_path VARCHAR,
        downloaded BOOLEAN NOT NULL DEFAULT FALSE
    )
    """,
]

_META_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS kv (
        key VARCHAR PRIMARY KEY,
        value VARCHAR NOT NULL,
        expires_at DOUBLE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS table_mappings (
        external_id VARCHAR PRIMARY KEY,
        display_name VARCHAR NOT NULL,
        normalized_name VARCHAR NOT NULL,
        primary_field_id VARCHAR,
        fields VARCHAR
    )
    """,
]

_ATTACHMENT_COLUMNS = (
    "id, table_name, record_id, field_name, original_url, filename, "
    "expected_size, content_type, local_path, downloaded"
)


def _row_to_attachment(row: tuple) -> Attachment:
    return Attachment(
        id=row[0],
        table_name=row[1],
        record_id=row[2],
        field_name=row[3],
        original_url=row[4],
        filename=row[5] or "",
        expected_size=row[6],
        content_type=row[7],
        local_path=row[8],
        downloaded=bool(row[9]),
    )


def _attachment_params(a: Attachment) -> list[Any]:
    return [
        a.id,
        a.table_name,
        a.record_id,
        a.field_name,
        a.original_url,
        a.filename,
        a.expected_size,
        a.content_type,
        a.local_path,
        a.downloaded,
    ]


class _Database:
    """One DuckDB connection plus the lock that serializes access to it."""

    def __init__(self, path: str, schema: list[str]) -> None:
        self.path = path
        self.schema = schema
        self.lock = threading.Lock()
        self.conn: duckdb.DuckDBPyConnection | None = None

    def open(self) -> None:
        if self.conn is not None:
            return
        try:
            self.conn = duckdb.connect(self.path)
        except duckdb.Error as e:
            message = str(e)
            if "lock" in message.lower() or "conflicting" in message.lower():
                raise StoreUnavailableError(
                    f"Cannot open DuckDB database '{self.path}': file is locked by another process.\n"
                    f"  Suggestion: stop the other aircache process or use the redis backend",
                    details={"path": self.path},
                ) from e
            raise StoreUnavailableError(f"Cannot open DuckDB database '{self.path}': {e}") from e
        for statement in self.schema:
            self.conn.execute(statement)

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None


class DuckDBStore(RecordStore, KeyValueStore):
    """
    RecordStore + KeyValueStore on local DuckDB files.

    Args:
        path: Directory for the database files, or ``":memory:"`` for
            throwaway in-process databases
        clock: Wall clock used for key expiry
    """

    def __init__(self, path: str | Path, clock: Callable[[], float] = time.time) -> None:
        self.path = str(path)
        self._clock = clock
        in_memory = self.path == ":memory:"
        base = Path(self.path)

        def db_path(name: str) -> str:
            return ":memory:" if in_memory else str(base / name)

        self._in_memory = in_memory
        self._slots = {
            SlotId.A: _Database(db_path("slot_a.duckdb"), _SLOT_SCHEMA),
            SlotId.B: _Database(db_path("slot_b.duckdb"), _SLOT_SCHEMA),
        }
        self._meta = _Database(db_path("metadata.duckdb"), _META_SCHEMA)

    async def connect(self) -> None:
        def _open() -> None:
            if not self._in_memory:
                Path(self.path).mkdir(parents=True, exist_ok=True)
            for db in (*self._slots.values(), self._meta):
                with db.lock:
                    db.open()

        await asyncio.to_thread(_open)
        logger.info(f"DuckDB store ready at {self.path}")

    async def close(self) -> None:
        def _close() -> None:
            for db in (*self._slots.values(), self._meta):
                with db.lock:
                    db.close()

        await asyncio.to_thread(_close)

    async def _run(self, db: _Database, fn: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        def _call() -> T:
            with db.lock:
                if db.conn is None:
                    raise StoreUnavailableError(f"DuckDB database '{db.path}' is not connected")
                try:
                    return fn(db.conn)
                except (duckdb.ConnectionException, duckdb.IOException) as e:
                    raise StoreUnavailableError(f"DuckDB database '{db.path}' failed: {e}") from e
                except duckdb.Error as e:
                    raise StoreError(f"DuckDB error on '{db.path}': {e}") from e

        return await asyncio.to_thread(_call)

    async def health_check(self) -> bool:
        try:
            await self._run(self._meta, lambda c: c.execute("SELECT 1").fetchone())
        except StoreError:
            return False
        return True

    # --- key/value -----------------------------------------------------------

    def _purge(self, conn: duckdb.DuckDBPyConnection, key: str) -> None:
        conn.execute(
            "DELETE FROM kv WHERE key = ? AND expires_at IS NOT NULL AND expires_at <= ?",
            [key, self._clock()],
        )

    def _expiry(self, ttl: int | None) -> float | None:
        return self._clock() + ttl if ttl else None

    async def get(self, key: str) -> str | None:
        def _get(conn: duckdb.DuckDBPyConnection) -> str | None:
            self._purge(conn, key)
            row = conn.execute("SELECT value FROM kv WHERE key = ?", [key]).fetchone()
            return row[0] if row else None

        return await self._run(self._meta, _get)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        await self._run(
            self._meta,
            lambda c: c.execute("INSERT OR REPLACE INTO kv VALUES (?, ?, ?)", [key, value, self._expiry(ttl)]),
        )

    async def set_if_absent(self, key: str, value: str, ttl: int | None = None) -> bool:
        def _set(conn: duckdb.DuckDBPyConnection) -> bool:
            self._purge(conn, key)
            if conn.execute("SELECT 1 FROM kv WHERE key = ?", [key]).fetchone():
                return False
            conn.execute("INSERT INTO kv VALUES (?, ?, ?)", [key, value, self._expiry(ttl)])
            return True

        return await self._run(self._meta, _set)

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        def _delete(conn: duckdb.DuckDBPyConnection) -> bool:
            self._purge(conn, key)
            row = conn.execute("SELECT value FROM kv WHERE key = ?", [key]).fetchone()
            if not row or row[0] != expected:
                return False
            conn.execute("DELETE FROM kv WHERE key = ?", [key])
            return True

        return await self._run(self._meta, _delete)

    async def delete(self, key: str) -> None:
        await self._run(self._meta, lambda c: c.execute("DELETE FROM kv WHERE key = ?", [key]))

    # --- records -------------------------------------------------------------

    async def get_record(self, slot: SlotId, table: str, record_id: str) -> dict[str, Any] | None:
        row = await self._run(
            self._slots[slot],
            lambda c: c.execute(
                "SELECT fields FROM records WHERE table_name = ? AND record_id = ?", [table, record_id]
            ).fetchone(),
        )
        if row is None:
            return None
        return {"id": record_id, "fields": json.loads(row[0])}

    async def list_records(
        self, slot: SlotId, table: str, limit: int | None = None, offset: int = 0
    ) -> list[dict[str, Any]]:
        sql = "SELECT record_id, fields FROM records WHERE table_name = ? ORDER BY record_id"
        params: list[Any] = [table]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        if offset:
            sql += " OFFSET ?"
            params.append(offset)
        rows = await self._run(self._slots[slot], lambda c: c.execute(sql, params).fetchall())
        return [{"id": rid, "fields": json.loads(fields)} for rid, fields in rows]

    async def count_records(self, slot: SlotId, table: str) -> int:
        row = await self._run(
            self._slots[slot],
            lambda c: c.execute("SELECT count(*) FROM records WHERE table_name = ?", [table]).fetchone(),
        )
        return int(row[0]) if row else 0

    def _write(self, conn: duckdb.DuckDBPyConnection, table: str, record: SourceRecord, raw: str) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO records VALUES (?, ?, ?, ?)",
            [table, record.id, raw, time.time()],
        )
        old = [
            _row_to_attachment(row)
            for row in conn.execute(
                f"SELECT {_ATTACHMENT_COLUMNS} FROM attachments WHERE table_name = ? AND record_id = ?",
                [table, record.id],
            ).fetchall()
        ]
        current = merge_attachment_state(extract_attachments(table, record.id, record.fields), old)
        # upsert in place; DuckDB rejects delete + re-insert of one key inside a transaction
        keep = {a.id for a in current}
        for stale in old:
            if stale.id not in keep:
                conn.execute("DELETE FROM attachments WHERE id = ?", [stale.id])
        for attachment in current:
            conn.execute(
                f"INSERT OR REPLACE INTO attachments ({_ATTACHMENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                _attachment_params(attachment),
            )

    def _write_all(self, conn: duckdb.DuckDBPyConnection, table: str, rows: list[tuple[SourceRecord, str]]) -> None:
        conn.execute("BEGIN TRANSACTION")
        try:
            for record, raw in rows:
                self._write(conn, table, record, raw)
        except Exception:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    @staticmethod
    def _serialize(record: SourceRecord) -> str:
        try:
            return record.to_json()
        except (TypeError, ValueError) as e:
            raise StoreError(f"Record {record.id} is not serializable: {e}", details={"record_id": record.id}) from e

    async def set_record(self, slot: SlotId, table: str, record: SourceRecord) -> None:
        raw = self._serialize(record)
        await self._run(self._slots[slot], lambda c: self._write_all(c, table, [(record, raw)]))

    async def set_records_batch(self, slot: SlotId, table: str, records: Sequence[SourceRecord]) -> None:
        rows = [(record, self._serialize(record)) for record in records]
        await self._run(self._slots[slot], lambda c: self._write_all(c, table, rows))

    async def delete_record(self, slot: SlotId, table: str, record_id: str) -> bool:
        def _delete(conn: duckdb.DuckDBPyConnection) -> bool:
            existed = conn.execute(
                "SELECT 1 FROM records WHERE table_name = ? AND record_id = ?", [table, record_id]
            ).fetchone()
            conn.execute("DELETE FROM records WHERE table_name = ? AND record_id = ?", [table, record_id])
            conn.execute("DELETE FROM attachments WHERE table_name = ? AND record_id = ?", [table, record_id])
            return existed is not None

        return await self._run(self._slots[slot], _delete)

    async def clear_slot(self, slot: SlotId) -> None:
        def _clear(conn: duckdb.DuckDBPyConnection) -> None:
            conn.execute("DELETE FROM records")
            conn.execute("DELETE FROM attachments")

        await self._run(self._slots[slot], _clear)

    async def list_table_names(self, slot: SlotId) -> list[str]:
        rows = await self._run(
            self._slots[slot],
            lambda c: c.execute("SELECT DISTINCT table_name FROM records ORDER BY table_name").fetchall(),
        )
        return [row[0] for row in rows]

    # --- mappings ------------------------------------------------------------

    async def upsert_table_mapping(self, mapping: TableMapping) -> None:
        await self._run(
            self._meta,
            lambda c: c.execute(
                "INSERT OR REPLACE INTO table_mappings VALUES (?, ?, ?, ?, ?)",
                [
                    mapping.external_id,
                    mapping.display_name,
                    mapping.normalized_name,
                    mapping.primary_field_id,
                    json.dumps(mapping.fields),
                ],
            ),
        )

    async def delete_table_mapping(self, external_id: str) -> bool:
        def _delete(c: Any) -> bool:
            found = c.execute("SELECT 1 FROM table_mappings WHERE external_id = ?", [external_id]).fetchone()
            c.execute("DELETE FROM table_mappings WHERE external_id = ?", [external_id])
            return found is not None

        return await self._run(self._meta, _delete)

    @staticmethod
    def _row_to_mapping(row: tuple) -> TableMapping:
        return TableMapping(
            external_id=row[0],
            display_name=row[1],
            normalized_name=row[2],
            primary_field_id=row[3],
            fields=json.loads(row[4]) if row[4] else {},
        )

    async def list_tables(self) -> list[TableMapping]:
        rows = await self._run(
            self._meta,
            lambda c: c.execute("SELECT * FROM table_mappings ORDER BY normalized_name").fetchall(),
        )
        return [self._row_to_mapping(row) for row in rows]

    async def resolve_table(self, external_id: str) -> TableMapping | None:
        row = await self._run(
            self._meta,
            lambda c: c.execute("SELECT * FROM table_mappings WHERE external_id = ?", [external_id]).fetchone(),
        )
        return self._row_to_mapping(row) if row else None

    async def get_table(self, normalized_name: str) -> TableMapping | None:
        row = await self._run(
            self._meta,
            lambda c: c.execute(
                "SELECT * FROM table_mappings WHERE normalized_name = ? LIMIT 1", [normalized_name]
            ).fetchone(),
        )
        return self._row_to_mapping(row) if row else None

    # --- attachments ---------------------------------------------------------

    async def get_attachment(self, slot: SlotId, attachment_id: str) -> Attachment | None:
        row = await self._run(
            self._slots[slot],
            lambda c: c.execute(
                f"SELECT {_ATTACHMENT_COLUMNS} FROM attachments WHERE id = ?", [attachment_id]
            ).fetchone(),
        )
        return _row_to_attachment(row) if row else None

    async def list_record_attachments(self, slot: SlotId, table: str, record_id: str) -> list[Attachment]:
        rows = await self._run(
            self._slots[slot],
            lambda c: c.execute(
                f"SELECT {_ATTACHMENT_COLUMNS} FROM attachments WHERE table_name = ? AND record_id = ? ORDER BY id",
                [table, record_id],
            ).fetchall(),
        )
        return [_row_to_attachment(row) for row in rows]

    async def get_pending_attachments(self, slot: SlotId) -> list[Attachment]:
        rows = await self._run(
            self._slots[slot],
            lambda c: c.execute(
                f"SELECT {_ATTACHMENT_COLUMNS} FROM attachments WHERE NOT downloaded ORDER BY id"
            ).fetchall(),
        )
        return [_row_to_attachment(row) for row in rows]

    async def mark_attachment_downloaded(self, slot: SlotId, attachment_id: str, local_path: str, size: int) -> None:
        def _mark(conn: duckdb.DuckDBPyConnection) -> None:
            found = conn.execute("SELECT 1 FROM attachments WHERE id = ?", [attachment_id]).fetchone()
            if not found:
                raise StoreError(f"Attachment {attachment_id} not found in slot {slot.value}")
            conn.execute(
                "UPDATE attachments SET local_path = ?, downloaded = TRUE, "
                "expected_size = coalesce(expected_size, ?) WHERE id = ?",
                [local_path, size, attachment_id],
            )

        await self._run(self._slots[slot], _mark)

    async def _attachment_counts(self, slot: SlotId) -> dict[str, int]:
        row = await self._run(
            self._slots[slot],
            lambda c: c.execute(
                "SELECT count(*), count(*) FILTER (WHERE downloaded) FROM attachments"
            ).fetchone(),
        )
        return {"total": int(row[0]), "downloaded": int(row[1] or 0)}
