"""In-process fakes for the source and the attachment downloader."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from aircache.core.types import SourceRecord
from aircache.exceptions import AttachmentDownloadError, SourceRequestError


class FakeSource:
    """In-process stand-in for the remote API."""

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, Any]] = {}
        self.records: dict[str, list[SourceRecord]] = {}
        self.failing_tables: set[str] = set()
        self.payloads: list[dict[str, Any]] = []
        self.fetch_calls: list[str] = []
        self.payload_cursors: list[int | None] = []

    def add_table(self, table_id: str, name: str, records: list[SourceRecord] | None = None) -> None:
        self.tables[table_id] = {
            "id": table_id,
            "name": name,
            "primaryFieldId": f"fld{table_id}",
            "fields": [{"id": f"fld{table_id}", "name": "Name", "type": "singleLineText"}],
        }
        self.records[table_id] = list(records or [])

    async def list_tables(self) -> list[dict[str, Any]]:
        return list(self.tables.values())

    async def fetch_all_records(self, table_id: str) -> list[SourceRecord]:
        self.fetch_calls.append(table_id)
        if table_id in self.failing_tables:
            raise SourceRequestError(f"GET {table_id} returned 503", status=503)
        return list(self.records.get(table_id, []))

    async def fetch_records_by_ids(self, table_id: str, record_ids: Sequence[str]) -> list[SourceRecord]:
        if table_id in self.failing_tables:
            raise SourceRequestError(f"GET {table_id} returned 503", status=503)
        wanted = set(record_ids)
        return [r for r in self.records.get(table_id, []) if r.id in wanted]

    async def list_webhook_payloads(
        self, webhook_id: str, cursor: int | None = None
    ) -> tuple[list[dict[str, Any]], int | None]:
        self.payload_cursors.append(cursor)
        start = (cursor or 1) - 1
        payloads = self.payloads[start:]
        return payloads, len(self.payloads) + 1


class FakeFetcher:
    """Writes ``sizes[url]`` bytes instead of downloading."""

    def __init__(self, sizes: dict[str, int] | None = None, delay: float = 0.0) -> None:
        self.sizes = sizes or {}
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, url: str, destination: Path) -> int:
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if url in self.failing:
                raise AttachmentDownloadError(f"GET {url} returned 404", attachment_id=destination.name, url=url)
            size = self.sizes.get(url, 10)
            destination.write_bytes(b"x" * size)
            return size
        finally:
            self.in_flight -= 1


def make_record(record_id: str, **fields: Any) -> SourceRecord:
    return SourceRecord(id=record_id, fields=fields or {"Name": record_id})


def attachment_ref(url: str, filename: str, size: int, content_type: str = "application/pdf") -> dict[str, Any]:
    return {"id": f"att_{filename}", "url": url, "filename": filename, "size": size, "type": content_type}


