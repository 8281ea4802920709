"""
Value types shared by the stores, pipelines and service.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class SlotId(str, Enum):
    """One of the two storage slots. Exactly one is active at a time."""

    A = "A"
    B = "B"

    @property
    def other(self) -> "SlotId":
        return SlotId.B if self is SlotId.A else SlotId.A

    @classmethod
    def parse(cls, value: str | "SlotId" | None, default: "SlotId | None" = None) -> "SlotId":
        """Parse a stored pointer value. ``None`` means never written."""
        if value is None:
            if default is None:
                raise ValueError("slot value is missing")
            return default
        if isinstance(value, SlotId):
            return value
        normalized = str(value).strip().upper()
        # legacy pointer values written as v1 / v2
        legacy = {"V1": "A", "V2": "B", "1": "A", "2": "B"}
        return cls(legacy.get(normalized, normalized))


DEFAULT_ACTIVE_SLOT = SlotId.A


@dataclass
class TableMapping:
    """Link between a remote table id and its local normalized name."""

    external_id: str
    display_name: str
    normalized_name: str
    primary_field_id: str | None = None
    fields: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TableMapping":
        return cls(
            external_id=data["external_id"],
            display_name=data["display_name"],
            normalized_name=data["normalized_name"],
            primary_field_id=data.get("primary_field_id"),
            fields=dict(data.get("fields") or {}),
        )


@dataclass
class SourceRecord:
    """A record as returned by the remote API."""

    id: str
    fields: dict[str, Any] = field(default_factory=dict)
    created_time: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "SourceRecord":
        return cls(id=data["id"], fields=data.get("fields") or {}, created_time=data.get("createdTime"))

    def to_json(self) -> str:
        """Serialize fields for storage. Raises TypeError/ValueError on unserializable values."""
        return json.dumps(self.fields, ensure_ascii=False, allow_nan=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "fields": self.fields}
        if self.created_time:
            data["createdTime"] = self.created_time
        return data


@dataclass
class Attachment:
    """A file referenced from a record field."""

    id: str
    table_name: str
    record_id: str
    field_name: str
    original_url: str
    filename: str
    expected_size: int | None = None
    content_type: str | None = None
    local_path: str | None = None
    downloaded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attachment":
        return cls(
            id=data["id"],
            table_name=data["table_name"],
            record_id=data["record_id"],
            field_name=data["field_name"],
            original_url=data["original_url"],
            filename=data.get("filename") or "",
            expected_size=data.get("expected_size"),
            content_type=data.get("content_type"),
            local_path=data.get("local_path"),
            downloaded=bool(data.get("downloaded", False)),
        )


def _is_attachment_ref(value: Any) -> bool:
    return isinstance(value, dict) and "url" in value and "filename" in value and "size" in value


def extract_attachments(table_name: str, record_id: str, fields: dict[str, Any]) -> list[Attachment]:
    """
    Find attachment references in a record's fields.

    Any list item that is a mapping with ``url``, ``filename`` and ``size``
    counts. Ids are ``{record}_{field}_{index}`` with the index counted over
    the whole list.
    """
    attachments: list[Attachment] = []
    for field_name, value in fields.items():
        if not isinstance(value, list):
            continue
        for index, item in enumerate(value):
            if not _is_attachment_ref(item):
                continue
            size = item.get("size")
            attachments.append(
                Attachment(
                    id=f"{record_id}_{field_name}_{index}",
                    table_name=table_name,
                    record_id=record_id,
                    field_name=field_name,
                    original_url=item["url"],
                    filename=item.get("filename") or "",
                    expected_size=int(size) if isinstance(size, (int, float)) else None,
                    content_type=item.get("type"),
                )
            )
    return attachments


@dataclass
class TableDiff:
    """Record ids touched in one table by one or more webhook payloads."""

    created_ids: list[str] = field(default_factory=list)
    changed_ids: list[str] = field(default_factory=list)
    destroyed_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "TableDiff":
        """Parse the ``changedTablesById[tableId]`` shape."""
        return cls(
            created_ids=list((data.get("createdRecordsById") or {}).keys()),
            changed_ids=list((data.get("changedRecordsById") or {}).keys()),
            destroyed_ids=list(data.get("destroyedRecordIds") or []),
        )

    def merge(self, other: "TableDiff") -> None:
        """Fold another diff in, keeping first-seen order and no duplicates."""
        for mine, theirs in (
            (self.created_ids, other.created_ids),
            (self.changed_ids, other.changed_ids),
            (self.destroyed_ids, other.destroyed_ids),
        ):
            seen = set(mine)
            for record_id in theirs:
                if record_id not in seen:
                    mine.append(record_id)
                    seen.add(record_id)

    @property
    def upsert_ids(self) -> list[str]:
        """created ∪ changed, created first, without records destroyed later."""
        destroyed = set(self.destroyed_ids)
        seen: set[str] = set()
        ids = []
        for record_id in [*self.created_ids, *self.changed_ids]:
            if record_id in destroyed or record_id in seen:
                continue
            seen.add(record_id)
            ids.append(record_id)
        return ids

    def is_empty(self) -> bool:
        return not (self.created_ids or self.changed_ids or self.destroyed_ids)


class RefreshState(str, Enum):
    """Phases of a full refresh."""

    IDLE = "idle"
    LOCKING = "locking"
    CLEANING = "cleaning"
    FETCHING = "fetching"
    WRITING = "writing"
    ATTACHMENT_SYNC = "attachment_sync"
    FLIPPING = "flipping"
    DONE = "done"
    ERROR = "error"


@dataclass
class WriteResult:
    written: int = 0
    errors: int = 0
    written_ids: list[str] = field(default_factory=list)


@dataclass
class DownloadStats:
    downloaded: int = 0
    skipped: int = 0
    errors: int = 0
    error_details: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RefreshStats:
    tables: int = 0
    records: int = 0
    attachments: int = 0
    attachment_errors: int = 0
    errors: int = 0
    duration: float = 0.0
    skipped: bool = False
    flipped_to: SlotId | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["flipped_to"] = self.flipped_to.value if self.flipped_to else None
        data["duration"] = round(self.duration, 3)
        return data


@dataclass
class IncrementalStats:
    tables: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_deleted: int = 0
    tables_skipped: int = 0
    errors: int = 0
    duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["duration"] = round(self.duration, 3)
        return data
