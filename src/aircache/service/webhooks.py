"""
Airtable webhook intake.

Notifications are signed with ``X-Airtable-Content-MAC: hmac-sha256=<hex>``,
the HMAC-SHA256 of the raw body keyed with the base64-decoded MAC secret.
The verification ping Airtable sends when notifications are enabled is
unsigned and is accepted as is.

A notification usually carries no diff; the changes are listed through the
payloads endpoint, starting from a cursor kept in the key/value store.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from datetime import datetime
from typing import Any, Protocol

from aircache.core.types import TableDiff
from aircache.exceptions import WebhookValidationError
from aircache.storage.base import KeyValueStore
from aircache.utils.logging import get_logger

logger = get_logger("aircache.service.webhooks")

SIGNATURE_HEADER = "X-Airtable-Content-MAC"
SIGNATURE_PREFIX = "hmac-sha256="


def compute_webhook_hmac(secret_base64: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of ``body`` keyed with the decoded secret."""
    try:
        key = base64.b64decode(secret_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise WebhookValidationError("Webhook secret is not valid base64") from e
    return hmac.new(key, body, hashlib.sha256).hexdigest()


def verify_signature(secret_base64: str, body: bytes, header: str | None) -> None:
    """Raise WebhookValidationError unless ``header`` signs ``body``."""
    if not header:
        raise WebhookValidationError(f"Missing {SIGNATURE_HEADER} header")
    if not header.startswith(SIGNATURE_PREFIX):
        raise WebhookValidationError("Invalid signature format")
    provided = header[len(SIGNATURE_PREFIX) :].strip().lower()
    expected = compute_webhook_hmac(secret_base64, body)
    if not hmac.compare_digest(provided, expected):
        raise WebhookValidationError("Invalid signature")


def is_ping(payload: Any) -> bool:
    """Empty body or ``{"ping": ...}`` only."""
    if not payload:
        return True
    return isinstance(payload, dict) and set(payload) == {"ping"}


def _parse_timestamp(value: Any) -> float | None:
    if isinstance(value, (int, float)):
        # milliseconds when it looks like one
        return value / 1000 if value > 1e11 else float(value)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return None
    return None


def check_timestamp(payload: dict[str, Any], window: int, now: float | None = None) -> None:
    """Reject notifications whose ``timestamp`` is further than ``window`` seconds from now."""
    if "timestamp" not in payload:
        return
    sent_at = _parse_timestamp(payload["timestamp"])
    if sent_at is None:
        raise WebhookValidationError("Unreadable webhook timestamp")
    age = abs((now if now is not None else time.time()) - sent_at)
    if age > window:
        raise WebhookValidationError(
            f"Webhook timestamp outside the {window}s window",
            details={"age": round(age), "window": window},
        )


def aggregate_payloads(payloads: list[dict[str, Any]]) -> dict[str, TableDiff]:
    """
    Fold payloads into one diff per table.

    Error payloads (``"error": true``) are skipped. Record ids appear once
    per list, in first-seen order.
    """
    diffs: dict[str, TableDiff] = {}
    for payload in payloads:
        if payload.get("error"):
            logger.warning(f"Skipping error payload: {payload.get('code', 'unknown')}")
            continue
        for table_id, changes in (payload.get("changedTablesById") or {}).items():
            diff = TableDiff.from_payload(changes or {})
            if table_id in diffs:
                diffs[table_id].merge(diff)
            else:
                diffs[table_id] = diff
    return {table_id: diff for table_id, diff in diffs.items() if not diff.is_empty()}


class PayloadSource(Protocol):
    async def list_webhook_payloads(
        self, webhook_id: str, cursor: int | None = None
    ) -> tuple[list[dict[str, Any]], int | None]:
        ...


class RefreshTarget(Protocol):
    async def request_full_refresh(self) -> Any:
        ...

    async def request_incremental(self, diffs: dict[str, TableDiff]) -> Any:
        ...


class WebhookProcessor:
    """
    Turns a validated notification into worker requests.

    Args:
        kv: Key/value store for idempotency markers and payload cursors
        worker: Receives incremental or full refresh requests
        payloads: Source of webhook payloads (None: only inline diffs are used)
        idempotency_ttl: Seconds a processed notification is remembered
        webhook_id: The configured webhook; notifications for any other id are rejected
    """

    def __init__(
        self,
        kv: KeyValueStore,
        worker: RefreshTarget,
        payloads: PayloadSource | None = None,
        idempotency_ttl: int = 86400,
        webhook_id: str | None = None,
    ) -> None:
        self.kv = kv
        self.worker = worker
        self.payloads = payloads
        self.idempotency_ttl = idempotency_ttl
        self.webhook_id = webhook_id

    def _resolve_webhook_id(self, notification: dict[str, Any]) -> str | None:
        received = (notification.get("webhook") or {}).get("id") or notification.get("webhookId")
        if self.webhook_id and received and received != self.webhook_id:
            raise WebhookValidationError(
                f"Notification for unknown webhook {received}",
                details={"webhook_id": received},
            )
        return received or self.webhook_id

    @staticmethod
    def _notification_key(webhook_id: str | None, notification: dict[str, Any]) -> str | None:
        if not webhook_id:
            return None
        txn = notification.get("baseTransactionNumber") or notification.get("timestamp") or ""
        return f"webhook:{webhook_id}:{txn}"

    async def _fetch_diffs(self, webhook_id: str) -> tuple[dict[str, TableDiff], int | None]:
        stored = await self.kv.get(f"webhook_cursor:{webhook_id}")
        cursor = int(stored) if stored else None
        payloads, next_cursor = await self.payloads.list_webhook_payloads(webhook_id, cursor)
        logger.info(f"Fetched {len(payloads)} payloads for webhook {webhook_id}")
        return aggregate_payloads(payloads), next_cursor

    async def handle(self, notification: dict[str, Any]) -> dict[str, Any]:
        """
        Process one notification.

        Returns:
            ``{"status": "skipped" | "accepted", "refresh_type": ..., "tables": n}``

        Raises:
            WebhookValidationError: The notification names a webhook other
                than the configured one
        """
        webhook_id = self._resolve_webhook_id(notification)
        key = self._notification_key(webhook_id, notification)
        if key is not None and not await self.kv.set_if_absent(key, "1", ttl=self.idempotency_ttl):
            logger.info(f"Notification {key} already processed, skipping")
            return {"status": "skipped", "reason": "already processed"}

        try:
            refresh_type, tables = await self._dispatch(notification, webhook_id)
        except Exception:
            # let a redelivery of this notification try again
            if key is not None:
                await self.kv.delete(key)
            raise
        logger.info(f"Webhook triggered {refresh_type} refresh ({tables} tables)")
        return {"status": "accepted", "refresh_type": refresh_type, "tables": tables}

    async def _dispatch(self, notification: dict[str, Any], webhook_id: str | None) -> tuple[str, int]:
        next_cursor: int | None = None
        if "changedTablesById" in notification or "payloads" in notification:
            inline = list(notification.get("payloads") or [])
            if "changedTablesById" in notification:
                inline.append({"changedTablesById": notification["changedTablesById"]})
            diffs = aggregate_payloads(inline)
        elif self.payloads is not None and webhook_id is not None:
            diffs, next_cursor = await self._fetch_diffs(webhook_id)
        else:
            diffs = {}

        if diffs:
            await self.worker.request_incremental(diffs)
            refresh = ("incremental", len(diffs))
        else:
            await self.worker.request_full_refresh()
            refresh = ("full", 0)

        # the cursor moves only after the worker accepted the changes
        if webhook_id is not None and next_cursor is not None:
            await self.kv.set(f"webhook_cursor:{webhook_id}", str(next_cursor))
        return refresh


def parse_body(body: bytes) -> dict[str, Any]:
    """Decode a notification body; empty means ``{}``."""
    if not body.strip():
        return {}
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise WebhookValidationError("Invalid JSON body") from e
    if not isinstance(data, dict):
        raise WebhookValidationError("Webhook body must be a JSON object")
    return data
