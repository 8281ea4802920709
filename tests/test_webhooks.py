"""
Tests for webhook signature checks, payload aggregation and idempotency.
"""

import base64
import hashlib
import hmac
import time

import pytest

from aircache.core.types import TableDiff
from aircache.exceptions import WebhookValidationError
from aircache.service.webhooks import (
    SIGNATURE_PREFIX,
    WebhookProcessor,
    aggregate_payloads,
    check_timestamp,
    compute_webhook_hmac,
    is_ping,
    parse_body,
    verify_signature,
)

SECRET = base64.b64encode(b"super-secret-mac-key").decode()


def sign(body: bytes, secret: str = SECRET) -> str:
    digest = hmac.new(base64.b64decode(secret), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


class _RecordingWorker:
    def __init__(self, fail=False):
        self.full = 0
        self.incremental = []
        self.fail = fail

    async def request_full_refresh(self):
        if self.fail:
            raise RuntimeError("worker gone")
        self.full += 1

    async def request_incremental(self, diffs):
        if self.fail:
            raise RuntimeError("worker gone")
        self.incremental.append(diffs)


def _payload(table_id, created=(), changed=(), destroyed=()):
    return {
        "changedTablesById": {
            table_id: {
                "createdRecordsById": {r: {} for r in created},
                "changedRecordsById": {r: {} for r in changed},
                "destroyedRecordIds": list(destroyed),
            }
        }
    }


@pytest.mark.unit
class TestSignature:
    def test_valid_signature(self):
        body = b'{"base": {"id": "app1"}}'
        verify_signature(SECRET, body, sign(body))

    def test_hmac_matches_reference(self):
        body = b"payload"
        expected = hmac.new(b"super-secret-mac-key", body, hashlib.sha256).hexdigest()
        assert compute_webhook_hmac(SECRET, body) == expected

    def test_tampered_body(self):
        with pytest.raises(WebhookValidationError, match="Invalid signature"):
            verify_signature(SECRET, b"tampered", sign(b"original"))

    def test_missing_header(self):
        with pytest.raises(WebhookValidationError, match="Missing"):
            verify_signature(SECRET, b"x", None)

    def test_wrong_prefix(self):
        with pytest.raises(WebhookValidationError, match="format"):
            verify_signature(SECRET, b"x", "sha1=abc")

    def test_bad_secret(self):
        with pytest.raises(WebhookValidationError, match="base64"):
            compute_webhook_hmac("not base64!!", b"x")


@pytest.mark.unit
class TestBodyAndTimestamp:
    def test_ping(self):
        assert is_ping({})
        assert is_ping({"ping": True})
        assert not is_ping({"ping": True, "webhook": {"id": "ach1"}})

    def test_parse_body(self):
        assert parse_body(b"  ") == {}
        assert parse_body(b'{"a": 1}') == {"a": 1}
        with pytest.raises(WebhookValidationError):
            parse_body(b"{nope")
        with pytest.raises(WebhookValidationError):
            parse_body(b"[1, 2]")

    def test_fresh_iso_timestamp(self):
        check_timestamp({"timestamp": "2024-05-01T12:00:00.000Z"}, 300, now=1714564800.0 + 10)

    def test_stale_timestamp(self):
        with pytest.raises(WebhookValidationError, match="window"):
            check_timestamp({"timestamp": "2024-05-01T12:00:00.000Z"}, 300, now=1714564800.0 + 301)

    def test_millisecond_timestamp(self):
        now = time.time()
        check_timestamp({"timestamp": int(now * 1000)}, 300, now=now)

    def test_unreadable_timestamp(self):
        with pytest.raises(WebhookValidationError):
            check_timestamp({"timestamp": "yesterday"}, 300)

    def test_missing_timestamp_allowed(self):
        check_timestamp({}, 300)


@pytest.mark.unit
class TestAggregatePayloads:
    def test_merges_per_table(self):
        diffs = aggregate_payloads(
            [
                _payload("tbl1", created=["rec1"]),
                _payload("tbl1", changed=["rec2"], destroyed=["rec3"]),
                _payload("tbl2", created=["rec9"]),
            ]
        )
        assert diffs["tbl1"] == TableDiff(created_ids=["rec1"], changed_ids=["rec2"], destroyed_ids=["rec3"])
        assert diffs["tbl2"].created_ids == ["rec9"]

    def test_skips_error_payloads(self):
        diffs = aggregate_payloads([{"error": True, "code": "INVALID_FILTERS"}, _payload("tbl1", created=["rec1"])])
        assert list(diffs) == ["tbl1"]

    def test_drops_empty_diffs(self):
        assert aggregate_payloads([{"changedTablesById": {"tbl1": {}}}]) == {}


@pytest.mark.unit
class TestWebhookProcessor:
    async def test_fetches_payloads_with_cursor(self, store, source):
        source.payloads = [_payload("tbl1", created=["rec1"])]
        worker = _RecordingWorker()
        processor = WebhookProcessor(store, worker, payloads=source)

        result = await processor.handle({"webhook": {"id": "ach1"}, "baseTransactionNumber": 7})

        assert result == {"status": "accepted", "refresh_type": "incremental", "tables": 1}
        assert worker.incremental[0]["tbl1"].created_ids == ["rec1"]
        assert source.payload_cursors == [None]
        assert await store.get("webhook_cursor:ach1") == "2"

        source.payloads.append(_payload("tbl1", changed=["rec1"]))
        await processor.handle({"webhook": {"id": "ach1"}, "baseTransactionNumber": 8})
        assert source.payload_cursors == [None, 2]
        assert worker.incremental[1]["tbl1"].changed_ids == ["rec1"]

    async def test_duplicate_notification_skipped(self, store, source):
        source.payloads = [_payload("tbl1", created=["rec1"])]
        worker = _RecordingWorker()
        processor = WebhookProcessor(store, worker, payloads=source)
        notification = {"webhook": {"id": "ach1"}, "baseTransactionNumber": 7}

        await processor.handle(notification)
        result = await processor.handle(notification)

        assert result["status"] == "skipped"
        assert len(worker.incremental) == 1

    async def test_inline_changes(self, store):
        worker = _RecordingWorker()
        processor = WebhookProcessor(store, worker)
        notification = {"webhookId": "ach1", "timestamp": "t1", **_payload("tbl1", destroyed=["rec2"])}

        result = await processor.handle(notification)

        assert result["refresh_type"] == "incremental"
        assert worker.incremental[0]["tbl1"].destroyed_ids == ["rec2"]

    async def test_no_changes_requests_full_refresh(self, store, source):
        worker = _RecordingWorker()
        processor = WebhookProcessor(store, worker, payloads=source)

        result = await processor.handle({"webhook": {"id": "ach1"}, "baseTransactionNumber": 1})

        assert result == {"status": "accepted", "refresh_type": "full", "tables": 0}
        assert worker.full == 1

    async def test_failed_dispatch_allows_redelivery(self, store, source):
        source.payloads = [_payload("tbl1", created=["rec1"])]
        processor = WebhookProcessor(store, _RecordingWorker(fail=True), payloads=source)
        notification = {"webhook": {"id": "ach1"}, "baseTransactionNumber": 3}

        with pytest.raises(RuntimeError):
            await processor.handle(notification)

        worker = _RecordingWorker()
        processor.worker = worker
        result = await processor.handle(notification)
        assert result["refresh_type"] == "incremental"
        assert worker.incremental[0]["tbl1"].created_ids == ["rec1"]

    async def test_idempotency_key_stored(self, store, source):
        processor = WebhookProcessor(store, _RecordingWorker(), payloads=source, idempotency_ttl=60)
        await processor.handle({"webhook": {"id": "ach1"}, "baseTransactionNumber": 1})
        assert await store.get("webhook:ach1:1") == "1"

    async def test_unknown_webhook_rejected(self, store, source):
        worker = _RecordingWorker()
        processor = WebhookProcessor(store, worker, payloads=source, webhook_id="ach1")

        with pytest.raises(WebhookValidationError):
            await processor.handle({"webhook": {"id": "achOther"}, "baseTransactionNumber": 1})

        assert worker.full == 0
        assert source.payload_cursors == []
        assert await store.get("webhook:achOther:1") is None

    async def test_configured_webhook_used_when_notification_omits_it(self, store, source):
        source.payloads = [_payload("tbl1", created=["rec1"])]
        worker = _RecordingWorker()
        processor = WebhookProcessor(store, worker, payloads=source, webhook_id="ach1")

        result = await processor.handle({"baseTransactionNumber": 4})

        assert result["refresh_type"] == "incremental"
        assert await store.get("webhook:ach1:4") == "1"
