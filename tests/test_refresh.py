"""
Tests for batched writes and the full refresh pipeline.
"""

import pytest

from aircache.core.types import RefreshState, SlotId, SourceRecord
from aircache.exceptions import StoreUnavailableError
from aircache.sync.attachments import AttachmentPipeline
from aircache.sync.refresh import REFRESH_LOCK, FullRefreshPipeline
from aircache.sync.writer import chunked, write_records
from fakes import FakeFetcher, attachment_ref, make_record


def _pipeline(store, source, versions, locks, **kwargs):
    return FullRefreshPipeline(store, source, versions, locks, **kwargs)


def _three(prefix):
    return [make_record(f"{prefix}{i}") for i in range(1, 4)]


@pytest.mark.unit
class TestWriteRecords:
    def test_chunked(self):
        assert [len(c) for c in chunked(list(range(120)), 50)] == [50, 50, 20]

    async def test_batch_with_one_bad_record(self, store):
        records = [make_record(f"rec{i}") for i in range(1, 11)]
        records[6] = SourceRecord(id="rec7", fields={"Score": float("nan")})
        result = await write_records(store, SlotId.A, "t", records, batch_size=50)
        assert result.written == 9
        assert result.errors == 1
        assert "rec7" not in result.written_ids
        assert await store.count_records(SlotId.A, "t") == 9

    async def test_only_failing_batch_falls_back(self, store, monkeypatch):
        calls = []
        original = store.set_record

        async def counting_set_record(slot, table, record):
            calls.append(record.id)
            await original(slot, table, record)

        monkeypatch.setattr(store, "set_record", counting_set_record)
        records = [make_record(f"rec{i:02d}") for i in range(6)]
        records[4] = SourceRecord(id="rec04", fields={"x": float("inf")})
        result = await write_records(store, SlotId.A, "t", records, batch_size=3)
        assert result.written == 5
        assert calls == ["rec03", "rec04", "rec05"]

    async def test_outage_propagates(self, store):
        store.available = False
        with pytest.raises(StoreUnavailableError):
            await write_records(store, SlotId.A, "t", [make_record("rec1")])


@pytest.mark.unit
class TestFullRefresh:
    async def test_two_tables_flip_to_b(self, store, source, versions, locks):
        source.add_table("tbl1", "Projects", _three("recP"))
        source.add_table("tbl2", "Client Tasks", _three("recT"))
        pipeline = _pipeline(store, source, versions, locks)

        stats = await pipeline.run()

        assert (stats.tables, stats.records, stats.errors) == (2, 6, 0)
        assert stats.flipped_to is SlotId.B
        assert await versions.get_active() is SlotId.B
        assert await store.list_table_names(SlotId.B) == ["clienttasks", "projects"]
        assert pipeline.state is RefreshState.DONE
        assert not await locks.is_locked(REFRESH_LOCK)

    async def test_second_refresh_flips_back(self, store, source, versions, locks):
        source.add_table("tbl1", "Projects", _three("rec"))
        pipeline = _pipeline(store, source, versions, locks)
        await pipeline.run()
        source.records["tbl1"] = [make_record("recNew")]

        stats = await pipeline.run()

        assert stats.flipped_to is SlotId.A
        assert [r["id"] for r in await store.list_records(SlotId.A, "projects")] == ["recNew"]

    async def test_stale_records_cleared_from_inactive_slot(self, store, source, versions, locks):
        await store.set_record(SlotId.B, "projects", make_record("recStale"))
        source.add_table("tbl1", "Projects", _three("rec"))

        await _pipeline(store, source, versions, locks).run()

        assert await store.get_record(SlotId.B, "projects", "recStale") is None

    async def test_busy_lock_skips(self, store, source, versions, locks):
        source.add_table("tbl1", "Projects", _three("rec"))
        await locks.acquire(REFRESH_LOCK, ttl=60)

        stats = await _pipeline(store, source, versions, locks).run()

        assert stats.skipped
        assert source.fetch_calls == []
        assert await versions.get_active() is SlotId.A

    async def test_table_fetch_error_counted(self, store, source, versions, locks):
        source.add_table("tbl1", "Projects", _three("rec"))
        source.add_table("tbl2", "Tasks", _three("recT"))
        source.failing_tables.add("tbl2")

        stats = await _pipeline(store, source, versions, locks).run()

        assert (stats.tables, stats.records, stats.errors) == (1, 3, 1)
        assert stats.flipped_to is SlotId.B

    async def test_malformed_record_counted(self, store, source, versions, locks):
        records = [make_record(f"rec{i:02d}") for i in range(10)]
        records[6] = SourceRecord(id="rec06", fields={"Score": float("nan")})
        source.add_table("tbl1", "Projects", records)

        stats = await _pipeline(store, source, versions, locks).run()

        assert stats.records == 9
        assert stats.errors == 1

    async def test_store_outage_aborts_without_flip(self, store, source, versions, locks, monkeypatch):
        source.add_table("tbl1", "Projects", _three("rec"))

        async def down(*args, **kwargs):
            raise StoreUnavailableError("disk gone")

        monkeypatch.setattr(store, "set_records_batch", down)
        pipeline = _pipeline(store, source, versions, locks)

        with pytest.raises(StoreUnavailableError):
            await pipeline.run()

        assert pipeline.state is RefreshState.ERROR
        assert await versions.get_active() is SlotId.A
        assert not await locks.is_locked(REFRESH_LOCK)

    async def test_mapping_sync_failure_uses_stored_mappings(self, store, source, versions, locks, monkeypatch):
        source.add_table("tbl1", "Projects", _three("rec"))
        pipeline = _pipeline(store, source, versions, locks)
        await pipeline.run()

        async def schema_down():
            from aircache.exceptions import SourceError

            raise SourceError("meta API down")

        monkeypatch.setattr(source, "list_tables", schema_down)
        stats = await pipeline.run()

        assert stats.tables == 1
        assert stats.flipped_to is SlotId.A

    async def test_table_removed_from_base_is_forgotten(self, store, source, versions, locks):
        source.add_table("tbl1", "Projects", _three("recP"))
        source.add_table("tbl2", "Tasks", _three("recT"))
        pipeline = _pipeline(store, source, versions, locks)
        await pipeline.run()

        del source.tables["tbl2"]
        before = len(source.fetch_calls)
        stats = await pipeline.run()

        assert (stats.tables, stats.records, stats.errors) == (1, 3, 0)
        assert [m.external_id for m in await store.list_tables()] == ["tbl1"]
        assert source.fetch_calls[before:] == ["tbl1"]

    async def test_attachments_downloaded_before_flip(self, store, source, versions, locks, tmp_path):
        url = "https://dl.example.com/a.pdf"
        source.add_table("tbl1", "Projects", [make_record("rec1", Files=[attachment_ref(url, "a.pdf", 42)])])
        fetcher = FakeFetcher({url: 42})
        flipped_at_download = []

        class Watching(AttachmentPipeline):
            async def download_pending(self, slot=None, concurrency=None):
                flipped_at_download.append(await versions.get_active())
                return await super().download_pending(slot, concurrency)

        attachments = Watching(store, versions, tmp_path, fetcher=fetcher)
        stats = await _pipeline(store, source, versions, locks, attachments=attachments).run()

        assert flipped_at_download == [SlotId.A]
        assert stats.attachments == 1
        assert stats.attachment_errors == 0
        attachment = await store.get_attachment(SlotId.B, "rec1_Files_0")
        assert attachment.downloaded

    async def test_attachment_errors_counted(self, store, source, versions, locks, tmp_path):
        url = "https://dl.example.com/missing.pdf"
        source.add_table("tbl1", "Projects", [make_record("rec1", Files=[attachment_ref(url, "m.pdf", 5)])])
        fetcher = FakeFetcher()
        fetcher.failing.add(url)
        attachments = AttachmentPipeline(store, versions, tmp_path, fetcher=fetcher)

        stats = await _pipeline(store, source, versions, locks, attachments=attachments).run()

        assert stats.attachment_errors == 1
        assert stats.errors == 1
        assert stats.flipped_to is SlotId.B

    async def test_disabled_attachments_not_fetched(self, store, source, versions, locks, tmp_path):
        url = "https://dl.example.com/a.pdf"
        source.add_table("tbl1", "Projects", [make_record("rec1", Files=[attachment_ref(url, "a.pdf", 1)])])
        fetcher = FakeFetcher()
        attachments = AttachmentPipeline(store, versions, tmp_path, fetcher=fetcher, enabled=False)

        await _pipeline(store, source, versions, locks, attachments=attachments).run()

        assert fetcher.calls == []
