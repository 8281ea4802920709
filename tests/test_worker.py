"""
Tests for the refresh worker's message protocol.
"""

import asyncio
from dataclasses import dataclass

import pytest

from aircache.core.types import IncrementalStats, RefreshStats, SlotId, TableDiff
from aircache.exceptions import StoreUnavailableError, UnknownMessageError
from aircache.sync.worker import (
    RefreshAccepted,
    RefreshStart,
    RefreshWorker,
    StatsGet,
    WorkerStats,
    WorkerStopped,
)


class _FakeRefresh:
    def __init__(self):
        self.runs = 0
        self.fail_with = None

    async def run(self):
        self.runs += 1
        if self.fail_with:
            raise self.fail_with
        return RefreshStats(tables=1, records=3, flipped_to=SlotId.B)


class _FakeReconciler:
    def __init__(self):
        self.applied = []

    async def apply(self, diffs):
        self.applied.append(diffs)
        return IncrementalStats(tables=len(diffs), records_created=1)


@dataclass
class _Bogus:
    reply: asyncio.Future


@pytest.fixture
async def worker():
    w = RefreshWorker(_FakeRefresh(), _FakeReconciler(), interval=None)
    w.start(schedule=False)
    yield w
    await w.shutdown()


@pytest.mark.unit
class TestRefreshWorker:
    async def test_full_refresh_request(self, worker):
        reply = await worker.request_full_refresh()
        assert isinstance(reply, RefreshAccepted)
        assert reply.kind == "full"
        await worker.wait_idle()
        stats = await worker.stats()
        assert stats.full_refreshes == 1
        assert stats.last_refresh["records"] == 3
        assert worker.refresh.runs == 1

    async def test_incremental_request(self, worker):
        diffs = {"tbl1": TableDiff(created_ids=["rec1"])}
        reply = await worker.request_incremental(diffs)
        assert reply.kind == "incremental"
        await worker.wait_idle()
        assert worker.reconciler.applied == [diffs]
        assert (await worker.stats()).incremental_updates == 1

    async def test_empty_incremental_is_not_queued(self, worker):
        await worker.request_incremental({})
        await worker.wait_idle()
        assert worker.reconciler.applied == []

    async def test_jobs_run_in_order(self, worker):
        await worker.request_full_refresh()
        await worker.request_incremental({"tbl1": TableDiff(changed_ids=["rec1"])})
        await worker.wait_idle()
        stats = await worker.stats()
        assert (stats.full_refreshes, stats.incremental_updates) == (1, 1)

    async def test_stats_reply_type(self, worker):
        stats = await worker.send(StatsGet())
        assert isinstance(stats, WorkerStats)
        assert stats.running
        assert stats.in_progress is None
        assert stats.to_dict()["failures"] == 0

    async def test_unknown_message_rejected(self, worker):
        with pytest.raises(UnknownMessageError):
            await worker.send(_Bogus(reply=asyncio.get_running_loop().create_future()))

    async def test_message_without_reply_rejected(self, worker):
        with pytest.raises(UnknownMessageError):
            await worker.send("refresh please")

    async def test_unknown_kind_rejected(self, worker):
        with pytest.raises(UnknownMessageError):
            await worker.send(RefreshStart(kind="partial"))

    async def test_failure_recorded_and_worker_survives(self, worker):
        worker.refresh.fail_with = StoreUnavailableError("disk gone")
        await worker.request_full_refresh()
        await worker.wait_idle()
        stats = await worker.stats()
        assert stats.failures == 1
        assert "disk gone" in stats.last_error

        worker.refresh.fail_with = None
        await worker.request_full_refresh()
        await worker.wait_idle()
        assert (await worker.stats()).full_refreshes == 1

    async def test_stop_rejects_new_work(self, worker):
        assert isinstance(await worker.stop(), WorkerStopped)
        assert isinstance(await worker.request_full_refresh(), WorkerStopped)
        assert (await worker.stats()).stopping


@pytest.mark.unit
class TestScheduler:
    async def test_runs_immediately_and_on_interval(self):
        worker = RefreshWorker(_FakeRefresh(), _FakeReconciler(), interval=0.05)
        worker.start(schedule=True, run_immediately=True)
        try:
            await asyncio.sleep(0.13)
        finally:
            await worker.shutdown()
        assert worker.refresh.runs >= 2

    async def test_run_immediately_without_schedule(self):
        worker = RefreshWorker(_FakeRefresh(), _FakeReconciler(), interval=None)
        worker.start(schedule=False, run_immediately=True)
        await worker.wait_idle()
        await worker.shutdown()
        assert worker.refresh.runs == 1

    async def test_skipped_refresh_not_counted(self):
        refresh = _FakeRefresh()

        async def skipped():
            return RefreshStats(skipped=True)

        refresh.run = skipped
        worker = RefreshWorker(refresh, _FakeReconciler())
        worker.start(schedule=False)
        await worker.request_full_refresh()
        await worker.wait_idle()
        assert (await worker.stats()).full_refreshes == 0
        await worker.shutdown()
