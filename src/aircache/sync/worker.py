"""
Refresh worker.

A single asyncio task owns the refresh pipelines and talks to the rest of
the process through a queue of messages. The protocol is closed:

    RefreshStart(kind)  -> RefreshAccepted | WorkerStopped
    RefreshStop         -> WorkerStopped
    StatsGet            -> WorkerStats

Anything else is answered with UnknownMessageError. A scheduler task posts
``RefreshStart("full")`` every refresh interval.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from aircache.core.types import IncrementalStats, RefreshStats, TableDiff
from aircache.exceptions import AircacheError, UnknownMessageError
from aircache.sync.incremental import IncrementalReconciler
from aircache.sync.refresh import FullRefreshPipeline
from aircache.utils.logging import get_logger

logger = get_logger("aircache.sync.worker")

RefreshKind = Literal["full", "incremental"]


def _reply_future() -> asyncio.Future:
    return asyncio.get_running_loop().create_future()


# --- messages ----------------------------------------------------------------


@dataclass
class RefreshStart:
    kind: RefreshKind = "full"
    diffs: dict[str, TableDiff] | None = None
    reply: asyncio.Future = field(default_factory=_reply_future)


@dataclass
class RefreshStop:
    reply: asyncio.Future = field(default_factory=_reply_future)


@dataclass
class StatsGet:
    reply: asyncio.Future = field(default_factory=_reply_future)


WorkerMessage = Union[RefreshStart, RefreshStop, StatsGet]


@dataclass
class _Job:
    kind: RefreshKind
    diffs: dict[str, TableDiff] | None = None


# --- replies -----------------------------------------------------------------


@dataclass
class RefreshAccepted:
    kind: RefreshKind
    queued: int


@dataclass
class WorkerStopped:
    pass


@dataclass
class WorkerStats:
    running: bool
    stopping: bool
    in_progress: RefreshKind | None
    full_refreshes: int
    incremental_updates: int
    failures: int
    last_refresh: dict[str, Any] | None
    last_incremental: dict[str, Any] | None
    last_error: str | None
    last_refresh_at: float | None
    next_refresh_at: float | None

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


class RefreshWorker:
    """
    Serializes full and incremental refreshes in one task.

    Args:
        refresh: Full refresh pipeline
        reconciler: Incremental reconciler
        interval: Seconds between scheduled full refreshes (None disables the scheduler)
    """

    def __init__(
        self,
        refresh: FullRefreshPipeline,
        reconciler: IncrementalReconciler,
        interval: float | None = None,
    ) -> None:
        self.refresh = refresh
        self.reconciler = reconciler
        self.interval = interval

        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._jobs: asyncio.Queue[_Job] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._stopping = asyncio.Event()
        self._in_progress: RefreshKind | None = None
        self._full_refreshes = 0
        self._incremental_updates = 0
        self._failures = 0
        self._last_refresh: RefreshStats | None = None
        self._last_incremental: IncrementalStats | None = None
        self._last_error: str | None = None
        self._last_refresh_at: float | None = None
        self._next_refresh_at: float | None = None

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self, *, schedule: bool = True, run_immediately: bool = False) -> None:
        """Start the mailbox, job runner and (optionally) scheduler tasks."""
        if self.running:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._mailbox_loop(), name="aircache-worker-mailbox"),
            asyncio.create_task(self._job_loop(), name="aircache-worker-jobs"),
        ]
        if schedule and self.interval:
            self._tasks.append(
                asyncio.create_task(self._schedule_loop(run_immediately), name="aircache-worker-scheduler")
            )
        elif run_immediately:
            self._jobs.put_nowait(_Job("full"))
        logger.info(f"Refresh worker started (interval: {self.interval or 'disabled'})")

    async def shutdown(self, timeout: float | None = None) -> None:
        """Stop accepting work, let the current job finish, then cancel the tasks."""
        self._stopping.set()
        if self._in_progress is not None and timeout:
            deadline = time.monotonic() + timeout
            while self._in_progress is not None and time.monotonic() < deadline:
                await asyncio.sleep(0.05)
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # --- public API ----------------------------------------------------------

    async def send(self, message: WorkerMessage) -> Any:
        """Post a message and wait for its reply."""
        reply = getattr(message, "reply", None)
        if not isinstance(reply, asyncio.Future):
            raise UnknownMessageError(message)
        await self._queue.put(message)
        return await reply

    async def request_full_refresh(self) -> RefreshAccepted | WorkerStopped:
        return await self.send(RefreshStart("full"))

    async def request_incremental(self, diffs: dict[str, TableDiff]) -> RefreshAccepted | WorkerStopped:
        return await self.send(RefreshStart("incremental", diffs=diffs))

    async def stop(self) -> WorkerStopped:
        return await self.send(RefreshStop())

    async def stats(self) -> WorkerStats:
        return await self.send(StatsGet())

    # --- loops ---------------------------------------------------------------

    def _handle(self, message: Any) -> Any:
        if isinstance(message, RefreshStart):
            if self._stopping.is_set():
                return WorkerStopped()
            if message.kind not in ("full", "incremental"):
                raise UnknownMessageError(message)
            if message.kind == "incremental" and not message.diffs:
                return RefreshAccepted(kind="incremental", queued=self._jobs.qsize())
            self._jobs.put_nowait(_Job(message.kind, message.diffs))
            return RefreshAccepted(kind=message.kind, queued=self._jobs.qsize())
        if isinstance(message, RefreshStop):
            self._stopping.set()
            return WorkerStopped()
        if isinstance(message, StatsGet):
            return self._snapshot()
        raise UnknownMessageError(message)

    async def _mailbox_loop(self) -> None:
        while True:
            message = await self._queue.get()
            reply = getattr(message, "reply", None)
            try:
                result = self._handle(message)
            except UnknownMessageError as e:
                logger.error(str(e))
                if reply is not None and not reply.done():
                    reply.set_exception(e)
                continue
            if reply is not None and not reply.done():
                reply.set_result(result)

    async def _job_loop(self) -> None:
        while True:
            job = await self._jobs.get()
            try:
                await self._run_job(job)
            finally:
                self._jobs.task_done()

    async def _run_job(self, job: _Job) -> None:
        if self._stopping.is_set():
            return
        self._in_progress = job.kind
        try:
            if job.kind == "full":
                stats = await self.refresh.run()
                if not stats.skipped:
                    self._full_refreshes += 1
                    self._last_refresh = stats
                    self._last_refresh_at = time.time()
            else:
                self._last_incremental = await self.reconciler.apply(job.diffs or {})
                self._incremental_updates += 1
        except Exception as e:
            self._failures += 1
            self._last_error = f"{type(e).__name__}: {e}"
            logger.error(f"{job.kind.capitalize()} refresh failed: {e}", exc_info=not isinstance(e, AircacheError))
        finally:
            self._in_progress = None

    async def wait_idle(self) -> None:
        """Block until every queued job has run."""
        await self._jobs.join()

    async def _schedule_loop(self, run_immediately: bool) -> None:
        assert self.interval
        if not run_immediately:
            self._next_refresh_at = time.time() + self.interval
            await self._sleep_or_stop(self.interval)
        while not self._stopping.is_set():
            self._jobs.put_nowait(_Job("full"))
            self._next_refresh_at = time.time() + self.interval
            await self._sleep_or_stop(self.interval)

    async def _sleep_or_stop(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _snapshot(self) -> WorkerStats:
        return WorkerStats(
            running=self.running,
            stopping=self._stopping.is_set(),
            in_progress=self._in_progress,
            full_refreshes=self._full_refreshes,
            incremental_updates=self._incremental_updates,
            failures=self._failures,
            last_refresh=self._last_refresh.to_dict() if self._last_refresh else None,
            last_incremental=self._last_incremental.to_dict() if self._last_incremental else None,
            last_error=self._last_error,
            last_refresh_at=self._last_refresh_at,
            next_refresh_at=self._next_refresh_at,
        )
