"""
Full refresh: rebuild the inactive slot from the source and publish it.

    IDLE -> LOCKING -> CLEANING -> FETCHING <-> WRITING -> ATTACHMENT_SYNC -> FLIPPING -> DONE
                                   any infrastructure fault -> ERROR

Readers keep using the active slot throughout; they only see the new data
after the flip. A per-table fetch failure costs that table, not the run.
"""

from __future__ import annotations

import asyncio
import time

from aircache.core.types import RefreshState, RefreshStats, SlotId, TableMapping
from aircache.exceptions import LockError, SourceError
from aircache.source.client import Source
from aircache.source.mapping import sync_table_mappings
from aircache.storage.base import RecordStore
from aircache.sync.attachments import AttachmentPipeline
from aircache.sync.lock import LockCoordinator
from aircache.sync.version import VersionManager
from aircache.sync.writer import write_records
from aircache.utils.logging import get_logger

logger = get_logger("aircache.sync.refresh")

REFRESH_LOCK = "refresh"


class FullRefreshPipeline:
    """
    Orchestrates one full refresh under the ``refresh`` lock.

    Args:
        store: Record store
        source: Remote source
        versions: Active-slot pointer
        locks: Lock coordinator
        attachments: Optional attachment pipeline, run against the new slot before the flip
        batch_size: Records per batch write
        lock_ttl: Seconds before an abandoned lock expires
        sync_mappings: Refresh table mappings from the source before fetching
    """

    def __init__(
        self,
        store: RecordStore,
        source: Source,
        versions: VersionManager,
        locks: LockCoordinator,
        attachments: AttachmentPipeline | None = None,
        batch_size: int = 50,
        lock_ttl: int = 1800,
        sync_mappings: bool = True,
    ) -> None:
        self.store = store
        self.source = source
        self.versions = versions
        self.locks = locks
        self.attachments = attachments
        self.batch_size = batch_size
        self.lock_ttl = lock_ttl
        self.sync_mappings = sync_mappings
        self.state = RefreshState.IDLE
        self.last_stats: RefreshStats | None = None

    def _enter(self, state: RefreshState) -> None:
        logger.debug(f"Refresh state {self.state.value} -> {state.value}")
        self.state = state

    async def run(self) -> RefreshStats:
        """
        Run one full refresh.

        Returns:
            RefreshStats; ``skipped`` is True when another refresh holds the lock.

        Raises:
            StoreUnavailableError: The store failed; no flip happened.
        """
        started = time.monotonic()
        stats = RefreshStats()

        self._enter(RefreshState.LOCKING)
        token = await self.locks.acquire(REFRESH_LOCK, self.lock_ttl)
        if token is None:
            logger.info("Refresh already in progress elsewhere, skipping")
            self._enter(RefreshState.IDLE)
            stats.skipped = True
            return stats

        try:
            await self._refresh(stats)
            self._enter(RefreshState.DONE)
        except BaseException:
            self._enter(RefreshState.ERROR)
            raise
        finally:
            stats.duration = time.monotonic() - started
            try:
                await self.locks.release(REFRESH_LOCK, token)
            except LockError as e:
                # the lock expires on its own after lock_ttl
                logger.error(f"Releasing the refresh lock failed: {e}")

        self.last_stats = stats
        logger.info(
            f"Refresh complete in {stats.duration:.1f}s: {stats.tables} tables, {stats.records} records, "
            f"{stats.errors} errors, active slot now {stats.flipped_to.value if stats.flipped_to else '?'}"
        )
        return stats

    async def _tables(self) -> list[TableMapping]:
        if self.sync_mappings:
            try:
                await sync_table_mappings(self.source, self.store)
            except SourceError as e:
                logger.warning(f"Table mapping sync failed, continuing with stored mappings: {e}")
        return await self.store.list_tables()

    async def _refresh(self, stats: RefreshStats) -> None:
        tables = await self._tables()

        self._enter(RefreshState.CLEANING)
        target = await self.versions.clear_inactive()

        for mapping in tables:
            await self._refresh_table(target, mapping, stats)
            # let readers and webhook handlers run between tables
            await asyncio.sleep(0)

        if self.attachments is not None and self.attachments.enabled:
            self._enter(RefreshState.ATTACHMENT_SYNC)
            download = await self.attachments.download_pending(slot=target)
            stats.attachments = download.downloaded + download.skipped
            stats.attachment_errors = download.errors
            stats.errors += download.errors

        self._enter(RefreshState.FLIPPING)
        stats.flipped_to = await self.versions.flip()

    async def _refresh_table(self, target: SlotId, mapping: TableMapping, stats: RefreshStats) -> None:
        self._enter(RefreshState.FETCHING)
        try:
            records = await self.source.fetch_all_records(mapping.external_id)
        except SourceError as e:
            stats.errors += 1
            logger.error(f"Fetching table '{mapping.display_name}' ({mapping.external_id}) failed: {e}")
            return

        self._enter(RefreshState.WRITING)
        result = await write_records(self.store, target, mapping.normalized_name, records, self.batch_size)
        stats.records += result.written
        stats.errors += result.errors
        stats.tables += 1
        logger.info(f"Table '{mapping.normalized_name}': {result.written} records written, {result.errors} errors")
