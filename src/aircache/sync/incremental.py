"""
Incremental reconciliation of webhook diffs into the active slot.

No lock is taken: a reconciliation racing a full refresh writes to the
slot that is active when it starts, and the next refresh reconverges.
"""

from __future__ import annotations

import time
from collections.abc import Mapping

from aircache.core.types import IncrementalStats, TableDiff
from aircache.exceptions import SourceError, StoreError, StoreUnavailableError
from aircache.source.client import Source
from aircache.storage.base import RecordStore
from aircache.sync.version import VersionManager
from aircache.sync.writer import write_records
from aircache.utils.logging import get_logger

logger = get_logger("aircache.sync.incremental")


class IncrementalReconciler:
    """Applies ``{external table id: TableDiff}`` to the active slot."""

    def __init__(self, store: RecordStore, source: Source, versions: VersionManager, batch_size: int = 50) -> None:
        self.store = store
        self.source = source
        self.versions = versions
        self.batch_size = batch_size

    async def apply(self, diffs: Mapping[str, TableDiff]) -> IncrementalStats:
        """
        Upsert created/changed records and delete destroyed ones.

        Tables without a mapping are skipped with a warning. Source failures
        cost the table; store outages propagate.
        """
        started = time.monotonic()
        stats = IncrementalStats()
        slot = await self.versions.get_active()

        for external_id, diff in diffs.items():
            mapping = await self.store.resolve_table(external_id)
            if mapping is None:
                stats.tables_skipped += 1
                logger.warning(f"No table mapping for {external_id}, skipping its changes")
                continue

            table = mapping.normalized_name
            upsert_ids = diff.upsert_ids
            if upsert_ids:
                try:
                    records = await self.source.fetch_records_by_ids(external_id, upsert_ids)
                except SourceError as e:
                    stats.errors += 1
                    logger.error(f"Fetching changed records for '{table}' failed: {e}")
                    records = []

                result = await write_records(self.store, slot, table, records, self.batch_size)
                stats.errors += result.errors
                created = set(diff.created_ids)
                for record_id in result.written_ids:
                    if record_id in created:
                        stats.records_created += 1
                    else:
                        stats.records_updated += 1

            for record_id in diff.destroyed_ids:
                try:
                    await self.store.delete_record(slot, table, record_id)
                    stats.records_deleted += 1
                except StoreUnavailableError:
                    raise
                except StoreError as e:
                    stats.errors += 1
                    logger.error(f"Deleting {record_id} from '{table}' failed: {e}")

            stats.tables += 1

        stats.duration = time.monotonic() - started
        logger.info(
            f"Incremental update on slot {slot.value}: +{stats.records_created} ~{stats.records_updated} "
            f"-{stats.records_deleted} across {stats.tables} tables ({stats.tables_skipped} skipped, "
            f"{stats.errors} errors)"
        )
        return stats
