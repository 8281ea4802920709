"""
Batched record writes with per-record fallback.
"""

from collections.abc import Sequence

from aircache.core.types import SlotId, SourceRecord, WriteResult
from aircache.exceptions import StoreError, StoreUnavailableError
from aircache.storage.base import RecordStore
from aircache.utils.logging import get_logger

logger = get_logger("aircache.sync.writer")


def chunked(items: Sequence, size: int) -> list[Sequence]:
    return [items[i : i + size] for i in range(0, len(items), size)]


async def write_records(
    store: RecordStore,
    slot: SlotId,
    table: str,
    records: Sequence[SourceRecord],
    batch_size: int = 50,
) -> WriteResult:
    """
    Write records in batches of ``batch_size``.

    A failed batch is retried one record at a time so a single bad record
    costs one error, not fifty. StoreUnavailableError is never counted; it
    propagates to the caller.
    """
    result = WriteResult()
    for batch in chunked(records, batch_size):
        try:
            await store.set_records_batch(slot, table, batch)
        except StoreUnavailableError:
            raise
        except StoreError as e:
            logger.warning(f"Batch write of {len(batch)} records to '{table}' failed ({e}), retrying individually")
            for record in batch:
                try:
                    await store.set_record(slot, table, record)
                except StoreUnavailableError:
                    raise
                except StoreError as record_error:
                    result.errors += 1
                    logger.error(f"Failed to write record {record.id} to '{table}': {record_error}")
                else:
                    result.written += 1
                    result.written_ids.append(record.id)
        else:
            result.written += len(batch)
            result.written_ids.extend(r.id for r in batch)
    return result
