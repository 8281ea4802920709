"""
Attachment download pipeline.

Downloads every pending attachment of a slot to a deterministic path under
the storage root::

    {table}/{record}/{field}/{sanitized name}_{urlhash8}{ext}

Work runs in fixed-size waves of at most ``concurrency`` downloads. A file
already on disk with the expected size is marked downloaded without a
fetch, so re-running after an interruption only fetches what is missing.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Protocol, TypeVar

import aiofiles
import aiofiles.os
import aiohttp

from aircache.core.types import Attachment, DownloadStats, SlotId
from aircache.exceptions import AttachmentDownloadError, StoreUnavailableError
from aircache.storage.base import RecordStore
from aircache.sync.version import VersionManager
from aircache.utils.logging import get_logger
from aircache.utils.naming import attachment_relative_path

logger = get_logger("aircache.sync.attachments")

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 5
CHUNK_SIZE = 64 * 1024


class AttachmentFetcher(Protocol):
    async def fetch(self, url: str, destination: Path) -> int:
        """Write the resource at ``url`` to ``destination``; return bytes written."""
        ...


class HttpAttachmentFetcher:
    """
    Streams attachments over HTTP into ``<destination>.part`` and renames
    the file into place once complete.
    """

    def __init__(self, timeout: int = 300, session: aiohttp.ClientSession | None = None) -> None:
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch(self, url: str, destination: Path) -> int:
        session = await self._get_session()
        tmp_path = destination.with_name(destination.name + ".part")
        written = 0
        try:
            async with session.get(url) as response:
                if response.status < 200 or response.status >= 300:
                    raise AttachmentDownloadError(
                        f"GET {url} returned {response.status}",
                        attachment_id=destination.name,
                        url=url,
                    )
                async with aiofiles.open(tmp_path, "wb") as f:
                    async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                        await f.write(chunk)
                        written += len(chunk)
            await aiofiles.os.replace(tmp_path, destination)
        except BaseException:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.remove(tmp_path)
            raise
        return written


class BoundedWorkerPool:
    """
    Runs a coroutine over items in waves of ``concurrency``.

    Each wave finishes completely before the next starts. Results keep the
    input order; a failed item yields its exception instead of a result.
    """

    def __init__(self, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency

    async def run(self, items: Sequence[T], worker: Callable[[T], Awaitable[R]]) -> list[R | BaseException]:
        results: list[R | BaseException] = []
        for start in range(0, len(items), self.concurrency):
            wave = items[start : start + self.concurrency]
            results.extend(await asyncio.gather(*(worker(item) for item in wave), return_exceptions=True))
        return results


class AttachmentPipeline:
    """
    Downloads pending attachments for one slot.

    Args:
        store: Record store holding attachment rows
        versions: Used to pick the active slot when none is given
        storage_path: Root directory for downloaded files
        fetcher: Downloader (default: HttpAttachmentFetcher)
        concurrency: Default wave size
        enabled: When False, download_pending does nothing
    """

    def __init__(
        self,
        store: RecordStore,
        versions: VersionManager,
        storage_path: str | Path,
        fetcher: AttachmentFetcher | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        enabled: bool = True,
    ) -> None:
        self.store = store
        self.versions = versions
        self.storage_path = Path(storage_path)
        self.fetcher = fetcher or HttpAttachmentFetcher()
        self.concurrency = concurrency
        self.enabled = enabled

    def relative_path(self, attachment: Attachment) -> str:
        return attachment_relative_path(
            attachment.table_name,
            attachment.record_id,
            attachment.field_name,
            attachment.filename,
            attachment.original_url,
            attachment.id,
        )

    def absolute_path(self, relative_path: str) -> Path:
        return self.storage_path.joinpath(*relative_path.split("/"))

    async def download_pending(self, slot: SlotId | None = None, concurrency: int | None = None) -> DownloadStats:
        """
        Download every pending attachment of ``slot`` (the active slot when None).

        Per-attachment failures are counted in ``errors`` and do not stop the
        run. A store outage propagates.
        """
        stats = DownloadStats()
        if not self.enabled:
            logger.debug("Attachment download disabled")
            return stats

        target = slot or await self.versions.get_active()
        pending = await self.store.get_pending_attachments(target)
        if not pending:
            return stats

        pool = BoundedWorkerPool(concurrency or self.concurrency)
        logger.info(f"Processing {len(pending)} pending attachments in slot {target.value} (concurrency {pool.concurrency})")

        async def _work(attachment: Attachment) -> str:
            return await self._process(target, attachment)

        results = await pool.run(pending, _work)
        for attachment, outcome in zip(pending, results):
            if isinstance(outcome, StoreUnavailableError):
                raise outcome
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                stats.errors += 1
                stats.error_details.append(
                    {"attachment_id": attachment.id, "url": attachment.original_url, "error": str(outcome)}
                )
                logger.error(f"Attachment {attachment.id} failed: {outcome}")
            elif outcome == "skipped":
                stats.skipped += 1
            else:
                stats.downloaded += 1

        logger.info(
            f"Attachments in slot {target.value}: {stats.downloaded} downloaded, "
            f"{stats.skipped} already present, {stats.errors} errors"
        )
        return stats

    async def _existing_size(self, path: Path) -> int | None:
        if not await aiofiles.os.path.exists(path):
            return None
        return (await aiofiles.os.stat(path)).st_size

    async def _process(self, slot: SlotId, attachment: Attachment) -> str:
        relative = self.relative_path(attachment)
        path = self.absolute_path(relative)

        size = await self._existing_size(path)
        if size is not None:
            complete = size == attachment.expected_size if attachment.expected_size is not None else size > 0
            if complete:
                await self.store.mark_attachment_downloaded(slot, attachment.id, relative, size)
                return "skipped"
            logger.info(
                f"Attachment {attachment.id} on disk has {size} bytes, expected {attachment.expected_size}; re-downloading"
            )
            await aiofiles.os.remove(path)

        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        try:
            written = await self.fetcher.fetch(attachment.original_url, path)
        except AttachmentDownloadError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise AttachmentDownloadError(
                f"Download of {attachment.id} failed: {e}",
                attachment_id=attachment.id,
                url=attachment.original_url,
            ) from e
        await self.store.mark_attachment_downloaded(slot, attachment.id, relative, written)
        return "downloaded"

