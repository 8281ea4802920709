"""
Client for the Airtable REST API.

Covers what the cache needs: table metadata, paginated record listing,
batched lookups by record id, and webhook payload listing. Requests are
rate limited with a token bucket (Airtable allows 5 req/s per base) and
retried on 429/5xx through the shared RetryManager.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from typing import Any, Protocol

import aiohttp

from aircache.core.retry import SOURCE_RETRY_POLICY, RetryManager, RetryPolicy
from aircache.core.types import SourceRecord
from aircache.exceptions import SourceError, SourceRequestError
from aircache.utils.logging import get_logger

logger = get_logger("aircache.source.client")

PAGE_SIZE = 100
# ids per filterByFormula query; keeps the URL well under Airtable's 16k limit
IDS_PER_QUERY = 100
MAX_PAYLOAD_PAGES = 20


class Source(Protocol):
    """What the pipelines need from the remote side."""

    async def list_tables(self) -> list[dict[str, Any]]:
        ...

    async def fetch_all_records(self, table_id: str) -> list[SourceRecord]:
        ...

    async def fetch_records_by_ids(self, table_id: str, record_ids: Sequence[str]) -> list[SourceRecord]:
        ...


class TokenBucket:
    """
    Token bucket rate limiter.

    Example:
        bucket = TokenBucket(rate=5, interval=1.0)  # 5 requests per second
        await bucket.acquire()
    """

    def __init__(self, rate: float, interval: float = 1.0):
        if rate <= 0:
            raise ValueError("rate must be > 0")
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.rate = rate
        self.interval = interval
        self.tokens = float(rate)
        self.last_refill = time.monotonic()
        self.lock = asyncio.Lock()
        self.refill_rate = rate / interval

    async def acquire(self) -> None:
        """Take one token, waiting for a refill when the bucket is empty."""
        while True:
            async with self.lock:
                now = time.monotonic()
                elapsed = now - self.last_refill
                self.tokens = min(self.rate, self.tokens + elapsed * self.refill_rate)
                self.last_refill = now

                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return

                wait_time = (1.0 - self.tokens) / self.refill_rate

            # wait outside the lock so other tasks can refill and check
            await asyncio.sleep(min(wait_time * 1.01, 0.1))


def record_id_formula(record_ids: Sequence[str]) -> str:
    """``OR(RECORD_ID()='rec1',RECORD_ID()='rec2')``."""
    clauses = ",".join(f"RECORD_ID()='{rid}'" for rid in record_ids)
    return f"OR({clauses})"


class AirtableClient:
    """
    Async Airtable API client bound to one base.

    Example:
        ```python
        async with AirtableClient(token, "appXXXX") as client:
            tables = await client.list_tables()
            records = await client.fetch_all_records(tables[0]["id"])
        ```
    """

    def __init__(
        self,
        token: str,
        base_id: str,
        api_url: str = "https://api.airtable.com",
        rate_limit: float | None = 5.0,
        max_concurrent: int = 5,
        timeout: int = 60,
        retry_policy: RetryPolicy | None = None,
        retry_manager: RetryManager | None = None,
    ):
        self.token = token
        self.base_id = base_id
        self.api_url = api_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.retry_policy = retry_policy or SOURCE_RETRY_POLICY
        self.retry_manager = retry_manager or RetryManager()
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.token_bucket = TokenBucket(rate=rate_limit) if rate_limit else None

        self.session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self.session is None or self.session.closed:
                self.session = aiohttp.ClientSession(
                    timeout=self.timeout,
                    headers={"Authorization": f"Bearer {self.token}"},
                )
            return self.session

    async def __aenter__(self) -> "AirtableClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        async with self._session_lock:
            if self.session and not self.session.closed:
                await self.session.close()
            self.session = None

    async def _request_once(self, method: str, path: str, params: dict[str, Any] | None) -> dict[str, Any]:
        session = await self._ensure_session()
        url = f"{self.api_url}{path}"
        async with self.semaphore:
            if self.token_bucket:
                await self.token_bucket.acquire()
            async with session.request(method, url, params=params) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise SourceRequestError(
                        f"{method} {path} returned {response.status}: {body[:200]}",
                        status=response.status,
                        url=url,
                    )
                return await response.json()

    async def request(self, method: str, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Perform one API call with retries.

        Raises:
            SourceRequestError: Non-2xx response after retries
            SourceError: Transport failure after retries
        """
        try:
            return await self.retry_manager.execute(
                self._request_once,
                method,
                path,
                params,
                policy=self.retry_policy,
                operation=f"{method} {path}",
            )
        except SourceError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SourceError(f"{method} {path} failed: {e}", details={"path": path}) from e

    # --- metadata ------------------------------------------------------------

    async def list_tables(self) -> list[dict[str, Any]]:
        """Tables of the base with their fields (``GET /v0/meta/bases/{base}/tables``)."""
        data = await self.request("GET", f"/v0/meta/bases/{self.base_id}/tables")
        return list(data.get("tables") or [])

    # --- records -------------------------------------------------------------

    async def _paginate(self, table_id: str, params: dict[str, Any]) -> list[SourceRecord]:
        records: list[SourceRecord] = []
        offset: str | None = None
        while True:
            page_params = dict(params, pageSize=PAGE_SIZE)
            if offset:
                page_params["offset"] = offset
            data = await self.request("GET", f"/v0/{self.base_id}/{table_id}", params=page_params)
            records.extend(SourceRecord.from_api(item) for item in data.get("records") or [])
            offset = data.get("offset")
            if not offset:
                return records

    async def fetch_all_records(self, table_id: str) -> list[SourceRecord]:
        records = await self._paginate(table_id, {})
        logger.debug(f"Fetched {len(records)} records from {table_id}")
        return records

    async def fetch_records_by_ids(self, table_id: str, record_ids: Sequence[str]) -> list[SourceRecord]:
        """
        Fetch specific records with a ``filterByFormula`` query.

        Long id lists are split so each query URL stays within limits.
        """
        records: list[SourceRecord] = []
        for start in range(0, len(record_ids), IDS_PER_QUERY):
            chunk = record_ids[start : start + IDS_PER_QUERY]
            records.extend(await self._paginate(table_id, {"filterByFormula": record_id_formula(chunk)}))
        return records

    # --- webhooks ------------------------------------------------------------

    async def list_webhook_payloads(
        self, webhook_id: str, cursor: int | None = None
    ) -> tuple[list[dict[str, Any]], int | None]:
        """
        All payloads after ``cursor`` plus the cursor to resume from next time.

        Follows ``mightHaveMore``.

        Stops after 20 pages to bound one notification's work.
        """
        payloads: list[dict[str, Any]] = []
        for _ in range(MAX_PAYLOAD_PAGES):
            params = {"cursor": cursor} if cursor is not None else None
            data = await self.request("GET", f"/v0/bases/{self.base_id}/webhooks/{webhook_id}/payloads", params=params)
            payloads.extend(data.get("payloads") or [])
            cursor = data.get("cursor", cursor)
            if not data.get("mightHaveMore"):
                break
        else:
            logger.warning(f"Webhook {webhook_id} still has payloads after {MAX_PAYLOAD_PAGES} pages, stopping")
        return payloads, cursor
