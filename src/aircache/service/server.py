"""
Aircache HTTP service.

Wires the store, source client, pipelines and refresh worker together and
serves the cache over aiohttp.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from aiohttp import web

from aircache.config import CacheSettings, load_config
from aircache.core.retry import STORE_CONNECT_RETRY_POLICY, RetryManager
from aircache.exceptions import ConfigurationError, SourceError
from aircache.service.api.middleware.auth import AuthConfig, setup_auth
from aircache.service.api.middleware.error import error_middleware
from aircache.service.api.routes import setup_routes
from aircache.service.webhooks import WebhookProcessor
from aircache.source.client import AirtableClient, Source
from aircache.source.mapping import sync_table_mappings
from aircache.storage import create_store
from aircache.storage.base import RecordStore
from aircache.sync.attachments import AttachmentFetcher, AttachmentPipeline, HttpAttachmentFetcher
from aircache.sync.incremental import IncrementalReconciler
from aircache.sync.lock import LockCoordinator
from aircache.sync.refresh import FullRefreshPipeline
from aircache.sync.version import VersionManager
from aircache.sync.worker import RefreshWorker
from aircache.utils.logging import get_logger, setup_logging_from_config

logger = get_logger("aircache.service")

SHUTDOWN_TIMEOUT = 30.0


class AircacheService:
    """
    Owns every engine component for one process.

    Args:
        settings: Resolved runtime settings
        store: Record store (default: built from ``settings.storage``); it
            must also implement KeyValueStore
        source: Remote source (default: AirtableClient from ``settings.source``)
        fetcher: Attachment downloader (default: HttpAttachmentFetcher)
    """

    def __init__(
        self,
        settings: CacheSettings,
        *,
        store: RecordStore | None = None,
        source: Source | None = None,
        fetcher: AttachmentFetcher | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or create_store(settings.storage)
        if source is None:
            settings.require_source()
            source = AirtableClient(
                token=settings.source.token,
                base_id=settings.source.base_id,
                api_url=settings.source.api_url,
                rate_limit=settings.source.rate_limit,
                timeout=settings.source.timeout,
            )
        self.source = source

        self.versions = VersionManager(self.store, self.store)
        self.locks = LockCoordinator(self.store)
        self.attachments = AttachmentPipeline(
            self.store,
            self.versions,
            storage_path=settings.attachments.storage_path,
            fetcher=fetcher or HttpAttachmentFetcher(),
            concurrency=settings.attachments.concurrency,
            enabled=settings.attachments.enabled,
        )
        self.refresh = FullRefreshPipeline(
            self.store,
            self.source,
            self.versions,
            self.locks,
            attachments=self.attachments,
            batch_size=settings.batch_size,
            lock_ttl=settings.lock_ttl,
        )
        self.reconciler = IncrementalReconciler(self.store, self.source, self.versions, batch_size=settings.batch_size)
        self.worker = RefreshWorker(self.refresh, self.reconciler, interval=settings.effective_refresh_interval)
        self.processor = WebhookProcessor(
            self.store,
            self.worker,
            payloads=self.source if hasattr(self.source, "list_webhook_payloads") else None,
            idempotency_ttl=settings.webhooks.idempotency_ttl,
            webhook_id=settings.webhooks.webhook_id,
        )

    @classmethod
    def from_config_file(
        cls, config_path: Path | None = None, env: str | None = None, verbose: bool = False
    ) -> AircacheService:
        config = load_config(config_path, env)
        setup_logging_from_config(config.section("logging"), verbose=verbose)
        settings = CacheSettings.from_config(config)
        logger.info(f"Loaded settings: {describe(settings)}")
        return cls(settings)

    async def __aenter__(self) -> AircacheService:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def connect(self) -> None:
        """Connect the store, retrying transient failures."""
        await RetryManager().execute(self.store.connect, policy=STORE_CONNECT_RETRY_POLICY, operation="store connect")

    async def start(self, *, schedule: bool = True, run_on_startup: bool = True) -> None:
        """
        Connect, sync table mappings and start the refresh worker.

        Mappings are synced before any webhook is handled so incremental
        diffs resolve from the first notification on. A failed sync is
        logged and the stored mappings stay in use.
        """
        await self.connect()
        try:
            await sync_table_mappings(self.source, self.store)
        except SourceError as e:
            logger.warning(f"Table mapping sync at startup failed, using stored mappings: {e}")
        self.worker.start(schedule=schedule, run_immediately=run_on_startup)

    async def stop(self) -> None:
        await self.worker.shutdown(timeout=SHUTDOWN_TIMEOUT)
        for component in (self.source, self.attachments.fetcher):
            close = getattr(component, "close", None)
            if close is not None:
                await close()
        await self.store.close()
        logger.info("Aircache service stopped")


def build_app(service: AircacheService, *, schedule: bool = True, run_on_startup: bool = True) -> web.Application:
    """
    Create the aiohttp application for ``service``.

    The service starts with the app and stops on cleanup.
    """
    app = web.Application(middlewares=[error_middleware])
    setup_auth(app, AuthConfig(tokens=[service.settings.service.bearer_token or ""]))
    setup_routes(app, service)
    app["service"] = service

    async def on_startup(app: web.Application) -> None:
        await service.start(schedule=schedule, run_on_startup=run_on_startup)

    async def on_cleanup(app: web.Application) -> None:
        await service.stop()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


def run_service(
    *,
    config_path: Path | None = None,
    env: str | None = None,
    host: str | None = None,
    port: int | None = None,
    verbose: bool = False,
    enable_scheduler: bool = True,
    run_on_startup: bool = True,
) -> None:
    """
    Run the Aircache service (blocking).

    Args:
        config_path: Path to config.yaml (default: ./config.yaml if present)
        env: Environment overlay name (dev, staging, prod)
        host: Host to bind to (default from settings)
        port: Port to bind to (default from settings)
        verbose: Enable verbose logging
        enable_scheduler: Run the periodic full refresh
        run_on_startup: Queue a full refresh as soon as the service starts
    """
    try:
        svc = AircacheService.from_config_file(config_path, env, verbose=verbose)
    except ConfigurationError as e:
        raise RuntimeError(f"Initialization failed: {e}") from None

    host = host or svc.settings.service.host
    port = port or svc.settings.service.port
    app = build_app(svc, schedule=enable_scheduler, run_on_startup=run_on_startup)

    async def announce(app: web.Application) -> None:
        logger.info(f"Aircache service started on http://{host}:{port}")
        logger.info(f"API available at http://{host}:{port}/api/v1/")

    app.on_startup.append(announce)
    web.run_app(app, host=host, port=port, access_log=None)


def describe(settings: CacheSettings) -> dict[str, Any]:
    """Non-secret summary of the settings, for startup logs and the CLI."""
    return {
        "storage": settings.storage.backend,
        "refresh_interval": settings.effective_refresh_interval,
        "batch_size": settings.batch_size,
        "lock_ttl": settings.lock_ttl,
        "attachments": settings.attachments.enabled,
        "webhooks": settings.webhooks.enabled,
        "auth": bool(settings.service.bearer_token),
    }
