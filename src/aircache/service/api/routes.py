"""
API route registration.

Registers all API endpoints with versioned prefix.
"""

from typing import TYPE_CHECKING

from aiohttp import web

from aircache.service.api.handlers.attachments import AttachmentsHandler
from aircache.service.api.handlers.health import HealthHandler
from aircache.service.api.handlers.refresh import RefreshHandler
from aircache.service.api.handlers.stats import StatsHandler
from aircache.service.api.handlers.tables import TablesHandler
from aircache.service.api.handlers.webhooks import WebhooksHandler

if TYPE_CHECKING:
    from aircache.service.server import AircacheService


def setup_routes(app: web.Application, service: "AircacheService") -> None:
    """
    Register all API routes.

    Args:
        app: aiohttp Application
        service: AircacheService instance for handler access
    """
    health = HealthHandler(service)
    tables = TablesHandler(service)
    stats = StatsHandler(service)
    refresh = RefreshHandler(service)
    attachments = AttachmentsHandler(service)
    webhooks = WebhooksHandler(service)

    # API version prefix
    prefix = "/api/v1"

    app.router.add_routes(
        [
            web.get("/health", health.health),
            web.get(f"{prefix}/health", health.health),
            # Tables and records
            web.get(f"{prefix}/tables", tables.list),
            web.get(f"{prefix}/tables/{{table}}", tables.records),
            web.get(f"{prefix}/tables/{{table}}/{{record_id}}", tables.record),
            web.get(f"{prefix}/mappings", tables.mappings),
            # Cache state
            web.get(f"{prefix}/stats", stats.stats),
            web.post(f"{prefix}/refresh", refresh.trigger),
            # Files
            web.get(f"{prefix}/attachments/{{attachment_id}}", attachments.download),
            # Webhook intake (signed, outside the bearer-token prefix)
            web.post("/webhooks/notifications", webhooks.notification),
        ]
    )
