"""
Health endpoint.
"""

import time

from aiohttp import web

from aircache import __version__
from aircache.service.api.handlers import BaseHandler


class HealthHandler(BaseHandler):
    """Handler for the health check endpoint."""

    def __init__(self, service):
        super().__init__(service)
        self._start_time = time.time()

    async def health(self, request: web.Request) -> web.Response:
        """
        GET /health

        200 when the store answers, 503 otherwise.
        """
        store_ok = await self.store.health_check()
        data = {
            "status": "ok" if store_ok else "degraded",
            "version": __version__,
            "uptime_seconds": round(time.time() - self._start_time, 2),
            "store": "connected" if store_ok else "unavailable",
            "worker_running": self.service.worker.running,
        }
        return await self.json_response(data, status=200 if store_ok else 503, request=request)
