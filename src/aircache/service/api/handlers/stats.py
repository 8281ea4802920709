"""
Cache statistics endpoint.
"""

from aiohttp import web

from aircache.service.api.handlers import BaseHandler


class StatsHandler(BaseHandler):
    async def stats(self, request: web.Request) -> web.Response:
        """
        GET /api/v1/stats

        Active slot counters plus the worker's last refresh results.
        """
        slot = await self.versions.get_active()
        data = {
            "active_slot": slot.value,
            "cache": await self.store.stats(slot),
            "worker": (await self.service.worker.stats()).to_dict(),
        }
        return await self.json_response(data, request=request)
