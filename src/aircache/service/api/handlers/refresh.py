"""
Manual refresh trigger.
"""

import json

from aiohttp import web

from aircache.service.api.errors import APIError, ErrorCode, ValidationError
from aircache.service.api.handlers import BaseHandler
from aircache.sync.worker import WorkerStopped
from aircache.utils.logging import get_logger

logger = get_logger("aircache.api.refresh")


class RefreshHandler(BaseHandler):
    async def trigger(self, request: web.Request) -> web.Response:
        """
        POST /api/v1/refresh

        Queues a full refresh and returns 202. Body is optional;
        ``{"type": "full"}`` is the only accepted type.
        """
        body = {}
        if request.can_read_body:
            text = await request.text()
            if text.strip():
                body = json.loads(text)
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")

        refresh_type = body.get("type", "full")
        if refresh_type != "full":
            raise ValidationError(
                "Only full refreshes can be triggered manually",
                details={"type": refresh_type},
            )

        reply = await self.service.worker.request_full_refresh()
        if isinstance(reply, WorkerStopped):
            raise APIError(
                code=ErrorCode.SERVICE_UNAVAILABLE,
                message="Refresh worker is stopping",
                status=503,
            )
        logger.info(f"Manual full refresh queued ({reply.queued} jobs waiting)")
        return await self.json_response(
            {"status": "accepted", "type": "full", "queued": reply.queued},
            status=202,
            request=request,
        )
