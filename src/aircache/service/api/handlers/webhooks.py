"""
Webhook notification receiver.
"""

from aiohttp import web

from aircache.exceptions import WebhookValidationError
from aircache.service.api.errors import APIError, ErrorCode
from aircache.service.api.handlers import BaseHandler
from aircache.service.webhooks import SIGNATURE_HEADER, check_timestamp, is_ping, parse_body, verify_signature
from aircache.utils.logging import get_logger

logger = get_logger("aircache.api.webhooks")


class WebhooksHandler(BaseHandler):
    async def notification(self, request: web.Request) -> web.Response:
        """
        POST /webhooks/notifications

        Pings are acknowledged without a signature. Everything else must
        carry a valid HMAC and a fresh timestamp, and name the configured
        webhook.
        """
        settings = self.service.settings.webhooks
        if not settings.enabled:
            raise APIError(code=ErrorCode.SERVICE_UNAVAILABLE, message="Webhooks are not enabled", status=503)

        body = await request.read()
        try:
            payload = parse_body(body)
            if is_ping(payload):
                logger.info("Webhook verification ping received")
                return await self.json_response({"status": "ok"}, request=request)

            verify_signature(settings.secret or "", body, request.headers.get(SIGNATURE_HEADER))
            check_timestamp(payload, settings.timestamp_window)
            result = await self.service.processor.handle(payload)
        except WebhookValidationError as e:
            logger.warning(f"Rejected webhook notification: {e.message}")
            raise APIError(
                code=ErrorCode.WEBHOOK_REJECTED,
                message=e.message,
                status=401,
                details=e.details,
            ) from e
        return await self.json_response(result, request=request)
