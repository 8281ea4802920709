"""
Attachment file download.
"""

from aiohttp import web

from aircache.service.api.errors import ErrorCode, NotFoundError
from aircache.service.api.handlers import BaseHandler


class AttachmentsHandler(BaseHandler):
    async def download(self, request: web.Request) -> web.StreamResponse:
        """
        GET /api/v1/attachments/{attachment_id}

        404 unless the attachment is in the active slot and on disk.
        """
        attachment_id = request.match_info["attachment_id"]
        slot = await self.versions.get_active()
        attachment = await self.store.get_attachment(slot, attachment_id)
        if attachment is None or not attachment.downloaded or not attachment.local_path:
            raise NotFoundError("Attachment", attachment_id, ErrorCode.ATTACHMENT_NOT_FOUND)

        path = self.service.attachments.absolute_path(attachment.local_path)
        if not path.is_file():
            raise NotFoundError("Attachment", attachment_id, ErrorCode.ATTACHMENT_NOT_FOUND)

        headers = {"Content-Disposition": f'inline; filename="{path.name}"'}
        if attachment.content_type:
            headers["Content-Type"] = attachment.content_type
        request_id = self.get_request_id(request)
        if request_id:
            headers["X-Request-ID"] = request_id
        return web.FileResponse(path, headers=headers)
