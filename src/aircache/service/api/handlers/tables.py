"""
Table, record and mapping endpoints.

Reads always go to the active slot.
"""

from aiohttp import web

from aircache.service.api.errors import ErrorCode, NotFoundError
from aircache.service.api.handlers import BaseHandler

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000


class TablesHandler(BaseHandler):
    """Handler for cached tables and records."""

    async def list(self, request: web.Request) -> web.Response:
        """
        GET /api/v1/tables

        Tables with data in the active slot, with record counts.
        """
        slot = await self.versions.get_active()
        mappings = {m.normalized_name: m for m in await self.store.list_tables()}
        tables = []
        for name in await self.store.list_table_names(slot):
            mapping = mappings.get(name)
            tables.append(
                {
                    "name": name,
                    "display_name": mapping.display_name if mapping else name,
                    "external_id": mapping.external_id if mapping else None,
                    "records": await self.store.count_records(slot, name),
                }
            )
        return await self.json_response({"slot": slot.value, "tables": tables}, request=request)

    async def records(self, request: web.Request) -> web.Response:
        """
        GET /api/v1/tables/{table}

        Query params: limit (default 100, max 1000), offset.
        """
        table = await self.resolve_table_name(request.match_info["table"])
        limit = self.int_param(request, "limit", DEFAULT_PAGE_SIZE, minimum=1, maximum=MAX_PAGE_SIZE)
        offset = self.int_param(request, "offset", 0)

        slot = await self.versions.get_active()
        records = await self.store.list_records(slot, table, limit=limit, offset=offset)
        total = await self.store.count_records(slot, table)
        return await self.json_response(
            {
                "table": table,
                "records": records,
                "total": total,
                "limit": limit,
                "offset": offset,
            },
            request=request,
        )

    async def record(self, request: web.Request) -> web.Response:
        """GET /api/v1/tables/{table}/{record_id}"""
        table = await self.resolve_table_name(request.match_info["table"])
        record_id = request.match_info["record_id"]

        slot = await self.versions.get_active()
        record = await self.store.get_record(slot, table, record_id)
        if record is None:
            raise NotFoundError("Record", record_id, ErrorCode.RECORD_NOT_FOUND)
        attachments = await self.store.list_record_attachments(slot, table, record_id)
        record["attachments"] = [a.to_dict() for a in attachments]
        return await self.json_response(record, request=request)

    async def mappings(self, request: web.Request) -> web.Response:
        """GET /api/v1/mappings"""
        mappings = await self.store.list_tables()
        return await self.json_response({"mappings": [m.to_dict() for m in mappings]}, request=request)
