"""
API endpoint handlers.

Each handler class serves one resource type (tables, stats, ...).
"""

from typing import TYPE_CHECKING, Any

from aiohttp import web

from aircache.service.api.errors import ErrorCode, NotFoundError, ValidationError
from aircache.utils.naming import normalize_key

if TYPE_CHECKING:
    from aircache.service.server import AircacheService


class BaseHandler:
    """
    Base class for API handlers.

    Provides access to service components and common utilities.
    """

    def __init__(self, service: "AircacheService"):
        self.service = service

    @property
    def store(self) -> Any:
        """Record store."""
        return self.service.store

    @property
    def versions(self) -> Any:
        """Active-slot pointer."""
        return self.service.versions

    def get_request_id(self, request: web.Request) -> str | None:
        """Get request ID from request context."""
        return request.get("request_id")

    async def json_response(
        self,
        data: Any,
        status: int = 200,
        request: web.Request | None = None,
    ) -> web.Response:
        """Create JSON response with standard headers."""
        headers = {}
        if request:
            request_id = self.get_request_id(request)
            if request_id:
                headers["X-Request-ID"] = request_id
        return web.json_response(data, status=status, headers=headers)

    async def resolve_table_name(self, name: str) -> str:
        """
        Map a path segment to a stored table name.

        Accepts the normalized name, the display name or the external table id.
        """
        mapping = (
            await self.store.get_table(name)
            or await self.store.get_table(normalize_key(name))
            or await self.store.resolve_table(name)
        )
        if mapping is None:
            raise NotFoundError("Table", name, ErrorCode.TABLE_NOT_FOUND)
        return mapping.normalized_name

    @staticmethod
    def int_param(request: web.Request, name: str, default: int, minimum: int = 0, maximum: int | None = None) -> int:
        raw = request.query.get(name)
        if raw is None or raw == "":
            return default
        try:
            value = int(raw)
        except ValueError:
            raise ValidationError(f"'{name}' must be an integer", details={name: raw}) from None
        if value < minimum or (maximum is not None and value > maximum):
            raise ValidationError(
                f"'{name}' must be between {minimum} and {maximum if maximum is not None else 'unbounded'}",
                details={name: value},
            )
        return value
