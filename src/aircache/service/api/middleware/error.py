"""
Error handling middleware.

Adds a request id to every request and turns exceptions into structured
JSON responses.
"""

import json
import uuid
from collections.abc import Awaitable, Callable

from aiohttp import web

from aircache.exceptions import StoreUnavailableError
from aircache.service.api.errors import APIError, ErrorCode
from aircache.utils.logging import get_logger

logger = get_logger("aircache.api.middleware.error")


def _error_response(code: ErrorCode, message: str, status: int, request_id: str) -> web.Response:
    return web.json_response(
        {"error": {"code": code.value, "message": message, "request_id": request_id}},
        status=status,
        headers={"X-Request-ID": request_id},
    )


@web.middleware
async def error_middleware(
    request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
) -> web.StreamResponse:
    """
    - Adds request_id to all requests
    - Catches APIError and returns its structured JSON response
    - Maps a store outage to 503
    - Catches unexpected errors and returns a generic 500
    """
    request_id = f"req_{uuid.uuid4().hex[:12]}"
    request["request_id"] = request_id

    try:
        response = await handler(request)
        response.headers["X-Request-ID"] = request_id
        return response

    except APIError as e:
        logger.warning(f"API error: {e.code.value} - {e.message} ({request.method} {request.path})")
        return web.json_response(e.to_dict(request_id), status=e.status, headers={"X-Request-ID": request_id})

    except json.JSONDecodeError as e:
        logger.warning(f"JSON decode error on {request.path}: {e}")
        return _error_response(ErrorCode.INVALID_REQUEST, "Invalid JSON in request body", 400, request_id)

    except StoreUnavailableError as e:
        logger.error(f"Store unavailable during {request.method} {request.path}: {e}")
        return _error_response(ErrorCode.STORE_UNAVAILABLE, "Cache store is unavailable", 503, request_id)

    except web.HTTPException:
        raise

    except Exception as e:
        logger.error(f"Unexpected error on {request.method} {request.path}: {e}", exc_info=True)
        return _error_response(ErrorCode.INTERNAL_ERROR, "An internal error occurred", 500, request_id)
