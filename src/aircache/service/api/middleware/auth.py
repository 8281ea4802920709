"""
Bearer token authentication middleware.

Every ``/api/`` path requires ``Authorization: Bearer <token>``; paths on
the whitelist (health, webhook intake) are open.
"""

import hashlib
import hmac
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from aircache.service.api.errors import APIError, ErrorCode
from aircache.utils.logging import get_logger

logger = get_logger("aircache.service.api.middleware.auth")

DEFAULT_WHITELIST = ["/health", "/api/v1/health", "/webhooks/*"]


class AuthConfig:
    """Parsed authentication settings."""

    def __init__(self, tokens: list[str] | None = None, whitelist: list[str] | None = None) -> None:
        self.tokens = [t for t in (tokens or []) if t]
        self.whitelist = list(DEFAULT_WHITELIST if whitelist is None else whitelist)
        # compare hashes so the comparison time does not depend on token length
        self._hashes = [hashlib.sha256(t.encode()).hexdigest() for t in self.tokens]

    @property
    def enabled(self) -> bool:
        return bool(self.tokens)

    def is_valid(self, provided: str) -> bool:
        provided_hash = hashlib.sha256(provided.encode()).hexdigest()
        valid = False
        for stored in self._hashes:
            # check every token so timing does not reveal which one matched
            if hmac.compare_digest(provided_hash, stored):
                valid = True
        return valid


def _is_whitelisted(path: str, whitelist: list[str]) -> bool:
    """Exact matches, or prefix matches for entries ending with ``*``."""
    for entry in whitelist:
        if entry.endswith("*"):
            if path.startswith(entry[:-1]):
                return True
        elif path == entry:
            return True
    return False


def _bearer_token(request: web.Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[7:].strip() or None
    return None


def setup_auth(app: web.Application, auth_config: AuthConfig) -> None:
    """
    Install the bearer token middleware.

    With no tokens configured the middleware is not installed and every
    endpoint is open; a warning is logged.
    """
    if not auth_config.enabled:
        logger.warning("No bearer token configured - API endpoints are unauthenticated")
        return

    @web.middleware
    async def auth_middleware(
        request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
    ) -> Any:
        path = request.path
        if _is_whitelisted(path, auth_config.whitelist) or not path.startswith("/api/"):
            return await handler(request)

        token = _bearer_token(request)
        if not token:
            raise APIError(
                code=ErrorCode.UNAUTHORIZED,
                message="Missing bearer token. Provide it via Authorization: Bearer <token>.",
                status=401,
            )
        if not auth_config.is_valid(token):
            raise APIError(code=ErrorCode.UNAUTHORIZED, message="Invalid bearer token", status=401)
        return await handler(request)

    # runs inside error_middleware so APIError becomes a JSON response
    app.middlewares.append(auth_middleware)
    logger.info(f"Bearer authentication enabled with {len(auth_config.tokens)} token(s)")
