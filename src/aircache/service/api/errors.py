"""
API error definitions.

Every error leaves the service as ``{"error": {"code", "message", ...}}``.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard API error codes."""

    # Client errors (4xx)
    INVALID_REQUEST = "INVALID_REQUEST"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TABLE_NOT_FOUND = "TABLE_NOT_FOUND"
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"
    ATTACHMENT_NOT_FOUND = "ATTACHMENT_NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    WEBHOOK_REJECTED = "WEBHOOK_REJECTED"

    # Server errors (5xx)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class APIError(Exception):
    """
    Base API exception with structured error response.

    Usage:
        raise APIError(
            code=ErrorCode.TABLE_NOT_FOUND,
            message="Table 'projects' not found",
            status=404,
            details={"table": "projects"},
        )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status: int = 400,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status
        self.details = details or {}

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        """Convert to API response format."""
        error_dict: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.details:
            error_dict["details"] = self.details
        if request_id:
            error_dict["request_id"] = request_id
        return {"error": error_dict}


class NotFoundError(APIError):
    """Resource not found error."""

    def __init__(self, resource_type: str, resource_id: str, code: ErrorCode):
        super().__init__(
            code=code,
            message=f"{resource_type} '{resource_id}' not found",
            status=404,
            details={f"{resource_type.lower()}_id": resource_id},
        )


class ValidationError(APIError):
    """Request validation error."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            status=400,
            details=details,
        )
