"""
Error taxonomy shared by the core components and the HTTP layer.

Every error carries a machine-readable `code` so clients can tell
"your data was bad" (VALIDATION_ERROR) from "we couldn't write it"
(STORAGE_ERROR) without parsing the message.
"""

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger(__name__)


# =============================================================================
# Exception classes
# =============================================================================

class AppError(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(AppError):
    """Caller-supplied data failed a required-field or shape check."""
    http_status = 422
    code = "VALIDATION_ERROR"


class StorageError(AppError):
    """The record store failed to read, write or commit."""
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "STORAGE_ERROR"


class NotFoundError(AppError):
    http_status = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, kind: str, record_id: int):
        super().__init__(
            message=f"{kind} {record_id} not found",
            details={"kind": kind, "id": record_id},
        )


# =============================================================================
# FastAPI exception handlers
# =============================================================================

async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if isinstance(exc, StorageError):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return structured 422 with machine-readable field errors."""
    field_errors = []
    for error in exc.errors():
        field_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=422,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed.",
            "details": {"errors": field_errors},
        },
    )
