"""Normalized error envelope for the TaskHub API.

Every API error follows:
    {"error": {"type": "<CODE>", "message": "<human readable>", "request_id": "<id>"}}

Core errors carry their own ``code``; this module only decides the
HTTP status for each.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Type

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.responses import JSONResponse

from taskhub_v1.core.errors import (
    AlreadyMember,
    AuthenticationRequired,
    AuthorizationDenied,
    ConflictError,
    NotAMember,
    NotFound,
    OwnerProtected,
    TaskhubError,
    ValidationError,
)

logger = logging.getLogger("taskhub.api")

_STATUS_TO_TYPE: Dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "AUTH_REQUIRED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
}

_ERROR_STATUS: Dict[Type[TaskhubError], int] = {
    AuthenticationRequired: 401,
    AuthorizationDenied: 403,
    NotFound: 404,
    NotAMember: 404,
    AlreadyMember: 409,
    OwnerProtected: 409,
    ConflictError: 409,
    ValidationError: 422,
}


def status_for(exc: TaskhubError) -> int:
    for cls in type(exc).__mro__:
        if cls in _ERROR_STATUS:
            return _ERROR_STATUS[cls]
    return 500


def make_error_envelope(
    error_type: str, message: str, request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Build the standard error envelope dict."""
    return {
        "error": {
            "type": error_type,
            "message": message,
            "request_id": request_id,
        }
    }


async def taskhub_error_handler(request: Request, exc: TaskhubError) -> JSONResponse:
    """Map a core error onto its status with the error's own code as type."""
    request_id = getattr(request.state, "request_id", None)
    status = status_for(exc)
    if status == 500:
        logger.error("unmapped_error type=%s request_id=%s", type(exc).__name__, request_id)
    headers = {"WWW-Authenticate": "Bearer"} if status == 401 else None
    return JSONResponse(
        status_code=status,
        content=make_error_envelope(exc.code, str(exc), request_id),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Convert HTTPException to the normalized error envelope."""
    request_id = getattr(request.state, "request_id", None)
    error_type = _STATUS_TO_TYPE.get(exc.status_code, "INTERNAL_ERROR")

    if isinstance(exc.detail, dict):
        raw = exc.detail.get("error") or exc.detail.get("message") or exc.detail
        message = raw if isinstance(raw, str) else str(raw)
    elif isinstance(exc.detail, str):
        message = exc.detail
    else:
        message = str(exc.detail)

    return JSONResponse(
        status_code=exc.status_code,
        content=make_error_envelope(error_type, message, request_id),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Convert Pydantic validation errors to the normalized envelope."""
    request_id = getattr(request.state, "request_id", None)
    errors = exc.errors()
    if errors:
        parts = []
        for err in errors:
            loc = " -> ".join(str(part) for part in err.get("loc", []))
            msg = err.get("msg", "")
            parts.append(f"{loc}: {msg}" if loc else msg)
        message = "; ".join(parts)
    else:
        message = str(exc)

    return JSONResponse(
        status_code=422,
        content=make_error_envelope("VALIDATION_ERROR", message, request_id),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions, returned as 500 with the envelope."""
    request_id = getattr(request.state, "request_id", None)
    logger.exception("unhandled_error request_id=%s", request_id)
    return JSONResponse(
        status_code=500,
        content=make_error_envelope("INTERNAL_ERROR", "Internal server error.", request_id),
    )
