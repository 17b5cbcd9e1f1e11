"""
Global exception handlers
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from emailpay.infrastructure.logging_config import trace_id_context
from emailpay.utils.trace_id import get_trace_id

logger = logging.getLogger(__name__)


def api_error(status_code: int, code: str, message: str, trace_id: Optional[str] = None) -> HTTPException:
    """HTTPException carrying the standard error envelope"""
    return HTTPException(
        status_code=status_code,
        detail={
            "error": {
                "code": code,
                "message": message,
                "trace_id": trace_id or trace_id_context.get(),
            }
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions"""
    trace_id = get_trace_id(request)

    # If detail is already a dict with "error" key, use it directly (preserving custom codes)
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        error_response: Dict[str, Any] = exc.detail.copy()
        if isinstance(error_response["error"], dict) and not error_response["error"].get("trace_id"):
            error_response["error"] = {**error_response["error"], "trace_id": trace_id}
    else:
        error_response = {
            "error": {
                "code": f"HTTP_{exc.status_code}",
                "message": exc.detail if isinstance(exc.detail, str) else str(exc.detail),
                "trace_id": trace_id,
            }
        }

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response,
    )


def _convert_non_serializable(obj):
    """Recursively convert non-JSON-serializable objects to strings"""
    if isinstance(obj, (Decimal, Exception)):
        return str(obj)
    elif isinstance(obj, dict):
        return {key: _convert_non_serializable(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_convert_non_serializable(item) for item in obj]
    elif isinstance(obj, type):
        return str(obj)
    return obj


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle validation exceptions"""
    trace_id = get_trace_id(request)

    error_response: Dict[str, Any] = {
        "error": {
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": _convert_non_serializable(exc.errors()),
            "trace_id": trace_id,
        }
    }

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_response,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle general exceptions"""
    trace_id = get_trace_id(request)

    error_response: Dict[str, Any] = {
        "error": {
            "code": "INTERNAL_ERROR",
            "message": "An internal error occurred",
            "trace_id": trace_id,
        }
    }

    # Log the actual exception (never exposed to the client)
    logger.exception("Unhandled exception", exc_info=exc, extra={"trace_id": trace_id})

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response,
    )
