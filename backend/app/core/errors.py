"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error response format
    • Re-mapping of request-model validation failures to 400
    • Automatic logging of unhandled errors

Usage:
    from backend.app.core.errors import (
        CrowdSafetyError,
        NotFoundError,
        ValidationError,
        UpstreamUnavailable,
        register_error_handlers,
    )

    raise NotFoundError("CrowdLocation", id="3f2a...")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class CrowdSafetyError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationError(CrowdSafetyError):
    """Bad coordinates, unknown enum value or missing field (400)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class NotFoundError(CrowdSafetyError):
    """Unknown location or alert id (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class UpstreamUnavailable(CrowdSafetyError):
    """Routing / geocoding / AI source failed (502). Core paths fall back."""

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Upstream '{service}' unavailable: {message}",
            status_code=502,
            error_code="UPSTREAM_UNAVAILABLE",
            details={"service": service, **details},
        )


class ConcurrencyConflict(CrowdSafetyError):
    """Optimistic write lost the race too many times (409)."""

    def __init__(self, resource: str, record_id: str, attempts: int):
        super().__init__(
            message=f"{resource} {record_id} was modified concurrently",
            status_code=409,
            error_code="CONCURRENCY_CONFLICT",
            details={"resource": resource, "id": record_id, "attempts": attempts},
        )


class InternalError(CrowdSafetyError):
    """Unexpected failure (500)."""

    def __init__(self, message: str = "Internal server error", **details: Any):
        super().__init__(
            message=message,
            status_code=500,
            error_code="INTERNAL_ERROR",
            details=details,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(CrowdSafetyError)
    async def handle_domain_error(request: Request, exc: CrowdSafetyError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {
                "loc": [str(part) for part in err.get("loc", ())],
                "msg": err.get("msg", ""),
                "type": err.get("type", ""),
            }
            for err in exc.errors()
        ]
        logger.warning("Rejected request %s: %s", request.url.path, errors)
        return _build_error_response(
            400, "VALIDATION_ERROR", "Request validation failed",
            {"errors": errors}, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            400, "VALIDATION_ERROR", str(exc), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception on %s: %s\n%s",
            request.url.path, exc, traceback.format_exc(),
        )
        error = (
            InternalError(traceback=traceback.format_exc().split("\n"))
            if settings.DEBUG else InternalError()
        )
        return _build_error_response(
            error.status_code, error.error_code, error.message,
            error.details, request,
        )
