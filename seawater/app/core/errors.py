"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Provider failure taxonomy (timeout / invalid response / rate limited)
    • Consistent JSON error response format
    • Automatic logging of unhandled errors

Propagation policy:
    Source* errors are raised inside adapters only and are converted into
    failed SourceReadings at the adapter boundary.  The only errors a
    caller of the orchestrator ever sees are ValidationError (bad input)
    and InsufficientDataError (no usable reading from any provider).

Usage:
    from seawater.app.core.errors import InsufficientDataError

    raise InsufficientDataError(latitude=25.77, longitude=-80.19)
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional, Sequence

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from seawater.app.core.config import settings
from seawater.app.core.logging_config import get_request_context

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class ClimateRiskError(Exception):
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


class ValidationError(ClimateRiskError):
    """Input validation failed (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class InsufficientDataError(ClimateRiskError):
    """No configured provider returned a usable reading (404)."""

    def __init__(self, message: str = "No data available for this location", **details: Any):
        super().__init__(
            message=message,
            status_code=404,
            error_code="NO_DATA_AVAILABLE",
            details=details,
        )


class SourceError(ClimateRiskError):
    """A single provider call failed (502).  Never request-fatal."""

    error_kind = "source_unavailable"

    def __init__(self, provider: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Provider '{provider}' failed: {message}",
            status_code=502,
            error_code="EXTERNAL_SERVICE_ERROR",
            details={"provider": provider, **details},
        )
        self.provider = provider


class SourceTimeout(SourceError):
    """Provider did not answer within its budget."""
    error_kind = "source_timeout"


class SourceInvalidResponse(SourceError):
    """Payload could not be parsed or normalised."""
    error_kind = "source_invalid_response"


class SourceRateLimited(SourceError):
    """Provider rejected the call, or the local budget / breaker refused it."""
    error_kind = "source_rate_limited"

    def __init__(self, provider: str, message: str = "", retry_after: Optional[float] = None):
        details: Dict[str, Any] = {}
        if retry_after is not None:
            details["retry_after_seconds"] = round(retry_after, 1)
        super().__init__(provider, message, **details)
        self.retry_after = retry_after


class SourceUnavailable(SourceError):
    """Transport failure or non-429 HTTP error."""
    error_kind = "source_unavailable"


# ═══════════════════════════════════════════════════════════════════════════
# HTTP rendering
# ═══════════════════════════════════════════════════════════════════════════
#
#   {"error": {"code": "NO_DATA_AVAILABLE", "message": "...", "status": 404,
#              "details": {...}, "request_id": "...", "path": "..."}}
#
# path / method only outside production.

def error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    error: Dict[str, Any] = {"code": error_code, "message": message, "status": status_code}
    if details:
        error["details"] = details
    request_id = get_request_context().get("request_id")
    if request_id:
        error["request_id"] = request_id
    if request is not None and not settings.is_production:
        error["path"] = request.url.path
        error["method"] = request.method
    return JSONResponse(status_code=status_code, content={"error": error})


def _field_name(loc: Sequence[Any]) -> str:
    # ("body", "latitude") → "latitude"
    return ".".join(str(part) for part in loc if part not in ("body", "query", "path"))


def register_error_handlers(app: FastAPI) -> None:
    """Route every failure through error_response()."""

    @app.exception_handler(ClimateRiskError)
    async def handle_climate_risk_error(request: Request, exc: ClimateRiskError):
        logger.log(
            logging.WARNING if exc.status_code < 500 else logging.ERROR,
            "%s [%s]: %s", request.url.path, exc.error_code, exc.message,
            extra={"status_code": exc.status_code, "endpoint": request.url.path},
        )
        return error_response(exc.status_code, exc.error_code, exc.message, exc.details, request)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        problems = [
            {"field": _field_name(err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        logger.info("Rejected request to %s: %d invalid field(s)", request.url.path, len(problems))
        return error_response(
            422, "VALIDATION_ERROR", "Request validation failed",
            {"errors": problems}, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return error_response(422, "VALIDATION_ERROR", str(exc), request=request)

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception on %s: %s", request.url.path, exc,
            exc_info=exc,
        )
        details = None
        if settings.DEBUG:
            details = {"traceback": traceback.format_exception(type(exc), exc, exc.__traceback__)}
        message = str(exc) if settings.DEBUG else "Internal server error"
        return error_response(500, "INTERNAL_ERROR", message, details, request)
