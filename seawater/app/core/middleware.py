"""
Request middleware: correlation ids and one access-log line per request.

    X-Request-ID     echoed when the caller sends a usable one, otherwise
                     generated; also placed in the logging context so the
                     orchestrator and adapter lines of this request carry it
    X-Process-Time   wall time spent in the app
"""

from __future__ import annotations

import logging
import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from seawater.app.core.logging_config import reset_request_context, set_request_context

logger = logging.getLogger(__name__)

# probes and docs would drown the access log
QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def request_id_for(request: Request) -> str:
    supplied = request.headers.get("X-Request-ID", "")
    if _REQUEST_ID_RE.match(supplied):
        return supplied
    return uuid.uuid4().hex[:16]


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request_id_for(request)
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path

        token = set_request_context(
            request_id=request_id,
            client_ip=client_ip,
            endpoint=path,
            method=request.method,
        )
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{(time.perf_counter() - start) * 1000:.1f}ms"
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 1)
            if status_code >= 500 or not path.startswith(QUIET_PREFIXES):
                if status_code >= 500:
                    level = logging.ERROR
                elif status_code >= 400:
                    level = logging.WARNING
                else:
                    level = logging.INFO
                logger.log(
                    level,
                    "%s %s → %d (%.1fms) [%s]",
                    request.method, path, status_code, duration_ms, client_ip,
                    extra={"duration_ms": duration_ms, "status_code": status_code, "endpoint": path},
                )
            reset_request_context(token)
