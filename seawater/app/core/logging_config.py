"""
Structured logging for the risk service.

Two renderings of the same records:
    • production   one JSON object per line, extra fields promoted to keys
    • development  coloured single line, with the provider / hazard tags
                   and the short request id inline

Request-scoped context (request id, client, endpoint) lives in a
ContextVar set by RequestLoggingMiddleware.  asyncio copies the context
into every task it creates, so adapter fetches running under the
orchestrator's fan-out log with the id of the request that started them.

Usage:
    from seawater.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.warning("fema_nri failed", extra={"provider": "fema_nri", "error_kind": "source_timeout"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from seawater.app.core.config import Settings, settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "seawater_request_context", default={}
)

# record attributes (passed via `extra=`) that the formatters render
EXTRA_FIELDS = (
    "lat", "lon", "provider", "hazard", "hazards", "sources_used",
    "sources_failed", "degraded", "cache_hit", "duration_ms",
    "status_code", "endpoint", "error_kind",
)

# shown inline by the pretty formatter, in this order
INLINE_TAGS = ("provider", "hazard", "error_kind", "cache_hit")

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "redis")


def set_request_context(**kwargs: Any) -> Token:
    """Replace the request-scoped log context; returns a token for reset."""
    return _request_context.set(dict(kwargs))


def bind_request_context(**kwargs: Any) -> None:
    """Add keys to the current request context."""
    _request_context.set({**_request_context.get(), **kwargs})


def reset_request_context(token: Token) -> None:
    _request_context.reset(token)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: getattr(record, key) for key in EXTRA_FIELDS if hasattr(record, key)}


class JSONFormatter(logging.Formatter):
    """One JSON document per record, for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        ctx = get_request_context()
        if ctx:
            entry["request"] = ctx
        entry.update(_extras(record))
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            entry["exception"] = {"type": type(exc).__name__, "message": str(exc)}
        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Coloured console output for local runs."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    DIM = "\033[2m"
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        parts: List[str] = [
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:<8}{self.RESET}"
        ]
        request_id = get_request_context().get("request_id")
        if request_id:
            parts.append(f"[{str(request_id)[:8]}]")
        parts.append(f"{record.name}: {record.getMessage()}")

        extras = _extras(record)
        tags = " ".join(f"{k}={extras[k]}" for k in INLINE_TAGS if k in extras)
        if tags:
            parts.append(f"{self.DIM}({tags}){self.RESET}")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            line += f"\n  {type(exc).__name__}: {exc}"
        return line


def setup_logging(config: Optional[Settings] = None) -> None:
    """Install a single stdout handler on the root logger."""
    config = config or settings
    root = logging.getLogger()
    root.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))

    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if config.is_production else PrettyFormatter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
