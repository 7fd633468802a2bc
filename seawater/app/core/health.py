"""
Health probes for the cache and the configured data sources.

    cache          memory backend always up; Redis is pinged.  An
                   unreachable cache only degrades: assessments still
                   work, every request just goes to the providers.
    data_sources   no adapter configured → unhealthy (every assessment
                   would end in NO_DATA_AVAILABLE); any provider with an
                   open rate-limit breaker → degraded.

Used by /health (full report) and /health/ready (unhealthy → 503).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from seawater.app.core.cache import CacheManager
from seawater.app.core.config import settings

logger = logging.getLogger(__name__)

_STARTED = time.monotonic()


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @classmethod
    def worst(cls, statuses: Iterable["HealthStatus"]) -> "HealthStatus":
        order = [cls.HEALTHY, cls.DEGRADED, cls.UNHEALTHY]
        return max(statuses, key=order.index, default=cls.HEALTHY)


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name, "status": self.status.value}
        if self.message:
            out["message"] = self.message
        if self.details:
            out["details"] = self.details
        out["latency_ms"] = round(self.latency_ms, 2)
        return out


@dataclass
class HealthReport:
    components: List[ComponentHealth] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> HealthStatus:
        return HealthStatus.worst(c.status for c in self.components)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "timestamp": self.checked_at.isoformat(),
            "uptime_seconds": round(time.monotonic() - _STARTED, 1),
            "components": [c.to_dict() for c in self.components],
        }


async def check_cache(cache: Optional[CacheManager]) -> ComponentHealth:
    start = time.perf_counter()
    if cache is None:
        comp = ComponentHealth("cache", HealthStatus.DEGRADED, "cache not initialised")
    elif await cache.backend.ping():
        comp = ComponentHealth(
            "cache",
            message=f"{cache.backend.name} backend reachable",
            details={**cache.stats(), "inflight_fetches": cache.inflight_count()},
        )
    else:
        comp = ComponentHealth("cache", HealthStatus.DEGRADED, f"{cache.backend.name} backend unreachable")
    comp.latency_ms = (time.perf_counter() - start) * 1000
    return comp


async def check_sources(adapters: Mapping[str, Any]) -> ComponentHealth:
    if not adapters:
        return ComponentHealth("data_sources", HealthStatus.UNHEALTHY, "no data sources configured")

    breakers = {pid: adapters[pid].breaker.snapshot() for pid in sorted(adapters)}
    rate_limited = [pid for pid, snap in breakers.items() if snap["state"] == "open"]
    comp = ComponentHealth(
        "data_sources",
        details={"configured": sorted(adapters), "rate_limit": breakers},
    )
    if rate_limited:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"rate-limited: {', '.join(rate_limited)}"
    else:
        comp.message = f"{len(adapters)} source(s) available"
    return comp


async def run_health_check(
    cache: Optional[CacheManager],
    adapters: Mapping[str, Any],
) -> HealthReport:
    report = HealthReport(components=[await check_cache(cache), await check_sources(adapters)])
    if report.status is not HealthStatus.HEALTHY:
        logger.warning(
            "Health %s: %s", report.status.value,
            "; ".join(f"{c.name}={c.message}" for c in report.components if c.status is not HealthStatus.HEALTHY),
        )
    return report
