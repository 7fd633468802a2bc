"""
SourceAdapter — one implementation per hazard data provider.

Contract:
    async fetch(coordinate, hazard_types) -> List[SourceReading]

═══════════════════════════════════════════════════════════════════════════
FETCH PIPELINE
═══════════════════════════════════════════════════════════════════════════

    1. Scope      hazard_types ∩ supported_hazards; nothing relevant → []
    2. Cache      fresh reading per (bucket, provider, hazard)?  use it
                  (from_cache=True); all hazards cached → no outbound call
    3. Limits     rate-limit breaker open or request budget spent
                  → SourceRateLimited, nothing sent
    4. Call       _fetch_payload() under asyncio.wait_for(timeout);
                  identical concurrent calls for the same bucket and
                  hazard set are coalesced into one
    5. Normalise  normalize(payload) → per-hazard NormalizedValue using the
                  adapter's versioned mapping tables
    6. Write-through
                  every non-error reading is cached with the adapter TTL
                  (static providers use the long static TTL)

Failure policy:
    Provider problems never escape fetch().  Timeouts, HTTP errors,
    malformed payloads and rate limits become SourceReadings with `error`
    and `error_kind` set and no score, one per requested hazard.  Only
    cancellation propagates.

    A hazard the provider covers but has no rating for (e.g. NRI "Not
    Applicable") yields a reading with no score and no error: the provider
    answered, it just has nothing to say.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

import httpx

from seawater.app.core.cache import CacheManager
from seawater.app.core.errors import (
    SourceError,
    SourceInvalidResponse,
    SourceRateLimited,
    SourceTimeout,
    SourceUnavailable,
)
from seawater.app.risk.models import (
    ConfidenceTier,
    Coordinate,
    HazardType,
    RawValue,
    SourceErrorKind,
    SourceReading,
)
from seawater.app.sources.limits import RateLimitBreaker, RequestBudget

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_TTL_SECONDS = 3600
STATIC_TTL_SECONDS = 86400


@dataclass(frozen=True)
class NormalizedValue:
    """
    One hazard's value in native units plus its 0–100 score.

    `error` is set by adapters that make several independent calls when
    the call behind this hazard failed but others succeeded.
    """
    raw_value: RawValue
    score: Optional[float]
    tier: Optional[ConfidenceTier] = None
    error: Optional[SourceError] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceAdapter(ABC):
    """
    Base class for provider adapters.

    Subclasses set the class attributes and implement _fetch_payload()
    and normalize().  Everything else (cache, limits, timeouts, error
    translation) lives here so each adapter stays a thin mapping.
    """

    provider_id: str = "abstract"
    display_name: str = "Abstract provider"
    specificity: str = "regional"  # property | tract | regional
    supported_hazards: FrozenSet[HazardType] = frozenset()
    confidence_tier: ConfidenceTier = ConfidenceTier.MEDIUM
    static_data: bool = False
    requires_api_key: bool = False
    NORMALIZATION_VERSION: str = "0"

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: Optional[CacheManager] = None,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        ttl_seconds: Optional[int] = None,
        budget: Optional[RequestBudget] = None,
        breaker: Optional[RateLimitBreaker] = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        if self.requires_api_key and not api_key:
            raise ValueError(f"{self.provider_id} requires an API key")
        self.client = client
        self.cache = cache
        self.api_key = api_key
        if base_url is not None:
            self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        if ttl_seconds is None:
            ttl_seconds = STATIC_TTL_SECONDS if self.static_data else DEFAULT_TTL_SECONDS
        self.ttl_seconds = ttl_seconds
        self.budget = budget
        self.breaker = breaker or RateLimitBreaker(self.provider_id)
        self._now = now
        self.calls_made = 0

    # ── subclass hooks ──

    @abstractmethod
    async def _fetch_payload(self, coordinate: Coordinate, hazards: Sequence[HazardType]) -> Any:
        """Perform the provider call(s) and return the decoded payload."""

    @abstractmethod
    def normalize(self, payload: Any, hazards: Sequence[HazardType]) -> Dict[HazardType, NormalizedValue]:
        """Map the provider payload onto 0–100 scores, per hazard."""

    # ── helpers for subclasses ──

    async def _get_json(
        self,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        method: str = "GET",
        json_body: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        self.calls_made += 1
        response = await self.client.request(
            method, url, params=params, headers=headers, json=json_body
        )
        response.raise_for_status()
        return response.json()

    def relevant_hazards(self, hazards: Iterable[HazardType]) -> List[HazardType]:
        return [h for h in hazards if h in self.supported_hazards]

    def partially_rate_limited(self, payload: Any) -> bool:
        """True when a multi-call payload carries a 429 for one of its parts."""
        return False

    # ── public contract ──

    async def fetch(
        self,
        coordinate: Coordinate,
        hazards: Iterable[HazardType],
        use_cache: bool = True,
    ) -> List[SourceReading]:
        """
        Readings for every requested hazard this provider covers.

        use_cache=False skips the fresh-reading lookup (results are still
        written through).
        """
        wanted = self.relevant_hazards(hazards)
        if not wanted:
            return []

        readings: List[SourceReading] = []
        missing: List[HazardType] = []
        for hazard in wanted:
            entry = None
            if use_cache and self.cache is not None:
                entry = await self.cache.get(self.cache.reading_key(coordinate, self.provider_id, hazard))
            if entry is not None and isinstance(entry.value, SourceReading):
                readings.append(replace(entry.value, from_cache=True))
            else:
                missing.append(hazard)

        if not missing:
            logger.debug(
                "%s: all %d hazards served from cache", self.provider_id, len(wanted),
                extra={"provider": self.provider_id, "cache_hit": True},
            )
            return readings

        readings.extend(await self._fetch_remote(coordinate, missing))
        return readings

    # ── internals ──

    def _inflight_key(self, coordinate: Coordinate, hazards: Sequence[HazardType]) -> str:
        bucket = self.cache.bucket(coordinate) if self.cache else f"{coordinate.latitude},{coordinate.longitude}"
        return f"fetch:{self.provider_id}:{bucket}:{','.join(sorted(h.value for h in hazards))}"

    async def _guarded_fetch(self, coordinate: Coordinate, hazards: Sequence[HazardType]) -> Any:
        """Limits + timed provider call; every failure leaves as a SourceError."""
        if not self.breaker.allow():
            raise SourceRateLimited(
                self.provider_id,
                "circuit open after repeated rate-limit responses",
                retry_after=self.breaker.retry_after(),
            )
        if self.budget is not None and not self.budget.try_acquire():
            self.breaker.record_other_failure()
            raise SourceRateLimited(
                self.provider_id,
                "local request budget exhausted",
                retry_after=self.budget.retry_after(),
            )

        start = time.perf_counter()
        try:
            payload = await asyncio.wait_for(
                self._fetch_payload(coordinate, hazards), timeout=self.timeout_seconds
            )
        except asyncio.CancelledError:
            self.breaker.record_other_failure()
            raise
        except Exception as exc:
            error = self._translate(exc)
            if isinstance(error, SourceRateLimited):
                self.breaker.record_rate_limited()
            else:
                self.breaker.record_other_failure()
            raise error from exc

        if self.partially_rate_limited(payload):
            self.breaker.record_rate_limited()
        else:
            self.breaker.record_success()
        logger.debug(
            "%s responded in %.1fms", self.provider_id, (time.perf_counter() - start) * 1000,
            extra={"provider": self.provider_id},
        )
        return payload

    def _translate(self, exc: Exception) -> SourceError:
        if isinstance(exc, SourceError):
            return exc
        if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
            return SourceTimeout(self.provider_id, f"no response within {self.timeout_seconds:g}s")
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            if status == 429:
                retry_after = None
                header = exc.response.headers.get("Retry-After")
                if header:
                    try:
                        retry_after = float(header)
                    except ValueError:
                        retry_after = None
                return SourceRateLimited(self.provider_id, "HTTP 429", retry_after=retry_after)
            if status in (401, 403):
                return SourceUnavailable(self.provider_id, f"authentication failed (HTTP {status})", status_code=status)
            return SourceUnavailable(self.provider_id, f"HTTP {status}", status_code=status)
        if isinstance(exc, httpx.RequestError):
            return SourceUnavailable(self.provider_id, f"{type(exc).__name__}: {exc}")
        if isinstance(exc, (ValueError, KeyError, TypeError, IndexError)):
            return SourceInvalidResponse(self.provider_id, f"malformed payload: {exc}")
        return SourceUnavailable(self.provider_id, f"{type(exc).__name__}: {exc}")

    async def _fetch_remote(self, coordinate: Coordinate, hazards: Sequence[HazardType]) -> List[SourceReading]:
        fetched_at = self._now()
        try:
            if self.cache is not None:
                payload = await self.cache.coalesce(
                    self._inflight_key(coordinate, hazards),
                    lambda: self._guarded_fetch(coordinate, hazards),
                )
            else:
                payload = await self._guarded_fetch(coordinate, hazards)
            try:
                values = self.normalize(payload, hazards)
            except (ValueError, KeyError, TypeError, IndexError, AttributeError) as exc:
                raise SourceInvalidResponse(self.provider_id, f"could not normalise payload: {exc}") from exc
        except SourceError as error:
            kind = SourceErrorKind(error.error_kind)
            logger.warning(
                "%s failed [%s]: %s", self.provider_id, kind.value, error.message,
                extra={
                    "provider": self.provider_id,
                    "error_kind": kind.value,
                    "lat": coordinate.latitude,
                    "lon": coordinate.longitude,
                },
            )
            return [
                SourceReading.failed(self.provider_id, h, kind, error.message, fetched_at)
                for h in hazards
            ]

        readings = []
        for hazard in hazards:
            value = values.get(hazard) or NormalizedValue(raw_value=None, score=None)
            if value.error is not None:
                kind = SourceErrorKind(value.error.error_kind)
                logger.warning(
                    "%s failed for %s [%s]: %s", self.provider_id, hazard.value, kind.value,
                    value.error.message,
                    extra={"provider": self.provider_id, "hazard": hazard.value, "error_kind": kind.value},
                )
                readings.append(
                    SourceReading.failed(self.provider_id, hazard, kind, value.error.message, fetched_at)
                )
                continue
            reading = SourceReading(
                provider_id=self.provider_id,
                hazard_type=hazard,
                raw_value=value.raw_value,
                normalized_score=value.score,
                confidence_tier=value.tier or self.confidence_tier,
                fetched_at=fetched_at,
                ttl_seconds=self.ttl_seconds,
            )
            readings.append(reading)
            if self.cache is not None:
                await self.cache.set(
                    self.cache.reading_key(coordinate, self.provider_id, hazard),
                    reading,
                    ttl=self.ttl_seconds,
                )
        return readings

    def describe(self) -> Dict[str, Any]:
        """Static description for the /sources endpoint and health checks."""
        return {
            "provider_id": self.provider_id,
            "name": self.display_name,
            "specificity": self.specificity,
            "hazards": sorted(h.value for h in self.supported_hazards),
            "confidence_tier": self.confidence_tier.value,
            "normalization_version": self.NORMALIZATION_VERSION,
            "timeout_seconds": self.timeout_seconds,
            "ttl_seconds": self.ttl_seconds,
            "rate_limit": self.breaker.snapshot(),
        }
