"""
orchestrator.py — Per-request fan-out over the configured data sources.

This is the central coordinator that:
    1. Validates the hazard and source selection
    2. Serves a cached assessment when one is fresh
    3. Queries every selected adapter concurrently
    4. Enforces the global deadline
    5. Falls back to stale cached readings for failed providers
    6. Aggregates, caches and returns the assessment

═══════════════════════════════════════════════════════════════════════════
REQUEST FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  assess(coordinate, │
    │    hazards, sources)│
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  1. Assessment      │  key = assessment:{bucket}:{hazards}:{providers}
    │     cache           │  hit → return (cached=True), no calls
    └─────────┬───────────┘  (skipped by force_refresh)
              │
              ▼
    ┌─────────────────────┐
    │  2. Fan-out         │  one asyncio task per adapter covering ≥1 hazard
    │                     │  each adapter applies its own timeout
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  3. Global deadline │  asyncio.wait(timeout=GLOBAL_DEADLINE_SECONDS)
    │                     │  pending → source_timeout readings; cancelled,
    │                     │  or left running so write-through fills the cache
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  4. Stale fallback  │  failed (provider, hazard) with a stale cached
    │                     │  reading → reading tagged stale, tier low
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  5. Aggregate       │  Aggregator.aggregate(); nothing usable →
    │                     │  InsufficientDataError
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  6. Cache + log     │  complete assessments cached for
    │                     │  ASSESSMENT_TTL_SECONDS; degraded ones are not,
    │                     │  so late or recovered readings are picked up
    └─────────────────────┘

Only ValidationError and InsufficientDataError ever leave assess().
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from seawater.app.core.cache import CacheManager
from seawater.app.core.config import Settings, settings as default_settings
from seawater.app.core.errors import InsufficientDataError, ValidationError
from seawater.app.risk.aggregator import Aggregator
from seawater.app.risk.models import (
    ConfidenceTier,
    Coordinate,
    HazardType,
    RiskAssessment,
    SKIP_NO_RELEVANT_HAZARDS,
    SKIP_PREMIUM_NOT_CONFIGURED,
    SourceErrorKind,
    SourceReading,
    SourceStatus,
    parse_hazards,
)
from seawater.app.sources.base import SourceAdapter

logger = logging.getLogger(__name__)

# readings, response time (ms), calls made
_Fetched = Tuple[List[SourceReading], float, int]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestOrchestrator:
    """
    Owns the adapter set for the process and runs one assessment per call.

    Usage:
        orchestrator = RequestOrchestrator(build_adapters(client, cache), cache)
        assessment = await orchestrator.assess(Coordinate(25.77, -80.19))
    """

    def __init__(
        self,
        adapters: Union[Mapping[str, SourceAdapter], Iterable[SourceAdapter]],
        cache: CacheManager,
        aggregator: Optional[Aggregator] = None,
        config: Optional[Settings] = None,
        *,
        global_deadline_seconds: Optional[float] = None,
        allow_stale_on_failure: Optional[bool] = None,
        cancel_pending_on_deadline: Optional[bool] = None,
        unconfigured: Iterable[str] = (),
        now: Callable[[], datetime] = _utcnow,
    ):
        config = config or default_settings
        if isinstance(adapters, Mapping):
            adapters = adapters.values()
        self.adapters: Dict[str, SourceAdapter] = {a.provider_id: a for a in adapters}
        self.cache = cache
        self.aggregator = aggregator or Aggregator(config=config)
        self.global_deadline = (
            global_deadline_seconds
            if global_deadline_seconds is not None
            else config.GLOBAL_DEADLINE_SECONDS
        )
        self.allow_stale_on_failure = (
            allow_stale_on_failure
            if allow_stale_on_failure is not None
            else config.ALLOW_STALE_ON_FAILURE
        )
        self.cancel_pending_on_deadline = (
            cancel_pending_on_deadline
            if cancel_pending_on_deadline is not None
            else config.CANCEL_PENDING_ON_DEADLINE
        )
        # known providers left out of the adapter set (premium without a key)
        self.unconfigured = sorted(set(unconfigured) - set(self.adapters))
        self._now = now
        self._background: Set["asyncio.Task[_Fetched]"] = set()

    # ── selection ──

    @property
    def provider_ids(self) -> List[str]:
        return sorted(self.adapters)

    def select_adapters(self, sources: Optional[Sequence[str]] = None) -> List[SourceAdapter]:
        """Adapters for the requested provider ids (all when None / empty)."""
        if not sources:
            return [self.adapters[p] for p in self.provider_ids]
        unknown = sorted({s for s in sources if s not in self.adapters})
        if unknown:
            raise ValidationError(
                f"Unknown data source(s): {', '.join(unknown)}",
                field="sources",
                unknown=unknown,
                available=self.provider_ids,
            )
        return [self.adapters[p] for p in sorted(set(sources))]

    # ── entry point ──

    async def assess(
        self,
        coordinate: Coordinate,
        hazard_types: Optional[Sequence[Union[str, HazardType]]] = None,
        sources: Optional[Sequence[str]] = None,
        force_refresh: bool = False,
    ) -> RiskAssessment:
        """
        Produce a RiskAssessment for one coordinate.

        Parameters
        ----------
        coordinate : Coordinate
        hazard_types : list of hazard names, optional
            Defaults to every hazard.
        sources : list of provider ids, optional
            Defaults to every configured provider.
        force_refresh : bool
            Skip the assessment cache and fresh reading cache entries.

        Raises
        ------
        ValidationError
            Unknown hazard or provider id.
        InsufficientDataError
            No provider produced a usable reading (stale ones included).
        """
        start = time.perf_counter()
        try:
            hazards = parse_hazards(list(hazard_types) if hazard_types else None)
        except ValueError as e:
            raise ValidationError(str(e), field="hazard_types") from e
        adapters = self.select_adapters(sources)

        key = self.cache.assessment_key(coordinate, hazards, [a.provider_id for a in adapters])
        if not force_refresh:
            entry = await self.cache.get(key)
            if entry is not None and isinstance(entry.value, RiskAssessment):
                cached = entry.value
                age = max(0.0, (self._now() - cached.computed_at).total_seconds())
                logger.info(
                    "Assessment cache hit for %s (age %.0fs)", key, age,
                    extra={
                        "lat": coordinate.latitude,
                        "lon": coordinate.longitude,
                        "cache_hit": True,
                    },
                )
                return replace(cached, cached=True, cache_age_seconds=round(age, 1))

        readings, statuses = await self._collect(coordinate, hazards, adapters, use_cache=not force_refresh)
        if self.allow_stale_on_failure:
            substitutes = await self._stale_fallback(coordinate, readings)
            readings.extend(substitutes)
            fell_back = {r.provider_id for r in substitutes}
            statuses = [
                replace(s, stale_fallback=True) if s.provider_id in fell_back else s
                for s in statuses
            ]
        if not sources:
            statuses.extend(
                SourceStatus.skipped(pid, SKIP_PREMIUM_NOT_CONFIGURED) for pid in self.unconfigured
            )

        try:
            assessment = self.aggregator.aggregate(coordinate, readings, computed_at=self._now())
        except InsufficientDataError:
            logger.warning(
                "No usable data for (%.4f, %.4f) from %d source(s)",
                coordinate.latitude, coordinate.longitude, len(adapters),
                extra={
                    "lat": coordinate.latitude,
                    "lon": coordinate.longitude,
                    "sources_failed": sorted({r.provider_id for r in readings if r.error}),
                    "duration_ms": round((time.perf_counter() - start) * 1000, 1),
                },
            )
            raise

        assessment = replace(
            assessment,
            source_statuses=tuple(sorted(statuses, key=lambda s: s.provider_id)),
        )
        if assessment.degraded:
            logger.debug("Not caching degraded assessment %s", key)
        else:
            await self.cache.set(key, assessment, ttl=int(assessment.ttl.total_seconds()))

        duration_ms = round((time.perf_counter() - start) * 1000, 1)
        logger.info(
            "Assessed (%.4f, %.4f): overall=%.1f %s confidence=%s sources=%d failed=%d%s",
            coordinate.latitude, coordinate.longitude,
            assessment.overall_score, assessment.overall_level.value,
            assessment.overall_confidence.value,
            len(assessment.data_sources_used), len(assessment.failed_sources),
            " [DEGRADED]" if assessment.degraded else "",
            extra={
                "lat": coordinate.latitude,
                "lon": coordinate.longitude,
                "hazards": [h.value for h in hazards],
                "sources_used": list(assessment.data_sources_used),
                "sources_failed": list(assessment.failed_sources),
                "degraded": assessment.degraded,
                "cache_hit": False,
                "duration_ms": duration_ms,
            },
        )
        return assessment

    # ── fan-out ──

    async def _collect(
        self,
        coordinate: Coordinate,
        hazards: Sequence[HazardType],
        adapters: Sequence[SourceAdapter],
        use_cache: bool = True,
    ) -> Tuple[List[SourceReading], List[SourceStatus]]:
        """Readings plus one SourceStatus per selected adapter."""
        statuses: List[SourceStatus] = []
        tasks: Dict["asyncio.Task[_Fetched]", SourceAdapter] = {}
        for adapter in adapters:
            if not adapter.relevant_hazards(hazards):
                statuses.append(SourceStatus.skipped(adapter.provider_id, SKIP_NO_RELEVANT_HAZARDS))
                continue
            task = asyncio.create_task(
                self._timed_fetch(adapter, coordinate, hazards, use_cache),
                name=f"fetch-{adapter.provider_id}",
            )
            tasks[task] = adapter
        if not tasks:
            return [], statuses

        try:
            done, pending = await asyncio.wait(tasks, timeout=self.global_deadline)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        readings: List[SourceReading] = []
        fetched_at = self._now()

        for task in sorted(done, key=lambda t: tasks[t].provider_id):
            adapter = tasks[task]
            if task.cancelled():
                failed = self._failed(adapter, hazards, SourceErrorKind.UNAVAILABLE, "fetch cancelled", fetched_at)
                readings.extend(failed)
                statuses.append(SourceStatus.from_readings(adapter.provider_id, failed))
                continue
            exc = task.exception()
            if exc is not None:
                # adapters convert provider failures themselves; this is a bug in one
                logger.error(
                    "%s raised from fetch(): %r", adapter.provider_id, exc,
                    exc_info=exc, extra={"provider": adapter.provider_id},
                )
                failed = self._failed(adapter, hazards, SourceErrorKind.UNAVAILABLE, repr(exc), fetched_at)
                readings.extend(failed)
                statuses.append(SourceStatus.from_readings(adapter.provider_id, failed))
                continue
            fetched, elapsed_ms, calls = task.result()
            readings.extend(fetched)
            statuses.append(SourceStatus.from_readings(adapter.provider_id, fetched, elapsed_ms, calls))

        for task in sorted(pending, key=lambda t: tasks[t].provider_id):
            adapter = tasks[task]
            logger.warning(
                "%s missed the %.1fs global deadline", adapter.provider_id, self.global_deadline,
                extra={"provider": adapter.provider_id, "error_kind": SourceErrorKind.TIMEOUT.value},
            )
            failed = self._failed(
                adapter, hazards, SourceErrorKind.TIMEOUT,
                f"global deadline of {self.global_deadline:g}s exceeded", fetched_at,
            )
            readings.extend(failed)
            statuses.append(SourceStatus.from_readings(
                adapter.provider_id, failed, response_time_ms=self.global_deadline * 1000,
            ))
            if self.cancel_pending_on_deadline:
                task.cancel()
            else:
                self._background.add(task)
                task.add_done_callback(self._background.discard)

        if pending and self.cancel_pending_on_deadline:
            await asyncio.gather(*pending, return_exceptions=True)

        return readings, statuses

    @staticmethod
    async def _timed_fetch(
        adapter: SourceAdapter,
        coordinate: Coordinate,
        hazards: Sequence[HazardType],
        use_cache: bool,
    ) -> _Fetched:
        start = time.perf_counter()
        calls_before = adapter.calls_made
        readings = await adapter.fetch(coordinate, hazards, use_cache=use_cache)
        return readings, (time.perf_counter() - start) * 1000, adapter.calls_made - calls_before

    @staticmethod
    def _failed(
        adapter: SourceAdapter,
        hazards: Sequence[HazardType],
        kind: SourceErrorKind,
        message: str,
        fetched_at: datetime,
    ) -> List[SourceReading]:
        return [
            SourceReading.failed(adapter.provider_id, h, kind, message, fetched_at)
            for h in adapter.relevant_hazards(hazards)
        ]

    async def _stale_fallback(
        self, coordinate: Coordinate, readings: Sequence[SourceReading]
    ) -> List[SourceReading]:
        """Cached stand-ins for failed (provider, hazard) pairs."""
        substitutes: List[SourceReading] = []
        seen = set()
        for r in readings:
            if r.error is None or (r.provider_id, r.hazard_type) in seen:
                continue
            seen.add((r.provider_id, r.hazard_type))
            entry = await self.cache.get(
                self.cache.reading_key(coordinate, r.provider_id, r.hazard_type),
                allow_stale=True,
            )
            if entry is None or not isinstance(entry.value, SourceReading) or not entry.value.usable:
                continue
            if entry.stale:
                substitute = replace(
                    entry.value, stale=True, from_cache=True, confidence_tier=ConfidenceTier.LOW
                )
            else:
                substitute = replace(entry.value, from_cache=True)
            logger.info(
                "Using %s cached %s reading for failed %s",
                "stale" if entry.stale else "fresh", r.hazard_type.value, r.provider_id,
                extra={"provider": r.provider_id, "hazard": r.hazard_type.value},
            )
            substitutes.append(substitute)
        return substitutes

    # ── maintenance ──

    async def invalidate(self, coordinate: Coordinate) -> int:
        """Drop cached readings and assessments for the coordinate's bucket."""
        return await self.cache.invalidate_bucket(coordinate)

    def describe_sources(self) -> List[Dict[str, Any]]:
        return [self.adapters[p].describe() for p in self.provider_ids]

    @property
    def background_count(self) -> int:
        return len(self._background)

    async def shutdown(self) -> None:
        """Cancel fetches still running past their deadline."""
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
