"""
Shared fixtures for the risk core tests.

Provides:
    • FakeClock: manually advanced epoch clock for TTL / limit tests
    • make_reading: SourceReading factory
    • StubAdapter / make_stub: provider adapter with canned scores, an
      optional error and an optional delay, no HTTP involved
    • aggregator: Aggregator with the default weights pinned, so tests do
      not depend on the environment
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Sequence

import pytest

from seawater.app.core.cache import CacheManager, MemoryCacheBackend
from seawater.app.risk.aggregator import Aggregator
from seawater.app.risk.models import (
    ConfidenceTier,
    Coordinate,
    HazardType,
    SourceErrorKind,
    SourceReading,
)
from seawater.app.sources.base import NormalizedValue, SourceAdapter

FIXED_TIME = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
MIAMI = Coordinate(25.7617, -80.1918)

PROVIDER_WEIGHTS = {
    "first_street": 1.0,
    "climate_check": 1.0,
    "fema_nri": 0.6,
    "fema_flood_zone": 0.6,
    "usgs": 0.6,
    "noaa": 0.3,
}
TIER_MULTIPLIERS = {"high": 1.0, "medium": 0.8, "low": 0.5}
HAZARD_WEIGHTS = {
    "flood": 0.25,
    "hurricane": 0.20,
    "wildfire": 0.20,
    "earthquake": 0.15,
    "tornado": 0.10,
    "heat": 0.05,
    "drought": 0.05,
}


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubAdapter(SourceAdapter):
    """Adapter returning canned 0–100 scores per hazard."""

    def __init__(
        self,
        provider_id: str,
        scores: Dict[HazardType, Optional[float]],
        *,
        hazards: Optional[Iterable[HazardType]] = None,
        tier: ConfidenceTier = ConfidenceTier.HIGH,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        cache: Optional[CacheManager] = None,
        **kwargs: Any,
    ):
        self.provider_id = provider_id
        self.supported_hazards = frozenset(hazards if hazards is not None else scores)
        self.confidence_tier = tier
        super().__init__(None, cache, now=lambda: FIXED_TIME, **kwargs)
        self.scores = dict(scores)
        self.error = error
        self.delay = delay
        self.was_cancelled = False
        self.completed = False

    async def _fetch_payload(self, coordinate: Coordinate, hazards: Sequence[HazardType]) -> Any:
        self.calls_made += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.was_cancelled = True
            raise
        if self.error is not None:
            raise self.error
        self.completed = True
        return dict(self.scores)

    def normalize(self, payload: Any, hazards: Sequence[HazardType]) -> Dict[HazardType, NormalizedValue]:
        return {
            h: NormalizedValue(raw_value=payload[h], score=payload[h])
            for h in hazards
            if h in payload
        }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> CacheManager:
    return CacheManager(
        MemoryCacheBackend(max_entries=1000, clock=clock),
        bucket_degrees=0.001,
        stale_retention_seconds=7 * 86400,
        clock=clock,
    )


@pytest.fixture
def aggregator() -> Aggregator:
    return Aggregator(
        provider_weights=PROVIDER_WEIGHTS,
        tier_multipliers=TIER_MULTIPLIERS,
        hazard_weights=HAZARD_WEIGHTS,
        tolerance=15.0,
        assessment_ttl_seconds=3600,
    )


@pytest.fixture
def make_reading():
    def _make(
        provider_id: str,
        hazard: HazardType,
        score: Optional[float],
        tier: ConfidenceTier = ConfidenceTier.HIGH,
        stale: bool = False,
        error_kind: Optional[SourceErrorKind] = None,
    ) -> SourceReading:
        if error_kind is not None:
            return SourceReading.failed(provider_id, hazard, error_kind, "boom", FIXED_TIME)
        return SourceReading(
            provider_id=provider_id,
            hazard_type=hazard,
            raw_value=score,
            normalized_score=score,
            confidence_tier=ConfidenceTier.LOW if stale else tier,
            fetched_at=FIXED_TIME,
            ttl_seconds=3600,
            stale=stale,
        )

    return _make


@pytest.fixture
def make_stub(cache):
    def _make(provider_id: str, scores: Dict[HazardType, Optional[float]], **kwargs: Any) -> StubAdapter:
        kwargs.setdefault("cache", cache)
        return StubAdapter(provider_id, scores, **kwargs)

    return _make
