"""
Data structures shared across the risk aggregation core.

All values are immutable once created.  The orchestrator owns in-flight
SourceReadings for a request; a RiskAssessment, once produced, is handed
to the CacheManager and shared read-only between callers.

Serialisation:
    Every structure has to_dict() / from_dict().  The dict form is the
    only thing written to the cache and returned by the API, so it must
    stay JSON-safe and deterministic (sorted keys where order is not
    meaningful, ISO-8601 timestamps in UTC).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

RawValue = Union[float, int, str, None]


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class HazardType(str, Enum):
    """Closed set of climate / geological hazards the core scores."""
    FLOOD = "flood"
    WILDFIRE = "wildfire"
    HEAT = "heat"
    HURRICANE = "hurricane"
    TORNADO = "tornado"
    EARTHQUAKE = "earthquake"
    DROUGHT = "drought"

    @classmethod
    def parse(cls, value: Union[str, "HazardType"]) -> "HazardType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown hazard type: {value!r}") from None


ALL_HAZARDS: Tuple[HazardType, ...] = tuple(HazardType)


class ConfidenceTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {ConfidenceTier.LOW: 0, ConfidenceTier.MEDIUM: 1, ConfidenceTier.HIGH: 2}


class RiskLevel(str, Enum):
    """Risk band for a 0–100 score."""
    LOW = "LOW"              # 0–25
    MODERATE = "MODERATE"    # 25–50
    HIGH = "HIGH"            # 50–75
    VERY_HIGH = "VERY_HIGH"  # 75–100


class SourceErrorKind(str, Enum):
    """Why a provider produced no score."""
    TIMEOUT = "source_timeout"
    INVALID_RESPONSE = "source_invalid_response"
    RATE_LIMITED = "source_rate_limited"
    UNAVAILABLE = "source_unavailable"

    @property
    def retryable(self) -> bool:
        return self is not SourceErrorKind.INVALID_RESPONSE


class SourceOutcome(str, Enum):
    """How one provider fared in one assessment run."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


# SourceStatus.reason for skipped providers
SKIP_NO_RELEVANT_HAZARDS = "no_relevant_hazards"
SKIP_PREMIUM_NOT_CONFIGURED = "premium_not_configured"


class AssessmentStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"


# Escalation thresholds (0–100 scale)
THRESHOLD_LOW_UPPER = 25.0
THRESHOLD_MODERATE_UPPER = 50.0
THRESHOLD_HIGH_UPPER = 75.0


def classify_score(score: float) -> RiskLevel:
    """
    Map a 0–100 score to its RiskLevel.

    >>> classify_score(24.9)
    <RiskLevel.LOW: 'LOW'>
    >>> classify_score(75)
    <RiskLevel.VERY_HIGH: 'VERY_HIGH'>
    """
    if score >= THRESHOLD_HIGH_UPPER:
        return RiskLevel.VERY_HIGH
    if score >= THRESHOLD_MODERATE_UPPER:
        return RiskLevel.HIGH
    if score >= THRESHOLD_LOW_UPPER:
        return RiskLevel.MODERATE
    return RiskLevel.LOW


def _iso(ts: datetime) -> str:
    return ts.isoformat()


# ═══════════════════════════════════════════════════════════════════════════
# Coordinate
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Coordinate:
    """A validated point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        for name, value, bound in (
            ("latitude", self.latitude, 90.0),
            ("longitude", self.longitude, 180.0),
        ):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite, got {value!r}")
            if not -bound <= value <= bound:
                raise ValueError(f"{name} {value} outside [-{bound:g}, {bound:g}]")
        object.__setattr__(self, "latitude", float(self.latitude))
        object.__setattr__(self, "longitude", float(self.longitude))

    def bucket(self, step: float = 0.001) -> str:
        """
        Geographic bucket key: the south-west corner of the `step`-degree
        grid cell containing this point.

        Nearby points share a bucket, so they share cache entries.
        0.001° is ~111 m of latitude.
        """
        decimals = max(0, -int(math.floor(math.log10(step)))) if step < 1 else 0
        lat_cell = math.floor(round(self.latitude / step, 9)) * step
        lon_cell = math.floor(round(self.longitude / step, 9)) * step
        return f"{lat_cell:.{decimals}f}:{lon_cell:.{decimals}f}"

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Coordinate":
        return cls(float(data["latitude"]), float(data["longitude"]))


# ═══════════════════════════════════════════════════════════════════════════
# Readings & scores
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SourceReading:
    """
    One provider's opinion for one hazard at one coordinate.

    Attributes
    ----------
    provider_id : str
        Adapter identifier, e.g. 'first_street'.
    hazard_type : HazardType
    raw_value : float | int | str | None
        The value in the provider's native scale (flood factor, NRI rating,
        PGA, ...).
    normalized_score : float | None
        0–100, absent when the provider failed or had no data.
    confidence_tier : ConfidenceTier
        Declared by the adapter; forced to LOW for stale readings.
    fetched_at : datetime
        When the provider produced the value (UTC).
    ttl_seconds : int
        Cache lifetime the adapter asked for.
    error : str | None
        Human-readable failure; set ⇔ error_kind set.
    stale : bool
        True when served from an expired cache entry after a failure.
    from_cache : bool
        True when served from a fresh cache entry (no outbound call).
    """
    provider_id: str
    hazard_type: HazardType
    raw_value: RawValue
    normalized_score: Optional[float]
    confidence_tier: ConfidenceTier
    fetched_at: datetime
    ttl_seconds: int
    error: Optional[str] = None
    error_kind: Optional[SourceErrorKind] = None
    stale: bool = False
    from_cache: bool = False

    @property
    def usable(self) -> bool:
        return self.error is None and self.normalized_score is not None

    @classmethod
    def failed(
        cls,
        provider_id: str,
        hazard_type: HazardType,
        kind: SourceErrorKind,
        message: str,
        fetched_at: datetime,
        ttl_seconds: int = 0,
    ) -> "SourceReading":
        return cls(
            provider_id=provider_id,
            hazard_type=hazard_type,
            raw_value=None,
            normalized_score=None,
            confidence_tier=ConfidenceTier.LOW,
            fetched_at=fetched_at,
            ttl_seconds=ttl_seconds,
            error=message or kind.value,
            error_kind=kind,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "hazard_type": self.hazard_type.value,
            "raw_value": self.raw_value,
            "normalized_score": self.normalized_score,
            "confidence_tier": self.confidence_tier.value,
            "fetched_at": _iso(self.fetched_at),
            "ttl_seconds": self.ttl_seconds,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "stale": self.stale,
            "from_cache": self.from_cache,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SourceReading":
        score = data.get("normalized_score")
        return cls(
            provider_id=data["provider_id"],
            hazard_type=HazardType(data["hazard_type"]),
            raw_value=data.get("raw_value"),
            normalized_score=float(score) if score is not None else None,
            confidence_tier=ConfidenceTier(data["confidence_tier"]),
            fetched_at=datetime.fromisoformat(data["fetched_at"]),
            ttl_seconds=int(data.get("ttl_seconds", 0)),
            error=data.get("error"),
            error_kind=SourceErrorKind(data["error_kind"]) if data.get("error_kind") else None,
            stale=bool(data.get("stale", False)),
            from_cache=bool(data.get("from_cache", False)),
        )


@dataclass(frozen=True)
class HazardScore:
    """Aggregated result for one hazard; only built from ≥1 usable reading."""
    hazard_type: HazardType
    score: float
    level: RiskLevel
    confidence: ConfidenceTier
    contributing_sources: Tuple[SourceReading, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hazard_type": self.hazard_type.value,
            "score": self.score,
            "level": self.level.value,
            "confidence": self.confidence.value,
            "contributing_sources": [r.to_dict() for r in self.contributing_sources],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HazardScore":
        return cls(
            hazard_type=HazardType(data["hazard_type"]),
            score=float(data["score"]),
            level=RiskLevel(data["level"]),
            confidence=ConfidenceTier(data["confidence"]),
            contributing_sources=tuple(
                SourceReading.from_dict(r) for r in data.get("contributing_sources", [])
            ),
        )


@dataclass(frozen=True)
class SourceStatus:
    """
    Per-provider diagnostics for one assessment run.

    reason is the error kind of a failed / partial provider, or why a
    skipped one was not queried.  external_calls only counts calls that
    finished before the global deadline.
    """
    provider_id: str
    outcome: SourceOutcome
    reason: Optional[str] = None
    retryable: bool = False
    response_time_ms: Optional[float] = None
    external_calls: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    stale_fallback: bool = False

    @classmethod
    def skipped(cls, provider_id: str, reason: str) -> "SourceStatus":
        return cls(provider_id=provider_id, outcome=SourceOutcome.SKIPPED, reason=reason)

    @classmethod
    def from_readings(
        cls,
        provider_id: str,
        readings: List[SourceReading],
        response_time_ms: Optional[float] = None,
        external_calls: int = 0,
    ) -> "SourceStatus":
        failures = [r for r in readings if r.error is not None]
        if not failures:
            outcome = SourceOutcome.SUCCESS
        elif len(failures) == len(readings):
            outcome = SourceOutcome.FAILED
        else:
            outcome = SourceOutcome.PARTIAL
        kind = failures[0].error_kind if failures else None
        return cls(
            provider_id=provider_id,
            outcome=outcome,
            reason=kind.value if kind else None,
            retryable=bool(kind and kind.retryable),
            response_time_ms=round(response_time_ms, 1) if response_time_ms is not None else None,
            external_calls=external_calls,
            cache_hits=sum(1 for r in readings if r.from_cache),
            cache_misses=sum(1 for r in readings if not r.from_cache),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "retryable": self.retryable,
            "response_time_ms": self.response_time_ms,
            "external_calls": self.external_calls,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "stale_fallback": self.stale_fallback,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SourceStatus":
        elapsed = data.get("response_time_ms")
        return cls(
            provider_id=data["provider_id"],
            outcome=SourceOutcome(data["outcome"]),
            reason=data.get("reason"),
            retryable=bool(data.get("retryable", False)),
            response_time_ms=float(elapsed) if elapsed is not None else None,
            external_calls=int(data.get("external_calls", 0)),
            cache_hits=int(data.get("cache_hits", 0)),
            cache_misses=int(data.get("cache_misses", 0)),
            stale_fallback=bool(data.get("stale_fallback", False)),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Assessment
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RiskAssessment:
    """
    Complete output of one aggregation run.

    Hazards with no usable reading are absent from hazard_scores;
    callers must treat absence as "unknown", never as zero risk.

    cached / cache_age_seconds are set only on the copy handed out for an
    assessment-cache hit; the stored entry always has cached=False.
    """
    coordinate: Coordinate
    overall_score: float
    overall_level: RiskLevel
    overall_confidence: ConfidenceTier
    hazard_scores: Dict[HazardType, HazardScore]
    primary_hazards: Tuple[HazardType, ...]
    data_sources_used: Tuple[str, ...]
    failed_sources: Tuple[str, ...]
    degraded: bool
    computed_at: datetime
    expires_at: datetime
    source_statuses: Tuple[SourceStatus, ...] = ()
    cached: bool = False
    cache_age_seconds: Optional[float] = None

    @property
    def status(self) -> AssessmentStatus:
        return AssessmentStatus.PARTIAL_SUCCESS if self.degraded else AssessmentStatus.SUCCESS

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def ttl(self) -> timedelta:
        return self.expires_at - self.computed_at

    def to_dict(self) -> Dict[str, Any]:
        """Serialise for cache / API response."""
        return {
            "coordinate": self.coordinate.to_dict(),
            "overall_score": self.overall_score,
            "overall_level": self.overall_level.value,
            "overall_confidence": self.overall_confidence.value,
            "hazard_scores": {
                h.value: self.hazard_scores[h].to_dict()
                for h in sorted(self.hazard_scores, key=lambda x: x.value)
            },
            "primary_hazards": [h.value for h in self.primary_hazards],
            "data_sources_used": list(self.data_sources_used),
            "failed_sources": list(self.failed_sources),
            "degraded": self.degraded,
            "status": self.status.value,
            "computed_at": _iso(self.computed_at),
            "expires_at": _iso(self.expires_at),
            "source_status": [s.to_dict() for s in self.source_statuses],
            "cached": self.cached,
            "cache_age_seconds": self.cache_age_seconds,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RiskAssessment":
        hazards: Dict[HazardType, HazardScore] = {}
        for key, value in data.get("hazard_scores", {}).items():
            hazards[HazardType(key)] = HazardScore.from_dict(value)
        return cls(
            coordinate=Coordinate.from_dict(data["coordinate"]),
            overall_score=float(data["overall_score"]),
            overall_level=RiskLevel(data["overall_level"]),
            overall_confidence=ConfidenceTier(data["overall_confidence"]),
            hazard_scores=hazards,
            primary_hazards=tuple(HazardType(h) for h in data.get("primary_hazards", [])),
            data_sources_used=tuple(data.get("data_sources_used", [])),
            failed_sources=tuple(data.get("failed_sources", [])),
            degraded=bool(data["degraded"]),
            computed_at=datetime.fromisoformat(data["computed_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            source_statuses=tuple(SourceStatus.from_dict(s) for s in data.get("source_status", [])),
            cached=bool(data.get("cached", False)),
            cache_age_seconds=data.get("cache_age_seconds"),
        )


def parse_hazards(values: Optional[List[Union[str, HazardType]]]) -> Tuple[HazardType, ...]:
    """Normalise a caller-supplied hazard list; None or empty means all."""
    if not values:
        return ALL_HAZARDS
    seen: List[HazardType] = []
    for value in values:
        hazard = HazardType.parse(value)
        if hazard not in seen:
            seen.append(hazard)
    return tuple(sorted(seen, key=lambda h: ALL_HAZARDS.index(h)))
