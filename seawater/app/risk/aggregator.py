"""
aggregator.py — Multi-source climate risk aggregation.

Combines per-provider normalised readings into one score per hazard and
one overall property score.

═══════════════════════════════════════════════════════════════════════════
WEIGHTING FORMULA
═══════════════════════════════════════════════════════════════════════════

    Step 1 — Keep usable readings (no error, score present), grouped by
             hazard and sorted by provider id.  Arrival order never
             matters.

    Step 2 — Per-hazard score, confidence-weighted average:

        w_i     = provider_weight(provider_i) × tier_multiplier(tier_i)
        S_h     = Σ w_i · s_i / Σ w_i

        Provider weights encode source specificity and come from
        configuration (property-specific premium 1.0 > tract-level
        government 0.6 > regional estimate 0.3).  Tier multipliers:
        high 1.0, medium 0.8, low 0.5 (stale readings are always low).

    Step 3 — Per-hazard confidence from ConfidenceScorer.

    Step 4 — Overall score, hazard-severity weighted:

        S_overall = Σ W_h · S_h / Σ W_h      over hazards present

        Default W_h: flood 0.25, hurricane 0.20, wildfire 0.20,
        earthquake 0.15, tornado 0.10, heat 0.05, drought 0.05.

    Step 5 — Levels for every score via the same thresholds:

        score < 25  LOW  |  < 50 MODERATE  |  < 75 HIGH  |  ≥ 75 VERY_HIGH

Worked example (Miami, flood):
    first_street factor 8 → 80 (w = 1.0 × 1.0)
    fema_nri "Very High"  → 90 (w = 0.6 × 0.8 = 0.48)
    S = (80 + 43.2) / 1.48 = 83.2 → VERY_HIGH, spread 10 ≤ 15 → high

═══════════════════════════════════════════════════════════════════════════
PURITY
═══════════════════════════════════════════════════════════════════════════

aggregate() reads nothing but its arguments and the (immutable) weights
it was built with.  With the same readings and computed_at the output
to_dict() is identical, which is what makes assessments cacheable.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from seawater.app.core.config import Settings, settings as default_settings
from seawater.app.core.errors import InsufficientDataError
from seawater.app.risk.confidence import ConfidenceScorer
from seawater.app.risk.models import (
    Coordinate,
    HazardScore,
    HazardType,
    RiskAssessment,
    SourceReading,
    classify_score,
)

logger = logging.getLogger(__name__)

# Primary-hazard selection
PRIMARY_THRESHOLD = 70.0
SECONDARY_THRESHOLD = 30.0


class Aggregator:
    """
    Pure combination of SourceReadings into a RiskAssessment.

    Usage:
        aggregator = Aggregator()
        assessment = aggregator.aggregate(coordinate, readings)
    """

    def __init__(
        self,
        provider_weights: Optional[Mapping[str, float]] = None,
        tier_multipliers: Optional[Mapping[str, float]] = None,
        hazard_weights: Optional[Mapping[str, float]] = None,
        tolerance: Optional[float] = None,
        assessment_ttl_seconds: Optional[int] = None,
        config: Optional[Settings] = None,
    ):
        config = config or default_settings
        self.provider_weights = dict(
            provider_weights if provider_weights is not None else config.PROVIDER_WEIGHTS
        )
        self.default_provider_weight = config.DEFAULT_PROVIDER_WEIGHT
        self.tier_multipliers = dict(
            tier_multipliers if tier_multipliers is not None else config.TIER_MULTIPLIERS
        )
        self.hazard_weights = dict(
            hazard_weights if hazard_weights is not None else config.HAZARD_WEIGHTS
        )
        self.default_hazard_weight = config.DEFAULT_HAZARD_WEIGHT
        self.scorer = ConfidenceScorer(
            tolerance if tolerance is not None else config.AGREEMENT_TOLERANCE
        )
        self.assessment_ttl = timedelta(
            seconds=assessment_ttl_seconds
            if assessment_ttl_seconds is not None
            else config.ASSESSMENT_TTL_SECONDS
        )

    # ── weights ──

    def reading_weight(self, reading: SourceReading) -> float:
        provider = self.provider_weights.get(reading.provider_id, self.default_provider_weight)
        tier = self.tier_multipliers.get(reading.confidence_tier.value, 0.0)
        return provider * tier

    def hazard_weight(self, hazard: HazardType) -> float:
        return self.hazard_weights.get(hazard.value, self.default_hazard_weight)

    # ── per-hazard ──

    def score_hazard(
        self, hazard: HazardType, readings: Sequence[SourceReading]
    ) -> Optional[HazardScore]:
        """
        Combine the usable readings for one hazard.

        Returns None when nothing usable contributed; the hazard is then
        left out of the assessment rather than defaulted.
        """
        contributing = sorted(
            (r for r in readings if r.usable and r.hazard_type == hazard),
            key=lambda r: (r.provider_id, r.stale),
        )
        if not contributing:
            return None

        weighted_sum = 0.0
        total_weight = 0.0
        for r in contributing:
            w = self.reading_weight(r)
            weighted_sum += w * r.normalized_score
            total_weight += w

        if total_weight > 0:
            score = weighted_sum / total_weight
        else:
            # every contributor configured with zero weight: plain mean
            score = sum(r.normalized_score for r in contributing) / len(contributing)
        score = round(max(0.0, min(100.0, score)), 1)

        return HazardScore(
            hazard_type=hazard,
            score=score,
            level=classify_score(score),
            confidence=self.scorer.score(contributing),
            contributing_sources=tuple(contributing),
        )

    # ── overall ──

    def overall_score(self, hazard_scores: Mapping[HazardType, HazardScore]) -> float:
        weighted_sum = 0.0
        total_weight = 0.0
        for hazard in sorted(hazard_scores, key=lambda h: h.value):
            w = self.hazard_weight(hazard)
            weighted_sum += w * hazard_scores[hazard].score
            total_weight += w
        if total_weight <= 0:
            values = [s.score for s in hazard_scores.values()]
            return round(sum(values) / len(values), 1)
        return round(weighted_sum / total_weight, 1)

    @staticmethod
    def primary_hazards(hazard_scores: Mapping[HazardType, HazardScore]) -> Tuple[HazardType, ...]:
        """
        Hazards driving the profile: everything ≥ 70, else the top hazard
        plus the runner-up when it is above 30.
        """
        ranked = sorted(hazard_scores.values(), key=lambda s: (-s.score, s.hazard_type.value))
        primary = [s.hazard_type for s in ranked if s.score >= PRIMARY_THRESHOLD]
        if not primary and ranked:
            primary.append(ranked[0].hazard_type)
            if len(ranked) > 1 and ranked[1].score > SECONDARY_THRESHOLD:
                primary.append(ranked[1].hazard_type)
        return tuple(primary)

    # ── entry point ──

    def aggregate(
        self,
        coordinate: Coordinate,
        readings: Iterable[SourceReading],
        computed_at: Optional[datetime] = None,
    ) -> RiskAssessment:
        """
        Build a RiskAssessment from every reading collected for a request,
        failed ones included.

        Raises
        ------
        InsufficientDataError
            When no reading is usable for any hazard.
        """
        readings = list(readings)
        computed_at = computed_at or datetime.now(timezone.utc)

        grouped: Dict[HazardType, List[SourceReading]] = defaultdict(list)
        for r in readings:
            grouped[r.hazard_type].append(r)

        hazard_scores: Dict[HazardType, HazardScore] = {}
        for hazard in sorted(grouped, key=lambda h: h.value):
            result = self.score_hazard(hazard, grouped[hazard])
            if result is not None:
                hazard_scores[hazard] = result

        if not hazard_scores:
            raise InsufficientDataError(
                latitude=coordinate.latitude,
                longitude=coordinate.longitude,
                sources_failed=sorted({r.provider_id for r in readings if r.error}),
            )

        overall = self.overall_score(hazard_scores)
        contributors = [r for s in hazard_scores.values() for r in s.contributing_sources]
        failed_sources = tuple(sorted({r.provider_id for r in readings if r.error is not None}))
        degraded = bool(failed_sources) or any(r.stale for r in contributors)

        return RiskAssessment(
            coordinate=coordinate,
            overall_score=overall,
            overall_level=classify_score(overall),
            overall_confidence=ConfidenceScorer.weakest(
                s.confidence for s in hazard_scores.values()
            ),
            hazard_scores=hazard_scores,
            primary_hazards=self.primary_hazards(hazard_scores),
            data_sources_used=tuple(sorted({r.provider_id for r in contributors})),
            failed_sources=failed_sources,
            degraded=degraded,
            computed_at=computed_at,
            expires_at=computed_at + self.assessment_ttl,
        )
