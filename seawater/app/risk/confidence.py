"""
ConfidenceScorer — source count, agreement and recency → ConfidenceTier.

Rules (evaluated in order):

    1. Every contributing reading is stale          → LOW
    2. ≥ 2 independent fresh providers whose scores
       span no more than `tolerance` points          → HIGH
    3. Anything else (one source, or disagreement)   → MEDIUM

"Independent" means distinct provider ids; two readings from the same
provider never corroborate each other.
"""

from __future__ import annotations

from typing import Dict, Iterable, List

from seawater.app.risk.models import ConfidenceTier, SourceReading

DEFAULT_TOLERANCE = 15.0


class ConfidenceScorer:
    def __init__(self, tolerance: float = DEFAULT_TOLERANCE):
        if tolerance < 0:
            raise ValueError("tolerance must be >= 0")
        self.tolerance = tolerance

    def score(self, readings: Iterable[SourceReading]) -> ConfidenceTier:
        usable = [r for r in readings if r.usable]
        if not usable:
            return ConfidenceTier.LOW

        fresh = [r for r in usable if not r.stale]
        if not fresh:
            return ConfidenceTier.LOW

        # one score per provider; duplicates from a provider collapse to the first
        by_provider: Dict[str, float] = {}
        for r in sorted(fresh, key=lambda r: r.provider_id):
            by_provider.setdefault(r.provider_id, r.normalized_score)

        if len(by_provider) >= 2 and self.spread(by_provider.values()) <= self.tolerance:
            return ConfidenceTier.HIGH
        return ConfidenceTier.MEDIUM

    @staticmethod
    def spread(scores: Iterable[float]) -> float:
        values: List[float] = list(scores)
        return max(values) - min(values) if values else 0.0

    @staticmethod
    def weakest(tiers: Iterable[ConfidenceTier]) -> ConfidenceTier:
        """Lowest tier in the collection (LOW if empty)."""
        ranked = sorted(tiers, key=lambda t: t.rank)
        return ranked[0] if ranked else ConfidenceTier.LOW
