"""
normalization.py — Provider scale → canonical 0–100 score.

Every provider reports risk on its own scale.  Each adapter declares an
explicit, versioned mapping built from the primitives below; the
Aggregator never re-derives normalisation.

═══════════════════════════════════════════════════════════════════════════
PRIMITIVES
═══════════════════════════════════════════════════════════════════════════

    Passthrough         value already on 0–100 → clamp only
    LinearScale         score = (value − lo) / (hi − lo) × 100, clamped
                        invert=True flips the direction (high value = low risk)
    AffineScale         score = offset + slope × value, clamped
                        (NOAA anomaly formulas)
    PiecewiseLinear     interpolate between (value, score) knots, clamped to
                        the first / last knot outside the range
    LookupTable         categorical label → score; unknown / unmapped labels
                        yield None (no score, never 0)

All primitives return None for None / NaN / unparseable input.  Results
are rounded to one decimal so identical inputs always produce identical
scores.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

SCORE_MIN = 0.0
SCORE_MAX = 100.0


def clamp_score(value: float) -> float:
    """Clamp to [0, 100] and round to one decimal."""
    return round(max(SCORE_MIN, min(SCORE_MAX, value)), 1)


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(f):
        return None
    return f


@dataclass(frozen=True)
class Passthrough:
    """Provider already reports 0–100."""

    def normalize(self, value: Any) -> Optional[float]:
        f = _as_float(value)
        return None if f is None else clamp_score(f)


@dataclass(frozen=True)
class LinearScale:
    """Map [lo, hi] onto [0, 100]."""
    lo: float
    hi: float
    invert: bool = False

    def __post_init__(self) -> None:
        if self.hi == self.lo:
            raise ValueError("LinearScale needs hi != lo")

    def normalize(self, value: Any) -> Optional[float]:
        f = _as_float(value)
        if f is None:
            return None
        frac = (f - self.lo) / (self.hi - self.lo)
        if self.invert:
            frac = 1.0 - frac
        return clamp_score(frac * 100.0)


@dataclass(frozen=True)
class AffineScale:
    """score = offset + slope × value."""
    offset: float
    slope: float

    def normalize(self, value: Any) -> Optional[float]:
        f = _as_float(value)
        return None if f is None else clamp_score(self.offset + self.slope * f)


@dataclass(frozen=True)
class PiecewiseLinear:
    """Interpolate between ascending (value, score) knots."""
    knots: Tuple[Tuple[float, float], ...]

    def __post_init__(self) -> None:
        if len(self.knots) < 2:
            raise ValueError("PiecewiseLinear needs at least two knots")
        xs = [x for x, _ in self.knots]
        if xs != sorted(xs) or len(set(xs)) != len(xs):
            raise ValueError("PiecewiseLinear knots must be strictly ascending")

    def normalize(self, value: Any) -> Optional[float]:
        f = _as_float(value)
        if f is None:
            return None
        first_x, first_y = self.knots[0]
        last_x, last_y = self.knots[-1]
        if f <= first_x:
            return clamp_score(first_y)
        if f >= last_x:
            return clamp_score(last_y)
        for (x0, y0), (x1, y1) in zip(self.knots, self.knots[1:]):
            if x0 <= f <= x1:
                return clamp_score(y0 + (f - x0) * (y1 - y0) / (x1 - x0))
        return None  # unreachable with ascending knots


def _label_key(label: Any) -> str:
    return str(label).strip().upper().replace(" ", "_").replace("-", "_")


@dataclass(frozen=True)
class LookupTable:
    """
    Categorical label → score.

    Labels are matched case-insensitively with spaces / hyphens folded to
    underscores, so "Relatively High" and "RELATIVELY_HIGH" are the same
    entry.  A label mapped to None means "provider says: no rating".
    """
    entries: Mapping[str, Optional[float]]
    _index: Dict[str, Optional[float]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "_index", {_label_key(k): v for k, v in self.entries.items()}
        )

    def normalize(self, value: Any) -> Optional[float]:
        if value is None:
            return None
        score = self._index.get(_label_key(value))
        return None if score is None else clamp_score(score)
