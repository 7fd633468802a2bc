"""
First Street Foundation adapter (premium, property-specific).

Endpoint:
    GET {FIRST_STREET_BASE_URL}/location/{lat}/{lng}
    ?key=<FIRST_STREET_API_KEY>

Response (abridged):
    {
        "flood":    {"risk_score": 8, ...},
        "wildfire": {"risk_score": 3, ...},
        "heat":     {"risk_score": 6, ...},
        "wind":     {"risk_score": 5, ...}
    }

Each block carries a 1–10 "Factor".  Wind Factor is reported as
hurricane risk.

Normalisation (version fs-2): score = factor × 10, clamped to 0–100.
A block that is missing or has a null factor means no rating.
"""

from __future__ import annotations

from typing import Any, Dict, Sequence

from seawater.app.risk.models import ConfidenceTier, Coordinate, HazardType
from seawater.app.risk.normalization import AffineScale
from seawater.app.sources.base import NormalizedValue, SourceAdapter

HAZARD_BLOCKS: Dict[HazardType, str] = {
    HazardType.FLOOD: "flood",
    HazardType.WILDFIRE: "wildfire",
    HazardType.HEAT: "heat",
    HazardType.HURRICANE: "wind",
}

FACTOR_SCALE = AffineScale(offset=0.0, slope=10.0)


class FirstStreetAdapter(SourceAdapter):
    provider_id = "first_street"
    display_name = "First Street Foundation"
    specificity = "property"
    supported_hazards = frozenset(HAZARD_BLOCKS)
    confidence_tier = ConfidenceTier.HIGH
    requires_api_key = True
    NORMALIZATION_VERSION = "fs-2"

    base_url = "https://api.firststreet.org/risk/v1"

    async def _fetch_payload(self, coordinate: Coordinate, hazards: Sequence[HazardType]) -> Any:
        return await self._get_json(
            f"{self.base_url}/location/{coordinate.latitude}/{coordinate.longitude}",
            params={"key": self.api_key},
        )

    def normalize(self, payload: Any, hazards: Sequence[HazardType]) -> Dict[HazardType, NormalizedValue]:
        if not isinstance(payload, dict):
            raise ValueError("expected a JSON object")
        values: Dict[HazardType, NormalizedValue] = {}
        for hazard in hazards:
            block = payload.get(HAZARD_BLOCKS[hazard])
            if block is None:
                continue
            factor = block["risk_score"]
            values[hazard] = NormalizedValue(raw_value=factor, score=FACTOR_SCALE.normalize(factor))
        return values
