"""
ClimateCheck adapter (premium, property-specific).

Endpoint:
    POST {CLIMATE_CHECK_BASE_URL}/climate-risk
    Authorization: Bearer <CLIMATE_CHECK_API_KEY>
    {"latitude": .., "longitude": .., "include_projections": false}

Response: one "<hazard>_risk" object per hazard with a 0–100 "score".
Scores pass through unchanged apart from clamping (version cc-1).
"""

from __future__ import annotations

from typing import Any, Dict, Sequence

from seawater.app.risk.models import ConfidenceTier, Coordinate, HazardType
from seawater.app.risk.normalization import Passthrough
from seawater.app.sources.base import NormalizedValue, SourceAdapter

HAZARD_FIELDS: Dict[HazardType, str] = {
    HazardType.FLOOD: "flood_risk",
    HazardType.WILDFIRE: "wildfire_risk",
    HazardType.HURRICANE: "hurricane_risk",
    HazardType.TORNADO: "tornado_risk",
    HazardType.EARTHQUAKE: "earthquake_risk",
    HazardType.HEAT: "heat_risk",
    HazardType.DROUGHT: "drought_risk",
}

SCORE_SCALE = Passthrough()


class ClimateCheckAdapter(SourceAdapter):
    provider_id = "climate_check"
    display_name = "ClimateCheck"
    specificity = "property"
    supported_hazards = frozenset(HAZARD_FIELDS)
    confidence_tier = ConfidenceTier.HIGH
    requires_api_key = True
    NORMALIZATION_VERSION = "cc-1"

    base_url = "https://api.climatecheck.com/v1"

    async def _fetch_payload(self, coordinate: Coordinate, hazards: Sequence[HazardType]) -> Any:
        return await self._get_json(
            f"{self.base_url}/climate-risk",
            method="POST",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json_body={
                "latitude": coordinate.latitude,
                "longitude": coordinate.longitude,
                "include_projections": False,
            },
        )

    def normalize(self, payload: Any, hazards: Sequence[HazardType]) -> Dict[HazardType, NormalizedValue]:
        if not isinstance(payload, dict):
            raise ValueError("expected a JSON object")
        values: Dict[HazardType, NormalizedValue] = {}
        for hazard in hazards:
            block = payload.get(HAZARD_FIELDS[hazard])
            if not block:
                continue
            raw = block.get("score")
            values[hazard] = NormalizedValue(raw_value=raw, score=SCORE_SCALE.normalize(raw))
        return values
