"""
NOAA regional climate adapter (free, generic regional estimate).

Endpoint:
    GET {NOAA_BASE_URL}/anomalies?lat=..&lon=..
    token: <NOAA_API_TOKEN>          (optional; raises the daily quota)

Response:
    {"temperature_anomaly_c": 1.8, "precipitation_anomaly_pct": -22.0,
     "period": "1991-2020", "region": "..."}

The numbers describe the surrounding climate division, not the parcel,
so this source carries the lowest provider weight.

Normalisation (version noaa-1):
    heat     = 30 + 14 × temperature anomaly (°C)       +2.5 °C → 65
    drought  = 30 − 1.4 × precipitation anomaly (%)     −50 %   → 100
    both clamped to 0–100.
"""

from __future__ import annotations

from typing import Any, Dict, Sequence

from seawater.app.risk.models import ConfidenceTier, Coordinate, HazardType
from seawater.app.risk.normalization import AffineScale
from seawater.app.sources.base import NormalizedValue, SourceAdapter

HEAT_SCALE = AffineScale(offset=30.0, slope=14.0)
DROUGHT_SCALE = AffineScale(offset=30.0, slope=-1.4)

HAZARD_FIELDS = {
    HazardType.HEAT: ("temperature_anomaly_c", HEAT_SCALE),
    HazardType.DROUGHT: ("precipitation_anomaly_pct", DROUGHT_SCALE),
}


class NoaaClimateAdapter(SourceAdapter):
    provider_id = "noaa"
    display_name = "NOAA regional climate"
    specificity = "regional"
    supported_hazards = frozenset(HAZARD_FIELDS)
    confidence_tier = ConfidenceTier.MEDIUM
    NORMALIZATION_VERSION = "noaa-1"

    base_url = "https://www.ncei.noaa.gov/access/services/climate/v1"

    async def _fetch_payload(self, coordinate: Coordinate, hazards: Sequence[HazardType]) -> Any:
        headers = {"token": self.api_key} if self.api_key else None
        return await self._get_json(
            f"{self.base_url}/anomalies",
            params={"lat": coordinate.latitude, "lon": coordinate.longitude},
            headers=headers,
        )

    def normalize(self, payload: Any, hazards: Sequence[HazardType]) -> Dict[HazardType, NormalizedValue]:
        if not isinstance(payload, dict):
            raise ValueError("expected a JSON object")
        values: Dict[HazardType, NormalizedValue] = {}
        for hazard in hazards:
            field_name, scale = HAZARD_FIELDS[hazard]
            raw = payload.get(field_name)
            values[hazard] = NormalizedValue(raw_value=raw, score=scale.normalize(raw))
        return values
