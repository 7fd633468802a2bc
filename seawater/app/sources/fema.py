"""
FEMA National Risk Index adapter (free, census-tract-level government index).

Endpoint:
    GET {FEMA_BASE_URL}/nationalriskindex/geopoint?lat=..&lng=..&format=json

The response is a GeoJSON FeatureCollection; the first feature's
properties carry one block of fields per hazard prefix:

    {PREFIX}_RISKS    risk score, national percentile 0–100
    {PREFIX}_RISKR    risk rating label ("Very High", "Relatively Low", ...)
    {PREFIX}_RATNG    older rating field name, same labels

═══════════════════════════════════════════════════════════════════════════
NORMALISATION  (version nri-2)
═══════════════════════════════════════════════════════════════════════════

    1. A numeric _RISKS value passes through (clamped to 0–100).
    2. Otherwise the rating label is looked up:

        Very High               90
        Relatively High         75
        Relatively Moderate     50
        Relatively Low          25
        Very Low                10
        No Rating / Not Applicable / Insufficient Data / Not Mapped → none

    Flood takes the higher of riverine (RFLD) and coastal (CFLD).
    Heat maps to the heat-wave block (HWAV).
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from seawater.app.risk.models import ConfidenceTier, Coordinate, HazardType
from seawater.app.risk.normalization import LookupTable, Passthrough
from seawater.app.sources.base import NormalizedValue, SourceAdapter

HAZARD_PREFIXES: Dict[HazardType, Tuple[str, ...]] = {
    HazardType.FLOOD: ("RFLD", "CFLD"),
    HazardType.WILDFIRE: ("WFIR",),
    HazardType.HURRICANE: ("HRCN",),
    HazardType.TORNADO: ("TRND",),
    HazardType.EARTHQUAKE: ("ERQK",),
    HazardType.DROUGHT: ("DRGT",),
    HazardType.HEAT: ("HWAV",),
}

RATING_TABLE = LookupTable({
    "Very High": 90,
    "Relatively High": 75,
    "Relatively Moderate": 50,
    "Relatively Low": 25,
    "Very Low": 10,
    "No Rating": None,
    "Not Applicable": None,
    "Insufficient Data": None,
    "Not Mapped": None,
})

SCORE_SCALE = Passthrough()


class FemaNriAdapter(SourceAdapter):
    provider_id = "fema_nri"
    display_name = "FEMA National Risk Index"
    specificity = "tract"
    supported_hazards = frozenset(HAZARD_PREFIXES)
    confidence_tier = ConfidenceTier.MEDIUM
    NORMALIZATION_VERSION = "nri-2"

    base_url = "https://www.fema.gov/api/open/v2"

    async def _fetch_payload(self, coordinate: Coordinate, hazards: Sequence[HazardType]) -> Any:
        return await self._get_json(
            f"{self.base_url}/nationalriskindex/geopoint",
            params={
                "lat": coordinate.latitude,
                "lng": coordinate.longitude,
                "format": "json",
            },
        )

    @staticmethod
    def _block(properties: Mapping[str, Any], prefix: str) -> NormalizedValue:
        score = SCORE_SCALE.normalize(properties.get(f"{prefix}_RISKS"))
        if score is not None:
            return NormalizedValue(raw_value=properties.get(f"{prefix}_RISKS"), score=score)
        rating = properties.get(f"{prefix}_RISKR") or properties.get(f"{prefix}_RATNG")
        return NormalizedValue(raw_value=rating, score=RATING_TABLE.normalize(rating))

    def normalize(self, payload: Any, hazards: Sequence[HazardType]) -> Dict[HazardType, NormalizedValue]:
        features = payload["features"]
        if not isinstance(features, list):
            raise ValueError("'features' is not a list")
        if not features:
            # tract not mapped by the index
            return {}
        properties = features[0].get("properties") or {}

        values: Dict[HazardType, NormalizedValue] = {}
        for hazard in hazards:
            best: Optional[NormalizedValue] = None
            for prefix in HAZARD_PREFIXES[hazard]:
                block = self._block(properties, prefix)
                if block.score is None:
                    if best is None and block.raw_value is not None:
                        best = block
                    continue
                if best is None or best.score is None or block.score > best.score:
                    best = block
            if best is not None:
                values[hazard] = best
        return values
