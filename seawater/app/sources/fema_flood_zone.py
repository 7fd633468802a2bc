"""
FEMA National Flood Hazard Layer adapter — regulatory flood-zone designation.

The designation changes only when FEMA re-maps a panel, so readings are
treated as static data and cached for the long static TTL (24 h).

Endpoint (ArcGIS REST point query on the flood hazard zones layer):
    GET {FEMA_FLOOD_ZONE_URL}?geometry=lng,lat&geometryType=esriGeometryPoint
        &inSR=4326&spatialRel=esriSpatialRelIntersects
        &outFields=FLD_ZONE,ZONE_SUBTY,SFHA_TF&returnGeometry=false&f=json

Response: {"features": [{"attributes": {"FLD_ZONE": "AE", "ZONE_SUBTY": ...}}]}

═══════════════════════════════════════════════════════════════════════════
NORMALISATION  (version nfhl-1)
═══════════════════════════════════════════════════════════════════════════

    V, VE                          95   coastal high hazard (1% + wave action)
    A, AE, AH, AO, AR, A99         80   special flood hazard area (1% annual)
    X shaded / B                   40   moderate (0.2% annual)
    X unshaded / C                 10   minimal
    D                              —    undetermined, no score
    no feature at the point        —    unmapped, no score

"Shaded X" is recognised from ZONE_SUBTY containing "0.2 PCT".
"""

from __future__ import annotations

from typing import Any, Dict, Sequence

from seawater.app.risk.models import ConfidenceTier, Coordinate, HazardType
from seawater.app.risk.normalization import LookupTable
from seawater.app.sources.base import NormalizedValue, SourceAdapter

ZONE_TABLE = LookupTable({
    "V": 95,
    "VE": 95,
    "A": 80,
    "AE": 80,
    "AH": 80,
    "AO": 80,
    "AR": 80,
    "A99": 80,
    "X_SHADED": 40,
    "B": 40,
    "X": 10,
    "C": 10,
    "D": None,
    "AREA_NOT_INCLUDED": None,
})


def zone_label(attributes: Dict[str, Any]) -> str:
    zone = str(attributes.get("FLD_ZONE") or "").strip().upper()
    subtype = str(attributes.get("ZONE_SUBTY") or "").upper()
    if zone == "X" and "0.2 PCT" in subtype:
        return "X_SHADED"
    return zone


class FemaFloodZoneAdapter(SourceAdapter):
    provider_id = "fema_flood_zone"
    display_name = "FEMA National Flood Hazard Layer"
    specificity = "tract"
    supported_hazards = frozenset({HazardType.FLOOD})
    confidence_tier = ConfidenceTier.HIGH
    static_data = True
    NORMALIZATION_VERSION = "nfhl-1"

    base_url = "https://hazards.fema.gov/arcgis/rest/services/public/NFHL/MapServer/28/query"

    async def _fetch_payload(self, coordinate: Coordinate, hazards: Sequence[HazardType]) -> Any:
        return await self._get_json(
            self.base_url,
            params={
                "geometry": f"{coordinate.longitude},{coordinate.latitude}",
                "geometryType": "esriGeometryPoint",
                "inSR": 4326,
                "spatialRel": "esriSpatialRelIntersects",
                "outFields": "FLD_ZONE,ZONE_SUBTY,SFHA_TF",
                "returnGeometry": "false",
                "f": "json",
            },
        )

    def normalize(self, payload: Any, hazards: Sequence[HazardType]) -> Dict[HazardType, NormalizedValue]:
        if "error" in payload:
            raise ValueError(f"NFHL error: {payload['error']}")
        features = payload["features"]
        if not features:
            return {}
        label = zone_label(features[0].get("attributes") or {})
        return {HazardType.FLOOD: NormalizedValue(raw_value=label, score=ZONE_TABLE.normalize(label))}
