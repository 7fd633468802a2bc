"""
USGS adapter — seismic design maps and streamflow statistics.

Two independent free services:

    earthquake   GET {USGS_DESIGN_MAPS_URL}?latitude=..&longitude=..
                     &riskCategory=II&siteClass=Default&title=seawater
                 → {"response": {"data": {"pga": 0.21, ...}}}

    drought      GET {USGS_WATER_URL}?lat=..&lon=..&statType=percentile
                 → {"site": "...", "percentile": 12.0}
                 percentile of current streamflow at the nearest gauge

The calls run concurrently and fail independently: a broken water
service still leaves an earthquake score, and vice versa.  Only when
every requested call fails does the whole fetch fail.  A 429 on one call
still counts towards the rate-limit breaker.

═══════════════════════════════════════════════════════════════════════════
NORMALISATION  (version usgs-2)
═══════════════════════════════════════════════════════════════════════════

    PGA (g)      0     0.05   0.1   0.2   0.4   0.8+
    score        0     10     25    50    75    100      (linear between)

    drought = 100 − streamflow percentile
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Sequence

from seawater.app.core.errors import SourceError, SourceInvalidResponse, SourceRateLimited
from seawater.app.risk.models import ConfidenceTier, Coordinate, HazardType
from seawater.app.risk.normalization import LinearScale, PiecewiseLinear
from seawater.app.sources.base import NormalizedValue, SourceAdapter

PGA_SCALE = PiecewiseLinear(knots=(
    (0.0, 0.0),
    (0.05, 10.0),
    (0.1, 25.0),
    (0.2, 50.0),
    (0.4, 75.0),
    (0.8, 100.0),
))

STREAMFLOW_SCALE = LinearScale(lo=0.0, hi=100.0, invert=True)

DESIGN_MAPS_URL = "https://earthquake.usgs.gov/ws/designmaps/asce7-22.json"
WATER_URL = "https://waterservices.usgs.gov/nwis/stat"


class UsgsAdapter(SourceAdapter):
    provider_id = "usgs"
    display_name = "USGS hazards & water"
    specificity = "tract"
    supported_hazards = frozenset({HazardType.EARTHQUAKE, HazardType.DROUGHT})
    confidence_tier = ConfidenceTier.HIGH
    NORMALIZATION_VERSION = "usgs-2"

    def __init__(self, *args, design_maps_url: str = DESIGN_MAPS_URL, water_url: str = WATER_URL, **kwargs):
        super().__init__(*args, **kwargs)
        self.design_maps_url = design_maps_url
        self.water_url = water_url

    async def _design_maps(self, coordinate: Coordinate) -> Any:
        return await self._get_json(
            self.design_maps_url,
            params={
                "latitude": coordinate.latitude,
                "longitude": coordinate.longitude,
                "riskCategory": "II",
                "siteClass": "Default",
                "title": "seawater",
            },
        )

    async def _streamflow(self, coordinate: Coordinate) -> Any:
        return await self._get_json(
            self.water_url,
            params={
                "lat": coordinate.latitude,
                "lon": coordinate.longitude,
                "statType": "percentile",
            },
        )

    async def _fetch_payload(self, coordinate: Coordinate, hazards: Sequence[HazardType]) -> Any:
        calls = {}
        if HazardType.EARTHQUAKE in hazards:
            calls[HazardType.EARTHQUAKE] = self._design_maps(coordinate)
        if HazardType.DROUGHT in hazards:
            calls[HazardType.DROUGHT] = self._streamflow(coordinate)

        results = await asyncio.gather(*calls.values(), return_exceptions=True)

        payload: Dict[HazardType, Any] = {}
        errors: List[SourceError] = []
        for hazard, result in zip(calls, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                error = self._translate(result)
                errors.append(error)
                payload[hazard] = error
            else:
                payload[hazard] = result

        if errors and len(errors) == len(calls):
            raise errors[0]
        return payload

    def partially_rate_limited(self, payload: Any) -> bool:
        return any(isinstance(part, SourceRateLimited) for part in payload.values())

    def normalize(self, payload: Any, hazards: Sequence[HazardType]) -> Dict[HazardType, NormalizedValue]:
        values: Dict[HazardType, NormalizedValue] = {}
        for hazard in hazards:
            part = payload.get(hazard)
            if part is None:
                continue
            if isinstance(part, SourceError):
                values[hazard] = NormalizedValue(raw_value=None, score=None, error=part)
                continue
            try:
                if hazard is HazardType.EARTHQUAKE:
                    raw = part["response"]["data"]["pga"]
                    values[hazard] = NormalizedValue(raw_value=raw, score=PGA_SCALE.normalize(raw))
                else:
                    raw = part["percentile"]
                    values[hazard] = NormalizedValue(raw_value=raw, score=STREAMFLOW_SCALE.normalize(raw))
            except (KeyError, TypeError) as exc:
                values[hazard] = NormalizedValue(
                    raw_value=None,
                    score=None,
                    error=SourceInvalidResponse(self.provider_id, f"malformed {hazard.value} payload: {exc}"),
                )
        return values
