"""
Tests for score normalisation.

Covers:
    • Mapping primitives (passthrough, linear, affine, piecewise, lookup)
    • Each provider adapter's mapping table, driven through normalize()
      with representative payloads
"""

from __future__ import annotations

import pytest

from seawater.app.core.errors import SourceUnavailable
from seawater.app.risk.models import HazardType
from seawater.app.risk.normalization import (
    AffineScale,
    LinearScale,
    LookupTable,
    Passthrough,
    PiecewiseLinear,
    clamp_score,
)
from seawater.app.sources.climate_check import ClimateCheckAdapter
from seawater.app.sources.fema import FemaNriAdapter
from seawater.app.sources.fema_flood_zone import FemaFloodZoneAdapter
from seawater.app.sources.first_street import FirstStreetAdapter
from seawater.app.sources.noaa import NoaaClimateAdapter
from seawater.app.sources.usgs import UsgsAdapter


# ═══════════════════════════════════════════════════════════════════════════
# Primitives
# ═══════════════════════════════════════════════════════════════════════════

class TestClampScore:
    def test_clamp_low(self):
        assert clamp_score(-5) == 0.0

    def test_clamp_high(self):
        assert clamp_score(140) == 100.0

    def test_rounds_one_decimal(self):
        assert clamp_score(83.243) == 83.2


class TestPassthrough:
    def test_value(self):
        assert Passthrough().normalize(72.4) == 72.4

    def test_numeric_string(self):
        assert Passthrough().normalize("55") == 55.0

    @pytest.mark.parametrize("value", [None, "n/a", float("nan"), True])
    def test_not_a_number(self, value):
        assert Passthrough().normalize(value) is None


class TestLinearScale:
    def test_midpoint(self):
        assert LinearScale(0, 10).normalize(5) == 50.0

    def test_inverted(self):
        assert LinearScale(0, 100, invert=True).normalize(12) == 88.0

    def test_degenerate_range(self):
        with pytest.raises(ValueError):
            LinearScale(3, 3)


class TestAffineScale:
    def test_formula(self):
        assert AffineScale(30.0, 14.0).normalize(2.5) == 65.0

    def test_clamped(self):
        assert AffineScale(30.0, -1.4).normalize(-80) == 100.0


class TestPiecewiseLinear:
    scale = PiecewiseLinear(knots=((0.0, 0.0), (0.1, 25.0), (0.2, 50.0)))

    def test_on_knot(self):
        assert self.scale.normalize(0.1) == 25.0

    def test_between_knots(self):
        assert self.scale.normalize(0.15) == 37.5

    def test_beyond_last_knot(self):
        assert self.scale.normalize(5.0) == 50.0

    def test_below_first_knot(self):
        assert self.scale.normalize(-1.0) == 0.0

    def test_unsorted_knots_rejected(self):
        with pytest.raises(ValueError):
            PiecewiseLinear(knots=((0.2, 50.0), (0.1, 25.0)))


class TestLookupTable:
    table = LookupTable({"Very High": 90, "Relatively Low": 25, "No Rating": None})

    def test_case_and_spacing_folded(self):
        assert self.table.normalize("very high") == 90.0
        assert self.table.normalize("RELATIVELY_LOW") == 25.0
        assert self.table.normalize("relatively-low") == 25.0

    def test_no_rating(self):
        assert self.table.normalize("No Rating") is None

    def test_unknown_label(self):
        assert self.table.normalize("Extreme") is None

    def test_none(self):
        assert self.table.normalize(None) is None


# ═══════════════════════════════════════════════════════════════════════════
# Provider tables
# ═══════════════════════════════════════════════════════════════════════════

def _nri(properties):
    return {"features": [{"properties": properties}]}


class TestFemaNriTable:
    adapter = FemaNriAdapter(None)

    def test_rating_lookup(self):
        values = self.adapter.normalize(_nri({"RFLD_RISKR": "Very High"}), [HazardType.FLOOD])
        assert values[HazardType.FLOOD].score == 90.0
        assert values[HazardType.FLOOD].raw_value == "Very High"

    def test_numeric_score_preferred(self):
        values = self.adapter.normalize(
            _nri({"WFIR_RISKS": 61.3, "WFIR_RISKR": "Relatively High"}), [HazardType.WILDFIRE]
        )
        assert values[HazardType.WILDFIRE].score == 61.3

    def test_flood_takes_max_of_riverine_and_coastal(self):
        values = self.adapter.normalize(
            _nri({"RFLD_RISKS": 40.2, "CFLD_RISKS": 88.0}), [HazardType.FLOOD]
        )
        assert values[HazardType.FLOOD].score == 88.0

    def test_legacy_rating_field(self):
        values = self.adapter.normalize(_nri({"HRCN_RATNG": "Relatively Moderate"}), [HazardType.HURRICANE])
        assert values[HazardType.HURRICANE].score == 50.0

    def test_heat_uses_heat_wave_block(self):
        values = self.adapter.normalize(_nri({"HWAV_RISKR": "Very Low"}), [HazardType.HEAT])
        assert values[HazardType.HEAT].score == 10.0

    def test_no_rating_has_no_score(self):
        values = self.adapter.normalize(_nri({"ERQK_RISKR": "Not Applicable"}), [HazardType.EARTHQUAKE])
        assert values[HazardType.EARTHQUAKE].score is None

    def test_missing_hazard_absent(self):
        values = self.adapter.normalize(_nri({}), [HazardType.TORNADO])
        assert HazardType.TORNADO not in values

    def test_unmapped_tract(self):
        assert self.adapter.normalize({"features": []}, [HazardType.FLOOD]) == {}

    def test_malformed(self):
        with pytest.raises(KeyError):
            self.adapter.normalize({"results": []}, [HazardType.FLOOD])


def _zone(zone, subtype=None):
    return {"features": [{"attributes": {"FLD_ZONE": zone, "ZONE_SUBTY": subtype}}]}


class TestFemaFloodZoneTable:
    adapter = FemaFloodZoneAdapter(None)

    @pytest.mark.parametrize("zone,expected", [
        ("VE", 95.0),
        ("V", 95.0),
        ("AE", 80.0),
        ("A", 80.0),
        ("AO", 80.0),
        ("B", 40.0),
        ("X", 10.0),
        ("C", 10.0),
    ])
    def test_zones(self, zone, expected):
        assert self.adapter.normalize(_zone(zone), [HazardType.FLOOD])[HazardType.FLOOD].score == expected

    def test_shaded_x(self):
        values = self.adapter.normalize(
            _zone("X", "0.2 PCT ANNUAL CHANCE FLOOD HAZARD"), [HazardType.FLOOD]
        )
        assert values[HazardType.FLOOD].score == 40.0
        assert values[HazardType.FLOOD].raw_value == "X_SHADED"

    def test_zone_d_undetermined(self):
        assert self.adapter.normalize(_zone("D"), [HazardType.FLOOD])[HazardType.FLOOD].score is None

    def test_static_ttl(self):
        assert self.adapter.ttl_seconds == 86400

    def test_arcgis_error(self):
        with pytest.raises(ValueError):
            self.adapter.normalize({"error": {"code": 400}}, [HazardType.FLOOD])


class TestFirstStreetTable:
    adapter = FirstStreetAdapter(None, api_key="test-key")

    def test_factor_times_ten(self):
        values = self.adapter.normalize({"flood": {"risk_score": 8}}, [HazardType.FLOOD])
        assert values[HazardType.FLOOD].score == 80.0
        assert values[HazardType.FLOOD].raw_value == 8

    def test_wind_is_hurricane(self):
        values = self.adapter.normalize({"wind": {"risk_score": 5}}, [HazardType.HURRICANE])
        assert values[HazardType.HURRICANE].score == 50.0

    def test_missing_block(self):
        assert self.adapter.normalize({"flood": {"risk_score": 1}}, [HazardType.HEAT]) == {}

    def test_null_factor(self):
        values = self.adapter.normalize({"heat": {"risk_score": None}}, [HazardType.HEAT])
        assert values[HazardType.HEAT].score is None

    def test_requires_key(self):
        with pytest.raises(ValueError, match="API key"):
            FirstStreetAdapter(None)


class TestClimateCheckTable:
    adapter = ClimateCheckAdapter(None, api_key="test-key")

    def test_passthrough(self):
        values = self.adapter.normalize({"flood_risk": {"score": 72.4}}, [HazardType.FLOOD])
        assert values[HazardType.FLOOD].score == 72.4

    def test_clamped(self):
        values = self.adapter.normalize({"tornado_risk": {"score": 130}}, [HazardType.TORNADO])
        assert values[HazardType.TORNADO].score == 100.0


class TestNoaaTable:
    adapter = NoaaClimateAdapter(None)

    def test_heat(self):
        values = self.adapter.normalize({"temperature_anomaly_c": 2.5}, [HazardType.HEAT])
        assert values[HazardType.HEAT].score == 65.0

    def test_drought_dry(self):
        values = self.adapter.normalize({"precipitation_anomaly_pct": -50.0}, [HazardType.DROUGHT])
        assert values[HazardType.DROUGHT].score == 100.0

    def test_drought_wet(self):
        values = self.adapter.normalize({"precipitation_anomaly_pct": 10.0}, [HazardType.DROUGHT])
        assert values[HazardType.DROUGHT].score == 16.0

    def test_missing_field(self):
        values = self.adapter.normalize({}, [HazardType.HEAT])
        assert values[HazardType.HEAT].score is None


class TestUsgsTable:
    adapter = UsgsAdapter(None)

    def test_pga_interpolated(self):
        payload = {HazardType.EARTHQUAKE: {"response": {"data": {"pga": 0.3}}}}
        values = self.adapter.normalize(payload, [HazardType.EARTHQUAKE])
        assert values[HazardType.EARTHQUAKE].score == 62.5

    def test_pga_beyond_table(self):
        payload = {HazardType.EARTHQUAKE: {"response": {"data": {"pga": 1.2}}}}
        values = self.adapter.normalize(payload, [HazardType.EARTHQUAKE])
        assert values[HazardType.EARTHQUAKE].score == 100.0

    def test_streamflow_inverted(self):
        payload = {HazardType.DROUGHT: {"percentile": 12.0}}
        values = self.adapter.normalize(payload, [HazardType.DROUGHT])
        assert values[HazardType.DROUGHT].score == 88.0

    def test_failed_part_carries_error(self):
        payload = {
            HazardType.EARTHQUAKE: {"response": {"data": {"pga": 0.1}}},
            HazardType.DROUGHT: SourceUnavailable("usgs", "HTTP 503"),
        }
        values = self.adapter.normalize(payload, [HazardType.EARTHQUAKE, HazardType.DROUGHT])
        assert values[HazardType.EARTHQUAKE].score == 25.0
        assert values[HazardType.DROUGHT].error is not None

    def test_malformed_part(self):
        payload = {HazardType.DROUGHT: {"unexpected": True}}
        values = self.adapter.normalize(payload, [HazardType.DROUGHT])
        assert values[HazardType.DROUGHT].error.error_kind == "source_invalid_response"
