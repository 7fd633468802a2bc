"""
Tests for the HTTP surface: risk routes, health probes, middleware.

The orchestrator dependency is overridden with one built from stub
adapters, so no provider is ever contacted.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from seawater.app.api.v1.risk import get_orchestrator
from seawater.app.core.errors import SourceUnavailable
from seawater.app.main import app
from seawater.app.risk.models import ConfidenceTier, HazardType
from seawater.app.risk.orchestrator import RequestOrchestrator

from conftest import FIXED_TIME

FLOOD = HazardType.FLOOD
HEAT = HazardType.HEAT

MIAMI_BODY = {"latitude": 25.7617, "longitude": -80.1918}


@pytest.fixture
def stubs(make_stub):
    return {
        "first_street": make_stub("first_street", {FLOOD: 80.0}),
        "fema_nri": make_stub("fema_nri", {FLOOD: 90.0}, tier=ConfidenceTier.MEDIUM),
        "noaa": make_stub(
            "noaa", {HEAT: 50.0}, tier=ConfidenceTier.MEDIUM,
            error=SourceUnavailable("noaa", "HTTP 503"),
        ),
    }


@pytest.fixture
def client(stubs, cache, aggregator):
    orchestrator = RequestOrchestrator(
        stubs, cache, aggregator,
        global_deadline_seconds=2.0,
        allow_stale_on_failure=True,
        cancel_pending_on_deadline=True,
        now=lambda: FIXED_TIME,
    )
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class TestAssessEndpoint:
    def test_assess_flood(self, client):
        r = client.post("/api/v1/risk/assess", json={**MIAMI_BODY, "hazard_types": ["flood"]})
        assert r.status_code == 200
        data = r.json()
        assert data["overall_score"] == 83.2
        assert data["overall_level"] == "VERY_HIGH"
        assert data["overall_confidence"] == "high"
        assert data["hazard_scores"]["flood"]["score"] == 83.2
        assert len(data["hazard_scores"]["flood"]["contributing_sources"]) == 2
        assert data["status"] == "success"
        assert data["degraded"] is False

    def test_failed_provider_degrades(self, client):
        r = client.post("/api/v1/risk/assess", json=MIAMI_BODY)
        assert r.status_code == 200
        data = r.json()
        assert data["degraded"] is True
        assert data["failed_sources"] == ["noaa"]
        assert data["status"] == "partial_success"
        assert "heat" not in data["hazard_scores"]

    def test_no_data(self, client):
        r = client.post("/api/v1/risk/assess", json={**MIAMI_BODY, "sources": ["noaa"]})
        assert r.status_code == 404
        assert r.json()["error"]["code"] == "NO_DATA_AVAILABLE"

    def test_unknown_source(self, client):
        r = client.post("/api/v1/risk/assess", json={**MIAMI_BODY, "sources": ["crystal_ball"]})
        assert r.status_code == 422
        body = r.json()["error"]
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"]["field"] == "sources"

    def test_unknown_hazard(self, client):
        r = client.post("/api/v1/risk/assess", json={**MIAMI_BODY, "hazard_types": ["meteor"]})
        assert r.status_code == 422
        assert r.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_latitude_out_of_range(self, client):
        r = client.post("/api/v1/risk/assess", json={"latitude": 95.0, "longitude": 0.0})
        assert r.status_code == 422

    def test_cached_on_repeat(self, client, stubs):
        body = {**MIAMI_BODY, "hazard_types": ["flood"]}
        first = client.post("/api/v1/risk/assess", json=body).json()
        second = client.post("/api/v1/risk/assess", json=body).json()
        assert stubs["first_street"].calls_made == 1
        assert first["cached"] is False
        assert second["cached"] is True
        assert second["cache_age_seconds"] == 0.0

    def test_source_status_block(self, client):
        r = client.post("/api/v1/risk/assess", json={**MIAMI_BODY, "hazard_types": ["flood"]})
        statuses = {s["provider_id"]: s for s in r.json()["source_status"]}
        assert statuses["first_street"]["outcome"] == "success"
        assert statuses["first_street"]["external_calls"] == 1
        assert statuses["noaa"]["outcome"] == "skipped"
        assert statuses["noaa"]["reason"] == "no_relevant_hazards"

    def test_failed_source_status(self, client):
        r = client.post("/api/v1/risk/assess", json=MIAMI_BODY)
        noaa = next(s for s in r.json()["source_status"] if s["provider_id"] == "noaa")
        assert noaa["outcome"] == "failed"
        assert noaa["reason"] == "source_unavailable"
        assert noaa["retryable"] is True

    def test_force_refresh(self, client, stubs):
        body = {**MIAMI_BODY, "hazard_types": ["flood"]}
        client.post("/api/v1/risk/assess", json=body)
        client.post("/api/v1/risk/assess", json={**body, "force_refresh": True})
        assert stubs["first_street"].calls_made == 2


class TestInfoEndpoints:
    def test_thresholds(self, client):
        r = client.get("/api/v1/risk/thresholds")
        assert r.status_code == 200
        data = r.json()
        assert data["levels"]["VERY_HIGH"] == "75 – 100"
        assert len(data["hazards"]) == 7
        assert data["hazard_weights"]["flood"] == 0.25
        assert data["primary_hazard_thresholds"] == {"primary": 70.0, "secondary": 30.0}

    def test_sources(self, client):
        r = client.get("/api/v1/risk/sources")
        assert r.status_code == 200
        data = r.json()
        assert data["count"] == 3
        assert [s["provider_id"] for s in data["sources"]] == ["fema_nri", "first_street", "noaa"]

    def test_invalidate_cache(self, client, stubs):
        client.post("/api/v1/risk/assess", json={**MIAMI_BODY, "hazard_types": ["flood"]})
        r = client.delete("/api/v1/risk/cache", params=MIAMI_BODY)
        assert r.status_code == 200
        data = r.json()
        assert data["bucket"] == "25.761:-80.192"
        assert data["invalidated"] == 3  # two readings + the assessment

        client.post("/api/v1/risk/assess", json={**MIAMI_BODY, "hazard_types": ["flood"]})
        assert stubs["first_street"].calls_made == 2


class TestServiceEndpoints:
    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert "orchestration" in r.json()["modules"]

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] in ("healthy", "degraded")
        assert {c["name"] for c in data["components"]} >= {"cache"}

    def test_request_id_echoed(self, client):
        r = client.get("/health/live", headers={"X-Request-ID": "req-123"})
        assert r.headers["X-Request-ID"] == "req-123"
        assert r.headers["X-Process-Time"].endswith("ms")

    def test_request_id_generated(self, client):
        r = client.get("/")
        assert r.headers.get("X-Request-ID")
