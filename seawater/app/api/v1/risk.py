"""
FastAPI route: multi-source climate risk assessment.

Provides endpoints to:
    POST   /api/v1/risk/assess       — assess one coordinate
    GET    /api/v1/risk/thresholds   — level thresholds and weights
    GET    /api/v1/risk/sources      — configured data sources
    DELETE /api/v1/risk/cache        — invalidate a coordinate's bucket

The routes are thin: everything happens in the RequestOrchestrator held
on app.state.  InsufficientDataError and ValidationError are rendered by
the shared error handlers (404 NO_DATA_AVAILABLE / 422).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from seawater.app.core.config import settings
from seawater.app.core.errors import ClimateRiskError
from seawater.app.core.logging_config import bind_request_context
from seawater.app.risk.aggregator import PRIMARY_THRESHOLD, SECONDARY_THRESHOLD
from seawater.app.risk.models import (
    ALL_HAZARDS,
    THRESHOLD_HIGH_UPPER,
    THRESHOLD_LOW_UPPER,
    THRESHOLD_MODERATE_UPPER,
    Coordinate,
)
from seawater.app.risk.orchestrator import RequestOrchestrator

router = APIRouter(prefix="/api/v1/risk", tags=["risk-assessment"])


def get_orchestrator(request: Request) -> RequestOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise ClimateRiskError(
            "Risk service is not initialised",
            status_code=503,
            error_code="SERVICE_UNAVAILABLE",
        )
    return orchestrator


# ---------------------------------------------------------------------------
# Request / Response Schemas
# ---------------------------------------------------------------------------

class AssessRequest(BaseModel):
    """Input for one assessment."""

    latitude: float = Field(
        ..., ge=-90.0, le=90.0,
        description="Latitude in decimal degrees",
        examples=[25.7617],
    )
    longitude: float = Field(
        ..., ge=-180.0, le=180.0,
        description="Longitude in decimal degrees",
        examples=[-80.1918],
    )
    hazard_types: Optional[List[str]] = Field(
        default=None,
        description="Hazards to score; all when omitted",
        examples=[["flood", "hurricane"]],
    )
    sources: Optional[List[str]] = Field(
        default=None,
        description="Provider ids to query; all configured when omitted",
        examples=[["fema_nri", "first_street"]],
    )
    force_refresh: bool = Field(
        default=False,
        description="Bypass cached assessments and readings",
    )


class SourceReadingOut(BaseModel):
    provider_id: str
    hazard_type: str
    raw_value: Any = None
    normalized_score: Optional[float] = None
    confidence_tier: str
    fetched_at: str
    ttl_seconds: int
    error: Optional[str] = None
    error_kind: Optional[str] = None
    stale: bool = False
    from_cache: bool = False


class SourceStatusOut(BaseModel):
    provider_id: str
    outcome: str = Field(..., description="success / partial / failed / skipped")
    reason: Optional[str] = Field(default=None, description="Error kind, or why the source was skipped")
    retryable: bool = False
    response_time_ms: Optional[float] = None
    external_calls: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    stale_fallback: bool = False


class HazardScoreOut(BaseModel):
    hazard_type: str
    score: float
    level: str
    confidence: str
    contributing_sources: List[SourceReadingOut]


class RiskAssessmentResponse(BaseModel):
    """Full assessment.  Missing hazards are unknown, not zero."""
    coordinate: Dict[str, float]
    overall_score: float = Field(..., description="Hazard-weighted score 0–100")
    overall_level: str = Field(..., description="LOW / MODERATE / HIGH / VERY_HIGH")
    overall_confidence: str = Field(..., description="Weakest per-hazard confidence")
    hazard_scores: Dict[str, HazardScoreOut]
    primary_hazards: List[str]
    data_sources_used: List[str]
    failed_sources: List[str]
    degraded: bool
    status: str = Field(..., description="success / partial_success")
    computed_at: str
    expires_at: str
    source_status: List[SourceStatusOut]
    cached: bool = Field(..., description="Served from the assessment cache")
    cache_age_seconds: Optional[float] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/assess",
    response_model=RiskAssessmentResponse,
    summary="Assess climate risk for a coordinate",
    description=(
        "Fans out to every configured data source, normalises their "
        "answers to 0–100 and combines them into per-hazard and overall "
        "scores with a confidence tier."
    ),
)
async def assess_risk(
    req: AssessRequest,
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
):
    coordinate = Coordinate(req.latitude, req.longitude)
    bind_request_context(lat=coordinate.latitude, lon=coordinate.longitude)
    assessment = await orchestrator.assess(
        coordinate,
        hazard_types=req.hazard_types,
        sources=req.sources,
        force_refresh=req.force_refresh,
    )
    return assessment.to_dict()


@router.get(
    "/thresholds",
    summary="Get Risk Thresholds",
    description="Level thresholds and the weights used by the aggregator.",
)
async def get_thresholds(orchestrator: RequestOrchestrator = Depends(get_orchestrator)):
    aggregator = orchestrator.aggregator
    return {
        "levels": {
            "LOW": f"0 – {THRESHOLD_LOW_UPPER:g}",
            "MODERATE": f"{THRESHOLD_LOW_UPPER:g} – {THRESHOLD_MODERATE_UPPER:g}",
            "HIGH": f"{THRESHOLD_MODERATE_UPPER:g} – {THRESHOLD_HIGH_UPPER:g}",
            "VERY_HIGH": f"{THRESHOLD_HIGH_UPPER:g} – 100",
        },
        "hazards": [h.value for h in ALL_HAZARDS],
        "provider_weights": aggregator.provider_weights,
        "default_provider_weight": aggregator.default_provider_weight,
        "tier_multipliers": aggregator.tier_multipliers,
        "hazard_weights": aggregator.hazard_weights,
        "agreement_tolerance": aggregator.scorer.tolerance,
        "primary_hazard_thresholds": {
            "primary": PRIMARY_THRESHOLD,
            "secondary": SECONDARY_THRESHOLD,
        },
        "confidence_rules": {
            "low": "every contributing reading is stale",
            "high": "≥2 fresh providers within the agreement tolerance",
            "medium": "otherwise",
        },
        "global_deadline_seconds": orchestrator.global_deadline,
    }


@router.get(
    "/sources",
    summary="List configured data sources",
)
async def list_sources(orchestrator: RequestOrchestrator = Depends(get_orchestrator)):
    return {
        "sources": orchestrator.describe_sources(),
        "count": len(orchestrator.adapters),
        "premium_configured": {
            "first_street": bool(settings.FIRST_STREET_API_KEY),
            "climate_check": bool(settings.CLIMATE_CHECK_API_KEY),
        },
    }


@router.delete(
    "/cache",
    summary="Invalidate cached data for a coordinate",
    description="Drops every cached reading and assessment in the coordinate's bucket.",
)
async def invalidate_cache(
    latitude: float = Query(..., ge=-90.0, le=90.0),
    longitude: float = Query(..., ge=-180.0, le=180.0),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
):
    coordinate = Coordinate(latitude, longitude)
    removed = await orchestrator.invalidate(coordinate)
    return {
        "bucket": orchestrator.cache.bucket(coordinate),
        "invalidated": removed,
    }
