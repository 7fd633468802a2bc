"""
risk — Multi-source climate risk aggregation core.

Sub-modules:
    models          — Data structures shared across the system
    normalization   — Provider-scale → 0–100 mapping primitives
    confidence      — Agreement / recency → confidence tier
    aggregator      — Weighted combination into a RiskAssessment
    orchestrator    — Per-request fan-out, deadline, stale fallback
"""
