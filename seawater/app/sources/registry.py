"""
Adapter registry — builds the configured set of provider adapters.

Each adapter gets its own RequestBudget and RateLimitBreaker sized from
settings, and shares the one httpx.AsyncClient and CacheManager.

Premium adapters (First Street, ClimateCheck) are only built when their
API key is configured; a missing key means "not configured", not
"failing".
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

import httpx

from seawater.app.core.cache import CacheManager
from seawater.app.core.config import Settings, settings as default_settings
from seawater.app.sources.base import SourceAdapter
from seawater.app.sources.climate_check import ClimateCheckAdapter
from seawater.app.sources.fema import FemaNriAdapter
from seawater.app.sources.fema_flood_zone import FemaFloodZoneAdapter
from seawater.app.sources.first_street import FirstStreetAdapter
from seawater.app.sources.limits import RateLimitBreaker, RequestBudget
from seawater.app.sources.noaa import NoaaClimateAdapter
from seawater.app.sources.usgs import UsgsAdapter

logger = logging.getLogger(__name__)

PREMIUM_PROVIDERS = ("first_street", "climate_check")


def _limits(
    provider_id: str,
    requests_per_minute: int,
    config: Settings,
    clock: Callable[[], float],
):
    budget = RequestBudget(requests_per_minute, window_seconds=60.0, clock=clock)
    breaker = RateLimitBreaker(
        provider_id,
        threshold=config.RATE_LIMIT_THRESHOLD,
        cooldown_seconds=config.RATE_LIMIT_COOLDOWN_SECONDS,
        clock=clock,
    )
    return budget, breaker


def build_adapters(
    client: httpx.AsyncClient,
    cache: Optional[CacheManager] = None,
    config: Optional[Settings] = None,
    clock: Callable[[], float] = time.monotonic,
) -> Dict[str, SourceAdapter]:
    """Instantiate every adapter the configuration allows, keyed by provider id."""
    config = config or default_settings

    def timeout(value: Optional[float]) -> float:
        return value if value is not None else config.SOURCE_TIMEOUT_SECONDS

    adapters: Dict[str, SourceAdapter] = {}

    def add(adapter: SourceAdapter) -> None:
        adapters[adapter.provider_id] = adapter

    budget, breaker = _limits("fema_nri", config.FEMA_REQUESTS_PER_MINUTE, config, clock)
    add(FemaNriAdapter(
        client, cache,
        base_url=config.FEMA_BASE_URL,
        timeout_seconds=timeout(config.FEMA_TIMEOUT_SECONDS),
        ttl_seconds=config.READING_TTL_SECONDS,
        budget=budget, breaker=breaker,
    ))

    budget, breaker = _limits("fema_flood_zone", config.FEMA_REQUESTS_PER_MINUTE, config, clock)
    add(FemaFloodZoneAdapter(
        client, cache,
        base_url=config.FEMA_FLOOD_ZONE_URL,
        timeout_seconds=timeout(config.FEMA_TIMEOUT_SECONDS),
        ttl_seconds=config.STATIC_TTL_SECONDS,
        budget=budget, breaker=breaker,
    ))

    if config.FIRST_STREET_API_KEY:
        budget, breaker = _limits("first_street", config.FIRST_STREET_REQUESTS_PER_MINUTE, config, clock)
        add(FirstStreetAdapter(
            client, cache,
            api_key=config.FIRST_STREET_API_KEY,
            base_url=config.FIRST_STREET_BASE_URL,
            timeout_seconds=timeout(config.FIRST_STREET_TIMEOUT_SECONDS),
            ttl_seconds=config.READING_TTL_SECONDS,
            budget=budget, breaker=breaker,
        ))
    else:
        logger.info("First Street not configured (no API key)")

    if config.CLIMATE_CHECK_API_KEY:
        budget, breaker = _limits("climate_check", config.CLIMATE_CHECK_REQUESTS_PER_MINUTE, config, clock)
        add(ClimateCheckAdapter(
            client, cache,
            api_key=config.CLIMATE_CHECK_API_KEY,
            base_url=config.CLIMATE_CHECK_BASE_URL,
            timeout_seconds=timeout(config.CLIMATE_CHECK_TIMEOUT_SECONDS),
            ttl_seconds=config.READING_TTL_SECONDS,
            budget=budget, breaker=breaker,
        ))
    else:
        logger.info("ClimateCheck not configured (no API key)")

    budget, breaker = _limits("noaa", config.NOAA_REQUESTS_PER_MINUTE, config, clock)
    add(NoaaClimateAdapter(
        client, cache,
        api_key=config.NOAA_API_TOKEN,
        base_url=config.NOAA_BASE_URL,
        timeout_seconds=timeout(config.NOAA_TIMEOUT_SECONDS),
        ttl_seconds=config.READING_TTL_SECONDS,
        budget=budget, breaker=breaker,
    ))

    budget, breaker = _limits("usgs", config.USGS_REQUESTS_PER_MINUTE, config, clock)
    add(UsgsAdapter(
        client, cache,
        design_maps_url=config.USGS_DESIGN_MAPS_URL,
        water_url=config.USGS_WATER_URL,
        timeout_seconds=timeout(config.USGS_TIMEOUT_SECONDS),
        ttl_seconds=config.READING_TTL_SECONDS,
        budget=budget, breaker=breaker,
    ))

    logger.info("Configured %d data sources: %s", len(adapters), ", ".join(sorted(adapters)))
    return adapters


def unconfigured_providers(config: Optional[Settings] = None) -> List[str]:
    """Premium provider ids left out of build_adapters() for want of a key."""
    config = config or default_settings
    keys = {
        "first_street": config.FIRST_STREET_API_KEY,
        "climate_check": config.CLIMATE_CHECK_API_KEY,
    }
    return [pid for pid in PREMIUM_PROVIDERS if not keys[pid]]
