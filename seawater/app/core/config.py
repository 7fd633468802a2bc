"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development; premium
provider keys default to unset, which leaves those providers out of
the fan-out.

Usage:
    from seawater.app.core.config import settings
    print(settings.GLOBAL_DEADLINE_SECONDS)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Seawater Climate Risk Core"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Cache ──
    CACHE_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_KEY_PREFIX: str = "seawater:"
    CACHE_BUCKET_DEGREES: float = 0.001  # ~100 m grid
    READING_TTL_SECONDS: int = 3600  # raw per-provider readings (1 h)
    ASSESSMENT_TTL_SECONDS: int = 3600  # aggregated assessments (1 h)
    STATIC_TTL_SECONDS: int = 86400  # regulatory / static provider data (24 h)
    STALE_RETENTION_SECONDS: int = 7 * 86400  # kept past expiry for stale reads
    MEMORY_CACHE_MAX_ENTRIES: int = 10000

    # ── Orchestration ──
    SOURCE_TIMEOUT_SECONDS: float = 5.0  # default per-provider budget
    GLOBAL_DEADLINE_SECONDS: float = 10.0
    ALLOW_STALE_ON_FAILURE: bool = True
    CANCEL_PENDING_ON_DEADLINE: bool = True

    # ── Aggregation ──
    AGREEMENT_TOLERANCE: float = 15.0  # points on the 0–100 scale
    PROVIDER_WEIGHTS: Dict[str, float] = {
        # property-specific premium
        "first_street": 1.0,
        "climate_check": 1.0,
        # tract / regulatory government data
        "fema_nri": 0.6,
        "fema_flood_zone": 0.6,
        "usgs": 0.6,
        # generic regional estimate
        "noaa": 0.3,
    }
    DEFAULT_PROVIDER_WEIGHT: float = 0.3
    TIER_MULTIPLIERS: Dict[str, float] = {
        "high": 1.0,
        "medium": 0.8,
        "low": 0.5,
    }
    HAZARD_WEIGHTS: Dict[str, float] = {
        "flood": 0.25,
        "hurricane": 0.20,
        "wildfire": 0.20,
        "earthquake": 0.15,
        "tornado": 0.10,
        "heat": 0.05,
        "drought": 0.05,
    }
    DEFAULT_HAZARD_WEIGHT: float = 0.10

    # ── Provider rate limiting ──
    RATE_LIMIT_THRESHOLD: int = 3  # consecutive 429s before the breaker opens
    RATE_LIMIT_COOLDOWN_SECONDS: float = 300.0

    # ── External APIs ──
    FEMA_BASE_URL: str = "https://www.fema.gov/api/open/v2"
    FEMA_FLOOD_ZONE_URL: str = "https://hazards.fema.gov/arcgis/rest/services/public/NFHL/MapServer/28/query"
    FEMA_TIMEOUT_SECONDS: Optional[float] = None
    FEMA_REQUESTS_PER_MINUTE: int = 60

    FIRST_STREET_BASE_URL: str = "https://api.firststreet.org/risk/v1"
    FIRST_STREET_API_KEY: Optional[str] = None
    FIRST_STREET_TIMEOUT_SECONDS: Optional[float] = None
    FIRST_STREET_REQUESTS_PER_MINUTE: int = 100

    CLIMATE_CHECK_BASE_URL: str = "https://api.climatecheck.com/v1"
    CLIMATE_CHECK_API_KEY: Optional[str] = None
    CLIMATE_CHECK_TIMEOUT_SECONDS: Optional[float] = None
    CLIMATE_CHECK_REQUESTS_PER_MINUTE: int = 60

    NOAA_BASE_URL: str = "https://www.ncei.noaa.gov/access/services/climate/v1"
    NOAA_API_TOKEN: Optional[str] = None
    NOAA_TIMEOUT_SECONDS: Optional[float] = None
    NOAA_REQUESTS_PER_MINUTE: int = 300

    USGS_DESIGN_MAPS_URL: str = "https://earthquake.usgs.gov/ws/designmaps/asce7-22.json"
    USGS_WATER_URL: str = "https://waterservices.usgs.gov/nwis/stat"
    USGS_TIMEOUT_SECONDS: Optional[float] = None
    USGS_REQUESTS_PER_MINUTE: int = 120

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
