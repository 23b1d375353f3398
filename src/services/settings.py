"""
Environment-driven configuration for the geocoding and ingestion services.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from src.services.geocoding import (
    DEFAULT_TIMEOUT_SECONDS,
    GeocodeResolver,
    GeocodingCache,
    GoogleGeocodingBackend,
    GooglePlacesBackend,
    NominatimBackend,
)
from src.services.geocoding_budget import DEFAULT_DAILY_LIMIT, BudgetTracker

LOGGER = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_GOOGLE = "google"
BACKEND_NOMINATIM = "nominatim"
DEFAULT_USER_AGENT = "violations-geocoder/0.1 (contact: ops@example.org)"


def load_environment(dotenv_path: Optional[Path] = None) -> bool:
    loaded = load_dotenv(dotenv_path=dotenv_path or REPO_ROOT / ".env")
    if loaded:
        LOGGER.debug("Loaded environment variables from .env file.")
    return loaded


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        LOGGER.warning("Ignoring non-integer %s=%r; using %s", name, raw, default)
        return default


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        LOGGER.warning("Ignoring non-numeric %s=%r; using %s", name, raw, default)
        return default


@dataclass
class GeocodingSettings:
    google_api_key: Optional[str] = None
    backend: str = BACKEND_GOOGLE
    premium_daily_limit: int = DEFAULT_DAILY_LIMIT
    cache_path: Path = Path("datasets/geocoding/geocache.sqlite")
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    nominatim_user_agent: str = DEFAULT_USER_AGENT
    store_path: Path = Path("datasets/violations/violations.jsonl")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "GeocodingSettings":
        env = os.environ if env is None else env
        backend = (env.get("GEOCODER_BACKEND") or BACKEND_GOOGLE).strip().lower()
        if backend not in (BACKEND_GOOGLE, BACKEND_NOMINATIM):
            LOGGER.warning("Unknown GEOCODER_BACKEND %r; falling back to %s", backend, BACKEND_GOOGLE)
            backend = BACKEND_GOOGLE
        defaults = cls()
        return cls(
            google_api_key=(env.get("GOOGLE_API_KEY") or "").strip() or None,
            backend=backend,
            premium_daily_limit=_env_int(env, "PREMIUM_DAILY_LIMIT", DEFAULT_DAILY_LIMIT),
            cache_path=Path(env.get("GEOCODE_CACHE_PATH") or defaults.cache_path),
            timeout_seconds=_env_float(env, "GEOCODE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
            nominatim_user_agent=env.get("NOMINATIM_USER_AGENT") or DEFAULT_USER_AGENT,
            store_path=Path(env.get("VIOLATIONS_STORE_PATH") or defaults.store_path),
        )


def build_resolver(
    settings: GeocodingSettings,
    budget: Optional[BudgetTracker] = None,
    use_cache: bool = True,
) -> GeocodeResolver:
    """Wire backends, cache and budget from ``settings``."""
    if settings.backend == BACKEND_NOMINATIM:
        bulk = NominatimBackend(user_agent=settings.nominatim_user_agent, timeout=settings.timeout_seconds)
    else:
        bulk = GoogleGeocodingBackend(settings.google_api_key, timeout=settings.timeout_seconds)
    premium = None
    if settings.google_api_key:
        premium = GooglePlacesBackend(settings.google_api_key, timeout=settings.timeout_seconds)
    else:
        LOGGER.warning("GOOGLE_API_KEY is not set; premium place search is disabled.")
    cache = GeocodingCache(settings.cache_path) if use_cache else None
    return GeocodeResolver(
        bulk=bulk,
        premium=premium,
        cache=cache,
        budget=budget or BudgetTracker(limit_per_day=settings.premium_daily_limit),
    )
