"""
FastAPI app exposing read-only geocoding diagnostics: budget usage and cache statistics.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from src.services.geocoding import CacheUnavailable, GeocodingCache
from src.services.geocoding_budget import BudgetTracker
from src.services.location_language import classify_complexity, detect_language
from src.services.settings import GeocodingSettings, load_environment

LOGGER = logging.getLogger("geocoding_api")
if not LOGGER.handlers:
    LOGGER.setLevel(logging.INFO)
    LOG_PATH = Path("logs")
    LOG_PATH.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(LOG_PATH / "api_requests.log")
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    file_handler.setFormatter(formatter)
    LOGGER.addHandler(file_handler)

load_environment()
SETTINGS = GeocodingSettings.from_env()
BUDGET = BudgetTracker(limit_per_day=SETTINGS.premium_daily_limit)


def get_cache() -> Iterator[GeocodingCache]:
    cache = GeocodingCache(SETTINGS.cache_path)
    try:
        yield cache
    finally:
        cache.close()


def get_budget() -> BudgetTracker:
    return BUDGET


class BudgetOut(BaseModel):
    used: int
    limit: int
    remaining: int
    date: str = Field(..., description="UTC calendar day the counter applies to")


class CachedLocationOut(BaseModel):
    place_name: Optional[str] = None
    admin_division: Optional[str] = None
    language: Optional[str] = None
    hit_count: int = 0
    last_hit_at: Optional[str] = None


class CacheStatsOut(BaseModel):
    total_entries: int
    recent_hits: int = Field(..., description="Entries hit in the last 24 hours")
    top_locations: list[CachedLocationOut]


class ClassificationOut(BaseModel):
    place_name: str
    admin_division: str
    language: str
    complexity: str


app = FastAPI(title="Violations Geocoding API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/geocoding/budget", response_model=BudgetOut)
def get_budget_usage(budget: BudgetTracker = Depends(get_budget)) -> BudgetOut:
    usage = budget.usage()
    LOGGER.info("Budget usage requested: %s/%s", usage.used, usage.limit)
    return BudgetOut(**usage.to_serializable())


@app.get("/api/geocoding/cache-stats", response_model=CacheStatsOut)
def get_cache_stats(
    top: int = Query(10, ge=1, le=100, description="Number of most-hit locations to return."),
    cache: GeocodingCache = Depends(get_cache),
) -> CacheStatsOut:
    LOGGER.info("Cache stats requested top=%s", top)
    try:
        stats = cache.stats(top=top)
    except CacheUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return CacheStatsOut(
        total_entries=stats["total_entries"],
        recent_hits=stats["recent_hits"],
        top_locations=[CachedLocationOut(**row) for row in stats["top_locations"]],
    )


@app.get("/api/geocoding/classify", response_model=ClassificationOut)
def classify_location(
    place_name: str = Query(..., min_length=1),
    admin_division: str = Query(""),
    language: Optional[str] = Query(None, description="en, ar or mixed; detected when omitted."),
) -> ClassificationOut:
    resolved_language = language or detect_language(f"{place_name} {admin_division}".strip())
    return ClassificationOut(
        place_name=place_name,
        admin_division=admin_division,
        language=resolved_language,
        complexity=classify_complexity(place_name, admin_division, resolved_language),
    )
