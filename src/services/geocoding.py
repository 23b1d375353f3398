"""
Language-aware geocoding for incident locations, backed by a SQLite cache.

Simple (city/governorate level) locations go to a bulk geocoder; fine-grained ones
go to a premium place search while the daily budget allows it. Every result must
fall inside the target region's bounding box before it is cached.
"""

from __future__ import annotations

import hashlib
import logging
import re
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

import requests

from src.services.geocoding_budget import PREMIUM_CALLS_PER_LOOKUP, BudgetTracker, BudgetUsage
from src.services.location_language import classify_complexity, detect_language

LOGGER = logging.getLogger(__name__)

SOURCE_BULK = "bulk_api"
SOURCE_PREMIUM = "premium_api"

STRATEGY_PREMIUM = "premium"
STRATEGY_BULK = "bulk"

DEFAULT_TIMEOUT_SECONDS = 15.0
BASE_QUALITY = 0.5


class GeocodingError(Exception):
    """Base class for geocoding failures."""


class InvalidGeocodeInput(GeocodingError, ValueError):
    """Raised before any I/O when the query text is missing."""


class GeocodeNotFound(GeocodingError):
    def __init__(self, place_name: str, api_calls_used: int, strategies_tried: Sequence[str] = ()) -> None:
        self.place_name = place_name
        self.api_calls_used = api_calls_used
        self.strategies_tried = list(strategies_tried)
        super().__init__(
            f"Could not find valid coordinates for location: {place_name} "
            f"(used {api_calls_used} API calls)"
        )


class BackendUnavailable(GeocodingError):
    """Transport, timeout or quota error from a geocoding backend."""


class CacheUnavailable(GeocodingError):
    """Persistence error while reading or writing the geocoding cache."""


@dataclass(frozen=True)
class RegionBounds:
    south: float
    west: float
    north: float
    east: float

    def contains(self, latitude: Any, longitude: Any) -> bool:
        try:
            lat_f = float(latitude)
            lon_f = float(longitude)
        except (TypeError, ValueError):
            return False
        return self.south <= lat_f <= self.north and self.west <= lon_f <= self.east

    def as_location_bias(self) -> str:
        return f"rectangle:{self.south},{self.west}|{self.north},{self.east}"


@dataclass(frozen=True)
class TargetRegion:
    name: str
    country_codes: tuple[str, ...]
    bounds: RegionBounds

    def matches_country(self, country: str | None) -> bool:
        if not country:
            return False
        folded = country.strip().casefold()
        return folded == self.name.casefold() or folded in {code.casefold() for code in self.country_codes}


SYRIA = TargetRegion(
    name="Syria",
    country_codes=("SY",),
    bounds=RegionBounds(south=32.310939, west=35.727222, north=37.319831, east=42.385029),
)


@dataclass
class BackendCandidate:
    """One geocoding hit normalized across backends."""

    latitude: float
    longitude: float
    country: str = ""
    city: str = ""
    state: str = ""
    formatted_address: str = ""
    street: str = ""
    country_code: str = ""
    place_name: str = ""


@dataclass
class ResolutionResult:
    place_name: str
    admin_division: str
    language: str
    latitude: float
    longitude: float
    formatted_address: str
    country: str
    city: str
    state: str
    quality: float
    source: str
    from_cache: bool = False
    from_premium_api: bool = False
    api_calls_used: int = 0
    detected_language: str | None = None
    complexity: str | None = None
    query: str | None = None
    budget: BudgetUsage | None = None

    @property
    def coordinates(self) -> tuple[float, float]:
        return (self.longitude, self.latitude)

    def to_serializable(self) -> dict[str, Any]:
        return {
            "place_name": self.place_name,
            "admin_division": self.admin_division,
            "language": self.language,
            "coordinates": [self.longitude, self.latitude],
            "formatted_address": self.formatted_address,
            "country": self.country,
            "city": self.city,
            "state": self.state,
            "quality": self.quality,
            "source": self.source,
            "from_cache": self.from_cache,
            "from_premium_api": self.from_premium_api,
            "api_calls_used": self.api_calls_used,
            "detected_language": self.detected_language,
            "complexity": self.complexity,
            "query": self.query,
            "budget": self.budget.to_serializable() if self.budget else None,
        }


def clean_location_name(name: str | None) -> str:
    """Drop generic neighborhood words that confuse geocoders."""
    if not name:
        return ""
    cleaned = re.sub(r"\bneighbou?rhood\b", "", name, flags=re.IGNORECASE)
    cleaned = re.sub(r"\bحي\b", "", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def _normalize_key_part(value: str | None) -> str:
    return re.sub(r"\s+", " ", value or "").strip().casefold()


def generate_cache_key(place_name: str | None, admin_division: str | None, language: str | None = "en") -> str:
    place = _normalize_key_part(clean_location_name(place_name))
    admin = _normalize_key_part(admin_division)
    lang = _normalize_key_part(language) or "en"
    normalized = f"{place}_{admin}_{lang}"
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    cache_key: str
    place_name: str
    admin_division: str
    language: str
    longitude: float
    latitude: float
    formatted_address: str = ""
    country: str = ""
    city: str = ""
    state: str = ""
    quality: float = BASE_QUALITY
    source: str = SOURCE_BULK
    api_calls_used: int = 1
    hit_count: int = 0
    created_at: str | None = None
    last_hit_at: str | None = None


class CacheStore(Protocol):
    def find_by_key(self, cache_key: str) -> Optional[CacheEntry]: ...

    def record_hit(self, entry: CacheEntry) -> CacheEntry: ...

    def create_or_update(self, cache_key: str, entry: CacheEntry) -> CacheEntry: ...


CACHE_COLUMNS = (
    "cache_key",
    "place_name",
    "admin_division",
    "language",
    "longitude",
    "latitude",
    "formatted_address",
    "country",
    "city",
    "state",
    "quality",
    "source",
    "api_calls_used",
    "hit_count",
    "created_at",
    "last_hit_at",
)


class GeocodingCache:
    """SQLite store of prior resolutions keyed by the normalized query fingerprint."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS geocoding_cache (
                cache_key TEXT PRIMARY KEY,
                place_name TEXT,
                admin_division TEXT,
                language TEXT,
                longitude REAL NOT NULL,
                latitude REAL NOT NULL,
                formatted_address TEXT,
                country TEXT,
                city TEXT,
                state TEXT,
                quality REAL,
                source TEXT,
                api_calls_used INTEGER,
                hit_count INTEGER DEFAULT 0,
                created_at TEXT,
                last_hit_at TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_geocoding_cache_last_hit ON geocoding_cache(last_hit_at);
            CREATE INDEX IF NOT EXISTS idx_geocoding_cache_hits ON geocoding_cache(hit_count);
            """
        )
        self.conn.commit()
        self.lock = threading.Lock()

    def close(self) -> None:
        with self.lock:
            self.conn.close()

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> CacheEntry:
        return CacheEntry(**{column: row[column] for column in CACHE_COLUMNS})

    def find_by_key(self, cache_key: str) -> Optional[CacheEntry]:
        try:
            with self.lock:
                cursor = self.conn.execute(
                    f"SELECT {', '.join(CACHE_COLUMNS)} FROM geocoding_cache WHERE cache_key = ?",
                    (cache_key,),
                )
                row = cursor.fetchone()
        except sqlite3.Error as exc:
            raise CacheUnavailable(f"Cache lookup failed for key {cache_key}: {exc}") from exc
        if not row:
            return None
        return self._row_to_entry(row)

    def record_hit(self, entry: CacheEntry) -> CacheEntry:
        now_iso = datetime.now(timezone.utc).isoformat()
        try:
            with self.lock:
                self.conn.execute(
                    "UPDATE geocoding_cache SET hit_count = hit_count + 1, last_hit_at = ? WHERE cache_key = ?",
                    (now_iso, entry.cache_key),
                )
                self.conn.commit()
        except sqlite3.Error as exc:
            raise CacheUnavailable(f"Failed to record cache hit for {entry.cache_key}: {exc}") from exc
        entry.hit_count += 1
        entry.last_hit_at = now_iso
        return entry

    def create_or_update(self, cache_key: str, entry: CacheEntry) -> CacheEntry:
        """Insert a new entry or refresh the payload of an existing one."""
        now_iso = datetime.now(timezone.utc).isoformat()
        entry.cache_key = cache_key
        entry.created_at = entry.created_at or now_iso
        entry.last_hit_at = entry.last_hit_at or now_iso
        values = tuple(getattr(entry, column) for column in CACHE_COLUMNS)
        updatable = [
            column
            for column in CACHE_COLUMNS
            if column not in ("cache_key", "hit_count", "created_at")
        ]
        try:
            with self.lock:
                self.conn.execute(
                    f"""
                    INSERT INTO geocoding_cache ({', '.join(CACHE_COLUMNS)})
                    VALUES ({', '.join('?' for _ in CACHE_COLUMNS)})
                    ON CONFLICT(cache_key) DO UPDATE SET
                    {', '.join(f'{column} = excluded.{column}' for column in updatable)}
                    """,
                    values,
                )
                self.conn.commit()
        except sqlite3.Error as exc:
            raise CacheUnavailable(f"Failed to write cache entry {cache_key}: {exc}") from exc
        return entry

    def stats(self, top: int = 10) -> dict[str, Any]:
        cutoff = (datetime.now(timezone.utc) - timedelta(hours=24)).isoformat()
        try:
            with self.lock:
                total = self.conn.execute("SELECT COUNT(*) FROM geocoding_cache").fetchone()[0]
                recent = self.conn.execute(
                    "SELECT COUNT(*) FROM geocoding_cache WHERE last_hit_at >= ?",
                    (cutoff,),
                ).fetchone()[0]
                rows = self.conn.execute(
                    """
                    SELECT place_name, admin_division, language, hit_count, last_hit_at
                    FROM geocoding_cache
                    ORDER BY hit_count DESC, last_hit_at DESC
                    LIMIT ?
                    """,
                    (top,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise CacheUnavailable(f"Failed to read cache statistics: {exc}") from exc
        return {
            "total_entries": total,
            "recent_hits": recent,
            "top_locations": [dict(row) for row in rows],
        }


class BulkGeocoder(Protocol):
    def geocode(self, query: str) -> list[BackendCandidate]: ...


class PremiumGeocoder(Protocol):
    def find_place(self, query: str, region_bias: RegionBounds) -> Optional[str]: ...

    def place_details(self, place_id: str) -> Optional[BackendCandidate]: ...


def _get_json(
    session: requests.Session,
    url: str,
    params: dict[str, Any],
    timeout: float,
    headers: dict[str, str] | None = None,
) -> Any:
    try:
        response = session.get(url, params=params, headers=headers, timeout=timeout)
        response.raise_for_status()
        return response.json()
    except (requests.RequestException, ValueError) as exc:
        raise BackendUnavailable(f"Request to {url} failed: {exc}") from exc


def _address_component(components: Sequence[dict[str, Any]], kind: str, name_type: str = "long_name") -> str:
    for component in components or []:
        if kind in component.get("types", []):
            return component.get(name_type) or ""
    return ""


def _candidate_from_google(result: dict[str, Any]) -> BackendCandidate:
    components = result.get("address_components") or []
    location = result["geometry"]["location"]
    return BackendCandidate(
        latitude=float(location["lat"]),
        longitude=float(location["lng"]),
        country=_address_component(components, "country"),
        country_code=_address_component(components, "country", "short_name"),
        city=_address_component(components, "locality")
        or _address_component(components, "administrative_area_level_2"),
        state=_address_component(components, "administrative_area_level_1"),
        street=_address_component(components, "route") or _address_component(components, "street_number"),
        formatted_address=result.get("formatted_address") or "",
        place_name=result.get("name") or "",
    )


class GoogleGeocodingBackend:
    """Bulk backend: single-call Google Geocoding API."""

    endpoint = "https://maps.googleapis.com/maps/api/geocode/json"

    def __init__(
        self,
        api_key: str | None,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        region_code: str = "sy",
    ) -> None:
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout = timeout
        self.region_code = region_code

    def geocode(self, query: str) -> list[BackendCandidate]:
        if not self.api_key:
            LOGGER.error("Cannot geocode '%s': GOOGLE_API_KEY is not set", query)
            return []
        payload = _get_json(
            self.session,
            self.endpoint,
            {"address": query, "key": self.api_key, "region": self.region_code},
            self.timeout,
        )
        status = payload.get("status")
        if status == "ZERO_RESULTS":
            return []
        if status != "OK":
            raise BackendUnavailable(
                f"Google geocoding error for '{query}': {status} {payload.get('error_message') or ''}".strip()
            )
        return [_candidate_from_google(result) for result in payload.get("results") or []]


class NominatimBackend:
    """Bulk backend: public OpenStreetMap Nominatim endpoint with a politeness delay."""

    endpoint = "https://nominatim.openstreetmap.org/search"

    def __init__(
        self,
        user_agent: str,
        session: requests.Session | None = None,
        timeout: float = 25.0,
        min_interval: float = 1.1,
        country_codes: str = "sy",
    ) -> None:
        self.user_agent = user_agent
        self.session = session or requests.Session()
        self.timeout = timeout
        self.min_interval = min_interval
        self.country_codes = country_codes
        self._last_request = 0.0
        self._throttle_lock = threading.Lock()

    def _wait_turn(self) -> None:
        with self._throttle_lock:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self.min_interval:
                time.sleep(self.min_interval - elapsed)
            self._last_request = time.monotonic()

    def geocode(self, query: str) -> list[BackendCandidate]:
        self._wait_turn()
        results = _get_json(
            self.session,
            self.endpoint,
            {
                "q": query,
                "format": "json",
                "limit": 3,
                "addressdetails": 1,
                "countrycodes": self.country_codes,
            },
            self.timeout,
            headers={"User-Agent": self.user_agent},
        )
        candidates: list[BackendCandidate] = []
        for item in results or []:
            address = item.get("address") if isinstance(item, dict) else None
            address = address if isinstance(address, dict) else {}
            try:
                latitude = float(item["lat"])
                longitude = float(item["lon"])
            except (KeyError, TypeError, ValueError):
                LOGGER.debug("Skipping malformed Nominatim payload for '%s': %s", query, item)
                continue
            candidates.append(
                BackendCandidate(
                    latitude=latitude,
                    longitude=longitude,
                    country=address.get("country") or "",
                    country_code=(address.get("country_code") or "").upper(),
                    city=address.get("city") or address.get("town") or address.get("village") or "",
                    state=address.get("state") or "",
                    street=address.get("road") or "",
                    formatted_address=item.get("display_name") or "",
                )
            )
        return candidates


class GooglePlacesBackend:
    """Premium backend: find-place search followed by a place-details request."""

    find_place_endpoint = "https://maps.googleapis.com/maps/api/place/findplacefromtext/json"
    details_endpoint = "https://maps.googleapis.com/maps/api/place/details/json"

    def __init__(
        self,
        api_key: str | None,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout = timeout

    def find_place(self, query: str, region_bias: RegionBounds) -> Optional[str]:
        if not self.api_key:
            LOGGER.error("Cannot search places for '%s': GOOGLE_API_KEY is not set", query)
            return None
        payload = _get_json(
            self.session,
            self.find_place_endpoint,
            {
                "input": query,
                "inputtype": "textquery",
                "fields": "place_id,name,formatted_address",
                "locationbias": region_bias.as_location_bias(),
                "key": self.api_key,
            },
            self.timeout,
        )
        status = payload.get("status")
        if status == "ZERO_RESULTS":
            return None
        if status != "OK":
            raise BackendUnavailable(f"Places search error for '{query}': {status}")
        candidates = payload.get("candidates") or []
        if not candidates:
            return None
        return candidates[0].get("place_id")

    def place_details(self, place_id: str) -> Optional[BackendCandidate]:
        if not self.api_key:
            return None
        payload = _get_json(
            self.session,
            self.details_endpoint,
            {
                "place_id": place_id,
                "fields": "formatted_address,geometry,name,address_component",
                "key": self.api_key,
            },
            self.timeout,
        )
        if payload.get("status") != "OK" or not payload.get("result"):
            LOGGER.warning("No place details for place_id %s (status=%s)", place_id, payload.get("status"))
            return None
        return _candidate_from_google(payload["result"])


def compute_quality_score(candidate: BackendCandidate, query: str, region: TargetRegion = SYRIA) -> float:
    score = BASE_QUALITY
    if candidate.formatted_address and query and query.casefold() in candidate.formatted_address.casefold():
        score += 0.3
    if region.matches_country(candidate.country) or region.matches_country(candidate.country_code):
        score += 0.2
    if candidate.city and candidate.state:
        score += 0.1
    if candidate.street:
        score += 0.1
    return round(min(score, 1.0), 4)


@dataclass(frozen=True)
class GeocodeStrategy:
    name: str
    kind: str
    query: str


def build_strategies(
    place_name: str,
    admin_division: str,
    region: TargetRegion,
    use_premium: bool,
) -> list[GeocodeStrategy]:
    """Ordered fallback chain: premium first when indicated, then the bulk queries."""
    cleaned = clean_location_name(place_name) or place_name.strip()
    admin = (admin_division or "").strip()
    full_query = ", ".join(part for part in (cleaned, admin, region.name) if part)
    name_query = f"{cleaned}, {region.name}"
    strategies: list[GeocodeStrategy] = []
    if use_premium:
        strategies.append(GeocodeStrategy("premium_place_search", STRATEGY_PREMIUM, full_query))
    if admin:
        strategies.append(GeocodeStrategy("bulk_with_admin", STRATEGY_BULK, full_query))
    strategies.append(GeocodeStrategy("bulk_name_only", STRATEGY_BULK, name_query))
    return strategies


@dataclass
class _Attempt:
    api_calls: int = 0
    tried: list[str] = field(default_factory=list)


class GeocodeResolver:
    """Resolve place names to coordinates through cache, premium and bulk backends."""

    def __init__(
        self,
        bulk: BulkGeocoder,
        premium: PremiumGeocoder | None = None,
        cache: CacheStore | None = None,
        budget: BudgetTracker | None = None,
        region: TargetRegion = SYRIA,
    ) -> None:
        self.bulk = bulk
        self.premium = premium
        self.cache = cache
        self.budget = budget or BudgetTracker()
        self.region = region
        self._stats_lock = threading.Lock()
        self.stats: dict[str, int] = {
            "cache_hits": 0,
            "premium_hits": 0,
            "bulk_hits": 0,
            "failures": 0,
        }

    def _bump(self, key: str) -> None:
        with self._stats_lock:
            self.stats[key] = self.stats.get(key, 0) + 1

    def resolve(
        self,
        place_name: str | None,
        admin_division: str | None = "",
        language: str | None = "en",
    ) -> ResolutionResult:
        place = (place_name or "").strip()
        if not place:
            raise InvalidGeocodeInput("Place name is required for geocoding")
        admin = (admin_division or "").strip()
        language = (language or "en").strip().lower()

        cache_key = generate_cache_key(place, admin, language)
        cached = self._lookup_cache(cache_key, place)
        if cached:
            self._bump("cache_hits")
            LOGGER.info("Cache hit for '%s' (%s) - saved API calls", place, language)
            return ResolutionResult(
                place_name=place,
                admin_division=admin,
                language=language,
                latitude=cached.latitude,
                longitude=cached.longitude,
                formatted_address=cached.formatted_address or "",
                country=cached.country or "",
                city=cached.city or "",
                state=cached.state or "",
                quality=cached.quality if cached.quality is not None else BASE_QUALITY,
                source=cached.source or SOURCE_BULK,
                from_cache=True,
                from_premium_api=cached.source == SOURCE_PREMIUM,
                api_calls_used=0,
                budget=self.budget.usage(),
            )

        detected = detect_language(f"{place} {admin}".strip())
        complexity = classify_complexity(place, admin, detected)
        use_premium = self.premium is not None and self.budget.should_use_premium(place, admin, detected)
        LOGGER.info(
            "Cache miss for '%s' (%s): language=%s complexity=%s premium=%s",
            place,
            language,
            detected,
            complexity,
            use_premium,
        )

        attempt = _Attempt()
        for strategy in build_strategies(place, admin, self.region, use_premium):
            attempt.tried.append(strategy.name)
            if strategy.kind == STRATEGY_PREMIUM:
                candidate = self._run_premium(strategy, attempt)
            else:
                candidate = self._run_bulk(strategy, attempt)
            if candidate is None:
                continue
            from_premium = strategy.kind == STRATEGY_PREMIUM
            self._bump("premium_hits" if from_premium else "bulk_hits")
            result = ResolutionResult(
                place_name=place,
                admin_division=admin,
                language=language,
                latitude=candidate.latitude,
                longitude=candidate.longitude,
                formatted_address=candidate.formatted_address,
                country=candidate.country or self.region.name,
                city=candidate.city,
                state=candidate.state,
                quality=compute_quality_score(candidate, strategy.query, self.region),
                source=SOURCE_PREMIUM if from_premium else SOURCE_BULK,
                from_premium_api=from_premium,
                api_calls_used=attempt.api_calls,
                detected_language=detected,
                complexity=complexity,
                query=strategy.query,
                budget=self.budget.usage(),
            )
            LOGGER.info(
                "Geocoded '%s' via %s with %s API calls: [%s, %s]",
                place,
                strategy.name,
                attempt.api_calls,
                result.longitude,
                result.latitude,
            )
            self._write_cache(cache_key, result)
            return result

        self._bump("failures")
        raise GeocodeNotFound(place, attempt.api_calls, attempt.tried)

    def resolve_location(
        self,
        place_name: str | None,
        admin_division: str | None = "",
        language: str | None = "en",
    ) -> dict[str, Any]:
        result = self.resolve(place_name, admin_division, language)
        return {
            "coordinates": [result.longitude, result.latitude],
            "quality": result.quality,
            "from_cache": result.from_cache,
        }

    def _lookup_cache(self, cache_key: str, place: str) -> Optional[CacheEntry]:
        if self.cache is None:
            return None
        try:
            entry = self.cache.find_by_key(cache_key)
        except CacheUnavailable as exc:
            LOGGER.warning("Cache lookup failed for '%s': %s", place, exc)
            return None
        if entry is None:
            return None
        try:
            self.cache.record_hit(entry)
        except CacheUnavailable as exc:
            LOGGER.warning("Failed to record cache hit for '%s': %s", place, exc)
        return entry

    def _write_cache(self, cache_key: str, result: ResolutionResult) -> None:
        if self.cache is None:
            return
        entry = CacheEntry(
            cache_key=cache_key,
            place_name=result.place_name,
            admin_division=result.admin_division,
            language=result.language,
            longitude=result.longitude,
            latitude=result.latitude,
            formatted_address=result.formatted_address,
            country=result.country,
            city=result.city,
            state=result.state,
            quality=result.quality,
            source=result.source,
            api_calls_used=result.api_calls_used,
        )
        try:
            self.cache.create_or_update(cache_key, entry)
            LOGGER.info(
                "Cached geocoding result for '%s' with %s API calls",
                result.place_name,
                result.api_calls_used,
            )
        except CacheUnavailable as exc:
            LOGGER.warning("Failed to cache geocoding result for '%s': %s", result.place_name, exc)

    def _run_premium(self, strategy: GeocodeStrategy, attempt: _Attempt) -> Optional[BackendCandidate]:
        if self.premium is None:
            return None
        if not self.budget.try_reserve(PREMIUM_CALLS_PER_LOOKUP):
            LOGGER.warning("Premium budget exhausted before '%s'; falling back to bulk.", strategy.query)
            return None
        attempt.api_calls += PREMIUM_CALLS_PER_LOOKUP
        LOGGER.info("Using premium place search for '%s'", strategy.query)
        try:
            place_id = self.premium.find_place(strategy.query, self.region.bounds)
            if not place_id:
                LOGGER.info("No places found for '%s'", strategy.query)
                return None
            candidate = self.premium.place_details(place_id)
        except (BackendUnavailable, requests.RequestException):
            LOGGER.exception("Premium geocoding failed for '%s'", strategy.query)
            return None
        except Exception:  # noqa: BLE001
            LOGGER.exception("Unexpected premium geocoder error for '%s'", strategy.query)
            return None
        if candidate is None:
            return None
        if not self.region.bounds.contains(candidate.latitude, candidate.longitude):
            LOGGER.debug("Discarding out-of-region premium result for '%s': %s", strategy.query, candidate)
            return None
        return candidate

    def _run_bulk(self, strategy: GeocodeStrategy, attempt: _Attempt) -> Optional[BackendCandidate]:
        attempt.api_calls += 1
        try:
            candidates = self.bulk.geocode(strategy.query)
        except (BackendUnavailable, requests.RequestException) as exc:
            LOGGER.warning("Geocoding strategy failed for '%s': %s", strategy.query, exc)
            return None
        except Exception:  # noqa: BLE001
            LOGGER.exception("Unexpected geocoder error for '%s'", strategy.query)
            return None
        for candidate in candidates or []:
            if self.region.bounds.contains(candidate.latitude, candidate.longitude):
                return candidate
            LOGGER.debug("Discarding out-of-region candidate for '%s': %s", strategy.query, candidate)
        return None
