"""
Duplicate detection for incoming violation records.

Candidates come from the record store (same type, a few days either side, optional
location-name substring). Each candidate is compared field by field and by fuzzy
description similarity, and the outcome is classified as ``none``, ``identical`` or
``complementary``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Protocol, Sequence

from rapidfuzz import fuzz

from src.services.violations import ViolationRecord

LOGGER = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.75
MAX_DISTANCE_METERS = 100.0
CANDIDATE_WINDOW_DAYS = 3
DEFAULT_CANDIDATE_LIMIT = 5
EARTH_RADIUS_METERS = 6371e3

RELATIONSHIP_NONE = "none"
RELATIONSHIP_IDENTICAL = "identical"
RELATIONSHIP_COMPLEMENTARY = "complementary"


@dataclass(frozen=True)
class CandidateFilters:
    type: str
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    location_name: Optional[str] = None


class RecordStore(Protocol):
    def query(self, filters: CandidateFilters, limit: int) -> list[ViolationRecord]: ...


@dataclass(frozen=True)
class MatchDetails:
    exact_match: bool
    same_type: bool
    same_date: bool
    same_perpetrator: bool
    nearby_location: bool
    same_casualties: bool
    similarity_match: bool
    similarity: float
    distance_meters: float

    def to_serializable(self) -> dict[str, Any]:
        return {
            "exact_match": self.exact_match,
            "same_type": self.same_type,
            "same_date": self.same_date,
            "same_perpetrator": self.same_perpetrator,
            "nearby_location": self.nearby_location,
            "same_casualties": self.same_casualties,
            "similarity_match": self.similarity_match,
            "similarity": round(self.similarity, 4),
            "distance_meters": None if math.isinf(self.distance_meters) else round(self.distance_meters, 2),
        }


@dataclass(frozen=True)
class MatchResult:
    is_duplicate: bool
    match_details: MatchDetails
    relationship_type: str
    candidate: Optional[ViolationRecord] = None

    def to_serializable(self) -> dict[str, Any]:
        return {
            "is_duplicate": self.is_duplicate,
            "match_details": self.match_details.to_serializable(),
            "relationship_type": self.relationship_type,
            "candidate_id": self.candidate.id if self.candidate else None,
        }


def haversine_meters(
    first: Optional[tuple[float, float]],
    second: Optional[tuple[float, float]],
) -> float:
    """Great-circle distance between two (lon, lat) points; ``inf`` if either is missing."""
    if not first or not second:
        return math.inf
    lon1, lat1 = first
    lon2, lat2 = second
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def same_calendar_day(first: Optional[datetime], second: Optional[datetime]) -> bool:
    if first is None or second is None:
        return False
    return first.date() == second.date()


def description_similarity(a: ViolationRecord, b: ViolationRecord) -> float:
    """Best normalized similarity over languages present in both descriptions."""
    best = 0.0
    for language in ("en", "ar"):
        text_a = a.description.get(language).strip()
        text_b = b.description.get(language).strip()
        if not text_a or not text_b:
            continue
        best = max(best, fuzz.ratio(text_a.casefold(), text_b.casefold()) / 100.0)
    return best


def _has_supplementary_differences(a: ViolationRecord, b: ViolationRecord) -> bool:
    if a.casualties != b.casualties:
        return True
    for language in ("en", "ar"):
        if len(a.description.get(language)) != len(b.description.get(language)):
            return True
    if {victim.identity for victim in a.victims} != {victim.identity for victim in b.victims}:
        return True
    if {form for tag in a.tags for form in tag.forms()} != {form for tag in b.tags for form in tag.forms()}:
        return True
    if set(a.source_urls) != set(b.source_urls) or set(a.media_links) != set(b.media_links):
        return True
    return False


def compare(
    new_record: ViolationRecord,
    existing: ViolationRecord,
    similarity_threshold: float = SIMILARITY_THRESHOLD,
    max_distance_meters: float = MAX_DISTANCE_METERS,
    arabic_threshold_scale: float = 1.0,
) -> MatchResult:
    """Compare ``new_record`` with one stored record.

    ``arabic_threshold_scale`` multiplies the similarity threshold when both records
    carry an Arabic description; 0.8 loosens matching for Arabic paraphrases.
    """
    if new_record.description.ar and existing.description.ar:
        similarity_threshold *= arabic_threshold_scale
    same_type = new_record.type == existing.type
    same_date = same_calendar_day(new_record.date, existing.date)
    same_perpetrator = new_record.perpetrator_affiliation == existing.perpetrator_affiliation
    distance = haversine_meters(new_record.coordinates, existing.coordinates)
    nearby = distance <= max_distance_meters
    same_casualties = new_record.casualties == existing.casualties
    similarity = description_similarity(new_record, existing)
    similarity_match = similarity >= similarity_threshold

    exact_match = same_type and same_date and same_perpetrator and nearby
    is_duplicate = exact_match or similarity_match

    if not is_duplicate:
        relationship = RELATIONSHIP_NONE
    elif exact_match and not _has_supplementary_differences(new_record, existing):
        relationship = RELATIONSHIP_IDENTICAL
    else:
        relationship = RELATIONSHIP_COMPLEMENTARY

    return MatchResult(
        is_duplicate=is_duplicate,
        match_details=MatchDetails(
            exact_match=exact_match,
            same_type=same_type,
            same_date=same_date,
            same_perpetrator=same_perpetrator,
            nearby_location=nearby,
            same_casualties=same_casualties,
            similarity_match=similarity_match,
            similarity=similarity,
            distance_meters=distance,
        ),
        relationship_type=relationship,
        candidate=existing,
    )


def rank_duplicates(new_record: ViolationRecord, candidates: Iterable[ViolationRecord]) -> list[MatchResult]:
    """Duplicate matches only, exact matches first, then by similarity."""
    matches = [compare(new_record, candidate) for candidate in candidates]
    duplicates = [match for match in matches if match.is_duplicate]
    duplicates.sort(
        key=lambda match: (match.match_details.exact_match, match.match_details.similarity),
        reverse=True,
    )
    LOGGER.debug("Found %s potential duplicates among %s candidates", len(duplicates), len(matches))
    return duplicates


def candidate_filters(record: ViolationRecord, window_days: int = CANDIDATE_WINDOW_DAYS) -> CandidateFilters:
    date_from = date_to = None
    if record.date is not None:
        date_from = record.date - timedelta(days=window_days)
        date_to = record.date + timedelta(days=window_days)
    name = record.location.name.en or record.location.name.ar
    return CandidateFilters(
        type=record.type,
        date_from=date_from,
        date_to=date_to,
        location_name=name.strip() if name else None,
    )


def find_candidates(
    record: ViolationRecord,
    store: RecordStore,
    limit: int = DEFAULT_CANDIDATE_LIMIT,
) -> list[ViolationRecord]:
    filters = candidate_filters(record)
    candidates = store.query(filters, limit)
    LOGGER.debug("Fetched %s candidates for %s on %s", len(candidates), record.type, record.date)
    return list(candidates)[:limit]


def matches_filters(record: ViolationRecord, filters: CandidateFilters) -> bool:
    """In-memory evaluation of ``filters``; used by file-backed stores."""
    if record.type != filters.type:
        return False
    if filters.date_from is not None or filters.date_to is not None:
        if record.date is None:
            return False
        if filters.date_from is not None and record.date < filters.date_from:
            return False
        if filters.date_to is not None and record.date > filters.date_to:
            return False
    if filters.location_name:
        needle = filters.location_name.casefold()
        names: Sequence[str] = [value for value in (record.location.name.en, record.location.name.ar) if value]
        if not any(needle in name.casefold() for name in names):
            return False
    return True
