import math
from datetime import datetime, timezone

from src.services import duplicates
from src.services.duplicates import compare, haversine_meters
from src.services.violations import ViolationRecord


def make_record(**overrides) -> ViolationRecord:
    payload = {
        "id": "existing-1",
        "type": "AIRSTRIKE",
        "date": "2025-03-10T08:00:00Z",
        "perpetrator_affiliation": "assad_regime",
        "location": {
            "name": {"en": "Al-Midan", "ar": "الميدان"},
            "administrative_division": {"en": "Damascus", "ar": "دمشق"},
            "coordinates": [36.2981, 33.4925],
        },
        "description": {
            "en": "An airstrike hit a residential building in Al-Midan, killing several civilians.",
        },
        "casualties": 3,
        "tags": [{"en": "airstrike", "ar": "غارة جوية"}],
        "source_urls": ["https://example.org/report/1"],
    }
    payload.update(overrides)
    return ViolationRecord.from_dict(payload)


class ListStore:
    def __init__(self, records: list[ViolationRecord]) -> None:
        self.records = records
        self.filters: list[duplicates.CandidateFilters] = []

    def query(self, filters: duplicates.CandidateFilters, limit: int) -> list[ViolationRecord]:
        self.filters.append(filters)
        return [record for record in self.records if duplicates.matches_filters(record, filters)][:limit]


def test_distance_is_zero_for_same_point_and_symmetric() -> None:
    damascus = (36.2765, 33.5138)
    aleppo = (37.1343, 36.2021)

    assert haversine_meters(damascus, damascus) == 0
    assert haversine_meters(damascus, aleppo) == haversine_meters(aleppo, damascus)
    assert 300_000 < haversine_meters(damascus, aleppo) < 320_000


def test_missing_coordinates_give_infinite_distance() -> None:
    assert math.isinf(haversine_meters(None, (36.2765, 33.5138)))


def test_identical_records() -> None:
    existing = make_record()
    incoming = make_record(id=None, date="2025-03-10T17:30:00Z", location={
        "name": {"en": "Al-Midan"},
        "coordinates": [36.2982, 33.4926],
    })

    result = compare(incoming, existing)

    assert result.match_details.same_date
    assert result.match_details.nearby_location
    assert result.match_details.exact_match
    assert result.is_duplicate
    assert result.relationship_type == "identical"


def test_casualty_difference_is_complementary() -> None:
    existing = make_record()
    incoming = make_record(
        id=None,
        casualties=5,
        description={"en": "An airstrike hit a residential building in Al-Midan, killing several civilians today."},
    )

    result = compare(incoming, existing)

    assert result.match_details.similarity > 0.75
    assert not result.match_details.same_casualties
    assert result.relationship_type == "complementary"


def test_similar_descriptions_match_without_coordinates() -> None:
    existing = make_record(location={"name": {"en": "Al-Midan"}})
    incoming = make_record(id=None, location={"name": {"en": "Midan"}})

    result = compare(incoming, existing)

    assert not result.match_details.exact_match
    assert result.match_details.similarity_match
    assert result.relationship_type == "complementary"


def test_unrelated_records_are_not_duplicates() -> None:
    existing = make_record()
    incoming = make_record(
        id=None,
        type="SHELLING",
        date="2025-01-02",
        description={"en": "Artillery shelling targeted farmland near Idlib."},
        location={"name": {"en": "Idlib"}, "coordinates": [36.6339, 35.9306]},
    )

    result = compare(incoming, existing)

    assert not result.is_duplicate
    assert result.relationship_type == "none"


def test_missing_description_degrades_similarity() -> None:
    existing = make_record(description={})
    incoming = make_record(id=None, description={}, location={"name": {"en": "Al-Midan"}})

    result = compare(incoming, existing)

    assert result.match_details.similarity == 0.0
    assert not result.is_duplicate


def test_arabic_descriptions_are_compared() -> None:
    existing = make_record(description={"ar": "غارة جوية على مبنى سكني في حي الميدان"}, location={"name": {"ar": "الميدان"}})
    incoming = make_record(id=None, description={"ar": "غارة جوية على مبنى سكني في حي الميدان"}, location={"name": {"ar": "الميدان"}})

    result = compare(incoming, existing)

    assert result.match_details.similarity == 1.0


def test_rank_duplicates_prefers_exact_matches() -> None:
    near = make_record(id="near", description={"en": "Completely different wording about the same strike."})
    similar = make_record(id="similar", location={"name": {"en": "Al-Midan"}})
    incoming = make_record(id=None)

    ranked = duplicates.rank_duplicates(incoming, [similar, near])

    assert [match.candidate.id for match in ranked] == ["near", "similar"]


def test_find_candidates_filters_by_type_window_and_name() -> None:
    store = ListStore(
        [
            make_record(id="a"),
            make_record(id="b", date="2025-03-12"),
            make_record(id="c", date="2025-03-20"),
            make_record(id="d", type="SHELLING"),
            make_record(id="e", location={"name": {"en": "Douma"}}),
        ]
    )

    candidates = duplicates.find_candidates(make_record(id=None, location={"name": {"en": "midan"}}), store)

    assert [record.id for record in candidates] == ["a", "b"]
    filters = store.filters[0]
    assert filters.type == "AIRSTRIKE"
    assert filters.date_from == datetime(2025, 3, 7, 8, tzinfo=timezone.utc)
    assert filters.location_name == "midan"


def test_find_candidates_respects_limit() -> None:
    store = ListStore([make_record(id=f"r{i}") for i in range(10)])

    assert len(duplicates.find_candidates(make_record(id=None), store, limit=5)) == 5


def test_arabic_threshold_scale_applies_only_to_arabic_pairs(monkeypatch) -> None:
    monkeypatch.setattr(duplicates, "description_similarity", lambda a, b: 0.65)
    arabic = {"ar": "غارة جوية على مبنى سكني في حي الميدان"}
    existing = make_record(description=arabic, location={"name": {"ar": "الميدان"}})
    incoming = make_record(id=None, type="SHELLING", description=arabic, location={"name": {"ar": "الميدان"}})
    english_only = make_record(id=None, type="SHELLING", location={"name": {"en": "Al-Midan"}})

    assert not compare(incoming, existing).is_duplicate
    assert compare(incoming, existing, arabic_threshold_scale=0.8).match_details.similarity_match
    assert not compare(english_only, make_record(), arabic_threshold_scale=0.8).is_duplicate
