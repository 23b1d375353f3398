import json
from pathlib import Path
from typing import Optional

import requests

from src.services import violation_ingestion
from src.services.geocoding import BackendCandidate, GeocodeResolver
from src.services.geocoding_budget import BudgetTracker
from src.services.violation_ingestion import JsonlViolationStore, ViolationIngestor, reconcile
from src.services.violations import ViolationRecord

DOUMA = BackendCandidate(
    latitude=33.5711,
    longitude=36.4028,
    country="Syria",
    city="Douma",
    state="Rif Dimashq Governorate",
    formatted_address="Douma, Syria",
)


class FakeBulk:
    def __init__(self, candidate: Optional[BackendCandidate]) -> None:
        self.candidate = candidate
        self.queries: list[str] = []

    def geocode(self, query: str) -> list[BackendCandidate]:
        self.queries.append(query)
        return [self.candidate] if self.candidate else []


def make_payload(**overrides) -> dict:
    payload = {
        "type": "SHELLING",
        "date": "2025-02-01",
        "perpetrator_affiliation": "assad_regime",
        "location": {"name": {"en": "Douma"}, "administrative_division": {"en": ""}},
        "description": {"en": "Artillery shelling struck the central market in Douma, killing civilians."},
        "casualties": 3,
        "source_urls": ["https://example.org/1"],
        "created_by": "analyst-1",
    }
    payload.update(overrides)
    return payload


def make_ingestor(tmp_path: Path, candidate: Optional[BackendCandidate] = DOUMA) -> ViolationIngestor:
    store = JsonlViolationStore(tmp_path / "violations.jsonl")
    resolver = GeocodeResolver(bulk=FakeBulk(candidate), budget=BudgetTracker())
    return ViolationIngestor(store, resolver=resolver, max_workers=2)


def test_reconcile_creates_when_no_candidates() -> None:
    record = ViolationRecord.from_dict(make_payload())

    decision = reconcile(record, [])

    assert decision.action == "create"
    assert decision.target_id is None


def test_reconcile_skips_identical_and_updates_complementary() -> None:
    existing = ViolationRecord.from_dict(
        make_payload(id="stored-1", location={"name": {"en": "Douma"}, "coordinates": [36.4028, 33.5711]})
    )
    same = ViolationRecord.from_dict(
        make_payload(location={"name": {"en": "Douma"}, "coordinates": [36.4028, 33.5711]})
    )
    richer = ViolationRecord.from_dict(
        make_payload(casualties=5, location={"name": {"en": "Douma"}, "coordinates": [36.4028, 33.5711]})
    )

    skipped = reconcile(same, [existing])
    updated = reconcile(richer, [existing])

    assert skipped.action == "skip"
    assert skipped.target_id == "stored-1"
    assert updated.action == "update"
    assert updated.record.id == "stored-1"
    assert updated.record.casualties == 5
    assert updated.match is not None and updated.match.relationship_type == "complementary"


def test_batch_geocodes_and_reconciles_in_order(tmp_path: Path) -> None:
    ingestor = make_ingestor(tmp_path)
    payloads = [
        make_payload(),
        make_payload(casualties=6, created_by="analyst-2"),
        make_payload(casualties=6, created_by="analyst-2"),
    ]

    outcomes = ingestor.process(payloads)

    assert [outcome.action for outcome in outcomes] == ["create", "update", "skip"]
    assert outcomes[0].coordinates == [36.4028, 33.5711]
    assert outcomes[0].api_calls_used == 1
    assert outcomes[1].target_id == outcomes[0].record_id
    assert len(ingestor.store) == 1
    stored = ingestor.store.get(outcomes[0].record_id)
    assert stored is not None
    assert stored.casualties == 6
    assert stored.updated_by == "analyst-2"


def test_geocode_failure_is_reported_per_record(tmp_path: Path) -> None:
    ingestor = make_ingestor(tmp_path, candidate=None)

    outcomes = ingestor.process([make_payload(), make_payload(location={"coordinates": [36.4, 33.5]})])

    assert outcomes[0].coordinates is None
    assert "Could not find valid coordinates" in (outcomes[0].error or "")
    assert outcomes[0].api_calls_used == 1
    assert outcomes[0].action == "create"
    assert outcomes[1].coordinates == [36.4, 33.5]
    assert outcomes[1].error is None


def test_store_round_trips_jsonl(tmp_path: Path) -> None:
    ingestor = make_ingestor(tmp_path)
    ingestor.process([make_payload(tags=[{"en": "market", "ar": "سوق"}])])
    ingestor.store.save()

    lines = (tmp_path / "violations.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    row = json.loads(lines[0])
    assert row["location"]["coordinates"] == [36.4028, 33.5711]
    assert row["tags"] == [{"en": "market", "ar": "سوق"}]

    reloaded = JsonlViolationStore(tmp_path / "violations.jsonl")
    assert [record.to_serializable() for record in reloaded.all()] == [row]


def test_run_log_appends_lines(tmp_path: Path) -> None:
    ingestor = make_ingestor(tmp_path)
    ingestor.process([make_payload()])

    log_path = ingestor.write_run_log(tmp_path)
    ingestor.write_run_log(tmp_path)

    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("# fields: timestamp_iso,created")
    assert len(lines) == 3
    assert lines[1].split(",")[1] == "1"


def test_main_writes_store(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("GOOGLE_API_KEY", "")
    input_path = tmp_path / "batch.jsonl"
    input_path.write_text(
        json.dumps(make_payload(location={"name": {"en": "Douma"}, "coordinates": [36.4028, 33.5711]})) + "\n",
        encoding="utf-8",
    )
    store_path = tmp_path / "store.jsonl"

    exit_code = violation_ingestion.main(
        [
            str(input_path),
            "--store",
            str(store_path),
            "--output-dir",
            str(tmp_path),
            "--disable-geocoding",
        ]
    )

    assert exit_code == 0
    assert len(store_path.read_text(encoding="utf-8").splitlines()) == 1
    assert (tmp_path / "run_log.csv").exists()


ALEPPO = BackendCandidate(
    latitude=36.2021,
    longitude=37.1343,
    country="Syria",
    city="Aleppo",
    state="Aleppo Governorate",
    formatted_address="Aleppo, Syria",
)


class RoutingBulk:
    def __init__(self, responses: dict[str, list[BackendCandidate]]) -> None:
        self.responses = responses
        self.queries: list[str] = []

    def geocode(self, query: str) -> list[BackendCandidate]:
        self.queries.append(query)
        return list(self.responses.get(query, []))


class FlakyResolver(GeocodeResolver):
    def resolve(self, place_name, admin_division="", language="en"):
        if place_name == "Douma":
            raise requests.Timeout("read timed out")
        return super().resolve(place_name, admin_division, language)


def test_unexpected_geocoding_error_stays_with_its_record(tmp_path: Path) -> None:
    store = JsonlViolationStore(tmp_path / "violations.jsonl")
    resolver = FlakyResolver(bulk=RoutingBulk({"Aleppo, Syria": [ALEPPO]}), budget=BudgetTracker())
    ingestor = ViolationIngestor(store, resolver=resolver, max_workers=2)
    aleppo = make_payload(
        type="AIRSTRIKE",
        location={"name": {"en": "Aleppo"}},
        description={"en": "An airstrike destroyed a bakery in eastern Aleppo."},
    )

    outcomes = ingestor.process([make_payload(), aleppo])

    assert len(outcomes) == 2
    assert outcomes[0].coordinates is None
    assert "read timed out" in (outcomes[0].error or "")
    assert outcomes[1].coordinates == [37.1343, 36.2021]
    assert outcomes[1].error is None
    assert outcomes[1].action == "create"


def test_arabic_name_is_used_when_english_lookup_fails(tmp_path: Path) -> None:
    store = JsonlViolationStore(tmp_path / "violations.jsonl")
    bulk = RoutingBulk({"دوما, Syria": [DOUMA]})
    ingestor = ViolationIngestor(store, resolver=GeocodeResolver(bulk=bulk, budget=BudgetTracker()))

    outcomes = ingestor.process([make_payload(location={"name": {"en": "Nowhere", "ar": "دوما"}})])

    assert outcomes[0].coordinates == [36.4028, 33.5711]
    assert outcomes[0].error is None
    assert outcomes[0].api_calls_used == 2
    assert bulk.queries == ["Nowhere, Syria", "دوما, Syria"]


def test_higher_quality_localized_result_wins(tmp_path: Path) -> None:
    vague = BackendCandidate(latitude=33.6, longitude=36.45)
    store = JsonlViolationStore(tmp_path / "violations.jsonl")
    bulk = RoutingBulk({"Douma, Syria": [vague], "دوما, Syria": [DOUMA]})
    ingestor = ViolationIngestor(store, resolver=GeocodeResolver(bulk=bulk, budget=BudgetTracker()))

    outcomes = ingestor.process([make_payload(location={"name": {"en": "Douma", "ar": "دوما"}})])

    assert outcomes[0].coordinates == [36.4028, 33.5711]


def test_repeated_locations_are_geocoded_once_per_batch(tmp_path: Path) -> None:
    ingestor = make_ingestor(tmp_path)
    payloads = [
        make_payload(),
        make_payload(type="AIRSTRIKE", description={"en": "An airstrike hit a school in Douma."}),
        make_payload(
            type="DETENTION",
            location={"name": {"en": " douma "}},
            description={"en": "Security forces detained residents at a checkpoint."},
        ),
    ]

    outcomes = ingestor.process(payloads)

    assert ingestor.resolver is not None
    assert ingestor.resolver.bulk.queries == ["Douma, Syria"]
    assert [outcome.api_calls_used for outcome in outcomes] == [1, 0, 0]
    assert all(outcome.coordinates == [36.4028, 33.5711] for outcome in outcomes)
