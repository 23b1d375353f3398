from src.services.merging import MergeStrategy, merge
from src.services.violations import LocalizedText, Victim, ViolationRecord


def make_record(**overrides) -> ViolationRecord:
    payload = {
        "id": "existing-1",
        "type": "SHELLING",
        "date": "2025-02-01",
        "perpetrator_affiliation": "various_armed_groups",
        "location": {"name": {"en": "Douma"}, "coordinates": [36.4028, 33.5711]},
        "description": {"en": "Shelling hit the market in Douma.", "ar": "قصف على سوق دوما"},
        "casualties": 3,
        "injured_count": 4,
        "victims": [{"age": 30, "gender": "male", "status": "civilian"}],
        "tags": [{"en": "shelling", "ar": "قصف"}],
        "source_urls": ["https://example.org/a"],
        "media_links": ["https://example.org/a.jpg"],
        "source": {"en": "Local council"},
        "created_by": "user-1",
    }
    payload.update(overrides)
    return ViolationRecord.from_dict(payload)


def test_merge_with_itself_keeps_union_fields() -> None:
    record = make_record()

    merged = merge(record, record)

    assert merged.victims == record.victims
    assert merged.tags == record.tags
    assert merged.source_urls == record.source_urls
    assert merged.media_links == record.media_links
    assert merged.source == record.source
    assert merged.description == record.description


def test_casualties_take_maximum() -> None:
    existing = make_record(casualties=3, injured_count=10)
    incoming = make_record(id=None, casualties=5, injured_count=2, detained_count=1)

    merged = merge(existing, incoming)

    assert merged.casualties == 5
    assert merged.injured_count == 10
    assert merged.detained_count == 1
    assert merged.id == "existing-1"


def test_description_keeps_longer_text_per_language() -> None:
    existing = make_record(description={"en": "Short.", "ar": "نص عربي أطول من النص الآخر"})
    incoming = make_record(id=None, description={"en": "A much longer English description.", "ar": "نص قصير"})

    merged = merge(existing, incoming)

    assert merged.description.en == "A much longer English description."
    assert merged.description.ar == "نص عربي أطول من النص الآخر"


def test_description_ties_favor_existing() -> None:
    existing = make_record(description={"en": "aaaa"})
    incoming = make_record(id=None, description={"en": "bbbb"})

    assert merge(existing, incoming).description.en == "aaaa"


def test_victims_union_by_structure() -> None:
    existing = make_record()
    incoming = make_record(
        id=None,
        victims=[
            {"age": 30, "gender": "male", "status": "civilian"},
            {"age": 8, "gender": "female", "status": "civilian"},
        ],
    )

    merged = merge(existing, incoming)

    assert merged.victims == (
        Victim(age=30, gender="male", status="civilian"),
        Victim(age=8, gender="female", status="civilian"),
    )


def test_tags_deduplicate_on_either_language() -> None:
    existing = make_record()
    incoming = make_record(
        id=None,
        tags=[{"en": "artillery", "ar": "قصف"}, {"en": "market"}],
    )

    merged = merge(existing, incoming)

    assert merged.tags == (LocalizedText(en="shelling", ar="قصف"), LocalizedText(en="market"))


def test_links_union_preserves_order_and_drops_blanks() -> None:
    existing = make_record(source_urls=["https://example.org/a", ""])
    incoming = make_record(id=None, source_urls=["https://example.org/b", "https://example.org/a", "  "])

    merged = merge(existing, incoming)

    assert merged.source_urls == ("https://example.org/a", "https://example.org/b")


def test_verification_only_upgrades() -> None:
    unverified = make_record(verified=False)
    verified = make_record(id=None, verified=True, verification_method={"en": "video footage"})

    upgraded = merge(unverified, verified)
    kept = merge(upgraded, unverified)

    assert upgraded.verified is True
    assert upgraded.verification_method.en == "video footage"
    assert kept.verified is True


def test_different_sources_are_combined() -> None:
    existing = make_record(source={"en": "Local council", "ar": "المجلس المحلي"})
    incoming = make_record(id=None, source={"en": "Civil defense"})

    merged = merge(existing, incoming)

    assert merged.source.en == "Local council, Civil defense"
    assert merged.source.ar == "المجلس المحلي"


def test_updated_by_follows_incoming_provenance() -> None:
    existing = make_record(updated_by="user-1")

    assert merge(existing, make_record(id=None, created_by="user-2")).updated_by == "user-2"
    assert merge(existing, make_record(id=None, created_by=None)).updated_by == "user-1"


def test_inputs_are_not_mutated() -> None:
    existing = make_record()
    incoming = make_record(id=None, casualties=9, tags=[{"en": "market"}])
    before = existing.to_serializable()

    merge(existing, incoming)

    assert existing.to_serializable() == before
    assert existing.casualties == 3


def test_configured_fields_only() -> None:
    existing = make_record(casualties=3, perpetrator_affiliation="unknown")
    incoming = make_record(id=None, casualties=7, perpetrator_affiliation="various_armed_groups")

    merged = merge(existing, incoming, MergeStrategy(fields_to_merge=("perpetrator_affiliation",)))

    assert merged.casualties == 3
    assert merged.perpetrator_affiliation == "various_armed_groups"


def test_merge_with_itself_keeps_repeated_links() -> None:
    record = make_record(source_urls=["https://example.org/a", "https://example.org/a"])

    merged = merge(record, record)

    assert merged.source_urls == record.source_urls
