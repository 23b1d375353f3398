"""
Field-level merge of a complementary incoming record into an existing one.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from src.services.violations import COUNT_FIELDS, LocalizedText, Victim, ViolationRecord

LOGGER = logging.getLogger(__name__)

DEFAULT_MERGE_FIELDS = (
    "description",
    "casualties",
    *COUNT_FIELDS,
    "victims",
    "tags",
    "media_links",
    "source_urls",
    "source",
    "verified",
)


@dataclass(frozen=True)
class MergeStrategy:
    fields_to_merge: tuple[str, ...] = DEFAULT_MERGE_FIELDS


def _merge_description(existing: LocalizedText, incoming: LocalizedText) -> LocalizedText:
    merged = {}
    for language in ("en", "ar"):
        current = existing.get(language)
        candidate = incoming.get(language)
        # Ties keep the existing text.
        merged[language] = candidate if len(candidate) > len(current) else current
    return LocalizedText(en=merged["en"] or None, ar=merged["ar"] or None)


def _merge_max(existing: int, incoming: int) -> int:
    return max(existing or 0, incoming or 0)


def _merge_victims(existing: tuple[Victim, ...], incoming: tuple[Victim, ...]) -> tuple[Victim, ...]:
    seen = {victim.identity for victim in existing}
    merged = list(existing)
    for victim in incoming:
        if victim.identity in seen:
            continue
        seen.add(victim.identity)
        merged.append(victim)
    return tuple(merged)


def _merge_tags(existing: tuple[LocalizedText, ...], incoming: tuple[LocalizedText, ...]) -> tuple[LocalizedText, ...]:
    seen: set[str] = set()
    for tag in existing:
        seen.update(tag.forms())
    merged = list(existing)
    for tag in incoming:
        forms = tag.forms()
        if not forms or forms & seen:
            continue
        seen.update(forms)
        merged.append(tag)
    return tuple(merged)


def _merge_links(existing: tuple[str, ...], incoming: tuple[str, ...]) -> tuple[str, ...]:
    merged = [link.strip() for link in existing if link and link.strip()]
    for link in incoming:
        link = (link or "").strip()
        if link and link not in merged:
            merged.append(link)
    return tuple(merged)


def _merge_source(existing: LocalizedText, incoming: LocalizedText) -> LocalizedText:
    merged = {}
    for language in ("en", "ar"):
        current = existing.get(language)
        candidate = incoming.get(language)
        if not current or not candidate or current == candidate:
            merged[language] = current or candidate
        else:
            merged[language] = f"{current}, {candidate}"
    return LocalizedText(en=merged["en"] or None, ar=merged["ar"] or None)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, LocalizedText):
        return value.is_empty()
    if isinstance(value, (str, tuple, list, dict, set)):
        return len(value) == 0
    return False


def _text_length(value: Any) -> int:
    if isinstance(value, LocalizedText):
        return len(value.en or "") + len(value.ar or "")
    if value is None:
        return 0
    return len(str(value))


def _merge_default(existing: Any, incoming: Any) -> Any:
    if _is_empty(incoming):
        return existing
    if _is_empty(existing) or _text_length(incoming) > _text_length(existing):
        return incoming
    return existing


FIELD_MERGERS: dict[str, Callable[[Any, Any], Any]] = {
    "description": _merge_description,
    "casualties": _merge_max,
    **{name: _merge_max for name in COUNT_FIELDS},
    "victims": _merge_victims,
    "tags": _merge_tags,
    "media_links": _merge_links,
    "source_urls": _merge_links,
    "source": _merge_source,
}


def _merge_verification(existing: ViolationRecord, incoming: ViolationRecord) -> dict[str, Any]:
    # Verification only ever upgrades.
    if incoming.verified and not existing.verified:
        updates: dict[str, Any] = {"verified": True}
        if not incoming.verification_method.is_empty():
            updates["verification_method"] = incoming.verification_method
        return updates
    return {}


def merge(
    existing: ViolationRecord,
    incoming: ViolationRecord,
    strategy: Optional[MergeStrategy] = None,
) -> ViolationRecord:
    """Return a new record combining ``incoming`` into ``existing``; inputs are left untouched."""
    strategy = strategy or MergeStrategy()
    known_fields = {item.name for item in dataclasses.fields(ViolationRecord)}
    updates: dict[str, Any] = {}
    for name in strategy.fields_to_merge:
        if name == "verified":
            updates.update(_merge_verification(existing, incoming))
            continue
        if name not in known_fields or name in ("id", "created_by", "updated_by"):
            LOGGER.debug("Ignoring unknown merge field %s", name)
            continue
        merger = FIELD_MERGERS.get(name, _merge_default)
        updates[name] = merger(getattr(existing, name), getattr(incoming, name))

    provenance = incoming.updated_by or incoming.created_by
    if provenance:
        updates["updated_by"] = provenance
    return dataclasses.replace(existing, **updates)
