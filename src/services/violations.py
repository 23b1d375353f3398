"""
Typed violation records as they move through geocoding, matching and merging.

Records round-trip through plain dicts with the snake_case field names used by the
JSONL store. Localized fields keep their "may be absent" semantics: ``None`` and an
empty string are both treated as missing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable, Mapping, Optional

COUNT_FIELDS = ("kidnapped_count", "detained_count", "injured_count", "displaced_count")


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO dates and timestamps into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class LocalizedText:
    en: Optional[str] = None
    ar: Optional[str] = None

    @classmethod
    def from_value(cls, value: Any) -> "LocalizedText":
        if isinstance(value, LocalizedText):
            return value
        if isinstance(value, Mapping):
            return cls(en=value.get("en") or None, ar=value.get("ar") or None)
        if isinstance(value, str) and value.strip():
            return cls(en=value)
        return cls()

    def get(self, language: str) -> str:
        return getattr(self, language, None) or ""

    def is_empty(self) -> bool:
        return not (self.en or self.ar)

    def forms(self) -> set[str]:
        return {value for value in (self.en, self.ar) if value}

    def to_serializable(self) -> dict[str, str]:
        return {"en": self.en or "", "ar": self.ar or ""}


@dataclass(frozen=True)
class Victim:
    age: Optional[int] = None
    gender: str = "unknown"
    status: str = "unknown"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Victim":
        age = data.get("age")
        return cls(
            age=_as_int(age) if age is not None else None,
            gender=data.get("gender") or "unknown",
            status=data.get("status") or "unknown",
        )

    @property
    def identity(self) -> tuple[Optional[int], str, str]:
        return (self.age, self.gender, self.status)

    def to_serializable(self) -> dict[str, Any]:
        return {"age": self.age, "gender": self.gender, "status": self.status}


@dataclass(frozen=True)
class ViolationLocation:
    name: LocalizedText = field(default_factory=LocalizedText)
    administrative_division: LocalizedText = field(default_factory=LocalizedText)
    # (longitude, latitude)
    coordinates: Optional[tuple[float, float]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "ViolationLocation":
        data = data or {}
        coordinates = data.get("coordinates")
        parsed: Optional[tuple[float, float]] = None
        if coordinates and len(coordinates) == 2:
            try:
                parsed = (float(coordinates[0]), float(coordinates[1]))
            except (TypeError, ValueError):
                parsed = None
        return cls(
            name=LocalizedText.from_value(data.get("name")),
            administrative_division=LocalizedText.from_value(data.get("administrative_division")),
            coordinates=parsed,
        )

    def to_serializable(self) -> dict[str, Any]:
        return {
            "name": self.name.to_serializable(),
            "administrative_division": self.administrative_division.to_serializable(),
            "coordinates": list(self.coordinates) if self.coordinates else None,
        }


@dataclass(frozen=True)
class ViolationRecord:
    type: str
    date: Optional[datetime]
    location: ViolationLocation = field(default_factory=ViolationLocation)
    perpetrator_affiliation: str = "unknown"
    description: LocalizedText = field(default_factory=LocalizedText)
    casualties: int = 0
    kidnapped_count: int = 0
    detained_count: int = 0
    injured_count: int = 0
    displaced_count: int = 0
    victims: tuple[Victim, ...] = ()
    tags: tuple[LocalizedText, ...] = ()
    source_urls: tuple[str, ...] = ()
    media_links: tuple[str, ...] = ()
    source: LocalizedText = field(default_factory=LocalizedText)
    verified: bool = False
    verification_method: LocalizedText = field(default_factory=LocalizedText)
    id: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ViolationRecord":
        return cls(
            id=data.get("id") or None,
            type=(data.get("type") or "OTHER").upper(),
            date=parse_datetime(data.get("date")),
            location=ViolationLocation.from_dict(data.get("location")),
            perpetrator_affiliation=data.get("perpetrator_affiliation") or "unknown",
            description=LocalizedText.from_value(data.get("description")),
            casualties=_as_int(data.get("casualties")),
            kidnapped_count=_as_int(data.get("kidnapped_count")),
            detained_count=_as_int(data.get("detained_count")),
            injured_count=_as_int(data.get("injured_count")),
            displaced_count=_as_int(data.get("displaced_count")),
            victims=tuple(Victim.from_dict(item) for item in data.get("victims") or []),
            tags=tuple(LocalizedText.from_value(item) for item in data.get("tags") or []),
            source_urls=_string_tuple(data.get("source_urls")),
            media_links=_string_tuple(data.get("media_links")),
            source=LocalizedText.from_value(data.get("source")),
            verified=bool(data.get("verified", False)),
            verification_method=LocalizedText.from_value(data.get("verification_method")),
            created_by=data.get("created_by") or None,
            updated_by=data.get("updated_by") or None,
        )

    @property
    def coordinates(self) -> Optional[tuple[float, float]]:
        return self.location.coordinates

    def to_serializable(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "date": self.date.isoformat() if self.date else None,
            "location": self.location.to_serializable(),
            "perpetrator_affiliation": self.perpetrator_affiliation,
            "description": self.description.to_serializable(),
            "casualties": self.casualties,
            "kidnapped_count": self.kidnapped_count,
            "detained_count": self.detained_count,
            "injured_count": self.injured_count,
            "displaced_count": self.displaced_count,
            "victims": [victim.to_serializable() for victim in self.victims],
            "tags": [tag.to_serializable() for tag in self.tags],
            "source_urls": list(self.source_urls),
            "media_links": list(self.media_links),
            "source": self.source.to_serializable(),
            "verified": self.verified,
            "verification_method": self.verification_method.to_serializable(),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
        }


def _string_tuple(values: Iterable[Any] | None) -> tuple[str, ...]:
    if not values:
        return ()
    if isinstance(values, str):
        values = [values]
    return tuple(str(value) for value in values if value)
