"""
Script detection and complexity heuristics for incident location strings.

The keyword tables are configuration data tuned to Syrian place names. They decide
whether a location is coarse enough for the bulk geocoder (``simple``) or needs the
premium place search (``complex``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Pattern, Sequence

LANGUAGE_EN = "en"
LANGUAGE_AR = "ar"
LANGUAGE_MIXED = "mixed"

COMPLEXITY_SIMPLE = "simple"
COMPLEXITY_COMPLEX = "complex"

ARABIC_RANGES = (
    (0x0600, 0x06FF),
    (0x0750, 0x077F),
    (0x08A0, 0x08FF),
    (0xFB50, 0xFDFF),
    (0xFE70, 0xFEFF),
)

# Neighborhoods, streets, buildings, facilities and terrain features.
EN_FINE_GRAINED_TERMS = [
    "neighborhood",
    "neighbourhood",
    "quarter",
    "district",
    "street",
    "road",
    "avenue",
    "highway",
    "square",
    "roundabout",
    "alley",
    "lane",
    "building",
    "tower",
    "hospital",
    "clinic",
    "school",
    "university",
    "mosque",
    "church",
    "market",
    "souq",
    "bakery",
    "hotel",
    "factory",
    "camp",
    "prison",
    "checkpoint",
    "airport",
    "airbase",
    "base",
    "barracks",
    "palace",
    "headquarters",
    "ministry",
    "branch",
    "station",
    "bridge",
    "village",
    "farm",
    "mountain",
    "hill",
    "valley",
    "river",
    "lake",
    "dam",
    "plain",
]

EN_MAJOR_CITIES = [
    "damascus",
    "aleppo",
    "homs",
    "hama",
    "latakia",
    "lattakia",
    "tartus",
    "tartous",
    "idlib",
    "daraa",
    "deraa",
    "deir ez-zor",
    "deir ezzor",
    "deir al-zor",
    "raqqa",
    "hasakah",
    "al-hasakah",
    "hasakeh",
    "qamishli",
    "suwayda",
    "as-suwayda",
    "sweida",
    "quneitra",
    "rif dimashq",
    "damascus countryside",
]

EN_GOVERNORATE_TERMS = ["governorate", "province"]

AR_FINE_GRAINED_TERMS = [
    "حي",
    "حارة",
    "شارع",
    "طريق",
    "ساحة",
    "دوار",
    "مبنى",
    "بناء",
    "برج",
    "مستشفى",
    "مشفى",
    "مدرسة",
    "جامعة",
    "مسجد",
    "جامع",
    "كنيسة",
    "سوق",
    "فرن",
    "مخبز",
    "فندق",
    "معمل",
    "مصنع",
    "مخيم",
    "سجن",
    "حاجز",
    "مطار",
    "قاعدة",
    "ثكنة",
    "قصر",
    "قيادة",
    "وزارة",
    "فرع",
    "محطة",
    "جسر",
    "قرية",
    "بلدة",
    "مزرعة",
    "جبل",
    "تلة",
    "وادي",
    "نهر",
    "بحيرة",
    "سد",
    "سهل",
]

AR_MAJOR_CITIES = [
    "دمشق",
    "حلب",
    "حمص",
    "حماة",
    "اللاذقية",
    "طرطوس",
    "إدلب",
    "ادلب",
    "درعا",
    "دير الزور",
    "الرقة",
    "الحسكة",
    "القامشلي",
    "السويداء",
    "القنيطرة",
    "ريف دمشق",
]

AR_GOVERNORATE_TERMS = ["محافظة", "منطقة"]


def _build_keyword_pattern(keywords: Sequence[str]) -> Pattern[str] | None:
    """Compile keywords with word boundaries; longer terms are tried first."""
    processed = [
        rf"\b{re.escape(term.strip().casefold())}\b"
        for term in sorted(keywords, key=len, reverse=True)
        if term.strip()
    ]
    if not processed:
        return None
    return re.compile("|".join(processed))


@dataclass
class LocationKeywords:
    """Keyword tables for one language."""

    fine_grained: tuple[str, ...]
    major_cities: tuple[str, ...]
    governorate_terms: tuple[str, ...]
    _fine_pattern: Pattern[str] | None = field(init=False, repr=False, compare=False)
    _admin_pattern: Pattern[str] | None = field(init=False, repr=False, compare=False)
    _governorate_pattern: Pattern[str] | None = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._fine_pattern = _build_keyword_pattern(self.fine_grained)
        # Major city names and governorate words both count as administrative.
        self._admin_pattern = _build_keyword_pattern(self.major_cities + self.governorate_terms)
        self._governorate_pattern = _build_keyword_pattern(self.governorate_terms)

    def has_fine_grained(self, text: str) -> bool:
        return _search(self._fine_pattern, text)

    def has_administrative(self, text: str) -> bool:
        return _search(self._admin_pattern, text)

    def is_governorate_level(self, text: str) -> bool:
        return _search(self._governorate_pattern, text)

    @classmethod
    def merged(cls, tables: Iterable["LocationKeywords"]) -> "LocationKeywords":
        fine: list[str] = []
        cities: list[str] = []
        governorates: list[str] = []
        for table in tables:
            fine.extend(table.fine_grained)
            cities.extend(table.major_cities)
            governorates.extend(table.governorate_terms)
        return cls(tuple(fine), tuple(cities), tuple(governorates))


def _search(pattern: Pattern[str] | None, text: str) -> bool:
    if pattern is None or not text:
        return False
    return pattern.search(text) is not None


ENGLISH_KEYWORDS = LocationKeywords(
    fine_grained=tuple(EN_FINE_GRAINED_TERMS),
    major_cities=tuple(EN_MAJOR_CITIES),
    governorate_terms=tuple(EN_GOVERNORATE_TERMS),
)
ARABIC_KEYWORDS = LocationKeywords(
    fine_grained=tuple(AR_FINE_GRAINED_TERMS),
    major_cities=tuple(AR_MAJOR_CITIES),
    governorate_terms=tuple(AR_GOVERNORATE_TERMS),
)

KEYWORDS_BY_LANGUAGE: dict[str, LocationKeywords] = {
    LANGUAGE_EN: ENGLISH_KEYWORDS,
    LANGUAGE_AR: ARABIC_KEYWORDS,
    LANGUAGE_MIXED: LocationKeywords.merged([ENGLISH_KEYWORDS, ARABIC_KEYWORDS]),
}


def _is_arabic_char(char: str) -> bool:
    code = ord(char)
    return any(start <= code <= end for start, end in ARABIC_RANGES)


def detect_language(text: str | None) -> str:
    """Return ``ar``, ``en`` or ``mixed`` based on which scripts appear in ``text``."""
    if not text:
        return LANGUAGE_EN
    arabic = 0
    latin = 0
    for char in text:
        if _is_arabic_char(char):
            arabic += 1
        elif ("a" <= char <= "z") or ("A" <= char <= "Z"):
            latin += 1
    if arabic and latin:
        return LANGUAGE_MIXED
    if arabic:
        return LANGUAGE_AR
    return LANGUAGE_EN


def normalize_location_text(value: str | None) -> str:
    if not value:
        return ""
    return re.sub(r"\s+", " ", value).strip().casefold()


def _resolve_language(
    place_name: str,
    admin_division: str,
    language: str | None,
    tables: dict[str, LocationKeywords],
) -> str:
    if language and language in tables:
        return language
    detected = detect_language(f"{place_name} {admin_division}".strip())
    return detected if detected in tables else LANGUAGE_EN


def classify_complexity(
    place_name: str | None,
    admin_division: str | None = None,
    language: str | None = None,
    keywords: dict[str, LocationKeywords] | None = None,
) -> str:
    """Classify a location as ``simple`` or ``complex``.

    Fine-grained terms always win: a named street inside a known city still needs
    the precise backend. Without an explicit language the script is auto-detected.
    """
    name = normalize_location_text(place_name)
    admin = normalize_location_text(admin_division)
    tables = keywords or KEYWORDS_BY_LANGUAGE
    table = tables[_resolve_language(name, admin, language, tables)]

    if table.has_fine_grained(name) or table.has_fine_grained(admin):
        return COMPLEXITY_COMPLEX

    name_is_admin = table.has_administrative(name)
    admin_is_admin = table.has_administrative(admin)

    if name_is_admin and not admin:
        return COMPLEXITY_SIMPLE
    if (name_is_admin and admin_is_admin) or table.is_governorate_level(admin):
        return COMPLEXITY_SIMPLE
    if name_is_admin != admin_is_admin:
        return COMPLEXITY_COMPLEX
    if admin:
        return COMPLEXITY_COMPLEX
    return COMPLEXITY_SIMPLE

