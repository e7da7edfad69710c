"""Prahari — Country Resolution Rules.

Every ingested record is attributed to a canonical ISO2 code by walking an
ordered rule table and stopping at the first hit:

  1. keyword   — per-country keyword table against title / free text
  2. name      — exact name lookup, then free-text country-name scan
  3. code      — the record already carries an ISO2 / ISO3 code
  4. geometry  — point-in-country test on the record's coordinates
  5. bounds    — coarse bounding-box fallback for regions lacking polygons
"""

import re
from abc import ABC, abstractmethod
from typing import NamedTuple, Optional

from fusion_engine.country_config import (
    COUNTRY_BOUNDS, COUNTRY_KEYWORDS, COUNTRY_NAME_TO_ISO, ISO3_TO_ISO2,
    MONITORED_COUNTRIES,
)
from fusion_engine.country_geometry import (
    ME_STRIKE_BOUNDS, NAME_ALIASES, CountryGeometryIndex,
)

_KEYWORD_PATTERNS: dict[str, list[re.Pattern]] = {
    code: [re.compile(rf"\b{re.escape(kw)}\b") for kw in keywords]
    for code, keywords in COUNTRY_KEYWORDS.items()
}

_STATIC_NAMES: dict[str, str] = {
    **NAME_ALIASES,
    **COUNTRY_NAME_TO_ISO,
    **{info["name"].lower(): code for code, info in MONITORED_COUNTRIES.items()},
}


# ISO2 codes recognized without a boundary dataset
_KNOWN_CODES: frozenset[str] = frozenset(
    {*MONITORED_COUNTRIES, *COUNTRY_BOUNDS, *ISO3_TO_ISO2.values(), *_STATIC_NAMES.values()}
)

# Upstream placeholders that collide with real ISO2 codes (NA is Namibia)
PLACEHOLDER_CODES = frozenset({"NA", "XX", "ZZ"})


class ResolutionQuery(NamedTuple):
    text: Optional[str] = None
    code: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None


def keyword_matches(text: str) -> list[str]:
    """Every country whose keyword table has a whole-word hit in text, in table order."""
    lower = text.lower()
    return [
        code for code, patterns in _KEYWORD_PATTERNS.items()
        if any(p.search(lower) for p in patterns)
    ]


class ResolutionRule(ABC):
    """One step of the resolution cascade."""

    kind: str = ""

    @abstractmethod
    def resolve(self, query: ResolutionQuery, geometry: CountryGeometryIndex) -> Optional[str]:
        ...


class KeywordRule(ResolutionRule):
    kind = "keyword"

    def resolve(self, query, geometry):
        if not query.text:
            return None
        hits = keyword_matches(query.text)
        return hits[0] if hits else None


class NameScanRule(ResolutionRule):
    kind = "name"

    def resolve(self, query, geometry):
        if not query.text:
            return None
        exact = geometry.code_from_name(query.text) or _STATIC_NAMES.get(query.text.strip().lower())
        if exact:
            return exact
        scanned = geometry.scan_text_for_country_names(query.text)
        return scanned[0] if scanned else None


class CodeRule(ResolutionRule):
    kind = "code"

    def resolve(self, query, geometry):
        raw = (query.code or query.text or "").strip()
        if re.fullmatch(r"[A-Za-z]{2}", raw):
            code = raw.upper()
            known = code in _KNOWN_CODES or geometry.name_of(code) is not None
            return code if known and code not in PLACEHOLDER_CODES else None
        if re.fullmatch(r"[A-Za-z]{3}", raw):
            return geometry.iso3_to_iso2(raw) or ISO3_TO_ISO2.get(raw.upper())
        return None


class GeometryRule(ResolutionRule):
    kind = "geometry"

    def resolve(self, query, geometry):
        if query.lat is None or query.lon is None:
            return None
        hit = geometry.resolve_country_at(query.lat, query.lon)
        return hit.code if hit else None


class BoundsRule(ResolutionRule):
    kind = "bounds"

    def __init__(self, bounds: dict[str, tuple[float, float, float, float]]):
        self.bounds = bounds

    def resolve(self, query, geometry):
        if query.lat is None or query.lon is None:
            return None
        return geometry.resolve_from_bounds(query.lat, query.lon, self.bounds)


DEFAULT_RULES: tuple[ResolutionRule, ...] = (
    KeywordRule(), NameScanRule(), CodeRule(), GeometryRule(), BoundsRule(COUNTRY_BOUNDS),
)
# Location-only attribution (where an asset physically is)
LOCATION_RULES: tuple[ResolutionRule, ...] = (GeometryRule(), BoundsRule(COUNTRY_BOUNDS))
STRIKE_RULES: tuple[ResolutionRule, ...] = (GeometryRule(), BoundsRule(ME_STRIKE_BOUNDS))
# Identity-only attribution (no coordinates involved)
IDENTITY_RULES: tuple[ResolutionRule, ...] = (KeywordRule(), NameScanRule(), CodeRule())


class CountryResolver:
    """Applies a rule table against a geometry index."""

    def __init__(self, geometry: CountryGeometryIndex):
        self.geometry = geometry

    def resolve(
        self,
        *,
        text: Optional[str] = None,
        code: Optional[str] = None,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        rules: tuple[ResolutionRule, ...] = DEFAULT_RULES,
    ) -> Optional[str]:
        query = ResolutionQuery(text, code, lat, lon)
        for rule in rules:
            resolved = rule.resolve(query, self.geometry)
            if resolved:
                return resolved
        return None

    def resolve_all_in_text(self, text: str) -> list[str]:
        """All countries mentioned in text: keyword hits first, then scanned names."""
        codes = keyword_matches(text)
        for code in self.geometry.scan_text_for_country_names(text):
            if code not in codes:
                codes.append(code)
        return codes

    def display_name(self, code: str) -> str:
        if code in MONITORED_COUNTRIES:
            return MONITORED_COUNTRIES[code]["name"]
        return self.geometry.name_of(code) or code
