"""Prahari — Country Geometry Index.

Loads a country-boundary FeatureCollection once and answers:
  - point-in-country tests (bbox rejection, then ray casting per polygon,
    outer ring minus holes; points on a ring edge count as inside)
  - coordinate → country resolution
  - name / ISO3 → ISO2 normalization
  - whole-word country-name scanning of free text

If the dataset is missing or malformed every geometry lookup answers None
("unknown"), never False. Callers must not read None as "excluded".
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from pathlib import Path
from typing import Any, NamedTuple, Optional

import httpx

logger = logging.getLogger("prahari.geometry")

Ring = list[tuple[float, float]]          # [(lon, lat), ...]
Polygon = list[Ring]                      # outer ring, then holes
BBox = tuple[float, float, float, float]  # (min_lon, min_lat, max_lon, max_lat)

# Disputed territories remapped to a preferred attribution before indexing
POLITICAL_OVERRIDES = {"CN-TW": "TW"}

NAME_ALIASES = {
    "dr congo": "CD", "democratic republic of the congo": "CD",
    "czech republic": "CZ", "ivory coast": "CI", "cote d'ivoire": "CI",
    "uae": "AE", "uk": "GB", "usa": "US",
    "south korea": "KR", "north korea": "KP",
    "republic of the congo": "CG", "east timor": "TL",
    "cape verde": "CV", "swaziland": "SZ", "burma": "MM",
}

# Names shorter than this are too ambiguous for free-text scanning
MIN_SCAN_NAME_LENGTH = 4

EDGE_EPSILON = 1e-9
EARTH_RADIUS_KM = 6371.0

# Coarse Middle-East strike belt boxes: code → (north, south, east, west)
ME_STRIKE_BOUNDS: dict[str, tuple[float, float, float, float]] = {
    "BH": (26.3, 25.8, 50.8, 50.3), "QA": (26.2, 24.5, 51.7, 50.7),
    "LB": (34.7, 33.1, 36.6, 35.1), "KW": (30.1, 28.5, 48.5, 46.5),
    "IL": (33.3, 29.5, 35.9, 34.3), "AE": (26.1, 22.6, 56.4, 51.6),
    "JO": (33.4, 29.2, 39.3, 34.9), "SY": (37.3, 32.3, 42.4, 35.7),
    "OM": (26.4, 16.6, 59.8, 52.0), "IQ": (37.4, 29.1, 48.6, 38.8),
    "YE": (19.0, 12.0, 54.5, 42.0), "IR": (40.0, 25.0, 63.0, 44.0),
    "SA": (32.0, 16.0, 55.0, 35.0),
}


class CountryHit(NamedTuple):
    code: str
    name: str


class CountryGeometryEntry(NamedTuple):
    code: str
    name: str
    bbox: BBox
    polygons: tuple[Polygon, ...]


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2))
         * math.sin(d_lon / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


# ─── Feature normalization ─────────────────────────

def _normalize_code(props: Any) -> Optional[str]:
    if not isinstance(props, dict):
        return None
    raw = props.get("ISO3166-1-Alpha-2") or props.get("ISO_A2") or props.get("iso_a2")
    if not isinstance(raw, str):
        return None
    code = raw.strip().upper()
    code = POLITICAL_OVERRIDES.get(code, code)
    return code if re.fullmatch(r"[A-Z]{2}", code) else None


def _normalize_name(props: Any) -> Optional[str]:
    if not isinstance(props, dict):
        return None
    raw = props.get("name") or props.get("NAME") or props.get("admin")
    if not isinstance(raw, str):
        return None
    name = raw.strip()
    return name or None


def _to_coord(point: Any) -> Optional[tuple[float, float]]:
    if not isinstance(point, (list, tuple)) or len(point) < 2:
        return None
    try:
        lon, lat = float(point[0]), float(point[1])
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(lon) and math.isfinite(lat)):
        return None
    return (lon, lat)


def _normalize_rings(rings: Any) -> Polygon:
    polygon: Polygon = []
    if not isinstance(rings, (list, tuple)):
        return polygon
    for ring in rings:
        coords = []
        if isinstance(ring, (list, tuple)):
            coords = [c for c in (_to_coord(p) for p in ring) if c is not None]
        if len(coords) >= 3:
            polygon.append(coords)
        elif not polygon:
            # Unusable outer ring: its holes mean nothing on their own
            return []
    return polygon


def normalize_geometry(geometry: Any) -> list[Polygon]:
    """Polygon/MultiPolygon → list of polygons of finite (lon, lat) rings."""
    if not isinstance(geometry, dict):
        return []
    gtype = geometry.get("type")
    coords = geometry.get("coordinates")
    if gtype == "Polygon":
        polygon = _normalize_rings(coords)
        return [polygon] if polygon else []
    if gtype == "MultiPolygon":
        if not isinstance(coords, (list, tuple)):
            return []
        polygons = [_normalize_rings(p) for p in coords]
        return [p for p in polygons if p]
    return []


def compute_bbox(polygons: list[Polygon]) -> Optional[BBox]:
    points = [pt for polygon in polygons for ring in polygon for pt in ring]
    if not points:
        return None
    lons = [p[0] for p in points]
    lats = [p[1] for p in points]
    return (min(lons), min(lats), max(lons), max(lats))


# ─── Point-in-polygon ──────────────────────────────

def _point_on_segment(px: float, py: float, x1: float, y1: float, x2: float, y2: float) -> bool:
    cross = (py - y1) * (x2 - x1) - (px - x1) * (y2 - y1)
    if abs(cross) > EDGE_EPSILON:
        return False
    dot = (px - x1) * (px - x2) + (py - y1) * (py - y2)
    return dot <= 0


def point_in_ring(lon: float, lat: float, ring: Ring) -> bool:
    """Ray casting; a point lying on any edge is inside."""
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i]
        xj, yj = ring[j]
        if _point_on_segment(lon, lat, xi, yi, xj, yj):
            return True
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / ((yj - yi) or EDGE_EPSILON) + xi
            if lon < x_cross:
                inside = not inside
        j = i
    return inside


def point_in_entry(entry: CountryGeometryEntry, lon: float, lat: float) -> bool:
    min_lon, min_lat, max_lon, max_lat = entry.bbox
    if lon < min_lon or lon > max_lon or lat < min_lat or lat > max_lat:
        return False

    for polygon in entry.polygons:
        outer, holes = polygon[0], polygon[1:]
        if not point_in_ring(lon, lat, outer):
            continue
        if any(point_in_ring(lon, lat, hole) for hole in holes):
            continue
        return True
    return False


# ─── Index ─────────────────────────────────────────

class CountryGeometryIndex:
    """Queryable country boundary index. Load once, query many times."""

    def __init__(self):
        self._loaded = False
        self._load_task: Optional[asyncio.Task] = None
        self._entries: dict[str, CountryGeometryEntry] = {}
        self._iso3_to_iso2: dict[str, str] = {}
        self._name_to_code: dict[str, str] = {}
        self._code_to_name: dict[str, str] = {}
        self._name_matchers: list[tuple[str, re.Pattern]] = []

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def load(self, source: Optional[str | Path]) -> bool:
        """Fetch and index the boundary dataset once.

        Concurrent and repeated calls await the same in-flight load. Returns
        True when geometry is available afterwards.
        """
        if self._loaded:
            return True
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._fetch_and_index(source))
        await self._load_task
        return self._loaded

    async def _fetch_and_index(self, source: Optional[str | Path]) -> None:
        if not source:
            logger.warning("[geometry] No boundary dataset configured; geometry lookups disabled")
            return
        try:
            src = str(source)
            if src.startswith(("http://", "https://")):
                async with httpx.AsyncClient(timeout=30.0) as client:
                    resp = await client.get(src)
                    resp.raise_for_status()
                    data = resp.json()
            else:
                data = json.loads(Path(src).read_text(encoding="utf-8"))
            self.load_geojson(data)
        except (httpx.HTTPError, OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("[geometry] Failed to load country boundaries from %s: %s", source, e)

    def load_geojson(self, data: Any) -> bool:
        """Index an already-parsed FeatureCollection. Returns False if unusable."""
        if (not isinstance(data, dict) or data.get("type") != "FeatureCollection"
                or not isinstance(data.get("features"), list)):
            logger.warning("[geometry] Boundary dataset is not a FeatureCollection; ignoring")
            return False

        entries: dict[str, CountryGeometryEntry] = {}
        iso3_to_iso2: dict[str, str] = {}
        name_to_code: dict[str, str] = {}
        code_to_name: dict[str, str] = {}

        for feature in data["features"]:
            if not isinstance(feature, dict):
                continue
            props = feature.get("properties")
            code = _normalize_code(props)
            name = _normalize_name(props)
            if not code or not name:
                continue

            iso3 = props.get("ISO3166-1-Alpha-3") or props.get("ISO_A3")
            if isinstance(iso3, str) and re.fullmatch(r"[A-Za-z]{3}", iso3.strip()):
                iso3_to_iso2[iso3.strip().upper()] = code
            name_to_code[name.lower()] = code
            code_to_name.setdefault(code, name)

            polygons = normalize_geometry(feature.get("geometry"))
            bbox = compute_bbox(polygons)
            if not bbox:
                continue
            entries[code] = CountryGeometryEntry(code, name, bbox, tuple(polygons))

        for alias, code in NAME_ALIASES.items():
            name_to_code.setdefault(alias, code)

        self._entries = entries
        self._iso3_to_iso2 = iso3_to_iso2
        self._name_to_code = name_to_code
        self._code_to_name = code_to_name
        self._build_name_matchers()
        self._loaded = True
        logger.info("[geometry] Indexed %d country geometries (%d names)",
                    len(entries), len(name_to_code))
        return True

    def _build_name_matchers(self) -> None:
        names = sorted(
            (n for n in self._name_to_code if len(n) >= MIN_SCAN_NAME_LENGTH),
            key=len, reverse=True,
        )
        self._name_matchers = [
            (self._name_to_code[n], re.compile(rf"\b{re.escape(n)}\b", re.IGNORECASE))
            for n in names
        ]

    # ── Queries ──

    def has_geometry(self, code: str) -> bool:
        return code.upper() in self._entries

    def all_codes(self) -> list[str]:
        return list(self._entries)

    def point_in_country(self, code: str, lat: float, lon: float) -> Optional[bool]:
        """True/False when the country's polygons are known, None otherwise."""
        if not self._loaded:
            return None
        entry = self._entries.get(code.upper())
        if entry is None:
            return None
        return point_in_entry(entry, lon, lat)

    def resolve_country_at(
        self, lat: float, lon: float, candidate_codes: Optional[list[str]] = None,
    ) -> Optional[CountryHit]:
        if not self._loaded:
            return None
        if candidate_codes:
            candidates = [self._entries[c.upper()] for c in candidate_codes
                          if c.upper() in self._entries]
        else:
            candidates = list(self._entries.values())
        for entry in candidates:
            if point_in_entry(entry, lon, lat):
                return CountryHit(entry.code, entry.name)
        return None

    def code_from_name(self, text: str) -> Optional[str]:
        return self._name_to_code.get(text.strip().lower())

    def iso3_to_iso2(self, iso3: str) -> Optional[str]:
        return self._iso3_to_iso2.get(iso3.strip().upper())

    def name_of(self, code: str) -> Optional[str]:
        upper = code.upper()
        entry = self._entries.get(upper)
        if entry:
            return entry.name
        return self._code_to_name.get(upper)

    def bbox_of(self, code: str) -> Optional[BBox]:
        entry = self._entries.get(code.upper())
        return entry.bbox if entry else None

    def scan_text_for_country_names(self, text: str) -> list[str]:
        """Longest-first whole-word scan; each match is consumed from the text."""
        matched: list[str] = []
        remaining = text.lower()
        for code, pattern in self._name_matchers:
            if pattern.search(remaining):
                if code not in matched:
                    matched.append(code)
                remaining = pattern.sub(" ", remaining)
        return matched

    def resolve_from_bounds(
        self, lat: float, lon: float,
        bounds: dict[str, tuple[float, float, float, float]],
    ) -> Optional[str]:
        """Pick a country from overlapping coarse boxes (north, south, east, west).

        Precise polygon containment wins; otherwise the smallest box does.
        """
        matches = [
            (code, (n - s) * (e - w))
            for code, (n, s, e, w) in bounds.items()
            if s <= lat <= n and w <= lon <= e
        ]
        if not matches:
            return None
        if len(matches) == 1:
            return matches[0][0]

        for code, _area in matches:
            if self.point_in_country(code, lat, lon) is True:
                return code

        matches.sort(key=lambda m: m[1])
        return matches[0][0]
