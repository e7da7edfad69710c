"""Prahari — Static Country & Geography Configuration.

Baseline risk (0-50) reflects inherent instability regardless of current
events. The event multiplier scales how significant each event is:
  > 1.0  events are suppressed/under-reported, so each one matters more
  < 0.7  "high-volume" open societies; counts are log-compressed
"""

# Tier-1 monitored countries: always scored, even with no signals
MONITORED_COUNTRIES: dict[str, dict] = {
    "US": {"name": "United States",  "baseline": 5,  "multiplier": 0.3},
    "RU": {"name": "Russia",         "baseline": 35, "multiplier": 2.0},
    "CN": {"name": "China",          "baseline": 25, "multiplier": 2.5},
    "UA": {"name": "Ukraine",        "baseline": 50, "multiplier": 0.8},
    "IR": {"name": "Iran",           "baseline": 40, "multiplier": 2.0},
    "IL": {"name": "Israel",         "baseline": 45, "multiplier": 0.7},
    "TW": {"name": "Taiwan",         "baseline": 30, "multiplier": 1.5},
    "KP": {"name": "North Korea",    "baseline": 45, "multiplier": 3.0},
    "SA": {"name": "Saudi Arabia",   "baseline": 20, "multiplier": 2.0},
    "TR": {"name": "Turkey",         "baseline": 25, "multiplier": 1.2},
    "PL": {"name": "Poland",         "baseline": 10, "multiplier": 0.8},
    "DE": {"name": "Germany",        "baseline": 5,  "multiplier": 0.5},
    "FR": {"name": "France",         "baseline": 10, "multiplier": 0.6},
    "GB": {"name": "United Kingdom", "baseline": 5,  "multiplier": 0.5},
    "IN": {"name": "India",          "baseline": 20, "multiplier": 0.8},
    "PK": {"name": "Pakistan",       "baseline": 35, "multiplier": 1.5},
    "SY": {"name": "Syria",          "baseline": 50, "multiplier": 0.7},
    "YE": {"name": "Yemen",          "baseline": 50, "multiplier": 0.7},
    "MM": {"name": "Myanmar",        "baseline": 45, "multiplier": 1.8},
    "VE": {"name": "Venezuela",      "baseline": 40, "multiplier": 1.8},
}

DEFAULT_BASELINE_RISK = 20
DEFAULT_EVENT_MULTIPLIER = 1.0

# Multiplier below which a country is treated as high-volume
HIGH_VOLUME_MULTIPLIER = 0.7


def baseline_risk(code: str) -> float:
    return MONITORED_COUNTRIES.get(code, {}).get("baseline", DEFAULT_BASELINE_RISK)


def event_multiplier(code: str) -> float:
    return MONITORED_COUNTRIES.get(code, {}).get("multiplier", DEFAULT_EVENT_MULTIPLIER)


def is_high_volume(code: str) -> bool:
    return event_multiplier(code) < HIGH_VOLUME_MULTIPLIER


# Keyword table, evaluated in order (first country with a whole-word hit wins)
COUNTRY_KEYWORDS: dict[str, list[str]] = {
    "US": ["united states", "usa", "america", "washington", "biden", "trump", "pentagon"],
    "RU": ["russia", "moscow", "kremlin", "putin"],
    "CN": ["china", "beijing", "xi jinping", "prc"],
    "UA": ["ukraine", "kyiv", "zelensky", "donbas"],
    "IR": ["iran", "tehran", "khamenei", "irgc"],
    "IL": ["israel", "tel aviv", "netanyahu", "idf", "gaza"],
    "TW": ["taiwan", "taipei"],
    "KP": ["north korea", "pyongyang", "kim jong"],
    "SA": ["saudi arabia", "riyadh", "mbs"],
    "TR": ["turkey", "ankara", "erdogan"],
    "PL": ["poland", "warsaw"],
    "DE": ["germany", "berlin"],
    "FR": ["france", "paris", "macron"],
    "GB": ["britain", "uk", "london", "starmer"],
    "IN": ["india", "delhi", "modi"],
    "PK": ["pakistan", "islamabad"],
    "SY": ["syria", "damascus", "assad"],
    "YE": ["yemen", "sanaa", "houthi"],
    "MM": ["myanmar", "burma", "rangoon"],
    "VE": ["venezuela", "caracas", "maduro"],
}

# Used when the boundary dataset is unavailable
ISO3_TO_ISO2: dict[str, str] = {
    "AFG": "AF", "SYR": "SY", "UKR": "UA", "SDN": "SD", "SSD": "SS", "SOM": "SO",
    "COD": "CD", "MMR": "MM", "YEM": "YE", "ETH": "ET", "VEN": "VE", "IRQ": "IQ",
    "COL": "CO", "NGA": "NG", "PSE": "PS", "TUR": "TR", "PAK": "PK", "IRN": "IR",
    "IND": "IN", "CHN": "CN", "RUS": "RU", "ISR": "IL", "SAU": "SA", "USA": "US",
    "TWN": "TW", "PRK": "KP", "POL": "PL", "DEU": "DE", "FRA": "FR", "GBR": "GB",
}

COUNTRY_NAME_TO_ISO: dict[str, str] = {
    "afghanistan": "AF", "syria": "SY", "ukraine": "UA", "sudan": "SD",
    "south sudan": "SS", "somalia": "SO", "dr congo": "CD", "myanmar": "MM",
    "yemen": "YE", "ethiopia": "ET", "venezuela": "VE", "iraq": "IQ",
    "colombia": "CO", "nigeria": "NG", "palestine": "PS", "turkey": "TR",
    "pakistan": "PK", "iran": "IR", "india": "IN", "china": "CN",
    "russia": "RU", "israel": "IL", "saudi arabia": "SA",
}

# Coarse boxes for location attribution of military assets: code → (north, south, east, west)
COUNTRY_BOUNDS: dict[str, tuple[float, float, float, float]] = {
    "IR": (40, 25, 63, 44),
    "IL": (34, 29, 36, 34),
    "UA": (53, 44, 40, 22),
    "TW": (26, 21, 122, 119),
    "KP": (43, 37, 131, 124),
    "SY": (37, 32, 42, 35),
    "YE": (19, 12, 54, 42),
    "SA": (32, 16, 56, 34),
    "TR": (42, 36, 45, 26),
    "PK": (37, 23, 77, 60),
    "IN": (36, 6, 97, 68),
    "CN": (54, 18, 135, 73),
    "RU": (82, 41, 180, 19),
}

# Climate zones → affected countries
ZONE_COUNTRY_MAP: dict[str, list[str]] = {
    "Ukraine": ["UA"],
    "Middle East": ["IR", "IL", "SA", "SY", "YE"],
    "South Asia": ["PK", "IN"],
    "Myanmar": ["MM"],
}

# ─── Hotspot-proximity tables ──────────────────────

HOTSPOT_RADIUS_KM = 150
CONFLICT_ZONE_RADIUS_KM = 300
WATERWAY_RADIUS_KM = 200

# id → (lat, lon, credited country); regional hubs credit the power they proxy for
INTEL_HOTSPOTS: dict[str, tuple[float, float, str]] = {
    "tehran":    (35.69, 51.39, "IR"),
    "moscow":    (55.76, 37.62, "RU"),
    "beijing":   (39.90, 116.40, "CN"),
    "kyiv":      (50.45, 30.52, "UA"),
    "taipei":    (25.03, 121.57, "TW"),
    "telaviv":   (32.09, 34.78, "IL"),
    "pyongyang": (39.04, 125.76, "KP"),
    "riyadh":    (24.71, 46.68, "SA"),
    "ankara":    (39.93, 32.86, "TR"),
    "damascus":  (33.51, 36.29, "SY"),
    "sanaa":     (15.37, 44.19, "YE"),
    "caracas":   (10.48, -66.90, "VE"),
    "dc":        (38.90, -77.04, "US"),
    "london":    (51.51, -0.13, "GB"),
    "brussels":  (50.85, 4.35, "FR"),
    "baghdad":   (33.31, 44.36, "IR"),
    "beirut":    (33.89, 35.50, "IR"),
    "doha":      (25.29, 51.53, "SA"),
    "abudhabi":  (24.45, 54.38, "SA"),
}

# id → (lat, lon, credited countries)
CONFLICT_ZONES: dict[str, tuple[float, float, list[str]]] = {
    "ukraine": (48.0, 37.5, ["UA", "RU"]),
    "gaza":    (31.4, 34.4, ["IL", "IR"]),
    "sudan":   (15.5, 30.0, ["SA"]),
    "myanmar": (21.0, 96.0, ["MM"]),
}

STRATEGIC_WATERWAYS: dict[str, tuple[float, float, list[str]]] = {
    "taiwan_strait": (24.0, 119.5, ["TW", "CN"]),
    "hormuz_strait": (26.6, 56.3, ["IR", "SA"]),
    "bab_el_mandeb": (12.6, 43.3, ["YE", "SA"]),
    "suez":          (30.5, 32.3, ["IL"]),
    "bosphorus":     (41.1, 29.0, ["TR"]),
}

# ─── News source tiers (lower = more authoritative) ─

SOURCE_TIERS: dict[str, int] = {
    "Reuters": 1, "AP News": 1, "AFP": 1, "Bloomberg": 1,
    "Reuters World": 1, "White House": 1, "State Dept": 1, "Pentagon": 1,
    "UN News": 1,
    "BBC World": 2, "BBC Middle East": 2, "Guardian World": 2, "Guardian ME": 2,
    "NPR News": 2, "CNN World": 2, "Al Jazeera": 2, "Financial Times": 2,
    "Politico": 2,
    "Defense One": 3, "Breaking Defense": 3, "The War Zone": 3,
}
DEFAULT_SOURCE_TIER = 4
TRUSTED_SOURCE_TIER = 2


def source_tier(source: str) -> int:
    return SOURCE_TIERS.get(source, DEFAULT_SOURCE_TIER)
