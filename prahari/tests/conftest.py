"""
pytest configuration and shared fixtures for the Prahari fusion tests.

Tests never download a boundary dataset: a small synthetic FeatureCollection
of square countries (one with a hole) stands in for it, and a controllable
clock replaces wall time wherever recency or learning windows matter.
"""

from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from backend.config import Settings
from backend.models import utcnow
from fusion_engine.context import IntelligenceContext
from fusion_engine.country_geometry import CountryGeometryIndex
from fusion_engine.country_resolution import CountryResolver


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def square(west: float, south: float, east: float, north: float) -> list[list[float]]:
    return [[west, south], [east, south], [east, north], [west, north], [west, south]]


def feature(code: str, name: str, iso3: str, *rings) -> dict:
    return {
        "type": "Feature",
        "properties": {"name": name, "ISO3166-1-Alpha-2": code, "ISO3166-1-Alpha-3": iso3},
        "geometry": {"type": "Polygon", "coordinates": list(rings)},
    }


def build_feature_collection() -> dict:
    return {
        "type": "FeatureCollection",
        "features": [
            feature("UA", "Ukraine", "UKR", square(22, 44, 40, 52)),
            feature("RU", "Russia", "RUS", square(41, 44, 60, 60)),
            feature("FR", "France", "FRA", square(-5, 42, 8, 51)),
            feature("DE", "Germany", "DEU", square(8.5, 47, 15, 55)),
            feature("IR", "Iran", "IRN", square(46, 27, 61, 39)),
            feature("SD", "Sudan", "SDN", square(22, 9, 38, 22)),
            feature("SS", "South Sudan", "SSD", square(24, 3, 36, 8.9)),
            # Outer ring with Lesotho cut out as a hole
            feature("ZA", "South Africa", "ZAF",
                    square(16, -35, 33, -22), square(27, -30.5, 29.5, -28.5)),
            feature("LS", "Lesotho", "LSO", square(27, -30.5, 29.5, -28.5)),
            # Disputed code remapped on load
            feature("CN-TW", "Taiwan", "TWN", square(119, 21, 122, 26)),
        ],
    }


@pytest.fixture()
def feature_collection() -> dict:
    return build_feature_collection()


@pytest.fixture()
def geometry(feature_collection) -> CountryGeometryIndex:
    index = CountryGeometryIndex()
    assert index.load_geojson(feature_collection)
    return index


@pytest.fixture()
def resolver(geometry) -> CountryResolver:
    return CountryResolver(geometry)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture()
def ctx(test_settings, geometry, clock) -> IntelligenceContext:
    return IntelligenceContext(test_settings, geometry=geometry, clock=clock)


@pytest.fixture()
async def client():
    """
    HTTPX async test client wired to the FastAPI app.

    The app lifespan is not run, so no Redis connection or dataset load is
    attempted; the module-level context works without geometry.
    """
    from backend.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
