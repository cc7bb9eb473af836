"""Shared fixtures: a throwaway SQLite database and a fake POI source."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from livability import models  # noqa: F401
from livability.config import Settings
from livability.database import Base
from livability.geo import Bounds, distance_meters
from livability.providers.base import Poi, PoiSource


class FakePoiSource(PoiSource):
    """In-memory POI source. ``Poi.category`` holds the scoring tag."""

    name = "fake"

    def __init__(self, pois: list[Poi] | None = None):
        self.pois = list(pois or [])
        self.region_calls = 0
        self.near_calls = 0
        self.exists_calls = 0
        self.fail_with: Exception | None = None

    async def query_near(self, lat, lng, radius, tags):
        self.near_calls += 1
        if self.fail_with:
            raise self.fail_with
        matches = []
        for poi in self.pois:
            if poi.category not in tags:
                continue
            distance = distance_meters(lat, lng, poi.lat, poi.lng)
            if distance <= radius:
                matches.append(poi.with_distance(distance))
        return sorted(matches, key=lambda p: p.distance)

    async def query_region(self, bounds: Bounds, tags):
        self.region_calls += 1
        if self.fail_with:
            raise self.fail_with
        return [p for p in self.pois if p.category in tags and bounds.contains(p.lat, p.lng)]

    async def exists_any(self, bounds: Bounds) -> bool:
        self.exists_calls += 1
        return any(bounds.contains(p.lat, p.lng) for p in self.pois)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database file with all tables.

    A file (not :memory:) gives every session its own connection, as in production.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        heatmap_grid_step=0.01,
        heatmap_chunk_size=100,
        worker_chunk_size=100,
        worker_poll_interval=0.05,
        upsert_batch_size=50,
        region_size=0.02,
    )


@pytest.fixture
def fake_source():
    """A POI source with a supermarket, two restaurants and a park near Cancún."""
    return FakePoiSource(
        [
            Poi(id="g1", lat=21.1610, lng=-86.8510, category="shop=supermarket", name="Chedraui"),
            Poi(id="r1", lat=21.1620, lng=-86.8520, category="amenity=restaurant", name="Tacos"),
            Poi(id="r2", lat=21.1605, lng=-86.8500, category="amenity=cafe", name="Café"),
            Poi(id="p1", lat=21.1600, lng=-86.8530, category="leisure=park", name="Parque"),
        ]
    )


@pytest.fixture
def make_source():
    return FakePoiSource
