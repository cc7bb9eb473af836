"""POI provider backed by the local ``pois`` table."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from livability.errors import PoiSourceError
from livability.geo import Bounds, degree_delta_for_meters, distance_meters
from livability.models import PoiRecord
from livability.providers.base import Poi, PoiSource
from livability.providers.category_map import (
    provider_category_to_tag,
    tags_to_provider_categories,
)

logger = logging.getLogger(__name__)


def _bbox_clause(bounds: Bounds):
    return (
        PoiRecord.lat >= bounds.min_lat,
        PoiRecord.lat <= bounds.max_lat,
        PoiRecord.lng >= bounds.min_lng,
        PoiRecord.lng <= bounds.max_lng,
    )


class LocalDbPoiSource(PoiSource):
    """Reads POIs imported into the database.

    Each call opens its own session so per-category queries can run
    concurrently.
    """

    name = "localdb"

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    def _to_poi(self, row: PoiRecord, tags: list[str] | tuple[str, ...]) -> Poi:
        return Poi(
            id=row.id,
            lat=row.lat,
            lng=row.lng,
            name=row.name,
            # Map back to the scoring tag for sub-type detection
            category=provider_category_to_tag(row.category, tags) or row.category,
            tags=row.tags or {},
        )

    async def _fetch(self, bounds: Bounds, categories: list[str]) -> list[PoiRecord]:
        try:
            async with self._session_maker() as db:
                result = await db.execute(
                    select(PoiRecord).where(
                        *_bbox_clause(bounds),
                        PoiRecord.category.in_(categories),
                    )
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PoiSourceError(f"POI query failed: {e}") from e

    async def query_near(
        self, lat: float, lng: float, radius: float, tags: list[str] | tuple[str, ...]
    ) -> list[Poi]:
        categories = tags_to_provider_categories(tags)
        if not categories:
            return []

        lat_delta, lng_delta = degree_delta_for_meters(radius, lat)
        prefilter = Bounds(
            min_lat=max(-90.0, lat - lat_delta),
            max_lat=min(90.0, lat + lat_delta),
            min_lng=max(-180.0, lng - lng_delta),
            max_lng=min(180.0, lng + lng_delta),
        )
        rows = await self._fetch(prefilter, categories)

        pois = []
        for row in rows:
            distance = distance_meters(lat, lng, row.lat, row.lng)
            if distance <= radius:
                pois.append(self._to_poi(row, tags).with_distance(distance))
        return pois

    async def query_region(self, bounds: Bounds, tags: list[str] | tuple[str, ...]) -> list[Poi]:
        categories = tags_to_provider_categories(tags)
        if not categories:
            return []
        rows = await self._fetch(bounds, categories)
        return [self._to_poi(row, tags) for row in rows]

    async def exists_any(self, bounds: Bounds) -> bool:
        try:
            async with self._session_maker() as db:
                result = await db.execute(
                    select(PoiRecord.id).where(*_bbox_clause(bounds)).limit(1)
                )
                return result.first() is not None
        except SQLAlchemyError as e:
            raise PoiSourceError(f"POI existence check failed: {e}") from e
