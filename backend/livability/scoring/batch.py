"""Batch score calculator for heatmap processing.

Loads every POI a region can need into memory once, then scores any number
of grid points inside that region without further I/O.
"""

import asyncio
import bisect
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from livability.geo import Bounds, degree_delta_for_meters, distance_meters
from livability.providers.base import Poi, PoiSource
from livability.scoring.categories import CategoryDefinition, get_categories
from livability.scoring.engine import category_score, count_sub_types, heatmap_score

logger = logging.getLogger(__name__)

DEFAULT_HEATMAP_CATEGORIES = ("groceries", "restaurants", "parks")
DEFAULT_BUFFER_METERS = 1500.0


@dataclass
class _CategoryIndex:
    """POIs of one category sorted by latitude for range lookups."""

    category: CategoryDefinition
    pois: list[Poi] = field(default_factory=list)
    lats: list[float] = field(default_factory=list)

    @classmethod
    def build(cls, category: CategoryDefinition, pois: list[Poi]) -> "_CategoryIndex":
        ordered = sorted(pois, key=lambda p: p.lat)
        return cls(category=category, pois=ordered, lats=[p.lat for p in ordered])

    def within_radius(self, lat: float, lng: float) -> list[tuple[Poi, float]]:
        """POIs within the category radius of a point, with exact distances."""
        radius = self.category.radius
        lat_delta, lng_delta = degree_delta_for_meters(radius, lat)

        lo = bisect.bisect_left(self.lats, lat - lat_delta)
        hi = bisect.bisect_right(self.lats, lat + lat_delta)

        matches = []
        for poi in self.pois[lo:hi]:
            if abs(poi.lng - lng) > lng_delta:
                continue
            distance = distance_meters(lat, lng, poi.lat, poi.lng)
            if distance <= radius:
                matches.append((poi, distance))
        return matches

    def raw_score(self, lat: float, lng: float) -> float:
        matches = self.within_radius(lat, lng)
        if not matches:
            return 0
        nearest_distance = min(d for _, d in matches)
        sub_type_counts = None
        if self.category.has_sub_types:
            sub_type_counts = count_sub_types(self.category, (p.category for p, _ in matches))
        return category_score(
            self.category, len(matches), nearest_distance, sub_type_counts, clamp=False
        )


class BatchCalculator:
    """In-memory scorer bound to one region. ``calculate_score`` performs no I/O."""

    def __init__(self, bounds: Bounds, indexes: list[_CategoryIndex]):
        self.bounds = bounds
        self._indexes = indexes
        self._categories = [index.category for index in indexes]

    @property
    def poi_count(self) -> int:
        return sum(len(index.pois) for index in self._indexes)

    @property
    def category_ids(self) -> list[str]:
        return [c.id for c in self._categories]

    def category_scores(self, lat: float, lng: float) -> dict[str, float]:
        """Raw (unclamped) score per category at a point."""
        return {index.category.id: index.raw_score(lat, lng) for index in self._indexes}

    def calculate_score(self, lat: float, lng: float) -> int:
        """Compressed 0-100 heatmap score at a point."""
        return heatmap_score(self.category_scores(lat, lng), self._categories)


async def create_batch_calculator(
    source: PoiSource,
    bounds: Bounds,
    category_ids: Iterable[str] = DEFAULT_HEATMAP_CATEGORIES,
    buffer: float = DEFAULT_BUFFER_METERS,
) -> BatchCalculator:
    """Load POIs for ``bounds`` plus a buffer and return a calculator.

    The buffer is at least the largest category radius so that cells on the
    region edge still see every POI within reach.
    """
    categories = get_categories(tuple(category_ids))
    max_radius = max(c.radius for c in categories)
    expanded = bounds.expand(max(buffer, max_radius))

    logger.info(
        f"Loading POIs for region {expanded.min_lat:.4f},{expanded.min_lng:.4f} to "
        f"{expanded.max_lat:.4f},{expanded.max_lng:.4f} "
        f"(categories: {', '.join(c.id for c in categories)})"
    )

    poi_lists = await asyncio.gather(
        *[source.query_region(expanded, category.tags) for category in categories]
    )

    indexes = []
    for category, pois in zip(categories, poi_lists):
        logger.info(f"  {category.id}: {len(pois)} POIs")
        indexes.append(_CategoryIndex.build(category, pois))

    calculator = BatchCalculator(bounds, indexes)
    logger.info(f"Loaded {calculator.poi_count} POIs into memory")
    return calculator
