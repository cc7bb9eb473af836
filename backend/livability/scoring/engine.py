"""Convenience scoring engine.

Per category the score is built from three parts:

* count score (0-60): logarithmic saturation curve over the POI count
* distance score (0-25): linear decay on the nearest POI
* bonus (0-15): density bonus for exceptional counts, or a diversity bonus
  for categories split into sub-types

Categories below their minimum count keep 40% of count + distance and get
no bonus. Everything in this module except :func:`compute_score` and
:func:`compute_simplified_score` is pure and never performs I/O.
"""

import asyncio
import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from livability.providers.base import Poi, PoiSource
from livability.scoring.categories import (
    CATEGORIES,
    CategoryDefinition,
    SubType,
    get_categories,
)

logger = logging.getLogger(__name__)

COUNT_SCORE_MAX = 60.0
DISTANCE_SCORE_MAX = 25.0
BONUS_MAX = 15.0
DIVERSITY_STEP = 5.0
CLOSE_THRESHOLD_MAX_M = 400.0
CLOSE_THRESHOLD_RADIUS_FRACTION = 0.4
MIN_COUNT_FACTOR = 0.4
COMPRESSION_KNEE = 60
COMPRESSION_SCALE = 50.0
MAX_LISTED_POIS = 20


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up."""
    return math.floor(value + 0.5)


@dataclass
class PoiResult:
    id: str
    lat: float
    lng: float
    name: str | None
    distance: int


@dataclass
class CategoryScoreResult:
    id: str
    score: int
    count: int
    radius: float
    nearest_distance: float | None
    pois: list[PoiResult] = field(default_factory=list)


@dataclass
class ScoreResult:
    lat: float
    lng: float
    overall: int
    categories: list[CategoryScoreResult]
    computed_at: datetime


def count_score(count: int, max_count: int, saturation_k: float) -> float:
    """Logarithmic saturation curve: 60 * ln(1 + count*k) / ln(1 + max_count*k)."""
    if count <= 0:
        return 0.0
    return COUNT_SCORE_MAX * math.log(1 + count * saturation_k) / math.log(
        1 + max_count * saturation_k
    )


def distance_score(nearest_distance: float | None, radius: float) -> float:
    """Linear decay from 25 at 0m to 0 at min(400m, 40% of radius)."""
    if nearest_distance is None:
        return 0.0
    close_threshold = min(CLOSE_THRESHOLD_MAX_M, radius * CLOSE_THRESHOLD_RADIUS_FRACTION)
    return DISTANCE_SCORE_MAX * max(0.0, 1 - nearest_distance / close_threshold)


def density_bonus(count: int, max_count: int) -> float:
    """Bonus for counts beyond ``max_count`` (0-15)."""
    if count <= max_count:
        return 0.0
    excess = count - max_count
    return BONUS_MAX * min(1.0, math.log(1 + excess) / math.log(1 + max_count * 2))


def diversity_bonus(present_sub_types: int) -> float:
    """5 points per extra sub-type present, capped at 15."""
    if present_sub_types <= 1:
        return 0.0
    return min(BONUS_MAX, (present_sub_types - 1) * DIVERSITY_STEP)


def sub_type_count_score(sub_types: Iterable[SubType], counts: Mapping[str, int]) -> float:
    """Count score split across sub-types by their share of the total max count."""
    sub_types = list(sub_types)
    total_max_count = sum(st.max_count for st in sub_types)
    score = 0.0
    for sub_type in sub_types:
        sub_count = counts.get(sub_type.id, 0)
        if sub_count == 0:
            continue
        share = sub_type.max_count / total_max_count
        score += share * count_score(sub_count, sub_type.max_count, sub_type.saturation_k)
    return score


def count_sub_types(category: CategoryDefinition, tags: Iterable[str]) -> dict[str, int]:
    """Count POI tags per sub-type. Each tag belongs to at most one sub-type."""
    counts = {st.id: 0 for st in category.sub_types}
    for tag in tags:
        sub_type = category.sub_type_for_tag(tag)
        if sub_type is not None:
            counts[sub_type.id] += 1
    return counts


def category_score(
    category: CategoryDefinition,
    count: int,
    nearest_distance: float | None,
    sub_type_counts: Mapping[str, int] | None = None,
    clamp: bool = True,
) -> float:
    """Score one category from its POI count and nearest distance.

    With ``clamp`` the result is rounded and capped to [0, 100]. Without it
    the raw value is returned so it can flow into a weighted average that is
    compressed once at the end (heatmap path). Under-served categories are
    always rounded.
    """
    if count <= 0:
        return 0

    if category.has_sub_types:
        counts = sub_type_counts or {}
        base = sub_type_count_score(category.sub_types, counts)
        bonus = diversity_bonus(sum(1 for n in counts.values() if n > 0))
    else:
        base = count_score(count, category.max_count, category.saturation_k)
        bonus = density_bonus(count, category.max_count)

    proximity = distance_score(nearest_distance, category.radius)

    if count < category.min_count:
        return round_half_up((base + proximity) * MIN_COUNT_FACTOR)

    raw = base + proximity + bonus
    if not clamp:
        return raw
    return max(0, min(100, round_half_up(raw)))


def calculate_category_score(
    category: CategoryDefinition, pois: list[Poi], nearest_distance: float | None
) -> int:
    """Clamped category score for a list of POIs already within the radius."""
    sub_type_counts = None
    if category.has_sub_types:
        sub_type_counts = count_sub_types(category, (poi.category for poi in pois))
    return category_score(category, len(pois), nearest_distance, sub_type_counts)


def weighted_overall(
    scores: Mapping[str, float], categories: Iterable[CategoryDefinition] = CATEGORIES
) -> float:
    """Weighted average of per-category scores (not rounded).

    Category weights are static and positive, so the total weight is never 0.
    """
    categories = list(categories)
    total_weight = sum(c.weight for c in categories)
    weighted_sum = sum(scores.get(c.id, 0) * c.weight for c in categories)
    return weighted_sum / total_weight


def compress_score(raw: float) -> float:
    """Spread out high scores: above 60, 60 + 40*(1 - e^(-(raw-60)/50)).

    Values at or below 60 are returned unchanged. Apply once per final
    aggregate score, never per category.
    """
    if raw <= COMPRESSION_KNEE:
        return raw
    compressed = COMPRESSION_KNEE + 40 * (1 - math.exp(-(raw - COMPRESSION_KNEE) / COMPRESSION_SCALE))
    return min(100, round_half_up(compressed))


def heatmap_score(
    raw_scores: Mapping[str, float], categories: Iterable[CategoryDefinition]
) -> int:
    """Blend raw category scores into one compressed 0-100 heatmap value."""
    average = round_half_up(weighted_overall(raw_scores, categories))
    return int(compress_score(average))


def nearest(pois: list[Poi]) -> float | None:
    distances = [p.distance for p in pois if p.distance is not None]
    return min(distances) if distances else None


def _category_result(category: CategoryDefinition, pois: list[Poi]) -> CategoryScoreResult:
    nearest_distance = nearest(pois)
    score = calculate_category_score(category, pois, nearest_distance)
    closest = sorted(pois, key=lambda p: p.distance if p.distance is not None else math.inf)
    return CategoryScoreResult(
        id=category.id,
        score=score,
        count=len(pois),
        radius=category.radius,
        nearest_distance=nearest_distance,
        pois=[
            PoiResult(
                id=p.id,
                lat=p.lat,
                lng=p.lng,
                name=p.name,
                distance=round_half_up(p.distance or 0),
            )
            for p in closest[:MAX_LISTED_POIS]
        ],
    )


async def _query_categories(
    source: PoiSource, lat: float, lng: float, categories: list[CategoryDefinition]
) -> list[list[Poi]]:
    """Fan out one point query per category and wait for all of them.

    A failing category fails the whole request.
    """
    return await asyncio.gather(
        *[source.query_near(lat, lng, c.radius, c.tags) for c in categories]
    )


async def compute_score(
    source: PoiSource,
    lat: float,
    lng: float,
    categories: Iterable[CategoryDefinition] = CATEGORIES,
) -> ScoreResult:
    """Full point score over every category, using point queries."""
    categories = list(categories)
    poi_lists = await _query_categories(source, lat, lng, categories)

    results = [_category_result(c, pois) for c, pois in zip(categories, poi_lists)]
    overall = round_half_up(weighted_overall({r.id: r.score for r in results}, categories))

    return ScoreResult(
        lat=lat,
        lng=lng,
        overall=overall,
        categories=results,
        computed_at=datetime.now(UTC),
    )


async def compute_simplified_score(
    source: PoiSource,
    lat: float,
    lng: float,
    category_ids: Iterable[str] = ("groceries",),
) -> int:
    """Heatmap-style score for a single point, using point queries.

    Uses the same blending and compression as the batch calculator, so a
    point scores identically on either path given the same POIs.
    """
    categories = get_categories(tuple(category_ids))
    poi_lists = await _query_categories(source, lat, lng, categories)

    raw_scores = {}
    for category, pois in zip(categories, poi_lists):
        sub_type_counts = None
        if category.has_sub_types:
            sub_type_counts = count_sub_types(category, (p.category for p in pois))
        raw_scores[category.id] = category_score(
            category, len(pois), nearest(pois), sub_type_counts, clamp=False
        )
    return heatmap_score(raw_scores, categories)
