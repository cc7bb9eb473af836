"""Tests for the scoring engine."""

import math

import pytest

from livability.errors import PoiSourceError
from livability.providers.base import Poi
from livability.scoring.categories import CATEGORIES, CategoryDefinition, get_category_by_id
from livability.scoring.engine import (
    category_score,
    compress_score,
    compute_score,
    compute_simplified_score,
    count_score,
    count_sub_types,
    density_bonus,
    distance_score,
    diversity_bonus,
    heatmap_score,
    round_half_up,
    weighted_overall,
)

GROCERY_LIKE = CategoryDefinition(
    id="groceries",
    weight=1.5,
    radius=800,
    min_count=1,
    max_count=10,
    tags=("shop=supermarket",),
    saturation_k=0.5,
)

RESTAURANT_LIKE = CategoryDefinition(
    id="restaurants",
    weight=1.0,
    radius=600,
    min_count=3,
    max_count=25,
    tags=("amenity=restaurant",),
    saturation_k=0.3,
)


class TestRounding:
    def test_halves_round_up(self):
        assert round_half_up(0.5) == 1
        assert round_half_up(2.5) == 3
        assert round_half_up(2.49) == 2


class TestCountScore:
    """Test the logarithmic count curve."""

    def test_zero_count(self):
        assert count_score(0, 10, 0.5) == 0

    def test_reaches_sixty_at_max_count(self):
        assert count_score(10, 10, 0.5) == pytest.approx(60)

    def test_monotonic(self):
        """Non-decreasing everywhere, strictly increasing below 2x max count."""
        previous = -1.0
        for count in range(0, 51):
            score = count_score(count, 10, 0.5)
            if count < 20:
                assert score > previous
            else:
                assert score >= previous
            previous = score

    def test_higher_k_saturates_faster(self):
        assert count_score(1, 4, 3.0) > count_score(1, 4, 0.5)


class TestDistanceScore:
    def test_no_poi(self):
        assert distance_score(None, 800) == 0

    def test_at_zero_distance(self):
        assert distance_score(0, 800) == 25

    def test_threshold_capped_at_400m(self):
        """Large radii use the 400m threshold."""
        assert distance_score(400, 1500) == 0
        assert distance_score(200, 1500) == pytest.approx(12.5)

    def test_threshold_is_forty_percent_of_small_radius(self):
        assert distance_score(120, 600) == pytest.approx(25 * (1 - 120 / 240))


class TestBonuses:
    def test_density_bonus_only_above_max(self):
        assert density_bonus(10, 10) == 0
        assert density_bonus(11, 10) > 0

    def test_density_bonus_capped(self):
        assert density_bonus(1000, 10) == 15

    def test_diversity_bonus(self):
        assert diversity_bonus(0) == 0
        assert diversity_bonus(1) == 0
        assert diversity_bonus(2) == 5
        assert diversity_bonus(3) == 10
        assert diversity_bonus(10) == 15


class TestCategoryScore:
    """Test per-category scoring."""

    def test_zero_case(self):
        for category in CATEGORIES:
            assert category_score(category, 0, None) == 0

    def test_single_poi_example(self):
        """One grocery store 100m away."""
        expected = 60 * math.log(1.5) / math.log(6) + 25 * (1 - 100 / 320)
        score = category_score(GROCERY_LIKE, 1, 100)
        assert score == round_half_up(expected)
        assert score == 31

    def test_minimum_count_discount(self):
        """Below min_count the score is 40% of count + distance, bonuses dropped."""
        uncapped = count_score(2, 25, 0.3) + distance_score(50, 600)
        score = category_score(RESTAURANT_LIKE, 2, 50)
        assert score == round_half_up(uncapped * 0.4)
        assert score <= uncapped * 0.4 + 0.5

    def test_flat_penalty_for_every_under_served_count(self):
        """The 0.4 factor does not depend on how far below min_count we are."""
        for count in (1, 2):
            uncapped = count_score(count, 25, 0.3) + distance_score(100, 600)
            assert category_score(RESTAURANT_LIKE, count, 100) == round_half_up(uncapped * 0.4)

    def test_clamped_to_hundred(self):
        for category in CATEGORIES:
            for count in range(1, category.max_count * 10 + 1):
                counts = None
                if category.has_sub_types:
                    counts = {st.id: count for st in category.sub_types}
                assert 0 <= category_score(category, count, 0, counts) <= 100

    def test_unclamped_returns_raw_value(self):
        raw = category_score(GROCERY_LIKE, 50, 0, clamp=False)
        assert raw == pytest.approx(60 * math.log(26) / math.log(6) + 25 + density_bonus(50, 10))

    def test_sub_types_reward_diversity(self):
        """Pharmacy plus clinic beats two pharmacies."""
        healthcare = get_category_by_id("healthcare")
        mixed = count_sub_types(healthcare, ["amenity=pharmacy", "amenity=clinic"])
        same = count_sub_types(healthcare, ["amenity=pharmacy", "amenity=pharmacy"])
        assert mixed == {"pharmacy": 1, "medical": 1, "dental": 0}
        assert category_score(healthcare, 2, 500, mixed) > category_score(healthcare, 2, 500, same)


class TestAggregation:
    """Test weighted averaging and compression."""

    def test_weighted_average(self):
        average = weighted_overall(
            {"groceries": 80, "restaurants": 40}, [GROCERY_LIKE, RESTAURANT_LIKE]
        )
        assert average == pytest.approx((80 * 1.5 + 40 * 1.0) / 2.5)
        assert average == pytest.approx(64)

    def test_missing_category_counts_as_zero(self):
        average = weighted_overall({"groceries": 100}, [GROCERY_LIKE, RESTAURANT_LIKE])
        assert average == pytest.approx(60)

    def test_compression_identity_below_knee(self):
        for value in (0, 10, 42.5, 60):
            assert compress_score(value) == value

    def test_compression_spreads_high_scores(self):
        assert compress_score(80) == round_half_up(60 + 40 * (1 - math.exp(-20 / 50)))
        assert compress_score(80) < 80

    def test_compression_fixed_point(self):
        once = compress_score(100)
        assert compress_score(compress_score(once)) <= 100
        assert compress_score(200) <= 100

    def test_heatmap_score_compresses_once(self):
        score = heatmap_score({"groceries": 100, "restaurants": 100}, [GROCERY_LIKE, RESTAURANT_LIKE])
        assert score == compress_score(100)


class TestComputeScore:
    """Test point scoring against a POI source."""

    @pytest.mark.asyncio
    async def test_full_score(self, fake_source):
        result = await compute_score(fake_source, 21.161, -86.851)

        assert 0 <= result.overall <= 100
        assert [c.id for c in result.categories] == [c.id for c in CATEGORIES]
        groceries = next(c for c in result.categories if c.id == "groceries")
        assert groceries.count == 1
        assert groceries.pois[0].id == "g1"
        assert groceries.nearest_distance is not None and groceries.nearest_distance < 5
        transit = next(c for c in result.categories if c.id == "transit")
        assert transit.score == 0
        assert fake_source.near_calls == len(CATEGORIES)

    @pytest.mark.asyncio
    async def test_no_pois_is_zero_not_error(self, make_source):
        result = await compute_score(make_source([]), 0.0, 0.0)
        assert result.overall == 0

    @pytest.mark.asyncio
    async def test_source_failure_fails_request(self, make_source):
        source = make_source([])
        source.fail_with = PoiSourceError("timeout")
        with pytest.raises(PoiSourceError):
            await compute_score(source, 0.0, 0.0)

    @pytest.mark.asyncio
    async def test_simplified_score_defaults_to_groceries(self, make_source):
        source = make_source([Poi(id="g", lat=0.0, lng=0.0009, category="shop=supermarket")])
        score = await compute_simplified_score(source, 0.0, 0.0)
        distance = 0.0009 * 111195
        expected = round_half_up(count_score(1, 10, 0.5) + distance_score(distance, 800))
        assert abs(score - expected) <= 1
