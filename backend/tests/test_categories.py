"""Tests for the category table and tag mapping."""

import pytest

from livability.errors import ConfigurationError
from livability.providers.category_map import (
    TAG_TO_PROVIDER_CATEGORIES,
    provider_category_to_category_id,
    provider_category_to_tag,
    tags_to_provider_categories,
)
from livability.scoring.categories import (
    CATEGORIES,
    CATEGORIES_BY_ID,
    TOTAL_WEIGHT,
    get_categories,
    get_category_by_id,
)


class TestCategoryTable:
    """Invariants of the static category definitions."""

    def test_ids_unique(self):
        assert len(CATEGORIES_BY_ID) == len(CATEGORIES)

    def test_weights_positive(self):
        assert all(c.weight > 0 for c in CATEGORIES)
        assert TOTAL_WEIGHT == pytest.approx(sum(c.weight for c in CATEGORIES))

    def test_counts_and_radius_sane(self):
        for c in CATEGORIES:
            assert c.radius > 0
            assert 1 <= c.min_count <= c.max_count
            assert c.saturation_k > 0

    def test_sub_type_tags_belong_to_category(self):
        for c in CATEGORIES:
            for sub_type in c.sub_types:
                assert set(sub_type.tags) <= set(c.tags)

    def test_healthcare_sub_types(self):
        healthcare = get_category_by_id("healthcare")
        assert [st.id for st in healthcare.sub_types] == ["pharmacy", "medical", "dental"]
        assert healthcare.sub_type_for_tag("amenity=clinic").id == "medical"
        assert healthcare.sub_type_for_tag("shop=bakery") is None

    def test_unknown_category_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            get_category_by_id("casinos")

    def test_get_categories_preserves_order(self):
        assert [c.id for c in get_categories(["parks", "groceries"])] == ["parks", "groceries"]


class TestCategoryMap:
    """Test mapping scoring tags to provider categories."""

    def test_every_scoring_tag_is_mapped(self):
        for c in CATEGORIES:
            for tag in c.tags:
                assert tag in TAG_TO_PROVIDER_CATEGORIES, tag

    def test_tags_to_provider_categories_dedupes(self):
        result = tags_to_provider_categories(["shop=supermarket", "shop=grocery"])
        assert result == ["supermarket", "grocery_store"]

    def test_unknown_tag_maps_to_nothing(self):
        assert tags_to_provider_categories(["shop=bakery"]) == []

    def test_provider_category_back_to_tag(self):
        healthcare = get_category_by_id("healthcare")
        assert provider_category_to_tag("medical_clinic", healthcare.tags) == "amenity=clinic"
        assert provider_category_to_tag("restaurant", healthcare.tags) is None

    def test_provider_category_to_category_id(self):
        assert provider_category_to_category_id("coffee_shop") == "restaurants"
        assert provider_category_to_category_id("coffee_shop", ["groceries"]) is None
