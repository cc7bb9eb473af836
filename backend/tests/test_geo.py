"""Tests for geographic helpers and grid generation."""

import math

import pytest

from livability.geo import (
    Bounds,
    degree_delta_for_meters,
    distance_meters,
    generate_grid_points,
    grid_cardinality,
    grid_dimensions,
)


class TestDistance:
    """Test haversine distance."""

    def test_zero_distance(self):
        assert distance_meters(21.16, -86.85, 21.16, -86.85) == 0

    def test_one_degree_latitude(self):
        """One degree of latitude is roughly 111km."""
        d = distance_meters(0, 0, 1, 0)
        assert 110_000 < d < 112_500

    def test_symmetric(self):
        a = distance_meters(21.1, -86.8, 21.2, -86.9)
        b = distance_meters(21.2, -86.9, 21.1, -86.8)
        assert math.isclose(a, b)


class TestDegreeDelta:
    def test_longitude_delta_grows_with_latitude(self):
        _, lng_equator = degree_delta_for_meters(1000, 0)
        _, lng_north = degree_delta_for_meters(1000, 60)
        assert lng_north == pytest.approx(lng_equator * 2, rel=0.01)

    def test_pole_covers_all_longitudes(self):
        _, lng_delta = degree_delta_for_meters(1000, 90)
        assert lng_delta == 360.0

    @pytest.mark.parametrize("meters", [100, 800, 1500])
    @pytest.mark.parametrize("lat", [0.0, 21.16, 60.0])
    def test_box_contains_haversine_circle(self, meters, lat):
        lat_delta, lng_delta = degree_delta_for_meters(meters, lat)

        assert lat_delta >= meters / 111320
        assert distance_meters(lat, 10.0, lat + lat_delta, 10.0) >= meters
        assert distance_meters(lat, 10.0, lat, 10.0 + lng_delta) >= meters


class TestBounds:
    """Test the bounding box type."""

    def test_rejects_inverted_bounds(self):
        with pytest.raises(ValueError):
            Bounds(min_lat=2, max_lat=1, min_lng=0, max_lng=1)

    def test_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            Bounds(min_lat=0, max_lat=91, min_lng=0, max_lng=1)

    def test_contains_edges(self):
        b = Bounds(min_lat=0, max_lat=1, min_lng=0, max_lng=1)
        assert b.contains(0, 0)
        assert b.contains(1, 1)
        assert not b.contains(1.0001, 0.5)

    def test_expand_covers_distance(self):
        b = Bounds(min_lat=21.0, max_lat=21.1, min_lng=-86.9, max_lng=-86.8)
        expanded = b.expand(1500)
        assert distance_meters(21.1, -86.85, expanded.max_lat, -86.85) >= 1499
        assert distance_meters(21.1, -86.8, 21.1, expanded.max_lng) >= 1499

    def test_dict_roundtrip_uses_camel_case(self):
        b = Bounds(min_lat=20.8, max_lat=21.4, min_lng=-87.2, max_lng=-86.5)
        data = b.to_dict()
        assert set(data) == {"minLat", "maxLat", "minLng", "maxLng"}
        assert Bounds.from_dict(data) == b

    def test_around_is_centered(self):
        b = Bounds.around(21.0, -86.0, 0.15)
        assert b.center == pytest.approx((21.0, -86.0))
        assert b.max_lat - b.min_lat == pytest.approx(0.15)


class TestGridGeneration:
    """Test deterministic grid point generation."""

    def test_points_are_row_major_with_indices(self):
        b = Bounds(min_lat=0, max_lat=0.02, min_lng=0, max_lng=0.01)
        points = generate_grid_points(b, 0.01)
        assert [p.index for p in points] == list(range(len(points)))
        assert [(p.lat, p.lng) for p in points] == [
            (0.0, 0.0),
            (0.0, 0.01),
            (0.01, 0.0),
            (0.01, 0.01),
            (0.02, 0.0),
            (0.02, 0.01),
        ]

    def test_snaps_outward(self):
        """Unaligned bounds are extended to the enclosing grid lines."""
        b = Bounds(min_lat=0.005, max_lat=0.015, min_lng=0.005, max_lng=0.015)
        points = generate_grid_points(b, 0.01)
        lats = sorted({p.lat for p in points})
        assert lats == [0.0, 0.01, 0.02]

    def test_cardinality_matches_generation(self):
        b = Bounds(min_lat=20.8, max_lat=21.4, min_lng=-87.2, max_lng=-86.5)
        points = generate_grid_points(b, 0.0025)
        rows, cols = grid_dimensions(b, 0.0025)
        assert len(points) == rows * cols == grid_cardinality(b, 0.0025)

    def test_deterministic(self):
        b = Bounds(min_lat=20.8, max_lat=20.9, min_lng=-87.0, max_lng=-86.9)
        assert generate_grid_points(b, 0.0025) == generate_grid_points(b, 0.0025)

    def test_overlapping_regions_share_identical_points(self):
        """Shared grid lines produce bit-identical coordinates in both regions."""
        a = Bounds(min_lat=10.0, max_lat=11.0, min_lng=20.0, max_lng=21.0)
        b = Bounds(min_lat=10.5, max_lat=11.5, min_lng=20.5, max_lng=21.5)
        points_a = {(p.lat, p.lng) for p in generate_grid_points(a, 0.01)}
        points_b = {(p.lat, p.lng) for p in generate_grid_points(b, 0.01)}

        shared = points_a & points_b
        assert shared
        # 51 shared grid lines in each dimension
        assert len(shared) == 51 * 51
        for lat, lng in shared:
            assert 10.5 <= lat <= 11.0
            assert 20.5 <= lng <= 21.0

    def test_rejects_non_positive_step(self):
        b = Bounds(min_lat=0, max_lat=1, min_lng=0, max_lng=1)
        with pytest.raises(ValueError):
            generate_grid_points(b, 0)
