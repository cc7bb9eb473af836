"""Geographic helpers: distances, degree conversions and grid generation."""

import math
from dataclasses import dataclass
from typing import NamedTuple

EARTH_RADIUS_M = 6371000.0
# Length of one degree of latitude on the haversine sphere (~111195m). The
# equatorial 111320m would give boxes slightly smaller than the circle.
METERS_PER_DEGREE = math.pi * EARTH_RADIUS_M / 180

# Degree boxes are padded so they always contain the haversine circle
PREFILTER_MARGIN = 1.01

# Grid coordinates are stored with 5 decimals (~1m)
GRID_PRECISION = 5

# Tolerance for float division when snapping to grid lines
_SNAP_EPSILON = 1e-9


@dataclass(frozen=True)
class Bounds:
    """An axis-aligned bounding box in degrees."""

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def __post_init__(self):
        if self.min_lat > self.max_lat or self.min_lng > self.max_lng:
            raise ValueError(f"Invalid bounds: {self}")
        if not (-90 <= self.min_lat and self.max_lat <= 90):
            raise ValueError("Latitude must be within [-90, 90]")
        if not (-180 <= self.min_lng and self.max_lng <= 180):
            raise ValueError("Longitude must be within [-180, 180]")

    def contains(self, lat: float, lng: float) -> bool:
        """Check whether a point lies inside the box (edges included)."""
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng

    @property
    def center(self) -> tuple[float, float]:
        return (self.min_lat + self.max_lat) / 2, (self.min_lng + self.max_lng) / 2

    def expand(self, meters: float) -> "Bounds":
        """Grow the box by a distance in meters on every side."""
        # Longitude degrees shrink toward the poles, so size the box at the poleward edge
        at_lat = max(abs(self.min_lat), abs(self.max_lat))
        lat_delta, lng_delta = degree_delta_for_meters(meters, at_lat)
        return Bounds(
            min_lat=max(-90.0, self.min_lat - lat_delta),
            max_lat=min(90.0, self.max_lat + lat_delta),
            min_lng=max(-180.0, self.min_lng - lng_delta),
            max_lng=min(180.0, self.max_lng + lng_delta),
        )

    @property
    def key(self) -> str:
        """Stable string identity, used to detect bounds changes."""
        return f"{self.min_lat},{self.min_lng},{self.max_lat},{self.max_lng}"

    def to_dict(self) -> dict:
        return {
            "minLat": self.min_lat,
            "maxLat": self.max_lat,
            "minLng": self.min_lng,
            "maxLng": self.max_lng,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Bounds":
        return cls(
            min_lat=float(data["minLat"]),
            max_lat=float(data["maxLat"]),
            min_lng=float(data["minLng"]),
            max_lng=float(data["maxLng"]),
        )

    @classmethod
    def around(cls, lat: float, lng: float, size: float) -> "Bounds":
        """Square box of ``size`` degrees centered on a point."""
        half = size / 2
        return cls(
            min_lat=max(-90.0, lat - half),
            max_lat=min(90.0, lat + half),
            min_lng=max(-180.0, lng - half),
            max_lng=min(180.0, lng + half),
        )


class GridPoint(NamedTuple):
    lat: float
    lng: float
    index: int


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine great-circle distance between two WGS84 points in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def degree_delta_for_meters(meters: float, at_lat: float) -> tuple[float, float]:
    """Approximate (lat_delta, lng_delta) in degrees spanning ``meters`` at a latitude.

    Only a prefilter: callers must confirm candidates with :func:`distance_meters`.
    """
    lat_delta = meters / METERS_PER_DEGREE * PREFILTER_MARGIN
    cos_lat = math.cos(math.radians(at_lat))
    # Near the poles a degree of longitude collapses; cover the full range
    if cos_lat < 1e-6:
        return lat_delta, 360.0
    lng_delta = meters * PREFILTER_MARGIN / (METERS_PER_DEGREE * cos_lat)
    return lat_delta, lng_delta


def _grid_index_range(low: float, high: float, step: float) -> range:
    """Indices of global grid lines covering [low, high], snapped outward."""
    start = math.floor(low / step + _SNAP_EPSILON)
    end = math.ceil(high / step - _SNAP_EPSILON)
    return range(start, end + 1)


def grid_value(index: int, step: float) -> float:
    """Coordinate of the global grid line ``index`` at ``step``."""
    return round(index * step, GRID_PRECISION)


def grid_dimensions(bounds: Bounds, step: float) -> tuple[int, int]:
    """Number of (lat rows, lng columns) produced for ``bounds`` at ``step``."""
    if step <= 0:
        raise ValueError("Grid step must be greater than 0")
    lat_range = _grid_index_range(bounds.min_lat, bounds.max_lat, step)
    lng_range = _grid_index_range(bounds.min_lng, bounds.max_lng, step)
    return len(lat_range), len(lng_range)


def grid_cardinality(bounds: Bounds, step: float) -> int:
    """Total number of grid points :func:`generate_grid_points` will yield."""
    rows, cols = grid_dimensions(bounds, step)
    return rows * cols


def generate_grid_points(bounds: Bounds, step: float) -> list[GridPoint]:
    """Generate grid-aligned points covering ``bounds``, row by row.

    Bounds are snapped outward to multiples of ``step`` and every coordinate
    is derived from its integer grid index, so overlapping regions at the same
    step produce bit-identical coordinates for their shared points.
    """
    if step <= 0:
        raise ValueError("Grid step must be greater than 0")
    lat_range = _grid_index_range(bounds.min_lat, bounds.max_lat, step)
    lng_range = _grid_index_range(bounds.min_lng, bounds.max_lng, step)
    lngs = [grid_value(j, step) for j in lng_range]

    points: list[GridPoint] = []
    index = 0
    for i in lat_range:
        lat = grid_value(i, step)
        for lng in lngs:
            points.append(GridPoint(lat, lng, index))
            index += 1
    return points
