"""Static city registry: slug -> bounding box.

Bounds should match the area covered by the imported POI data.
"""

from dataclasses import dataclass

from livability.errors import UnknownCityError
from livability.geo import Bounds


@dataclass(frozen=True)
class CityConfig:
    slug: str
    name: str
    country: str
    bounds: Bounds


CITY_CONFIG: dict[str, CityConfig] = {
    "cancun": CityConfig(
        slug="cancun",
        name="Cancún",
        country="MX",
        bounds=Bounds(min_lat=20.8, max_lat=21.4, min_lng=-87.2, max_lng=-86.5),
    ),
}


def get_city_config(slug: str) -> CityConfig:
    """Look up a city by slug (case-insensitive)."""
    config = CITY_CONFIG.get(slug.strip().lower())
    if config is None:
        raise UnknownCityError(slug)
    return config


def get_city_bounds(slug: str) -> Bounds:
    return get_city_config(slug).bounds


def available_cities() -> list[str]:
    return list(CITY_CONFIG)


def find_city_for_point(lat: float, lng: float) -> str | None:
    """Slug of the first city whose bounds contain the point."""
    for slug, config in CITY_CONFIG.items():
        if config.bounds.contains(lat, lng):
            return slug
    return None
