"""POI source interface shared by all providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace

from livability.geo import Bounds


@dataclass
class Poi:
    """A point of interest.

    ``category`` holds the scoring tag (e.g. ``shop=supermarket``) so that
    sub-type detection works the same for every provider. ``distance`` is
    only set by point queries.
    """

    id: str
    lat: float
    lng: float
    category: str
    name: str | None = None
    tags: dict[str, str] = field(default_factory=dict)
    distance: float | None = None

    def with_distance(self, distance: float) -> "Poi":
        return replace(self, distance=distance)


class PoiSource(ABC):
    """Capability to look up POIs by point radius or by region."""

    name: str = "base"

    @abstractmethod
    async def query_near(
        self, lat: float, lng: float, radius: float, tags: list[str] | tuple[str, ...]
    ) -> list[Poi]:
        """Return POIs within ``radius`` meters of a point, with distances set."""

    @abstractmethod
    async def query_region(self, bounds: Bounds, tags: list[str] | tuple[str, ...]) -> list[Poi]:
        """Return every POI matching ``tags`` inside ``bounds`` (no distances)."""

    @abstractmethod
    async def exists_any(self, bounds: Bounds) -> bool:
        """Cheap check whether any POI at all lies inside ``bounds``."""

    async def close(self) -> None:
        """Release provider resources."""
        return None
