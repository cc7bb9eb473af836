"""Static scoring category definitions.

Higher ``max_count`` makes top scores harder to reach. ``saturation_k``
controls how fast the logarithmic count curve saturates: a higher k means
the first POI matters most.
"""

from dataclasses import dataclass, field

from livability.errors import ConfigurationError

DEFAULT_SATURATION_K = 0.5


@dataclass(frozen=True)
class SubType:
    """A sub-type within a category, scored with its own saturation curve."""

    id: str
    tags: tuple[str, ...]
    max_count: int
    saturation_k: float


@dataclass(frozen=True)
class CategoryDefinition:
    """Scoring behaviour of one amenity category."""

    id: str
    weight: float
    radius: float  # meters
    min_count: int
    max_count: int
    tags: tuple[str, ...]
    saturation_k: float = DEFAULT_SATURATION_K
    sub_types: tuple[SubType, ...] = field(default_factory=tuple)

    @property
    def has_sub_types(self) -> bool:
        return len(self.sub_types) > 0

    def sub_type_for_tag(self, tag: str) -> SubType | None:
        """Return the first sub-type listing ``tag``."""
        for sub_type in self.sub_types:
            if tag in sub_type.tags:
                return sub_type
        return None


CATEGORIES: tuple[CategoryDefinition, ...] = (
    CategoryDefinition(
        id="groceries",
        weight=1.5,
        radius=800,  # must be walkable
        min_count=1,
        max_count=10,
        saturation_k=0.5,
        tags=(
            "shop=supermarket",
            "shop=convenience",
            "shop=grocery",
            "shop=greengrocer",
        ),
    ),
    CategoryDefinition(
        id="restaurants",
        weight=1.0,
        radius=600,
        min_count=3,
        max_count=25,
        saturation_k=0.3,  # variety keeps adding value
        tags=(
            "amenity=restaurant",
            "amenity=cafe",
            "amenity=fast_food",
            "amenity=bar",
        ),
    ),
    CategoryDefinition(
        id="transit",
        weight=1.5,
        # Bulk POI data mostly carries major stations, hence the wide radius
        radius=1000,
        min_count=1,
        max_count=4,
        saturation_k=0.7,
        tags=(
            "highway=bus_stop",
            "railway=station",
            "railway=halt",
            "railway=tram_stop",
            "amenity=bus_station",
            "public_transport=stop_position",
            "public_transport=platform",
        ),
    ),
    CategoryDefinition(
        id="healthcare",
        weight=1.2,
        radius=1500,
        min_count=1,
        max_count=6,
        tags=(
            "amenity=pharmacy",
            "amenity=hospital",
            "amenity=clinic",
            "amenity=doctors",
            "amenity=dentist",
        ),
        sub_types=(
            SubType(
                id="pharmacy",
                tags=("amenity=pharmacy",),
                max_count=2,
                saturation_k=3.0,  # 1-2 pharmacies is enough
            ),
            SubType(
                id="medical",
                tags=("amenity=hospital", "amenity=clinic", "amenity=doctors"),
                max_count=4,
                saturation_k=0.7,
            ),
            SubType(
                id="dental",
                tags=("amenity=dentist",),
                max_count=2,
                saturation_k=2.0,
            ),
        ),
    ),
    CategoryDefinition(
        id="education",
        weight=1.0,
        radius=1200,
        min_count=1,
        max_count=5,
        saturation_k=0.5,
        tags=(
            "amenity=school",
            "amenity=kindergarten",
            "amenity=university",
            "amenity=college",
            "amenity=library",
        ),
    ),
    CategoryDefinition(
        id="parks",
        weight=1.0,
        radius=800,
        min_count=1,
        max_count=5,
        saturation_k=1.0,  # 1-2 parks is usually enough
        tags=(
            "leisure=park",
            "leisure=garden",
            "leisure=playground",
            "leisure=sports_centre",
            "leisure=fitness_centre",
        ),
    ),
    CategoryDefinition(
        id="shopping",
        weight=0.8,
        radius=800,
        min_count=2,
        max_count=15,
        saturation_k=0.5,
        tags=(
            "shop=clothes",
            "shop=shoes",
            "shop=department_store",
            "shop=mall",
            "shop=electronics",
        ),
    ),
    CategoryDefinition(
        id="entertainment",
        weight=0.6,
        radius=1200,
        min_count=1,
        max_count=8,
        saturation_k=0.5,
        tags=(
            "amenity=cinema",
            "amenity=theatre",
            "amenity=nightclub",
            "leisure=bowling_alley",
            "tourism=museum",
        ),
    ),
)

CATEGORIES_BY_ID: dict[str, CategoryDefinition] = {c.id: c for c in CATEGORIES}

TOTAL_WEIGHT = sum(c.weight for c in CATEGORIES)


def get_category_by_id(category_id: str) -> CategoryDefinition:
    """Look up a category; an unknown id is a configuration error."""
    try:
        return CATEGORIES_BY_ID[category_id]
    except KeyError:
        raise ConfigurationError(f"Unknown category: {category_id}") from None


def get_categories(category_ids: list[str] | tuple[str, ...]) -> list[CategoryDefinition]:
    """Resolve a list of ids, preserving order."""
    return [get_category_by_id(category_id) for category_id in category_ids]
