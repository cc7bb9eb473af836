"""Mapping between scoring tags and the categories stored in the POI table.

Scoring uses OSM style ``key=value`` tags. The bulk POI table is loaded
from Overture Maps, which uses its own flat category names.
"""

from livability.scoring.categories import CATEGORIES

TAG_TO_PROVIDER_CATEGORIES: dict[str, tuple[str, ...]] = {
    # Groceries
    "shop=supermarket": ("supermarket", "grocery_store"),
    "shop=convenience": ("convenience_store",),
    "shop=grocery": ("grocery_store",),
    "shop=greengrocer": ("greengrocer", "farmers_market"),
    # Restaurants
    "amenity=restaurant": ("restaurant",),
    "amenity=cafe": ("cafe", "coffee_shop"),
    "amenity=fast_food": ("fast_food_restaurant",),
    "amenity=bar": ("bar", "pub"),
    # Transit
    "railway=station": ("train_station", "subway_station"),
    "railway=halt": ("train_station",),
    "railway=tram_stop": ("tram_station",),
    "amenity=bus_station": ("bus_station",),
    "highway=bus_stop": ("bus_stop",),
    "public_transport=stop_position": ("bus_stop", "train_station"),
    "public_transport=platform": ("bus_stop", "train_station"),
    # Healthcare
    "amenity=hospital": ("hospital",),
    "amenity=clinic": ("medical_clinic", "urgent_care"),
    "amenity=pharmacy": ("pharmacy",),
    "amenity=doctors": ("doctor",),
    "amenity=dentist": ("dentist",),
    # Education
    "amenity=school": ("school",),
    "amenity=kindergarten": ("preschool", "daycare"),
    "amenity=university": ("university", "college"),
    "amenity=college": ("college",),
    "amenity=library": ("library",),
    # Parks & recreation
    "leisure=park": ("park",),
    "leisure=playground": ("playground",),
    "leisure=garden": ("garden",),
    "leisure=sports_centre": ("sports_club", "recreation_center"),
    "leisure=fitness_centre": ("gym", "fitness_center"),
    # Shopping
    "shop=mall": ("shopping_mall",),
    "shop=clothes": ("clothing_store",),
    "shop=shoes": ("shoe_store",),
    "shop=department_store": ("department_store",),
    "shop=electronics": ("electronics_store",),
    # Entertainment
    "amenity=cinema": ("movie_theater",),
    "amenity=theatre": ("performing_arts_theater",),
    "amenity=nightclub": ("nightclub",),
    "leisure=bowling_alley": ("bowling_alley",),
    "tourism=museum": ("museum",),
}


def tags_to_provider_categories(tags: list[str] | tuple[str, ...]) -> list[str]:
    """Provider categories matching any of ``tags``, without duplicates."""
    seen: dict[str, None] = {}
    for tag in tags:
        for category in TAG_TO_PROVIDER_CATEGORIES.get(tag, ()):
            seen.setdefault(category, None)
    return list(seen)


def provider_category_to_tag(
    category: str, tags: list[str] | tuple[str, ...]
) -> str | None:
    """First tag in ``tags`` that maps to a provider category."""
    for tag in tags:
        if category in TAG_TO_PROVIDER_CATEGORIES.get(tag, ()):
            return tag
    return None


def provider_category_to_category_id(
    category: str, category_ids: list[str] | tuple[str, ...] | None = None
) -> str | None:
    """Scoring category id owning a provider category.

    When ``category_ids`` is given, only those categories are considered, in
    table order.
    """
    for definition in CATEGORIES:
        if category_ids is not None and definition.id not in category_ids:
            continue
        if provider_category_to_tag(category, definition.tags) is not None:
            return definition.id
    return None
