"""POI providers and provider selection."""

from livability.config import Settings
from livability.errors import ConfigurationError
from livability.providers.base import Poi, PoiSource

__all__ = ["Poi", "PoiSource", "create_poi_source"]


def create_poi_source(settings: Settings, session_maker=None) -> PoiSource:
    """Build the POI source named by ``settings.poi_provider``.

    Called once at start-up; the result is passed to whatever needs it.
    """
    if settings.poi_provider == "localdb":
        from livability.providers.localdb import LocalDbPoiSource

        if session_maker is None:
            from livability.database import async_session_maker as session_maker
        return LocalDbPoiSource(session_maker)

    if settings.poi_provider == "overpass":
        from livability.providers.overpass import OverpassPoiSource

        return OverpassPoiSource(settings.overpass_urls, timeout=settings.overpass_timeout)

    raise ConfigurationError(f"Unknown POI provider: {settings.poi_provider}")
