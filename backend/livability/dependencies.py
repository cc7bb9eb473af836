"""FastAPI dependencies for shared application resources."""

from fastapi import HTTPException, Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from livability.database import async_session_maker
from livability.providers.base import PoiSource
from livability.services.heatmap_processor import HeatmapChunkProcessor


def get_session_maker() -> async_sessionmaker:
    """Session factory for work that outlives the request session."""
    return async_session_maker


def get_poi_source(request: Request) -> PoiSource:
    source = getattr(request.app.state, "poi_source", None)
    if source is None:
        raise HTTPException(status_code=503, detail="POI provider not initialized")
    return source


def get_processor(request: Request) -> HeatmapChunkProcessor:
    processor = getattr(request.app.state, "processor", None)
    if processor is None:
        raise HTTPException(status_code=503, detail="Heatmap processor not initialized")
    return processor
