"""Schemas for point scores."""

from datetime import datetime

from livability.schemas.base import CamelModel


class PoiResponse(CamelModel):
    id: str
    lat: float
    lng: float
    name: str | None = None
    distance: int


class CategoryScoreResponse(CamelModel):
    id: str
    score: int
    count: int
    radius: float
    nearest_distance: float | None = None
    pois: list[PoiResponse] = []


class ScoreResponse(CamelModel):
    """Full livability score for a coordinate."""

    lat: float
    lng: float
    overall: int
    categories: list[CategoryScoreResponse]
    computed_at: datetime
