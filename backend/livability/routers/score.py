"""Point score API endpoint."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import async_sessionmaker

from livability.config import Settings, get_settings
from livability.dependencies import get_poi_source, get_session_maker
from livability.errors import PoiSourceError
from livability.providers.base import PoiSource
from livability.schemas.score import ScoreResponse
from livability.scoring.engine import compute_score
from livability.services.scheduler import spawn_ensure_coverage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["score"])


@router.get("/score", response_model=ScoreResponse)
async def get_score(
    response: Response,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    source: PoiSource = Depends(get_poi_source),
    session_maker: async_sessionmaker = Depends(get_session_maker),
    settings: Settings = Depends(get_settings),
) -> ScoreResponse:
    """Livability score for a coordinate across every category.

    Also schedules heatmap computation around the point in the background
    when the area has no coverage yet.
    """
    try:
        result = await compute_score(source, lat, lng)
    except PoiSourceError as e:
        logger.error(f"Score calculation failed for {lat},{lng}: {e}")
        raise HTTPException(status_code=502, detail="Score calculation failed") from e

    spawn_ensure_coverage(session_maker, source, lat, lng, settings)

    response.headers["Cache-Control"] = "public, max-age=3600"
    return ScoreResponse.model_validate(result)
