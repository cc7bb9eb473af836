"""Heatmap cell API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from livability.cities import find_city_for_point
from livability.config import Settings, get_settings
from livability.database import get_db
from livability.dependencies import get_poi_source
from livability.errors import PoiSourceError, UnknownCityError
from livability.geo import Bounds
from livability.models import HeatCell
from livability.providers.base import PoiSource
from livability.schemas.heatmap import (
    HeatCellResponse,
    HeatmapJobStatus,
    HeatmapResponse,
    ScheduleRequest,
    ScheduleResponse,
)
from livability.services import scheduler
from livability.services.heatcells import get_heat_cells

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/heatmap", tags=["heatmap"])

# Cells must span this share of the viewport in both dimensions to count as covered
MIN_VIEWPORT_COVERAGE = 0.5


def covers_viewport(cells: list[HeatCell], bounds: Bounds) -> bool:
    """Whether stored cells spread over most of the viewport, not one corner."""
    if not cells:
        return False
    lat_range = bounds.max_lat - bounds.min_lat
    lng_range = bounds.max_lng - bounds.min_lng
    if lat_range <= 0 or lng_range <= 0:
        return False

    cell_lats = [c.lat for c in cells]
    cell_lngs = [c.lng for c in cells]
    lat_coverage = (max(cell_lats) - min(cell_lats)) / lat_range
    lng_coverage = (max(cell_lngs) - min(cell_lngs)) / lng_range
    return lat_coverage >= MIN_VIEWPORT_COVERAGE and lng_coverage >= MIN_VIEWPORT_COVERAGE


async def _schedule_for_viewport(
    db: AsyncSession, source: PoiSource, bounds: Bounds, grid_step: float, settings: Settings
) -> HeatmapJobStatus | None:
    center_lat, center_lng = bounds.center
    city_slug = find_city_for_point(center_lat, center_lng)
    if city_slug:
        result = await scheduler.schedule_region_job(
            db, city_slug, grid_step, settings.max_job_cells
        )
    else:
        result = await scheduler.schedule_regional_job(
            db,
            source,
            center_lat,
            center_lng,
            grid_step,
            settings.region_size,
            settings.max_job_cells,
        )
    if result is None:
        return None

    job = await scheduler.get_job(db, result.job_id)
    return HeatmapJobStatus(
        job_id=result.job_id,
        status=result.status,
        progress=job.progress if job else None,
    )


@router.get("", response_model=HeatmapResponse, response_model_exclude_none=True)
async def get_heatmap(
    response: Response,
    min_lat: float = Query(..., alias="minLat", ge=-90, le=90),
    max_lat: float = Query(..., alias="maxLat", ge=-90, le=90),
    min_lng: float = Query(..., alias="minLng", ge=-180, le=180),
    max_lng: float = Query(..., alias="maxLng", ge=-180, le=180),
    grid_step: float | None = Query(default=None, alias="gridStep", gt=0, le=1),
    db: AsyncSession = Depends(get_db),
    source: PoiSource = Depends(get_poi_source),
    settings: Settings = Depends(get_settings),
) -> HeatmapResponse:
    """Visible heat cells for a viewport.

    When stored cells at the configured grid step do not cover the viewport,
    a computation job is scheduled and its status returned alongside
    whatever cells exist. Other grid steps are served read-only.
    """
    try:
        bounds = Bounds(min_lat=min_lat, max_lat=max_lat, min_lng=min_lng, max_lng=max_lng)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid bounds") from e

    step = grid_step or settings.heatmap_grid_step
    cells = await get_heat_cells(db, bounds, step, settings.min_visible_score)

    job_status = None
    # Viewport requests only ever schedule work at the configured resolution
    if step == settings.heatmap_grid_step and not covers_viewport(cells, bounds):
        try:
            job_status = await _schedule_for_viewport(db, source, bounds, step, settings)
        except (PoiSourceError, SQLAlchemyError, ValueError) as e:
            logger.error(f"Failed to schedule heatmap job for viewport: {e}")

    response.headers["Cache-Control"] = "public, max-age=300" if cells else "no-cache"
    return HeatmapResponse(
        cells=[HeatCellResponse(lat=c.lat, lng=c.lng, score=c.score) for c in cells],
        grid_step=step,
        job_status=job_status,
    )


@router.post("/schedule", response_model=ScheduleResponse)
async def schedule_heatmap(
    request: ScheduleRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> ScheduleResponse:
    """Schedule heatmap computation for a known city."""
    try:
        result = await scheduler.schedule_region_job(
            db,
            request.city_slug,
            request.grid_step or settings.heatmap_grid_step,
            settings.max_job_cells,
        )
    except (UnknownCityError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    response.status_code = 201 if result.is_new else 200
    return ScheduleResponse(job_id=result.job_id, status=result.status, is_new=result.is_new)
