"""Schemas for heatmap cells and job scheduling."""

from pydantic import Field

from livability.schemas.base import CamelModel


class HeatCellResponse(CamelModel):
    lat: float
    lng: float
    score: int


class HeatmapJobStatus(CamelModel):
    job_id: int
    status: str
    progress: int | None = None


class HeatmapResponse(CamelModel):
    cells: list[HeatCellResponse]
    grid_step: float
    job_status: HeatmapJobStatus | None = None


class ScheduleRequest(CamelModel):
    city_slug: str = Field(..., min_length=1, max_length=255)
    grid_step: float | None = Field(default=None, gt=0, le=1)


class ScheduleResponse(CamelModel):
    job_id: int
    status: str
    is_new: bool
