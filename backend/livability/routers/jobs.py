"""Background job API endpoints."""

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from livability.config import Settings, get_settings
from livability.database import get_db
from livability.dependencies import get_processor
from livability.schemas.jobs import JobResponse, ProcessResponse
from livability.services import scheduler
from livability.services.heatmap_processor import HeatmapChunkProcessor

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: int, db: AsyncSession = Depends(get_db)) -> JobResponse:
    """Get the status of a job."""
    job = await scheduler.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    response = JobResponse.model_validate(job)
    if job.is_active:
        response.estimated_seconds_remaining = scheduler.estimate_time_remaining(job)
    return response


@router.post("/process", response_model=ProcessResponse)
async def process_jobs(
    authorization: str | None = Header(default=None),
    processor: HeatmapChunkProcessor = Depends(get_processor),
    settings: Settings = Depends(get_settings),
) -> ProcessResponse:
    """Process one chunk of the next job, for cron-driven deployments."""
    if settings.cron_secret:
        expected = f"Bearer {settings.cron_secret}"
        if not authorization or not hmac.compare_digest(authorization, expected):
            raise HTTPException(status_code=401, detail="Unauthorized")

    result = await processor.process_next_chunk(settings.heatmap_chunk_size)
    return ProcessResponse(
        job_id=result.job_id,
        processed=result.processed,
        errors=result.errors,
        skipped=result.skipped,
        progress=result.progress,
        has_more=result.has_more,
    )
