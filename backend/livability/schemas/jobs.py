"""Schemas for background job status."""

from datetime import datetime

from pydantic import Field

from livability.schemas.base import CamelModel


class JobResponse(CamelModel):
    """Job status as exposed to API clients."""

    id: int
    type: str
    status: str
    progress: int
    total_items: int | None = None
    error: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    estimated_seconds_remaining: int | None = Field(default=None)


class ProcessResponse(CamelModel):
    """Outcome of one cron-style processing call."""

    job_id: int | None = None
    processed: int
    errors: int
    skipped: int = 0
    progress: int
    has_more: bool
