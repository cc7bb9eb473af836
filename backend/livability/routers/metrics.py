"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, generate_latest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from livability.database import get_db
from livability.models import City, PoiRecord
from livability.services.heatcells import count_heat_cells_by_step
from livability.services.scheduler import count_jobs_by_status

router = APIRouter(tags=["metrics"])


async def collect_metrics(db: AsyncSession, worker=None) -> bytes:
    """Collect all metrics and return Prometheus format."""
    registry = CollectorRegistry()

    jobs = Gauge(
        "livability_jobs",
        "Background jobs by status",
        ["status"],
        registry=registry,
    )
    heat_cells = Gauge(
        "livability_heat_cells",
        "Stored heat cells per grid step",
        ["grid_step"],
        registry=registry,
    )
    worker_jobs = Gauge(
        "livability_worker_active_jobs",
        "Jobs tracked by the in-process heatmap worker",
        registry=registry,
    )
    db_rows = Gauge(
        "livability_db_rows_total",
        "Database row counts",
        ["table"],
        registry=registry,
    )

    for status, count in (await count_jobs_by_status(db)).items():
        jobs.labels(status=status).set(count)

    for step, count in (await count_heat_cells_by_step(db)).items():
        heat_cells.labels(grid_step=f"{step:g}").set(count)

    worker_jobs.set(len(worker.active_jobs) if worker else 0)

    for table, model in (("cities", City), ("pois", PoiRecord)):
        result = await db.execute(select(func.count()).select_from(model))
        db_rows.labels(table=table).set(result.scalar() or 0)

    return generate_latest(registry)


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(request: Request, db: AsyncSession = Depends(get_db)) -> PlainTextResponse:
    """Prometheus scrape endpoint."""
    data = await collect_metrics(db, getattr(request.app.state, "worker", None))
    return PlainTextResponse(content=data, media_type=CONTENT_TYPE_LATEST)
