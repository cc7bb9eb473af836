"""Job scheduling: creation, dedup, claiming and stale-job reclamation.

Every operation here is a single narrow statement against the ``jobs``
table so that several worker processes can share one database safely.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from livability.cities import CityConfig, get_city_config
from livability.config import Settings
from livability.database import utc_now
from livability.geo import Bounds, grid_cardinality
from livability.models import City, Job, JobStatus, JobType
from livability.models.job import ACTIVE_STATUSES
from livability.providers.base import PoiSource
from livability.services.heatcells import has_heatmap_coverage

logger = logging.getLogger(__name__)

# Background auto-scheduling tasks, kept referenced until they finish
_background_tasks: set[asyncio.Task] = set()

# Upper bound on grid points per job unless a caller passes its own
MAX_JOB_CELLS = 1_000_000


@dataclass
class ScheduleResult:
    job_id: int
    status: str
    is_new: bool


async def get_or_create_city(db: AsyncSession, config: CityConfig) -> City:
    """Return the ``cities`` row for a registry entry, inserting it on first use."""
    result = await db.execute(select(City).where(City.slug == config.slug))
    city = result.scalar_one_or_none()
    if city:
        return city

    city = City(
        slug=config.slug,
        name=config.name,
        country=config.country,
        min_lat=config.bounds.min_lat,
        max_lat=config.bounds.max_lat,
        min_lng=config.bounds.min_lng,
        max_lng=config.bounds.max_lng,
    )
    db.add(city)
    try:
        await db.commit()
    except IntegrityError:
        # Another process inserted the same slug
        await db.rollback()
        result = await db.execute(select(City).where(City.slug == config.slug))
        return result.scalar_one()
    logger.info(f"Registered city {config.slug}")
    return city


async def find_active_job(
    db: AsyncSession,
    city_id: int | None,
    grid_step: float,
    bounds: Bounds | None = None,
) -> Job | None:
    """Find a pending/running heatmap job for the same city (or bounds) and step."""
    query = select(Job).where(
        Job.type == JobType.HEATMAP_COMPUTE.value,
        Job.status.in_(ACTIVE_STATUSES),
        Job.grid_step == grid_step,
    )
    if city_id is not None:
        result = await db.execute(query.where(Job.city_id == city_id).limit(1))
        return result.scalar_one_or_none()

    # Bounds-only jobs have no city; match on identical bounds. The active-job
    # index treats NULL city_ids as distinct, so two concurrent schedulers can
    # both insert here. Cell writes are upserts, so the cost is repeated work.
    result = await db.execute(query.where(Job.city_id.is_(None)))
    for job in result.scalars().all():
        stored = (job.job_metadata or {}).get("bounds")
        if bounds is not None and stored == bounds.to_dict():
            return job
    return None


async def schedule_region_job(
    db: AsyncSession,
    region: str | Bounds,
    grid_step: float,
    max_cells: int = MAX_JOB_CELLS,
) -> ScheduleResult:
    """Create a heatmap job for a city slug or explicit bounds.

    If an active job already covers the same city (or bounds) and grid step,
    that job is returned unchanged with ``is_new=False``.

    Raises:
        UnknownCityError: ``region`` is a slug missing from the city registry.
        ValueError: the grid step is not positive or the grid exceeds ``max_cells``.
    """
    if grid_step <= 0:
        raise ValueError("Grid step must be greater than 0")

    city_id = None
    if isinstance(region, Bounds):
        bounds = region
    else:
        config = get_city_config(region)
        city = await get_or_create_city(db, config)
        city_id = city.id
        bounds = config.bounds

    total = grid_cardinality(bounds, grid_step)
    if total > max_cells:
        raise ValueError(f"Grid of {total} cells exceeds the limit of {max_cells}")

    existing = await find_active_job(db, city_id, grid_step, bounds)
    if existing:
        logger.info(f"Heatmap job {existing.id} already {existing.status} for this region")
        return ScheduleResult(job_id=existing.id, status=existing.status, is_new=False)

    job = Job(
        type=JobType.HEATMAP_COMPUTE.value,
        status=JobStatus.PENDING.value,
        city_id=city_id,
        grid_step=grid_step,
        progress=0,
        total_items=total,
        job_metadata={
            "bounds": bounds.to_dict(),
            "gridStep": grid_step,
            "lastProcessedIndex": 0,
        },
    )
    db.add(job)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race against a concurrent scheduler; the active-job index held
        await db.rollback()
        existing = await find_active_job(db, city_id, grid_step, bounds)
        if existing is None:
            raise
        return ScheduleResult(job_id=existing.id, status=existing.status, is_new=False)

    logger.info(f"Created heatmap job {job.id} ({total} cells, step {grid_step})")
    return ScheduleResult(job_id=job.id, status=job.status, is_new=True)


async def has_overlapping_job(db: AsyncSession, lat: float, lng: float) -> bool:
    """Whether an active heatmap job's bounds already contain the point."""
    result = await db.execute(
        select(Job.job_metadata).where(
            Job.type == JobType.HEATMAP_COMPUTE.value,
            Job.status.in_(ACTIVE_STATUSES),
        )
    )
    for metadata in result.scalars().all():
        raw = (metadata or {}).get("bounds")
        if not raw:
            continue
        try:
            bounds = Bounds.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            continue
        if bounds.contains(lat, lng):
            return True
    return False


async def schedule_regional_job(
    db: AsyncSession,
    source: PoiSource,
    lat: float,
    lng: float,
    grid_step: float,
    region_size: float,
    max_cells: int = MAX_JOB_CELLS,
) -> ScheduleResult | None:
    """Schedule an ad-hoc square job around a point lacking coverage.

    Returns None when an active job already contains the point or when the
    region holds no POIs at all.
    """
    if await has_overlapping_job(db, lat, lng):
        logger.debug(f"Point {lat:.4f},{lng:.4f} already covered by an active job")
        return None

    bounds = Bounds.around(lat, lng, region_size)
    if not await source.exists_any(bounds):
        logger.info(f"No POIs near {lat:.4f},{lng:.4f}, skipping heatmap job")
        return None

    return await schedule_region_job(db, bounds, grid_step, max_cells)


async def ensure_coverage(
    session_maker: async_sessionmaker,
    source: PoiSource,
    lat: float,
    lng: float,
    settings: Settings,
) -> ScheduleResult | None:
    """Schedule a regional job if the point has no heatmap coverage yet."""
    async with session_maker() as db:
        if await has_heatmap_coverage(db, lat, lng, settings.heatmap_grid_step):
            return None
        return await schedule_regional_job(
            db,
            source,
            lat,
            lng,
            settings.heatmap_grid_step,
            settings.region_size,
            settings.max_job_cells,
        )


def _log_task_result(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Auto-scheduling failed: {exc}", exc_info=exc)


def spawn_ensure_coverage(
    session_maker: async_sessionmaker,
    source: PoiSource,
    lat: float,
    lng: float,
    settings: Settings,
) -> asyncio.Task:
    """Run :func:`ensure_coverage` detached. Failures are logged, never raised."""
    task = asyncio.create_task(ensure_coverage(session_maker, source, lat, lng, settings))
    _background_tasks.add(task)
    task.add_done_callback(_log_task_result)
    return task


async def get_job(db: AsyncSession, job_id: int) -> Job | None:
    result = await db.execute(
        select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_running_jobs(db: AsyncSession) -> list[Job]:
    result = await db.execute(
        select(Job)
        .where(Job.status == JobStatus.RUNNING.value)
        .order_by(Job.started_at.asc(), Job.id.asc())
    )
    return list(result.scalars().all())


async def get_next_pending_jobs(db: AsyncSession, limit: int = 1) -> list[Job]:
    """Oldest pending jobs first."""
    result = await db.execute(
        select(Job)
        .where(Job.status == JobStatus.PENDING.value)
        .order_by(Job.created_at.asc(), Job.id.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def count_jobs_by_status(db: AsyncSession) -> dict[str, int]:
    result = await db.execute(select(Job.status, func.count(Job.id)).group_by(Job.status))
    counts = {status.value: 0 for status in JobStatus}
    counts.update({status: count for status, count in result.all()})
    return counts


async def can_start_new_job(db: AsyncSession, max_concurrent: int) -> bool:
    result = await db.execute(
        select(func.count(Job.id)).where(Job.status == JobStatus.RUNNING.value)
    )
    return result.scalar_one() < max_concurrent


async def claim_job(db: AsyncSession, job_id: int) -> bool:
    """Move a pending job to running. False if another worker got there first."""
    now = utc_now()
    result = await db.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.PENDING.value)
        .values(status=JobStatus.RUNNING.value, started_at=now, heartbeat_at=now)
    )
    await db.commit()
    claimed = result.rowcount == 1
    if claimed:
        logger.info(f"Claimed job {job_id}")
    return claimed


async def update_job_progress(
    db: AsyncSession,
    job_id: int,
    progress: int,
    metadata: dict,
    expected_progress: int | None = None,
) -> bool:
    """Persist progress and merged metadata in one statement.

    Only applies while the job is running, so a job failed from outside is
    never overwritten. With ``expected_progress`` the write is a
    compare-and-set on the stored progress: a worker holding an older
    snapshot of the job cannot move it backwards. Returns False when
    nothing was updated.
    """
    job = await get_job(db, job_id)
    if job is None or job.status != JobStatus.RUNNING.value:
        return False

    conditions = [Job.id == job_id, Job.status == JobStatus.RUNNING.value]
    if expected_progress is not None:
        conditions.append(Job.progress == expected_progress)

    merged = {**(job.job_metadata or {}), **metadata}
    result = await db.execute(
        update(Job)
        .where(*conditions)
        .values(progress=progress, job_metadata=merged, heartbeat_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def mark_job_completed(db: AsyncSession, job_id: int) -> bool:
    now = utc_now()
    result = await db.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.RUNNING.value)
        .values(status=JobStatus.COMPLETED.value, completed_at=now, heartbeat_at=now)
    )
    await db.commit()
    if result.rowcount == 1:
        logger.info(f"Job {job_id} completed")
        return True
    return False


async def mark_job_failed(db: AsyncSession, job_id: int, error: str) -> None:
    """Terminal failure. Failed jobs are never reclaimed or retried."""
    await db.execute(
        update(Job)
        .where(Job.id == job_id)
        .values(status=JobStatus.FAILED.value, error=error, completed_at=utc_now())
    )
    await db.commit()
    logger.error(f"Job {job_id} failed: {error}")


async def reset_stale_jobs(db: AsyncSession, stale_minutes: int) -> int:
    """Return running jobs with no heartbeat for ``stale_minutes`` to pending."""
    threshold = utc_now() - timedelta(minutes=stale_minutes)
    last_seen = func.coalesce(Job.heartbeat_at, Job.started_at)
    result = await db.execute(
        update(Job)
        .where(
            Job.status == JobStatus.RUNNING.value,
            or_(last_seen < threshold, and_(Job.heartbeat_at.is_(None), Job.started_at.is_(None))),
        )
        .values(status=JobStatus.PENDING.value, started_at=None, heartbeat_at=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount:
        logger.warning(f"Reset {result.rowcount} stale jobs to pending")
    return result.rowcount


def estimate_time_remaining(job: Job, cells_per_second: float = 2.0) -> int | None:
    """Rough seconds left for a job, or None if its size is unknown."""
    if not job.total_items or cells_per_second <= 0:
        return None
    remaining = max(0, job.total_items - (job.progress or 0))
    return round(remaining / cells_per_second)
