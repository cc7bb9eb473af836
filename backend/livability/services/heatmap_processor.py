"""Chunked heatmap computation for background jobs.

One ``process_chunk`` call handles a bounded slice of a job's grid:
regenerate the grid, slice from ``lastProcessedIndex``, skip cells already
stored, score the rest in memory and upsert them, then advance the index.
"""

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from livability.config import Settings
from livability.database import utc_now
from livability.errors import ConfigurationError
from livability.geo import Bounds, GridPoint, generate_grid_points
from livability.models import Job
from livability.providers.base import PoiSource
from livability.scoring.batch import BatchCalculator, create_batch_calculator
from livability.services import scheduler
from livability.services.heatcells import cell_key, existing_cell_keys, upsert_heat_cells

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Outcome of one chunk. ``progress`` is a percentage of the job's grid."""

    processed: int
    errors: int
    progress: int
    has_more: bool
    skipped: int = 0
    job_id: int | None = None


class CalculatorCache:
    """Small LRU of batch calculators, one per job.

    An entry is reused only while the job's bounds are unchanged.
    """

    def __init__(self, max_size: int = 4):
        self.max_size = max_size
        self._entries: OrderedDict[int, tuple[str, BatchCalculator]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, job_id: int) -> bool:
        return job_id in self._entries

    async def get(
        self,
        job_id: int,
        bounds: Bounds,
        factory: Callable[[], Awaitable[BatchCalculator]],
    ) -> BatchCalculator:
        entry = self._entries.get(job_id)
        if entry and entry[0] == bounds.key:
            self._entries.move_to_end(job_id)
            return entry[1]

        calculator = await factory()
        self._entries[job_id] = (bounds.key, calculator)
        self._entries.move_to_end(job_id)
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted batch calculator for job {evicted}")
        return calculator

    def release(self, job_id: int) -> None:
        self._entries.pop(job_id, None)


def score_points(
    calculator: BatchCalculator, points: list[GridPoint]
) -> tuple[list[tuple[GridPoint, int]], int]:
    """Score points in memory, counting individual failures instead of aborting."""
    scored = []
    errors = 0
    for point in points:
        try:
            scored.append((point, calculator.calculate_score(point.lat, point.lng)))
        except Exception as e:
            errors += 1
            logger.warning(f"Error scoring cell {point.lat},{point.lng}: {e}")
    return scored, errors


class HeatmapChunkProcessor:
    """Processes heatmap jobs one chunk at a time."""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        source: PoiSource,
        settings: Settings,
        cache: CalculatorCache | None = None,
    ):
        self._session_maker = session_maker
        self._source = source
        self._settings = settings
        self.cache = cache or CalculatorCache(max_size=max(1, settings.max_concurrent_jobs))

    async def _fail(self, job: Job, message: str) -> ProcessResult:
        self.cache.release(job.id)
        async with self._session_maker() as db:
            await scheduler.mark_job_failed(db, job.id, message)
        return ProcessResult(processed=0, errors=1, progress=0, has_more=False, job_id=job.id)

    def _job_parameters(self, job: Job) -> tuple[Bounds, float, int]:
        metadata = job.job_metadata or {}
        raw_bounds = metadata.get("bounds")
        if not raw_bounds:
            raise ConfigurationError("Job has no bounds in metadata")
        try:
            bounds = Bounds.from_dict(raw_bounds)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Job has invalid bounds: {e}") from e

        grid_step = metadata.get("gridStep") or job.grid_step
        if not grid_step or grid_step <= 0:
            raise ConfigurationError("Job has no valid grid step")
        start = int(metadata.get("lastProcessedIndex") or 0)
        return bounds, float(grid_step), start

    async def _load_calculator(self, job_id: int, bounds: Bounds) -> BatchCalculator:
        return await self.cache.get(
            job_id,
            bounds,
            lambda: create_batch_calculator(
                self._source,
                bounds,
                self._settings.heatmap_categories,
                self._settings.heatmap_buffer_meters,
            ),
        )

    async def _persist(self, job: Job, grid_step: float, scored) -> tuple[int, int]:
        """Upsert scored cells in batches. Returns (saved, errors)."""
        now = utc_now()
        rows = [
            {
                "lat": point.lat,
                "lng": point.lng,
                "score": score,
                "grid_step": grid_step,
                "city_id": job.city_id,
                "computed_at": now,
            }
            for point, score in scored
        ]

        saved = 0
        errors = 0
        batch_size = self._settings.upsert_batch_size
        async with self._session_maker() as db:
            for i in range(0, len(rows), batch_size):
                batch = rows[i : i + batch_size]
                try:
                    await upsert_heat_cells(db, batch)
                    await db.commit()
                    saved += len(batch)
                except SQLAlchemyError as e:
                    await db.rollback()
                    errors += len(batch)
                    logger.error(f"Failed to save {len(batch)} cells for job {job.id}: {e}")
        return saved, errors

    async def process_chunk(self, job: Job, chunk_size: int | None = None) -> ProcessResult:
        """Process the next slice of ``job``'s grid.

        A job with missing or malformed bounds is failed immediately. POI
        source errors while loading the calculator propagate to the caller;
        the job stays running and is retried on a later cycle.
        """
        chunk_size = chunk_size or self._settings.heatmap_chunk_size
        try:
            bounds, grid_step, start = self._job_parameters(job)
        except ConfigurationError as e:
            return await self._fail(job, str(e))

        points = generate_grid_points(bounds, grid_step)
        total = len(points)
        end = min(start + chunk_size, total)
        chunk = points[start:end]

        async with self._session_maker() as db:
            existing = await existing_cell_keys(db, chunk, grid_step)
        pending = [p for p in chunk if cell_key(p.lat, p.lng) not in existing]
        skipped = len(chunk) - len(pending)

        processed = 0
        errors = 0
        if pending:
            calculator = await self._load_calculator(job.id, bounds)
            scored, errors = await asyncio.to_thread(score_points, calculator, pending)
            processed, save_errors = await self._persist(job, grid_step, scored)
            errors += save_errors

        has_more = end < total
        percent = round(end / total * 100) if total else 100

        async with self._session_maker() as db:
            updated = await scheduler.update_job_progress(
                db,
                job.id,
                end,
                {"lastProcessedIndex": end, "gridStep": grid_step},
                expected_progress=start,
            )
            if not updated:
                # Failed externally, or another worker already moved past this chunk
                logger.warning(
                    f"Job {job.id} changed since chunk {start}-{end} was read, dropping it"
                )
                self.cache.release(job.id)
                return ProcessResult(processed, errors, percent, False, skipped, job.id)
            if not has_more:
                await scheduler.mark_job_completed(db, job.id)
                self.cache.release(job.id)

        if errors:
            logger.warning(f"Job {job.id}: {errors} cells failed in chunk {start}-{end}")
        return ProcessResult(
            processed=processed,
            errors=errors,
            progress=percent,
            has_more=has_more,
            skipped=skipped,
            job_id=job.id,
        )

    async def process_next_chunk(self, max_cells: int | None = None) -> ProcessResult:
        """Run one scheduling step and process a single chunk.

        Reclaims stale jobs, continues the oldest running job or claims the
        next pending one while under the concurrency limit.
        """
        async with self._session_maker() as db:
            await scheduler.reset_stale_jobs(db, self._settings.stale_job_minutes)
            running = await scheduler.get_running_jobs(db)
            job = running[0] if running else None

            if job is None and await scheduler.can_start_new_job(
                db, self._settings.max_concurrent_jobs
            ):
                for candidate in await scheduler.get_next_pending_jobs(db, 1):
                    if await scheduler.claim_job(db, candidate.id):
                        job = await scheduler.get_job(db, candidate.id)

        if job is None:
            return ProcessResult(processed=0, errors=0, progress=0, has_more=False)
        return await self.process_chunk(job, max_cells)
