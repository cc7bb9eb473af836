"""Background heatmap worker.

Polls the jobs table, reclaims stale jobs, promotes pending jobs up to the
concurrency limit and drives every running job chunk by chunk within a time
budget of each poll interval.
"""

import asyncio
import logging
import signal
import time
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import async_sessionmaker

from livability.config import Settings, get_settings
from livability.models import Job, JobType
from livability.services import scheduler
from livability.services.heatmap_processor import HeatmapChunkProcessor

logger = logging.getLogger(__name__)

# Fraction of the poll interval spent processing before sleeping again
TIME_BUDGET_RATIO = 0.8


@dataclass
class JobState:
    """In-memory progress tracking for one running job."""

    started: float = field(default_factory=time.monotonic)
    processed: int = 0
    errors: int = 0

    def rate(self) -> float:
        elapsed = time.monotonic() - self.started
        return self.processed / elapsed if elapsed > 0 else 0.0


def format_eta(seconds: float | None) -> str:
    if seconds is None:
        return "?"
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


class HeatmapWorker:
    """Supervisory loop around :class:`HeatmapChunkProcessor`."""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        processor: HeatmapChunkProcessor,
        settings: Settings,
    ):
        self._session_maker = session_maker
        self._processor = processor
        self._settings = settings
        self._running = False
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._job_states: dict[int, JobState] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_jobs(self) -> list[int]:
        return list(self._job_states)

    async def start(self) -> None:
        """Start the worker loop."""
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Started heatmap worker (poll {self._settings.worker_poll_interval}s, "
            f"chunk {self._settings.worker_chunk_size}, "
            f"max jobs {self._settings.max_concurrent_jobs})"
        )

    def request_stop(self) -> None:
        """Ask the loop to exit after the in-flight chunks finish."""
        if self._running:
            logger.info("Shutdown requested, finishing current chunks")
        self._running = False
        self._stop_event.set()

    async def stop(self) -> None:
        """Stop the worker, letting in-flight chunks complete."""
        self.request_stop()
        if self._task:
            await self._task
            self._task = None
        logger.info("Stopped heatmap worker")

    async def wait(self) -> None:
        """Block until the loop exits."""
        if self._task:
            await self._task

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error(f"Worker cycle failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._settings.worker_poll_interval
                )
            except TimeoutError:
                pass

    async def _dispatch(self) -> list[Job]:
        """Reclaim stale jobs, claim pending ones, return the running set."""
        async with self._session_maker() as db:
            await scheduler.reset_stale_jobs(db, self._settings.stale_job_minutes)
            running = await scheduler.get_running_jobs(db)

            slots = self._settings.max_concurrent_jobs - len(running)
            if slots > 0:
                claimed = False
                for job in await scheduler.get_next_pending_jobs(db, slots):
                    if await scheduler.claim_job(db, job.id):
                        claimed = True
                        logger.info(
                            f"Starting job {job.id} ({job.total_items} cells, "
                            f"step {job.grid_step})"
                        )
                if claimed:
                    running = await scheduler.get_running_jobs(db)
        return running

    async def run_cycle(self) -> int:
        """One poll cycle. Returns the number of chunks processed."""
        running = await self._dispatch()
        if not running:
            async with self._session_maker() as db:
                counts = await scheduler.count_jobs_by_status(db)
            logger.debug(f"No running jobs ({counts.get('pending', 0)} pending)")
            return 0

        budget = self._settings.worker_poll_interval * TIME_BUDGET_RATIO
        deadline = time.monotonic() + budget
        chunks = 0

        while running and not self._stop_event.is_set() and time.monotonic() < deadline:
            results = await asyncio.gather(*[self._process_job(job) for job in running])
            chunks += len(running)
            if not any(results):
                break
            async with self._session_maker() as db:
                running = await scheduler.get_running_jobs(db)

        # Forget jobs that are no longer running
        active_ids = {job.id for job in running}
        for job_id in list(self._job_states):
            if job_id not in active_ids:
                self._job_states.pop(job_id, None)
        return chunks

    async def _process_job(self, job: Job) -> bool:
        """Process one chunk of ``job``. Returns True if it has more work."""
        if job.type != JobType.HEATMAP_COMPUTE.value:
            logger.warning(f"Skipping job {job.id} of unknown type {job.type}")
            return False

        state = self._job_states.setdefault(job.id, JobState())
        try:
            result = await self._processor.process_chunk(job, self._settings.worker_chunk_size)
        except Exception as e:
            # Job stays running; the next cycle retries or stale reclaim resets it
            logger.error(f"Job {job.id} chunk failed: {e}", exc_info=True)
            return False

        state.processed += result.processed + result.skipped
        state.errors += result.errors

        rate = state.rate()
        remaining = None
        if job.total_items and rate > 0:
            done = int(job.total_items * result.progress / 100)
            remaining = (job.total_items - done) / rate
        logger.info(
            f"Job {job.id}: {result.progress}% "
            f"({result.processed} scored, {result.skipped} skipped, {result.errors} errors) "
            f"{rate:.1f} cells/s, ETA {format_eta(remaining)}"
        )

        if not result.has_more:
            self._job_states.pop(job.id, None)
            elapsed = time.monotonic() - state.started
            logger.info(f"Job {job.id} finished in {format_eta(elapsed)}")
        return result.has_more


async def run_worker(settings: Settings | None = None) -> None:
    """Run a worker until SIGINT/SIGTERM."""
    from livability.database import async_session_maker, close_db
    from livability.providers import create_poi_source

    settings = settings or get_settings()
    source = create_poi_source(settings, async_session_maker)
    processor = HeatmapChunkProcessor(async_session_maker, source, settings)
    worker = HeatmapWorker(async_session_maker, processor, settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.request_stop)

    logger.info(f"Heatmap worker using {source.name} POI provider")
    await worker.start()
    try:
        await worker.wait()
    finally:
        await source.close()
        await close_db()


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_worker(settings))


if __name__ == "__main__":
    main()
