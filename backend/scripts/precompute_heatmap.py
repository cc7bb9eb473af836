#!/usr/bin/env python3
"""Schedule a city heatmap job and run it to completion in this process.

Usage:
    python scripts/precompute_heatmap.py cancun [--grid-step 0.0025]
"""

import argparse
import asyncio
import logging

from livability.cities import available_cities
from livability.config import get_settings
from livability.database import async_session_maker, close_db
from livability.providers import create_poi_source
from livability.services import scheduler
from livability.services.heatmap_processor import HeatmapChunkProcessor


async def precompute(city_slug: str, grid_step: float | None) -> None:
    settings = get_settings()
    step = grid_step or settings.heatmap_grid_step
    source = create_poi_source(settings, async_session_maker)
    processor = HeatmapChunkProcessor(async_session_maker, source, settings)

    try:
        async with async_session_maker() as session:
            scheduled = await scheduler.schedule_region_job(
                session, city_slug, step, settings.max_job_cells
            )
            print(f"Job {scheduled.job_id} ({'new' if scheduled.is_new else scheduled.status})")

            if scheduled.status == "pending":
                await scheduler.claim_job(session, scheduled.job_id)

        while True:
            async with async_session_maker() as session:
                job = await scheduler.get_job(session, scheduled.job_id)
            if job is None or job.status != "running":
                print(f"Job is {job.status if job else 'missing'}, stopping.")
                break

            result = await processor.process_chunk(job, settings.worker_chunk_size)
            print(
                f"{result.progress}% - {result.processed} scored, "
                f"{result.skipped} skipped, {result.errors} errors"
            )
            if not result.has_more:
                break
    finally:
        await source.close()
        await close_db()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("city", choices=available_cities(), help="City slug")
    parser.add_argument("--grid-step", type=float, default=None)
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(precompute(args.city, args.grid_step))
