#!/usr/bin/env python3
"""Print job counts by status and the most recent jobs.

Usage:
    python scripts/check_jobs.py [--limit 10]
"""

import argparse
import asyncio

from sqlalchemy import select

from livability.database import async_session_maker, close_db
from livability.models import Job
from livability.services.scheduler import count_jobs_by_status, estimate_time_remaining


async def check_jobs(limit: int) -> None:
    async with async_session_maker() as session:
        counts = await count_jobs_by_status(session)
        print("Jobs by status:")
        for status, count in counts.items():
            print(f"  {status:<10} {count}")

        result = await session.execute(select(Job).order_by(Job.created_at.desc()).limit(limit))
        jobs = result.scalars().all()

    print(f"\nLatest {len(jobs)} jobs:")
    for job in jobs:
        total = job.total_items or 0
        percent = round(job.progress / total * 100) if total else 0
        line = f"  #{job.id} {job.status:<10} {job.progress}/{total} ({percent}%)"
        if job.is_active:
            eta = estimate_time_remaining(job)
            if eta is not None:
                line += f" ~{eta}s left"
        if job.error:
            line += f" error: {job.error}"
        print(line)
    await close_db()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--limit", type=int, default=10)
    args = parser.parse_args()
    asyncio.run(check_jobs(args.limit))
