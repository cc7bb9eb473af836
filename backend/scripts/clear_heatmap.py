#!/usr/bin/env python3
"""Delete precomputed heat cells so they are recomputed by the next jobs.

Usage:
    python scripts/clear_heatmap.py            # all cells
    python scripts/clear_heatmap.py --city cancun
"""

import argparse
import asyncio

from sqlalchemy import select

from livability.cities import get_city_config
from livability.database import async_session_maker, close_db
from livability.models import City
from livability.services.heatcells import clear_heat_cells


async def clear_heatmap(city_slug: str | None) -> None:
    async with async_session_maker() as session:
        city_id = None
        if city_slug:
            config = get_city_config(city_slug)
            result = await session.execute(select(City.id).where(City.slug == config.slug))
            city_id = result.scalar_one_or_none()
            if city_id is None:
                print(f"No heat cells stored for {config.slug}.")
                return

        deleted = await clear_heat_cells(session, city_id)
        print(f"Deleted {deleted} heat cells.")
    await close_db()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--city", help="Only clear cells belonging to this city slug")
    args = parser.parse_args()
    asyncio.run(clear_heatmap(args.city))
