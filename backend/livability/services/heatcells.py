"""Heat cell persistence: batched upserts and range reads."""

import logging
from collections.abc import Iterable, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from livability.geo import GRID_PRECISION, Bounds, GridPoint
from livability.models import HeatCell

logger = logging.getLogger(__name__)

CONFLICT_COLUMNS = ["lat", "lng", "grid_step"]

# Padding when looking up stored cells around a batch of grid points
LOOKUP_PADDING = 0.0001


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"Heat cell upsert is not supported on {dialect}")


def cell_key(lat: float, lng: float) -> tuple[float, float]:
    return round(lat, GRID_PRECISION), round(lng, GRID_PRECISION)


async def upsert_heat_cells(db: AsyncSession, rows: Sequence[dict]) -> int:
    """Insert cells, updating score and computed_at on (lat, lng, grid_step) conflicts.

    Rows are dicts with lat, lng, score, grid_step, city_id and computed_at.
    The caller commits.
    """
    if not rows:
        return 0
    insert = _insert_for(db)
    stmt = insert(HeatCell).values(list(rows))
    stmt = stmt.on_conflict_do_update(
        index_elements=CONFLICT_COLUMNS,
        set_={
            "score": stmt.excluded.score,
            "computed_at": stmt.excluded.computed_at,
        },
    )
    await db.execute(stmt)
    return len(rows)


async def existing_cell_keys(
    db: AsyncSession, points: Iterable[GridPoint], grid_step: float
) -> set[tuple[float, float]]:
    """Keys of the given points that already have a stored cell at ``grid_step``."""
    points = list(points)
    if not points:
        return set()

    lats = [p.lat for p in points]
    lngs = [p.lng for p in points]
    result = await db.execute(
        select(HeatCell.lat, HeatCell.lng).where(
            HeatCell.lat >= min(lats) - LOOKUP_PADDING,
            HeatCell.lat <= max(lats) + LOOKUP_PADDING,
            HeatCell.lng >= min(lngs) - LOOKUP_PADDING,
            HeatCell.lng <= max(lngs) + LOOKUP_PADDING,
            HeatCell.grid_step == grid_step,
        )
    )
    return {cell_key(lat, lng) for lat, lng in result.all()}


async def get_heat_cells(
    db: AsyncSession, bounds: Bounds, grid_step: float, min_score: int = 0
) -> list[HeatCell]:
    """Stored cells inside ``bounds`` at ``grid_step`` scoring at least ``min_score``."""
    result = await db.execute(
        select(HeatCell).where(
            HeatCell.lat >= bounds.min_lat,
            HeatCell.lat <= bounds.max_lat,
            HeatCell.lng >= bounds.min_lng,
            HeatCell.lng <= bounds.max_lng,
            HeatCell.grid_step == grid_step,
            HeatCell.score >= min_score,
        )
    )
    return list(result.scalars().all())


async def has_heatmap_coverage(
    db: AsyncSession, lat: float, lng: float, grid_step: float
) -> bool:
    """Whether any cell lies within one grid step of the point."""
    result = await db.execute(
        select(HeatCell.id)
        .where(
            HeatCell.lat >= lat - grid_step,
            HeatCell.lat <= lat + grid_step,
            HeatCell.lng >= lng - grid_step,
            HeatCell.lng <= lng + grid_step,
            HeatCell.grid_step == grid_step,
        )
        .limit(1)
    )
    return result.first() is not None


async def count_heat_cells_by_step(db: AsyncSession) -> dict[float, int]:
    result = await db.execute(
        select(HeatCell.grid_step, func.count(HeatCell.id)).group_by(HeatCell.grid_step)
    )
    return {step: count for step, count in result.all()}


async def clear_heat_cells(db: AsyncSession, city_id: int | None = None) -> int:
    """Administrative reset: delete all cells, or only one city's."""
    stmt = delete(HeatCell)
    if city_id is not None:
        stmt = stmt.where(HeatCell.city_id == city_id)
    result = await db.execute(stmt)
    await db.commit()
    logger.info(f"Deleted {result.rowcount} heat cells")
    return result.rowcount
