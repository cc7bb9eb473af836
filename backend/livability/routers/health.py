"""Health check endpoint."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from livability.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    """Report database connectivity and the active POI provider."""
    database = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check database error: {e}")
        database = "error"

    source = getattr(request.app.state, "poi_source", None)
    worker = getattr(request.app.state, "worker", None)
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "database": database,
        "poi_provider": source.name if source else None,
        "worker": worker.is_running if worker else False,
    }
