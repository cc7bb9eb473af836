"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from livability import __version__
from livability.config import get_settings
from livability.database import async_session_maker, close_db, init_db
from livability.providers import create_poi_source
from livability.routers import (
    health_router,
    heatmap_router,
    jobs_router,
    metrics_router,
    score_router,
)
from livability.services.heatmap_processor import HeatmapChunkProcessor
from livability.services.worker import HeatmapWorker

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting livability heatmap service...")

    await init_db()
    logger.info("Database initialized")

    source = create_poi_source(settings, async_session_maker)
    app.state.poi_source = source
    app.state.processor = HeatmapChunkProcessor(async_session_maker, source, settings)
    logger.info(f"Using {source.name} POI provider")

    worker = None
    if settings.worker_enabled:
        worker = HeatmapWorker(async_session_maker, app.state.processor, settings)
        await worker.start()
    app.state.worker = worker

    yield

    # Shutdown
    logger.info("Shutting down livability heatmap service...")
    if worker:
        await worker.stop()
    await source.close()
    await close_db()

    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Livability Heatmap",
    description="Walkability scores and precomputed livability heatmaps",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(score_router)
app.include_router(heatmap_router)
app.include_router(jobs_router)


@app.get("/")
async def root():
    """Root endpoint - shows API info."""
    return {
        "name": "Livability Heatmap",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }
