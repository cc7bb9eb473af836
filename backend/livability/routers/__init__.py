"""API routers."""

from livability.routers.health import router as health_router
from livability.routers.heatmap import router as heatmap_router
from livability.routers.jobs import router as jobs_router
from livability.routers.metrics import router as metrics_router
from livability.routers.score import router as score_router

__all__ = [
    "health_router",
    "heatmap_router",
    "jobs_router",
    "metrics_router",
    "score_router",
]
