"""SQLAlchemy ORM models."""

from livability.models.city import City
from livability.models.heat_cell import HeatCell
from livability.models.job import Job, JobStatus, JobType
from livability.models.poi import PoiRecord

__all__ = [
    "City",
    "HeatCell",
    "Job",
    "JobStatus",
    "JobType",
    "PoiRecord",
]
