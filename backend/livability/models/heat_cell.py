"""Heat cell model for precomputed heatmap scores."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from livability.database import Base, utc_now


class HeatCell(Base):
    """Score of one grid point at one grid resolution.

    (lat, lng, grid_step) is the natural key; recomputation upserts.
    """

    __tablename__ = "heat_cells"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    grid_step: Mapped[float] = mapped_column(Float, nullable=False)
    city_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("cities.id", ondelete="SET NULL"),
        index=True,
    )
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
    )

    __table_args__ = (
        UniqueConstraint("lat", "lng", "grid_step", name="uq_heat_cells_coords_step"),
        Index("ix_heat_cells_bounds", "lat", "lng"),
    )
