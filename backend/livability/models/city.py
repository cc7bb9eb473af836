"""City model for named heatmap regions."""

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from livability.database import Base, utc_now
from livability.geo import Bounds


class City(Base):
    """A named region with a known bounding box."""

    __tablename__ = "cities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    country: Mapped[str | None] = mapped_column(String(2))  # ISO country code

    # Bounding box
    min_lat: Mapped[float] = mapped_column(Float, nullable=False)
    max_lat: Mapped[float] = mapped_column(Float, nullable=False)
    min_lng: Mapped[float] = mapped_column(Float, nullable=False)
    max_lng: Mapped[float] = mapped_column(Float, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
    )

    @property
    def bounds(self) -> Bounds:
        return Bounds(
            min_lat=self.min_lat,
            max_lat=self.max_lat,
            min_lng=self.min_lng,
            max_lng=self.max_lng,
        )
