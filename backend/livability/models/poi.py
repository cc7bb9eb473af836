"""POI model for bulk-imported amenity data."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from livability.database import Base, utc_now


class PoiRecord(Base):
    """A point of interest imported from Overture Maps (or similar)."""

    __tablename__ = "pois"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str | None] = mapped_column(Text)
    # Provider category, e.g. "supermarket"
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    source: Mapped[str | None] = mapped_column(String(50))  # "meta", "microsoft", "osm"
    tags: Mapped[dict | None] = mapped_column(JSON().with_variant(JSONB, "postgresql"))
    imported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
    )

    __table_args__ = (
        Index("ix_pois_location", "lat", "lng"),
        Index("ix_pois_category_location", "category", "lat", "lng"),
    )
