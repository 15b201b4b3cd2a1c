from __future__ import annotations

import datetime as dt

from sqlalchemy import BigInteger
from sqlalchemy import Boolean
from sqlalchemy import DateTime
from sqlalchemy import Float
from sqlalchemy import Index
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column


# SQLite only autoincrements an INTEGER PRIMARY KEY.
PrimaryKey = BigInteger().with_variant(Integer, "sqlite")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class Base(DeclarativeBase):
    pass


class Resource(Base):
    __tablename__ = "resources"

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # dedup_key(name, address) as computed in Python at write time
    dedup_key: Mapped[str] = mapped_column(Text, nullable=False, default="")
    city: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[str | None] = mapped_column(String(8), nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    county_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    county_geoid: Mapped[str | None] = mapped_column(String(16), nullable=True)
    location_type: Mapped[str | None] = mapped_column(String(8), nullable=True)  # zip|county
    category: Mapped[str] = mapped_column(String(8), nullable=False, default="mixed")
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    hours: Mapped[str | None] = mapped_column(Text, nullable=True)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    eligibility_requirements: Mapped[str | None] = mapped_column(Text, nullable=True)
    services_offered: Mapped[str | None] = mapped_column(Text, nullable=True)
    languages_spoken: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verification_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    place_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    needs_enrichment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_enrichment_attempt: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    enrichment_failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enrichment_failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    exportable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    last_verified_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("idx_resources_dedup_key", "dedup_key"),
        Index("idx_resources_zip_code", "zip_code"),
        Index("idx_resources_county_geoid", "county_geoid"),
        Index("idx_resources_location", "latitude", "longitude"),
        Index("idx_resources_enrichment_queue", "needs_enrichment", "created_at"),
    )

    def __repr__(self) -> str:
        return f"Resource(id={self.id!r}, name={self.name!r}, address={self.address!r})"


class RegionSearch(Base):
    """One discovery run for a zip code or county; the newest row drives the cache."""

    __tablename__ = "region_searches"

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True, autoincrement=True)
    region_type: Mapped[str] = mapped_column(String(8), nullable=False)  # zip|county
    region_key: Mapped[str] = mapped_column(String(32), nullable=False)
    region_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[str | None] = mapped_column(String(8), nullable=True)
    searched_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    result_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_region_searches_lookup", "region_type", "region_key", "searched_at"),
    )
