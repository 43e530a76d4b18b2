"""
db/models/dimension.py

Conformed dimension tables shared by every ingested fact.

Natural keys:
  dim_time      -> time_key (YYYY, YYYY-Qn, YYYY-MM or YYYY-MM-DD)
  dim_location  -> code (upper-cased)
  dim_generic   -> (dimension_name, value)
"""

from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import Date, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, CreatedAtMixin


class TimeGranularity:
    YEAR = "year"
    QUARTER = "quarter"
    MONTH = "month"
    DAY = "day"


class DimTime(Base, CreatedAtMixin):
    __tablename__ = "dim_time"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    time_key: Mapped[str] = mapped_column(String(16), nullable=False)
    granularity: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="year, quarter, month, day",
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    quarter: Mapped[int | None] = mapped_column(Integer, nullable=True)
    month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    label: Mapped[str] = mapped_column(String(32), nullable=False)
    raw_value: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("time_key", name="uq_dim_time_time_key"),
        Index("ix_dim_time_year", "year"),
    )


class DimLocation(Base, CreatedAtMixin):
    __tablename__ = "dim_location"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(String(120), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location_type: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="country, state, city, district, region",
    )
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("dim_location.id", ondelete="SET NULL"),
        nullable=True,
    )
    level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    raw_value: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("code", name="uq_dim_location_code"),
        Index("ix_dim_location_name", "name"),
    )


class DimGeneric(Base, CreatedAtMixin):
    __tablename__ = "dim_generic"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    dimension_name: Mapped[str] = mapped_column(String(120), nullable=False)
    value: Mapped[str] = mapped_column(String(500), nullable=False)

    __table_args__ = (
        UniqueConstraint("dimension_name", "value", name="uq_dim_generic_name_value"),
    )
