"""
db/models/fact.py

Indicator fact rows and their links to generic dimension values.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import Float, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, CreatedAtMixin


class FactIndicatorValue(Base, CreatedAtMixin):
    __tablename__ = "fact_indicator_values"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    indicator_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("indicators.id", ondelete="RESTRICT"),
        nullable=False,
    )
    time_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("dim_time.id", ondelete="RESTRICT"),
        nullable=True,
    )
    location_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("dim_location.id", ondelete="RESTRICT"),
        nullable=True,
    )
    subarea_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("subareas.id", ondelete="SET NULL"),
        nullable=True,
    )
    value: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    source_row_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="sha256 over the row's resolved natural keys and value",
    )
    job_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("processing_jobs.id", ondelete="SET NULL"),
        nullable=True,
    )
    source_file: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_row_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    __table_args__ = (
        UniqueConstraint("source_row_hash", name="uq_fact_indicator_values_source_row_hash"),
        Index("ix_fact_indicator_values_indicator_time", "indicator_id", "time_id"),
        Index("ix_fact_indicator_values_location_id", "location_id"),
        Index("ix_fact_indicator_values_job_id", "job_id"),
    )


class FactGenericLink(Base):
    __tablename__ = "fact_generic_links"

    fact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("fact_indicator_values.id", ondelete="CASCADE"),
        primary_key=True,
    )
    generic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("dim_generic.id", ondelete="RESTRICT"),
        primary_key=True,
    )
