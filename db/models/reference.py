"""
db/models/reference.py

Pre-existing reference data: indicators and the subareas they belong to.
Ingestion only reads these tables.
"""

from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class Subarea(Base, TimestampMixin):
    __tablename__ = "subareas"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(String(120), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("code", name="uq_subareas_code"),
    )


class Indicator(Base, TimestampMixin):
    __tablename__ = "indicators"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(String(120), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    unit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    subarea_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("subareas.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("code", name="uq_indicators_code"),
        Index("ix_indicators_subarea_id", "subarea_id"),
    )
