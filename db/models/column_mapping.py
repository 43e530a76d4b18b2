"""
db/models/column_mapping.py

Binding of one analysed column to a warehouse dimension role.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONType, TimestampMixin


class DimensionRole:
    TIME = "TIME"
    LOCATION = "LOCATION"
    INDICATOR_NAME = "INDICATOR_NAME"
    INDICATOR_VALUE = "INDICATOR_VALUE"
    SOURCE = "SOURCE"
    UNIT = "UNIT"
    GOAL = "GOAL"
    ADDITIONAL = "ADDITIONAL"


ALL_DIMENSION_ROLES: tuple[str, ...] = (
    DimensionRole.TIME,
    DimensionRole.LOCATION,
    DimensionRole.INDICATOR_NAME,
    DimensionRole.INDICATOR_VALUE,
    DimensionRole.SOURCE,
    DimensionRole.UNIT,
    DimensionRole.GOAL,
    DimensionRole.ADDITIONAL,
)

# Roles resolved into DimGeneric rows.
GENERIC_DIMENSION_ROLES: frozenset[str] = frozenset(
    {DimensionRole.SOURCE, DimensionRole.UNIT, DimensionRole.GOAL, DimensionRole.ADDITIONAL}
)


class ColumnMapping(Base, TimestampMixin):
    __tablename__ = "column_mappings"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    analysis_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("file_analyses.id", ondelete="CASCADE"),
        nullable=False,
    )
    column_index: Mapped[int] = mapped_column(Integer, nullable=False)
    column_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="TIME, LOCATION, INDICATOR_NAME, INDICATOR_VALUE, SOURCE, UNIT, GOAL, ADDITIONAL",
    )
    normalization_rules: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Versioned rule set, see app.domain.mapping.NormalizationRuleSet",
    )
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    is_auto_detected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("analysis_id", "column_index", name="uq_column_mappings_analysis_column"),
        Index("ix_column_mappings_analysis_id", "analysis_id"),
    )
