"""
db/models/file_analysis.py

Structural profile of one uploaded delimited file and its columns.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, CreatedAtMixin, JSONType


class ColumnDataType:
    INTEGER = "integer"
    DECIMAL = "decimal"
    PERCENTAGE = "percentage"
    TEXT = "text"


NUMERIC_DATA_TYPES: frozenset[str] = frozenset(
    {ColumnDataType.INTEGER, ColumnDataType.DECIMAL, ColumnDataType.PERCENTAGE}
)


class FileAnalysis(Base, CreatedAtMixin):
    __tablename__ = "file_analyses"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    upload_ref: Mapped[str | None] = mapped_column(
        String(512),
        nullable=True,
        comment="Reference understood by the file storage backend",
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str | None] = mapped_column(String(120), nullable=True)
    file_size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    checksum: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="sha256 of the raw file bytes",
    )
    row_count: Mapped[int] = mapped_column(Integer, nullable=False)
    column_count: Mapped[int] = mapped_column(Integer, nullable=False)
    ragged_row_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delimiter: Mapped[str] = mapped_column(String(4), nullable=False)
    encoding: Mapped[str] = mapped_column(String(32), nullable=False)
    has_header: Mapped[bool] = mapped_column(Boolean, nullable=False)
    headers: Mapped[list[str]] = mapped_column(JSONType, nullable=False)

    columns: Mapped[list[ColumnProfile]] = relationship(
        back_populates="analysis",
        order_by="ColumnProfile.column_index",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_file_analyses_upload_ref", "upload_ref"),
        Index("ix_file_analyses_checksum", "checksum"),
    )


class ColumnProfile(Base):
    __tablename__ = "column_profiles"

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
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    data_type: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="integer, decimal, percentage, text",
    )
    sample_values: Mapped[list[Any]] = mapped_column(JSONType, nullable=False)
    null_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    empty_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    analysis: Mapped[FileAnalysis] = relationship(back_populates="columns")

    __table_args__ = (
        UniqueConstraint("analysis_id", "column_index", name="uq_column_profiles_analysis_column"),
    )
