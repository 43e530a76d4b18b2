"""create ingestion pipeline tables

Revision ID: 20260301_0001
Revises:
Create Date: 2026-03-01 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20260301_0001"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    # Reference data
    op.create_table(
        "subareas",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("code", sa.String(length=120), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_subareas_code"),
    )
    op.create_table(
        "indicators",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("code", sa.String(length=120), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("unit", sa.String(length=50), nullable=True),
        sa.Column("subarea_id", sa.Uuid(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["subarea_id"], ["subareas.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_indicators_code"),
    )
    op.create_index("ix_indicators_subarea_id", "indicators", ["subarea_id"], unique=False)

    # Analyses and mappings
    op.create_table(
        "file_analyses",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("upload_ref", sa.String(length=512), nullable=True),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("content_type", sa.String(length=120), nullable=True),
        sa.Column("file_size_bytes", sa.Integer(), nullable=False),
        sa.Column("checksum", sa.String(length=64), nullable=False),
        sa.Column("row_count", sa.Integer(), nullable=False),
        sa.Column("column_count", sa.Integer(), nullable=False),
        sa.Column("ragged_row_count", sa.Integer(), nullable=False),
        sa.Column("delimiter", sa.String(length=4), nullable=False),
        sa.Column("encoding", sa.String(length=32), nullable=False),
        sa.Column("has_header", sa.Boolean(), nullable=False),
        sa.Column("headers", JSON_TYPE, nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_file_analyses_upload_ref", "file_analyses", ["upload_ref"], unique=False)
    op.create_index("ix_file_analyses_checksum", "file_analyses", ["checksum"], unique=False)

    op.create_table(
        "column_profiles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("analysis_id", sa.Uuid(), nullable=False),
        sa.Column("column_index", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("data_type", sa.String(length=16), nullable=False),
        sa.Column("sample_values", JSON_TYPE, nullable=False),
        sa.Column("null_count", sa.Integer(), nullable=False),
        sa.Column("empty_count", sa.Integer(), nullable=False),
        sa.Column("unique_count", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["analysis_id"], ["file_analyses.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("analysis_id", "column_index", name="uq_column_profiles_analysis_column"),
    )

    op.create_table(
        "column_mappings",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("analysis_id", sa.Uuid(), nullable=False),
        sa.Column("column_index", sa.Integer(), nullable=False),
        sa.Column("column_name", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("normalization_rules", JSON_TYPE, nullable=True),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("is_auto_detected", sa.Boolean(), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["analysis_id"], ["file_analyses.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("analysis_id", "column_index", name="uq_column_mappings_analysis_column"),
    )
    op.create_index("ix_column_mappings_analysis_id", "column_mappings", ["analysis_id"], unique=False)

    # Dimensions
    op.create_table(
        "dim_time",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("time_key", sa.String(length=16), nullable=False),
        sa.Column("granularity", sa.String(length=16), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("quarter", sa.Integer(), nullable=True),
        sa.Column("month", sa.Integer(), nullable=True),
        sa.Column("day", sa.Integer(), nullable=True),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("label", sa.String(length=32), nullable=False),
        sa.Column("raw_value", sa.String(length=255), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("time_key", name="uq_dim_time_time_key"),
    )
    op.create_index("ix_dim_time_year", "dim_time", ["year"], unique=False)

    op.create_table(
        "dim_location",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("code", sa.String(length=120), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("location_type", sa.String(length=50), nullable=True),
        sa.Column("parent_id", sa.Uuid(), nullable=True),
        sa.Column("level", sa.Integer(), nullable=True),
        sa.Column("raw_value", sa.String(length=255), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["parent_id"], ["dim_location.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_dim_location_code"),
    )
    op.create_index("ix_dim_location_name", "dim_location", ["name"], unique=False)

    op.create_table(
        "dim_generic",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("dimension_name", sa.String(length=120), nullable=False),
        sa.Column("value", sa.String(length=500), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dimension_name", "value", name="uq_dim_generic_name_value"),
    )

    # Jobs
    op.create_table(
        "processing_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("analysis_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("total_rows", sa.Integer(), nullable=False),
        sa.Column("processed_rows", sa.Integer(), nullable=False),
        sa.Column("inserted_rows", sa.Integer(), nullable=False),
        sa.Column("duplicate_rows", sa.Integer(), nullable=False),
        sa.Column("error_rows", sa.Integer(), nullable=False),
        sa.Column("warning_rows", sa.Integer(), nullable=False),
        sa.Column("progress_percentage", sa.Float(), nullable=False),
        sa.Column("batch_size", sa.Integer(), nullable=False),
        sa.Column("timeout_seconds", sa.Integer(), nullable=False),
        sa.Column("processing_config", JSON_TYPE, nullable=True),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["analysis_id"], ["file_analyses.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_processing_jobs_analysis_id", "processing_jobs", ["analysis_id"], unique=False)
    op.create_index("ix_processing_jobs_status", "processing_jobs", ["status"], unique=False)
    op.create_index("ix_processing_jobs_created_at", "processing_jobs", ["created_at"], unique=False)

    op.create_table(
        "processing_errors",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("row_number", sa.Integer(), nullable=False),
        sa.Column("column_name", sa.String(length=255), nullable=True),
        sa.Column("raw_value", sa.Text(), nullable=True),
        sa.Column("error_type", sa.String(length=64), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_resolved", sa.Boolean(), nullable=False),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["job_id"], ["processing_jobs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_processing_errors_job_id_row_number",
        "processing_errors",
        ["job_id", "row_number"],
        unique=False,
    )
    op.create_index(
        "ix_processing_errors_job_id_severity",
        "processing_errors",
        ["job_id", "severity"],
        unique=False,
    )

    # Facts
    op.create_table(
        "fact_indicator_values",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("indicator_id", sa.Uuid(), nullable=False),
        sa.Column("time_id", sa.Uuid(), nullable=True),
        sa.Column("location_id", sa.Uuid(), nullable=True),
        sa.Column("subarea_id", sa.Uuid(), nullable=True),
        sa.Column("value", sa.Numeric(precision=20, scale=6), nullable=False),
        sa.Column("source_row_hash", sa.String(length=64), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("source_file", sa.String(length=255), nullable=True),
        sa.Column("source_row_number", sa.Integer(), nullable=True),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["indicator_id"], ["indicators.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["time_id"], ["dim_time.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["location_id"], ["dim_location.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["subarea_id"], ["subareas.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["job_id"], ["processing_jobs.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source_row_hash", name="uq_fact_indicator_values_source_row_hash"),
    )
    op.create_index(
        "ix_fact_indicator_values_indicator_time",
        "fact_indicator_values",
        ["indicator_id", "time_id"],
        unique=False,
    )
    op.create_index("ix_fact_indicator_values_location_id", "fact_indicator_values", ["location_id"], unique=False)
    op.create_index("ix_fact_indicator_values_job_id", "fact_indicator_values", ["job_id"], unique=False)

    op.create_table(
        "fact_generic_links",
        sa.Column("fact_id", sa.Uuid(), nullable=False),
        sa.Column("generic_id", sa.Uuid(), nullable=False),
        sa.ForeignKeyConstraint(["fact_id"], ["fact_indicator_values.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["generic_id"], ["dim_generic.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("fact_id", "generic_id"),
    )


def downgrade() -> None:
    op.drop_table("fact_generic_links")
    op.drop_index("ix_fact_indicator_values_job_id", table_name="fact_indicator_values")
    op.drop_index("ix_fact_indicator_values_location_id", table_name="fact_indicator_values")
    op.drop_index("ix_fact_indicator_values_indicator_time", table_name="fact_indicator_values")
    op.drop_table("fact_indicator_values")
    op.drop_index("ix_processing_errors_job_id_severity", table_name="processing_errors")
    op.drop_index("ix_processing_errors_job_id_row_number", table_name="processing_errors")
    op.drop_table("processing_errors")
    op.drop_index("ix_processing_jobs_created_at", table_name="processing_jobs")
    op.drop_index("ix_processing_jobs_status", table_name="processing_jobs")
    op.drop_index("ix_processing_jobs_analysis_id", table_name="processing_jobs")
    op.drop_table("processing_jobs")
    op.drop_table("dim_generic")
    op.drop_index("ix_dim_location_name", table_name="dim_location")
    op.drop_table("dim_location")
    op.drop_index("ix_dim_time_year", table_name="dim_time")
    op.drop_table("dim_time")
    op.drop_index("ix_column_mappings_analysis_id", table_name="column_mappings")
    op.drop_table("column_mappings")
    op.drop_table("column_profiles")
    op.drop_index("ix_file_analyses_checksum", table_name="file_analyses")
    op.drop_index("ix_file_analyses_upload_ref", table_name="file_analyses")
    op.drop_table("file_analyses")
    op.drop_index("ix_indicators_subarea_id", table_name="indicators")
    op.drop_table("indicators")
    op.drop_table("subareas")
