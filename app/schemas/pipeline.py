"""
Schemas for the analysis, mapping, job and error endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.domain.mapping import NormalizationRuleSet


# ---------------------------------------------------------------------------
# Analyses
# ---------------------------------------------------------------------------


class ColumnProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    column_index: int
    name: str
    data_type: str
    sample_values: list[str] = Field(default_factory=list)
    null_count: int
    empty_count: int
    unique_count: int


class AnalysisResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    file_name: str
    content_type: str | None = None
    file_size_bytes: int
    checksum: str
    row_count: int
    column_count: int
    ragged_row_count: int
    delimiter: str
    encoding: str
    has_header: bool
    headers: list[str] = Field(default_factory=list)
    columns: list[ColumnProfileResponse] = Field(default_factory=list)
    created_at: datetime


# ---------------------------------------------------------------------------
# Mappings
# ---------------------------------------------------------------------------


class MappingOverrideRequest(BaseModel):
    column_index: int = Field(..., ge=0)
    role: str | None = Field(default=None, description="Dimension role; null leaves the column unmapped")
    rules: NormalizationRuleSet | None = None
    is_required: bool = False


class MappingUpdateRequest(BaseModel):
    overrides: list[MappingOverrideRequest] = Field(default_factory=list)


class ColumnMappingResponse(BaseModel):
    column_index: int
    column_name: str
    role: str
    confidence: float
    is_auto_detected: bool
    is_required: bool
    rules: NormalizationRuleSet


class MappingWarningResponse(BaseModel):
    code: str
    message: str
    column_index: int | None = None
    role: str | None = None
    context: dict[str, Any] | None = None


class MappingResolutionResponse(BaseModel):
    analysis_id: UUID
    mappings: list[ColumnMappingResponse] = Field(default_factory=list)
    warnings: list[MappingWarningResponse] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class JobCreateRequest(BaseModel):
    analysis_id: UUID
    batch_size: int | None = Field(default=None, ge=1)
    timeout_seconds: int | None = Field(default=None, ge=1)
    indicator_code: str | None = Field(default=None, max_length=64)


class JobAcceptedResponse(BaseModel):
    job_id: UUID
    status: str


class JobStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    analysis_id: UUID
    status: str
    total_rows: int
    processed_rows: int
    inserted_rows: int
    duplicate_rows: int
    error_rows: int
    warning_rows: int
    progress_percentage: float
    batch_size: int
    timeout_seconds: int
    cancel_requested: bool
    error_message: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None


class JobListResponse(BaseModel):
    jobs: list[JobStatusResponse] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ProcessingErrorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_id: UUID
    row_number: int
    column_name: str | None = None
    raw_value: str | None = None
    error_type: str
    severity: str
    message: str
    is_resolved: bool
    resolution_notes: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime


class ProcessingErrorPageResponse(BaseModel):
    job_id: UUID
    total: int
    limit: int
    offset: int
    errors: list[ProcessingErrorResponse] = Field(default_factory=list)


class ErrorResolveRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)
