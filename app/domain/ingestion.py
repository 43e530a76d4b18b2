"""
app/domain/ingestion.py

Domain models for row loading and job orchestration.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from db.models.processing_job import ErrorSeverity


class RowStatus:
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RowIssue:
    """
    One problem found while loading a row.
    """

    error_type: str
    severity: str
    message: str
    column_name: str | None = None
    raw_value: str | None = None


@dataclass(frozen=True)
class RowOutcome:
    """
    Result of loading one source row, returned to the job runner.
    """

    row_number: int
    status: str
    issues: tuple[RowIssue, ...] = field(default_factory=tuple)
    fact_id: uuid.UUID | None = None

    @property
    def has_error(self) -> bool:
        return any(issue.severity == ErrorSeverity.ERROR for issue in self.issues)

    @property
    def has_warning(self) -> bool:
        return any(issue.severity == ErrorSeverity.WARNING for issue in self.issues)


@dataclass(frozen=True)
class JobStartResult:
    """
    Identifier and initial state of a submitted job.
    """

    job_id: uuid.UUID
    status: str


class PipelineError(Exception):
    """Base exception for ingestion pipeline operations."""


class AnalysisNotFoundError(PipelineError):
    """Raised when a referenced file analysis does not exist."""


class ProcessingJobNotFoundError(PipelineError):
    """Raised when a referenced processing job does not exist."""


class ProcessingErrorNotFoundError(PipelineError):
    """Raised when a referenced processing error does not exist."""


class InvalidJobStateError(PipelineError):
    """Raised when an operation is not allowed in the job's current status."""


class InvalidJobRequestError(PipelineError, ValueError):
    """Raised when job options (batch size, timeout) are out of bounds."""
