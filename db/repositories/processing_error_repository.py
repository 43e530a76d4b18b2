"""
Repository for row-level processing errors.

Errors are frozen once their job reaches a terminal status: new rows are
refused, only the resolution state stays editable.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from db.models.processing_job import TERMINAL_STATUSES, ProcessingError, ProcessingJob
from db.repositories.errors import JobNotFoundError, TerminalJobError
from db.repositories.types import ErrorFilters, ProcessingErrorCreate

_MAX_PAGE_SIZE = 1000


class ProcessingErrorRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def add_errors(
        self,
        *,
        job_id: uuid.UUID,
        errors: Sequence[ProcessingErrorCreate],
    ) -> int:
        if not errors:
            return 0

        status = self._session.scalar(select(ProcessingJob.status).where(ProcessingJob.id == job_id))
        if status is None:
            raise JobNotFoundError(f"Processing job not found: {job_id}")
        if status in TERMINAL_STATUSES:
            raise TerminalJobError(f"Processing job {job_id} is {status}; errors are frozen.")

        self._session.add_all(
            [
                ProcessingError(
                    job_id=job_id,
                    row_number=error.row_number,
                    column_name=error.column_name,
                    raw_value=error.raw_value,
                    error_type=error.error_type,
                    severity=error.severity,
                    message=error.message,
                    is_resolved=False,
                )
                for error in errors
            ]
        )
        self._session.flush()
        return len(errors)

    def get_error(self, error_id: uuid.UUID) -> ProcessingError | None:
        return self._session.get(ProcessingError, error_id)

    def list_errors(
        self,
        *,
        job_id: uuid.UUID,
        filters: ErrorFilters | None = None,
    ) -> list[ProcessingError]:
        filters = filters or ErrorFilters()
        stmt = self._filtered(select(ProcessingError), job_id=job_id, filters=filters)
        stmt = (
            stmt.order_by(ProcessingError.row_number.asc(), ProcessingError.created_at.asc())
            .offset(max(0, filters.offset))
            .limit(max(1, min(filters.limit, _MAX_PAGE_SIZE)))
        )
        return list(self._session.scalars(stmt).all())

    def count_errors(
        self,
        *,
        job_id: uuid.UUID,
        filters: ErrorFilters | None = None,
    ) -> int:
        stmt = self._filtered(
            select(func.count()).select_from(ProcessingError),
            job_id=job_id,
            filters=filters or ErrorFilters(),
        )
        return int(self._session.scalar(stmt) or 0)

    def resolve_error(
        self,
        *,
        error_id: uuid.UUID,
        notes: str | None = None,
    ) -> ProcessingError | None:
        error = self.get_error(error_id)
        if error is None:
            return None
        error.is_resolved = True
        error.resolution_notes = notes
        error.resolved_at = datetime.now(timezone.utc)
        return error

    @staticmethod
    def _filtered(stmt: Select, *, job_id: uuid.UUID, filters: ErrorFilters) -> Select:
        stmt = stmt.where(ProcessingError.job_id == job_id)
        if filters.error_type:
            stmt = stmt.where(ProcessingError.error_type == filters.error_type)
        if filters.severity:
            stmt = stmt.where(ProcessingError.severity == filters.severity.upper())
        if filters.is_resolved is not None:
            stmt = stmt.where(ProcessingError.is_resolved.is_(filters.is_resolved))
        if filters.row_from is not None:
            stmt = stmt.where(ProcessingError.row_number >= filters.row_from)
        if filters.row_to is not None:
            stmt = stmt.where(ProcessingError.row_number <= filters.row_to)
        return stmt
