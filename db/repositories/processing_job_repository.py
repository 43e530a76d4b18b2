"""
Repository for processing job lifecycle persistence and status lookup.
"""

from __future__ import annotations

import uuid
from collections.abc import Collection
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, select, update
from sqlalchemy.orm import Session

from db.models.processing_job import TERMINAL_STATUSES, ProcessingJob, ProcessingStatus
from db.repositories.types import JobCounters

# Progress never reports completion before the last row is processed.
_MAX_PARTIAL_PROGRESS = 99.99

_ACTIVE_STATUSES: tuple[str, ...] = (ProcessingStatus.PENDING, ProcessingStatus.RUNNING)


def compute_progress(*, processed: int, total: int, previous: float = 0.0) -> float:
    """
    Monotonic progress percentage; exactly 100 only when processed == total.
    """

    if total <= 0 or processed >= total:
        return 100.0
    current = min(round(processed / total * 100, 2), _MAX_PARTIAL_PROGRESS)
    return max(previous, current)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ProcessingJobRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_job(
        self,
        *,
        analysis_id: uuid.UUID,
        batch_size: int,
        timeout_seconds: int,
        processing_config: dict[str, Any] | None = None,
    ) -> ProcessingJob:
        job = ProcessingJob(
            analysis_id=analysis_id,
            status=ProcessingStatus.PENDING,
            batch_size=batch_size,
            timeout_seconds=timeout_seconds,
            processing_config=processing_config,
            total_rows=0,
            processed_rows=0,
            inserted_rows=0,
            duplicate_rows=0,
            error_rows=0,
            warning_rows=0,
            progress_percentage=0.0,
            cancel_requested=False,
        )
        self._session.add(job)
        self._session.flush()
        self._session.refresh(job)
        return job

    def get_job(self, job_id: uuid.UUID) -> ProcessingJob | None:
        return self._session.get(ProcessingJob, job_id)

    def get_status(self, job_id: uuid.UUID) -> str | None:
        return self._session.scalar(select(ProcessingJob.status).where(ProcessingJob.id == job_id))

    def is_cancel_requested(self, job_id: uuid.UUID) -> bool:
        """
        Read the flag straight from the database so a cancel issued by
        another session is visible to the runner.
        """

        stmt = select(ProcessingJob.cancel_requested).where(ProcessingJob.id == job_id)
        return bool(self._session.scalar(stmt))

    def list_jobs(
        self,
        *,
        limit: int = 100,
        status: str | None = None,
        analysis_id: uuid.UUID | None = None,
    ) -> list[ProcessingJob]:
        stmt: Select[tuple[ProcessingJob]] = select(ProcessingJob)

        if status:
            stmt = stmt.where(ProcessingJob.status == status)
        if analysis_id is not None:
            stmt = stmt.where(ProcessingJob.analysis_id == analysis_id)

        stmt = stmt.order_by(ProcessingJob.created_at.desc()).limit(max(1, limit))
        return list(self._session.scalars(stmt).all())

    def list_running(self) -> list[ProcessingJob]:
        stmt = select(ProcessingJob).where(ProcessingJob.status == ProcessingStatus.RUNNING)
        return list(self._session.scalars(stmt).all())

    def mark_running(self, *, job_id: uuid.UUID, total_rows: int) -> ProcessingJob | None:
        """
        Move a PENDING job to RUNNING. Returns None when the job is gone or
        another writer moved it first.
        """

        return self._transition(
            job_id,
            expected=(ProcessingStatus.PENDING,),
            values={
                "status": ProcessingStatus.RUNNING,
                "total_rows": total_rows,
                "started_at": datetime.now(timezone.utc),
                "finished_at": None,
                "error_message": None,
            },
        )

    def apply_counters(self, counters: JobCounters) -> ProcessingJob | None:
        """
        Add one batch's counters to a RUNNING job; None once it has left RUNNING.
        """

        job = self._transition(
            counters.job_id,
            expected=(ProcessingStatus.RUNNING,),
            values={
                "processed_rows": ProcessingJob.processed_rows + counters.processed,
                "inserted_rows": ProcessingJob.inserted_rows + counters.inserted,
                "duplicate_rows": ProcessingJob.duplicate_rows + counters.duplicates,
                "error_rows": ProcessingJob.error_rows + counters.errors,
                "warning_rows": ProcessingJob.warning_rows + counters.warnings,
            },
        )
        if job is None:
            return None
        job.progress_percentage = compute_progress(
            processed=job.processed_rows,
            total=job.total_rows,
            previous=job.progress_percentage,
        )
        return job

    def request_cancel(self, *, job_id: uuid.UUID) -> ProcessingJob | None:
        return self._transition(
            job_id,
            expected=_ACTIVE_STATUSES,
            values={"cancel_requested": True},
        )

    def finish(
        self,
        *,
        job_id: uuid.UUID,
        status: str,
        error_message: str | None = None,
        expected: Collection[str] = _ACTIVE_STATUSES,
    ) -> ProcessingJob | None:
        """
        Move the job to a terminal status, only from one of ``expected``.
        A terminal job is never moved again.
        """

        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal status: {status}")
        return self._transition(
            job_id,
            expected=tuple(item for item in expected if item not in TERMINAL_STATUSES),
            values={
                "status": status,
                "finished_at": datetime.now(timezone.utc),
                "error_message": error_message,
            },
        )

    def mark_failed(self, *, job_id: uuid.UUID, error_message: str) -> ProcessingJob | None:
        return self.finish(job_id=job_id, status=ProcessingStatus.FAILED, error_message=error_message)

    def elapsed_seconds(self, job: ProcessingJob, *, now: datetime | None = None) -> float:
        started_at = _as_utc(job.started_at)
        if started_at is None:
            return 0.0
        current = now or datetime.now(timezone.utc)
        return (current - started_at).total_seconds()

    def _transition(
        self,
        job_id: uuid.UUID,
        *,
        expected: Collection[str],
        values: dict[str, Any],
    ) -> ProcessingJob | None:
        # Compare-and-set on status; the row count says whether this writer won.
        if not expected:
            return None
        self._session.flush()
        stmt = (
            update(ProcessingJob)
            .where(ProcessingJob.id == job_id, ProcessingJob.status.in_(tuple(expected)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        if result.rowcount != 1:
            return None
        return self._session.get(ProcessingJob, job_id, populate_existing=True)
