"""
app/services/job_runner.py

Drives one processing job from PENDING to a terminal status.

The runner is the only writer of job counters, progress and error rows.
Rows are loaded in batches; each batch is one transaction. After a batch
commits the runner checks for cancellation and the elapsed-time ceiling.
Infrastructure failures roll the batch back and retry it with exponential
backoff; a PostgreSQL statement timeout ends the job as TIMEOUT.
Status changes are compare-and-set, so a job another writer has already
finished keeps its terminal status.
"""

from __future__ import annotations

import dataclasses
import logging
import time
import uuid
from collections.abc import Callable, Iterator, Sequence
from contextlib import closing
from datetime import datetime, timezone
from itertools import islice

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.config import ProcessingSettings, get_mapping_settings, get_processing_settings
from app.domain.analysis import ParsingOptions
from app.domain.ingestion import RowIssue, RowOutcome, RowStatus
from app.domain.mapping import ResolvedMapping
from app.logging_utils import log_event
from app.repositories.analysis_repository import AnalysisRepository
from app.repositories.dimension_repository import DimensionRepository
from app.repositories.fact_repository import FactRepository
from app.services.dimension_resolver import DimensionResolver
from app.services.fact_loader import FactLoader
from app.services.profiler_service import FileProfiler, get_file_profiler
from app.validators.mapping_validator import MappingValidator, SchemaMappingError
from db.models.processing_job import (
    ErrorSeverity,
    ProcessingErrorType,
    ProcessingJob,
    ProcessingStatus,
)
from db.repositories.indicator_repository import IndicatorRepository
from db.repositories.processing_error_repository import ProcessingErrorRepository
from db.repositories.processing_job_repository import ProcessingJobRepository
from db.repositories.storage import FileStorageBackend
from db.repositories.types import JobCounters, ProcessingErrorCreate

logger = logging.getLogger(__name__)

STATEMENT_TIMEOUT_SQLSTATE = "57014"


class StatementTimeoutError(RuntimeError):
    """
    Raised when the database cancels a statement for exceeding its timeout.
    """


class _StopJob(Exception):
    def __init__(self, status: str, message: str | None = None) -> None:
        super().__init__(message or status)
        self.status = status
        self.message = message


def is_statement_timeout(exc: BaseException) -> bool:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) == STATEMENT_TIMEOUT_SQLSTATE


class JobRunner:
    """
    Executes processing jobs against a session factory.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        storage: FileStorageBackend,
        profiler: FileProfiler | None = None,
        validator: MappingValidator | None = None,
        settings: ProcessingSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage
        self._profiler = profiler or get_file_profiler()
        self._settings = settings or get_processing_settings()
        self._validator = validator or MappingValidator(unique_roles=get_mapping_settings().unique_roles)
        self._sleep = sleep
        self._clock = clock

    def run(self, job_id: uuid.UUID) -> str | None:
        """
        Run one job to completion and return its final status.
        """

        with self._session_factory() as db:
            try:
                return self._run(db, job_id)
            except Exception as exc:
                self._mark_job_failed(db=db, job_id=job_id, exc=exc)
                return ProcessingStatus.FAILED

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _run(self, db: Session, job_id: uuid.UUID) -> str | None:
        jobs = ProcessingJobRepository(db)
        job = jobs.get_job(job_id)
        if job is None:
            raise RuntimeError(f"Processing job not found: {job_id}")
        if job.status != ProcessingStatus.PENDING:
            logger.info("Skipping job id=%s in status %s", job_id, job.status)
            return job.status

        analysis = AnalysisRepository(db).get_analysis(job.analysis_id)
        total_rows = analysis.row_count if analysis is not None else 0
        running = jobs.mark_running(job_id=job_id, total_rows=total_rows)
        if running is None:
            db.rollback()
            status = jobs.get_status(job_id)
            logger.info("Job id=%s left PENDING before it could start; status=%s", job_id, status)
            return status
        db.commit()
        job = running
        started = self._clock()
        log_event(logger, logging.INFO, "processing_job_started", job_id=job_id, total_rows=total_rows)

        if analysis is None:
            return self._finish(db, job, ProcessingStatus.FAILED, "Analysis not found.")
        if not analysis.upload_ref:
            return self._finish(db, job, ProcessingStatus.FAILED, "Analysis has no stored file to process.")

        config = job.processing_config or {}
        indicator_code = config.get("indicator_code")
        try:
            mappings = [ResolvedMapping.from_snapshot(item) for item in config.get("mappings", [])]
            self._validator.validate_for_job(
                mappings=mappings,
                column_count=analysis.column_count,
                indicator_code=indicator_code,
            )
        except SchemaMappingError as exc:
            return self._finish(db, job, ProcessingStatus.FAILED, exc.message)
        except (KeyError, TypeError, ValueError) as exc:
            return self._finish(db, job, ProcessingStatus.FAILED, f"Invalid processing config: {exc}")

        resolver = DimensionResolver(DimensionRepository(db))
        loader = FactLoader(
            mappings=mappings,
            resolver=resolver,
            facts=FactRepository(db),
            indicators=IndicatorRepository(db),
            job_id=job.id,
            source_file=analysis.file_name,
            indicator_code=indicator_code,
            null_tokens=self._profiler.null_tokens,
        )
        options = ParsingOptions(
            delimiter=analysis.delimiter,
            has_header=analysis.has_header,
            encoding=analysis.encoding,
        )

        if jobs.is_cancel_requested(job_id):
            return self._finish(db, job, ProcessingStatus.CANCELLED, "Cancelled on request.")

        try:
            with self._storage.open(storage_path=analysis.upload_ref) as stream, closing(
                self._profiler.iter_rows(stream, options)
            ) as rows:
                for batch in self._batches(rows, job.batch_size):
                    self._process_batch(
                        db,
                        job=job,
                        loader=loader,
                        resolver=resolver,
                        batch=batch,
                        column_count=analysis.column_count,
                    )
                    self._check_boundary(db, job=job, started=started)
        except _StopJob as stop:
            return self._finish(db, job, stop.status, stop.message)
        except StatementTimeoutError as exc:
            return self._finish(db, job, ProcessingStatus.TIMEOUT, str(exc))

        status = ProcessingStatus.COMPLETED if job.error_rows == 0 else ProcessingStatus.PARTIALLY_COMPLETED
        job.progress_percentage = 100.0
        return self._finish(db, job, status)

    def _finish(self, db: Session, job: ProcessingJob, status: str, message: str | None = None) -> str:
        jobs = ProcessingJobRepository(db)
        finished = jobs.finish(
            job_id=job.id,
            status=status,
            error_message=message,
            expected=(ProcessingStatus.RUNNING,),
        )
        if finished is None:
            db.rollback()
            current = jobs.get_status(job.id)
            logger.warning("Job id=%s is already %s; not moving it to %s", job.id, current, status)
            return current or status
        db.commit()
        log_event(
            logger,
            logging.INFO if status != ProcessingStatus.FAILED else logging.ERROR,
            "processing_job_finished",
            job_id=job.id,
            status=status,
            processed=job.processed_rows,
            inserted=job.inserted_rows,
            duplicates=job.duplicate_rows,
            errors=job.error_rows,
            warnings=job.warning_rows,
            message=message,
        )
        return status

    def _check_boundary(self, db: Session, *, job: ProcessingJob, started: float) -> None:
        jobs = ProcessingJobRepository(db)
        status = jobs.get_status(job.id)
        if status != ProcessingStatus.RUNNING:
            raise _StopJob(status or ProcessingStatus.FAILED, "Job left RUNNING outside the runner.")
        if jobs.is_cancel_requested(job.id):
            raise _StopJob(ProcessingStatus.CANCELLED, "Cancelled on request.")
        elapsed = self._clock() - started
        if elapsed > job.timeout_seconds:
            raise _StopJob(
                ProcessingStatus.TIMEOUT,
                f"Elapsed time {elapsed:.1f}s exceeded the {job.timeout_seconds}s ceiling.",
            )

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    @staticmethod
    def _batches(
        rows: Iterator[tuple[int, list[str]]],
        batch_size: int,
    ) -> Iterator[list[tuple[int, list[str]]]]:
        size = max(1, batch_size)
        while True:
            batch = list(islice(rows, size))
            if not batch:
                return
            yield batch

    def _process_batch(
        self,
        db: Session,
        *,
        job: ProcessingJob,
        loader: FactLoader,
        resolver: DimensionResolver,
        batch: Sequence[tuple[int, list[str]]],
        column_count: int,
    ) -> None:
        attempts = self._settings.max_retries + 1
        delay = self._settings.backoff_initial_seconds

        for attempt in range(1, attempts + 1):
            try:
                self._apply_statement_timeout(db)
                outcomes = [
                    self._load_row(loader, row_number, cells, column_count)
                    for row_number, cells in batch
                ]
                self._record_batch(db, job=job, outcomes=outcomes)
                db.commit()
                return
            except _StopJob:
                db.rollback()
                resolver.clear_cache()
                raise
            except SQLAlchemyError as exc:
                db.rollback()
                resolver.clear_cache()
                if is_statement_timeout(exc):
                    raise StatementTimeoutError("Database statement timeout exceeded.") from exc
                if attempt >= attempts:
                    raise
                logger.warning(
                    "Batch failed job_id=%s first_row=%s attempt=%s/%s error=%s",
                    job.id,
                    batch[0][0],
                    attempt,
                    attempts,
                    type(exc).__name__,
                )
                self._sleep(delay)
                delay *= self._settings.backoff_multiplier

    @staticmethod
    def _load_row(loader: FactLoader, row_number: int, cells: list[str], column_count: int) -> RowOutcome:
        try:
            outcome = loader.load_row(row_number, cells)
        except SQLAlchemyError:
            raise
        except Exception as exc:
            logger.exception("Unexpected failure loading row=%s", row_number)
            issue = RowIssue(
                error_type=ProcessingErrorType.ROW_PROCESSING_ERROR,
                severity=ErrorSeverity.ERROR,
                message=f"{type(exc).__name__}: {exc}"[:2000],
            )
            return RowOutcome(row_number=row_number, status=RowStatus.SKIPPED, issues=(issue,))
        if len(cells) == column_count:
            return outcome
        issue = RowIssue(
            error_type=ProcessingErrorType.MALFORMED_ROW,
            severity=ErrorSeverity.WARNING,
            message=f"Row has {len(cells)} cells, expected {column_count}.",
        )
        return dataclasses.replace(outcome, issues=(issue, *outcome.issues))

    def _record_batch(self, db: Session, *, job: ProcessingJob, outcomes: Sequence[RowOutcome]) -> None:
        errors = [
            ProcessingErrorCreate(
                row_number=outcome.row_number,
                error_type=issue.error_type,
                severity=issue.severity,
                message=issue.message,
                column_name=issue.column_name,
                raw_value=issue.raw_value,
            )
            for outcome in outcomes
            for issue in outcome.issues
        ]
        counters = JobCounters(
            job_id=job.id,
            processed=len(outcomes),
            inserted=sum(1 for outcome in outcomes if outcome.status == RowStatus.INSERTED),
            duplicates=sum(1 for outcome in outcomes if outcome.status == RowStatus.DUPLICATE),
            errors=sum(1 for outcome in outcomes if outcome.has_error),
            warnings=sum(1 for outcome in outcomes if outcome.has_warning and not outcome.has_error),
        )
        jobs = ProcessingJobRepository(db)
        if jobs.apply_counters(counters) is None:
            status = jobs.get_status(job.id)
            raise _StopJob(status or ProcessingStatus.FAILED, "Job left RUNNING outside the runner.")
        ProcessingErrorRepository(db).add_errors(job_id=job.id, errors=errors)
        db.flush()

        if self._settings.log_row_errors:
            for error in errors:
                if error.severity == ErrorSeverity.INFO:
                    continue
                logger.warning(
                    "Row issue job_id=%s row=%s type=%s column=%s message=%s",
                    job.id,
                    error.row_number,
                    error.error_type,
                    error.column_name,
                    error.message,
                )
        log_event(
            logger,
            logging.DEBUG,
            "processing_batch_committed",
            job_id=job.id,
            processed=job.processed_rows,
            total=job.total_rows,
            progress=job.progress_percentage,
        )

    def _apply_statement_timeout(self, db: Session) -> None:
        if self._settings.statement_timeout_ms <= 0:
            return
        if db.get_bind().dialect.name != "postgresql":
            return
        db.execute(text(f"SET LOCAL statement_timeout = {int(self._settings.statement_timeout_ms)}"))

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _mark_job_failed(self, *, db: Session, job_id: uuid.UUID, exc: Exception) -> None:
        repository = ProcessingJobRepository(db)
        error_message = f"{type(exc).__name__}: {exc}"
        logger.exception("Processing job failed id=%s error=%s", job_id, error_message)
        try:
            db.rollback()
            failed_job = repository.mark_failed(job_id=job_id, error_message=error_message[:2000])
            if failed_job is None:
                logger.error("Unable to mark processing job as failed; it is missing or already finished id=%s", job_id)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to persist failed processing job state id=%s", job_id)


def sweep_stale_jobs(
    session_factory: sessionmaker[Session] | Callable[[], Session],
    *,
    grace_seconds: int,
    now: datetime | None = None,
) -> list[uuid.UUID]:
    """
    Mark RUNNING jobs whose runner has gone silent past their ceiling as TIMEOUT.
    """

    current = now or datetime.now(timezone.utc)
    timed_out: list[uuid.UUID] = []
    with session_factory() as db:
        repository = ProcessingJobRepository(db)
        for job in repository.list_running():
            if repository.elapsed_seconds(job, now=current) <= job.timeout_seconds + grace_seconds:
                continue
            swept = repository.finish(
                job_id=job.id,
                status=ProcessingStatus.TIMEOUT,
                error_message="Job exceeded its time ceiling without reporting progress.",
                expected=(ProcessingStatus.RUNNING,),
            )
            if swept is not None:
                timed_out.append(job.id)
        db.commit()

    for job_id in timed_out:
        log_event(logger, logging.WARNING, "processing_job_swept", job_id=job_id, status=ProcessingStatus.TIMEOUT)
    return timed_out
