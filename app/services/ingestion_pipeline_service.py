"""
app/services/ingestion_pipeline_service.py

Entry points of the ingestion pipeline: analyze a file, resolve its
mappings, start and supervise processing jobs, and review row errors.

Job execution is handed to an IngestionTaskExecutor so the HTTP layer can
run it in FastAPI background tasks and other callers can run it inline.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from functools import lru_cache
from typing import Any, BinaryIO, Protocol

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session, sessionmaker

from app.config import (
    ProcessingSettings,
    get_processing_settings,
    get_storage_settings,
)
from app.domain.analysis import ParsingOptions
from app.domain.ingestion import (
    AnalysisNotFoundError,
    InvalidJobRequestError,
    InvalidJobStateError,
    JobStartResult,
    ProcessingErrorNotFoundError,
    ProcessingJobNotFoundError,
)
from app.domain.mapping import MappingOverride, MappingResolution, ResolvedMapping
from app.logging_utils import log_event
from app.mappers.dimension_mapper import DimensionMapper, get_dimension_mapper
from app.repositories.analysis_repository import AnalysisRepository
from app.repositories.column_mapping_repository import ColumnMappingRepository
from app.services.job_runner import JobRunner
from app.services.profiler_service import FileProfiler, get_file_profiler
from db.models.column_mapping import ColumnMapping
from db.models.file_analysis import FileAnalysis
from db.models.processing_job import ProcessingError, ProcessingJob, ProcessingStatus
from db.repositories.processing_error_repository import ProcessingErrorRepository
from db.repositories.processing_job_repository import ProcessingJobRepository
from db.repositories.storage import FileStorageBackend, LocalFileStorage
from db.repositories.types import ErrorFilters

logger = logging.getLogger(__name__)


class IngestionTaskExecutor(Protocol):
    def submit(self, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        ...


class FastAPIBackgroundTaskExecutor:
    def __init__(self, background_tasks: BackgroundTasks) -> None:
        self._background_tasks = background_tasks

    def submit(self, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self._background_tasks.add_task(task, *args, **kwargs)


class IngestionPipelineService:
    """
    Coordinates profiling, mapping resolution and processing jobs.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | Callable[[], Session] | None = None,
        storage: FileStorageBackend | None = None,
        profiler: FileProfiler | None = None,
        mapper: DimensionMapper | None = None,
        settings: ProcessingSettings | None = None,
        runner: JobRunner | None = None,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory

        self._storage = storage or LocalFileStorage(get_storage_settings().root_dir)
        self._profiler = profiler or get_file_profiler()
        self._mapper = mapper or get_dimension_mapper()
        self._settings = settings or get_processing_settings()
        self._runner = runner or JobRunner(
            session_factory=self._session_factory,
            storage=self._storage,
            profiler=self._profiler,
            validator=self._mapper.validator,
            settings=self._settings,
        )

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(
        self,
        *,
        db: Session,
        stream: BinaryIO | bytes,
        file_name: str,
        options: ParsingOptions | None = None,
        upload_ref: str | None = None,
        content_type: str | None = None,
    ) -> FileAnalysis:
        """
        Profile a file and persist the analysis.

        When no ``upload_ref`` is given the bytes are stored first so a job
        can re-read them later. Raises MalformedInputError.
        """

        content = stream if isinstance(stream, bytes) else stream.read()
        result = self._profiler.analyze(content, options)

        if upload_ref is None:
            stored = self._storage.save(file_name=file_name, content=content, content_type=content_type)
            upload_ref = stored.storage_path
            file_name = stored.file_name
            content_type = stored.mime_type

        analysis = AnalysisRepository(db).create_analysis(
            result,
            file_name=file_name,
            upload_ref=upload_ref,
            content_type=content_type,
        )
        db.commit()
        log_event(
            logger,
            logging.INFO,
            "file_analyzed",
            analysis_id=analysis.id,
            file_name=file_name,
            rows=result.row_count,
            columns=result.column_count,
        )
        return analysis

    def get_analysis(self, *, db: Session, analysis_id: uuid.UUID) -> FileAnalysis:
        analysis = AnalysisRepository(db).get_analysis(analysis_id)
        if analysis is None:
            raise AnalysisNotFoundError(f"Analysis not found: {analysis_id}")
        return analysis

    # ------------------------------------------------------------------
    # Mappings
    # ------------------------------------------------------------------

    def resolve_mappings(
        self,
        *,
        db: Session,
        analysis_id: uuid.UUID,
        overrides: Sequence[MappingOverride] | None = None,
    ) -> MappingResolution:
        """
        Resolve and persist the analysis' mappings, replacing earlier ones.

        Raises SchemaMappingError when an override is invalid.
        """

        analysis = self.get_analysis(db=db, analysis_id=analysis_id)
        resolution = self._mapper.resolve(AnalysisRepository.column_views(analysis), overrides)
        ColumnMappingRepository(db).replace_for_analysis(analysis.id, resolution.mappings)
        db.commit()
        log_event(
            logger,
            logging.INFO,
            "mappings_resolved",
            analysis_id=analysis.id,
            mappings=len(resolution.mappings),
            warnings=[warning.code for warning in resolution.warnings],
        )
        return resolution

    def list_mappings(self, *, db: Session, analysis_id: uuid.UUID) -> list[ColumnMapping]:
        self.get_analysis(db=db, analysis_id=analysis_id)
        return ColumnMappingRepository(db).list_for_analysis(analysis_id)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def start_job(
        self,
        *,
        db: Session,
        executor: IngestionTaskExecutor,
        analysis_id: uuid.UUID,
        mappings: Sequence[ResolvedMapping] | None = None,
        batch_size: int | None = None,
        indicator_code: str | None = None,
        timeout_seconds: int | None = None,
    ) -> JobStartResult:
        """
        Freeze the mapping set into a new PENDING job and submit it.
        """

        size = batch_size if batch_size is not None else self._settings.batch_size
        if not 1 <= size <= self._settings.max_batch_size:
            raise InvalidJobRequestError(
                f"batch_size must be between 1 and {self._settings.max_batch_size}."
            )
        timeout = timeout_seconds if timeout_seconds is not None else self._settings.timeout_seconds
        if timeout < 1:
            raise InvalidJobRequestError("timeout_seconds must be positive.")

        analysis = self.get_analysis(db=db, analysis_id=analysis_id)
        if mappings is None:
            rows = ColumnMappingRepository(db).list_for_analysis(analysis.id)
            mappings = [ColumnMappingRepository.to_resolved(row) for row in rows]

        code = (indicator_code or self._settings.default_indicator_code or "").strip() or None
        processing_config = {
            "version": 1,
            "mappings": [mapping.to_snapshot() for mapping in mappings],
            "indicator_code": code,
        }

        repository = ProcessingJobRepository(db)
        job = repository.create_job(
            analysis_id=analysis.id,
            batch_size=size,
            timeout_seconds=timeout,
            processing_config=processing_config,
        )
        db.commit()
        log_event(logger, logging.INFO, "processing_job_created", job_id=job.id, analysis_id=analysis.id)

        try:
            executor.submit(self._runner.run, job.id)
        except Exception:
            repository.mark_failed(job_id=job.id, error_message="Failed to schedule processing job.")
            db.commit()
            raise

        return JobStartResult(job_id=job.id, status=job.status)

    def get_job_status(self, *, db: Session, job_id: uuid.UUID) -> ProcessingJob:
        job = ProcessingJobRepository(db).get_job(job_id)
        if job is None:
            raise ProcessingJobNotFoundError(f"Processing job not found: {job_id}")
        db.refresh(job)
        return job

    def list_jobs(
        self,
        *,
        db: Session,
        status: str | None = None,
        analysis_id: uuid.UUID | None = None,
        limit: int = 100,
    ) -> list[ProcessingJob]:
        return ProcessingJobRepository(db).list_jobs(
            limit=limit,
            status=status.upper() if status else None,
            analysis_id=analysis_id,
        )

    def cancel_job(self, *, db: Session, job_id: uuid.UUID) -> ProcessingJob:
        """
        PENDING jobs are cancelled at once; RUNNING jobs stop at the next batch boundary.
        """

        repository = ProcessingJobRepository(db)
        self.get_job_status(db=db, job_id=job_id)
        if repository.request_cancel(job_id=job_id) is None:
            db.rollback()
            job = self.get_job_status(db=db, job_id=job_id)
            raise InvalidJobStateError(f"Job {job_id} is already {job.status}.")

        # A runner that won the race to RUNNING sees the flag at its next batch boundary.
        repository.finish(
            job_id=job_id,
            status=ProcessingStatus.CANCELLED,
            error_message="Cancelled before start.",
            expected=(ProcessingStatus.PENDING,),
        )
        db.commit()
        job = self.get_job_status(db=db, job_id=job_id)
        log_event(logger, logging.INFO, "processing_job_cancel_requested", job_id=job_id, status=job.status)
        return job

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def list_errors(
        self,
        *,
        db: Session,
        job_id: uuid.UUID,
        filters: ErrorFilters | None = None,
    ) -> tuple[list[ProcessingError], int]:
        """
        Return one page of the job's errors and the total matching count.
        """

        self.get_job_status(db=db, job_id=job_id)
        repository = ProcessingErrorRepository(db)
        return (
            repository.list_errors(job_id=job_id, filters=filters),
            repository.count_errors(job_id=job_id, filters=filters),
        )

    def resolve_error(
        self,
        *,
        db: Session,
        error_id: uuid.UUID,
        notes: str | None = None,
    ) -> ProcessingError:
        error = ProcessingErrorRepository(db).resolve_error(error_id=error_id, notes=notes)
        if error is None:
            raise ProcessingErrorNotFoundError(f"Processing error not found: {error_id}")
        db.commit()
        return error


@lru_cache(maxsize=1)
def get_ingestion_pipeline_service() -> IngestionPipelineService:
    return IngestionPipelineService()
