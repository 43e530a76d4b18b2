"""
app/api/routers/pipeline.py

File analysis, mapping, processing job and error review endpoints.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Form, HTTPException, Query, UploadFile, status
from sqlalchemy.orm import Session

from app.api.dependencies import get_delimited_upload
from app.domain.analysis import MalformedInputError, ParsingOptions
from app.domain.ingestion import (
    AnalysisNotFoundError,
    InvalidJobRequestError,
    InvalidJobStateError,
    ProcessingErrorNotFoundError,
    ProcessingJobNotFoundError,
)
from app.domain.mapping import MappingOverride, MappingResolution, ResolvedMapping
from app.repositories.column_mapping_repository import ColumnMappingRepository
from app.schemas.pipeline import (
    AnalysisResponse,
    ColumnMappingResponse,
    ErrorResolveRequest,
    JobAcceptedResponse,
    JobCreateRequest,
    JobListResponse,
    JobStatusResponse,
    MappingResolutionResponse,
    MappingUpdateRequest,
    MappingWarningResponse,
    ProcessingErrorPageResponse,
    ProcessingErrorResponse,
)
from app.services.ingestion_pipeline_service import (
    FastAPIBackgroundTaskExecutor,
    IngestionPipelineService,
    get_ingestion_pipeline_service,
)
from app.validators.mapping_validator import SchemaMappingError
from db.repositories.types import ErrorFilters
from db.session import get_db

router = APIRouter(tags=["ingestion-pipeline"])


# ---------------------------------------------------------------------------
# Analyses
# ---------------------------------------------------------------------------


@router.post(
    "/analyses",
    status_code=status.HTTP_201_CREATED,
    response_model=AnalysisResponse,
)
def create_analysis(
    file: UploadFile = Depends(get_delimited_upload),
    delimiter: str | None = Form(default=None, max_length=1),
    has_header: bool | None = Form(default=None),
    encoding: str | None = Form(default=None),
    db: Session = Depends(get_db),
    pipeline: IngestionPipelineService = Depends(get_ingestion_pipeline_service),
) -> AnalysisResponse:
    """
    Upload a delimited file and profile it.
    """

    try:
        analysis = pipeline.analyze(
            db=db,
            stream=file.file,
            file_name=file.filename or "upload.csv",
            options=ParsingOptions(delimiter=delimiter, has_header=has_header, encoding=encoding),
            content_type=file.content_type,
        )
    except MalformedInputError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.to_dict(),
        ) from exc
    finally:
        file.file.close()

    return AnalysisResponse.model_validate(analysis)


@router.get("/analyses/{analysis_id}", response_model=AnalysisResponse)
def get_analysis(
    analysis_id: UUID,
    db: Session = Depends(get_db),
    pipeline: IngestionPipelineService = Depends(get_ingestion_pipeline_service),
) -> AnalysisResponse:
    try:
        analysis = pipeline.get_analysis(db=db, analysis_id=analysis_id)
    except AnalysisNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return AnalysisResponse.model_validate(analysis)


# ---------------------------------------------------------------------------
# Mappings
# ---------------------------------------------------------------------------


@router.put("/analyses/{analysis_id}/mappings", response_model=MappingResolutionResponse)
def update_mappings(
    analysis_id: UUID,
    payload: MappingUpdateRequest,
    db: Session = Depends(get_db),
    pipeline: IngestionPipelineService = Depends(get_ingestion_pipeline_service),
) -> MappingResolutionResponse:
    """
    Resolve column roles, applying any caller overrides, and store them.
    """

    overrides = [
        MappingOverride(
            column_index=item.column_index,
            role=item.role,
            rules=item.rules,
            is_required=item.is_required,
        )
        for item in payload.overrides
    ]
    try:
        resolution = pipeline.resolve_mappings(db=db, analysis_id=analysis_id, overrides=overrides)
    except AnalysisNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except SchemaMappingError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.to_dict(),
        ) from exc

    return _to_resolution_response(analysis_id, resolution)


@router.get("/analyses/{analysis_id}/mappings", response_model=MappingResolutionResponse)
def list_mappings(
    analysis_id: UUID,
    db: Session = Depends(get_db),
    pipeline: IngestionPipelineService = Depends(get_ingestion_pipeline_service),
) -> MappingResolutionResponse:
    try:
        rows = pipeline.list_mappings(db=db, analysis_id=analysis_id)
    except AnalysisNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return MappingResolutionResponse(
        analysis_id=analysis_id,
        mappings=[_to_mapping_response(ColumnMappingRepository.to_resolved(row)) for row in rows],
    )


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


@router.post(
    "/jobs",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobAcceptedResponse,
)
def start_job(
    payload: JobCreateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    pipeline: IngestionPipelineService = Depends(get_ingestion_pipeline_service),
) -> JobAcceptedResponse:
    try:
        result = pipeline.start_job(
            db=db,
            executor=FastAPIBackgroundTaskExecutor(background_tasks),
            analysis_id=payload.analysis_id,
            batch_size=payload.batch_size,
            indicator_code=payload.indicator_code,
            timeout_seconds=payload.timeout_seconds,
        )
    except AnalysisNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidJobRequestError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    return JobAcceptedResponse(job_id=result.job_id, status=result.status)


@router.get("/jobs", response_model=JobListResponse)
def list_jobs(
    status_filter: str | None = Query(default=None, alias="status", description="Optional status filter"),
    analysis_id: UUID | None = Query(default=None, description="Optional analysis filter"),
    limit: int = Query(default=100, ge=1, le=500, description="Max jobs returned"),
    db: Session = Depends(get_db),
    pipeline: IngestionPipelineService = Depends(get_ingestion_pipeline_service),
) -> JobListResponse:
    jobs = pipeline.list_jobs(db=db, status=status_filter, analysis_id=analysis_id, limit=limit)
    return JobListResponse(jobs=[JobStatusResponse.model_validate(job) for job in jobs])


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
def get_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    pipeline: IngestionPipelineService = Depends(get_ingestion_pipeline_service),
) -> JobStatusResponse:
    try:
        job = pipeline.get_job_status(db=db, job_id=job_id)
    except ProcessingJobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobStatusResponse.model_validate(job)


@router.post("/jobs/{job_id}/cancel", response_model=JobStatusResponse)
def cancel_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    pipeline: IngestionPipelineService = Depends(get_ingestion_pipeline_service),
) -> JobStatusResponse:
    try:
        job = pipeline.cancel_job(db=db, job_id=job_id)
    except ProcessingJobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidJobStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return JobStatusResponse.model_validate(job)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


@router.get("/jobs/{job_id}/errors", response_model=ProcessingErrorPageResponse)
def list_job_errors(
    job_id: UUID,
    error_type: str | None = Query(default=None, description="Optional error type filter"),
    severity: str | None = Query(default=None, description="Optional severity filter"),
    is_resolved: bool | None = Query(default=None),
    row_from: int | None = Query(default=None, ge=1),
    row_to: int | None = Query(default=None, ge=1),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    pipeline: IngestionPipelineService = Depends(get_ingestion_pipeline_service),
) -> ProcessingErrorPageResponse:
    filters = ErrorFilters(
        error_type=error_type,
        severity=severity.upper() if severity else None,
        is_resolved=is_resolved,
        row_from=row_from,
        row_to=row_to,
        limit=limit,
        offset=offset,
    )
    try:
        errors, total = pipeline.list_errors(db=db, job_id=job_id, filters=filters)
    except ProcessingJobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return ProcessingErrorPageResponse(
        job_id=job_id,
        total=total,
        limit=limit,
        offset=offset,
        errors=[ProcessingErrorResponse.model_validate(error) for error in errors],
    )


@router.post("/errors/{error_id}/resolve", response_model=ProcessingErrorResponse)
def resolve_error(
    error_id: UUID,
    payload: ErrorResolveRequest,
    db: Session = Depends(get_db),
    pipeline: IngestionPipelineService = Depends(get_ingestion_pipeline_service),
) -> ProcessingErrorResponse:
    try:
        error = pipeline.resolve_error(db=db, error_id=error_id, notes=payload.notes)
    except ProcessingErrorNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return ProcessingErrorResponse.model_validate(error)


def _to_mapping_response(mapping: ResolvedMapping) -> ColumnMappingResponse:
    return ColumnMappingResponse(
        column_index=mapping.column_index,
        column_name=mapping.column_name,
        role=mapping.role,
        confidence=mapping.confidence,
        is_auto_detected=mapping.is_auto_detected,
        is_required=mapping.is_required,
        rules=mapping.rules,
    )


def _to_resolution_response(analysis_id: UUID, resolution: MappingResolution) -> MappingResolutionResponse:
    return MappingResolutionResponse(
        analysis_id=analysis_id,
        mappings=[_to_mapping_response(mapping) for mapping in resolution.mappings],
        warnings=[
            MappingWarningResponse(
                code=warning.code,
                message=warning.message,
                column_index=warning.column_index,
                role=warning.role,
                context=warning.context,
            )
            for warning in resolution.warnings
        ],
    )
