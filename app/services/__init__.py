"""
app/services package marker.
"""

from app.services.ingestion_pipeline_service import (
    FastAPIBackgroundTaskExecutor,
    IngestionPipelineService,
    IngestionTaskExecutor,
    get_ingestion_pipeline_service,
)
from app.services.job_runner import JobRunner, sweep_stale_jobs
from app.services.profiler_service import FileProfiler, get_file_profiler

__all__ = [
    "FastAPIBackgroundTaskExecutor",
    "FileProfiler",
    "IngestionPipelineService",
    "IngestionTaskExecutor",
    "JobRunner",
    "get_file_profiler",
    "get_ingestion_pipeline_service",
    "sweep_stale_jobs",
]
