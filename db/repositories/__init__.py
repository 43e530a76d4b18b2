"""
Repository layer exports.
"""

from db.repositories.errors import (
    FileStorageError,
    JobNotFoundError,
    RepositoryError,
    TerminalJobError,
)
from db.repositories.indicator_repository import IndicatorCatalog, IndicatorRepository
from db.repositories.processing_error_repository import ProcessingErrorRepository
from db.repositories.processing_job_repository import ProcessingJobRepository, compute_progress
from db.repositories.storage import FileStorageBackend, LocalFileStorage
from db.repositories.types import ErrorFilters, JobCounters, ProcessingErrorCreate, StoredFileMetadata

__all__ = [
    "ProcessingJobRepository",
    "ProcessingErrorRepository",
    "IndicatorRepository",
    "IndicatorCatalog",
    "FileStorageBackend",
    "LocalFileStorage",
    "StoredFileMetadata",
    "ProcessingErrorCreate",
    "ErrorFilters",
    "JobCounters",
    "compute_progress",
    "RepositoryError",
    "FileStorageError",
    "JobNotFoundError",
    "TerminalJobError",
]
