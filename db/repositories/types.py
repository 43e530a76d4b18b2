"""
Typed DTOs used by repository storage and error flows.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class StoredFileMetadata:
    """
    Metadata produced by the storage backend after saving a file.
    """

    file_name: str
    storage_path: str
    mime_type: str | None
    file_size_bytes: int
    checksum: str
    stored_at: datetime


@dataclass(frozen=True)
class ProcessingErrorCreate:
    """
    One row-level issue to persist against a processing job.
    """

    row_number: int
    error_type: str
    severity: str
    message: str
    column_name: str | None = None
    raw_value: str | None = None


@dataclass(frozen=True)
class ErrorFilters:
    """
    Filters accepted by processing error listings.
    """

    error_type: str | None = None
    severity: str | None = None
    is_resolved: bool | None = None
    row_from: int | None = None
    row_to: int | None = None
    limit: int = 100
    offset: int = 0


@dataclass(frozen=True)
class JobCounters:
    """
    Counter deltas applied by the runner at a batch boundary.
    """

    job_id: uuid.UUID
    processed: int = 0
    inserted: int = 0
    duplicates: int = 0
    errors: int = 0
    warnings: int = 0
