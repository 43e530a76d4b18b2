"""
Repository-layer exceptions for storage and processing-job flows.
"""

from __future__ import annotations


class RepositoryError(Exception):
    """Base exception for repository failures."""


class FileStorageError(RepositoryError):
    """Raised when storing, reading or deleting uploaded files fails."""


class JobNotFoundError(RepositoryError):
    """Raised when a referenced processing job does not exist."""


class TerminalJobError(RepositoryError):
    """Raised when writing row errors against a job that has already finished."""
