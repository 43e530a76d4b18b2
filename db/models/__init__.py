"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.column_mapping import ColumnMapping, DimensionRole
from db.models.dimension import DimGeneric, DimLocation, DimTime, TimeGranularity
from db.models.fact import FactGenericLink, FactIndicatorValue
from db.models.file_analysis import ColumnDataType, ColumnProfile, FileAnalysis
from db.models.processing_job import (
    ErrorSeverity,
    ProcessingError,
    ProcessingErrorType,
    ProcessingJob,
    ProcessingStatus,
)
from db.models.reference import Indicator, Subarea

__all__ = [
    "FileAnalysis",
    "ColumnProfile",
    "ColumnDataType",
    "ColumnMapping",
    "DimensionRole",
    "DimTime",
    "DimLocation",
    "DimGeneric",
    "TimeGranularity",
    "Indicator",
    "Subarea",
    "FactIndicatorValue",
    "FactGenericLink",
    "ProcessingJob",
    "ProcessingError",
    "ProcessingStatus",
    "ProcessingErrorType",
    "ErrorSeverity",
]
