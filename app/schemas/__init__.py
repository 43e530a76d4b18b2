"""
app/schemas package marker.
"""

from app.schemas.pipeline import (
    AnalysisResponse,
    ColumnMappingResponse,
    ColumnProfileResponse,
    ErrorResolveRequest,
    JobAcceptedResponse,
    JobCreateRequest,
    JobListResponse,
    JobStatusResponse,
    MappingOverrideRequest,
    MappingResolutionResponse,
    MappingUpdateRequest,
    MappingWarningResponse,
    ProcessingErrorPageResponse,
    ProcessingErrorResponse,
)

__all__ = [
    "AnalysisResponse",
    "ColumnMappingResponse",
    "ColumnProfileResponse",
    "ErrorResolveRequest",
    "JobAcceptedResponse",
    "JobCreateRequest",
    "JobListResponse",
    "JobStatusResponse",
    "MappingOverrideRequest",
    "MappingResolutionResponse",
    "MappingUpdateRequest",
    "MappingWarningResponse",
    "ProcessingErrorPageResponse",
    "ProcessingErrorResponse",
]
