"""
app/domain package marker.
"""

from app.domain.analysis import (
    AnalysisResult,
    ColumnProfileResult,
    ColumnView,
    MalformedInputError,
    ParsingOptions,
)
from app.domain.ingestion import (
    AnalysisNotFoundError,
    InvalidJobRequestError,
    InvalidJobStateError,
    JobStartResult,
    PipelineError,
    ProcessingErrorNotFoundError,
    ProcessingJobNotFoundError,
    RowIssue,
    RowOutcome,
    RowStatus,
)
from app.domain.mapping import (
    MappingOverride,
    MappingResolution,
    MappingWarning,
    NormalizationRuleSet,
    ResolvedMapping,
)

__all__ = [
    "AnalysisNotFoundError",
    "AnalysisResult",
    "ColumnProfileResult",
    "ColumnView",
    "InvalidJobRequestError",
    "InvalidJobStateError",
    "JobStartResult",
    "MalformedInputError",
    "MappingOverride",
    "MappingResolution",
    "MappingWarning",
    "NormalizationRuleSet",
    "ParsingOptions",
    "PipelineError",
    "ProcessingErrorNotFoundError",
    "ProcessingJobNotFoundError",
    "ResolvedMapping",
    "RowIssue",
    "RowOutcome",
    "RowStatus",
]
