"""
app/domain/analysis.py

Domain models for file profiling.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class MalformedInputError(ValueError):
    """
    Raised when an uploaded file cannot be decoded or tokenized.
    """

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "context": self.context}


@dataclass(frozen=True)
class ParsingOptions:
    """
    Parsing hints for one file. ``None`` means detect.
    """

    delimiter: str | None = None
    has_header: bool | None = None
    encoding: str | None = None
    ragged_row_tolerance: float | None = None


@dataclass(frozen=True)
class ColumnProfileResult:
    """
    Inferred structure of one column.
    """

    column_index: int
    name: str
    data_type: str
    sample_values: tuple[str, ...]
    null_count: int
    empty_count: int
    unique_count: int


@dataclass(frozen=True)
class AnalysisResult:
    """
    Profile of a whole file, as produced by the profiler.
    """

    row_count: int
    column_count: int
    delimiter: str
    encoding: str
    has_header: bool
    headers: tuple[str, ...]
    columns: tuple[ColumnProfileResult, ...]
    ragged_row_count: int = 0
    checksum: str = ""
    file_size_bytes: int = 0

    def parsing_options(self) -> ParsingOptions:
        """
        Options that reproduce this analysis when re-reading the rows.
        """

        return ParsingOptions(
            delimiter=self.delimiter,
            has_header=self.has_header,
            encoding=self.encoding,
        )


@dataclass(frozen=True)
class ColumnView:
    """
    Column information needed by the mapping resolver.
    """

    column_index: int
    name: str
    data_type: str
    sample_values: tuple[str, ...] = field(default_factory=tuple)
