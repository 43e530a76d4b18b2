"""
app/repositories/analysis_repository.py

Persistence for file analyses and their column profiles.
"""

from __future__ import annotations

import uuid

from sqlalchemy.orm import Session

from app.domain.analysis import AnalysisResult, ColumnView
from db.models.file_analysis import ColumnProfile, FileAnalysis


class AnalysisRepository:
    """
    Analyses are written once together with their columns and never updated.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def create_analysis(
        self,
        result: AnalysisResult,
        *,
        file_name: str,
        upload_ref: str | None = None,
        content_type: str | None = None,
    ) -> FileAnalysis:
        analysis = FileAnalysis(
            upload_ref=upload_ref,
            file_name=file_name,
            content_type=content_type,
            file_size_bytes=result.file_size_bytes,
            checksum=result.checksum,
            row_count=result.row_count,
            column_count=result.column_count,
            ragged_row_count=result.ragged_row_count,
            delimiter=result.delimiter,
            encoding=result.encoding,
            has_header=result.has_header,
            headers=list(result.headers),
            columns=[
                ColumnProfile(
                    column_index=column.column_index,
                    name=column.name,
                    data_type=column.data_type,
                    sample_values=list(column.sample_values),
                    null_count=column.null_count,
                    empty_count=column.empty_count,
                    unique_count=column.unique_count,
                )
                for column in result.columns
            ],
        )
        self._session.add(analysis)
        self._session.flush()
        return analysis

    def get_analysis(self, analysis_id: uuid.UUID) -> FileAnalysis | None:
        return self._session.get(FileAnalysis, analysis_id)

    @staticmethod
    def column_views(analysis: FileAnalysis) -> list[ColumnView]:
        return [
            ColumnView(
                column_index=column.column_index,
                name=column.name,
                data_type=column.data_type,
                sample_values=tuple(str(value) for value in column.sample_values or ()),
            )
            for column in analysis.columns
        ]
