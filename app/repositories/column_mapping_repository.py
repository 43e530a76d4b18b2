"""
app/repositories/column_mapping_repository.py

Persistence helpers for column mappings.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.domain.mapping import NormalizationRuleSet, ResolvedMapping
from db.models.column_mapping import ColumnMapping


class ColumnMappingRepository:
    """
    Repository for the mutable mapping set of one analysis.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def list_for_analysis(self, analysis_id: uuid.UUID) -> list[ColumnMapping]:
        stmt = (
            select(ColumnMapping)
            .where(ColumnMapping.analysis_id == analysis_id)
            .order_by(ColumnMapping.column_index.asc())
        )
        return list(self._session.execute(stmt).scalars().all())

    def replace_for_analysis(
        self,
        analysis_id: uuid.UUID,
        mappings: Sequence[ResolvedMapping],
    ) -> list[ColumnMapping]:
        """
        Drop the analysis' previous mappings and store the new set.
        """

        self._session.execute(delete(ColumnMapping).where(ColumnMapping.analysis_id == analysis_id))
        rows = [
            ColumnMapping(
                analysis_id=analysis_id,
                column_index=mapping.column_index,
                column_name=mapping.column_name,
                role=mapping.role,
                normalization_rules=mapping.rules.to_payload() if mapping.rules.rules else None,
                confidence_score=mapping.confidence,
                is_auto_detected=mapping.is_auto_detected,
                is_required=mapping.is_required,
            )
            for mapping in mappings
        ]
        self._session.add_all(rows)
        self._session.flush()
        return rows

    @staticmethod
    def to_resolved(row: ColumnMapping) -> ResolvedMapping:
        return ResolvedMapping(
            column_index=row.column_index,
            column_name=row.column_name,
            role=row.role,
            confidence=row.confidence_score,
            is_auto_detected=row.is_auto_detected,
            is_required=row.is_required,
            rules=NormalizationRuleSet.from_payload(row.normalization_rules),
        )
