"""
app/repositories package marker.
"""

from app.repositories.analysis_repository import AnalysisRepository
from app.repositories.column_mapping_repository import ColumnMappingRepository
from app.repositories.dimension_repository import DimensionRepository
from app.repositories.fact_repository import FactRepository

__all__ = [
    "AnalysisRepository",
    "ColumnMappingRepository",
    "DimensionRepository",
    "FactRepository",
]
