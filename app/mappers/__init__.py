"""
app/mappers package marker.
"""

from app.mappers.dimension_mapper import DimensionMapper, get_dimension_mapper, load_synonyms

__all__ = [
    "DimensionMapper",
    "get_dimension_mapper",
    "load_synonyms",
]
