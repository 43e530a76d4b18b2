"""
app/validators package marker.
"""

from app.validators.mapping_validator import MappingErrorDetail, MappingValidator, SchemaMappingError
from app.validators.value_parser import TimeParseError, ValueParseError

__all__ = [
    "MappingErrorDetail",
    "MappingValidator",
    "SchemaMappingError",
    "TimeParseError",
    "ValueParseError",
]
