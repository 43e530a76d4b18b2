"""
app/services/dimension_resolver.py

Normalizes raw cells into dimension records.

Resolution is idempotent: the same normalized value always yields the same
record id, within a job (through the cache) and across jobs (through the
natural-key upsert). The cache must be cleared whenever the caller rolls
back, since cached ids may belong to rows that were never committed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from app.repositories.dimension_repository import DimensionRepository
from app.validators.value_parser import ParsedTime

logger = logging.getLogger(__name__)

MAX_LOCATION_LENGTH = 120
MAX_DIMENSION_NAME_LENGTH = 120
MAX_GENERIC_VALUE_LENGTH = 500


class DimensionResolutionError(ValueError):
    """
    Raised when a cell cannot become a dimension record.
    """


@dataclass(frozen=True)
class ResolvedDimension:
    """
    Dimension record id plus the natural key used in row hashes.
    """

    id: uuid.UUID
    key: str


def normalize_location(raw: str) -> str:
    return " ".join(raw.split())


class DimensionResolver:
    """
    Lookup-or-create front for the dimension tables, with a per-run cache.
    """

    def __init__(self, repository: DimensionRepository) -> None:
        self._repository = repository
        self._time_cache: dict[str, uuid.UUID] = {}
        self._location_cache: dict[str, ResolvedDimension] = {}
        self._generic_cache: dict[tuple[str, str], uuid.UUID] = {}

    def clear_cache(self) -> None:
        self._time_cache.clear()
        self._location_cache.clear()
        self._generic_cache.clear()

    def resolve_time(self, parsed: ParsedTime, *, raw_value: str | None = None) -> ResolvedDimension:
        key = parsed.time_key
        cached = self._time_cache.get(key)
        if cached is None:
            cached = self._repository.get_or_create_time(parsed, raw_value=raw_value)
            self._time_cache[key] = cached
        return ResolvedDimension(id=cached, key=key)

    @staticmethod
    def check_location(raw: str) -> str:
        """
        Normalize a location cell without touching the database.
        """

        value = normalize_location(raw)
        if not value:
            raise DimensionResolutionError("Location value is empty.")
        if len(value) > MAX_LOCATION_LENGTH:
            raise DimensionResolutionError(f"Location value exceeds {MAX_LOCATION_LENGTH} characters.")
        return value

    @staticmethod
    def check_generic(dimension_name: str, raw: str) -> tuple[str, str]:
        """
        Normalize a generic ``(name, value)`` pair without touching the database.
        """

        name = dimension_name.strip()
        value = raw.strip()
        if not name:
            raise DimensionResolutionError("Dimension name is empty.")
        if not value:
            raise DimensionResolutionError(f"Value for dimension '{name}' is empty.")
        if len(name) > MAX_DIMENSION_NAME_LENGTH:
            raise DimensionResolutionError(f"Dimension name exceeds {MAX_DIMENSION_NAME_LENGTH} characters.")
        if len(value) > MAX_GENERIC_VALUE_LENGTH:
            raise DimensionResolutionError(f"Dimension value exceeds {MAX_GENERIC_VALUE_LENGTH} characters.")
        return name, value

    def resolve_location(self, raw: str) -> ResolvedDimension:
        value = self.check_location(raw)
        cache_key = value.lower()
        cached = self._location_cache.get(cache_key)
        if cached is None:
            location_id, code = self._repository.get_or_create_location(value)
            cached = ResolvedDimension(id=location_id, key=code)
            self._location_cache[cache_key] = cached
        return cached

    def resolve_generic(self, dimension_name: str, raw: str) -> ResolvedDimension:
        name, value = self.check_generic(dimension_name, raw)
        cache_key = (name, value)
        cached = self._generic_cache.get(cache_key)
        if cached is None:
            cached = self._repository.get_or_create_generic(name, value)
            self._generic_cache[cache_key] = cached
        return ResolvedDimension(id=cached, key=f"{name}={value}")
