"""
app/repositories/dimension_repository.py

Idempotent lookup-or-create for the shared dimension tables.

Creation is an upsert keyed by the natural key followed by a lookup, so two
writers racing on the same value both end up with the surviving row.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.validators.value_parser import ParsedTime
from db.models.dimension import DimGeneric, DimLocation, DimTime


class DimensionRepository:
    """
    Repository for DimTime, DimLocation and DimGeneric rows.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_or_create_time(self, parsed: ParsedTime, *, raw_value: str | None = None) -> uuid.UUID:
        values = {
            "time_key": parsed.time_key,
            "granularity": parsed.granularity,
            "year": parsed.year,
            "quarter": parsed.quarter,
            "month": parsed.month,
            "day": parsed.day,
            "period_start": parsed.period_start,
            "label": parsed.label,
            "raw_value": raw_value,
        }
        lookup = select(DimTime.id).where(DimTime.time_key == parsed.time_key)
        return self._upsert(DimTime, values, index_elements=("time_key",), lookup=lookup)

    def find_location(self, value: str) -> tuple[uuid.UUID, str] | None:
        """
        Match by upper-cased code first, then by case-insensitive name.
        """

        by_code = self._session.execute(
            select(DimLocation.id, DimLocation.code).where(DimLocation.code == value.upper())
        ).first()
        if by_code is not None:
            return by_code[0], by_code[1]

        by_name = self._session.execute(
            select(DimLocation.id, DimLocation.code)
            .where(func.lower(DimLocation.name) == value.lower())
            .order_by(DimLocation.code.asc())
            .limit(1)
        ).first()
        if by_name is not None:
            return by_name[0], by_name[1]
        return None

    def get_or_create_location(self, value: str) -> tuple[uuid.UUID, str]:
        """
        Return ``(id, code)`` of the matching location, creating it when absent.
        """

        existing = self.find_location(value)
        if existing is not None:
            return existing

        code = value.upper()
        values = {
            "code": code,
            "name": value,
            "location_type": None,
            "parent_id": None,
            "level": None,
            "raw_value": value,
        }
        lookup = select(DimLocation.id).where(DimLocation.code == code)
        return self._upsert(DimLocation, values, index_elements=("code",), lookup=lookup), code

    def get_or_create_generic(self, dimension_name: str, value: str) -> uuid.UUID:
        values = {"dimension_name": dimension_name, "value": value}
        lookup = select(DimGeneric.id).where(
            DimGeneric.dimension_name == dimension_name,
            DimGeneric.value == value,
        )
        return self._upsert(
            DimGeneric,
            values,
            index_elements=("dimension_name", "value"),
            lookup=lookup,
        )

    def _upsert(
        self,
        model: type[Any],
        values: dict[str, Any],
        *,
        index_elements: tuple[str, ...],
        lookup: Select,
    ) -> uuid.UUID:
        existing = self._session.scalar(lookup)
        if existing is not None:
            return existing

        payload = {"id": uuid.uuid4(), **values}
        dialect = self._session.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = insert(model).values(**payload).on_conflict_do_nothing(index_elements=list(index_elements))
            self._session.execute(stmt)
        else:
            try:
                with self._session.begin_nested():
                    self._session.add(model(**payload))
            except IntegrityError:
                pass

        resolved = self._session.scalar(lookup)
        if resolved is None:
            raise RuntimeError(f"{model.__tablename__} row vanished after upsert: {values}")
        return resolved
