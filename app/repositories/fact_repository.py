"""
app/repositories/fact_repository.py

Persistence layer for indicator facts.

The unique source_row_hash is the final arbiter of duplicates: an insert
that hits it reports "not inserted" instead of raising.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models.fact import FactGenericLink, FactIndicatorValue


class FactRepository:
    """
    Repository for FactIndicatorValue rows and their generic dimension links.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def hash_exists(self, source_row_hash: str) -> bool:
        stmt = select(FactIndicatorValue.id).where(FactIndicatorValue.source_row_hash == source_row_hash)
        return self._session.scalar(stmt.limit(1)) is not None

    def insert_fact(
        self,
        *,
        indicator_id: uuid.UUID,
        value: Decimal,
        source_row_hash: str,
        time_id: uuid.UUID | None = None,
        location_id: uuid.UUID | None = None,
        subarea_id: uuid.UUID | None = None,
        generic_ids: Sequence[uuid.UUID] = (),
        job_id: uuid.UUID | None = None,
        source_file: str | None = None,
        source_row_number: int | None = None,
        confidence_score: float = 1.0,
    ) -> uuid.UUID | None:
        """
        Insert one fact; return its id, or None when the hash already exists.
        """

        fact_id = uuid.uuid4()
        payload = {
            "id": fact_id,
            "indicator_id": indicator_id,
            "time_id": time_id,
            "location_id": location_id,
            "subarea_id": subarea_id,
            "value": value,
            "source_row_hash": source_row_hash,
            "job_id": job_id,
            "source_file": source_file,
            "source_row_number": source_row_number,
            "confidence_score": confidence_score,
        }

        dialect = self._session.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = (
                insert(FactIndicatorValue)
                .values(**payload)
                .on_conflict_do_nothing(index_elements=["source_row_hash"])
            )
            result = self._session.execute(stmt)
            if result.rowcount == 0:
                return None
        else:
            try:
                with self._session.begin_nested():
                    self._session.add(FactIndicatorValue(**payload))
            except IntegrityError:
                return None

        unique_generic_ids = list(dict.fromkeys(generic_ids))
        if unique_generic_ids:
            self._session.add_all(
                [FactGenericLink(fact_id=fact_id, generic_id=generic_id) for generic_id in unique_generic_ids]
            )
            self._session.flush()
        return fact_id
