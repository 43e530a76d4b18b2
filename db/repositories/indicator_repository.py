"""
Read-only access to the indicator reference catalog.
"""

from __future__ import annotations

from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models.reference import Indicator


class IndicatorCatalog(Protocol):
    """
    Lookup of reference indicators by code.
    """

    def get_by_code(self, code: str) -> Indicator | None:
        ...


class IndicatorRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_by_code(self, code: str) -> Indicator | None:
        normalized = code.strip()
        if not normalized:
            return None
        indicator = self._session.scalar(select(Indicator).where(Indicator.code == normalized))
        if indicator is not None:
            return indicator
        stmt = select(Indicator).where(func.upper(Indicator.code) == normalized.upper()).limit(1)
        return self._session.scalar(stmt)

    def list_codes(self) -> list[str]:
        return list(self._session.scalars(select(Indicator.code).order_by(Indicator.code)).all())
