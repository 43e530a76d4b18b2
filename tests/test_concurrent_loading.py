from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func, select

from app.domain.ingestion import RowStatus
from app.domain.mapping import ResolvedMapping
from app.repositories.dimension_repository import DimensionRepository
from app.repositories.fact_repository import FactRepository
from app.services.dimension_resolver import DimensionResolver
from app.services.fact_loader import FactLoader
from app.validators.value_parser import parse_time
from db.models.column_mapping import DimensionRole
from db.models.dimension import DimGeneric, DimLocation, DimTime
from db.models.fact import FactIndicatorValue
from db.models.processing_job import ErrorSeverity, ProcessingErrorType
from db.repositories.indicator_repository import IndicatorRepository


def _mapping(index: int, name: str, role: str) -> ResolvedMapping:
    return ResolvedMapping(column_index=index, column_name=name, role=role, confidence=1.0, is_auto_detected=False)


MAPPINGS = [
    _mapping(0, "date", DimensionRole.TIME),
    _mapping(1, "country", DimensionRole.LOCATION),
    _mapping(2, "value", DimensionRole.INDICATOR_VALUE),
]


def _count(session_factory, model) -> int:
    with session_factory() as db:
        return db.scalar(select(func.count()).select_from(model))


def _miss_first_lookup(monkeypatch, db, rival) -> None:
    """
    Make the session's first lookup come back empty after ``rival`` has
    committed the same row, as when two writers check before either inserts.
    """

    original = db.scalar
    state = {"raced": False}

    def scalar(statement, *args, **kwargs):
        if not state["raced"]:
            state["raced"] = True
            rival()
            return None
        return original(statement, *args, **kwargs)

    monkeypatch.setattr(db, "scalar", scalar)


def _resolve_and_commit(session_factory, resolve):
    def rival() -> None:
        with session_factory() as other:
            resolve(DimensionResolver(DimensionRepository(other)))
            other.commit()

    return rival


def test_racing_time_upserts_share_one_row(session_factory, monkeypatch) -> None:
    parsed = parse_time("2022-Q1")

    with session_factory() as db:
        rival = _resolve_and_commit(session_factory, lambda resolver: resolver.resolve_time(parsed))
        _miss_first_lookup(monkeypatch, db, rival)
        loser = DimensionResolver(DimensionRepository(db)).resolve_time(parsed)
        db.commit()

    with session_factory() as db:
        winner = DimensionResolver(DimensionRepository(db)).resolve_time(parsed)

    assert loser == winner
    assert _count(session_factory, DimTime) == 1


def test_racing_location_upserts_share_one_row(session_factory, monkeypatch) -> None:
    with session_factory() as db:
        rival = _resolve_and_commit(session_factory, lambda resolver: resolver.resolve_location("Lisbon"))
        _miss_first_lookup(monkeypatch, db, rival)
        loser = DimensionResolver(DimensionRepository(db)).resolve_location("Lisbon")
        db.commit()

    assert loser.key == "LISBON"
    assert _count(session_factory, DimLocation) == 1


def test_racing_generic_upserts_share_one_row(session_factory, monkeypatch) -> None:
    with session_factory() as db:
        rival = _resolve_and_commit(session_factory, lambda resolver: resolver.resolve_generic("UNIT", "USD"))
        _miss_first_lookup(monkeypatch, db, rival)
        loser = DimensionResolver(DimensionRepository(db)).resolve_generic("UNIT", "USD")
        db.commit()

    with session_factory() as db:
        winner = DimensionResolver(DimensionRepository(db)).resolve_generic("UNIT", "USD")

    assert loser == winner
    assert _count(session_factory, DimGeneric) == 1


def test_insert_fact_reports_an_existing_hash_as_not_inserted(db_session) -> None:
    indicator = IndicatorRepository(db_session).get_by_code("GDP")
    facts = FactRepository(db_session)

    first = facts.insert_fact(indicator_id=indicator.id, value=Decimal("1"), source_row_hash="a" * 64)
    second = facts.insert_fact(indicator_id=indicator.id, value=Decimal("2"), source_row_hash="a" * 64)

    assert first is not None
    assert second is None
    assert db_session.scalar(select(func.count()).select_from(FactIndicatorValue)) == 1


def _loader(db) -> FactLoader:
    return FactLoader(
        mappings=MAPPINGS,
        resolver=DimensionResolver(DimensionRepository(db)),
        facts=FactRepository(db),
        indicators=IndicatorRepository(db),
        indicator_code="GDP",
        source_file="sample.csv",
    )


def test_losing_fact_insert_becomes_duplicate_row(session_factory, monkeypatch) -> None:
    row = ["2022-01-01", "US", "4.5"]

    with session_factory() as first:
        winner = _loader(first).load_row(2, row)
        first.commit()

    # The second writer checked for the hash before the first one committed.
    monkeypatch.setattr(FactRepository, "hash_exists", lambda self, source_row_hash: False)
    with session_factory() as second:
        loser = _loader(second).load_row(2, row)
        second.commit()

    assert winner.status == RowStatus.INSERTED
    assert loser.status == RowStatus.DUPLICATE
    assert [issue.error_type for issue in loser.issues] == [ProcessingErrorType.DUPLICATE_ROW]
    assert loser.issues[0].severity == ErrorSeverity.INFO
    assert _count(session_factory, FactIndicatorValue) == 1
    assert _count(session_factory, DimTime) == 1
    assert _count(session_factory, DimLocation) == 1
