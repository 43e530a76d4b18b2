from __future__ import annotations

import pytest
from sqlalchemy import func, select

from app.repositories.dimension_repository import DimensionRepository
from app.services.dimension_resolver import DimensionResolutionError, DimensionResolver
from app.validators.value_parser import parse_time
from db.models.dimension import DimGeneric, DimLocation, DimTime


def _count(db, model) -> int:
    return db.scalar(select(func.count()).select_from(model))


def test_time_resolution_is_idempotent_across_resolvers(db_session) -> None:
    first = DimensionResolver(DimensionRepository(db_session))
    second = DimensionResolver(DimensionRepository(db_session))

    a = first.resolve_time(parse_time("2022-01-01"), raw_value="2022-01-01")
    b = first.resolve_time(parse_time("2022-01-01"))
    c = second.resolve_time(parse_time("2022-01-01"))

    assert a == b == c
    assert a.key == "2022-01-01"
    assert _count(db_session, DimTime) == 1


def test_location_matches_seeded_name_and_code(db_session) -> None:
    seeded = DimLocation(code="US", name="United States")
    db_session.add(seeded)
    db_session.flush()
    resolver = DimensionResolver(DimensionRepository(db_session))

    by_name = resolver.resolve_location("  united   states ")
    by_code = resolver.resolve_location("us")

    assert by_name.id == seeded.id
    assert by_name.key == "US"
    assert by_code.id == seeded.id
    assert _count(db_session, DimLocation) == 1


def test_unknown_location_is_created_with_upper_code(db_session) -> None:
    resolver = DimensionResolver(DimensionRepository(db_session))

    created = resolver.resolve_location("Lisbon")
    resolver.clear_cache()
    again = resolver.resolve_location("LISBON")

    assert created.key == "LISBON"
    assert again.id == created.id
    location = db_session.get(DimLocation, created.id)
    assert location.name == "Lisbon"


def test_generic_dimension_key_and_reuse(db_session) -> None:
    resolver = DimensionResolver(DimensionRepository(db_session))

    first = resolver.resolve_generic(" SOURCE ", " World Bank ")
    resolver.clear_cache()
    second = resolver.resolve_generic("SOURCE", "World Bank")

    assert first == second
    assert first.key == "SOURCE=World Bank"
    assert _count(db_session, DimGeneric) == 1


def test_checks_reject_empty_and_oversized_values() -> None:
    with pytest.raises(DimensionResolutionError):
        DimensionResolver.check_location("   ")
    with pytest.raises(DimensionResolutionError):
        DimensionResolver.check_location("x" * 121)
    with pytest.raises(DimensionResolutionError):
        DimensionResolver.check_generic("UNIT", " ")
    with pytest.raises(DimensionResolutionError):
        DimensionResolver.check_generic("", "kg")
