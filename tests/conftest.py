from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

import db.models  # noqa: F401 registers all ORM models on Base.metadata
from app.config import DEFAULT_NULL_TOKENS, ProcessingSettings
from app.mappers.dimension_mapper import DimensionMapper
from app.services.ingestion_pipeline_service import IngestionPipelineService
from app.services.job_runner import JobRunner
from app.services.profiler_service import FileProfiler
from db.base import Base
from db.models.reference import Indicator, Subarea
from db.repositories.storage import LocalFileStorage
from db.session import build_session_factory, create_db_engine


class InlineTaskExecutor:
    """Runs submitted tasks immediately in the calling thread."""

    def __init__(self) -> None:
        self.submitted: list[Any] = []

    def submit(self, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self.submitted.append(args)
        task(*args, **kwargs)


@pytest.fixture
def engine(tmp_path) -> Iterator[Engine]:
    engine = create_db_engine(f"sqlite:///{tmp_path / 'warehouse.db'}")
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    factory = build_session_factory(engine)
    with factory() as db:
        subarea = Subarea(code="ECON", name="Economy")
        db.add(subarea)
        db.flush()
        db.add_all(
            [
                Indicator(code="GDP", name="Gross domestic product", unit="USD", subarea_id=subarea.id),
                Indicator(code="POP", name="Population", unit="persons"),
            ]
        )
        db.commit()
    return factory


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    with session_factory() as db:
        yield db


@pytest.fixture
def storage(tmp_path) -> LocalFileStorage:
    return LocalFileStorage(tmp_path / "uploads")


@pytest.fixture
def profiler() -> FileProfiler:
    return FileProfiler(sample_size=5, null_tokens=DEFAULT_NULL_TOKENS)


@pytest.fixture
def mapper() -> DimensionMapper:
    return DimensionMapper()


@pytest.fixture
def processing_settings() -> ProcessingSettings:
    return ProcessingSettings(
        batch_size=100,
        max_batch_size=5000,
        timeout_seconds=3600,
        max_retries=2,
        backoff_initial_seconds=0.5,
        backoff_multiplier=2.0,
        statement_timeout_ms=0,
        stale_job_grace_seconds=60,
        log_row_errors=False,
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_runner(
    session_factory: sessionmaker[Session],
    storage: LocalFileStorage,
    profiler: FileProfiler,
    mapper: DimensionMapper,
    processing_settings: ProcessingSettings,
    sleeps: list[float],
) -> Callable[..., JobRunner]:
    def _make(**overrides: Any) -> JobRunner:
        options: dict[str, Any] = {
            "session_factory": session_factory,
            "storage": storage,
            "profiler": profiler,
            "validator": mapper.validator,
            "settings": processing_settings,
            "sleep": sleeps.append,
        }
        options.update(overrides)
        return JobRunner(**options)

    return _make


@pytest.fixture
def make_service(
    session_factory: sessionmaker[Session],
    storage: LocalFileStorage,
    profiler: FileProfiler,
    mapper: DimensionMapper,
    processing_settings: ProcessingSettings,
    make_runner: Callable[..., JobRunner],
) -> Callable[..., IngestionPipelineService]:
    def _make(runner: JobRunner | None = None) -> IngestionPipelineService:
        return IngestionPipelineService(
            session_factory=session_factory,
            storage=storage,
            profiler=profiler,
            mapper=mapper,
            settings=processing_settings,
            runner=runner or make_runner(),
        )

    return _make


@pytest.fixture
def service(make_service: Callable[..., IngestionPipelineService]) -> IngestionPipelineService:
    return make_service()


@pytest.fixture
def executor() -> InlineTaskExecutor:
    return InlineTaskExecutor()
