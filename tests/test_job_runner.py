from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from app.domain.ingestion import AnalysisNotFoundError, InvalidJobRequestError, InvalidJobStateError
from app.domain.mapping import MappingOverride
from app.repositories.analysis_repository import AnalysisRepository
from app.repositories.fact_repository import FactRepository
from app.services.dimension_resolver import DimensionResolver
from app.services.job_runner import is_statement_timeout, sweep_stale_jobs
from db.models.column_mapping import DimensionRole
from db.models.fact import FactIndicatorValue
from db.models.processing_job import ErrorSeverity, ProcessingErrorType, ProcessingJob, ProcessingStatus
from db.repositories.processing_job_repository import ProcessingJobRepository, compute_progress
from db.repositories.types import ErrorFilters

SAMPLE = b"date,country,value\n2022-01-01,US,4.5\n"


class DeferredExecutor:
    def __init__(self) -> None:
        self.tasks: list[tuple[Callable[..., Any], tuple[Any, ...]]] = []

    def submit(self, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self.tasks.append((task, args))

    def run_all(self) -> list[Any]:
        return [task(*args) for task, args in self.tasks]


class FailingExecutor:
    def submit(self, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        raise RuntimeError("queue unavailable")


def _start(service, session_factory, executor, content=SAMPLE, overrides=None, **job_options):
    job_options.setdefault("indicator_code", "GDP")
    with session_factory() as db:
        analysis = service.analyze(db=db, stream=content, file_name="sample.csv")
        service.resolve_mappings(db=db, analysis_id=analysis.id, overrides=overrides)
        return service.start_job(db=db, executor=executor, analysis_id=analysis.id, **job_options)


def _job(session_factory, job_id) -> ProcessingJob:
    with session_factory() as db:
        return db.get(ProcessingJob, job_id)


def _many_rows(count: int, bad_index: int | None = None) -> bytes:
    lines = ["year,country,value"]
    for index in range(count):
        value = "abc" if index == bad_index else str(index)
        lines.append(f"2020,C{index % 50},{value}")
    return ("\n".join(lines) + "\n").encode("utf-8")


VALUE_OVERRIDE = [MappingOverride(column_index=2, role=DimensionRole.INDICATOR_VALUE)]


def test_reupload_is_loaded_once(service, session_factory, executor) -> None:
    first = _start(service, session_factory, executor)
    second = _start(service, session_factory, executor)

    first_job = _job(session_factory, first.job_id)
    second_job = _job(session_factory, second.job_id)
    assert first_job.status == ProcessingStatus.COMPLETED
    assert first_job.inserted_rows == 1
    assert first_job.progress_percentage == 100.0
    assert second_job.status == ProcessingStatus.COMPLETED
    assert second_job.inserted_rows == 0
    assert second_job.duplicate_rows == 1
    assert second_job.error_rows == 0

    with session_factory() as db:
        assert db.scalar(select(func.count()).select_from(FactIndicatorValue)) == 1
        errors, total = service.list_errors(db=db, job_id=second.job_id)
    assert total == 1
    assert errors[0].error_type == ProcessingErrorType.DUPLICATE_ROW
    assert errors[0].severity == ErrorSeverity.INFO


def test_bad_row_yields_partial_completion(service, session_factory, executor) -> None:
    result = _start(
        service,
        session_factory,
        executor,
        content=_many_rows(1000, bad_index=500),
        overrides=VALUE_OVERRIDE,
        batch_size=100,
    )

    job = _job(session_factory, result.job_id)
    assert job.status == ProcessingStatus.PARTIALLY_COMPLETED
    assert job.total_rows == 1000
    assert job.processed_rows == 1000
    assert job.inserted_rows == 999
    assert job.error_rows == 1
    assert job.progress_percentage == 100.0
    assert job.finished_at is not None

    with session_factory() as db:
        errors, total = service.list_errors(
            db=db, job_id=result.job_id, filters=ErrorFilters(severity="error")
        )
        assert total == 1
        assert errors[0].row_number == 502
        assert errors[0].error_type == ProcessingErrorType.VALUE_PARSE_ERROR
        assert errors[0].raw_value == "abc"

        resolved = service.resolve_error(db=db, error_id=errors[0].id, notes="source fixed upstream")
        assert resolved.is_resolved
        _, open_total = service.list_errors(
            db=db, job_id=result.job_id, filters=ErrorFilters(is_resolved=False)
        )
        assert open_total == 0


def test_progress_is_monotonic_and_ends_at_100(make_service, make_runner, session_factory, executor) -> None:
    observed: list[float] = []

    def clock() -> float:
        with session_factory() as db:
            observed.append(db.scalar(select(ProcessingJob.progress_percentage)))
        return 0.0

    service = make_service(runner=make_runner(clock=clock))
    _start(service, session_factory, executor, content=_many_rows(250), overrides=VALUE_OVERRIDE, batch_size=100)

    assert observed == sorted(observed)
    assert observed[0] == 0.0
    assert observed[1:] == [40.0, 80.0, 100.0]


def test_compute_progress_caps_until_done() -> None:
    assert compute_progress(processed=9999, total=10000) == 99.99
    assert compute_progress(processed=10, total=100, previous=50.0) == 50.0
    assert compute_progress(processed=100, total=100) == 100.0
    assert compute_progress(processed=0, total=0) == 100.0


def test_cancel_stops_at_next_batch_boundary(make_service, make_runner, session_factory, executor) -> None:
    calls = {"count": 0}

    def clock() -> float:
        calls["count"] += 1
        if calls["count"] == 2:
            with session_factory() as db:
                db.execute(update(ProcessingJob).values(cancel_requested=True))
                db.commit()
        return 0.0

    service = make_service(runner=make_runner(clock=clock))
    result = _start(service, session_factory, executor, content=_many_rows(5), overrides=VALUE_OVERRIDE, batch_size=1)

    job = _job(session_factory, result.job_id)
    assert job.status == ProcessingStatus.CANCELLED
    assert job.processed_rows == 2
    assert job.inserted_rows == 2
    assert job.progress_percentage < 100.0


def test_elapsed_time_ceiling_ends_job_as_timeout(make_service, make_runner, session_factory, executor) -> None:
    ticks = iter([0.0, 61.0])
    service = make_service(runner=make_runner(clock=lambda: next(ticks)))

    result = _start(
        service,
        session_factory,
        executor,
        content=_many_rows(3),
        overrides=VALUE_OVERRIDE,
        batch_size=1,
        timeout_seconds=60,
    )

    job = _job(session_factory, result.job_id)
    assert job.status == ProcessingStatus.TIMEOUT
    assert job.processed_rows == 1
    assert "exceeded" in job.error_message


def test_persistent_database_failure_retries_then_fails(
    service, session_factory, executor, sleeps, monkeypatch
) -> None:
    def broken(self, **kwargs):
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    monkeypatch.setattr(FactRepository, "insert_fact", broken)

    result = _start(service, session_factory, executor)

    job = _job(session_factory, result.job_id)
    assert sleeps == [0.5, 1.0]
    assert job.status == ProcessingStatus.FAILED
    assert job.error_message.startswith("OperationalError")
    assert job.processed_rows == 0


def test_transient_database_failure_is_retried(service, session_factory, executor, sleeps, monkeypatch) -> None:
    original = FactRepository.insert_fact
    calls = {"count": 0}

    def flaky(self, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("INSERT", {}, Exception("database is locked"))
        return original(self, **kwargs)

    monkeypatch.setattr(FactRepository, "insert_fact", flaky)

    result = _start(service, session_factory, executor)

    job = _job(session_factory, result.job_id)
    assert sleeps == [0.5]
    assert job.status == ProcessingStatus.COMPLETED
    assert job.inserted_rows == 1


def test_statement_timeout_is_detected_by_sqlstate() -> None:
    class _Orig(Exception):
        sqlstate = "57014"

    assert is_statement_timeout(OperationalError("SELECT 1", {}, _Orig()))
    assert not is_statement_timeout(OperationalError("SELECT 1", {}, Exception("locked")))


def test_job_with_unloadable_mappings_fails(service, session_factory, executor) -> None:
    overrides = [
        MappingOverride(column_index=0, role=None),
        MappingOverride(column_index=1, role=None),
        MappingOverride(column_index=2, role=None),
    ]

    result = _start(service, session_factory, executor, overrides=overrides)

    job = _job(session_factory, result.job_id)
    assert job.status == ProcessingStatus.FAILED
    assert "missing_indicator_value" in job.error_message


def test_pending_job_cancel_is_immediate(service, session_factory) -> None:
    executor = DeferredExecutor()
    result = _start(service, session_factory, executor)

    with session_factory() as db:
        cancelled = service.cancel_job(db=db, job_id=result.job_id)
        assert cancelled.status == ProcessingStatus.CANCELLED
        assert cancelled.cancel_requested

        with pytest.raises(InvalidJobStateError):
            service.cancel_job(db=db, job_id=result.job_id)

    assert executor.run_all() == [ProcessingStatus.CANCELLED]
    assert _job(session_factory, result.job_id).processed_rows == 0


def test_start_job_validates_options(service, session_factory, executor) -> None:
    with pytest.raises(InvalidJobRequestError):
        _start(service, session_factory, executor, batch_size=0)
    with pytest.raises(InvalidJobRequestError):
        _start(service, session_factory, executor, batch_size=5001)
    with pytest.raises(InvalidJobRequestError):
        _start(service, session_factory, executor, timeout_seconds=0)

    with session_factory() as db, pytest.raises(AnalysisNotFoundError):
        service.start_job(db=db, executor=executor, analysis_id=uuid.uuid4())


def test_submit_failure_marks_job_failed(service, session_factory) -> None:
    with pytest.raises(RuntimeError):
        _start(service, session_factory, FailingExecutor())

    with session_factory() as db:
        jobs = service.list_jobs(db=db, status="failed")
    assert len(jobs) == 1
    assert jobs[0].error_message == "Failed to schedule processing job."


def test_sweeper_times_out_silent_running_jobs(service, session_factory) -> None:
    stale = _start(service, session_factory, DeferredExecutor(), timeout_seconds=60)
    fresh = _start(service, session_factory, DeferredExecutor(), timeout_seconds=60)

    with session_factory() as db:
        repository = ProcessingJobRepository(db)
        repository.mark_running(job_id=stale.job_id, total_rows=1)
        repository.mark_running(job_id=fresh.job_id, total_rows=1)
        repository.get_job(stale.job_id).started_at = datetime.now(timezone.utc) - timedelta(hours=2)
        db.commit()

    swept = sweep_stale_jobs(session_factory, grace_seconds=60)

    assert swept == [stale.job_id]
    assert _job(session_factory, stale.job_id).status == ProcessingStatus.TIMEOUT
    assert _job(session_factory, fresh.job_id).status == ProcessingStatus.RUNNING


YEAR_ZERO_ROWS = b"year,country,value\n2020,US,1\n0000,FR,2\n2021,DE,3\n"


def test_out_of_range_year_is_a_row_error(service, session_factory, executor) -> None:
    overrides = [
        MappingOverride(column_index=0, role=DimensionRole.TIME, is_required=True),
        MappingOverride(column_index=1, role=DimensionRole.LOCATION),
        *VALUE_OVERRIDE,
    ]

    result = _start(service, session_factory, executor, content=YEAR_ZERO_ROWS, overrides=overrides)

    job = _job(session_factory, result.job_id)
    assert job.status == ProcessingStatus.PARTIALLY_COMPLETED
    assert job.inserted_rows == 2
    assert job.error_rows == 1

    with session_factory() as db:
        errors, total = service.list_errors(db=db, job_id=result.job_id)
    assert total == 1
    assert errors[0].row_number == 3
    assert errors[0].error_type == ProcessingErrorType.DIMENSION_RESOLUTION_ERROR
    assert errors[0].raw_value == "0000"


def test_unexpected_row_failure_does_not_fail_the_job(service, session_factory, executor, monkeypatch) -> None:
    original = DimensionResolver.resolve_location

    def fragile(self, raw):
        if raw == "FR":
            raise ValueError("boom")
        return original(self, raw)

    monkeypatch.setattr(DimensionResolver, "resolve_location", fragile)
    overrides = [MappingOverride(column_index=1, role=DimensionRole.LOCATION), *VALUE_OVERRIDE]

    content = YEAR_ZERO_ROWS.replace(b"0000", b"2019")

    result = _start(service, session_factory, executor, content=content, overrides=overrides)

    job = _job(session_factory, result.job_id)
    assert job.status == ProcessingStatus.PARTIALLY_COMPLETED
    assert job.inserted_rows == 2
    assert job.error_rows == 1

    with session_factory() as db:
        errors, _ = service.list_errors(db=db, job_id=result.job_id)
    assert errors[0].row_number == 3
    assert errors[0].error_type == ProcessingErrorType.ROW_PROCESSING_ERROR
    assert errors[0].message == "ValueError: boom"


def test_timeout_from_sweeper_is_not_overwritten(make_service, make_runner, session_factory, executor) -> None:
    calls = {"count": 0}

    def clock() -> float:
        calls["count"] += 1
        if calls["count"] == 2:
            sweep_stale_jobs(session_factory, grace_seconds=0, now=datetime.now(timezone.utc) + timedelta(hours=2))
        return 0.0

    service = make_service(runner=make_runner(clock=clock))
    result = _start(service, session_factory, executor, content=_many_rows(3), overrides=VALUE_OVERRIDE, batch_size=1)

    job = _job(session_factory, result.job_id)
    assert job.status == ProcessingStatus.TIMEOUT
    assert job.error_message == "Job exceeded its time ceiling without reporting progress."
    assert job.processed_rows == 1
    assert job.inserted_rows == 1
    with session_factory() as db:
        assert db.scalar(select(func.count()).select_from(FactIndicatorValue)) == 1


def test_finish_never_leaves_a_terminal_status(service, session_factory, executor) -> None:
    result = _start(service, session_factory, executor)

    with session_factory() as db:
        repository = ProcessingJobRepository(db)
        assert repository.finish(job_id=result.job_id, status=ProcessingStatus.FAILED, error_message="late") is None
        assert repository.mark_running(job_id=result.job_id, total_rows=5) is None
        assert repository.request_cancel(job_id=result.job_id) is None
        db.commit()

    job = _job(session_factory, result.job_id)
    assert job.status == ProcessingStatus.COMPLETED
    assert job.error_message is None
    assert not job.cancel_requested


def test_cancel_wins_over_a_runner_that_read_pending(service, session_factory, monkeypatch) -> None:
    executor = DeferredExecutor()
    result = _start(service, session_factory, executor)
    original = AnalysisRepository.get_analysis

    def cancel_first(self, analysis_id):
        with session_factory() as other:
            service.cancel_job(db=other, job_id=result.job_id)
        return original(self, analysis_id)

    monkeypatch.setattr(AnalysisRepository, "get_analysis", cancel_first)

    assert executor.run_all() == [ProcessingStatus.CANCELLED]
    job = _job(session_factory, result.job_id)
    assert job.status == ProcessingStatus.CANCELLED
    assert job.error_message == "Cancelled before start."
    assert job.processed_rows == 0
    with session_factory() as db:
        assert db.scalar(select(func.count()).select_from(FactIndicatorValue)) == 0


def test_cancel_after_runner_started_only_sets_the_flag(service, session_factory) -> None:
    result = _start(service, session_factory, DeferredExecutor())

    with session_factory() as db:
        assert ProcessingJobRepository(db).mark_running(job_id=result.job_id, total_rows=1) is not None
        db.commit()

    with session_factory() as db:
        job = service.cancel_job(db=db, job_id=result.job_id)
        assert job.status == ProcessingStatus.RUNNING
        assert job.cancel_requested
        assert job.finished_at is None
