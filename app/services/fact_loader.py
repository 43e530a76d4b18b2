"""
app/services/fact_loader.py

Turns one source row into at most one indicator fact.

Every row-level check (value, indicator, time, dimension values) runs before
the first write, so a rejected row leaves no dimension or fact behind. The
loader never touches job counters or error rows: it returns a RowOutcome and
the job runner records it.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from app.domain.ingestion import RowIssue, RowOutcome, RowStatus
from app.domain.mapping import ResolvedMapping
from app.repositories.fact_repository import FactRepository
from app.services.dimension_resolver import DimensionResolutionError, DimensionResolver
from app.validators.value_parser import (
    ParsedTime,
    TimeParseError,
    ValueParseError,
    normalize_decimal,
    parse_decimal,
    parse_time,
)
from db.models.column_mapping import GENERIC_DIMENSION_ROLES, DimensionRole
from db.models.processing_job import ErrorSeverity, ProcessingErrorType
from db.repositories.indicator_repository import IndicatorCatalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _IndicatorRef:
    id: uuid.UUID
    code: str
    subarea_id: uuid.UUID | None


@dataclass(frozen=True)
class _GenericCell:
    mapping: ResolvedMapping
    name: str
    value: str


def compute_source_row_hash(
    *,
    indicator_code: str,
    time_key: str | None,
    location_code: str | None,
    generic_pairs: Sequence[tuple[str, str]],
    value: Decimal,
    source_file: str | None,
) -> str:
    """
    Deterministic digest of a fact's identity. The source row number is
    deliberately absent so re-uploaded rows collide.
    """

    payload = [
        indicator_code,
        time_key,
        location_code,
        sorted([name, item] for name, item in generic_pairs),
        normalize_decimal(value),
        source_file,
    ]
    encoded = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def generic_dimension_name(mapping: ResolvedMapping) -> str:
    """
    Rule-supplied name, else the role name for SOURCE/UNIT/GOAL, else the header.
    """

    configured = mapping.rules.dimension_name()
    if configured:
        return configured
    if mapping.role == DimensionRole.ADDITIONAL:
        return mapping.column_name
    return mapping.role


class FactLoader:
    """
    Loads rows for one job using a frozen mapping set.
    """

    def __init__(
        self,
        *,
        mappings: Sequence[ResolvedMapping],
        resolver: DimensionResolver,
        facts: FactRepository,
        indicators: IndicatorCatalog,
        job_id: uuid.UUID | None = None,
        source_file: str | None = None,
        indicator_code: str | None = None,
        null_tokens: Sequence[str] = (),
    ) -> None:
        value_mappings = [mapping for mapping in mappings if mapping.role == DimensionRole.INDICATOR_VALUE]
        if len(value_mappings) != 1:
            raise ValueError("Exactly one INDICATOR_VALUE mapping is required.")

        self._value_mapping = value_mappings[0]
        self._name_mapping = self._single(mappings, DimensionRole.INDICATOR_NAME)
        self._time_mapping = self._single(mappings, DimensionRole.TIME)
        self._location_mapping = self._single(mappings, DimensionRole.LOCATION)
        self._generic_mappings = [mapping for mapping in mappings if mapping.role in GENERIC_DIMENSION_ROLES]
        self._indicator_code = (indicator_code or "").strip() or None
        if self._name_mapping is None and self._indicator_code is None:
            raise ValueError("An INDICATOR_NAME mapping or a fixed indicator code is required.")

        self._resolver = resolver
        self._facts = facts
        self._indicators = indicators
        self._job_id = job_id
        self._source_file = source_file
        self._indicator_cache: dict[str, _IndicatorRef | None] = {}
        self._null_tokens = frozenset(token.strip().lower() for token in null_tokens if token.strip())

    def load_row(self, row_number: int, cells: Sequence[str]) -> RowOutcome:
        issues: list[RowIssue] = []
        used: list[ResolvedMapping] = [self._value_mapping]

        # Row-level checks; nothing is written until all of them pass.
        raw_value = self._cell(self._value_mapping, cells)
        try:
            value = parse_decimal(raw_value, self._value_mapping.rules.number_format())
        except ValueParseError as exc:
            issues.append(
                self._issue(
                    ProcessingErrorType.VALUE_PARSE_ERROR,
                    ErrorSeverity.ERROR,
                    str(exc),
                    self._value_mapping,
                    raw_value,
                )
            )
            return RowOutcome(row_number=row_number, status=RowStatus.SKIPPED, issues=tuple(issues))

        indicator = self._indicator_for_row(cells, issues, used)
        if indicator is None:
            return RowOutcome(row_number=row_number, status=RowStatus.SKIPPED, issues=tuple(issues))

        parsed_time, raw_time = self._parse_time_cell(cells, issues, used)
        location_value = self._check_location_cell(cells, issues, used)
        generic_cells = self._check_generic_cells(cells, issues, used)

        if any(issue.severity == ErrorSeverity.ERROR for issue in issues):
            return RowOutcome(row_number=row_number, status=RowStatus.SKIPPED, issues=tuple(issues))

        # Writes.
        time_dim = self._resolver.resolve_time(parsed_time, raw_value=raw_time) if parsed_time else None
        location_dim = self._resolver.resolve_location(location_value) if location_value else None
        generic_dims = [self._resolver.resolve_generic(cell.name, cell.value) for cell in generic_cells]

        source_row_hash = compute_source_row_hash(
            indicator_code=indicator.code,
            time_key=time_dim.key if time_dim else None,
            location_code=location_dim.key if location_dim else None,
            generic_pairs=[(cell.name, cell.value) for cell in generic_cells],
            value=value,
            source_file=self._source_file,
        )

        if self._facts.hash_exists(source_row_hash):
            issues.append(self._duplicate_issue(source_row_hash))
            return RowOutcome(row_number=row_number, status=RowStatus.DUPLICATE, issues=tuple(issues))

        fact_id = self._facts.insert_fact(
            indicator_id=indicator.id,
            value=value,
            source_row_hash=source_row_hash,
            time_id=time_dim.id if time_dim else None,
            location_id=location_dim.id if location_dim else None,
            subarea_id=indicator.subarea_id,
            generic_ids=[dim.id for dim in generic_dims],
            job_id=self._job_id,
            source_file=self._source_file,
            source_row_number=row_number,
            confidence_score=min(mapping.confidence for mapping in used),
        )
        if fact_id is None:
            logger.debug("Row %s lost the insert race for hash %s", row_number, source_row_hash)
            issues.append(self._duplicate_issue(source_row_hash))
            return RowOutcome(row_number=row_number, status=RowStatus.DUPLICATE, issues=tuple(issues))

        return RowOutcome(
            row_number=row_number,
            status=RowStatus.INSERTED,
            issues=tuple(issues),
            fact_id=fact_id,
        )

    # ------------------------------------------------------------------
    # Row checks
    # ------------------------------------------------------------------

    def _indicator_for_row(
        self,
        cells: Sequence[str],
        issues: list[RowIssue],
        used: list[ResolvedMapping],
    ) -> _IndicatorRef | None:
        raw_code: str | None
        if self._name_mapping is not None:
            raw_code = self._cell(self._name_mapping, cells)
            code = (raw_code or "").strip()
            used.append(self._name_mapping)
        else:
            raw_code = self._indicator_code
            code = self._indicator_code or ""

        indicator = self._lookup_indicator(code) if code else None
        if indicator is None:
            message = f"Indicator '{code}' is not in the catalog." if code else "Indicator code is empty."
            issues.append(
                self._issue(
                    ProcessingErrorType.UNKNOWN_INDICATOR,
                    ErrorSeverity.ERROR,
                    message,
                    self._name_mapping,
                    raw_code,
                )
            )
        return indicator

    def _parse_time_cell(
        self,
        cells: Sequence[str],
        issues: list[RowIssue],
        used: list[ResolvedMapping],
    ) -> tuple[ParsedTime | None, str | None]:
        mapping = self._time_mapping
        if mapping is None:
            return None, None
        raw = self._cell(mapping, cells)
        if raw is None or not raw.strip():
            if mapping.is_required:
                issues.append(self._missing_issue(mapping, raw))
            return None, raw
        try:
            parsed = parse_time(raw, mapping.rules.date_formats())
        except TimeParseError as exc:
            issues.append(
                self._issue(
                    ProcessingErrorType.DIMENSION_RESOLUTION_ERROR,
                    ErrorSeverity.ERROR if mapping.is_required else ErrorSeverity.WARNING,
                    str(exc),
                    mapping,
                    raw,
                )
            )
            return None, raw
        used.append(mapping)
        return parsed, raw

    def _check_location_cell(
        self,
        cells: Sequence[str],
        issues: list[RowIssue],
        used: list[ResolvedMapping],
    ) -> str | None:
        mapping = self._location_mapping
        if mapping is None:
            return None
        raw = self._cell(mapping, cells)
        if raw is None or not raw.strip():
            if mapping.is_required:
                issues.append(self._missing_issue(mapping, raw))
            return None
        try:
            value = DimensionResolver.check_location(raw)
        except DimensionResolutionError as exc:
            issues.append(
                self._issue(
                    ProcessingErrorType.DIMENSION_RESOLUTION_ERROR,
                    ErrorSeverity.ERROR if mapping.is_required else ErrorSeverity.WARNING,
                    str(exc),
                    mapping,
                    raw,
                )
            )
            return None
        used.append(mapping)
        return value

    def _check_generic_cells(
        self,
        cells: Sequence[str],
        issues: list[RowIssue],
        used: list[ResolvedMapping],
    ) -> list[_GenericCell]:
        result: list[_GenericCell] = []
        for mapping in self._generic_mappings:
            raw = self._cell(mapping, cells)
            if raw is None or not raw.strip():
                if mapping.is_required:
                    issues.append(self._missing_issue(mapping, raw))
                continue
            try:
                name, value = DimensionResolver.check_generic(generic_dimension_name(mapping), raw)
            except DimensionResolutionError as exc:
                issues.append(
                    self._issue(
                        ProcessingErrorType.DIMENSION_RESOLUTION_ERROR,
                        ErrorSeverity.ERROR if mapping.is_required else ErrorSeverity.WARNING,
                        str(exc),
                        mapping,
                        raw,
                    )
                )
                continue
            used.append(mapping)
            result.append(_GenericCell(mapping=mapping, name=name, value=value))
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lookup_indicator(self, code: str) -> _IndicatorRef | None:
        if code in self._indicator_cache:
            return self._indicator_cache[code]
        indicator = self._indicators.get_by_code(code)
        ref = (
            _IndicatorRef(id=indicator.id, code=indicator.code, subarea_id=indicator.subarea_id)
            if indicator is not None
            else None
        )
        self._indicator_cache[code] = ref
        return ref

    def _cell(self, mapping: ResolvedMapping, cells: Sequence[str]) -> str | None:
        if mapping.column_index >= len(cells):
            return None
        raw = cells[mapping.column_index]
        # Same null tokens the profiler counts as nulls.
        if raw.strip().lower() in self._null_tokens:
            return None
        return mapping.rules.apply(raw)

    @staticmethod
    def _single(mappings: Sequence[ResolvedMapping], role: str) -> ResolvedMapping | None:
        return next((mapping for mapping in mappings if mapping.role == role), None)

    @staticmethod
    def _issue(
        error_type: str,
        severity: str,
        message: str,
        mapping: ResolvedMapping | None,
        raw_value: str | None,
    ) -> RowIssue:
        return RowIssue(
            error_type=error_type,
            severity=severity,
            message=message,
            column_name=mapping.column_name if mapping else None,
            raw_value=raw_value,
        )

    def _missing_issue(self, mapping: ResolvedMapping, raw_value: str | None) -> RowIssue:
        return self._issue(
            ProcessingErrorType.MISSING_REQUIRED_VALUE,
            ErrorSeverity.ERROR,
            f"Required {mapping.role} value is missing.",
            mapping,
            raw_value,
        )

    @staticmethod
    def _duplicate_issue(source_row_hash: str) -> RowIssue:
        return RowIssue(
            error_type=ProcessingErrorType.DUPLICATE_ROW,
            severity=ErrorSeverity.INFO,
            message=f"Fact already loaded (hash {source_row_hash[:12]}).",
        )
