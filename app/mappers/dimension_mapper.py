"""
app/mappers/dimension_mapper.py

Column-to-dimension mapping engine.

Confirmed overrides are taken as given. Every other column is scored
against each role: a header score from the synonym dictionary and a value
score from the profiled samples, blended into one confidence. Roles that
must be unique are then deduplicated, demoting the losers to ADDITIONAL.
"""

from __future__ import annotations

import json
import logging
import re
from difflib import SequenceMatcher
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Sequence

from app.config import DEFAULT_UNIQUE_ROLES, get_mapping_settings
from app.domain.analysis import ColumnView
from app.domain.mapping import (
    RULE_KIND_ROLES,
    MappingOverride,
    MappingResolution,
    MappingWarning,
    NormalizationRuleSet,
    ResolvedMapping,
)
from app.validators.mapping_validator import MappingErrorDetail, MappingValidator
from app.validators.value_parser import ValueParseError, TimeParseError, parse_decimal, parse_time
from db.models.column_mapping import ALL_DIMENSION_ROLES, DimensionRole
from db.models.file_analysis import NUMERIC_DATA_TYPES, ColumnDataType

logger = logging.getLogger(__name__)

HEADER_WEIGHT = 0.7
VALUE_WEIGHT = 0.3
CONTAINMENT_SCORE = 0.85
FUZZY_SCALE = 0.8

# Shorter synonyms only match exactly.
_MIN_CONTAINMENT_LENGTH = 4

DEFAULT_ROLE_SYNONYMS: dict[str, tuple[str, ...]] = {
    DimensionRole.TIME: (
        "date",
        "time",
        "period",
        "year",
        "month",
        "quarter",
        "day",
        "timestamp",
        "reference period",
        "ref date",
        "fecha",
        "ano",
        "periodo",
    ),
    DimensionRole.LOCATION: (
        "location",
        "country",
        "country code",
        "country name",
        "region",
        "state",
        "province",
        "city",
        "district",
        "municipality",
        "geo",
        "geography",
        "territory",
        "iso code",
        "iso3",
        "pais",
    ),
    DimensionRole.INDICATOR_NAME: (
        "indicator",
        "indicator code",
        "indicator name",
        "indicator id",
        "metric",
        "kpi",
        "series",
        "series code",
        "indicador",
    ),
    DimensionRole.INDICATOR_VALUE: (
        "value",
        "indicator value",
        "obs value",
        "observation",
        "amount",
        "measure",
        "valor",
    ),
    DimensionRole.SOURCE: ("source", "data source", "provider", "origin", "fuente"),
    DimensionRole.UNIT: ("unit", "units", "unit of measure", "uom", "unidad"),
    DimensionRole.GOAL: ("goal", "target", "objective", "benchmark", "meta"),
}

ROLE_COMPATIBLE_TYPES: dict[str, frozenset[str]] = {
    DimensionRole.TIME: frozenset({ColumnDataType.INTEGER, ColumnDataType.TEXT}),
    DimensionRole.LOCATION: frozenset({ColumnDataType.INTEGER, ColumnDataType.TEXT}),
    DimensionRole.INDICATOR_NAME: frozenset({ColumnDataType.TEXT}),
    DimensionRole.INDICATOR_VALUE: NUMERIC_DATA_TYPES,
    DimensionRole.SOURCE: frozenset({ColumnDataType.TEXT}),
    DimensionRole.UNIT: frozenset({ColumnDataType.TEXT}),
    DimensionRole.GOAL: NUMERIC_DATA_TYPES,
}

_LOCATION_VALUE_RE = re.compile(r"^[^\W\d_][\w .,'()-]*$")
_CODE_VALUE_RE = re.compile(r"^[^\W\d_][\w .:/-]*$")


def normalize_header(header: str) -> str:
    """
    Normalize a column name for flexible matching.
    """

    return "".join(ch for ch in header.strip().lower() if ch.isalnum())


def _value_matches(role: str, value: str) -> bool:
    if role == DimensionRole.TIME:
        try:
            parse_time(value)
        except TimeParseError:
            return False
        return True
    if role in (DimensionRole.INDICATOR_VALUE, DimensionRole.GOAL):
        try:
            parse_decimal(value)
        except ValueParseError:
            return False
        return True
    if role == DimensionRole.LOCATION:
        return bool(_LOCATION_VALUE_RE.match(value))
    if role == DimensionRole.INDICATOR_NAME:
        return bool(_CODE_VALUE_RE.match(value))
    return bool(value.strip())


class DimensionMapper:
    """
    Resolves analysed columns into dimension role mappings.
    """

    def __init__(
        self,
        *,
        synonyms: Mapping[str, Sequence[str]] | None = None,
        validator: MappingValidator | None = None,
        confidence_threshold: float = 0.6,
        fuzzy_threshold: float = 0.84,
        ambiguity_margin: float = 1.0,
        unique_roles: Sequence[str] = DEFAULT_UNIQUE_ROLES,
    ) -> None:
        source = synonyms if synonyms is not None else DEFAULT_ROLE_SYNONYMS
        self._synonyms: dict[str, tuple[str, ...]] = {
            role: tuple(normalize_header(value) for value in values if normalize_header(value))
            for role, values in source.items()
            if role in ROLE_COMPATIBLE_TYPES
        }
        self._unique_roles = tuple(role for role in unique_roles if role in ALL_DIMENSION_ROLES)
        self._validator = validator or MappingValidator(unique_roles=self._unique_roles)
        self._confidence_threshold = max(0.0, min(1.0, confidence_threshold))
        self._fuzzy_threshold = max(0.0, min(1.0, fuzzy_threshold))
        self._ambiguity_margin = max(0.0, ambiguity_margin)

    @property
    def validator(self) -> MappingValidator:
        return self._validator

    def resolve(
        self,
        columns: Sequence[ColumnView],
        overrides: Sequence[MappingOverride] | None = None,
    ) -> MappingResolution:
        """
        Resolve mappings for the analysed columns.

        Raises SchemaMappingError when an override is invalid.
        """

        by_index = {column.column_index: column for column in columns}
        confirmed, ignored = self._confirmed_mappings(overrides or (), by_index)

        auto: list[ResolvedMapping] = []
        overridden = {mapping.column_index for mapping in confirmed} | ignored
        for column in columns:
            if column.column_index in overridden:
                continue
            detected = self._auto_detect(column)
            if detected is not None:
                auto.append(detected)

        mappings, warnings = self._enforce_unique_roles([*confirmed, *auto])
        mappings.sort(key=lambda mapping: mapping.column_index)

        if not any(mapping.role == DimensionRole.INDICATOR_VALUE for mapping in mappings):
            warnings.append(
                MappingWarning(
                    code="missing_indicator_value",
                    message="No column was mapped to INDICATOR_VALUE; a job cannot start until one is.",
                    role=DimensionRole.INDICATOR_VALUE,
                )
            )

        for warning in warnings:
            logger.info("Mapping warning %s: %s (column=%s)", warning.code, warning.message, warning.column_index)
        return MappingResolution(mappings=tuple(mappings), warnings=tuple(warnings))

    def score(self, column: ColumnView, role: str) -> float:
        """
        Confidence that ``column`` carries ``role``; 0 when types are incompatible.
        """

        compatible = ROLE_COMPATIBLE_TYPES.get(role)
        if compatible is None or column.data_type not in compatible:
            return 0.0
        header = self._header_score(column.name, role)
        if header <= 0.0:
            return 0.0
        return round(HEADER_WEIGHT * header + VALUE_WEIGHT * self._value_score(column, role), 4)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _confirmed_mappings(
        self,
        overrides: Sequence[MappingOverride],
        by_index: Mapping[int, ColumnView],
    ) -> tuple[list[ResolvedMapping], set[int]]:
        confirmed: list[ResolvedMapping] = []
        ignored: set[int] = set()
        pre_errors: list[MappingErrorDetail] = []

        for override in overrides:
            column = by_index.get(override.column_index)
            if column is None:
                pre_errors.append(
                    MappingErrorDetail(
                        code="unknown_column",
                        message="Override points to a column not present in the analysis.",
                        role=override.role,
                        column_index=override.column_index,
                        context={"column_count": len(by_index)},
                    )
                )
                continue
            if override.role is None:
                ignored.add(override.column_index)
                continue
            confirmed.append(
                ResolvedMapping(
                    column_index=override.column_index,
                    column_name=column.name,
                    role=override.role.strip().upper(),
                    confidence=1.0,
                    is_auto_detected=False,
                    is_required=override.is_required,
                    rules=override.rules or NormalizationRuleSet(),
                )
            )

        self._validator.validate_confirmed(
            mappings=confirmed,
            column_count=len(by_index),
            pre_errors=pre_errors,
        )
        return confirmed, ignored

    def _auto_detect(self, column: ColumnView) -> ResolvedMapping | None:
        best_role: str | None = None
        best_score = 0.0
        for role in ROLE_COMPATIBLE_TYPES:
            score = self.score(column, role)
            if score > best_score:
                best_role, best_score = role, score

        if best_role is None or best_score < self._confidence_threshold:
            return None
        return ResolvedMapping(
            column_index=column.column_index,
            column_name=column.name,
            role=best_role,
            confidence=best_score,
            is_auto_detected=True,
        )

    def _header_score(self, header: str, role: str) -> float:
        normalized = normalize_header(header)
        if not normalized:
            return 0.0
        synonyms = self._synonyms.get(role, ())
        if normalized in synonyms:
            return 1.0

        best = 0.0
        for synonym in synonyms:
            if len(synonym) >= _MIN_CONTAINMENT_LENGTH and (synonym in normalized or normalized in synonym):
                best = max(best, CONTAINMENT_SCORE)
                continue
            ratio = SequenceMatcher(None, normalized, synonym).ratio()
            if ratio >= self._fuzzy_threshold:
                best = max(best, ratio * FUZZY_SCALE)
        return best

    @staticmethod
    def _value_score(column: ColumnView, role: str) -> float:
        if not column.sample_values:
            return 0.0
        matches = sum(1 for value in column.sample_values if _value_matches(role, value))
        return matches / len(column.sample_values)

    def _enforce_unique_roles(
        self,
        mappings: list[ResolvedMapping],
    ) -> tuple[list[ResolvedMapping], list[MappingWarning]]:
        warnings: list[MappingWarning] = []
        result = [mapping for mapping in mappings if mapping.role not in self._unique_roles]

        for role in self._unique_roles:
            candidates = sorted(
                (mapping for mapping in mappings if mapping.role == role),
                key=lambda mapping: (mapping.is_auto_detected, mapping.column_index),
            )
            if not candidates:
                continue

            winner = candidates[0]
            for candidate in candidates[1:]:
                if (
                    candidate.is_auto_detected == winner.is_auto_detected
                    and candidate.confidence > winner.confidence + self._ambiguity_margin
                ):
                    winner = candidate

            result.append(winner)
            for loser in candidates:
                if loser is winner:
                    continue
                result.append(self._demote(loser))
                warnings.append(
                    MappingWarning(
                        code="ambiguous_mapping",
                        message=f"More than one column matched {role}; column demoted to ADDITIONAL.",
                        column_index=loser.column_index,
                        role=role,
                        context={
                            "kept_column_index": winner.column_index,
                            "confidence": loser.confidence,
                        },
                    )
                )
        return result, warnings

    @staticmethod
    def _demote(mapping: ResolvedMapping) -> ResolvedMapping:
        allowed = [
            rule
            for rule in mapping.rules.rules
            if DimensionRole.ADDITIONAL in RULE_KIND_ROLES[rule.kind]
        ]
        return ResolvedMapping(
            column_index=mapping.column_index,
            column_name=mapping.column_name,
            role=DimensionRole.ADDITIONAL,
            confidence=mapping.confidence,
            is_auto_detected=mapping.is_auto_detected,
            is_required=False,
            rules=NormalizationRuleSet(rules=allowed),
        )


def load_synonyms(path: str | None) -> dict[str, tuple[str, ...]]:
    """
    Merge a JSON ``{role: [synonym, ...]}`` file over the default dictionary.
    """

    merged = {role: tuple(values) for role, values in DEFAULT_ROLE_SYNONYMS.items()}
    if not path:
        return merged

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Synonyms file must contain a JSON object: {path}")
    for role, values in payload.items():
        normalized_role = str(role).strip().upper()
        if normalized_role not in ROLE_COMPATIBLE_TYPES or not isinstance(values, list):
            logger.warning("Ignoring synonyms for unsupported role %r", role)
            continue
        extra = tuple(str(value) for value in values if str(value).strip())
        merged[normalized_role] = merged.get(normalized_role, ()) + extra
    return merged


@lru_cache(maxsize=1)
def get_dimension_mapper() -> DimensionMapper:
    """
    Return a mapper configured from environment settings.
    """

    settings = get_mapping_settings()
    return DimensionMapper(
        synonyms=load_synonyms(settings.synonyms_file),
        confidence_threshold=settings.confidence_threshold,
        fuzzy_threshold=settings.fuzzy_threshold,
        ambiguity_margin=settings.ambiguity_margin,
        unique_roles=settings.unique_roles,
    )
