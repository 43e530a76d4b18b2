"""
app/domain/mapping.py

Domain models for column-to-dimension mappings and their normalization rules.

A rule set is a closed, versioned, tagged structure. Each rule kind is only
meaningful for some roles; the pairing is checked when a mapping is confirmed,
never at load time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from db.models.column_mapping import ALL_DIMENSION_ROLES, DimensionRole

RULE_SET_VERSION = 1


class _Rule(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class TrimRule(_Rule):
    kind: Literal["trim"] = "trim"


class CaseRule(_Rule):
    kind: Literal["case"] = "case"
    mode: Literal["upper", "lower", "title"]


class ValueMapRule(_Rule):
    kind: Literal["value_map"] = "value_map"
    mapping: dict[str, str]


class DateFormatRule(_Rule):
    kind: Literal["date_format"] = "date_format"
    formats: list[str] = Field(..., min_length=1)


class NumberFormatRule(_Rule):
    kind: Literal["number_format"] = "number_format"
    decimal_separator: str = Field(".", min_length=1, max_length=1)
    thousands_separator: str | None = Field(",", max_length=1)
    scale: float = 1.0


class DimensionNameRule(_Rule):
    kind: Literal["dimension_name"] = "dimension_name"
    name: str = Field(..., min_length=1, max_length=120)


NormalizationRule = Annotated[
    Union[TrimRule, CaseRule, ValueMapRule, DateFormatRule, NumberFormatRule, DimensionNameRule],
    Field(discriminator="kind"),
]

_NUMERIC_ROLES = frozenset({DimensionRole.INDICATOR_VALUE, DimensionRole.GOAL})

RULE_KIND_ROLES: dict[str, frozenset[str]] = {
    "trim": frozenset(ALL_DIMENSION_ROLES),
    "case": frozenset(ALL_DIMENSION_ROLES) - _NUMERIC_ROLES,
    "value_map": frozenset(ALL_DIMENSION_ROLES),
    "date_format": frozenset({DimensionRole.TIME}),
    "number_format": _NUMERIC_ROLES,
    "dimension_name": frozenset(
        {DimensionRole.ADDITIONAL, DimensionRole.SOURCE, DimensionRole.UNIT, DimensionRole.GOAL}
    ),
}


class NormalizationRuleSet(BaseModel):
    """
    Ordered normalization rules attached to one column mapping.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    version: Literal[1] = RULE_SET_VERSION
    rules: list[NormalizationRule] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> NormalizationRuleSet:
        if not payload:
            return cls()
        return cls.model_validate(payload)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def apply(self, raw: str | None) -> str | None:
        """
        Apply the text-transforming rules (trim, case, value_map) in order.
        """

        if raw is None:
            return None
        value = raw
        for rule in self.rules:
            if isinstance(rule, TrimRule):
                value = value.strip()
            elif isinstance(rule, CaseRule):
                if rule.mode == "upper":
                    value = value.upper()
                elif rule.mode == "lower":
                    value = value.lower()
                else:
                    value = value.title()
            elif isinstance(rule, ValueMapRule):
                value = rule.mapping.get(value, value)
        return value

    def date_formats(self) -> tuple[str, ...]:
        formats: list[str] = []
        for rule in self.rules:
            if isinstance(rule, DateFormatRule):
                formats.extend(rule.formats)
        return tuple(formats)

    def number_format(self) -> NumberFormatRule | None:
        for rule in self.rules:
            if isinstance(rule, NumberFormatRule):
                return rule
        return None

    def dimension_name(self) -> str | None:
        for rule in self.rules:
            if isinstance(rule, DimensionNameRule):
                return rule.name.strip()
        return None

    def invalid_kinds_for(self, role: str) -> list[str]:
        return [rule.kind for rule in self.rules if role not in RULE_KIND_ROLES[rule.kind]]


@dataclass(frozen=True)
class MappingOverride:
    """
    User-confirmed mapping for one column. ``role=None`` leaves the column unmapped.
    """

    column_index: int
    role: str | None
    rules: NormalizationRuleSet | None = None
    is_required: bool = False


@dataclass(frozen=True)
class ResolvedMapping:
    """
    Final mapping of one column, as persisted and snapshotted into jobs.
    """

    column_index: int
    column_name: str
    role: str
    confidence: float
    is_auto_detected: bool
    is_required: bool = False
    rules: NormalizationRuleSet = field(default_factory=NormalizationRuleSet)

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "column_index": self.column_index,
            "column_name": self.column_name,
            "role": self.role,
            "confidence": self.confidence,
            "is_auto_detected": self.is_auto_detected,
            "is_required": self.is_required,
            "rules": self.rules.to_payload(),
        }

    @classmethod
    def from_snapshot(cls, payload: dict[str, Any]) -> ResolvedMapping:
        return cls(
            column_index=int(payload["column_index"]),
            column_name=str(payload["column_name"]),
            role=str(payload["role"]),
            confidence=float(payload.get("confidence", 1.0)),
            is_auto_detected=bool(payload.get("is_auto_detected", False)),
            is_required=bool(payload.get("is_required", False)),
            rules=NormalizationRuleSet.from_payload(payload.get("rules")),
        )


@dataclass(frozen=True)
class MappingWarning:
    """
    Non-fatal note produced while resolving mappings.
    """

    code: str
    message: str
    column_index: int | None = None
    role: str | None = None
    context: dict[str, Any] | None = None


@dataclass(frozen=True)
class MappingResolution:
    """
    Mappings for one analysis plus the warnings raised while resolving them.
    """

    mappings: tuple[ResolvedMapping, ...]
    warnings: tuple[MappingWarning, ...] = ()
