"""
app/validators/mapping_validator.py

Validation for column-to-dimension mapping sets.

Two checkpoints use this module: confirmation (rules must suit their role)
and job start (the set must be loadable as facts).
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Any, Sequence

from app.domain.mapping import ResolvedMapping
from db.models.column_mapping import ALL_DIMENSION_ROLES, DimensionRole


@dataclass(frozen=True)
class MappingErrorDetail:
    """
    Structured mapping error detail.
    """

    code: str
    message: str
    role: str | None = None
    column_index: int | None = None
    column_name: str | None = None
    context: dict[str, Any] | None = None


class SchemaMappingError(ValueError):
    """
    Raised when a mapping set cannot be accepted.
    """

    def __init__(self, *, message: str, errors: Sequence[MappingErrorDetail]) -> None:
        super().__init__(message)
        self.message = message
        self.errors = tuple(errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "errors": [
                {
                    "code": error.code,
                    "message": error.message,
                    "role": error.role,
                    "column_index": error.column_index,
                    "column_name": error.column_name,
                    "context": error.context,
                }
                for error in self.errors
            ],
        }


class MappingValidator:
    """
    Validates resolved column mappings.
    """

    def __init__(self, *, unique_roles: Sequence[str]) -> None:
        self._unique_roles = frozenset(unique_roles)

    def validate_confirmed(
        self,
        *,
        mappings: Sequence[ResolvedMapping],
        column_count: int,
        pre_errors: Sequence[MappingErrorDetail] | None = None,
    ) -> None:
        """
        Check roles, column indexes and rule/role compatibility.
        """

        errors: list[MappingErrorDetail] = list(pre_errors or [])
        indexes = Counter(mapping.column_index for mapping in mappings)

        for mapping in mappings:
            if mapping.role not in ALL_DIMENSION_ROLES:
                errors.append(
                    MappingErrorDetail(
                        code="invalid_role",
                        message="Unknown dimension role.",
                        role=mapping.role,
                        column_index=mapping.column_index,
                        column_name=mapping.column_name,
                    )
                )
                continue
            if not 0 <= mapping.column_index < column_count:
                errors.append(
                    MappingErrorDetail(
                        code="unknown_column",
                        message="Mapped column index does not exist in the analysis.",
                        role=mapping.role,
                        column_index=mapping.column_index,
                        context={"column_count": column_count},
                    )
                )
            if indexes[mapping.column_index] > 1:
                errors.append(
                    MappingErrorDetail(
                        code="duplicate_column_mapping",
                        message="A column can only carry one mapping.",
                        role=mapping.role,
                        column_index=mapping.column_index,
                        column_name=mapping.column_name,
                    )
                )
            invalid_kinds = mapping.rules.invalid_kinds_for(mapping.role)
            if invalid_kinds:
                errors.append(
                    MappingErrorDetail(
                        code="invalid_rule_for_role",
                        message="Normalization rule kind is not valid for this role.",
                        role=mapping.role,
                        column_index=mapping.column_index,
                        column_name=mapping.column_name,
                        context={"rule_kinds": invalid_kinds},
                    )
                )

        self._raise_if_any(errors, "Mapping confirmation failed.")

    def validate_for_job(
        self,
        *,
        mappings: Sequence[ResolvedMapping],
        column_count: int,
        indicator_code: str | None = None,
    ) -> None:
        """
        Check that a mapping set can drive a processing job.
        """

        errors: list[MappingErrorDetail] = []
        try:
            self.validate_confirmed(mappings=mappings, column_count=column_count)
        except SchemaMappingError as exc:
            errors.extend(exc.errors)

        role_counts = Counter(mapping.role for mapping in mappings)
        if role_counts[DimensionRole.INDICATOR_VALUE] == 0:
            errors.append(
                MappingErrorDetail(
                    code="missing_indicator_value",
                    message="Exactly one INDICATOR_VALUE mapping is required.",
                    role=DimensionRole.INDICATOR_VALUE,
                )
            )
        for role in sorted(self._unique_roles):
            if role_counts[role] > 1:
                errors.append(
                    MappingErrorDetail(
                        code="duplicate_role",
                        message="Role may only be mapped once.",
                        role=role,
                        context={"count": role_counts[role]},
                    )
                )
        if role_counts[DimensionRole.INDICATOR_NAME] == 0 and not (indicator_code or "").strip():
            errors.append(
                MappingErrorDetail(
                    code="missing_indicator",
                    message="Map an INDICATOR_NAME column or supply an indicator code for the job.",
                    role=DimensionRole.INDICATOR_NAME,
                )
            )

        self._raise_if_any(errors, "Mapping set cannot be processed.")

    @staticmethod
    def _raise_if_any(errors: list[MappingErrorDetail], prefix: str) -> None:
        if not errors:
            return
        codes = ", ".join(sorted({error.code for error in errors}))
        raise SchemaMappingError(message=f"{prefix} Problems: {codes}.", errors=errors)
