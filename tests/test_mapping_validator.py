from __future__ import annotations

import unittest

from app.config import DEFAULT_UNIQUE_ROLES
from app.domain.mapping import NormalizationRuleSet, NumberFormatRule, ResolvedMapping
from app.validators.mapping_validator import MappingErrorDetail, MappingValidator, SchemaMappingError
from db.models.column_mapping import DimensionRole


def _mapping(index: int, role: str, rules: NormalizationRuleSet | None = None) -> ResolvedMapping:
    return ResolvedMapping(
        column_index=index,
        column_name=f"col_{index}",
        role=role,
        confidence=1.0,
        is_auto_detected=False,
        rules=rules or NormalizationRuleSet(),
    )


class TestMappingValidator(unittest.TestCase):
    def setUp(self) -> None:
        self.validator = MappingValidator(unique_roles=DEFAULT_UNIQUE_ROLES)

    def test_confirmed_mapping_set_passes(self) -> None:
        self.validator.validate_confirmed(
            mappings=[
                _mapping(0, DimensionRole.TIME),
                _mapping(1, DimensionRole.INDICATOR_VALUE, NormalizationRuleSet(rules=[NumberFormatRule()])),
            ],
            column_count=2,
        )

    def test_confirmed_reports_every_problem(self) -> None:
        mappings = [
            _mapping(0, "PLANET"),
            _mapping(5, DimensionRole.TIME),
            _mapping(1, DimensionRole.LOCATION, NormalizationRuleSet(rules=[NumberFormatRule()])),
            _mapping(1, DimensionRole.SOURCE),
        ]

        with self.assertRaises(SchemaMappingError) as ctx:
            self.validator.validate_confirmed(mappings=mappings, column_count=2)

        codes = [error.code for error in ctx.exception.errors]
        self.assertIn("invalid_role", codes)
        self.assertIn("unknown_column", codes)
        self.assertIn("invalid_rule_for_role", codes)
        self.assertIn("duplicate_column_mapping", codes)

    def test_pre_errors_are_included(self) -> None:
        pre_error = MappingErrorDetail(code="unknown_column", message="missing", column_index=9)

        with self.assertRaises(SchemaMappingError) as ctx:
            self.validator.validate_confirmed(mappings=[], column_count=1, pre_errors=[pre_error])

        self.assertEqual(ctx.exception.errors, (pre_error,))

    def test_job_requires_indicator_value(self) -> None:
        with self.assertRaises(SchemaMappingError) as ctx:
            self.validator.validate_for_job(
                mappings=[_mapping(0, DimensionRole.TIME)],
                column_count=1,
                indicator_code="GDP",
            )

        self.assertEqual([error.code for error in ctx.exception.errors], ["missing_indicator_value"])

    def test_job_requires_indicator_column_or_code(self) -> None:
        mappings = [_mapping(0, DimensionRole.INDICATOR_VALUE)]

        with self.assertRaises(SchemaMappingError) as ctx:
            self.validator.validate_for_job(mappings=mappings, column_count=1)
        self.assertEqual([error.code for error in ctx.exception.errors], ["missing_indicator"])

        self.validator.validate_for_job(mappings=mappings, column_count=1, indicator_code="GDP")

    def test_job_rejects_duplicate_unique_roles(self) -> None:
        mappings = [
            _mapping(0, DimensionRole.LOCATION),
            _mapping(1, DimensionRole.LOCATION),
            _mapping(2, DimensionRole.INDICATOR_VALUE),
            _mapping(3, DimensionRole.INDICATOR_NAME),
        ]

        with self.assertRaises(SchemaMappingError) as ctx:
            self.validator.validate_for_job(mappings=mappings, column_count=4)

        error = ctx.exception.errors[0]
        self.assertEqual(error.code, "duplicate_role")
        self.assertEqual(error.role, DimensionRole.LOCATION)
        self.assertEqual(error.context, {"count": 2})

    def test_additional_role_may_repeat(self) -> None:
        self.validator.validate_for_job(
            mappings=[
                _mapping(0, DimensionRole.ADDITIONAL),
                _mapping(1, DimensionRole.ADDITIONAL),
                _mapping(2, DimensionRole.INDICATOR_VALUE),
            ],
            column_count=3,
            indicator_code="GDP",
        )

    def test_error_payload_shape(self) -> None:
        error = SchemaMappingError(
            message="Mapping confirmation failed.",
            errors=[MappingErrorDetail(code="invalid_role", message="Unknown dimension role.", role="X")],
        )

        payload = error.to_dict()

        self.assertEqual(payload["message"], "Mapping confirmation failed.")
        self.assertEqual(payload["errors"][0]["code"], "invalid_role")
        self.assertIsNone(payload["errors"][0]["column_index"])


if __name__ == "__main__":
    unittest.main()
