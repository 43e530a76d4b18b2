from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from app.domain.analysis import ColumnView
from app.domain.mapping import (
    CaseRule,
    DateFormatRule,
    DimensionNameRule,
    MappingOverride,
    NormalizationRuleSet,
)
from app.mappers.dimension_mapper import DimensionMapper, load_synonyms, normalize_header
from app.validators.mapping_validator import SchemaMappingError
from db.models.column_mapping import DimensionRole
from db.models.file_analysis import ColumnDataType


def _column(index: int, name: str, data_type: str, *samples: str) -> ColumnView:
    return ColumnView(column_index=index, name=name, data_type=data_type, sample_values=samples)


class TestDimensionMapper(unittest.TestCase):
    def setUp(self) -> None:
        self.mapper = DimensionMapper()
        self.columns = [
            _column(0, "date", ColumnDataType.TEXT, "2022-01-01", "2022-02-01"),
            _column(1, "country", ColumnDataType.TEXT, "US", "FR"),
            _column(2, "value", ColumnDataType.DECIMAL, "4.5", "3.2"),
        ]

    def test_normalize_header_drops_case_and_punctuation(self) -> None:
        self.assertEqual(normalize_header("  Country_Code "), "countrycode")
        self.assertEqual(normalize_header("Obs. Value"), "obsvalue")

    def test_auto_detects_basic_roles(self) -> None:
        resolution = self.mapper.resolve(self.columns)

        roles = {mapping.column_index: mapping.role for mapping in resolution.mappings}
        self.assertEqual(
            roles,
            {0: DimensionRole.TIME, 1: DimensionRole.LOCATION, 2: DimensionRole.INDICATOR_VALUE},
        )
        self.assertTrue(all(mapping.is_auto_detected for mapping in resolution.mappings))
        self.assertEqual(resolution.warnings, ())

    def test_country_code_header_maps_to_location(self) -> None:
        column = _column(0, "Country Code", ColumnDataType.TEXT, "US", "FR", "DE")

        resolution = self.mapper.resolve([column])

        self.assertEqual(len(resolution.mappings), 1)
        mapping = resolution.mappings[0]
        self.assertEqual(mapping.role, DimensionRole.LOCATION)
        self.assertGreaterEqual(mapping.confidence, 0.6)

    def test_incompatible_type_scores_zero(self) -> None:
        column = _column(0, "value", ColumnDataType.TEXT, "high", "low")

        self.assertEqual(self.mapper.score(column, DimensionRole.INDICATOR_VALUE), 0.0)

    def test_unmatched_header_is_left_unmapped(self) -> None:
        column = _column(0, "notes", ColumnDataType.TEXT, "first", "second")

        resolution = self.mapper.resolve([column])

        self.assertEqual(resolution.mappings, ())
        self.assertEqual([warning.code for warning in resolution.warnings], ["missing_indicator_value"])

    def test_second_column_for_unique_role_is_demoted(self) -> None:
        columns = [
            _column(0, "country", ColumnDataType.TEXT, "US"),
            _column(1, "region", ColumnDataType.TEXT, "North"),
            _column(2, "value", ColumnDataType.INTEGER, "1"),
        ]

        resolution = self.mapper.resolve(columns)

        roles = {mapping.column_index: mapping.role for mapping in resolution.mappings}
        self.assertEqual(roles[0], DimensionRole.LOCATION)
        self.assertEqual(roles[1], DimensionRole.ADDITIONAL)
        warning = next(item for item in resolution.warnings if item.code == "ambiguous_mapping")
        self.assertEqual(warning.column_index, 1)
        self.assertEqual(warning.context["kept_column_index"], 0)

    def test_confirmed_override_wins_over_detection(self) -> None:
        overrides = [MappingOverride(column_index=1, role="location", is_required=True)]
        columns = [
            _column(0, "country", ColumnDataType.TEXT, "US"),
            _column(1, "site", ColumnDataType.TEXT, "Lisbon"),
            _column(2, "value", ColumnDataType.INTEGER, "1"),
        ]

        resolution = self.mapper.resolve(columns, overrides)

        by_index = {mapping.column_index: mapping for mapping in resolution.mappings}
        self.assertEqual(by_index[1].role, DimensionRole.LOCATION)
        self.assertFalse(by_index[1].is_auto_detected)
        self.assertTrue(by_index[1].is_required)
        self.assertEqual(by_index[1].confidence, 1.0)
        self.assertEqual(by_index[0].role, DimensionRole.ADDITIONAL)

    def test_override_with_null_role_leaves_column_unmapped(self) -> None:
        resolution = self.mapper.resolve(self.columns, [MappingOverride(column_index=1, role=None)])

        self.assertNotIn(1, {mapping.column_index for mapping in resolution.mappings})

    def test_demotion_keeps_only_rules_valid_for_additional(self) -> None:
        rules = NormalizationRuleSet(rules=[CaseRule(mode="upper"), DateFormatRule(formats=["%Y"])])
        overrides = [
            MappingOverride(column_index=0, role=DimensionRole.TIME),
            MappingOverride(column_index=1, role=DimensionRole.TIME, rules=rules),
        ]
        columns = [
            _column(0, "date", ColumnDataType.TEXT, "2020-01-01"),
            _column(1, "year", ColumnDataType.INTEGER, "2020"),
            _column(2, "value", ColumnDataType.INTEGER, "1"),
        ]

        resolution = self.mapper.resolve(columns, overrides)

        demoted = next(mapping for mapping in resolution.mappings if mapping.column_index == 1)
        self.assertEqual(demoted.role, DimensionRole.ADDITIONAL)
        self.assertEqual([rule.kind for rule in demoted.rules.rules], ["case"])

    def test_invalid_override_raises_structured_error(self) -> None:
        overrides = [
            MappingOverride(column_index=7, role=DimensionRole.TIME),
            MappingOverride(column_index=0, role="WEATHER"),
            MappingOverride(
                column_index=2,
                role=DimensionRole.INDICATOR_VALUE,
                rules=NormalizationRuleSet(rules=[DimensionNameRule(name="x")]),
            ),
        ]

        with self.assertRaises(SchemaMappingError) as ctx:
            self.mapper.resolve(self.columns, overrides)

        codes = {error.code for error in ctx.exception.errors}
        self.assertEqual(codes, {"unknown_column", "invalid_role", "invalid_rule_for_role"})

    def test_custom_synonyms_extend_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "synonyms.json"
            path.write_text(json.dumps({"location": ["comuna"], "bogus": ["x"]}), encoding="utf-8")

            synonyms = load_synonyms(str(path))

        self.assertIn("comuna", synonyms[DimensionRole.LOCATION])
        self.assertIn("country", synonyms[DimensionRole.LOCATION])
        self.assertNotIn("BOGUS", synonyms)

        mapper = DimensionMapper(synonyms=synonyms)
        resolution = mapper.resolve([_column(0, "Comuna", ColumnDataType.TEXT, "Maipu")])
        self.assertEqual(resolution.mappings[0].role, DimensionRole.LOCATION)


if __name__ == "__main__":
    unittest.main()
