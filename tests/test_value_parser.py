from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from app.domain.mapping import NumberFormatRule
from app.validators.value_parser import (
    TimeParseError,
    ValueParseError,
    normalize_decimal,
    parse_decimal,
    parse_time,
)
from db.models.dimension import TimeGranularity


class TestParseDecimal(unittest.TestCase):
    def test_parses_plain_and_formatted_numbers(self) -> None:
        self.assertEqual(parse_decimal("12.5"), Decimal("12.500000"))
        self.assertEqual(parse_decimal(" 1,234.5 "), Decimal("1234.5"))
        self.assertEqual(parse_decimal("$ 1 000"), Decimal("1000"))
        self.assertEqual(parse_decimal("4.5%"), Decimal("4.5"))
        self.assertEqual(parse_decimal("(42)"), Decimal("-42"))
        self.assertEqual(parse_decimal("-0.25"), Decimal("-0.25"))

    def test_custom_separators_and_scale(self) -> None:
        rule = NumberFormatRule(decimal_separator=",", thousands_separator=".", scale=1000)

        self.assertEqual(parse_decimal("1.234,5", rule), Decimal("1234500"))

    def test_rejects_non_numeric_and_empty(self) -> None:
        for raw in ("abc", "", "   ", None, "1.2.3", "NaN"):
            with self.subTest(raw=raw):
                with self.assertRaises(ValueParseError):
                    parse_decimal(raw)

    def test_rejects_values_beyond_column_precision(self) -> None:
        with self.assertRaises(ValueParseError):
            parse_decimal("100000000000000")

    def test_quantizes_to_six_places(self) -> None:
        self.assertEqual(parse_decimal("0.1234567"), Decimal("0.123457"))

    def test_normalize_decimal_is_canonical(self) -> None:
        self.assertEqual(normalize_decimal(Decimal("12.500000")), "12.5")
        self.assertEqual(normalize_decimal(Decimal("1E+3")), "1000")
        self.assertEqual(normalize_decimal(Decimal("-0.000")), "0")


class TestParseTime(unittest.TestCase):
    def test_iso_date(self) -> None:
        parsed = parse_time("2020-01-31")

        self.assertEqual(parsed.granularity, TimeGranularity.DAY)
        self.assertEqual(parsed.time_key, "2020-01-31")
        self.assertEqual(parsed.quarter, 1)
        self.assertEqual(parsed.period_start, date(2020, 1, 31))

    def test_iso_datetime_keeps_the_date(self) -> None:
        self.assertEqual(parse_time("2021-06-15T10:30:00Z").time_key, "2021-06-15")

    def test_year_month_and_year(self) -> None:
        month = parse_time("2020-3")
        year = parse_time("2019")

        self.assertEqual(month.time_key, "2020-03")
        self.assertEqual(month.label, "Mar 2020")
        self.assertEqual(year.granularity, TimeGranularity.YEAR)
        self.assertEqual(year.period_start, date(2019, 1, 1))

    def test_quarters_in_both_orders(self) -> None:
        self.assertEqual(parse_time("Q3 2020").time_key, "2020-Q3")
        self.assertEqual(parse_time("2020-Q3").time_key, "2020-Q3")
        self.assertEqual(parse_time("q1-2021").period_start, date(2021, 1, 1))

    def test_month_names(self) -> None:
        self.assertEqual(parse_time("Sept 2020").time_key, "2020-09")
        self.assertEqual(parse_time("January 2021").time_key, "2021-01")

    def test_slash_dates_prefer_month_first(self) -> None:
        self.assertEqual(parse_time("03/04/2020").time_key, "2020-03-04")
        self.assertEqual(parse_time("25/12/2020").time_key, "2020-12-25")

    def test_custom_formats_are_tried_first(self) -> None:
        parsed = parse_time("04.03.2020", ("%d.%m.%Y",))

        self.assertEqual(parsed.time_key, "2020-03-04")

    def test_custom_month_format_has_month_granularity(self) -> None:
        parsed = parse_time("202003", ("%Y%m",))

        self.assertEqual(parsed.granularity, TimeGranularity.MONTH)
        self.assertEqual(parsed.time_key, "2020-03")

    def test_rejects_unknown_values(self) -> None:
        for raw in ("", "yesterday", "2020-13", "Q5 2020", None):
            with self.subTest(raw=raw):
                with self.assertRaises(TimeParseError):
                    parse_time(raw)

    def test_rejects_year_zero_in_every_form(self) -> None:
        for raw in ("0000", "0000-05", "Q1 0000", "0000-Q2", "May 0000"):
            with self.subTest(raw=raw):
                with self.assertRaises(TimeParseError):
                    parse_time(raw)


if __name__ == "__main__":
    unittest.main()
