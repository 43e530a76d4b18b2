from __future__ import annotations

import io
import unittest

from app.domain.analysis import MalformedInputError, ParsingOptions
from app.services.profiler_service import FileProfiler
from db.models.file_analysis import ColumnDataType


class TestFileProfiler(unittest.TestCase):
    def setUp(self) -> None:
        self.profiler = FileProfiler(sample_size=3, null_tokens=("null", "n/a"))

    def test_detects_header_and_column_types(self) -> None:
        content = b"date,country,value,share\n2020-01-01,US,12.5,4%\n2020-01-02,BR,3,5.5%\n"

        result = self.profiler.analyze(content)

        self.assertTrue(result.has_header)
        self.assertEqual(result.delimiter, ",")
        self.assertEqual(result.encoding, "utf-8-sig")
        self.assertEqual(result.headers, ("date", "country", "value", "share"))
        self.assertEqual(result.row_count, 2)
        self.assertEqual(result.column_count, 4)
        self.assertEqual(
            [column.data_type for column in result.columns],
            [
                ColumnDataType.TEXT,
                ColumnDataType.TEXT,
                ColumnDataType.DECIMAL,
                ColumnDataType.PERCENTAGE,
            ],
        )

    def test_integer_column_and_samples_are_distinct(self) -> None:
        content = b"year,population\n2020,10\n2020,11\n2021,12\n2022,13\n"

        result = self.profiler.analyze(content)

        year = result.columns[0]
        self.assertEqual(year.data_type, ColumnDataType.INTEGER)
        self.assertEqual(year.sample_values, ("2020", "2021", "2022"))
        self.assertEqual(year.unique_count, 3)

    def test_detects_semicolon_delimiter(self) -> None:
        content = "região;valor\nNorte;1,5\nSul;2,5\n".encode("utf-8")

        result = self.profiler.analyze(content)

        self.assertEqual(result.delimiter, ";")
        self.assertEqual(result.headers, ("região", "valor"))

    def test_falls_back_to_cp1252(self) -> None:
        content = "city,value\nSão Paulo,1\n".encode("cp1252")

        result = self.profiler.analyze(content)

        self.assertEqual(result.encoding, "cp1252")
        self.assertEqual(result.columns[0].sample_values, ("São Paulo",))

    def test_headerless_file_gets_positional_names(self) -> None:
        content = b"1,2\n3,4\n"

        result = self.profiler.analyze(content)

        self.assertFalse(result.has_header)
        self.assertEqual(result.headers, ("Column_1", "Column_2"))
        self.assertEqual(result.row_count, 2)

    def test_explicit_options_override_detection(self) -> None:
        content = b"a|b\nc|d\n"

        result = self.profiler.analyze(content, ParsingOptions(delimiter="|", has_header=False))

        self.assertFalse(result.has_header)
        self.assertEqual(result.row_count, 2)

    def test_duplicate_and_blank_headers_are_made_unique(self) -> None:
        content = b"value,value,\n1,2,3\n"

        result = self.profiler.analyze(content, ParsingOptions(has_header=True))

        self.assertEqual(result.headers, ("value", "value_2", "Column_3"))

    def test_counts_nulls_and_empties(self) -> None:
        content = b"name,value\nA,1\nB,\nC,null\nD,N/A\n"

        result = self.profiler.analyze(content)

        value = result.columns[1]
        self.assertEqual(value.empty_count, 1)
        self.assertEqual(value.null_count, 2)
        self.assertEqual(value.data_type, ColumnDataType.INTEGER)

    def test_ragged_rows_rejected_beyond_tolerance(self) -> None:
        content = b"a,b\n1,2\n3\n4,5\n"

        with self.assertRaises(MalformedInputError) as ctx:
            self.profiler.analyze(content)

        self.assertEqual(ctx.exception.context["ragged_rows"], 1)

    def test_ragged_rows_accepted_within_tolerance(self) -> None:
        content = b"a,b\n1,2\n3\n4,5\n"

        result = self.profiler.analyze(content, ParsingOptions(ragged_row_tolerance=0.5))

        self.assertEqual(result.ragged_row_count, 1)
        self.assertEqual(result.columns[1].null_count, 1)

    def test_empty_file_is_malformed(self) -> None:
        with self.assertRaises(MalformedInputError):
            self.profiler.analyze(b"\n\n")

    def test_unknown_encoding_is_malformed(self) -> None:
        with self.assertRaises(MalformedInputError):
            self.profiler.analyze(b"a,b\n1,2\n", ParsingOptions(encoding="no-such-codec"))

    def test_iter_rows_numbers_rows_after_header(self) -> None:
        content = b"a,b\n1,2\n\n3,4\n"
        result = self.profiler.analyze(content)

        rows = list(self.profiler.iter_rows(io.BytesIO(content), result.parsing_options()))

        self.assertEqual(rows, [(2, ["1", "2"]), (3, ["3", "4"])])

    def test_checksum_is_sha256_of_bytes(self) -> None:
        content = b"a,b\n1,2\n"

        result = self.profiler.analyze(content)

        self.assertEqual(len(result.checksum), 64)
        self.assertEqual(result.file_size_bytes, len(content))


if __name__ == "__main__":
    unittest.main()
