"""
app/services/profiler_service.py

Structural profiling of uploaded delimited files.

The profiler decodes the bytes, detects delimiter and header presence when
they are not supplied, and infers one data type per column from the ladder
integer -> decimal -> percentage -> text. Null tokens and cells missing from
short rows count as nulls; blank cells count as empties. Neither takes part
in type inference.
"""

from __future__ import annotations

import codecs
import csv
import hashlib
import io
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from typing import BinaryIO

from app.config import get_profiler_settings
from app.domain.analysis import AnalysisResult, ColumnProfileResult, MalformedInputError, ParsingOptions
from app.validators.value_parser import is_decimal_text, is_integer_text, is_percentage_text
from db.models.file_analysis import ColumnDataType

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS: tuple[str, ...] = (",", ";", "\t", "|")
FALLBACK_ENCODINGS: tuple[str, ...] = ("utf-8-sig", "cp1252", "latin-1")

# Rows inspected by header detection.
_HEADER_SAMPLE_ROWS = 20


@dataclass
class _ColumnStats:
    sample_values: list[str] = field(default_factory=list)
    distinct_values: set[str] = field(default_factory=set)
    null_count: int = 0
    empty_count: int = 0
    all_integer: bool = True
    all_decimal: bool = True
    all_percentage: bool = True

    @property
    def has_values(self) -> bool:
        return bool(self.distinct_values)

    def data_type(self) -> str:
        if not self.has_values:
            return ColumnDataType.TEXT
        if self.all_integer:
            return ColumnDataType.INTEGER
        if self.all_decimal:
            return ColumnDataType.DECIMAL
        if self.all_percentage:
            return ColumnDataType.PERCENTAGE
        return ColumnDataType.TEXT


class FileProfiler:
    """
    Infers the structure of one delimited file.
    """

    def __init__(
        self,
        *,
        sample_size: int = 5,
        ragged_row_tolerance: float = 0.0,
        null_tokens: Sequence[str] = (),
    ) -> None:
        self._sample_size = max(1, sample_size)
        self._ragged_row_tolerance = min(1.0, max(0.0, ragged_row_tolerance))
        self._null_tokens = frozenset(token.strip().lower() for token in null_tokens if token.strip())

    @property
    def null_tokens(self) -> frozenset[str]:
        return self._null_tokens

    def analyze(self, stream: BinaryIO | bytes, options: ParsingOptions | None = None) -> AnalysisResult:
        """
        Profile a whole file. Raises MalformedInputError when it cannot be read.
        """

        options = options or ParsingOptions()
        raw = stream if isinstance(stream, bytes) else stream.read()
        text, encoding = self._decode(raw, options.encoding)
        delimiter = options.delimiter or self._detect_delimiter(text)

        records = [cells for _, cells in self._tokenize(io.StringIO(text, newline=""), delimiter)]
        if not records:
            raise MalformedInputError("File contains no rows.", context={"encoding": encoding})

        has_header = options.has_header
        if has_header is None:
            has_header = self._detect_header(records)

        if has_header:
            headers = self._clean_headers(records[0])
            data_rows = records[1:]
        else:
            headers = tuple(f"Column_{index}" for index in range(1, len(records[0]) + 1))
            data_rows = records

        column_count = len(headers)
        ragged_row_count = sum(1 for cells in data_rows if len(cells) != column_count)
        tolerance = (
            self._ragged_row_tolerance
            if options.ragged_row_tolerance is None
            else min(1.0, max(0.0, options.ragged_row_tolerance))
        )
        if data_rows and ragged_row_count / len(data_rows) > tolerance:
            raise MalformedInputError(
                "Rows have inconsistent column counts.",
                context={
                    "expected_columns": column_count,
                    "ragged_rows": ragged_row_count,
                    "data_rows": len(data_rows),
                    "tolerance": tolerance,
                },
            )

        stats = [_ColumnStats() for _ in headers]
        for cells in data_rows:
            self._accumulate(stats, cells)

        columns = tuple(
            ColumnProfileResult(
                column_index=index,
                name=headers[index],
                data_type=column.data_type(),
                sample_values=tuple(column.sample_values),
                null_count=column.null_count,
                empty_count=column.empty_count,
                unique_count=len(column.distinct_values),
            )
            for index, column in enumerate(stats)
        )

        logger.info(
            "Profiled file: rows=%s columns=%s delimiter=%r encoding=%s header=%s",
            len(data_rows),
            column_count,
            delimiter,
            encoding,
            has_header,
        )
        return AnalysisResult(
            row_count=len(data_rows),
            column_count=column_count,
            delimiter=delimiter,
            encoding=encoding,
            has_header=has_header,
            headers=headers,
            columns=columns,
            ragged_row_count=ragged_row_count,
            checksum=hashlib.sha256(raw).hexdigest(),
            file_size_bytes=len(raw),
        )

    def iter_rows(self, stream: BinaryIO, options: ParsingOptions) -> Iterator[tuple[int, list[str]]]:
        """
        Re-read data rows as ``(row_number, cells)``.

        ``row_number`` is the 1-based position among non-blank records, so the
        header (when present) is row 1 and the first data row is row 2.
        """

        if options.delimiter is None or options.has_header is None or options.encoding is None:
            raise ValueError("iter_rows needs the delimiter, header flag and encoding of an analysis.")

        text_stream = io.TextIOWrapper(stream, encoding=options.encoding, newline="")
        try:
            for row_number, cells in self._tokenize(text_stream, options.delimiter):
                if options.has_header and row_number == 1:
                    continue
                yield row_number, cells
        except UnicodeDecodeError as exc:
            raise MalformedInputError(
                f"File cannot be decoded as {options.encoding}.",
                context={"encoding": options.encoding},
            ) from exc
        finally:
            text_stream.detach()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _decode(raw: bytes, encoding: str | None) -> tuple[str, str]:
        if encoding:
            try:
                codecs.lookup(encoding)
            except LookupError as exc:
                raise MalformedInputError(f"Unknown encoding '{encoding}'.") from exc
            try:
                return raw.decode(encoding), encoding
            except UnicodeDecodeError as exc:
                raise MalformedInputError(
                    f"File cannot be decoded as {encoding}.",
                    context={"encoding": encoding, "position": exc.start},
                ) from exc

        for candidate in FALLBACK_ENCODINGS:
            try:
                return raw.decode(candidate), candidate
            except UnicodeDecodeError:
                continue
        raise MalformedInputError("File cannot be decoded with any supported encoding.")

    @staticmethod
    def _detect_delimiter(text: str) -> str:
        first_line = next((line for line in text.splitlines() if line.strip()), "")
        counts = {candidate: first_line.count(candidate) for candidate in CANDIDATE_DELIMITERS}
        best = max(CANDIDATE_DELIMITERS, key=lambda candidate: counts[candidate])
        return best if counts[best] > 0 else ","

    @staticmethod
    def _tokenize(text_stream: io.TextIOBase, delimiter: str) -> Iterator[tuple[int, list[str]]]:
        reader = csv.reader(text_stream, delimiter=delimiter)
        record_number = 0
        try:
            for cells in reader:
                if not cells or all(not cell.strip() for cell in cells):
                    continue
                record_number += 1
                yield record_number, cells
        except csv.Error as exc:
            raise MalformedInputError(
                f"File cannot be tokenized: {exc}",
                context={"line": reader.line_num},
            ) from exc

    def _detect_header(self, records: list[list[str]]) -> bool:
        first = [cell.strip() for cell in records[0]]
        if not first or any(not cell or self._is_numeric(cell) for cell in first):
            return False
        if len(records) == 1:
            return True

        second = records[1]
        second_text = sum(1 for cell in second if cell.strip() and not self._is_numeric(cell.strip()))
        if second_text < len(first):
            return True

        # All-text file: header when its names never recur in their own column.
        sample_rows = records[1 : _HEADER_SAMPLE_ROWS + 1]
        for index, name in enumerate(first):
            if any(index < len(row) and row[index].strip() == name for row in sample_rows):
                return False
        return len(set(first)) == len(first)

    @staticmethod
    def _clean_headers(cells: Sequence[str]) -> tuple[str, ...]:
        headers: list[str] = []
        seen: dict[str, int] = {}
        for index, cell in enumerate(cells, start=1):
            name = " ".join(cell.split()) or f"Column_{index}"
            if name in seen:
                seen[name] += 1
                name = f"{name}_{seen[name]}"
            else:
                seen[name] = 1
            headers.append(name)
        return tuple(headers)

    def _accumulate(self, stats: list[_ColumnStats], cells: Sequence[str]) -> None:
        for index, column in enumerate(stats):
            if index >= len(cells):
                column.null_count += 1
                continue
            value = cells[index].strip()
            if not value:
                column.empty_count += 1
                continue
            if value.lower() in self._null_tokens:
                column.null_count += 1
                continue

            if value not in column.distinct_values:
                column.distinct_values.add(value)
                if len(column.sample_values) < self._sample_size:
                    column.sample_values.append(value)
            if column.all_integer and not is_integer_text(value):
                column.all_integer = False
            if column.all_decimal and not is_decimal_text(value):
                column.all_decimal = False
            if column.all_percentage and not is_percentage_text(value):
                column.all_percentage = False

    @staticmethod
    def _is_numeric(value: str) -> bool:
        return is_percentage_text(value)


@lru_cache(maxsize=1)
def get_file_profiler() -> FileProfiler:
    """
    Return a profiler configured from environment settings.
    """

    settings = get_profiler_settings()
    return FileProfiler(
        sample_size=settings.sample_size,
        ragged_row_tolerance=settings.ragged_row_tolerance,
        null_tokens=settings.null_tokens,
    )
