"""
app/validators/value_parser.py

Cell-level parsing for numeric values and time periods.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from app.domain.mapping import NumberFormatRule
from db.models.dimension import TimeGranularity

# Numeric(20, 6) leaves 14 integer digits.
MAX_ABS_VALUE = Decimal("1e14")
VALUE_QUANTUM = Decimal("0.000001")

_CURRENCY_SYMBOLS = "$€£¥₹₩₽"

_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_DECIMAL_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_PERCENTAGE_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)\s*%$")

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}([T ].*)?$")
_YEAR_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})$")
_YEAR_RE = re.compile(r"^(\d{4})$")
_QUARTER_FIRST_RE = re.compile(r"^[Qq]([1-4])[\s-]*(\d{4})$")
_YEAR_FIRST_QUARTER_RE = re.compile(r"^(\d{4})[\s-]*[Qq]([1-4])$")
_MONTH_NAME_RE = re.compile(r"^([A-Za-z]+)\.?[\s-]+(\d{4})$")

_MONTH_NAMES: dict[str, int] = {
    name: index
    for index, names in enumerate(
        (
            ("jan", "january"),
            ("feb", "february"),
            ("mar", "march"),
            ("apr", "april"),
            ("may",),
            ("jun", "june"),
            ("jul", "july"),
            ("aug", "august"),
            ("sep", "sept", "september"),
            ("oct", "october"),
            ("nov", "november"),
            ("dec", "december"),
        ),
        start=1,
    )
    for name in names
}
_MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_SLASH_FORMATS: tuple[str, ...] = ("%m/%d/%Y", "%d/%m/%Y")


class ValueParseError(ValueError):
    """
    Raised when a cell cannot be read as a number.
    """


class TimeParseError(ValueError):
    """
    Raised when a cell matches none of the accepted time formats.
    """


# ---------------------------------------------------------------------------
# Type checks used by the profiler
# ---------------------------------------------------------------------------


def is_integer_text(value: str) -> bool:
    return bool(_INTEGER_RE.match(value))


def is_decimal_text(value: str) -> bool:
    return bool(_DECIMAL_RE.match(value))


def is_percentage_text(value: str) -> bool:
    return bool(_PERCENTAGE_RE.match(value)) or is_decimal_text(value)


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------


def parse_decimal(raw: str | None, number_format: NumberFormatRule | None = None) -> Decimal:
    """
    Parse a numeric cell into a Decimal bounded to the fact column precision.

    Currency symbols, percent signs, inner whitespace and thousands separators
    are stripped. A trailing ``%`` keeps the number as written (``4.5%`` -> 4.5).
    """

    if raw is None or not raw.strip():
        raise ValueParseError("Value is empty.")

    decimal_separator = number_format.decimal_separator if number_format else "."
    thousands_separator = number_format.thousands_separator if number_format else ","

    text = raw.strip()
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1]
    text = "".join(ch for ch in text if ch not in _CURRENCY_SYMBOLS and not ch.isspace())
    text = text.rstrip("%")
    if thousands_separator:
        text = text.replace(thousands_separator, "")
    if decimal_separator != ".":
        text = text.replace(decimal_separator, ".")

    if not _DECIMAL_RE.match(text):
        raise ValueParseError(f"Value '{raw}' is not numeric.")

    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise ValueParseError(f"Value '{raw}' is not numeric.") from exc

    if negative:
        value = -value
    if number_format is not None and number_format.scale != 1.0:
        value = value * Decimal(str(number_format.scale))
    if not value.is_finite() or abs(value) >= MAX_ABS_VALUE:
        raise ValueParseError(f"Value '{raw}' is out of range.")
    return value.quantize(VALUE_QUANTUM)


def normalize_decimal(value: Decimal) -> str:
    """
    Canonical text form used in row hashes: fixed-point, no trailing zeros.
    """

    normalized = value.quantize(VALUE_QUANTUM).normalize()
    if normalized == 0:
        return "0"
    return format(normalized, "f")


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParsedTime:
    """
    A time period with its natural key.
    """

    granularity: str
    year: int
    quarter: int | None = None
    month: int | None = None
    day: int | None = None

    def __post_init__(self) -> None:
        if not date.min.year <= self.year <= date.max.year:
            raise TimeParseError(f"Year {self.year} is out of range.")

    @property
    def time_key(self) -> str:
        if self.granularity == TimeGranularity.DAY:
            return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"
        if self.granularity == TimeGranularity.MONTH:
            return f"{self.year:04d}-{self.month:02d}"
        if self.granularity == TimeGranularity.QUARTER:
            return f"{self.year:04d}-Q{self.quarter}"
        return f"{self.year:04d}"

    @property
    def label(self) -> str:
        if self.granularity == TimeGranularity.DAY:
            return self.time_key
        if self.granularity == TimeGranularity.MONTH:
            return f"{_MONTH_LABELS[self.month - 1]} {self.year}"
        if self.granularity == TimeGranularity.QUARTER:
            return f"Q{self.quarter} {self.year}"
        return str(self.year)

    @property
    def period_start(self) -> date:
        if self.granularity == TimeGranularity.QUARTER:
            return date(self.year, (self.quarter - 1) * 3 + 1, 1)
        return date(self.year, self.month or 1, self.day or 1)


def _from_date(value: date) -> ParsedTime:
    return ParsedTime(
        granularity=TimeGranularity.DAY,
        year=value.year,
        quarter=(value.month - 1) // 3 + 1,
        month=value.month,
        day=value.day,
    )


def _from_month(year: int, month: int) -> ParsedTime:
    if not 1 <= month <= 12:
        raise TimeParseError(f"Month {month} is out of range.")
    return ParsedTime(
        granularity=TimeGranularity.MONTH,
        year=year,
        quarter=(month - 1) // 3 + 1,
        month=month,
    )


def _granularity_of_format(fmt: str) -> str:
    if "%d" in fmt or "%j" in fmt:
        return TimeGranularity.DAY
    if "%m" in fmt or "%b" in fmt or "%B" in fmt:
        return TimeGranularity.MONTH
    return TimeGranularity.YEAR


def _parse_with_format(text: str, fmt: str) -> ParsedTime | None:
    try:
        parsed = datetime.strptime(text, fmt)
    except ValueError:
        return None
    granularity = _granularity_of_format(fmt)
    if granularity == TimeGranularity.DAY:
        return _from_date(parsed.date())
    if granularity == TimeGranularity.MONTH:
        return _from_month(parsed.year, parsed.month)
    return ParsedTime(granularity=TimeGranularity.YEAR, year=parsed.year)


def parse_time(raw: str | None, formats: tuple[str, ...] = ()) -> ParsedTime:
    """
    Parse a time cell. Custom ``formats`` are tried first, then the built-in
    ladder: ISO date/datetime, YYYY-MM, YYYY, quarters, month names, slash dates.
    """

    if raw is None or not raw.strip():
        raise TimeParseError("Time value is empty.")
    text = " ".join(raw.split())

    for fmt in formats:
        parsed = _parse_with_format(text, fmt)
        if parsed is not None:
            return parsed

    if _ISO_DATE_RE.match(text):
        candidate = text[:-1] + "+00:00" if text.endswith("Z") else text
        try:
            return _from_date(datetime.fromisoformat(candidate).date())
        except ValueError:
            pass

    match = _YEAR_MONTH_RE.match(text)
    if match:
        return _from_month(int(match.group(1)), int(match.group(2)))

    match = _YEAR_RE.match(text)
    if match:
        return ParsedTime(granularity=TimeGranularity.YEAR, year=int(match.group(1)))

    match = _QUARTER_FIRST_RE.match(text)
    if match:
        return ParsedTime(
            granularity=TimeGranularity.QUARTER,
            year=int(match.group(2)),
            quarter=int(match.group(1)),
        )

    match = _YEAR_FIRST_QUARTER_RE.match(text)
    if match:
        return ParsedTime(
            granularity=TimeGranularity.QUARTER,
            year=int(match.group(1)),
            quarter=int(match.group(2)),
        )

    match = _MONTH_NAME_RE.match(text)
    if match:
        month = _MONTH_NAMES.get(match.group(1).lower())
        if month is not None:
            return _from_month(int(match.group(2)), month)

    for fmt in _SLASH_FORMATS:
        parsed = _parse_with_format(text, fmt)
        if parsed is not None:
            return parsed

    raise TimeParseError(f"Unrecognised time value '{raw}'.")
