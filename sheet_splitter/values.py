"""Cell value normalisation and number/date parsing helpers."""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any

UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
SERIAL_UNIX_OFFSET = 25569  # serial of 1970-01-01, includes the 1900 leap-year bug
SERIAL_DATE_MIN = 20000
SERIAL_DATE_MAX = 60000

NUMERIC_TEXT_RE = re.compile(r"^[$€£¥]?\s*-?[\d,]+(\.\d+)?%?$")
NON_NUMERIC_CHARS_RE = re.compile(r"[^0-9.\-]")
LEADING_FLOAT_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
STRICT_NUMBER_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")

DATE_STRING_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%m-%d-%Y",
    "%d-%m-%Y",
    "%Y%m%d",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%B %d, %Y",
)


class ParsedNumber(float):
    """A number recovered from text; never mistaken for a date serial."""

    __slots__ = ()

    def __repr__(self) -> str:
        if self.is_integer():
            return repr(int(self))
        return float.__repr__(self)

    __str__ = __repr__


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_blank(value: Any) -> bool:
    """True for missing cells and empty strings (whitespace is not blank)."""
    return value is None or value == ""


def is_empty_text(value: Any) -> bool:
    """True for missing cells and whitespace-only strings."""
    return value is None or cell_text(value).strip() == ""


def tidy_number(value: float) -> int | float:
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    return value


def cell_text(value: Any) -> str:
    """Render a cell the way a spreadsheet would display it as plain text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, ParsedNumber):
        return str(value)
    if isinstance(value, float):
        return str(tidy_number(value))
    return str(value)


def parse_float(value: Any) -> float | None:
    """Read the leading number of a value, ignoring any trailing text."""
    if is_number(value):
        return float(value)
    if value is None or isinstance(value, bool):
        return None
    match = LEADING_FLOAT_RE.match(str(value))
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def strict_number(value: Any) -> float | None:
    """Read a value only when the whole of it is a finite number."""
    if is_number(value):
        number = float(value)
        return number if math.isfinite(number) else None
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not STRICT_NUMBER_RE.match(text):
        return None
    number = float(text)
    return number if math.isfinite(number) else None


def is_serial_date(value: Any) -> bool:
    return (
        is_number(value)
        and not isinstance(value, ParsedNumber)
        and SERIAL_DATE_MIN < value < SERIAL_DATE_MAX
    )


def serial_to_datetime(serial: float) -> datetime:
    millis = round((serial - SERIAL_UNIX_OFFSET) * 86400 * 1000)
    return UNIX_EPOCH + timedelta(milliseconds=millis)


def serial_to_iso(serial: float) -> str:
    return serial_to_datetime(serial).strftime("%Y-%m-%d")


def datetime_to_serial(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - UNIX_EPOCH
    return tidy_number(delta.total_seconds() / 86400 + SERIAL_UNIX_OFFSET)


def parse_numeric_text(text: str) -> ParsedNumber | None:
    """Parse currency/percent/thousands-grouped text into a number."""
    if not NUMERIC_TEXT_RE.match(text):
        return None
    cleaned = NON_NUMERIC_CHARS_RE.sub("", text)
    match = LEADING_FLOAT_RE.match(cleaned)
    if not match:
        return None
    return ParsedNumber(match.group(1))


def normalize_value(raw: Any) -> Any:
    """
    Clean one raw cell for the merged table.

    - missing / empty string  -> ""
    - number in the date-serial band -> "YYYY-MM-DD" (UTC)
    - currency / percent / grouped numeric text -> number
    - other text -> trimmed text
    - anything else -> unchanged

    Applying it twice gives the same result as applying it once: numbers
    recovered from text come back as ParsedNumber, which is never decoded
    as a date serial.
    """
    if is_blank(raw):
        return ""
    if is_serial_date(raw):
        return serial_to_iso(raw)
    if isinstance(raw, str):
        trimmed = raw.strip()
        parsed = parse_numeric_text(trimmed)
        return trimmed if parsed is None else parsed
    return raw


def parse_date_text(text: str) -> datetime | None:
    """Best-effort parse of a date string using '.', '/' or '-' separators."""
    candidate = text.strip().replace(".", "-").replace("/", "-")
    if candidate.endswith("Z"):
        candidate = candidate[:-1]
    for fmt in DATE_STRING_FORMATS:
        try:
            return datetime.strptime(candidate, fmt)
        except ValueError:
            continue
    return None
