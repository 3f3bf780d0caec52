"""
Value transforms applied to uploaded patient-list cells.

Each template variable may name a transform. Transforms never raise: an empty
cell becomes ``None`` and a value that cannot be transformed is returned
trimmed and otherwise untouched.
"""

import re
from datetime import date, datetime, timedelta
from typing import Any, Callable

from rivvi.campaigns.schemas import TransformType
from rivvi.patients.hashing import normalize_phone
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)

# Spreadsheet serial day 0 (accounts for the 1900 leap-year bug)
SPREADSHEET_EPOCH = date(1899, 12, 30)

_SHORT_YEAR = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2})$")
_LONG_YEAR = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
_CLOCK_TIME = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?\s*(am|pm)?$", re.IGNORECASE)
_HOUR_ONLY = re.compile(r"^(\d{1,2})\s*(am|pm)$", re.IGNORECASE)

_TEXT_DATE_FORMATS = (
    "%Y/%m/%d",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%A, %B %d, %Y",
)


def _as_number(value: str) -> float | None:
    try:
        return float(value)
    except ValueError:
        return None


def _from_serial(serial: float) -> date | None:
    try:
        return SPREADSHEET_EPOCH + timedelta(days=int(serial))
    except (OverflowError, ValueError):
        return None


def _expand_birth_year(two_digit: int, today: date) -> int:
    """Pick the century for a two-digit birth year."""
    century = today.year // 100 * 100
    if two_digit > today.year % 100:
        return century - 100 + two_digit
    if two_digit < 30:
        # Would make the person over 80: belongs to the previous century
        if today.year - (century + two_digit) > 80:
            return century - 100 + two_digit
        return century + two_digit
    return century - 100 + two_digit


def _not_in_future(value: date, today: date) -> date:
    if value > today:
        return value.replace(year=value.year - 100)
    return value


def _build_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _parse_text_date(value: str) -> date | None:
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        pass
    for fmt in _TEXT_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def parse_birth_date(value: str, today: date | None = None) -> date | None:
    """Parse a birth date written in any of the formats patient lists use.

    Tries, in order: spreadsheet serial numbers (> 1000), MM/DD/YY, DD/MM/YY,
    MM/DD/YYYY, then ISO and a few spelled-out formats. Dates that land in
    the future are moved back a century.
    """
    today = today or date.today()
    value = value.strip()

    number = _as_number(value)
    if number is not None and number > 1000:
        return _from_serial(number)

    match = _SHORT_YEAR.match(value)
    if match:
        first, second, year = (int(g) for g in match.groups())
        parsed = _build_date(_expand_birth_year(year, today), first, second)
        if parsed is None:
            parsed = _build_date(today.year // 100 * 100 - 100 + year, second, first)
        if parsed is not None:
            return _not_in_future(parsed, today)
        return None

    match = _LONG_YEAR.match(value)
    if match:
        month, day, year = (int(g) for g in match.groups())
        return _build_date(year, month, day)

    parsed = _parse_text_date(value)
    if parsed is not None:
        return _not_in_future(parsed, today)
    return None


def format_short_date(value: str) -> str:
    parsed = parse_birth_date(value)
    return parsed.isoformat() if parsed else value


def format_long_date(value: str) -> str:
    """Render a date as e.g. ``Tuesday, March 10, 2025``."""
    number = _as_number(value)
    if number is not None:
        parsed: date | None = _from_serial(number)
    else:
        match = _LONG_YEAR.match(value)
        if match:
            month, day, year = (int(g) for g in match.groups())
            parsed = _build_date(year, month, day)
        else:
            parsed = _parse_text_date(value)
    if parsed is None:
        return value
    return f"{parsed:%A}, {parsed:%B} {parsed.day}, {parsed.year}"


def format_time(value: str) -> str:
    """Render a time as 24h ``HH:MM``."""
    number = _as_number(value)
    if number is not None and 0 <= number < 1:
        total_minutes = round(number * 24 * 60)
        return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"

    match = _CLOCK_TIME.match(value)
    if match:
        hours, minutes, meridiem = int(match.group(1)), int(match.group(2)), match.group(4)
    else:
        match = _HOUR_ONLY.match(value)
        if not match:
            return value
        hours, minutes, meridiem = int(match.group(1)), 0, match.group(2)

    if meridiem:
        meridiem = meridiem.lower()
        if meridiem == "pm" and hours < 12:
            hours += 12
        elif meridiem == "am" and hours == 12:
            hours = 0
    if hours > 23 or minutes > 59:
        return value
    return f"{hours:02d}:{minutes:02d}"


def format_phone(value: str) -> str:
    return normalize_phone(value) or value


def format_provider_name(value: str) -> str:
    """Capitalize each word, keeping short all-caps abbreviations (MD, NP)."""
    words = []
    for word in value.split(" "):
        if word.upper() == word and len(word) <= 3:
            words.append(word)
        else:
            words.append(word[:1].upper() + word[1:].lower())
    return " ".join(words)


_TRANSFORMS: dict[TransformType, Callable[[str], str]] = {
    TransformType.SHORT_DATE: format_short_date,
    TransformType.LONG_DATE: format_long_date,
    TransformType.TIME: format_time,
    TransformType.PHONE: format_phone,
    TransformType.PROVIDER: format_provider_name,
}


def transform_value(value: Any, transform: TransformType | str | None = None) -> str | None:
    """Apply a named transform to a raw cell value."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    try:
        func = _TRANSFORMS.get(TransformType(transform)) if transform else None
    except ValueError:
        func = None
    if func is None:
        return text

    try:
        return func(text)
    except (ValueError, OverflowError) as e:
        logger.warning(
            "Transform failed, keeping raw value",
            extra={"transform": str(transform), "error": str(e)},
        )
        return text
