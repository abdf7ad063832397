"""
Date and time helpers.

``parse_flexible_date`` accepts the formats business spreadsheets actually
contain: ISO dates, day-first and month-first slash dates, dashed day-first
dates, and spreadsheet serial day numbers (days since 1899-12-30).
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone

# Tried in order; the first successful parse wins.  Day-first precedes
# month-first, so "03/04/2024" is 3 April.
DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%Y/%m/%d",
)

SPREADSHEET_EPOCH = date(1899, 12, 30)

_SERIAL_RE = re.compile(r"^-?\d+(\.\d+)?$")


def utcnow() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def parse_flexible_date(value: str | date | datetime | float | int) -> date:
    """Parse a date from any supported representation.

    Args:
        value: A ``date``/``datetime``, a spreadsheet serial number, or a
            string in one of ``DATE_FORMATS`` (or a numeric serial string).

    Returns:
        The parsed calendar date.

    Raises:
        ValueError: If the value is empty or matches no supported format.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return serial_to_date(float(value))

    text = str(value).strip()
    if not text:
        raise ValueError("Empty date value.")

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    if _SERIAL_RE.match(text):
        return serial_to_date(float(text))

    raise ValueError(
        f"Unrecognised date format: '{text}'. Use YYYY-MM-DD or DD/MM/YYYY."
    )


def serial_to_date(serial: float) -> date:
    """Convert a spreadsheet serial day number to a calendar date."""
    if serial < 1:
        raise ValueError(f"Spreadsheet serial must be >= 1, got {serial}.")
    return SPREADSHEET_EPOCH + timedelta(days=int(serial))
