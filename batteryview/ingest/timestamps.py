"""Resolution of absolute reading timestamps.

A reading's time comes from, in order of precedence:

1. a date and time embedded in the screenshot filename
   (``20240115-143000_bms.png``, ``2024-01-15_14-30-00.jpg``),
2. a filename date (or the upload context date) combined with the time of
   day printed in the screenshot itself (``"09:15"``),
3. midnight of that date.

Nothing here raises: unusable components fall back to the next source.
"""

import re
from datetime import date, datetime, time

_FILENAME_RE = re.compile(
    r"(?<!\d)(\d{4})[-_]?(\d{2})[-_]?(\d{2})"
    r"(?:[-_T ]?(\d{2})[-_:]?(\d{2})[-_:]?(\d{2}))?"
)
_TIME_OF_DAY_RE = re.compile(r"(?<!\d)(\d{1,2}):(\d{2})(?::(\d{2}))?(?!\d)")

MIN_YEAR = 2000
MAX_YEAR = 2099


def _build_date(year: int, month: int, day: int) -> date | None:
    if not (MIN_YEAR <= year <= MAX_YEAR):
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _build_time(hour: int, minute: int, second: int) -> time | None:
    if 0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59:
        return time(hour, minute, second)
    return None


def parse_filename_timestamp(filename: str | None) -> tuple[date, time | None] | None:
    """Extract an embedded date (and optional time) from a filename.

    Args:
        filename: File name or path, e.g. ``"20240115-143000_x.png"``

    Returns:
        ``(date, time)`` where time may be None, or None when no valid date
        is found
    """
    if not filename:
        return None

    pos = 0
    while True:
        match = _FILENAME_RE.search(filename, pos)
        if match is None:
            return None
        # Overlapping scan: digits of an invalid date may start a valid one
        pos = match.start() + 1
        year, month, day = (int(g) for g in match.group(1, 2, 3))
        found_date = _build_date(year, month, day)
        if found_date is None:
            continue

        found_time = None
        if match.group(4) is not None:
            hour, minute, second = (int(g) for g in match.group(4, 5, 6))
            found_time = _build_time(hour, minute, second)

        return found_date, found_time


def parse_time_of_day(value: str | None) -> time | None:
    """Parse an ``H:MM[:SS]`` time printed in a screenshot."""
    if not value:
        return None

    match = _TIME_OF_DAY_RE.search(value)
    if match is None:
        return None

    hour, minute = int(match.group(1)), int(match.group(2))
    second = int(match.group(3)) if match.group(3) else 0
    return _build_time(hour, minute, second)


def resolve_timestamp(
    filename: str | None, context: datetime, reading_time: str | None
) -> datetime:
    """Resolve the absolute timestamp of a reading.

    Args:
        filename: Source filename (may carry a date and time)
        context: Upload context date, only its calendar date is used
        reading_time: Time of day extracted from the screenshot

    Returns:
        Naive datetime, never raises
    """
    from_filename = parse_filename_timestamp(filename)

    if from_filename is not None:
        day, time_of_day = from_filename
        if time_of_day is not None:
            return datetime.combine(day, time_of_day)
    else:
        day = context.date()

    time_of_day = parse_time_of_day(reading_time)
    return datetime.combine(day, time_of_day or time.min)
