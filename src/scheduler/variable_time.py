"""Parsing and arithmetic for hub variable datetime strings.

Hub variables hold datetimes in the form ``yyyy-MM-dd'T'HH:mm:ss.SSS±hhmm``.
A variable that only carries a date uses the time sentinel ``99:99:99.999``;
one that only carries a time of day uses the date sentinel ``9999-99-99``.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Callable, Optional, Tuple


logger = logging.getLogger(__name__)

DATE_SENTINEL = "9999-99-99"
TIME_SENTINEL = "99:99:99.999"

# Arithmetic on time-only values needs some date to anchor to; it is discarded.
_ANCHOR_DATE = date(2000, 1, 1)

_TIMESTAMP_PATTERN = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})"
    r"T(?P<time>\d{2}:\d{2}:\d{2}\.\d{3})"
    r"(?P<offset>Z|[+-]\d{2}:?\d{2})?$"
)

ParsedParts = Tuple[Optional[date], Optional[time]]


@dataclass(frozen=True)
class VariableTimestamp:
    """A hub variable value; either component may be absent."""

    date: Optional[date]
    time: Optional[time]
    offset_text: str = ""

    @property
    def has_date(self) -> bool:
        return self.date is not None

    @property
    def has_time(self) -> bool:
        return self.time is not None

    @property
    def specific_date(self) -> Optional[date]:
        """Calendar date encoded by the value, or None for time-only values."""
        return self.date

    def add_minutes(self, minutes: int) -> "VariableTimestamp":
        """
        Shift the value by a number of minutes.

        The shift is applied to the full timestamp (date-less values are
        anchored to a placeholder date, time-less values to midnight), and
        only the components the value originally had are kept. A time-only
        value therefore wraps around midnight without gaining a date, and a
        date-only value only changes when the offset crosses a day boundary.

        Args:
            minutes: Offset in minutes (negative moves earlier)

        Returns:
            New VariableTimestamp with the same sentinels as this one
        """
        if minutes == 0:
            return self

        anchor = datetime.combine(self.date or _ANCHOR_DATE, self.time or time(0, 0))
        shifted = anchor + timedelta(minutes=minutes)

        return VariableTimestamp(
            date=shifted.date() if self.has_date else None,
            time=shifted.time() if self.has_time else None,
            offset_text=self.offset_text,
        )

    def to_datetime(self, today: date, tz: tzinfo) -> datetime:
        """
        Concrete local datetime for triggering.

        Time-only values land on ``today``; date-only values at midnight.
        The wall-clock fields are read as local time in ``tz``.
        """
        return datetime.combine(self.date or today, self.time or time(0, 0), tzinfo=tz)

    def format(self) -> str:
        """Render back into the hub's wire form, sentinels included."""
        date_part = self.date.isoformat() if self.has_date else DATE_SENTINEL
        if self.has_time:
            millis = self.time.microsecond // 1000
            time_part = f"{self.time.strftime('%H:%M:%S')}.{millis:03d}"
        else:
            time_part = TIME_SENTINEL
        return f"{date_part}T{time_part}{self.offset_text}"

    def describe(self) -> str:
        """Short human readable form without sentinels, e.g. '2025-04-01 07:30'."""
        parts = []
        if self.has_date:
            parts.append(self.date.isoformat())
        if self.has_time:
            parts.append(self.time.strftime("%H:%M"))
        return " ".join(parts)

    def __str__(self) -> str:
        return self.format()


def _to_date(text: str) -> Optional[date]:
    year, month, day = (int(part) for part in text.split("-"))
    if not (1 <= month <= 12 and 1 <= day <= 31):
        return None
    try:
        return date(year, month, day)
    except ValueError:
        # e.g. February 30th
        return None


def _to_time(text: str) -> Optional[time]:
    clock, millis = text.split(".")
    hour, minute, second = (int(part) for part in clock.split(":"))
    if hour > 23 or minute > 59 or second > 59:
        return None
    return time(hour, minute, second, int(millis) * 1000)


def _parse_full(date_text: str, time_text: str) -> Optional[ParsedParts]:
    if date_text == DATE_SENTINEL or time_text == TIME_SENTINEL:
        return None
    parsed_date = _to_date(date_text)
    parsed_time = _to_time(time_text)
    if parsed_date is None or parsed_time is None:
        return None
    return parsed_date, parsed_time


def _parse_date_only(date_text: str, time_text: str) -> Optional[ParsedParts]:
    if time_text != TIME_SENTINEL or date_text == DATE_SENTINEL:
        return None
    parsed_date = _to_date(date_text)
    if parsed_date is None:
        return None
    return parsed_date, None


def _parse_time_only(date_text: str, time_text: str) -> Optional[ParsedParts]:
    if date_text != DATE_SENTINEL or time_text == TIME_SENTINEL:
        return None
    parsed_time = _to_time(time_text)
    if parsed_time is None:
        return None
    return None, parsed_time


# Tried in order; the first parser returning a result wins.
_PARSERS: Tuple[Callable[[str, str], Optional[ParsedParts]], ...] = (
    _parse_full,
    _parse_date_only,
    _parse_time_only,
)


def parse_variable_timestamp(raw: Optional[str]) -> Optional[VariableTimestamp]:
    """
    Parse a hub variable datetime string.

    Args:
        raw: Raw variable value

    Returns:
        VariableTimestamp, or None if the value is empty or unparsable
    """
    if not raw:
        return None

    match = _TIMESTAMP_PATTERN.match(raw.strip())
    if not match:
        logger.error(f"Unrecognized variable timestamp format: '{raw}'")
        return None

    date_text = match.group("date")
    time_text = match.group("time")
    for parser in _PARSERS:
        parts = parser(date_text, time_text)
        if parts is not None:
            parsed_date, parsed_time = parts
            return VariableTimestamp(
                date=parsed_date,
                time=parsed_time,
                offset_text=match.group("offset") or "",
            )

    logger.error(f"Invalid date or time in variable timestamp: '{raw}'")
    return None
