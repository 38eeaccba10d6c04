"""Date and dateTime values as half-open UTC intervals.

Every date-ish value is turned into ``(start, end)`` in integer
microseconds since the Unix epoch.  The width of the interval follows the
precision the value was written with: ``2013`` covers the whole year,
``2013-03-14`` the whole day, ``2013-03-14T10:00:00Z`` a single second.
Values without an offset are read as UTC.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

Interval = tuple[int, int]
Clock = Callable[[], datetime]

# Open interval bounds for periods missing a start or an end.
MIN_INSTANT = -(2**62)
MAX_INSTANT = 2**62

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MICROSECOND = timedelta(microseconds=1)

_DATE_RE = re.compile(
    r"^(?P<year>\d{4})"
    r"(?:-(?P<month>\d{2})"
    r"(?:-(?P<day>\d{2})"
    r"(?:T(?P<hour>\d{2}):(?P<minute>\d{2})"
    r"(?::(?P<second>\d{2})(?:\.(?P<fraction>\d+))?)?"
    r"(?P<tz>Z|[+-]\d{2}:\d{2})?)?)?)?$"
)


class DateParseError(ValueError):
    """Raised when a string is not a recognisable date or dateTime."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_micros(moment: datetime) -> int:
    """Return *moment* as microseconds since the epoch (naive means UTC)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // _ONE_MICROSECOND


def _offset(tz: str | None) -> timezone:
    if tz is None or tz == "Z":
        return timezone.utc
    sign = -1 if tz[0] == "-" else 1
    hours, minutes = int(tz[1:3]), int(tz[4:6])
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    total = year * 12 + (month - 1) + months
    return total // 12, total % 12 + 1


def parse_interval(text: str) -> Interval:
    """Parse a FHIR date, dateTime, or instant into a UTC interval.

    Raises:
        DateParseError: If *text* is not in a supported format.
    """
    if not isinstance(text, str):
        raise DateParseError(f"Not a date string: {text!r}")
    match = _DATE_RE.match(text.strip())
    if match is None:
        raise DateParseError(f"Unsupported date format: {text!r}")
    parts = match.groupdict()
    year = int(parts["year"])
    month = int(parts["month"] or 1)
    day = int(parts["day"] or 1)
    tz = _offset(parts["tz"])

    try:
        if parts["month"] is None:
            start = datetime(year, 1, 1, tzinfo=tz)
            end_year, end_month = year + 1, 1
            end = _safe_datetime(end_year, end_month, 1, tz)
        elif parts["day"] is None:
            start = datetime(year, month, 1, tzinfo=tz)
            end_year, end_month = _add_months(year, month, 1)
            end = _safe_datetime(end_year, end_month, 1, tz)
        elif parts["hour"] is None:
            start = datetime(year, month, day, tzinfo=tz)
            end = start + timedelta(days=1)
        else:
            hour, minute = int(parts["hour"]), int(parts["minute"])
            if parts["second"] is None:
                start = datetime(year, month, day, hour, minute, tzinfo=tz)
                end = start + timedelta(minutes=1)
            else:
                second = int(parts["second"])
                fraction = parts["fraction"]
                if fraction is None:
                    start = datetime(year, month, day, hour, minute, second, tzinfo=tz)
                    end = start + timedelta(seconds=1)
                else:
                    digits = min(len(fraction), 6)
                    micros = int(fraction[:digits].ljust(6, "0"))
                    start = datetime(year, month, day, hour, minute, second, micros, tzinfo=tz)
                    end = start + timedelta(microseconds=10 ** (6 - digits))
    except ValueError as exc:
        raise DateParseError(f"Invalid date {text!r}: {exc}") from None

    return to_micros(start), to_micros(end) if end is not None else MAX_INSTANT


def _safe_datetime(year: int, month: int, day: int, tz: timezone) -> datetime | None:
    # The interval of the last representable year or month has no end.
    if year > 9999:
        return None
    return datetime(year, month, day, tzinfo=tz)


def period_interval(period: dict) -> Interval:
    """Return the interval covered by a FHIR ``Period``.

    A missing ``start`` or ``end`` leaves that side open.
    """
    start = parse_interval(period["start"])[0] if period.get("start") else MIN_INSTANT
    end = parse_interval(period["end"])[1] if period.get("end") else MAX_INSTANT
    return start, end


def overlaps(a: Interval, b: Interval) -> bool:
    return a[0] < b[1] and b[0] < a[1]


def widen(target: Interval, now: datetime, tolerance: float) -> Interval:
    """Widen *target* on both sides by ``tolerance * |now - target.start|``."""
    margin = int(abs(to_micros(now) - target[0]) * tolerance)
    return target[0] - margin, target[1] + margin
