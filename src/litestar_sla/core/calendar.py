"""SLA calendars.

A calendar decides how SLA hours map onto wall-clock time. Deadlines are
computed with :meth:`Calendar.add_hours` and elapsed time with
:meth:`Calendar.hours_between`. Elapsed and remaining hours are always
reported with two-decimal precision.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol, runtime_checkable

__all__ = [
    "BusinessHoursCalendar",
    "Calendar",
    "WallClockCalendar",
    "quantize_hours",
]

_CENT = Decimal("0.01")
_HOUR = timedelta(hours=1)


def quantize_hours(value: Decimal | float | int) -> Decimal:
    """Round an hour count to two decimal places (half up)."""
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


@runtime_checkable
class Calendar(Protocol):
    """Maps SLA hours onto timestamps."""

    def add_hours(self, start: datetime, hours: int | float | Decimal) -> datetime:
        """Return the instant ``hours`` SLA hours after ``start``."""
        ...

    def hours_between(self, start: datetime, end: datetime) -> Decimal:
        """Return the SLA hours elapsed from ``start`` to ``end`` (never negative)."""
        ...


class WallClockCalendar:
    """Every hour counts. The default calendar."""

    def add_hours(self, start: datetime, hours: int | float | Decimal) -> datetime:
        if hours <= 0:
            return start
        return start + timedelta(hours=float(hours))

    def hours_between(self, start: datetime, end: datetime) -> Decimal:
        if end <= start:
            return Decimal("0.00")
        return quantize_hours((end - start) / _HOUR)

    def __repr__(self) -> str:
        return "WallClockCalendar()"


class BusinessHoursCalendar:
    """Only working hours count.

    Working time is ``start_hour``..``end_hour`` Monday to Friday and
    ``start_hour``..``saturday_end_hour`` on Saturday, in a fixed UTC offset.
    Sunday is never a working day. Passing ``saturday_end_hour=None`` makes
    Saturday a day off as well.

    Args:
        utc_offset_hours: Offset of the business timezone from UTC.
        start_hour: Local hour the working day starts.
        end_hour: Local hour the working day ends on weekdays.
        saturday_end_hour: Local hour Saturday work ends, or None.
    """

    def __init__(
        self,
        utc_offset_hours: int = 7,
        start_hour: int = 8,
        end_hour: int = 17,
        saturday_end_hour: int | None = 12,
    ) -> None:
        if not 0 <= start_hour < end_hour <= 24:
            msg = f"Invalid working day {start_hour}..{end_hour}"
            raise ValueError(msg)
        if saturday_end_hour is not None and not start_hour < saturday_end_hour <= 24:
            msg = f"Invalid Saturday end hour {saturday_end_hour}"
            raise ValueError(msg)
        self.utc_offset_hours = utc_offset_hours
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.saturday_end_hour = saturday_end_hour
        self._tz = timezone(timedelta(hours=utc_offset_hours))

    def __repr__(self) -> str:
        return (
            f"BusinessHoursCalendar(utc_offset_hours={self.utc_offset_hours}, start_hour={self.start_hour}, "
            f"end_hour={self.end_hour}, saturday_end_hour={self.saturday_end_hour})"
        )

    def _window(self, day: date) -> tuple[datetime, datetime] | None:
        weekday = day.weekday()
        if weekday == 6:
            return None
        if weekday == 5:
            if self.saturday_end_hour is None:
                return None
            end_hour = self.saturday_end_hour
        else:
            end_hour = self.end_hour
        opens = datetime.combine(day, time(self.start_hour), tzinfo=self._tz)
        closes = datetime.combine(day, time(0), tzinfo=self._tz) + timedelta(hours=end_hour)
        return opens, closes

    def add_hours(self, start: datetime, hours: int | float | Decimal) -> datetime:
        if hours <= 0:
            return start
        remaining = timedelta(hours=float(hours))
        cursor = start.astimezone(self._tz)
        day = cursor.date()
        while True:
            window = self._window(day)
            if window is not None:
                opens, closes = window
                cursor = max(cursor, opens)
                if cursor < closes:
                    available = closes - cursor
                    if remaining <= available:
                        return (cursor + remaining).astimezone(start.tzinfo or timezone.utc)
                    remaining -= available
            day += timedelta(days=1)
            cursor = datetime.combine(day, time(0), tzinfo=self._tz)

    def hours_between(self, start: datetime, end: datetime) -> Decimal:
        if end <= start:
            return Decimal("0.00")
        local_start = start.astimezone(self._tz)
        local_end = end.astimezone(self._tz)
        total = timedelta()
        day = local_start.date()
        while day <= local_end.date():
            window = self._window(day)
            if window is not None:
                lo = max(window[0], local_start)
                hi = min(window[1], local_end)
                if hi > lo:
                    total += hi - lo
            day += timedelta(days=1)
        return quantize_hours(total / _HOUR)
