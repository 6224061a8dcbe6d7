"""Calendar helpers for nurse shift scheduling."""
from __future__ import annotations

import calendar
import zlib
from datetime import date, timedelta
from typing import Iterable, List

from .models import ScheduleStatus, Shift

BADGE_COLORS = ("primary", "secondary", "success", "danger", "warning", "info", "dark")

SHIFT_TIMES = {
    Shift.MORNING: "7:00 AM - 3:00 PM",
    Shift.EVENING: "3:00 PM - 11:00 PM",
    Shift.NIGHT: "11:00 PM - 7:00 AM",
}

STATUS_COLORS = {
    ScheduleStatus.SCHEDULED: "primary",
    ScheduleStatus.COMPLETED: "success",
    ScheduleStatus.CANCELLED: "danger",
}


def nurse_badge_color(nurse_id: int) -> str:
    """Stable calendar badge colour for a nurse, independent of request or session."""

    return BADGE_COLORS[zlib.crc32(str(nurse_id).encode("ascii")) % len(BADGE_COLORS)]


def shift_time(shift: Shift) -> str:
    return SHIFT_TIMES.get(Shift(shift), "")


def status_color(status: ScheduleStatus) -> str:
    return STATUS_COLORS.get(ScheduleStatus(status), "secondary")


def weekday_index(day: date) -> int:
    """Sunday=0 .. Saturday=6, matching the rest-day pickers."""

    return day.isoweekday() % 7


def working_days(days: Iterable[date], rest_days: Iterable[int]) -> List[date]:
    rest = set(rest_days)
    return [day for day in days if weekday_index(day) not in rest]


def week_days(start: date) -> List[date]:
    return [start + timedelta(days=offset) for offset in range(7)]


def month_days(month: str) -> List[date]:
    """Every day of ``month`` given as ``YYYY-MM``."""

    year, month_number = (int(part) for part in month.split("-"))
    _, length = calendar.monthrange(year, month_number)
    return [date(year, month_number, day) for day in range(1, length + 1)]
