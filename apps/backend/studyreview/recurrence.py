"""Recurrence expansion for batch programmed reviews.

曜日は 0=日曜 … 6=土曜（フロントエンドの Date.getDay と同じ並び）で受け取る。
生成される日時は開始日時の時刻を引き継ぎ、終了日時以下のものだけを返す。
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable, Iterator
from datetime import datetime, timedelta
from enum import Enum

from .errors import ValidationError


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"


_WEEKDAY_FREQUENCIES = (Frequency.weekly, Frequency.biweekly)


def sunday_based_weekday(value: datetime) -> int:
    """Convert Python's Monday=0 weekday into Sunday=0 numbering."""

    return (value.weekday() + 1) % 7


def _normalize_days_of_week(days_of_week: Iterable[int] | None) -> frozenset[int]:
    days: set[int] = set()
    for raw in days_of_week or ():
        if isinstance(raw, bool) or not isinstance(raw, int) or not 0 <= raw <= 6:
            raise ValidationError(
                "daysOfWeek must contain integers between 0 (Sunday) and 6 (Saturday)",
                details={"daysOfWeek": list(days_of_week or ())},
            )
        days.add(raw)
    return frozenset(days)


def _iter_daily(start: datetime, end: datetime) -> Iterator[datetime]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _iter_monthly(start: datetime, end: datetime) -> Iterator[datetime]:
    offset = 0
    while True:
        month_index = start.month - 1 + offset
        year = start.year + month_index // 12
        month = month_index % 12 + 1
        last_day = calendar.monthrange(year, month)[1]
        candidate = start.replace(year=year, month=month, day=min(start.day, last_day))
        if candidate > end:
            return
        yield candidate
        offset += 1


def expand_recurrence(
    start: datetime,
    end: datetime,
    frequency: Frequency | str,
    days_of_week: Iterable[int] | None = None,
) -> list[datetime]:
    """Expand a recurrence rule into concrete review datetimes.

    - daily: 範囲内の全日付
    - weekly: daysOfWeek に一致する日付
    - biweekly: 開始日を含む週（日曜始まり）を 0 週目とし、偶数週だけを数える
    - monthly: 開始日と同じ日付。短い月は月末に丸める
    """

    try:
        freq = Frequency(frequency)
    except ValueError as exc:
        raise ValidationError(
            "frequency must be one of daily, weekly, biweekly, monthly",
            details={"frequency": str(frequency)},
        ) from exc

    if end <= start:
        raise ValidationError("endDate must be after startDate")

    if freq is Frequency.daily:
        return list(_iter_daily(start, end))
    if freq is Frequency.monthly:
        return list(_iter_monthly(start, end))

    days = _normalize_days_of_week(days_of_week)
    if not days:
        raise ValidationError(f"daysOfWeek is required for {freq.value} frequency")

    first_week_start = (start - timedelta(days=sunday_based_weekday(start))).date()
    dates: list[datetime] = []
    for candidate in _iter_daily(start, end):
        if sunday_based_weekday(candidate) not in days:
            continue
        if freq is Frequency.biweekly:
            week_index = (candidate.date() - first_week_start).days // 7
            if week_index % 2:
                continue
        dates.append(candidate)
    return dates


def requires_days_of_week(frequency: Frequency | str) -> bool:
    try:
        return Frequency(frequency) in _WEEKDAY_FREQUENCIES
    except ValueError:
        return False


__all__ = [
    "Frequency",
    "expand_recurrence",
    "requires_days_of_week",
    "sunday_based_weekday",
]
