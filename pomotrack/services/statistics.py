from datetime import datetime, timedelta
from typing import Iterable, Protocol

from pomotrack.schemas import CategoryStats, DayStats, StatisticsResponse, WindowStats
from pomotrack.services.formatting import whole_minutes

WEEKDAY_LABELS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


class IntervalLike(Protocol):
    category: str
    duration_seconds: int
    completed_at: datetime


def get_day_start(moment: datetime) -> datetime:
    """Local midnight of the day containing the given moment"""
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def get_month_start(moment: datetime) -> datetime:
    """Get the first day of the month containing the given moment"""
    return get_day_start(moment).replace(day=1)


def _window(intervals: list[IntervalLike], since: datetime, until: datetime) -> WindowStats:
    selected = [i for i in intervals if since <= i.completed_at < until]
    return WindowStats(
        count=len(selected),
        minutes=whole_minutes(sum(i.duration_seconds for i in selected)),
    )


def category_label(category: str) -> str:
    key = category.strip().lower()
    return key[:1].upper() + key[1:]


def compute_statistics(intervals: Iterable[IntervalLike], now: datetime) -> StatisticsResponse:
    """
    Summarise completed intervals relative to ``now``.

    Windows use local calendar days: today starts at midnight, the week is
    the last 7 calendar days including today, the month starts on the 1st.
    Each start boundary is inclusive; intervals dated after today are left
    out of the windows but still count towards the total.
    """
    intervals = list(intervals)
    today = get_day_start(now)
    week_start = today - timedelta(days=6)
    month_start = get_month_start(now)
    tomorrow = today + timedelta(days=1)

    last_7_days = []
    for offset in range(6, -1, -1):
        day = (today - timedelta(days=offset)).date()
        day_intervals = [i for i in intervals if i.completed_at.date() == day]
        minutes = whole_minutes(sum(i.duration_seconds for i in day_intervals))
        last_7_days.append(
            DayStats(
                date=day,
                label=WEEKDAY_LABELS[day.weekday()],
                count=len(day_intervals),
                minutes=minutes,
                hours=round(minutes / 60, 1),
            )
        )

    by_category: dict[str, list[int]] = {}
    for interval in intervals:
        key = interval.category.strip().lower()
        bucket = by_category.setdefault(key, [0, 0])
        bucket[0] += 1
        bucket[1] += interval.duration_seconds

    categories = [
        CategoryStats(
            key=key,
            name=category_label(key),
            count=count,
            minutes=whole_minutes(seconds),
        )
        for key, (count, seconds) in by_category.items()
    ]
    categories.sort(key=lambda c: (-c.count, c.key))

    return StatisticsResponse(
        today=_window(intervals, today, tomorrow),
        week=_window(intervals, week_start, tomorrow),
        month=_window(intervals, month_start, tomorrow),
        total=len(intervals),
        last_7_days=last_7_days,
        categories=categories,
    )
