import calendar
from datetime import date, datetime
from typing import Iterable

from pomotrack.errors import ValidationError
from pomotrack.schemas import CalendarDay, CalendarMonth, DayDetailItem, DayDetails
from pomotrack.services.formatting import format_duration_short, format_time, whole_minutes
from pomotrack.services.statistics import IntervalLike

DELETED_SESSION_TITLE = "Deleted session"


def month_heatmap(
    intervals: Iterable[IntervalLike], year: int, month: int, today: date | None = None
) -> CalendarMonth:
    """Interval count and minutes for every day of a month"""
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12")
    if today is None:
        today = datetime.now().date()

    first_weekday, days_in_month = calendar.monthrange(year, month)
    counts = [0] * (days_in_month + 1)
    seconds = [0] * (days_in_month + 1)
    for interval in intervals:
        moment = interval.completed_at
        if moment.year == year and moment.month == month:
            counts[moment.day] += 1
            seconds[moment.day] += interval.duration_seconds

    return CalendarMonth(
        year=year,
        month=month,
        month_name=calendar.month_name[month],
        # monthrange() counts from Monday, the grid starts on Sunday
        leading_blanks=(first_weekday + 1) % 7,
        days=[
            CalendarDay(
                day=day,
                count=counts[day],
                minutes=whole_minutes(seconds[day]),
                is_today=date(year, month, day) == today,
            )
            for day in range(1, days_in_month + 1)
        ],
    )


def day_details(intervals: Iterable, sessions: Iterable, day: date) -> DayDetails:
    """Intervals completed on one day, oldest first, with their session titles"""
    titles = {s.id: s.title for s in sessions}
    selected = sorted(
        (i for i in intervals if i.completed_at.date() == day),
        key=lambda i: i.completed_at,
    )

    items = [
        DayDetailItem(
            id=i.id,
            time=format_time(i.completed_at),
            session_id=i.session_id,
            session_title=titles.get(i.session_id, DELETED_SESSION_TITLE),
            category=i.category,
            duration_seconds=i.duration_seconds,
            duration_formatted=format_duration_short(i.duration_seconds),
        )
        for i in selected
    ]
    return DayDetails(
        date=day,
        count=len(items),
        minutes=whole_minutes(sum(i.duration_seconds for i in items)),
        items=items,
    )
