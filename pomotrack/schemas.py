from datetime import date, datetime
from pydantic import BaseModel, ConfigDict, Field

from pomotrack.config import (
    DEFAULT_FOCUS_MINUTES,
    DEFAULT_BREAK_MINUTES,
    DEFAULT_LONG_BREAK_MINUTES,
    DEFAULT_THEME_COLOR,
    MAX_FOCUS_MINUTES,
    MAX_BREAK_MINUTES,
    MAX_LONG_BREAK_MINUTES,
)


class TimerSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    focus_minutes: int = Field(DEFAULT_FOCUS_MINUTES, ge=1, le=MAX_FOCUS_MINUTES)
    break_minutes: int = Field(DEFAULT_BREAK_MINUTES, ge=1, le=MAX_BREAK_MINUTES)
    long_break_minutes: int = Field(DEFAULT_LONG_BREAK_MINUTES, ge=1, le=MAX_LONG_BREAK_MINUTES)

    def seconds_for(self, phase: str) -> int:
        """Duration of a phase ("focus", "break", "longBreak") in seconds"""
        minutes = {
            "focus": self.focus_minutes,
            "break": self.break_minutes,
            "longBreak": self.long_break_minutes,
        }[phase]
        return minutes * 60


class SettingsPayload(BaseModel):
    timer: TimerSettings = TimerSettings()
    theme_color: str = Field(DEFAULT_THEME_COLOR, pattern=r"^#[0-9a-fA-F]{6}$")


class ActionResponse(BaseModel):
    success: bool
    message: str
    status: str  # "idle", "running", "paused"


class SessionCreateRequest(BaseModel):
    title: str
    category: str


class SessionUpdateRequest(BaseModel):
    title: str | None = None
    category: str | None = None


class SessionInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    category: str
    total_seconds: int
    pomodoros: int
    created_at: datetime


class IntervalInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: str
    category: str
    duration_seconds: int
    completed_at: datetime


class IntervalSnapshotItem(BaseModel):
    id: str
    duration_seconds: int


class IntervalEdit(BaseModel):
    id: str
    duration_seconds: int | None = Field(None, gt=0)
    delete: bool = False


class ReviewSaveRequest(BaseModel):
    snapshot: list[IntervalSnapshotItem]  # as loaded when the review was opened
    edits: list[IntervalEdit]


class ReviewResult(BaseModel):
    session_id: str
    total_seconds: int
    pomodoros: int
    deleted: int
    updated: int


class BindSessionRequest(BaseModel):
    session_id: str


class BoundSessionInfo(BaseModel):
    id: str
    title: str
    category: str
    total_seconds: int
    pomodoros: int


class TimerStatus(BaseModel):
    phase: str  # "focus", "break", "longBreak"
    phase_label: str
    remaining_seconds: int
    remaining_formatted: str  # MM:SS
    phase_duration: int
    cycle: int
    cycles_before_long_break: int
    running: bool
    session: BoundSessionInfo | None
    last_error: str | None = None


class WindowStats(BaseModel):
    count: int
    minutes: int


class DayStats(BaseModel):
    date: date
    label: str  # weekday abbreviation
    count: int
    minutes: int
    hours: float


class CategoryStats(BaseModel):
    key: str
    name: str
    count: int
    minutes: int


class StatisticsResponse(BaseModel):
    today: WindowStats
    week: WindowStats
    month: WindowStats
    total: int
    last_7_days: list[DayStats]
    categories: list[CategoryStats]


class CalendarDay(BaseModel):
    day: int
    count: int
    minutes: int
    is_today: bool = False


class CalendarMonth(BaseModel):
    year: int
    month: int
    month_name: str
    leading_blanks: int  # empty cells before day 1 in a Sunday-first grid
    days: list[CalendarDay]


class DayDetailItem(BaseModel):
    id: str
    time: str  # HH:MM
    session_id: str
    session_title: str
    category: str
    duration_seconds: int
    duration_formatted: str


class DayDetails(BaseModel):
    date: date
    count: int
    minutes: int
    items: list[DayDetailItem]
