import uuid
from datetime import datetime
from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pomotrack.database import Base
from pomotrack.config import (
    DEFAULT_FOCUS_MINUTES,
    DEFAULT_BREAK_MINUTES,
    DEFAULT_LONG_BREAK_MINUTES,
    DEFAULT_THEME_COLOR,
)


def new_id() -> str:
    return uuid.uuid4().hex


class WorkSession(Base):
    __tablename__ = "work_sessions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    total_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pomodoros: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)


class CompletedInterval(Base):
    __tablename__ = "completed_intervals"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    # Plain reference: intervals outlive their session
    session_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)


class UserSettings(Base):
    __tablename__ = "user_settings"

    owner_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    focus_minutes: Mapped[int] = mapped_column(Integer, default=DEFAULT_FOCUS_MINUTES)
    break_minutes: Mapped[int] = mapped_column(Integer, default=DEFAULT_BREAK_MINUTES)
    long_break_minutes: Mapped[int] = mapped_column(Integer, default=DEFAULT_LONG_BREAK_MINUTES)
    theme_color: Mapped[str] = mapped_column(String(7), default=DEFAULT_THEME_COLOR)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)
