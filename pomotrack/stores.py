"""
Durable collections behind the timer: work sessions, completed intervals
and per-user settings.

Every store works on one SQLAlchemy session. Writes commit immediately
unless called with ``commit=False``, in which case the caller groups
several writes and finishes with ``commit()`` or ``rollback()``. After a
successful commit the owner's fresh list is published on the store's
change feed.
"""
import logging
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from pomotrack.config import CATEGORIES
from pomotrack.errors import PersistenceError, ValidationError
from pomotrack.models import CompletedInterval, UserSettings, WorkSession
from pomotrack.schemas import IntervalInfo, SessionInfo, SettingsPayload, TimerSettings
from pomotrack.services.feed import ChangeFeed, Listener, Subscription

logger = logging.getLogger(__name__)

SESSION_FIELDS = {"title", "category", "total_seconds", "pomodoros"}
INTERVAL_FIELDS = {"duration_seconds"}


def validate_title(title) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Session title cannot be empty")
    title = title.strip()
    if len(title) > 200:
        raise ValidationError("Session title is too long (200 characters max)")
    return title


def validate_category(category) -> str:
    if not isinstance(category, str) or not category.strip():
        raise ValidationError("Choose a category")
    category = category.strip().lower()
    if category not in CATEGORIES:
        raise ValidationError(f"Unknown category: {category}")
    return category


def validate_duration(seconds) -> int:
    if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds <= 0:
        raise ValidationError("Duration must be a positive whole number of seconds")
    return seconds


def _validate_counter(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer")
    return value


class _Store:
    def __init__(self, db: Session, feed: ChangeFeed | None = None):
        self.db = db
        self.feed = feed
        self._pending_owners: set[str] = set()

    @contextmanager
    def _guard(self, action: str):
        try:
            yield
        except SQLAlchemyError as exc:
            self.rollback()
            logger.error("Store operation failed (%s): %s", action, exc)
            raise PersistenceError(f"Could not {action}") from exc

    def _changed(self, owner_id: str, commit: bool) -> None:
        self._pending_owners.add(owner_id)
        if commit:
            self.commit()

    def commit(self) -> None:
        with self._guard("save changes"):
            self.db.commit()
        owners, self._pending_owners = self._pending_owners, set()
        if self.feed is not None:
            for owner_id in owners:
                self.feed.publish(owner_id)

    def rollback(self) -> None:
        self.db.rollback()
        self._pending_owners.clear()

    def subscribe(self, owner_id: str, listener: Listener) -> Subscription:
        if self.feed is None:
            raise RuntimeError(f"{type(self).__name__} has no change feed")
        return self.feed.subscribe(owner_id, listener)


class SessionStore(_Store):
    def get(self, session_id: str) -> WorkSession | None:
        with self._guard("load session"):
            return self.db.get(WorkSession, session_id)

    def list_for_owner(self, owner_id: str) -> list[WorkSession]:
        with self._guard("load sessions"):
            return list(
                self.db.scalars(
                    select(WorkSession)
                    .where(WorkSession.owner_id == owner_id)
                    .order_by(WorkSession.created_at.desc())
                )
            )

    def create_session(self, owner_id: str, title: str, category: str, commit: bool = True) -> str:
        session = WorkSession(
            owner_id=owner_id,
            title=validate_title(title),
            category=validate_category(category),
            total_seconds=0,
            pomodoros=0,
            created_at=datetime.now(),
        )
        with self._guard("create session"):
            self.db.add(session)
            self.db.flush()
        self._changed(owner_id, commit)
        logger.info("Created session %s (%s) for %s", session.id, session.category, owner_id)
        return session.id

    def increment_aggregate(
        self, session_id: str, duration_delta: int, count_delta: int, commit: bool = True
    ) -> bool:
        """Add to the cumulative counters in a single UPDATE. False if the session is gone."""
        with self._guard("update session totals"):
            owner_id = self.db.scalar(
                select(WorkSession.owner_id).where(WorkSession.id == session_id)
            )
            if owner_id is None:
                return False
            self.db.execute(
                update(WorkSession)
                .where(WorkSession.id == session_id)
                .values(
                    total_seconds=WorkSession.total_seconds + duration_delta,
                    pomodoros=WorkSession.pomodoros + count_delta,
                )
            )
        self._changed(owner_id, commit)
        return True

    def update_session(self, session_id: str, fields: dict, commit: bool = True) -> bool:
        unknown = set(fields) - SESSION_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update session fields: {', '.join(sorted(unknown))}")

        values = {}
        if "title" in fields:
            values["title"] = validate_title(fields["title"])
        if "category" in fields:
            values["category"] = validate_category(fields["category"])
        for name in ("total_seconds", "pomodoros"):
            if name in fields:
                values[name] = _validate_counter(name, fields[name])

        session = self.get(session_id)
        if session is None:
            return False
        with self._guard("update session"):
            for name, value in values.items():
                setattr(session, name, value)
            self.db.flush()
        self._changed(session.owner_id, commit)
        return True

    def delete_session(self, session_id: str, commit: bool = True) -> bool:
        # Intervals are kept: they still count in history and statistics
        session = self.get(session_id)
        if session is None:
            return False
        owner_id = session.owner_id
        with self._guard("delete session"):
            self.db.delete(session)
            self.db.flush()
        self._changed(owner_id, commit)
        logger.info("Deleted session %s", session_id)
        return True

    def delete_for_owner(self, owner_id: str, commit: bool = True) -> int:
        with self._guard("delete sessions"):
            result = self.db.execute(delete(WorkSession).where(WorkSession.owner_id == owner_id))
        self._changed(owner_id, commit)
        return result.rowcount


class IntervalStore(_Store):
    def get(self, interval_id: str) -> CompletedInterval | None:
        with self._guard("load interval"):
            return self.db.get(CompletedInterval, interval_id)

    def list_all(self, owner_id: str) -> list[CompletedInterval]:
        with self._guard("load intervals"):
            return list(
                self.db.scalars(
                    select(CompletedInterval)
                    .where(CompletedInterval.owner_id == owner_id)
                    .order_by(CompletedInterval.completed_at.desc())
                )
            )

    def list_for_session(self, session_id: str) -> list[CompletedInterval]:
        with self._guard("load intervals"):
            return list(
                self.db.scalars(
                    select(CompletedInterval)
                    .where(CompletedInterval.session_id == session_id)
                    .order_by(CompletedInterval.completed_at)
                )
            )

    def create_interval(
        self,
        owner_id: str,
        session_id: str,
        category: str,
        duration_seconds: int,
        completed_at: datetime | None = None,
        commit: bool = True,
    ) -> str:
        interval = CompletedInterval(
            owner_id=owner_id,
            session_id=session_id,
            category=category,
            duration_seconds=validate_duration(duration_seconds),
            completed_at=completed_at or datetime.now(),
        )
        with self._guard("save interval"):
            self.db.add(interval)
            self.db.flush()
        self._changed(owner_id, commit)
        return interval.id

    def update_interval(self, interval_id: str, fields: dict, commit: bool = True) -> bool:
        unknown = set(fields) - INTERVAL_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update interval fields: {', '.join(sorted(unknown))}")
        duration = validate_duration(fields.get("duration_seconds"))

        interval = self.get(interval_id)
        if interval is None:
            return False
        with self._guard("update interval"):
            interval.duration_seconds = duration
            self.db.flush()
        self._changed(interval.owner_id, commit)
        return True

    def delete_interval(self, interval_id: str, commit: bool = True) -> bool:
        interval = self.get(interval_id)
        if interval is None:
            return False
        owner_id = interval.owner_id
        with self._guard("delete interval"):
            self.db.delete(interval)
            self.db.flush()
        self._changed(owner_id, commit)
        return True

    def delete_for_owner(self, owner_id: str, commit: bool = True) -> int:
        with self._guard("delete intervals"):
            result = self.db.execute(
                delete(CompletedInterval).where(CompletedInterval.owner_id == owner_id)
            )
        self._changed(owner_id, commit)
        return result.rowcount


class SettingsStore(_Store):
    def load(self, owner_id: str) -> SettingsPayload | None:
        with self._guard("load settings"):
            row = self.db.get(UserSettings, owner_id)
        if row is None:
            return None
        return SettingsPayload(
            timer=TimerSettings(
                focus_minutes=row.focus_minutes,
                break_minutes=row.break_minutes,
                long_break_minutes=row.long_break_minutes,
            ),
            theme_color=row.theme_color,
        )

    def save(self, owner_id: str, settings: SettingsPayload, commit: bool = True) -> None:
        with self._guard("save settings"):
            row = self.db.get(UserSettings, owner_id)
            if row is None:
                row = UserSettings(owner_id=owner_id)
                self.db.add(row)
            row.focus_minutes = settings.timer.focus_minutes
            row.break_minutes = settings.timer.break_minutes
            row.long_break_minutes = settings.timer.long_break_minutes
            row.theme_color = settings.theme_color
            self.db.flush()
        self._changed(owner_id, commit)

    def delete_for_owner(self, owner_id: str, commit: bool = True) -> int:
        with self._guard("delete settings"):
            result = self.db.execute(delete(UserSettings).where(UserSettings.owner_id == owner_id))
        self._changed(owner_id, commit)
        return result.rowcount


def make_session_feed(session_factory: sessionmaker) -> ChangeFeed:
    def load(owner_id: str) -> list[SessionInfo]:
        with session_factory() as db:
            return [SessionInfo.model_validate(s) for s in SessionStore(db).list_for_owner(owner_id)]

    return ChangeFeed("sessions", load)


def make_interval_feed(session_factory: sessionmaker) -> ChangeFeed:
    def load(owner_id: str) -> list[IntervalInfo]:
        with session_factory() as db:
            return [IntervalInfo.model_validate(i) for i in IntervalStore(db).list_all(owner_id)]

    return ChangeFeed("intervals", load)
