"""
One timer per signed-in user.

The registry creates engines on demand, wires them to the interval
recorder and the session feed, and releases their tick schedulers and
subscriptions when a timer view is closed or the app shuts down.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.orm import sessionmaker

from pomotrack.config import CYCLES_BEFORE_LONG_BREAK
from pomotrack.errors import PersistenceError
from pomotrack.schemas import BoundSessionInfo, SessionInfo, TimerSettings, TimerStatus
from pomotrack.services.engine import BoundSession, CompletionRequest, IntervalTimerEngine
from pomotrack.services.feed import ChangeFeed, Subscription
from pomotrack.services.recorder import IntervalRecorder
from pomotrack.services.scheduler import AsyncioTickScheduler
from pomotrack.services.sync import SessionMirror

logger = logging.getLogger(__name__)


class LogNotificationSink:
    """Notifications end up in the log; the browser decides whether to show them."""

    def notify(self, title: str, body: str) -> None:
        logger.info("%s: %s", title, body)


class TimerEvents:
    """Completion listener for one timer; keeps the last error for display"""

    def __init__(self):
        self._lock = threading.Lock()
        self.last_error: str | None = None
        self.recorded = 0
        self.failed = 0

    def on_interval_recorded(self, request: CompletionRequest, interval_id: str) -> None:
        with self._lock:
            self.recorded += 1
            self.last_error = None

    def on_persistence_error(self, request: CompletionRequest, error: PersistenceError) -> None:
        with self._lock:
            self.failed += 1
            self.last_error = f"Completed pomodoro could not be saved: {error}"


def to_bound_session(session) -> BoundSession:
    return BoundSession(
        id=session.id,
        title=session.title,
        category=session.category,
        total_seconds=session.total_seconds,
        pomodoros=session.pomodoros,
    )


@dataclass
class TimerHandle:
    owner_id: str
    engine: IntervalTimerEngine
    events: TimerEvents
    mirror: SessionMirror
    subscriptions: list[Subscription] = field(default_factory=list)

    def close(self) -> None:
        self.engine.close()
        for subscription in self.subscriptions:
            subscription.unsubscribe()
        self.subscriptions.clear()

    def state(self) -> str:
        engine = self.engine
        if engine.running:
            return "running"
        if engine.remaining_seconds < engine.phase_duration:
            return "paused"
        return "idle"

    def status(self) -> TimerStatus:
        snap = self.engine.snapshot()
        session = None
        if snap.session is not None:
            # The mirror holds optimistic totals until the store confirms them
            merged = self.mirror.get(snap.session.id) or snap.session
            session = BoundSessionInfo(
                id=merged.id,
                title=merged.title,
                category=merged.category,
                total_seconds=merged.total_seconds,
                pomodoros=merged.pomodoros,
            )
        return TimerStatus(
            phase=snap.phase,
            phase_label=snap.phase_label,
            remaining_seconds=snap.remaining_seconds,
            remaining_formatted=snap.clock,
            phase_duration=snap.phase_duration,
            cycle=snap.cycle,
            cycles_before_long_break=CYCLES_BEFORE_LONG_BREAK,
            running=snap.running,
            session=session,
            last_error=self.events.last_error,
        )


class TimerRegistry:
    def __init__(
        self,
        session_factory: sessionmaker,
        session_feed: ChangeFeed | None = None,
        interval_feed: ChangeFeed | None = None,
        scheduler_factory: Callable[[], object] = AsyncioTickScheduler,
        dispatch: Callable[[Callable[[], None]], object] | None = None,
        notifier=None,
    ):
        self.session_factory = session_factory
        self.session_feed = session_feed
        self.interval_feed = interval_feed
        self.scheduler_factory = scheduler_factory
        self.notifier = notifier or LogNotificationSink()
        self._dispatch = dispatch
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handles: dict[str, TimerHandle] = {}

    def get(self, owner_id: str) -> TimerHandle | None:
        return self._handles.get(owner_id)

    def open(self, owner_id: str, settings: TimerSettings) -> TimerHandle:
        handle = self._handles.get(owner_id)
        if handle is not None:
            return handle

        self._capture_loop()
        events = TimerEvents()
        mirror = SessionMirror()
        recorder = IntervalRecorder(
            self.session_factory,
            listener=events,
            session_feed=self.session_feed,
            interval_feed=self.interval_feed,
        )
        engine = IntervalTimerEngine(
            owner_id,
            settings,
            self.scheduler_factory(),
            recorder=recorder,
            dispatch=self._dispatch or self._run_in_executor,
            notifier=self.notifier,
            on_session_change=lambda s: mirror.apply_local(
                s.id, {"total_seconds": s.total_seconds, "pomodoros": s.pomodoros}
            ),
        )
        handle = TimerHandle(owner_id=owner_id, engine=engine, events=events, mirror=mirror)
        if self.session_feed is not None:
            handle.subscriptions.append(
                self.session_feed.subscribe(owner_id, lambda sessions: self._on_sessions(handle, sessions))
            )
        self._handles[owner_id] = handle
        logger.debug("Opened timer for %s", owner_id)
        return handle

    def state(self, owner_id: str) -> str:
        """State of the user's timer: idle, running or paused"""
        handle = self._handles.get(owner_id)
        return handle.state() if handle is not None else "idle"

    def release(self, owner_id: str) -> bool:
        handle = self._handles.pop(owner_id, None)
        if handle is None:
            return False
        handle.close()
        logger.debug("Released timer for %s", owner_id)
        return True

    def close_all(self) -> None:
        for owner_id in list(self._handles):
            self.release(owner_id)

    def session_deleted(self, owner_id: str, session_id: str) -> None:
        handle = self._handles.get(owner_id)
        if handle is None:
            return
        bound = handle.engine.session
        if bound is not None and bound.id == session_id:
            handle.engine.unbind_session()

    # ----- Internals -----
    def _capture_loop(self) -> None:
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            pass

    def _run_in_executor(self, job: Callable[[], None]) -> None:
        if self._loop is None or self._loop.is_closed():
            job()
            return
        future = self._loop.run_in_executor(None, job)
        future.add_done_callback(self._log_job_failure)

    @staticmethod
    def _log_job_failure(future: asyncio.Future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error("Interval record job crashed", exc_info=future.exception())

    def _on_sessions(self, handle: TimerHandle, sessions: list[SessionInfo]) -> None:
        # Called from whichever thread committed the change
        handle.mirror.on_remote_snapshot(sessions)
        bound = handle.engine.session
        if bound is None:
            return
        confirmed = next((s for s in sessions if s.id == bound.id), None)
        if confirmed is None:
            return
        self._call_soon(handle.engine.refresh_session, to_bound_session(confirmed))

    def _call_soon(self, fn, *args) -> None:
        loop = self._loop
        if loop is not None and loop.is_running() and not _in_loop_thread(loop):
            loop.call_soon_threadsafe(fn, *args)
        else:
            fn(*args)


def _in_loop_thread(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False
