"""
Pomodoro countdown engine.

The engine owns the focus / break / long break cycle for one user. It never
waits on storage: when a focus phase completes it updates the bound
session's local totals, hands a CompletionRequest to ``dispatch`` and moves
on to the next phase. Whatever happens to that request later cannot undo
the transition.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Protocol

from pomotrack.config import CYCLES_BEFORE_LONG_BREAK
from pomotrack.errors import NoActiveSessionError
from pomotrack.schemas import TimerSettings
from pomotrack.services.formatting import format_clock

logger = logging.getLogger(__name__)

FOCUS = "focus"
BREAK = "break"
LONG_BREAK = "longBreak"

PHASE_LABELS = {FOCUS: "Focus", BREAK: "Break", LONG_BREAK: "Long break"}


@dataclass(frozen=True)
class BoundSession:
    id: str
    title: str
    category: str
    total_seconds: int = 0
    pomodoros: int = 0


@dataclass(frozen=True)
class CompletionRequest:
    owner_id: str
    session_id: str
    category: str
    duration_seconds: int
    completed_at: datetime


@dataclass(frozen=True)
class TimerSnapshot:
    phase: str
    remaining_seconds: int
    phase_duration: int
    cycle: int
    running: bool
    session: BoundSession | None

    @property
    def phase_label(self) -> str:
        return PHASE_LABELS[self.phase]

    @property
    def clock(self) -> str:
        return format_clock(self.remaining_seconds)


class TickScheduler(Protocol):
    def start(self, callback: Callable[[int], None]) -> None: ...

    def cancel(self) -> None: ...


class NotificationSink(Protocol):
    def notify(self, title: str, body: str) -> None: ...


def run_now(job: Callable[[], None]) -> None:
    job()


class IntervalTimerEngine:
    """
    State machine: phase (focus, break, longBreak) x running flag.

    Not thread safe. All calls must come from the one thread (the event
    loop) that also delivers ticks.
    """

    def __init__(
        self,
        owner_id: str,
        settings: TimerSettings,
        scheduler: TickScheduler,
        recorder: Callable[[CompletionRequest], None] | None = None,
        dispatch: Callable[[Callable[[], None]], object] = run_now,
        notifier: NotificationSink | None = None,
        on_session_change: Callable[[BoundSession], None] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.owner_id = owner_id
        self.settings = settings
        self._scheduler = scheduler
        self._recorder = recorder
        self._dispatch = dispatch
        self._notifier = notifier
        self._on_session_change = on_session_change
        self._clock = clock

        self.phase = FOCUS
        self.cycle = 1
        self.phase_duration = settings.seconds_for(FOCUS)
        self.remaining_seconds = self.phase_duration
        self.running = False
        self.session: BoundSession | None = None

    def snapshot(self) -> TimerSnapshot:
        return TimerSnapshot(
            phase=self.phase,
            remaining_seconds=self.remaining_seconds,
            phase_duration=self.phase_duration,
            cycle=self.cycle,
            running=self.running,
            session=self.session,
        )

    # ----- Session binding -----
    def bind_session(self, session: BoundSession) -> None:
        self.session = session

    def unbind_session(self) -> None:
        """Quit the current session. A running countdown is paused."""
        self.pause()
        self.session = None

    def refresh_session(self, session: BoundSession) -> None:
        """Replace the bound copy with a newer one for the same session"""
        if self.session is not None and self.session.id == session.id:
            self.session = session

    # ----- Transitions -----
    def start(self) -> None:
        if self.session is None:
            raise NoActiveSessionError()
        if self.running:
            return
        self.running = True
        self._scheduler.start(self.tick)
        logger.debug("Timer started for %s (%s, %ss left)", self.owner_id, self.phase, self.remaining_seconds)

    def pause(self) -> None:
        self._scheduler.cancel()
        self.running = False

    def reset(self) -> None:
        self._scheduler.cancel()
        self.running = False
        self.cycle = 1
        self._enter(FOCUS)

    def close(self) -> None:
        """Release the tick scheduler"""
        self.pause()

    def tick(self, elapsed: int = 1) -> None:
        if not self.running or elapsed <= 0:
            return
        self.remaining_seconds = max(0, self.remaining_seconds - elapsed)
        if self.remaining_seconds == 0:
            self._phase_complete()

    def apply_settings(self, settings: TimerSettings) -> None:
        """
        Take new phase durations.

        A running phase keeps the duration it started with; the new values
        apply when a phase is next entered. When the timer is not running
        and the current phase's duration changed, the countdown restarts at
        the new duration.
        """
        self.settings = settings
        if self.running:
            return
        new_duration = settings.seconds_for(self.phase)
        if new_duration != self.phase_duration:
            self.phase_duration = new_duration
            self.remaining_seconds = new_duration

    # ----- Internals -----
    def _enter(self, phase: str) -> None:
        self.phase = phase
        self.phase_duration = self.settings.seconds_for(phase)
        self.remaining_seconds = self.phase_duration

    def _phase_complete(self) -> None:
        self._scheduler.cancel()
        self.running = False
        completed = self.phase

        if completed == FOCUS:
            self._record_focus()
            if self.cycle >= CYCLES_BEFORE_LONG_BREAK:
                self.cycle = 1
                self._enter(LONG_BREAK)
            else:
                self.cycle += 1
                self._enter(BREAK)
            self._notify("Pomodoro Timer", "Time for a break!")
        else:
            self._enter(FOCUS)
            self._notify("Pomodoro Timer", "Back to work!")

        logger.info(
            "Phase %s complete for %s, now %s (cycle %s)",
            completed,
            self.owner_id,
            self.phase,
            self.cycle,
        )

    def _record_focus(self) -> None:
        session = self.session
        if session is None:
            return

        duration = self.phase_duration
        request = CompletionRequest(
            owner_id=self.owner_id,
            session_id=session.id,
            category=session.category,
            duration_seconds=duration,
            completed_at=self._clock(),
        )
        # Optimistic: the local copy moves ahead of the store
        self.session = replace(
            session,
            total_seconds=session.total_seconds + duration,
            pomodoros=session.pomodoros + 1,
        )
        if self._on_session_change is not None:
            self._on_session_change(self.session)

        if self._recorder is None:
            return
        recorder = self._recorder
        try:
            self._dispatch(lambda: recorder(request))
        except Exception:
            logger.exception("Could not dispatch interval record for session %s", session.id)

    def _notify(self, title: str, body: str) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(title, body)
        except Exception as exc:
            logger.warning("Notification failed: %s", exc)
