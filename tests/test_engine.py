import unittest
from datetime import datetime

from pomotrack.errors import NoActiveSessionError
from pomotrack.schemas import TimerSettings
from pomotrack.services.engine import (
    BREAK,
    FOCUS,
    LONG_BREAK,
    BoundSession,
    IntervalTimerEngine,
)
from pomotrack.services.scheduler import ManualScheduler


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.messages = []
        self.fail = fail

    def notify(self, title: str, body: str) -> None:
        if self.fail:
            raise RuntimeError("notifications blocked")
        self.messages.append((title, body))


class IntervalTimerEngineTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.settings = TimerSettings(focus_minutes=2, break_minutes=1, long_break_minutes=3)
        self.scheduler = ManualScheduler()
        self.requests = []
        self.jobs = []
        self.notifier = RecordingNotifier()
        self.engine = IntervalTimerEngine(
            "user-1",
            self.settings,
            self.scheduler,
            recorder=self.requests.append,
            dispatch=self.jobs.append,
            notifier=self.notifier,
            clock=lambda: datetime(2026, 3, 2, 10, 0, 0),
        )
        self.session = BoundSession(id="s1", title="Algebra", category="maths")

    def run_jobs(self) -> None:
        while self.jobs:
            self.jobs.pop(0)()

    def finish_phase(self) -> None:
        self.engine.start()
        self.scheduler.fire(self.engine.remaining_seconds)
        self.run_jobs()

    def test_initial_state(self) -> None:
        snap = self.engine.snapshot()
        self.assertEqual(snap.phase, FOCUS)
        self.assertEqual(snap.cycle, 1)
        self.assertEqual(snap.remaining_seconds, 120)
        self.assertFalse(snap.running)
        self.assertEqual(snap.clock, "02:00")

    def test_start_without_session_raises(self) -> None:
        with self.assertRaises(NoActiveSessionError):
            self.engine.start()
        self.assertFalse(self.engine.running)
        self.assertFalse(self.scheduler.active)

    def test_full_focus_phase_moves_to_break_and_records_once(self) -> None:
        for focus, short, long_ in [(1, 1, 1), (2, 1, 3), (25, 5, 15), (120, 60, 120)]:
            settings = TimerSettings(focus_minutes=focus, break_minutes=short, long_break_minutes=long_)
            scheduler = ManualScheduler()
            requests = []
            engine = IntervalTimerEngine("user-1", settings, scheduler, recorder=requests.append)
            engine.bind_session(self.session)
            engine.start()

            scheduler.fire(focus * 60)

            self.assertEqual(engine.phase, BREAK)
            self.assertEqual(engine.cycle, 2)
            self.assertEqual(engine.remaining_seconds, short * 60)
            self.assertFalse(engine.running)
            self.assertEqual(len(requests), 1)
            self.assertEqual(requests[0].duration_seconds, focus * 60)
            self.assertEqual(requests[0].session_id, "s1")
            self.assertEqual(requests[0].category, "maths")

    def test_fourth_focus_goes_to_long_break_and_resets_cycle(self) -> None:
        self.engine.bind_session(self.session)
        cycles_seen = []
        for _ in range(3):
            self.finish_phase()  # focus
            cycles_seen.append(self.engine.cycle)
            self.assertEqual(self.engine.phase, BREAK)
            self.finish_phase()  # break
            self.assertEqual(self.engine.phase, FOCUS)

        self.finish_phase()  # 4th focus

        self.assertEqual(cycles_seen, [2, 3, 4])
        self.assertEqual(self.engine.phase, LONG_BREAK)
        self.assertEqual(self.engine.cycle, 1)
        self.assertEqual(self.engine.remaining_seconds, 180)
        self.assertEqual(len(self.requests), 4)

        self.finish_phase()  # long break
        self.assertEqual(self.engine.phase, FOCUS)
        self.assertEqual(self.engine.cycle, 1)

    def test_break_completion_keeps_cycle_and_records_nothing(self) -> None:
        self.engine.bind_session(self.session)
        self.finish_phase()
        self.requests.clear()

        self.finish_phase()

        self.assertEqual(self.engine.phase, FOCUS)
        self.assertEqual(self.engine.cycle, 2)
        self.assertEqual(self.engine.remaining_seconds, 120)
        self.assertEqual(self.requests, [])

    def test_reset_returns_to_first_focus_without_recording(self) -> None:
        self.engine.bind_session(self.session)
        self.finish_phase()
        self.requests.clear()
        self.engine.start()
        self.scheduler.fire(10)

        self.engine.reset()

        snap = self.engine.snapshot()
        self.assertEqual(snap.phase, FOCUS)
        self.assertEqual(snap.cycle, 1)
        self.assertEqual(snap.remaining_seconds, 120)
        self.assertFalse(snap.running)
        self.assertFalse(self.scheduler.active)
        self.assertEqual(self.requests, [])
        self.assertEqual(self.jobs, [])

    def test_ticks_while_paused_do_not_change_remaining(self) -> None:
        self.engine.bind_session(self.session)
        self.engine.start()
        self.scheduler.fire(5)
        self.engine.pause()

        self.scheduler.fire(50)
        for _ in range(50):
            self.engine.tick()

        self.assertEqual(self.engine.remaining_seconds, 115)
        self.assertFalse(self.scheduler.active)

    def test_start_twice_schedules_ticks_once(self) -> None:
        self.engine.bind_session(self.session)
        self.engine.start()
        self.engine.start()

        self.assertEqual(self.scheduler.start_count, 1)
        self.scheduler.fire(1)
        self.assertEqual(self.engine.remaining_seconds, 119)

    def test_pause_is_idempotent(self) -> None:
        self.engine.bind_session(self.session)
        self.engine.start()
        self.engine.pause()
        self.engine.pause()
        self.assertFalse(self.engine.running)
        self.assertEqual(self.scheduler.cancel_count, 1)

    def test_catch_up_tick_never_goes_negative_or_double_fires(self) -> None:
        self.engine.bind_session(self.session)
        self.engine.start()

        self.scheduler.fire(1, elapsed=500)
        self.engine.tick(500)

        self.assertEqual(self.engine.phase, BREAK)
        self.assertEqual(self.engine.remaining_seconds, 60)
        self.assertEqual(len(self.jobs), 1)

    def test_record_uses_duration_the_phase_started_with(self) -> None:
        self.engine.bind_session(self.session)
        self.engine.start()
        self.scheduler.fire(30)

        self.engine.apply_settings(TimerSettings(focus_minutes=5, break_minutes=1, long_break_minutes=3))
        self.assertEqual(self.engine.remaining_seconds, 90)

        self.scheduler.fire(90)
        self.run_jobs()

        self.assertEqual(self.requests[0].duration_seconds, 120)
        self.assertEqual(self.requests[0].completed_at, datetime(2026, 3, 2, 10, 0, 0))

    def test_deferred_settings_apply_on_next_phase_entry(self) -> None:
        self.engine.bind_session(self.session)
        self.engine.start()
        self.engine.apply_settings(TimerSettings(focus_minutes=2, break_minutes=4, long_break_minutes=3))

        self.scheduler.fire(120)

        self.assertEqual(self.engine.phase, BREAK)
        self.assertEqual(self.engine.remaining_seconds, 240)

    def test_pausing_after_deferred_settings_keeps_countdown(self) -> None:
        self.engine.bind_session(self.session)
        self.engine.start()
        self.scheduler.fire(20)
        self.engine.apply_settings(TimerSettings(focus_minutes=10, break_minutes=1, long_break_minutes=3))

        self.engine.pause()

        self.assertEqual(self.engine.remaining_seconds, 100)
        self.assertEqual(self.engine.phase_duration, 120)

    def test_settings_applied_while_stopped_reset_current_phase(self) -> None:
        self.engine.apply_settings(TimerSettings(focus_minutes=10, break_minutes=1, long_break_minutes=3))
        self.assertEqual(self.engine.remaining_seconds, 600)
        self.assertEqual(self.engine.phase_duration, 600)

    def test_settings_for_other_phases_leave_current_countdown(self) -> None:
        self.engine.bind_session(self.session)
        self.engine.start()
        self.scheduler.fire(10)
        self.engine.pause()

        self.engine.apply_settings(TimerSettings(focus_minutes=2, break_minutes=9, long_break_minutes=3))

        self.assertEqual(self.engine.remaining_seconds, 110)

    def test_completion_updates_bound_session_optimistically(self) -> None:
        changes = []
        engine = IntervalTimerEngine(
            "user-1",
            self.settings,
            self.scheduler,
            recorder=self.requests.append,
            dispatch=self.jobs.append,
            on_session_change=changes.append,
        )
        engine.bind_session(BoundSession(id="s1", title="Algebra", category="maths", total_seconds=600, pomodoros=3))
        engine.start()
        self.scheduler.fire(120)

        # Not yet persisted, already counted locally
        self.assertEqual(self.requests, [])
        self.assertEqual(engine.session.total_seconds, 720)
        self.assertEqual(engine.session.pomodoros, 4)
        self.assertEqual(changes, [engine.session])

    def test_dispatch_failure_does_not_block_transition(self) -> None:
        def broken_dispatch(job):
            raise RuntimeError("executor gone")

        engine = IntervalTimerEngine(
            "user-1", self.settings, self.scheduler, recorder=self.requests.append, dispatch=broken_dispatch
        )
        engine.bind_session(self.session)
        engine.start()

        with self.assertLogs("pomotrack.services.engine", level="ERROR"):
            self.scheduler.fire(120)

        self.assertEqual(engine.phase, BREAK)
        self.assertEqual(engine.cycle, 2)

    def test_notifications_are_best_effort(self) -> None:
        self.engine.bind_session(self.session)
        self.finish_phase()
        self.finish_phase()
        self.assertEqual(
            self.notifier.messages,
            [("Pomodoro Timer", "Time for a break!"), ("Pomodoro Timer", "Back to work!")],
        )

        engine = IntervalTimerEngine("user-1", self.settings, ManualScheduler(), notifier=RecordingNotifier(fail=True))
        engine.bind_session(self.session)
        engine.start()
        engine.tick(120)
        self.assertEqual(engine.phase, BREAK)

    def test_unbind_pauses_and_clears_session(self) -> None:
        self.engine.bind_session(self.session)
        self.engine.start()
        self.engine.unbind_session()

        self.assertIsNone(self.engine.session)
        self.assertFalse(self.engine.running)
        with self.assertRaises(NoActiveSessionError):
            self.engine.start()

    def test_refresh_session_only_replaces_same_session(self) -> None:
        self.engine.bind_session(self.session)
        self.engine.refresh_session(BoundSession(id="other", title="x", category="other"))
        self.assertEqual(self.engine.session.id, "s1")

        self.engine.refresh_session(BoundSession(id="s1", title="Renamed", category="maths", total_seconds=60, pomodoros=1))
        self.assertEqual(self.engine.session.title, "Renamed")

    def test_close_releases_scheduler(self) -> None:
        self.engine.bind_session(self.session)
        self.engine.start()
        self.engine.close()
        self.assertFalse(self.scheduler.active)


class TimerSettingsTestCase(unittest.TestCase):
    def test_bounds_are_enforced(self) -> None:
        from pydantic import ValidationError

        with self.assertRaises(ValidationError):
            TimerSettings(focus_minutes=0)
        with self.assertRaises(ValidationError):
            TimerSettings(break_minutes=61)
        with self.assertRaises(ValidationError):
            TimerSettings(long_break_minutes=121)

    def test_defaults(self) -> None:
        settings = TimerSettings()
        self.assertEqual(settings.seconds_for("focus"), 35 * 60)
        self.assertEqual(settings.seconds_for("break"), 8 * 60)
        self.assertEqual(settings.seconds_for("longBreak"), 20 * 60)


if __name__ == "__main__":
    unittest.main()
