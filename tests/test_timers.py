import asyncio
import unittest
from datetime import datetime

from db_case import DatabaseTestCase
from pomotrack.schemas import SessionInfo, TimerSettings
from pomotrack.services.scheduler import AsyncioTickScheduler, ManualScheduler
from pomotrack.services.sync import SessionMirror
from pomotrack.services.timers import TimerRegistry, to_bound_session
from pomotrack.stores import SessionStore, make_interval_feed, make_session_feed


def session_info(session_id: str, pomodoros: int = 0, total_seconds: int = 0) -> SessionInfo:
    return SessionInfo(
        id=session_id,
        title=session_id.title(),
        category="maths",
        total_seconds=total_seconds,
        pomodoros=pomodoros,
        created_at=datetime(2026, 3, 1, 9, 0),
    )


class SessionMirrorTestCase(unittest.TestCase):
    def test_local_changes_win_until_next_snapshot(self) -> None:
        mirror = SessionMirror()
        mirror.on_remote_snapshot([session_info("a"), session_info("b")])

        mirror.apply_local("a", {"pomodoros": 1, "total_seconds": 1500})

        self.assertTrue(mirror.has_pending("a"))
        self.assertFalse(mirror.has_pending("b"))
        self.assertEqual(mirror.get("a").pomodoros, 1)
        self.assertEqual([s.id for s in mirror.current()], ["a", "b"])

        # Remote snapshot replaces everything, even if it lags behind
        mirror.on_remote_snapshot([session_info("a")])
        self.assertFalse(mirror.has_pending())
        self.assertEqual(mirror.get("a").pomodoros, 0)
        self.assertIsNone(mirror.get("b"))
        self.assertEqual(mirror.snapshots_received, 2)

    def test_overlay_for_unknown_session_is_not_visible(self) -> None:
        mirror = SessionMirror()
        mirror.apply_local("x", {"pomodoros": 3})
        self.assertIsNone(mirror.get("x"))
        self.assertEqual(mirror.current(), [])


class TimerRegistryTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.session_feed = make_session_feed(self.SessionLocal)
        self.interval_feed = make_interval_feed(self.SessionLocal)
        self.registry = TimerRegistry(
            self.SessionLocal,
            session_feed=self.session_feed,
            interval_feed=self.interval_feed,
            scheduler_factory=self.make_scheduler,
        )
        self.settings = TimerSettings(focus_minutes=1, break_minutes=1, long_break_minutes=2)
        self.session_id = SessionStore(self.db).create_session("user-1", "Optics", "physics")

    def make_scheduler(self) -> ManualScheduler:
        self.scheduler = ManualScheduler()
        return self.scheduler

    def tearDown(self) -> None:
        self.registry.close_all()
        super().tearDown()

    def test_open_is_idempotent_and_release_unsubscribes(self) -> None:
        handle = self.registry.open("user-1", self.settings)
        self.assertIs(self.registry.open("user-1", TimerSettings()), handle)
        self.assertEqual(self.session_feed.subscriber_count("user-1"), 1)

        self.assertTrue(self.registry.release("user-1"))
        self.assertFalse(self.registry.release("user-1"))
        self.assertEqual(self.session_feed.subscriber_count("user-1"), 0)

    def test_completed_focus_is_persisted_and_confirmed(self) -> None:
        handle = self.registry.open("user-1", self.settings)
        handle.engine.bind_session(to_bound_session(SessionStore(self.db).get(self.session_id)))
        handle.engine.start()

        self.scheduler.fire(60)

        self.db.expire_all()
        stored = SessionStore(self.db).get(self.session_id)
        self.assertEqual((stored.pomodoros, stored.total_seconds), (1, 60))
        self.assertEqual(handle.events.recorded, 1)
        self.assertGreaterEqual(handle.mirror.snapshots_received, 1)
        self.assertFalse(handle.mirror.has_pending())

        status = handle.status()
        self.assertEqual(status.phase, "break")
        self.assertEqual(status.session.pomodoros, 1)
        self.assertEqual(handle.engine.session.pomodoros, 1)
        self.assertIsNone(status.last_error)

    def test_failed_record_is_reported_in_status(self) -> None:
        handle = self.registry.open("user-1", self.settings)
        stored = SessionStore(self.db).get(self.session_id)
        handle.engine.bind_session(to_bound_session(stored))
        SessionStore(self.db).delete_session(self.session_id)
        handle.engine.start()

        with self.assertLogs("pomotrack.services.recorder", level="ERROR"):
            self.scheduler.fire(60)

        status = handle.status()
        self.assertEqual(status.phase, "break")
        self.assertEqual(handle.events.failed, 1)
        self.assertIn("could not be saved", status.last_error)

    def test_session_deleted_unbinds_only_matching_session(self) -> None:
        handle = self.registry.open("user-1", self.settings)
        handle.engine.bind_session(to_bound_session(SessionStore(self.db).get(self.session_id)))

        self.registry.session_deleted("user-1", "another")
        self.assertIsNotNone(handle.engine.session)

        self.registry.session_deleted("user-1", self.session_id)
        self.assertIsNone(handle.engine.session)

        self.registry.session_deleted("nobody", self.session_id)


class AsyncioTickSchedulerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.loop = asyncio.new_event_loop()
        self.now = 100.0
        self.scheduler = AsyncioTickScheduler(loop=self.loop, clock=lambda: self.now)
        self.ticks = []

    def tearDown(self) -> None:
        self.scheduler.cancel()
        self.loop.close()

    def test_missed_seconds_are_delivered_in_one_tick(self) -> None:
        self.scheduler.start(self.ticks.append)
        self.assertTrue(self.scheduler.active)

        self.now += 3.4
        self.scheduler._fire()
        self.now += 0.7
        self.scheduler._fire()
        self.now += 0.2
        self.scheduler._fire()

        self.assertEqual(self.ticks, [3, 1, 1])

    def test_cancel_stops_ticks(self) -> None:
        self.scheduler.start(self.ticks.append)
        self.scheduler.cancel()
        self.scheduler._fire()

        self.assertFalse(self.scheduler.active)
        self.assertEqual(self.ticks, [])

    def test_failing_callback_cancels_scheduler(self) -> None:
        def broken(elapsed):
            raise RuntimeError("boom")

        self.scheduler.start(broken)
        self.now += 1
        with self.assertLogs("pomotrack.services.scheduler", level="ERROR"):
            self.scheduler._fire()
        self.assertFalse(self.scheduler.active)

    def test_runs_on_event_loop(self) -> None:
        scheduler = AsyncioTickScheduler()
        scheduler.interval = 0.01

        async def run():
            done = asyncio.Event()

            def on_tick(elapsed):
                self.ticks.append(elapsed)
                if len(self.ticks) == 2:
                    scheduler.cancel()
                    done.set()

            scheduler.start(on_tick)
            await asyncio.wait_for(done.wait(), timeout=2)

        self.loop.run_until_complete(run())
        self.assertEqual(self.ticks, [1, 1])


if __name__ == "__main__":
    unittest.main()
