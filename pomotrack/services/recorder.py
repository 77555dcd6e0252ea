import logging
from typing import Protocol

from sqlalchemy.orm import sessionmaker

from pomotrack.errors import PersistenceError
from pomotrack.services.engine import CompletionRequest
from pomotrack.services.feed import ChangeFeed
from pomotrack.stores import IntervalStore, SessionStore

logger = logging.getLogger(__name__)


class CompletionListener(Protocol):
    def on_interval_recorded(self, request: CompletionRequest, interval_id: str) -> None: ...

    def on_persistence_error(self, request: CompletionRequest, error: PersistenceError) -> None: ...


class IntervalRecorder:
    """
    Persists a completed focus interval and bumps its session's totals.

    Runs outside the countdown (usually in an executor thread) with its own
    database session. Failures are reported to the listener and logged; a
    record is never retried.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        listener: CompletionListener | None = None,
        session_feed: ChangeFeed | None = None,
        interval_feed: ChangeFeed | None = None,
    ):
        self.session_factory = session_factory
        self.listener = listener
        self.session_feed = session_feed
        self.interval_feed = interval_feed

    def __call__(self, request: CompletionRequest) -> None:
        self.record(request)

    def record(self, request: CompletionRequest) -> str | None:
        try:
            interval_id = self._persist(request)
        except PersistenceError as exc:
            logger.error(
                "Lost interval for session %s (%ss): %s",
                request.session_id,
                request.duration_seconds,
                exc,
            )
            if self.listener is not None:
                self.listener.on_persistence_error(request, exc)
            return None

        logger.info("Recorded interval %s for session %s", interval_id, request.session_id)
        if self.listener is not None:
            self.listener.on_interval_recorded(request, interval_id)
        return interval_id

    def _persist(self, request: CompletionRequest) -> str:
        with self.session_factory() as db:
            intervals = IntervalStore(db, self.interval_feed)
            sessions = SessionStore(db, self.session_feed)

            interval_id = intervals.create_interval(
                request.owner_id,
                request.session_id,
                request.category,
                request.duration_seconds,
                completed_at=request.completed_at,
            )
            try:
                found = sessions.increment_aggregate(request.session_id, request.duration_seconds, 1)
            except PersistenceError:
                self._discard(intervals, interval_id)
                raise
            if not found:
                self._discard(intervals, interval_id)
                raise PersistenceError(f"Session {request.session_id} no longer exists")
            return interval_id

    def _discard(self, intervals: IntervalStore, interval_id: str) -> None:
        # Keep the session totals equal to the sum of its intervals
        try:
            intervals.delete_interval(interval_id)
        except PersistenceError as exc:
            logger.error("Could not roll back interval %s: %s", interval_id, exc)
