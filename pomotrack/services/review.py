import logging
from dataclasses import dataclass

from pomotrack.errors import NotFoundError, PersistenceError, ValidationError
from pomotrack.schemas import IntervalEdit, IntervalSnapshotItem, ReviewResult
from pomotrack.stores import IntervalStore, SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewPlan:
    deletes: list[str]
    updates: dict[str, int]
    total_seconds: int
    pomodoros: int


def plan_review(snapshot: list[IntervalSnapshotItem], edits: list[IntervalEdit]) -> ReviewPlan:
    """
    Diff the edited interval list against the snapshot taken when the
    review was opened. Only intervals that are removed or whose duration
    actually changes produce a store call.
    """
    durations = {item.id: item.duration_seconds for item in snapshot}
    deletes: list[str] = []
    updates: dict[str, int] = {}

    for edit in edits:
        if edit.id not in durations:
            raise ValidationError(f"Interval {edit.id} is not part of this review")
        if edit.delete:
            if edit.id not in deletes:
                deletes.append(edit.id)
            updates.pop(edit.id, None)
            continue
        if edit.id in deletes:
            continue
        if edit.duration_seconds is None:
            raise ValidationError(f"Interval {edit.id} needs a duration or delete")
        if edit.duration_seconds != durations[edit.id]:
            updates[edit.id] = edit.duration_seconds
        else:
            updates.pop(edit.id, None)

    remaining = [
        updates.get(interval_id, duration)
        for interval_id, duration in durations.items()
        if interval_id not in deletes
    ]
    return ReviewPlan(
        deletes=deletes,
        updates=updates,
        total_seconds=sum(remaining),
        pomodoros=len(remaining),
    )


def save_interval_edits(
    sessions: SessionStore,
    intervals: IntervalStore,
    session_id: str,
    snapshot: list[IntervalSnapshotItem],
    edits: list[IntervalEdit],
) -> ReviewResult:
    """
    Apply a review of one session's intervals and rewrite the session totals
    from the result, all in one transaction. Nothing is committed on failure.

    The client snapshot only has to match what is stored: durations and
    totals always come from the session's stored intervals.

    Both stores must share the same database session.
    """
    session = sessions.get(session_id)
    if session is None:
        raise NotFoundError("Session not found")

    stored = [
        IntervalSnapshotItem(id=interval.id, duration_seconds=interval.duration_seconds)
        for interval in intervals.list_for_session(session_id)
        if interval.owner_id == session.owner_id
    ]
    stored_ids = {item.id for item in stored}
    stale = [item.id for item in snapshot if item.id not in stored_ids]
    if stale:
        raise ValidationError(
            f"Intervals {', '.join(stale)} are not part of this session; reload and try again"
        )

    plan = plan_review(stored, edits)

    try:
        for interval_id in plan.deletes:
            intervals.delete_interval(interval_id, commit=False)
        for interval_id, duration in plan.updates.items():
            intervals.update_interval(interval_id, {"duration_seconds": duration}, commit=False)
        sessions.update_session(
            session_id,
            {"total_seconds": plan.total_seconds, "pomodoros": plan.pomodoros},
            commit=False,
        )
        sessions.commit()
    except (PersistenceError, ValidationError):
        sessions.rollback()
        intervals.rollback()
        raise

    # Pending change notifications of the interval store
    intervals.commit()

    logger.info(
        "Review saved for session %s: %s deleted, %s updated, %s intervals / %ss",
        session_id,
        len(plan.deletes),
        len(plan.updates),
        plan.pomodoros,
        plan.total_seconds,
    )
    return ReviewResult(
        session_id=session_id,
        total_seconds=plan.total_seconds,
        pomodoros=plan.pomodoros,
        deleted=len(plan.deletes),
        updated=len(plan.updates),
    )
