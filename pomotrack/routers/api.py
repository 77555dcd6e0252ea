import asyncio
import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool

from pomotrack.schemas import (
    ActionResponse,
    BindSessionRequest,
    CalendarMonth,
    DayDetails,
    IntervalInfo,
    ReviewResult,
    ReviewSaveRequest,
    SessionCreateRequest,
    SessionInfo,
    SessionUpdateRequest,
    SettingsPayload,
    StatisticsResponse,
    TimerSettings,
    TimerStatus,
)
from pomotrack.routers.deps import (
    get_auth_time,
    get_interval_store,
    get_owner_id,
    get_session_store,
    get_settings_store,
    get_timers,
)
from pomotrack.services import accounts, calendar_view, review, statistics
from pomotrack.services.timers import TimerHandle, TimerRegistry, to_bound_session
from pomotrack.stores import IntervalStore, SessionStore, SettingsStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])


def _owned_session(sessions: SessionStore, session_id: str, owner_id: str):
    session = sessions.get(session_id)
    if session is None or session.owner_id != owner_id:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


async def _open_timer(
    owner_id: str, timers: TimerRegistry, settings_store: SettingsStore
) -> TimerHandle:
    handle = timers.get(owner_id)
    if handle is None:
        saved = await run_in_threadpool(settings_store.load, owner_id)
        handle = timers.open(owner_id, saved.timer if saved else TimerSettings())
    return handle


# ----- Timer -----
@router.get("/timer", response_model=TimerStatus)
async def get_timer(
    owner_id: str = Depends(get_owner_id),
    timers: TimerRegistry = Depends(get_timers),
    settings_store: SettingsStore = Depends(get_settings_store),
):
    """Current phase, countdown and bound session"""
    handle = await _open_timer(owner_id, timers, settings_store)
    return handle.status()


@router.post("/timer/start", response_model=TimerStatus)
async def start_timer(
    owner_id: str = Depends(get_owner_id),
    timers: TimerRegistry = Depends(get_timers),
    settings_store: SettingsStore = Depends(get_settings_store),
):
    """Start or resume the countdown (409 without a bound session)"""
    handle = await _open_timer(owner_id, timers, settings_store)
    handle.engine.start()
    return handle.status()


@router.post("/timer/pause", response_model=TimerStatus)
async def pause_timer(
    owner_id: str = Depends(get_owner_id),
    timers: TimerRegistry = Depends(get_timers),
    settings_store: SettingsStore = Depends(get_settings_store),
):
    handle = await _open_timer(owner_id, timers, settings_store)
    handle.engine.pause()
    return handle.status()


@router.post("/timer/reset", response_model=TimerStatus)
async def reset_timer(
    owner_id: str = Depends(get_owner_id),
    timers: TimerRegistry = Depends(get_timers),
    settings_store: SettingsStore = Depends(get_settings_store),
):
    """Back to the first focus phase; saved intervals are kept"""
    handle = await _open_timer(owner_id, timers, settings_store)
    handle.engine.reset()
    return handle.status()


@router.delete("/timer", response_model=ActionResponse)
async def close_timer(
    owner_id: str = Depends(get_owner_id),
    timers: TimerRegistry = Depends(get_timers),
):
    """Release the timer when its view is closed"""
    released = timers.release(owner_id)
    return ActionResponse(
        success=released,
        message="Timer closed" if released else "No open timer",
        status="idle",
    )


@router.put("/timer/session", response_model=TimerStatus)
async def bind_session(
    body: BindSessionRequest,
    owner_id: str = Depends(get_owner_id),
    timers: TimerRegistry = Depends(get_timers),
    sessions: SessionStore = Depends(get_session_store),
    settings_store: SettingsStore = Depends(get_settings_store),
):
    """Select the session completed pomodoros are attributed to"""
    session = await run_in_threadpool(_owned_session, sessions, body.session_id, owner_id)
    handle = await _open_timer(owner_id, timers, settings_store)
    current = handle.engine.session
    if current is not None and current.id != session.id:
        handle.engine.pause()
    handle.engine.bind_session(to_bound_session(session))
    return handle.status()


@router.delete("/timer/session", response_model=TimerStatus)
async def quit_session(
    owner_id: str = Depends(get_owner_id),
    timers: TimerRegistry = Depends(get_timers),
    settings_store: SettingsStore = Depends(get_settings_store),
):
    handle = await _open_timer(owner_id, timers, settings_store)
    handle.engine.unbind_session()
    return handle.status()


# ----- Settings -----
@router.get("/settings", response_model=SettingsPayload)
def get_settings(
    owner_id: str = Depends(get_owner_id),
    settings_store: SettingsStore = Depends(get_settings_store),
):
    return settings_store.load(owner_id) or SettingsPayload()


@router.put("/settings", response_model=SettingsPayload)
async def save_settings(
    body: SettingsPayload,
    owner_id: str = Depends(get_owner_id),
    timers: TimerRegistry = Depends(get_timers),
    settings_store: SettingsStore = Depends(get_settings_store),
):
    """Save preferences and hand new phase durations to an open timer"""
    await run_in_threadpool(settings_store.save, owner_id, body)
    handle = timers.get(owner_id)
    if handle is not None:
        handle.engine.apply_settings(body.timer)
    return body


# ----- Sessions -----
@router.get("/sessions", response_model=list[SessionInfo])
def list_sessions(
    owner_id: str = Depends(get_owner_id),
    sessions: SessionStore = Depends(get_session_store),
):
    return sessions.list_for_owner(owner_id)


@router.post("/sessions", response_model=SessionInfo, status_code=201)
def create_session(
    body: SessionCreateRequest,
    owner_id: str = Depends(get_owner_id),
    sessions: SessionStore = Depends(get_session_store),
):
    session_id = sessions.create_session(owner_id, body.title, body.category)
    return sessions.get(session_id)


@router.patch("/sessions/{session_id}", response_model=SessionInfo)
def update_session(
    session_id: str,
    body: SessionUpdateRequest,
    owner_id: str = Depends(get_owner_id),
    sessions: SessionStore = Depends(get_session_store),
):
    """Rename a session or change its category"""
    _owned_session(sessions, session_id, owner_id)
    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=422, detail="No changes provided")
    sessions.update_session(session_id, fields)
    return sessions.get(session_id)


@router.delete("/sessions/{session_id}", response_model=ActionResponse)
async def delete_session(
    session_id: str,
    owner_id: str = Depends(get_owner_id),
    timers: TimerRegistry = Depends(get_timers),
    sessions: SessionStore = Depends(get_session_store),
):
    """Delete a session. Its intervals stay in the history."""
    await run_in_threadpool(_owned_session, sessions, session_id, owner_id)
    await run_in_threadpool(sessions.delete_session, session_id)
    timers.session_deleted(owner_id, session_id)
    return ActionResponse(success=True, message="Session deleted", status=timers.state(owner_id))


@router.get("/sessions/{session_id}/intervals", response_model=list[IntervalInfo])
def list_session_intervals(
    session_id: str,
    owner_id: str = Depends(get_owner_id),
    sessions: SessionStore = Depends(get_session_store),
    intervals: IntervalStore = Depends(get_interval_store),
):
    """Snapshot of a session's intervals for review"""
    _owned_session(sessions, session_id, owner_id)
    return intervals.list_for_session(session_id)


@router.put("/sessions/{session_id}/intervals", response_model=ReviewResult)
def save_session_intervals(
    session_id: str,
    body: ReviewSaveRequest,
    owner_id: str = Depends(get_owner_id),
    sessions: SessionStore = Depends(get_session_store),
    intervals: IntervalStore = Depends(get_interval_store),
):
    """Apply interval edits and recompute the session totals"""
    _owned_session(sessions, session_id, owner_id)
    return review.save_interval_edits(sessions, intervals, session_id, body.snapshot, body.edits)


# ----- History -----
@router.get("/intervals", response_model=list[IntervalInfo])
def list_intervals(
    owner_id: str = Depends(get_owner_id),
    intervals: IntervalStore = Depends(get_interval_store),
):
    return intervals.list_all(owner_id)


@router.get("/statistics/summary", response_model=StatisticsResponse)
def get_statistics(
    owner_id: str = Depends(get_owner_id),
    intervals: IntervalStore = Depends(get_interval_store),
):
    """Today / week / month totals, last 7 days and categories"""
    return statistics.compute_statistics(intervals.list_all(owner_id), datetime.now())


@router.get("/calendar/day/{day}", response_model=DayDetails)
def get_calendar_day(
    day: date,
    owner_id: str = Depends(get_owner_id),
    sessions: SessionStore = Depends(get_session_store),
    intervals: IntervalStore = Depends(get_interval_store),
):
    return calendar_view.day_details(
        intervals.list_all(owner_id), sessions.list_for_owner(owner_id), day
    )


@router.get("/calendar/{year}/{month}", response_model=CalendarMonth)
def get_calendar_month(
    year: int,
    month: int,
    owner_id: str = Depends(get_owner_id),
    intervals: IntervalStore = Depends(get_interval_store),
):
    return calendar_view.month_heatmap(intervals.list_all(owner_id), year, month)


# ----- Account -----
@router.delete("/account")
async def delete_account(
    owner_id: str = Depends(get_owner_id),
    authenticated_at: datetime | None = Depends(get_auth_time),
    timers: TimerRegistry = Depends(get_timers),
    sessions: SessionStore = Depends(get_session_store),
    intervals: IntervalStore = Depends(get_interval_store),
    settings_store: SettingsStore = Depends(get_settings_store),
):
    """Delete all of the user's data (requires a recent sign-in)"""
    removed = await run_in_threadpool(
        accounts.delete_account, sessions, intervals, settings_store, owner_id, authenticated_at
    )
    timers.release(owner_id)
    return {"success": True, "removed": removed}


# ----- Live updates -----
@router.websocket("/ws/changes")
async def stream_changes(websocket: WebSocket, owner_id: str = Depends(get_owner_id)):
    """Push the full session and interval lists whenever either changes"""
    state = websocket.app.state
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def message(kind: str, items) -> dict:
        return {"type": kind, "items": [item.model_dump(mode="json") for item in items]}

    def forward(kind: str):
        def listener(items) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, message(kind, items))

        return listener

    await websocket.accept()
    feeds = {"sessions": state.session_feed, "intervals": state.interval_feed}
    subscriptions = [feed.subscribe(owner_id, forward(kind)) for kind, feed in feeds.items()]
    try:
        for kind, feed in feeds.items():
            items = await run_in_threadpool(feed.load, owner_id)
            queue.put_nowait(message(kind, items))

        async def send() -> None:
            while True:
                await websocket.send_json(await queue.get())

        async def receive() -> None:
            while True:
                await websocket.receive_text()

        tasks = [asyncio.create_task(send()), asyncio.create_task(receive())]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                raise exc
    finally:
        for subscription in subscriptions:
            subscription.unsubscribe()
