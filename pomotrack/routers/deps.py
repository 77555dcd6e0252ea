from datetime import datetime

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from pomotrack.database import get_db
from pomotrack.services.timers import TimerRegistry
from pomotrack.stores import IntervalStore, SessionStore, SettingsStore


def get_owner_id(x_user_id: str | None = Header(None)) -> str:
    """Owner id set by the authentication front (federated sign-in)"""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Not signed in")
    return x_user_id.strip()


def get_auth_time(x_auth_time: str | None = Header(None)) -> datetime | None:
    """Time of the caller's last sign-in, as epoch seconds"""
    if not x_auth_time:
        return None
    try:
        return datetime.fromtimestamp(float(x_auth_time))
    except (ValueError, OverflowError, OSError):
        raise HTTPException(status_code=400, detail="Invalid X-Auth-Time header")


def get_session_store(request: Request, db: Session = Depends(get_db)) -> SessionStore:
    return SessionStore(db, request.app.state.session_feed)


def get_interval_store(request: Request, db: Session = Depends(get_db)) -> IntervalStore:
    return IntervalStore(db, request.app.state.interval_feed)


def get_settings_store(db: Session = Depends(get_db)) -> SettingsStore:
    return SettingsStore(db)


def get_timers(request: Request) -> TimerRegistry:
    return request.app.state.timers
