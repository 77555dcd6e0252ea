import logging
from datetime import datetime, timedelta

from pomotrack.config import REAUTH_WINDOW_SECONDS
from pomotrack.errors import PersistenceError, ReauthenticationRequiredError
from pomotrack.stores import IntervalStore, SessionStore, SettingsStore

logger = logging.getLogger(__name__)


def delete_account(
    sessions: SessionStore,
    intervals: IntervalStore,
    settings: SettingsStore,
    owner_id: str,
    authenticated_at: datetime | None,
    now: datetime | None = None,
) -> dict[str, int]:
    """
    Remove every session, interval and settings row of a user.

    Refuses unless the user signed in within the last
    REAUTH_WINDOW_SECONDS. All three stores must share one database session;
    nothing is deleted if any step fails.
    """
    if now is None:
        now = datetime.now()
    if authenticated_at is None or now - authenticated_at > timedelta(seconds=REAUTH_WINDOW_SECONDS):
        raise ReauthenticationRequiredError(
            "Sign in again before deleting your account"
        )

    try:
        removed = {
            "intervals": intervals.delete_for_owner(owner_id, commit=False),
            "sessions": sessions.delete_for_owner(owner_id, commit=False),
            "settings": settings.delete_for_owner(owner_id, commit=False),
        }
        sessions.commit()
    except PersistenceError:
        sessions.rollback()
        intervals.rollback()
        settings.rollback()
        raise

    intervals.commit()
    settings.commit()
    logger.info("Deleted account data for %s: %s", owner_id, removed)
    return removed
