import threading
from typing import Any

from pomotrack.schemas import SessionInfo


class SessionMirror:
    """
    Local view of one owner's sessions in two layers.

    ``remote`` is the last snapshot delivered by the session feed; the
    overlay holds optimistic local changes keyed by session id. Local
    changes win until the next remote snapshot arrives, which replaces the
    remote layer and drops the whole overlay.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._remote: dict[str, SessionInfo] = {}
        self._order: list[str] = []
        self._overlay: dict[str, dict[str, Any]] = {}
        self.snapshots_received = 0

    def on_remote_snapshot(self, sessions: list[SessionInfo]) -> None:
        with self._lock:
            self._remote = {s.id: s for s in sessions}
            self._order = [s.id for s in sessions]
            self._overlay.clear()
            self.snapshots_received += 1

    def apply_local(self, session_id: str, fields: dict[str, Any]) -> None:
        with self._lock:
            self._overlay.setdefault(session_id, {}).update(fields)

    def has_pending(self, session_id: str | None = None) -> bool:
        with self._lock:
            if session_id is None:
                return bool(self._overlay)
            return session_id in self._overlay

    def get(self, session_id: str) -> SessionInfo | None:
        with self._lock:
            return self._merged(session_id)

    def current(self) -> list[SessionInfo]:
        with self._lock:
            return [self._merged(session_id) for session_id in self._order]

    def _merged(self, session_id: str) -> SessionInfo | None:
        session = self._remote.get(session_id)
        if session is None:
            return None
        fields = self._overlay.get(session_id)
        return session.model_copy(update=fields) if fields else session
