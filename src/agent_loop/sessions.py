# sessions.py
# In-memory registry of browser-automation sessions.
#
# Only the active/inactive flag lives here; the remote session lifecycle
# belongs to the automation backend. Entries are never silently created
# by a lookup.

import logging
import threading
from datetime import datetime, timezone

from agent_loop.models import Session

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionTracker:
    """Thread-safe session id → Session map shared by concurrent runs."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def start(self, session_id: str) -> Session:
        """Create or reactivate a session and mark it active."""
        with self._lock:
            session = Session(session_id=session_id, started_at=_now(), is_active=True)
            self._sessions[session_id] = session
            logger.info("session %s started", session_id)
            return session.model_copy()

    def close(self, session_id: str) -> Session | None:
        """Mark a session inactive. The entry is kept; unknown ids are a no-op."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session.is_active = False
            session.closed_at = _now()
            logger.info("session %s closed", session_id)
            return session.model_copy()

    def is_active(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            return bool(session and session.is_active)

    def status(self, session_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy() if session else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
