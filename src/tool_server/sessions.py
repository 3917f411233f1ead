"""Session tracking for the JSON-RPC endpoint.

Sessions are created by ``initialize`` and removed exactly once: on an
explicit close, or when they sit idle past the TTL.
"""

import threading
import time
import uuid
from typing import Callable, Optional

from pydantic import BaseModel

from shared.logging import get_logger

logger = get_logger(__name__)


class Session(BaseModel):
    id: str
    created_at: float
    last_seen: float
    client_info: dict = {}


class SessionManager:
    """Lifetime-scoped map of open sessions."""

    def __init__(
        self,
        ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self, client_info: Optional[dict] = None) -> Session:
        now = self._clock()
        session = Session(
            id=str(uuid.uuid4()),
            created_at=now,
            last_seen=now,
            client_info=client_info or {},
        )
        with self._lock:
            self._purge_locked(now)
            self._sessions[session.id] = session
        logger.info("Session opened", session_id=session.id)
        return session

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        """Return a live session and mark it as seen."""
        if not session_id:
            return None
        now = self._clock()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if now - session.last_seen > self.ttl_seconds:
                del self._sessions[session_id]
                return None
            session.last_seen = now
            return session

    def close(self, session_id: str) -> bool:
        """Remove a session. Returns False if it was not open."""
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info("Session closed", session_id=session_id)
        return removed

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked(self._clock())

    def _purge_locked(self, now: float) -> int:
        expired = [
            sid for sid, s in self._sessions.items()
            if now - s.last_seen > self.ttl_seconds
        ]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
