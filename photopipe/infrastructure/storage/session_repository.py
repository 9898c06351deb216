from __future__ import annotations

import logging
import threading
from collections import OrderedDict

from photopipe.domain.entities.image import ImageEntity
from photopipe.domain.errors import SessionNotFoundError
from photopipe.domain.services.edit_session import EditSession

logger = logging.getLogger(__name__)

MAX_SESSIONS = 100

# module-level in-memory store, shared by every repository instance; least recently used first
_MEM_SESSIONS: OrderedDict[str, EditSession] = OrderedDict()
_LOCK = threading.Lock()


class SessionRepository:
    def __init__(self, history_limit: int = 50, max_sessions: int = MAX_SESSIONS) -> None:
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.history_limit = history_limit
        self.max_sessions = max_sessions

    def create(self, upload: ImageEntity) -> EditSession:
        """Store a new session, evicting the least recently used ones past `max_sessions`."""
        session = EditSession(upload, history_limit=self.history_limit)
        with _LOCK:
            _MEM_SESSIONS[session.id] = session
            while len(_MEM_SESSIONS) > self.max_sessions:
                evicted, _ = _MEM_SESSIONS.popitem(last=False)
                logger.info("Evicted session %s (limit %d)", evicted, self.max_sessions)
        return session

    def get(self, session_id: str) -> EditSession:
        with _LOCK:
            session = _MEM_SESSIONS.get(session_id)
            if session is not None:
                _MEM_SESSIONS.move_to_end(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def delete(self, session_id: str) -> None:
        with _LOCK:
            if _MEM_SESSIONS.pop(session_id, None) is None:
                raise SessionNotFoundError(session_id)
