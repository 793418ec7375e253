"""
Session tracking for attached shells.

Every shell attach gets an opaque session id. The tracker owns the live
``Session`` objects, which carry the per-session pending command slot and
open error window, so no capture state is shared between terminals.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from ..models import Session
from ..persistence.base import DatabaseBackend
from .dispatcher import PersistenceDispatcher

logger = logging.getLogger(__name__)


def new_session_id(now: Optional[datetime] = None) -> str:
    """``session-<YYYYmmdd-HHMMSS>-<8 hex>``"""
    now = now or datetime.now()
    return f"session-{now.strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:8]}"


class SessionTracker:
    """In-memory registry of sessions, persisted through the dispatcher."""

    def __init__(self, db: DatabaseBackend, dispatcher: PersistenceDispatcher) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self._sessions: Dict[str, Session] = {}

    def attach(self, shell: str = "unknown", session_id: Optional[str] = None) -> Session:
        """Start a session for a newly attached shell."""
        session = Session(
            id=session_id or new_session_id(),
            shell=shell,
            start_time=datetime.now().astimezone(),
        )
        self._sessions[session.id] = session
        self._persist(session, "save session")
        logger.info(f"Attached session {session.id} ({shell})")
        return session

    def ensure(self, session_id: str) -> Session:
        """Return the live session, registering ids we have not seen.

        Hooks keep firing for a shell whose session outlived a process
        restart; that shell is adopted instead of losing its commands.
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug(f"Registering unknown session {session_id}")
            session = self.attach(session_id=session_id)
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def detach(self, session_id: str) -> Optional[Session]:
        """End a session; its open error window is abandoned unsolved."""
        session = self._sessions.get(session_id)
        if session is None or not session.is_active:
            return session
        if session.pending_command is not None:
            logger.debug(
                f"Session {session_id} ended with command "
                f"{session.pending_command.command_id} still open"
            )
        session.end()
        self._persist(session, "end session")
        logger.info(f"Detached session {session_id}")
        return session

    @property
    def active_sessions(self) -> List[Session]:
        return [s for s in self._sessions.values() if s.is_active]

    def _persist(self, session: Session, description: str) -> None:
        snapshot = session.model_copy()
        self.dispatcher.submit(
            session.id, lambda: self.db.save_session(snapshot), description
        )
