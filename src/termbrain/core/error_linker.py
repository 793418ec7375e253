"""
Error -> solution linking.

Driven by close events. A failing command opens the session's error window
(replacing any window already open, which stays unsolved forever). The next
successful command in the same session closes the window and becomes its
solution.

"Next success" is a heuristic: after ``git push`` fails, an unrelated
``npm test`` that happens to succeed next is recorded as the solution even if
the real fix came later. Windows never cross sessions and die with their
session.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from ..models import ErrorSolution, ErrorWindow, Session
from ..persistence.base import DatabaseBackend
from .classifier import redact
from .dispatcher import PersistenceDispatcher

logger = logging.getLogger(__name__)


class ErrorSolutionLinker:
    """Per-session error window state machine."""

    def __init__(self, db: DatabaseBackend, dispatcher: PersistenceDispatcher) -> None:
        self.db = db
        self.dispatcher = dispatcher

    def on_close(
        self,
        session: Session,
        command_id: str,
        text: str,
        exit_code: int,
        when: Optional[datetime] = None,
    ) -> Optional[ErrorSolution]:
        """Advance the session's window for one closed command.

        Returns the (problem, solution) pair when this command solved a window.
        """
        when = when or datetime.now().astimezone()

        if exit_code != 0:
            previous = session.error_window
            if previous is not None:
                logger.debug(
                    f"Error window {previous.failing_command_id} superseded by {command_id}"
                )
            window = ErrorWindow(
                failing_command_id=command_id,
                failing_text=redact(text),
                session_id=session.id,
                opened_at=when,
            )
            session.error_window = window
            self.dispatcher.submit(
                session.id, lambda: self.db.open_error_window(window), "open error window"
            )
            return None

        window = session.error_window
        if window is None:
            return None

        session.error_window = None
        solution = ErrorSolution(
            problem_command_id=window.failing_command_id,
            problem_text=window.failing_text,
            solution_command_id=command_id,
            solution_text=redact(text),
            session_id=session.id,
            opened_at=window.opened_at,
            solved_at=when,
            solved=True,
        )
        self.dispatcher.submit(
            session.id, lambda: self.db.solve_error_window(solution), "solve error window"
        )
        logger.debug(f"Linked {window.failing_command_id} -> {command_id}")
        return solution

    def open_window(self, session: Session) -> Optional[ErrorWindow]:
        return session.error_window

    async def known_solutions(self, error_text: str, limit: int = 5) -> List[ErrorSolution]:
        """Solutions previously recorded for commands resembling ``error_text``."""
        if not error_text.strip():
            return []
        return await self.db.find_error_solutions(error_text, limit=limit)

    async def solutions(
        self,
        session_id: Optional[str] = None,
        solved: Optional[bool] = None,
        limit: int = 100,
    ) -> List[ErrorSolution]:
        return await self.db.query_error_solutions(
            session_id=session_id, solved=solved, limit=limit
        )
