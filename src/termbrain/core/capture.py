"""
Capture pipeline: pairs pre-execution and post-execution shell events.

Per session the pipeline moves ``Idle -> Opened -> Closed -> Idle``. Hook
calls return immediately; classification and storage run on the session's
persistence queue, which keeps a command's close behind its open.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from ..config import DEFAULT_DESTRUCTIVE_PATTERNS, DEFAULT_SENSITIVE_DIRECTORIES
from ..models import SENSITIVE_PLACEHOLDER, CaptureResult, Command, PendingCommand, Session
from ..persistence.base import DatabaseBackend
from .classifier import classify, complexity, is_sensitive
from .dispatcher import PersistenceDispatcher
from .error_linker import ErrorSolutionLinker
from .errors import PersistenceError, PolicyRejection, StateInconsistency
from .session_tracker import SessionTracker

logger = logging.getLogger(__name__)


class CapturePolicy:
    """Substring denylists for commands and working directories."""

    def __init__(
        self,
        destructive_patterns: Iterable[str] = DEFAULT_DESTRUCTIVE_PATTERNS,
        sensitive_directories: Iterable[str] = DEFAULT_SENSITIVE_DIRECTORIES,
    ) -> None:
        self.destructive_patterns = tuple(destructive_patterns)
        self.sensitive_directories = tuple(sensitive_directories)

    def check(self, text: str, directory: str) -> None:
        """Raise PolicyRejection if the command must not be recorded."""
        if not text.strip():
            raise PolicyRejection("empty command")
        for pattern in self.destructive_patterns:
            if pattern in text:
                raise PolicyRejection(f"destructive command matches {pattern!r}")
        for fragment in self.sensitive_directories:
            if fragment in directory:
                raise PolicyRejection(f"directory under {fragment!r}")

    def allows(self, text: str, directory: str) -> bool:
        try:
            self.check(text, directory)
        except PolicyRejection:
            return False
        return True


def build_command(
    command_id: str,
    session_id: str,
    sequence: int,
    text: str,
    directory: str,
    start_time: datetime,
    exit_code: Optional[int] = None,
    duration_ms: Optional[int] = None,
) -> Command:
    """Classify ``text`` into a storable Command; sensitive text is replaced."""
    sensitive = is_sensitive(text)
    return Command(
        id=command_id,
        session_id=session_id,
        sequence=sequence,
        text=SENSITIVE_PLACEHOLDER if sensitive else text,
        working_directory=directory,
        semantic_type=classify(text),
        sensitive=sensitive,
        complexity=complexity(text),
        start_time=start_time,
        exit_code=exit_code,
        duration_ms=duration_ms,
    )


class CapturePipeline:
    """Turns shell hook events into Command records."""

    def __init__(
        self,
        db: DatabaseBackend,
        dispatcher: PersistenceDispatcher,
        tracker: SessionTracker,
        linker: ErrorSolutionLinker,
        policy: Optional[CapturePolicy] = None,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self.tracker = tracker
        self.linker = linker
        self.policy = policy or CapturePolicy()

    def open(self, text: str, directory: str, session_id: str) -> CaptureResult:
        """Pre-execution hook. Rejections are silent: ``accepted=False``."""
        session = self.tracker.ensure(session_id)
        if not session.is_active:
            logger.debug(f"Session {session_id} has ended, not recording")
            return CaptureResult(accepted=False)

        try:
            self.policy.check(text, directory)
        except PolicyRejection as e:
            logger.debug(f"Not recording command in {session_id}: {e}")
            return CaptureResult(accepted=False)

        assert session.pending_command is None, (
            f"open while {session.pending_command.command_id} is still pending"
        )

        sequence = session.next_sequence()
        command_id = f"{session.id}:{sequence}"
        started_at = datetime.now().astimezone()
        session.pending_command = PendingCommand(
            command_id=command_id,
            text=text,
            working_directory=directory,
            started_at=started_at,
        )

        self.dispatcher.submit(
            session.id,
            lambda: self.db.append_command(
                build_command(command_id, session.id, sequence, text, directory, started_at)
            ),
            "append command",
        )
        return CaptureResult(accepted=True, command_id=command_id)

    def close(
        self,
        session_id: str,
        exit_code: int,
        duration_ms: int,
        command_id: Optional[str] = None,
    ) -> Optional[Command]:
        """Post-execution hook. A close with nothing pending changes nothing."""
        try:
            return self._close(session_id, exit_code, duration_ms, command_id)
        except StateInconsistency as e:
            logger.debug(f"Ignoring close for {session_id}: {e}")
            return None

    def _close(
        self,
        session_id: str,
        exit_code: int,
        duration_ms: int,
        command_id: Optional[str],
    ) -> Command:
        session = self.tracker.get(session_id)
        if session is None or session.pending_command is None:
            raise StateInconsistency("no pending command")
        pending = session.pending_command
        if command_id is not None and command_id != pending.command_id:
            raise StateInconsistency(
                f"close for {command_id} but {pending.command_id} is pending"
            )

        session.pending_command = None
        duration_ms = max(0, int(duration_ms))
        command = build_command(
            pending.command_id,
            session.id,
            _sequence_of(pending.command_id),
            pending.text,
            pending.working_directory,
            pending.started_at,
            exit_code=exit_code,
            duration_ms=duration_ms,
        )
        patch = {"exit_code": exit_code, "duration_ms": duration_ms}
        self.dispatcher.submit(
            session.id,
            lambda: self._update(pending.command_id, patch),
            "close command",
        )

        self.linker.on_close(session, pending.command_id, pending.text, exit_code)
        return command

    async def _update(self, command_id: str, patch: dict) -> None:
        if not await self.db.update_command(command_id, patch):
            raise PersistenceError(f"command {command_id} is not stored")

    def pending(self, session_id: str) -> Optional[PendingCommand]:
        session: Optional[Session] = self.tracker.get(session_id)
        return session.pending_command if session else None


def _sequence_of(command_id: str) -> int:
    return int(command_id.rpartition(":")[2])
