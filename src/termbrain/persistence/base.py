"""
Repository abstraction for terminal history persistence.

Provides a Protocol interface the pipeline codes against, so the storage
engine stays swappable:
- SQLite (default, single local user)

Usage:
    from termbrain.persistence.base import DatabaseBackend
    from termbrain.persistence.sqlite import SQLiteBackend

    db: DatabaseBackend = SQLiteBackend(db_path="~/.termbrain/data/termbrain.db")
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from ..config import DEFAULT_DATA_DIR
from ..models import (
    Command,
    CommandStatistics,
    ErrorSolution,
    ErrorWindow,
    Pattern,
    PatternType,
    Session,
    SessionStatus,
    Workflow,
)

DEFAULT_SQLITE_PATH = DEFAULT_DATA_DIR / "data" / "termbrain.db"


@runtime_checkable
class DatabaseBackend(Protocol):
    """
    Protocol defining the storage interface for terminal history.

    All backends must implement these async methods to support:
    - Session lifecycle
    - Ordered, session-scoped command append/update/scan
    - Error window tracking
    - Pattern storage
    - Workflow storage with atomic run statistics
    """

    @property
    def is_connected(self) -> bool:
        """Check if database is connected."""
        ...

    async def initialize(self) -> None:
        """Initialize database connection and apply schema."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    # Session operations
    async def save_session(self, session: Session) -> None:
        """Insert a session or record its end."""
        ...

    async def get_session(self, session_id: str) -> Optional[Session]:
        """Get a session by ID."""
        ...

    async def query_sessions(
        self, limit: int = 50, status: Optional[SessionStatus] = None
    ) -> list[Session]:
        """Query sessions, newest first."""
        ...

    # Command operations
    async def append_command(self, command: Command) -> str:
        """Persist an opened command and return its id."""
        ...

    async def update_command(self, command_id: str, patch: dict[str, Any]) -> bool:
        """Apply a close patch (exit_code, duration_ms). Returns True if a row changed."""
        ...

    async def get_command(self, command_id: str) -> Optional[Command]:
        """Get a command by ID."""
        ...

    async def scan_commands(
        self,
        session_id: Optional[str] = None,
        since: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[Command]:
        """Commands in stable order; ``since`` is an exclusive position cursor."""
        ...

    async def latest_command_of_type(self, semantic_type: str) -> Optional[Command]:
        """Most recent non-sensitive command of a semantic type."""
        ...

    async def search_commands(self, query: str, limit: int = 20) -> list[Command]:
        """Non-sensitive commands whose text or type matches ``query``."""
        ...

    async def command_statistics(self) -> CommandStatistics:
        """Aggregate counts over the command log."""
        ...

    # Error window operations
    async def open_error_window(self, window: ErrorWindow) -> None:
        """Record a failing command awaiting a solution."""
        ...

    async def solve_error_window(self, solution: ErrorSolution) -> bool:
        """Attach the solution to an unsolved window. Returns True if one was updated."""
        ...

    async def query_error_solutions(
        self, session_id: Optional[str] = None, solved: Optional[bool] = None, limit: int = 100
    ) -> list[ErrorSolution]:
        """Error windows, newest first."""
        ...

    async def find_error_solutions(self, error_text: str, limit: int = 5) -> list[ErrorSolution]:
        """Solved windows whose failing text matches ``error_text``."""
        ...

    # Pattern operations
    async def replace_patterns(
        self, patterns: Sequence[Pattern], pattern_types: Sequence[PatternType]
    ) -> None:
        """Swap every stored pattern of ``pattern_types`` for ``patterns``."""
        ...

    async def query_patterns(
        self, pattern_type: Optional[PatternType] = None, limit: Optional[int] = None
    ) -> list[Pattern]:
        """Stored patterns in ranking order."""
        ...

    async def get_mining_cursor(self, name: str) -> Optional[tuple[int, Optional[datetime]]]:
        """Last command position consumed by a mining run, and when its results go stale."""
        ...

    async def set_mining_cursor(
        self, name: str, position: int, expires_at: Optional[datetime] = None
    ) -> None:
        """Remember the last command position consumed by a mining run."""
        ...

    # Workflow operations
    async def save_workflow(self, workflow: Workflow) -> None:
        """Create or replace a workflow and its ordered commands."""
        ...

    async def get_workflow(self, name: str) -> Optional[Workflow]:
        """Get a workflow by name."""
        ...

    async def list_workflows(self) -> list[Workflow]:
        """All workflows, most used first."""
        ...

    async def delete_workflow(self, name: str) -> bool:
        """Delete a workflow. Returns True if deleted."""
        ...

    async def record_workflow_run(self, name: str, success: bool) -> Optional[Workflow]:
        """Atomically bump times_used and fold the run into success_rate."""
        ...


def rank_patterns(patterns: Sequence[Pattern]) -> list[Pattern]:
    """Frequency first, then most recently seen, then lexicographic key."""
    return sorted(
        patterns,
        key=lambda p: (-p.frequency, -p.last_seen.timestamp(), p.pattern_type.value, p.key),
    )


class BaseDatabaseBackend:
    """
    Base class with shared utilities for database backends.

    Handles the conversion between model objects and flat storage rows.
    """

    SCHEMA_VERSION = 1

    def __init__(self) -> None:
        self._is_connected = False

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    def _serialize_key(self, key: Sequence[str]) -> str:
        return json.dumps(list(key))

    def _deserialize_key(self, raw: Optional[str]) -> tuple[str, ...]:
        if not raw:
            return ()
        try:
            return tuple(json.loads(raw))
        except json.JSONDecodeError:
            return ()

    def _format_timestamp(self, value: Optional[datetime]) -> Optional[str]:
        """Fixed-width UTC text so stored timestamps sort lexicographically."""
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.astimezone()
        return value.astimezone(UTC).isoformat(timespec="microseconds")

    def _format_local_timestamp(self, value: datetime) -> str:
        """Keep the capture-time UTC offset so the wall-clock hour survives storage."""
        if value.tzinfo is None:
            value = value.astimezone()
        return value.isoformat(timespec="microseconds")

    def _normalize_command_row(self, row: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": row.get("id"),
            "session_id": row.get("session_id"),
            "sequence": row.get("sequence"),
            "text": row.get("text", ""),
            "working_directory": row.get("directory") or row.get("working_directory", ""),
            "semantic_type": row.get("semantic_type") or "general",
            "sensitive": bool(row.get("sensitive")),
            "complexity": row.get("complexity") or 1,
            "start_time": row.get("start_time"),
            "exit_code": row.get("exit_code"),
            "duration_ms": row.get("duration_ms"),
            "position": row.get("position"),
        }

    def _normalize_session_row(self, row: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": row.get("id"),
            "shell": row.get("shell") or "unknown",
            "start_time": row.get("started_at"),
            "end_time": row.get("ended_at"),
            "status": row.get("status", "active"),
        }

    def _normalize_error_row(self, row: dict[str, Any]) -> dict[str, Any]:
        return {
            "problem_command_id": row.get("failing_command_id"),
            "problem_text": row.get("failing_text", ""),
            "solution_command_id": row.get("solution_command_id"),
            "solution_text": row.get("solution_text"),
            "session_id": row.get("session_id"),
            "opened_at": row.get("opened_at"),
            "solved_at": row.get("solved_at"),
            "solved": bool(row.get("solved")),
        }

    def _normalize_pattern_row(self, row: dict[str, Any]) -> dict[str, Any]:
        return {
            "pattern_type": row.get("pattern_type"),
            "key": self._deserialize_key(row.get("pattern_key")),
            "frequency": row.get("frequency", 1),
            "last_seen": row.get("last_seen"),
        }

    def _like_pattern(self, text: str) -> str:
        """Substring LIKE pattern with '\\' as the escape character."""
        escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return f"%{escaped}%"

    def _get_timestamp(self) -> str:
        """Get current timestamp in ISO format."""
        return datetime.now(UTC).isoformat(timespec="microseconds")
