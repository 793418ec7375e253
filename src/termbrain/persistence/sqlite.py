"""
SQLite database backend for terminal history persistence.

Optimal for:
- A single local user
- Local testing (":memory:")

Uses WAL mode so readers (the CLI, the miner) do not block the capture path.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

import aiosqlite

from ..core.errors import PersistenceError
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
from .base import DEFAULT_SQLITE_PATH, BaseDatabaseBackend, rank_patterns

logger = logging.getLogger(__name__)

# Columns a close event may patch on an open command
_COMMAND_PATCH_COLUMNS = ("exit_code", "duration_ms")


class SQLiteBackend(BaseDatabaseBackend):
    """SQLite database backend with async support for terminal history."""

    SCHEMA = """
    -- Schema version tracking
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TEXT NOT NULL
    );

    -- Sessions table
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        shell TEXT,
        started_at TEXT NOT NULL,
        ended_at TEXT,
        status TEXT DEFAULT 'active'
    );

    CREATE INDEX IF NOT EXISTS idx_sessions_status ON sessions(status);
    CREATE INDEX IF NOT EXISTS idx_sessions_started ON sessions(started_at);

    -- Commands table; position is the global append cursor, sequence the
    -- session-scoped ordering key
    CREATE TABLE IF NOT EXISTS commands (
        position INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        session_id TEXT NOT NULL,
        sequence INTEGER NOT NULL,
        text TEXT NOT NULL,
        directory TEXT NOT NULL,
        semantic_type TEXT NOT NULL DEFAULT 'general',
        sensitive INTEGER NOT NULL DEFAULT 0,
        complexity INTEGER NOT NULL DEFAULT 1,
        start_time TEXT NOT NULL,
        exit_code INTEGER,
        duration_ms INTEGER,
        UNIQUE (session_id, sequence)
    );

    CREATE INDEX IF NOT EXISTS idx_commands_session ON commands(session_id, sequence);
    CREATE INDEX IF NOT EXISTS idx_commands_semantic ON commands(semantic_type);
    CREATE INDEX IF NOT EXISTS idx_commands_sensitive ON commands(sensitive);

    -- Error windows: a failing command and, once solved, the next success
    CREATE TABLE IF NOT EXISTS error_windows (
        failing_command_id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        failing_text TEXT NOT NULL,
        opened_at TEXT NOT NULL,
        solved INTEGER NOT NULL DEFAULT 0,
        solution_command_id TEXT,
        solution_text TEXT,
        solved_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_errors_session ON error_windows(session_id);
    CREATE INDEX IF NOT EXISTS idx_errors_solved ON error_windows(solved);

    -- Mined patterns keyed by (type, key)
    CREATE TABLE IF NOT EXISTS patterns (
        pattern_type TEXT NOT NULL,
        pattern_key TEXT NOT NULL,
        frequency INTEGER NOT NULL,
        last_seen TEXT NOT NULL,
        PRIMARY KEY (pattern_type, pattern_key)
    );

    CREATE INDEX IF NOT EXISTS idx_patterns_frequency ON patterns(frequency);

    CREATE TABLE IF NOT EXISTS mining_state (
        name TEXT PRIMARY KEY,
        position INTEGER NOT NULL,
        expires_at TEXT,
        updated_at TEXT NOT NULL
    );

    -- Workflows and their commands, one row per command
    CREATE TABLE IF NOT EXISTS workflows (
        name TEXT PRIMARY KEY,
        description TEXT NOT NULL DEFAULT '',
        times_used INTEGER NOT NULL DEFAULT 0,
        success_rate REAL NOT NULL DEFAULT 1.0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS workflow_commands (
        workflow_name TEXT NOT NULL,
        position INTEGER NOT NULL,
        text TEXT NOT NULL,
        PRIMARY KEY (workflow_name, position),
        FOREIGN KEY (workflow_name) REFERENCES workflows(name) ON DELETE CASCADE
    );
    """

    def __init__(self, db_path: str | None = None) -> None:
        """Initialize SQLite backend.

        Args:
            db_path: Path to SQLite database file. Defaults to ~/.termbrain/data/termbrain.db.
                    Use ":memory:" for testing.
        """
        super().__init__()

        if db_path == ":memory:":
            self.db_path: str | Path = db_path
        else:
            self.db_path = Path(db_path).expanduser() if db_path else DEFAULT_SQLITE_PATH
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize database connection and apply schema."""
        db_path = str(self.db_path) if isinstance(self.db_path, Path) else self.db_path
        try:
            self._connection = await aiosqlite.connect(db_path)
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"Cannot open database {db_path}: {e}") from e
        self._connection.row_factory = aiosqlite.Row

        # Enable WAL mode for better concurrent access
        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA foreign_keys=ON")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        # Apply schema
        await self._connection.executescript(self.SCHEMA)
        await self._connection.execute(
            "INSERT OR IGNORE INTO schema_version VALUES (?, ?)",
            (self.SCHEMA_VERSION, self._get_timestamp()),
        )
        await self._connection.commit()

        self._is_connected = True
        logger.info(f"SQLite database initialized: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            # Checkpoint WAL before closing
            try:
                await self._connection.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            except aiosqlite.Error as e:
                logger.warning(f"WAL checkpoint failed: {e}")

            await self._connection.close()
            self._connection = None
            self._is_connected = False
            logger.info("SQLite connection closed")

    def _ensure_connected(self) -> aiosqlite.Connection:
        """Raise error if not connected."""
        if not self._connection:
            raise PersistenceError("Database not initialized")
        return self._connection

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialize writers and commit or roll back as one unit."""
        connection = self._ensure_connected()
        async with self._write_lock:
            try:
                yield connection
                await connection.commit()
            except Exception:
                await connection.rollback()
                raise

    # Session operations

    async def save_session(self, session: Session) -> None:
        """Insert a session or record its end; the start time is never rewritten."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO sessions (id, shell, started_at, ended_at, status)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    ended_at = excluded.ended_at,
                    status = excluded.status
                WHERE sessions.status = 'active'
            """,
                (
                    session.id,
                    session.shell,
                    self._format_timestamp(session.start_time),
                    self._format_timestamp(session.end_time),
                    session.status.value,
                ),
            )

    async def get_session(self, session_id: str) -> Session | None:
        """Get a session by ID."""
        conn = self._ensure_connected()

        cursor = await conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,))
        row = await cursor.fetchone()
        if row:
            return Session.model_validate(self._normalize_session_row(dict(row)))
        return None

    async def query_sessions(
        self, limit: int = 50, status: SessionStatus | None = None
    ) -> list[Session]:
        """Query sessions, newest first."""
        conn = self._ensure_connected()

        query = "SELECT * FROM sessions WHERE 1=1"
        params: list[Any] = []

        if status:
            query += " AND status = ?"
            params.append(SessionStatus(status).value)

        query += " ORDER BY started_at DESC LIMIT ?"
        params.append(limit)

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [Session.model_validate(self._normalize_session_row(dict(row))) for row in rows]

    # Command operations

    async def append_command(self, command: Command) -> str:
        """Persist an opened command; re-appending the same id is a no-op."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT OR IGNORE INTO commands
                (id, session_id, sequence, text, directory, semantic_type, sensitive,
                 complexity, start_time, exit_code, duration_ms)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    command.id,
                    command.session_id,
                    command.sequence,
                    command.text,
                    command.working_directory,
                    command.semantic_type.value,
                    int(command.sensitive),
                    command.complexity,
                    self._format_local_timestamp(command.start_time),
                    command.exit_code,
                    command.duration_ms,
                ),
            )
        return command.id

    async def update_command(self, command_id: str, patch: dict[str, Any]) -> bool:
        """Apply a close patch (exit_code, duration_ms). Returns True if a row changed."""
        columns = [column for column in _COMMAND_PATCH_COLUMNS if column in patch]
        if not columns:
            return False

        assignments = ", ".join(f"{column} = ?" for column in columns)
        params = [patch[column] for column in columns] + [command_id]
        async with self._transaction() as conn:
            cursor = await conn.execute(
                f"UPDATE commands SET {assignments} WHERE id = ?", params
            )
            return cursor.rowcount > 0

    async def get_command(self, command_id: str) -> Command | None:
        """Get a command by ID."""
        conn = self._ensure_connected()

        cursor = await conn.execute("SELECT * FROM commands WHERE id = ?", (command_id,))
        row = await cursor.fetchone()
        if row:
            return Command.model_validate(self._normalize_command_row(dict(row)))
        return None

    async def scan_commands(
        self,
        session_id: str | None = None,
        since: int | None = None,
        limit: int | None = None,
    ) -> list[Command]:
        """Commands in stable order.

        Within one session the order is the session's sequence; across sessions
        it is append order. ``since`` excludes positions at or below the cursor.
        """
        conn = self._ensure_connected()

        query = "SELECT * FROM commands WHERE 1=1"
        params: list[Any] = []

        if session_id:
            query += " AND session_id = ?"
            params.append(session_id)
        if since is not None:
            query += " AND position > ?"
            params.append(since)

        query += " ORDER BY sequence, position" if session_id else " ORDER BY position"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [Command.model_validate(self._normalize_command_row(dict(row))) for row in rows]

    async def latest_command_of_type(self, semantic_type: str) -> Command | None:
        """Most recent non-sensitive command of a semantic type."""
        conn = self._ensure_connected()

        cursor = await conn.execute(
            """
            SELECT * FROM commands
            WHERE semantic_type = ? AND sensitive = 0
            ORDER BY position DESC
            LIMIT 1
        """,
            (semantic_type,),
        )
        row = await cursor.fetchone()
        if row:
            return Command.model_validate(self._normalize_command_row(dict(row)))
        return None

    async def search_commands(self, query: str, limit: int = 20) -> list[Command]:
        """Non-sensitive commands whose text or type matches ``query``, newest first."""
        conn = self._ensure_connected()

        cursor = await conn.execute(
            """
            SELECT * FROM commands
            WHERE sensitive = 0
            AND (text LIKE ? ESCAPE '\\' OR semantic_type LIKE ? ESCAPE '\\')
            ORDER BY position DESC
            LIMIT ?
        """,
            (self._like_pattern(query), self._like_pattern(query), limit),
        )
        rows = await cursor.fetchall()
        return [Command.model_validate(self._normalize_command_row(dict(row))) for row in rows]

    async def command_statistics(self) -> CommandStatistics:
        """Aggregate counts over the command log."""
        conn = self._ensure_connected()

        cursor = await conn.execute(
            """
            SELECT
                COUNT(*) AS total,
                SUM(CASE WHEN exit_code = 0 THEN 1 ELSE 0 END) AS successful,
                SUM(CASE WHEN exit_code != 0 THEN 1 ELSE 0 END) AS failed,
                AVG(duration_ms) AS average_duration
            FROM commands
        """
        )
        totals = await cursor.fetchone()

        cursor = await conn.execute(
            """
            SELECT
                semantic_type,
                COUNT(*) AS count,
                SUM(CASE WHEN exit_code != 0 THEN 1 ELSE 0 END) AS failed,
                SUM(CASE WHEN exit_code IS NOT NULL THEN 1 ELSE 0 END) AS closed
            FROM commands
            GROUP BY semantic_type
            ORDER BY count DESC, semantic_type
        """
        )
        by_type_rows = await cursor.fetchall()

        cursor = await conn.execute(
            "SELECT COUNT(*) AS recorded, SUM(solved) AS solved FROM error_windows"
        )
        errors = await cursor.fetchone()

        return CommandStatistics(
            total_commands=totals["total"] or 0,
            successful_commands=totals["successful"] or 0,
            failed_commands=totals["failed"] or 0,
            by_type={row["semantic_type"]: row["count"] for row in by_type_rows},
            error_rate_by_type={
                row["semantic_type"]: (row["failed"] or 0) / row["closed"]
                for row in by_type_rows
                if row["closed"]
            },
            average_duration_ms=float(totals["average_duration"] or 0.0),
            errors_recorded=errors["recorded"] or 0,
            errors_solved=errors["solved"] or 0,
        )

    # Error window operations

    async def open_error_window(self, window: ErrorWindow) -> None:
        """Record a failing command awaiting a solution."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT OR IGNORE INTO error_windows
                (failing_command_id, session_id, failing_text, opened_at, solved)
                VALUES (?, ?, ?, ?, 0)
            """,
                (
                    window.failing_command_id,
                    window.session_id,
                    window.failing_text,
                    self._format_timestamp(window.opened_at),
                ),
            )

    async def solve_error_window(self, solution: ErrorSolution) -> bool:
        """Attach the solution to an unsolved window. Returns True if one was updated."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE error_windows
                SET solved = 1, solution_command_id = ?, solution_text = ?, solved_at = ?
                WHERE failing_command_id = ? AND solved = 0
            """,
                (
                    solution.solution_command_id,
                    solution.solution_text,
                    self._format_timestamp(solution.solved_at) or self._get_timestamp(),
                    solution.problem_command_id,
                ),
            )
            return cursor.rowcount > 0

    async def query_error_solutions(
        self, session_id: str | None = None, solved: bool | None = None, limit: int = 100
    ) -> list[ErrorSolution]:
        """Error windows, newest first."""
        conn = self._ensure_connected()

        query = "SELECT * FROM error_windows WHERE 1=1"
        params: list[Any] = []

        if session_id:
            query += " AND session_id = ?"
            params.append(session_id)
        if solved is not None:
            query += " AND solved = ?"
            params.append(int(solved))

        query += " ORDER BY opened_at DESC LIMIT ?"
        params.append(limit)

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [ErrorSolution.model_validate(self._normalize_error_row(dict(row))) for row in rows]

    async def find_error_solutions(self, error_text: str, limit: int = 5) -> list[ErrorSolution]:
        """Solved windows whose failing text contains, or is contained in, ``error_text``."""
        conn = self._ensure_connected()

        cursor = await conn.execute(
            """
            SELECT * FROM error_windows
            WHERE solved = 1
            AND (failing_text LIKE ? ESCAPE '\\' OR instr(lower(?), lower(failing_text)) > 0)
            ORDER BY solved_at DESC
            LIMIT ?
        """,
            (self._like_pattern(error_text[:100]), error_text, limit),
        )
        rows = await cursor.fetchall()
        return [ErrorSolution.model_validate(self._normalize_error_row(dict(row))) for row in rows]

    # Pattern operations

    async def replace_patterns(
        self, patterns: Sequence[Pattern], pattern_types: Sequence[PatternType]
    ) -> None:
        """Swap every stored pattern of ``pattern_types`` for ``patterns`` in one transaction."""
        async with self._transaction() as conn:
            for pattern_type in pattern_types:
                await conn.execute(
                    "DELETE FROM patterns WHERE pattern_type = ?",
                    (PatternType(pattern_type).value,),
                )
            await conn.executemany(
                """
                INSERT INTO patterns (pattern_type, pattern_key, frequency, last_seen)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(pattern_type, pattern_key) DO UPDATE SET
                    frequency = excluded.frequency,
                    last_seen = excluded.last_seen
            """,
                [
                    (
                        pattern.pattern_type.value,
                        self._serialize_key(pattern.key),
                        pattern.frequency,
                        self._format_timestamp(pattern.last_seen),
                    )
                    for pattern in patterns
                ],
            )

    async def query_patterns(
        self, pattern_type: PatternType | None = None, limit: int | None = None
    ) -> list[Pattern]:
        """Stored patterns in ranking order."""
        conn = self._ensure_connected()

        if pattern_type:
            cursor = await conn.execute(
                "SELECT * FROM patterns WHERE pattern_type = ?",
                (PatternType(pattern_type).value,),
            )
        else:
            cursor = await conn.execute("SELECT * FROM patterns")

        rows = await cursor.fetchall()
        patterns = rank_patterns(
            [Pattern.model_validate(self._normalize_pattern_row(dict(row))) for row in rows]
        )
        return patterns[:limit] if limit is not None else patterns

    async def get_mining_cursor(self, name: str) -> tuple[int, datetime | None] | None:
        """Last command position consumed by a mining run, and when its results go stale."""
        conn = self._ensure_connected()

        cursor = await conn.execute(
            "SELECT position, expires_at FROM mining_state WHERE name = ?", (name,)
        )
        row = await cursor.fetchone()
        if not row:
            return None
        expires_at = datetime.fromisoformat(row["expires_at"]) if row["expires_at"] else None
        return row["position"], expires_at

    async def set_mining_cursor(
        self, name: str, position: int, expires_at: datetime | None = None
    ) -> None:
        """Remember the last command position consumed by a mining run."""
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO mining_state (name, position, expires_at, updated_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    position = excluded.position,
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
            """,
                (name, position, self._format_timestamp(expires_at), self._get_timestamp()),
            )

    # Workflow operations

    async def save_workflow(self, workflow: Workflow) -> None:
        """Create or replace a workflow; commands are stored one row per position."""
        now = self._get_timestamp()
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO workflows (name, description, times_used, success_rate, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    description = excluded.description,
                    times_used = excluded.times_used,
                    success_rate = excluded.success_rate,
                    updated_at = excluded.updated_at
            """,
                (
                    workflow.name,
                    workflow.description,
                    workflow.times_used,
                    workflow.success_rate,
                    self._format_timestamp(workflow.created_at) or now,
                    now,
                ),
            )
            await conn.execute(
                "DELETE FROM workflow_commands WHERE workflow_name = ?", (workflow.name,)
            )
            await conn.executemany(
                "INSERT INTO workflow_commands (workflow_name, position, text) VALUES (?, ?, ?)",
                [
                    (workflow.name, position, text)
                    for position, text in enumerate(workflow.commands, start=1)
                ],
            )

    async def get_workflow(self, name: str) -> Workflow | None:
        """Get a workflow by name, commands in position order."""
        conn = self._ensure_connected()

        cursor = await conn.execute("SELECT * FROM workflows WHERE name = ?", (name,))
        row = await cursor.fetchone()
        if not row:
            return None
        return await self._hydrate_workflow(dict(row))

    async def list_workflows(self) -> list[Workflow]:
        """All workflows, most used first."""
        conn = self._ensure_connected()

        cursor = await conn.execute("SELECT * FROM workflows ORDER BY times_used DESC, name")
        rows = await cursor.fetchall()
        return [await self._hydrate_workflow(dict(row)) for row in rows]

    async def _hydrate_workflow(self, row: dict[str, Any]) -> Workflow:
        conn = self._ensure_connected()

        cursor = await conn.execute(
            "SELECT text FROM workflow_commands WHERE workflow_name = ? ORDER BY position",
            (row["name"],),
        )
        commands = [command_row["text"] for command_row in await cursor.fetchall()]
        return Workflow(
            name=row["name"],
            description=row.get("description") or "",
            commands=commands,
            times_used=row.get("times_used", 0),
            success_rate=row.get("success_rate", 1.0),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    async def delete_workflow(self, name: str) -> bool:
        """Delete a workflow and its commands."""
        async with self._transaction() as conn:
            await conn.execute("DELETE FROM workflow_commands WHERE workflow_name = ?", (name,))
            cursor = await conn.execute("DELETE FROM workflows WHERE name = ?", (name,))
            return cursor.rowcount > 0

    async def record_workflow_run(self, name: str, success: bool) -> Workflow | None:
        """Fold one run into the statistics with a single UPDATE statement.

        SQLite evaluates every SET expression against the pre-update row, so
        times_used and success_rate always move together.
        """
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE workflows
                SET times_used = times_used + 1,
                    success_rate = (success_rate * times_used + ?) / (times_used + 1),
                    updated_at = ?
                WHERE name = ?
            """,
                (1.0 if success else 0.0, self._get_timestamp(), name),
            )
            updated = cursor.rowcount > 0
        if not updated:
            return None
        return await self.get_workflow(name)

