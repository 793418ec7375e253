"""
Termbrain engine.

Wires the capture pipeline, error linker, pattern miner and workflow manager
to one storage backend, and exposes the two boundaries callers use:

- the shell-hook boundary (``on_command_start`` / ``on_command_end``), which is
  synchronous and never raises for policy or ordering problems;
- the workflow and reporting boundary used by the CLI, which is async.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..config import TermbrainConfig
from ..models import (
    CaptureResult,
    Command,
    CommandStatistics,
    ErrorSolution,
    Pattern,
    PatternType,
    Session,
    Workflow,
    WorkflowRunResult,
)
from ..persistence.base import DatabaseBackend
from ..persistence.export import DataExporter
from .capture import CapturePipeline, CapturePolicy
from .dispatcher import PersistenceDispatcher
from .error_linker import ErrorSolutionLinker
from .pattern_miner import PatternMiner
from .session_tracker import SessionTracker
from .workflows import CommandRunner, WorkflowManager

logger = logging.getLogger(__name__)


class TermbrainEngine:
    """
    Terminal history intelligence engine.

    Hook methods must be called from a running event loop; the storage work
    they cause is queued per session and can be awaited with ``flush()``.
    """

    def __init__(
        self,
        db: DatabaseBackend,
        config: Optional[TermbrainConfig] = None,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self.config = config or TermbrainConfig()
        self.db = db

        self.dispatcher = PersistenceDispatcher(retry_delay=self.config.retry_delay_seconds)
        self.tracker = SessionTracker(db, self.dispatcher)
        self.linker = ErrorSolutionLinker(db, self.dispatcher)
        self.capture = CapturePipeline(
            db,
            self.dispatcher,
            self.tracker,
            self.linker,
            CapturePolicy(
                destructive_patterns=self.config.destructive_patterns,
                sensitive_directories=self.config.sensitive_directories,
            ),
        )
        self.miner = PatternMiner(
            db,
            min_frequency=self.config.min_frequency,
            time_slot_min_frequency=self.config.time_slot_min_frequency,
            time_window_days=self.config.time_window_days,
            time_slot_top_k=self.config.time_slot_top_k,
        )
        self.workflows = WorkflowManager(db, runner)

    @classmethod
    async def create(
        cls,
        config: Optional[TermbrainConfig] = None,
        db_path: Optional[str] = None,
        runner: Optional[CommandRunner] = None,
    ) -> TermbrainEngine:
        """Open the configured database and build an engine on it."""
        from ..persistence.factory import get_database

        config = config or TermbrainConfig.load()
        db = await get_database(config=config, db_path=db_path)
        return cls(db, config=config, runner=runner)

    async def __aenter__(self) -> TermbrainEngine:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ----- Sessions -----

    def attach_session(self, shell: str = "unknown", session_id: Optional[str] = None) -> Session:
        return self.tracker.attach(shell=shell, session_id=session_id)

    def detach_session(self, session_id: str) -> Optional[Session]:
        return self.tracker.detach(session_id)

    # ----- Shell-hook boundary -----

    def on_command_start(self, text: str, cwd: str, session_id: str) -> CaptureResult:
        return self.capture.open(text, cwd, session_id)

    def on_command_end(self, command_id: str, exit_code: int, duration_ms: int) -> Optional[Command]:
        session_id, _, sequence = command_id.rpartition(":")
        if not session_id or not sequence.isdigit():
            logger.debug(f"Ignoring close for malformed command id {command_id!r}")
            return None
        return self.capture.close(session_id, exit_code, duration_ms, command_id=command_id)

    # ----- Workflow boundary -----

    async def list_workflows(self) -> List[Workflow]:
        return await self.workflows.list_workflows()

    async def get_workflow(self, name: str) -> Optional[Workflow]:
        return await self.workflows.get(name)

    async def run_workflow(self, name: str) -> WorkflowRunResult:
        return await self.workflows.execute(name)

    async def create_workflow(
        self, name: str, commands: Sequence[str], description: str = ""
    ) -> Workflow:
        return await self.workflows.create(name, commands, description)

    async def delete_workflow(self, name: str) -> bool:
        return await self.workflows.delete(name)

    async def workflow_from_pattern(
        self, pattern: Pattern, name: str, description: str = ""
    ) -> Workflow:
        await self.flush()
        return await self.workflows.from_pattern(pattern, name, description)

    # ----- Learning and reporting -----

    async def mine_patterns(self, force: bool = False, now: Optional[datetime] = None) -> List[Pattern]:
        await self.flush()
        return await self.miner.mine(now=now, force=force)

    async def patterns(
        self, pattern_type: Optional[PatternType] = None, limit: Optional[int] = None
    ) -> List[Pattern]:
        return await self.miner.patterns(pattern_type=pattern_type, limit=limit)

    async def find_pattern(self, key: Sequence[str]) -> Optional[Pattern]:
        """Stored sequence pattern whose semantic-type key equals ``key``."""
        wanted = tuple(key)
        pattern_type = {2: PatternType.SEQUENCE_2, 3: PatternType.SEQUENCE_3}.get(len(wanted))
        if pattern_type is None:
            return None
        for pattern in await self.miner.patterns(pattern_type=pattern_type):
            if pattern.key == wanted:
                return pattern
        return None

    async def known_solutions(self, error_text: str, limit: int = 5) -> List[ErrorSolution]:
        return await self.linker.known_solutions(error_text, limit=limit)

    async def error_solutions(
        self, session_id: Optional[str] = None, solved: Optional[bool] = None, limit: int = 100
    ) -> List[ErrorSolution]:
        return await self.linker.solutions(session_id=session_id, solved=solved, limit=limit)

    async def search(self, query: str, limit: int = 20) -> List[Command]:
        return await self.db.search_commands(query, limit=limit)

    async def statistics(self) -> CommandStatistics:
        return await self.db.command_statistics()

    async def export(self, output_path: Optional[Path] = None) -> Dict[str, Any]:
        await self.flush()
        return await DataExporter(self.db).export_to_file(output_path)

    # ----- Lifecycle -----

    async def flush(self) -> None:
        """Wait for every queued persistence job."""
        await self.dispatcher.drain()

    async def close(self) -> None:
        await self.dispatcher.close()
        await self.db.close()
