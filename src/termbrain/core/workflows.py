"""
Workflows: named, ordered literal command sequences.

Runs are fail-fast: the first non-zero exit stops the run. Each completed run
is folded into the workflow's statistics by a single storage update, so
``times_used`` and ``success_rate`` never disagree.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Awaitable, Callable, List, Optional, Sequence

from ..models import (
    WORKFLOW_NAME_PATTERN,
    Pattern,
    PatternType,
    StepResult,
    Workflow,
    WorkflowRunResult,
)
from ..persistence.base import DatabaseBackend
from .errors import PersistenceError, ValidationError, WorkflowNotFoundError

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(WORKFLOW_NAME_PATTERN)

# Exit code reported when the shell itself cannot be started
EXIT_NOT_RUN = 127

CommandRunner = Callable[[str], Awaitable[int]]


def validate_workflow(name: str, commands: Sequence[str]) -> List[str]:
    """Check a workflow definition and return its command list.

    Raises:
        ValidationError: invalid name, no commands, or a blank command.
    """
    if not isinstance(name, str) or not _NAME_RE.fullmatch(name):
        raise ValidationError(
            f"Invalid workflow name {name!r}: use 1-50 letters, digits, '-' or '_'"
        )
    commands = list(commands)
    if not commands:
        raise ValidationError(f"Workflow {name!r} needs at least one command")
    for position, command in enumerate(commands, start=1):
        if not command.strip():
            raise ValidationError(f"Workflow {name!r} has an empty command at position {position}")
    return commands


class ShellCommandRunner:
    """Runs one command through the user's shell and returns its exit code."""

    def __init__(self, cwd: Optional[str] = None) -> None:
        self.cwd = cwd

    async def __call__(self, command: str) -> int:
        try:
            process = await asyncio.create_subprocess_shell(command, cwd=self.cwd)
        except OSError as e:
            logger.error(f"Could not start {command!r}: {e}")
            return EXIT_NOT_RUN
        return await process.wait()


class WorkflowManager:
    """Create, inspect, run and derive workflows."""

    def __init__(self, db: DatabaseBackend, runner: Optional[CommandRunner] = None) -> None:
        self.db = db
        self.runner = runner or ShellCommandRunner()

    async def create(self, name: str, commands: Sequence[str], description: str = "") -> Workflow:
        """Create a workflow. An existing workflow with the same name is replaced
        and its statistics start over."""
        commands = validate_workflow(name, commands)
        await self.db.save_workflow(
            Workflow(name=name, description=description, commands=commands)
        )
        logger.info(f"Saved workflow {name} ({len(commands)} commands)")
        workflow = await self.db.get_workflow(name)
        if workflow is None:
            raise PersistenceError(f"Workflow {name} was not found after saving")
        return workflow

    async def get(self, name: str) -> Optional[Workflow]:
        return await self.db.get_workflow(name)

    async def list_workflows(self) -> List[Workflow]:
        return await self.db.list_workflows()

    async def delete(self, name: str) -> bool:
        deleted = await self.db.delete_workflow(name)
        if deleted:
            logger.info(f"Deleted workflow {name}")
        return deleted

    async def execute(self, name: str) -> WorkflowRunResult:
        """Run every command in order, stopping at the first failure.

        Raises:
            WorkflowNotFoundError: no workflow named ``name``.
        """
        workflow = await self.db.get_workflow(name)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow not found: {name}")

        results: List[StepResult] = []
        for position, command in enumerate(workflow.commands, start=1):
            started = time.monotonic()
            exit_code = await self.runner(command)
            duration_ms = int((time.monotonic() - started) * 1000)
            results.append(
                StepResult(
                    position=position,
                    command=command,
                    exit_code=exit_code,
                    duration_ms=duration_ms,
                )
            )
            if exit_code != 0:
                logger.info(f"Workflow {name} stopped at step {position} (exit {exit_code})")
                break

        overall_success = len(results) == len(workflow.commands) and all(
            r.success for r in results
        )
        updated = await self.db.record_workflow_run(name, overall_success)
        if updated is None:
            raise WorkflowNotFoundError(f"Workflow deleted during run: {name}")

        return WorkflowRunResult(
            workflow_name=name,
            results=results,
            overall_success=overall_success,
            times_used=updated.times_used,
            success_rate=updated.success_rate,
        )

    async def from_pattern(
        self, pattern: Pattern, name: str, description: str = ""
    ) -> Workflow:
        """Turn a sequence pattern into a workflow of concrete commands.

        Each slot takes the most recent recorded command of that semantic
        type, so calling this again after more history accumulates can give
        different commands.
        """
        if pattern.pattern_type == PatternType.TIME_SLOT:
            raise ValidationError("Only sequence patterns can become workflows")

        commands = []
        for semantic_type in pattern.key:
            example = await self.db.latest_command_of_type(semantic_type)
            if example is None:
                raise ValidationError(f"No recorded {semantic_type} command for {pattern.label}")
            commands.append(example.text)

        return await self.create(
            name, commands, description or f"Generated from pattern: {pattern.label}"
        )
