"""
Termbrain Data Models.

Data models for terminal sessions, captured commands, error windows, mined
patterns and workflows. Storage rows are validated back into these models, so
every field here mirrors a persisted column unless marked as runtime state.
"""

import time
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, Field


WORKFLOW_NAME_PATTERN = r"^[A-Za-z0-9_-]{1,50}$"
SENSITIVE_PLACEHOLDER = "[REDACTED]"


# ===== ENUMS =====

class SemanticType(str, Enum):
    """Coarse command category assigned by the rule-based classifier."""
    VERSION_CONTROL = "version_control"
    TESTING = "testing"
    BUILDING = "building"
    PACKAGE_MANAGEMENT = "package_management"
    CONTAINER = "container"
    FILE_OPERATION = "file_operation"
    NAVIGATION = "navigation"
    PROCESS_MANAGEMENT = "process_management"
    NETWORK = "network"
    SYSTEM_ADMIN = "system_admin"
    DATABASE = "database"
    MONITORING = "monitoring"
    SEARCHING = "searching"
    GENERAL = "general"


class SessionStatus(str, Enum):
    """Session status enumeration."""
    ACTIVE = "active"
    ENDED = "ended"


class PatternType(str, Enum):
    """Mined pattern type enumeration."""
    SEQUENCE_2 = "sequence-2"
    SEQUENCE_3 = "sequence-3"
    TIME_SLOT = "time-slot"


# ===== CAPTURE MODELS =====

class PendingCommand(BaseModel):
    """Command opened at pre-execution and not yet closed."""
    command_id: str
    text: str
    working_directory: str
    started_at: datetime


class ErrorWindow(BaseModel):
    """Unresolved failing command waiting for the next success in its session."""
    failing_command_id: str
    failing_text: str
    session_id: str
    opened_at: datetime


class ErrorSolution(BaseModel):
    """A (problem, solution) pair produced when an error window closes."""
    problem_command_id: str
    problem_text: str
    solution_command_id: Optional[str] = None
    solution_text: Optional[str] = None
    session_id: str
    opened_at: datetime
    solved_at: Optional[datetime] = None
    solved: bool = False


class Session(BaseModel):
    """Shell attach/detach lifetime.

    ``pending_command``, ``error_window`` and ``last_sequence`` are runtime
    state keyed by this session; they are never persisted.
    """
    id: str
    shell: str = "unknown"
    start_time: datetime
    end_time: Optional[datetime] = None
    status: SessionStatus = SessionStatus.ACTIVE

    pending_command: Optional[PendingCommand] = Field(default=None, exclude=True)
    error_window: Optional[ErrorWindow] = Field(default=None, exclude=True)
    last_sequence: int = Field(default=0, exclude=True)

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def next_sequence(self) -> int:
        """Next session-scoped ordering key.

        Microseconds since the epoch, bumped past the previous key, so keys keep
        increasing after a process restart resumes the same session id.
        """
        candidate = time.time_ns() // 1_000
        self.last_sequence = max(candidate, self.last_sequence + 1)
        return self.last_sequence

    def end(self, when: Optional[datetime] = None) -> None:
        if not self.is_active:
            return
        self.end_time = when or datetime.now().astimezone()
        self.status = SessionStatus.ENDED
        self.pending_command = None
        self.error_window = None


class Command(BaseModel):
    """One captured shell command."""
    id: str
    session_id: str
    sequence: int
    text: str
    working_directory: str
    semantic_type: SemanticType = SemanticType.GENERAL
    sensitive: bool = False
    complexity: int = Field(default=1, ge=1, le=5)
    start_time: datetime
    exit_code: Optional[int] = None
    duration_ms: Optional[int] = Field(default=None, ge=0)
    position: Optional[int] = None  # assigned by storage

    @property
    def is_open(self) -> bool:
        return self.exit_code is None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class CaptureResult(BaseModel):
    """Answer to a pre-execution hook."""
    accepted: bool
    command_id: Optional[str] = None


# ===== PATTERN MODELS =====

class Pattern(BaseModel):
    """Frequent semantic-type sequence or hour/type co-occurrence."""
    pattern_type: PatternType
    key: Tuple[str, ...]
    frequency: int = Field(ge=1)
    last_seen: datetime

    @property
    def label(self) -> str:
        if self.pattern_type == PatternType.TIME_SLOT:
            hour, semantic_type = self.key
            return f"{hour}:00 {semantic_type}"
        return " -> ".join(self.key)


# ===== WORKFLOW MODELS =====

class Workflow(BaseModel):
    """Named, ordered literal command sequence with usage statistics."""
    name: str = Field(pattern=WORKFLOW_NAME_PATTERN)
    description: str = ""
    commands: List[str] = Field(min_length=1)
    times_used: int = Field(default=0, ge=0)
    success_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StepResult(BaseModel):
    """Outcome of one workflow command."""
    position: int
    command: str
    exit_code: int
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class WorkflowRunResult(BaseModel):
    """Result from running a workflow."""
    workflow_name: str
    results: List[StepResult] = Field(default_factory=list)
    overall_success: bool
    times_used: int = 0
    success_rate: float = 0.0


# ===== REPORTING MODELS =====

class CommandStatistics(BaseModel):
    """Aggregate view over the command log."""
    total_commands: int = 0
    successful_commands: int = 0
    failed_commands: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    error_rate_by_type: Dict[str, float] = Field(default_factory=dict)
    average_duration_ms: float = 0.0
    errors_recorded: int = 0
    errors_solved: int = 0
