"""
Termbrain Models - Data structures for terminal history intelligence.

This module contains the Pydantic models used to represent sessions, captured
commands, error windows, mined patterns and workflows.
"""

from .history_models import (
    # Capture Models
    Session,
    PendingCommand,
    Command,
    CaptureResult,
    ErrorWindow,
    ErrorSolution,

    # Pattern Models
    Pattern,

    # Workflow Models
    Workflow,
    StepResult,
    WorkflowRunResult,

    # Reporting Models
    CommandStatistics,

    # Enums
    SemanticType,
    SessionStatus,
    PatternType,

    # Constants
    WORKFLOW_NAME_PATTERN,
    SENSITIVE_PLACEHOLDER,
)

__all__ = [
    # Capture Models
    "Session",
    "PendingCommand",
    "Command",
    "CaptureResult",
    "ErrorWindow",
    "ErrorSolution",

    # Pattern Models
    "Pattern",

    # Workflow Models
    "Workflow",
    "StepResult",
    "WorkflowRunResult",

    # Reporting Models
    "CommandStatistics",

    # Enums
    "SemanticType",
    "SessionStatus",
    "PatternType",

    # Constants
    "WORKFLOW_NAME_PATTERN",
    "SENSITIVE_PLACEHOLDER",
]
