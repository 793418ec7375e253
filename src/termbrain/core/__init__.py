"""
Core terminal history pipeline.

This module contains the capture, classification, error linking, pattern
mining and workflow logic, wired together by ``TermbrainEngine``.
"""

from .classifier import classify, complexity, is_sensitive
from .engine import TermbrainEngine
from .errors import (
    PersistenceError,
    PolicyRejection,
    StateInconsistency,
    TermbrainError,
    ValidationError,
    WorkflowNotFoundError,
)

__all__ = [
    "TermbrainEngine",
    "classify",
    "complexity",
    "is_sensitive",
    "TermbrainError",
    "ValidationError",
    "WorkflowNotFoundError",
    "PolicyRejection",
    "PersistenceError",
    "StateInconsistency",
]
