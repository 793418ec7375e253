"""Exception taxonomy for the capture, learning and workflow pipeline."""


class TermbrainError(Exception):
    """Base class for termbrain errors."""


class ValidationError(TermbrainError, ValueError):
    """Caller supplied data that can never succeed (bad workflow name, no commands)."""


class WorkflowNotFoundError(TermbrainError, LookupError):
    """No workflow is stored under the requested name."""


class PolicyRejection(TermbrainError):
    """Command or directory is denylisted; the command is not recorded."""


class PersistenceError(TermbrainError):
    """Storage is unavailable or rejected a write."""


class StateInconsistency(TermbrainError):
    """Hook events arrived out of order (close without a matching open)."""
