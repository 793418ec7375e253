"""
Termbrain - terminal history intelligence.

Captures shell commands, classifies them, links failures to the commands that
fixed them, mines recurring patterns and runs named workflows.
"""

__version__ = "0.1.0"

from .config import TermbrainConfig
from .core.engine import TermbrainEngine

__all__ = ["TermbrainConfig", "TermbrainEngine", "__version__"]
