"""
Shared pytest fixtures for termbrain tests.

This module provides common fixtures used across the test modules:
- Temporary paths and a clean environment
- SQLite backends (file and in-memory)
- A wired engine with a scripted workflow runner
"""

import os
import sys
import tempfile
from pathlib import Path
from typing import AsyncGenerator, Dict, Generator, List

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


# ============================================================================
# Path Fixtures
# ============================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sqlite_db_path(temp_dir: Path) -> Path:
    """Create a temporary SQLite database path."""
    return temp_dir / "data" / "termbrain.db"


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
async def sqlite_backend(sqlite_db_path: Path) -> AsyncGenerator:
    """Create a temporary SQLite backend for testing."""
    from termbrain.persistence.sqlite import SQLiteBackend

    backend = SQLiteBackend(str(sqlite_db_path))
    await backend.initialize()
    yield backend
    await backend.close()


@pytest.fixture
async def memory_backend() -> AsyncGenerator:
    """In-memory SQLite backend."""
    from termbrain.persistence.sqlite import SQLiteBackend

    backend = SQLiteBackend(":memory:")
    await backend.initialize()
    yield backend
    await backend.close()


@pytest.fixture
async def dispatcher() -> AsyncGenerator:
    """Persistence dispatcher with no retry delay."""
    from termbrain.core.dispatcher import PersistenceDispatcher

    dispatcher = PersistenceDispatcher(retry_delay=0)
    yield dispatcher
    await dispatcher.close()


# ============================================================================
# Engine Fixtures
# ============================================================================

class ScriptedRunner:
    """Workflow runner returning preset exit codes per command text."""

    def __init__(self, exit_codes: Dict[str, int] | None = None) -> None:
        self.exit_codes = exit_codes or {}
        self.calls: List[str] = []

    async def __call__(self, command: str) -> int:
        self.calls.append(command)
        return self.exit_codes.get(command, 0)


@pytest.fixture
def runner() -> ScriptedRunner:
    return ScriptedRunner()


@pytest.fixture
def test_config(temp_dir: Path):
    """Configuration rooted in the temporary directory."""
    from termbrain.config import TermbrainConfig

    return TermbrainConfig(home=temp_dir, retry_delay_seconds=0)


@pytest.fixture
async def engine(sqlite_backend, test_config, runner) -> AsyncGenerator:
    """Engine over a temporary SQLite database."""
    from termbrain.core.engine import TermbrainEngine

    engine = TermbrainEngine(sqlite_backend, config=test_config, runner=runner)
    yield engine
    await engine.dispatcher.close()


# ============================================================================
# Environment Fixtures
# ============================================================================

@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Provide a clean environment without termbrain env vars."""
    original_env = os.environ.copy()

    # Remove any termbrain related env vars
    keys_to_remove = [k for k in os.environ if k.startswith("TERMBRAIN_")]
    for key in keys_to_remove:
        del os.environ[key]

    yield

    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)
