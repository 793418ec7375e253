"""
Factory for the storage backend.

Usage:
    # Configuration from env/file
    db = await get_database()

    # Explicit path (":memory:" for tests)
    db = create_database(db_path="/path/to/termbrain.db")
    await db.initialize()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .base import DatabaseBackend
from .sqlite import SQLiteBackend

if TYPE_CHECKING:
    from ..config import TermbrainConfig


def create_database(
    config: TermbrainConfig | None = None,
    db_path: str | None = None,
    **kwargs: Any,
) -> DatabaseBackend:
    """Create the database backend (not yet initialized).

    Args:
        config: TermbrainConfig instance. If None, loads from env/file.
        db_path: Override the configured SQLite path.
        **kwargs: Additional arguments passed to backend constructor.
    """
    if db_path is None:
        if config is None:
            from ..config import TermbrainConfig

            config = TermbrainConfig.load()
        db_path = str(config.database_path)

    return SQLiteBackend(db_path=db_path, **kwargs)


async def get_database(
    config: TermbrainConfig | None = None,
    db_path: str | None = None,
    **kwargs: Any,
) -> DatabaseBackend:
    """Create and initialize database backend in one call."""
    db = create_database(config=config, db_path=db_path, **kwargs)
    await db.initialize()
    return db
