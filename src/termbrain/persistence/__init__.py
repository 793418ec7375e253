"""
Termbrain Persistence Layer.

Provides the storage abstraction the capture pipeline codes against:
- SQLite (default, single local user)

Quick Start:
    from termbrain.persistence import get_database

    # Path from environment / config file
    db = await get_database()

    # Or explicit path
    db = await get_database(db_path=":memory:")

Environment Variables:
    TERMBRAIN_HOME: data directory
    TERMBRAIN_DB_PATH: SQLite file path

Default Data Location:
    ~/.termbrain/data/termbrain.db (SQLite)
"""

from .base import (
    DEFAULT_DATA_DIR,
    DEFAULT_SQLITE_PATH,
    BaseDatabaseBackend,
    DatabaseBackend,
    rank_patterns,
)
from .export import DataExporter
from .factory import create_database, get_database
from .sqlite import SQLiteBackend

__all__ = [
    # Protocols and base
    "DatabaseBackend",
    "BaseDatabaseBackend",
    "rank_patterns",
    # Backends
    "SQLiteBackend",
    # Factory
    "create_database",
    "get_database",
    # Export
    "DataExporter",
    # Constants
    "DEFAULT_DATA_DIR",
    "DEFAULT_SQLITE_PATH",
]
