"""
Configuration for termbrain.

Supports configuration via:
- Environment variables
- Configuration file ($TERMBRAIN_HOME/config.json)
- Constructor arguments

Environment Variables:
    TERMBRAIN_HOME: data directory (default: ~/.termbrain)
    TERMBRAIN_DB_PATH: SQLite file path (default: <home>/data/termbrain.db)
    TERMBRAIN_MIN_FREQUENCY: sequence pattern threshold (default: 3)
    TERMBRAIN_TIME_SLOT_MIN_FREQUENCY: time-slot pattern threshold (default: 5)
    TERMBRAIN_TIME_WINDOW_DAYS: trailing window for time-slot mining (default: 30)
    TERMBRAIN_RETRY_DELAY: seconds before retrying failed persistence work (default: 0.5)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# Default global location for termbrain data
DEFAULT_DATA_DIR = Path.home() / ".termbrain"

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"

DEFAULT_DESTRUCTIVE_PATTERNS = ("rm -rf /", "dd if=", ":(){ :|:& };:", "mkfs")
DEFAULT_SENSITIVE_DIRECTORIES = ("/.ssh", "/.gnupg", "/private/")

# env var -> (field, parser)
_NUMERIC_ENV: dict[str, tuple[str, type]] = {
    "TERMBRAIN_MIN_FREQUENCY": ("min_frequency", int),
    "TERMBRAIN_TIME_SLOT_MIN_FREQUENCY": ("time_slot_min_frequency", int),
    "TERMBRAIN_TIME_WINDOW_DAYS": ("time_window_days", int),
    "TERMBRAIN_RETRY_DELAY": ("retry_delay_seconds", float),
}


def default_home() -> Path:
    if home := os.environ.get("TERMBRAIN_HOME"):
        return Path(home).expanduser()
    return DEFAULT_DATA_DIR


@dataclass
class TermbrainConfig:
    """Configuration for storage, mining and capture policy."""

    home: Path = field(default_factory=default_home)

    # Storage
    sqlite_path: Path | None = None

    # Pattern mining
    min_frequency: int = 3
    time_slot_min_frequency: int = 5
    time_window_days: int = 30
    time_slot_top_k: int = 10

    # Background persistence
    retry_delay_seconds: float = 0.5

    # Capture policy
    destructive_patterns: list[str] = field(
        default_factory=lambda: list(DEFAULT_DESTRUCTIVE_PATTERNS)
    )
    sensitive_directories: list[str] = field(
        default_factory=lambda: list(DEFAULT_SENSITIVE_DIRECTORIES)
    )

    @property
    def database_path(self) -> Path:
        """SQLite file actually used: explicit path or <home>/data/termbrain.db."""
        if self.sqlite_path is not None:
            return self.sqlite_path
        return self.home / "data" / "termbrain.db"

    @property
    def config_path(self) -> Path:
        return self.home / CONFIG_FILENAME

    @classmethod
    def from_env(cls) -> TermbrainConfig:
        """Create configuration from environment variables."""
        config = cls()

        if sqlite_path := os.environ.get("TERMBRAIN_DB_PATH"):
            config.sqlite_path = Path(sqlite_path).expanduser()

        for env_name, (attribute, parse) in _NUMERIC_ENV.items():
            raw = os.environ.get(env_name)
            if raw is None:
                continue
            try:
                setattr(config, attribute, parse(raw))
            except ValueError:
                logger.warning(f"Invalid value for {env_name}: {raw!r}, keeping default")

        return config

    @classmethod
    def from_file(cls, config_path: Path | None = None) -> TermbrainConfig:
        """Load configuration from JSON file."""
        config = cls()
        if config_path is None:
            config_path = config.config_path

        if not config_path.exists():
            logger.debug(f"Config file not found: {config_path}")
            return config

        try:
            with open(config_path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load config from {config_path}: {e}")
            return config

        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file {config_path}: expected a JSON object")
            return config

        if sqlite_path := data.get("sqlite_path"):
            config.sqlite_path = Path(sqlite_path).expanduser()

        for attribute, parse in _NUMERIC_ENV.values():
            if attribute in data:
                try:
                    setattr(config, attribute, parse(data[attribute]))
                except (TypeError, ValueError):
                    logger.warning(f"Invalid {attribute} in {config_path}: {data[attribute]!r}")
        if isinstance(data.get("time_slot_top_k"), int):
            config.time_slot_top_k = data["time_slot_top_k"]

        if patterns := data.get("destructive_patterns"):
            config.destructive_patterns = [str(p) for p in patterns]
        if directories := data.get("sensitive_directories"):
            config.sensitive_directories = [str(d) for d in directories]

        return config

    @classmethod
    def load(cls) -> TermbrainConfig:
        """Load configuration with precedence: env > file > defaults."""
        # Start with file config
        config = cls.from_file()

        # Override with environment variables
        env_config = cls.from_env()

        # Merge (env takes precedence)
        if os.environ.get("TERMBRAIN_DB_PATH"):
            config.sqlite_path = env_config.sqlite_path
        for env_name, (attribute, _) in _NUMERIC_ENV.items():
            if os.environ.get(env_name) is not None:
                setattr(config, attribute, getattr(env_config, attribute))

        return config

    def to_dict(self) -> dict[str, Any]:
        return {
            "sqlite_path": str(self.sqlite_path) if self.sqlite_path else None,
            "min_frequency": self.min_frequency,
            "time_slot_min_frequency": self.time_slot_min_frequency,
            "time_window_days": self.time_window_days,
            "time_slot_top_k": self.time_slot_top_k,
            "retry_delay_seconds": self.retry_delay_seconds,
            "destructive_patterns": list(self.destructive_patterns),
            "sensitive_directories": list(self.sensitive_directories),
        }

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to JSON file."""
        if config_path is None:
            config_path = self.config_path
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Configuration saved to {config_path}")
