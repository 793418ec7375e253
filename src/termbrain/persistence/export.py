"""
JSON export of terminal history for backups.

Sensitive commands never leave the database: they are skipped entirely, and
error solutions only ever carry the redaction placeholder for them.

Usage:
    exporter = DataExporter(db)
    summary = await exporter.export_to_file(Path("termbrain-export.json"))
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from .base import DatabaseBackend

logger = logging.getLogger(__name__)

EXPORT_LIMIT = 100000


class DataExporter:
    """Collects every exportable record from a backend."""

    def __init__(self, db: DatabaseBackend) -> None:
        self.db = db
        self.stats: dict[str, int] = {
            "sessions": 0,
            "commands": 0,
            "error_solutions": 0,
            "patterns": 0,
            "workflows": 0,
        }

    async def export_all(self) -> dict[str, Any]:
        """Build the export document; sensitive commands are excluded."""
        logger.info("Starting export...")

        sessions = await self.db.query_sessions(limit=EXPORT_LIMIT)
        commands = [c for c in await self.db.scan_commands() if not c.sensitive]
        solutions = await self.db.query_error_solutions(limit=EXPORT_LIMIT)
        patterns = await self.db.query_patterns()
        workflows = await self.db.list_workflows()

        self.stats.update(
            sessions=len(sessions),
            commands=len(commands),
            error_solutions=len(solutions),
            patterns=len(patterns),
            workflows=len(workflows),
        )

        data = {
            "exported_at": datetime.now().astimezone().isoformat(),
            "sessions": [s.model_dump(mode="json") for s in sessions],
            "commands": [c.model_dump(mode="json", exclude={"position"}) for c in commands],
            "error_solutions": [s.model_dump(mode="json") for s in solutions],
            "patterns": [
                {**p.model_dump(mode="json"), "label": p.label} for p in patterns
            ],
            "workflows": [w.model_dump(mode="json") for w in workflows],
        }

        logger.info(f"Exported {sum(self.stats.values())} records")
        return data

    async def export_to_file(self, output_path: Path | None = None) -> dict[str, Any]:
        """Write the export document to ``output_path`` and summarize it."""
        data = await self.export_all()

        output_path = output_path or Path(
            f"termbrain-export-{datetime.now().strftime('%Y%m%d-%H%M%S')}.json"
        )
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w") as f:
            json.dump(data, f, indent=2, default=str)

        return {
            "status": "success",
            "output_path": str(output_path),
            "records_exported": dict(self.stats),
            "file_size_bytes": output_path.stat().st_size,
        }
