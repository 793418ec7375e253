#!/usr/bin/env python3
"""
Command line front end for termbrain.

Usage:
    termbrain workflow create deploy -d "Ship it" "npm test" "git push"
    termbrain workflow run deploy
    termbrain patterns mine
    termbrain workflow from-pattern test-then-push testing version_control
    termbrain search docker
    termbrain solutions "git push"
    termbrain export --output backup.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

from .config import TermbrainConfig
from .core.engine import TermbrainEngine
from .core.errors import TermbrainError, WorkflowNotFoundError
from .models import PatternType

logger = logging.getLogger(__name__)


def setup_logging(level: str = "WARNING") -> None:
    """Configure logging for the CLI."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="termbrain",
        description="Terminal history intelligence: workflows, patterns and error solutions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  TERMBRAIN_HOME: data directory (default: ~/.termbrain)
  TERMBRAIN_DB_PATH: SQLite database path (default: <home>/data/termbrain.db)
        """,
    )
    parser.add_argument("--db", help="SQLite database path (overrides configuration)")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # workflow
    workflow_parser = subparsers.add_parser("workflow", help="Manage workflows")
    workflow_sub = workflow_parser.add_subparsers(dest="action", help="Workflow action")

    create_parser = workflow_sub.add_parser("create", help="Create or replace a workflow")
    create_parser.add_argument("name")
    create_parser.add_argument("commands", nargs="+", help="Commands, one argument each")
    create_parser.add_argument("-d", "--description", default="")

    workflow_sub.add_parser("list", help="List workflows")

    show_parser = workflow_sub.add_parser("show", help="Show one workflow")
    show_parser.add_argument("name")

    run_parser = workflow_sub.add_parser("run", help="Run a workflow, stopping at the first failure")
    run_parser.add_argument("name")

    delete_parser = workflow_sub.add_parser("delete", help="Delete a workflow")
    delete_parser.add_argument("name")

    from_pattern_parser = workflow_sub.add_parser(
        "from-pattern", help="Create a workflow from a mined sequence pattern"
    )
    from_pattern_parser.add_argument("name")
    from_pattern_parser.add_argument(
        "types", nargs="+", help="Semantic types of the pattern, in order"
    )
    from_pattern_parser.add_argument("-d", "--description", default="")

    # patterns
    patterns_parser = subparsers.add_parser("patterns", help="Mine and list patterns")
    patterns_sub = patterns_parser.add_subparsers(dest="action", help="Patterns action")

    mine_parser = patterns_sub.add_parser("mine", help="Mine patterns from the command log")
    mine_parser.add_argument("--force", action="store_true", help="Mine even if nothing changed")

    list_parser = patterns_sub.add_parser("list", help="List stored patterns")
    list_parser.add_argument("--type", choices=[t.value for t in PatternType])
    list_parser.add_argument("--limit", type=int, default=20)

    # search
    search_parser = subparsers.add_parser("search", help="Search recorded commands")
    search_parser.add_argument("query")
    search_parser.add_argument("--limit", type=int, default=20)

    # stats
    subparsers.add_parser("stats", help="Show command statistics")

    # solutions
    solutions_parser = subparsers.add_parser("solutions", help="Show recorded error solutions")
    solutions_parser.add_argument(
        "error_text", nargs="?", help="Only solutions for commands resembling this text"
    )
    solutions_parser.add_argument("--limit", type=int, default=10)

    # export
    export_parser = subparsers.add_parser("export", help="Export history to JSON")
    export_parser.add_argument("--output", type=Path, help="Output JSON file path")

    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    return build_parser().parse_args(argv)


def _dump(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _workflow(engine: TermbrainEngine, args: argparse.Namespace) -> int:
    if args.action == "create":
        workflow = await engine.create_workflow(args.name, args.commands, args.description)
        _dump(workflow.model_dump(mode="json"))
    elif args.action == "list":
        _dump([w.model_dump(mode="json") for w in await engine.list_workflows()])
    elif args.action == "show":
        workflow = await engine.get_workflow(args.name)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow not found: {args.name}")
        _dump(workflow.model_dump(mode="json"))
    elif args.action == "run":
        result = await engine.run_workflow(args.name)
        _dump(result.model_dump(mode="json"))
        return 0 if result.overall_success else 1
    elif args.action == "delete":
        if not await engine.delete_workflow(args.name):
            raise WorkflowNotFoundError(f"Workflow not found: {args.name}")
        _dump({"deleted": args.name})
    elif args.action == "from-pattern":
        pattern = await engine.find_pattern(args.types)
        if pattern is None:
            print(
                f"No mined pattern {' -> '.join(args.types)}; run 'termbrain patterns mine' first",
                file=sys.stderr,
            )
            return 1
        workflow = await engine.workflow_from_pattern(pattern, args.name, args.description)
        _dump(workflow.model_dump(mode="json"))
    else:
        return 2
    return 0


async def _patterns(engine: TermbrainEngine, args: argparse.Namespace) -> int:
    if args.action == "mine":
        patterns = await engine.mine_patterns(force=args.force)
    elif args.action == "list":
        pattern_type = PatternType(args.type) if args.type else None
        patterns = await engine.patterns(pattern_type=pattern_type, limit=args.limit)
    else:
        return 2
    _dump([{**p.model_dump(mode="json"), "label": p.label} for p in patterns])
    return 0


async def run(args: argparse.Namespace) -> int:
    """Execute one parsed command against the configured database."""
    config = TermbrainConfig.load()
    engine = await TermbrainEngine.create(config=config, db_path=args.db)

    async with engine:
        if args.command == "workflow":
            return await _workflow(engine, args)
        if args.command == "patterns":
            return await _patterns(engine, args)
        if args.command == "search":
            _dump([c.model_dump(mode="json") for c in await engine.search(args.query, args.limit)])
        elif args.command == "stats":
            _dump((await engine.statistics()).model_dump(mode="json"))
        elif args.command == "solutions":
            if args.error_text:
                solutions = await engine.known_solutions(args.error_text, limit=args.limit)
            else:
                solutions = await engine.error_solutions(solved=True, limit=args.limit)
            _dump([s.model_dump(mode="json") for s in solutions])
        elif args.command == "export":
            _dump(await engine.export(args.output))
        else:
            return 2
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the termbrain CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    if args.command is None or (
        args.command in ("workflow", "patterns") and getattr(args, "action", None) is None
    ):
        parser.print_help()
        return 2

    try:
        return asyncio.run(run(args))
    except TermbrainError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
