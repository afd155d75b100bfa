#!/usr/bin/env python3
"""
Tournament Engine CLI

Usage:
    python -m esports_backend.cli <command> [options]

Commands:
    plan    Preview the bracket for a roster (no database access)
    sweep   Run one auto-cancel sweep
    stats   Show a tournament's progress

Environment:
    DATABASE_URL    SQLAlchemy async URL
    LOG_LEVEL       DEBUG|INFO|WARNING|ERROR
"""
import sys
import argparse
import logging
from typing import Optional

from esports_backend import __version__
from esports_backend.cli.tournament_commands import TournamentCommand


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="esports",
        description="Institution Esports Tournament CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s plan --game BGMI --players 400 --mode squad
  %(prog)s sweep
  %(prog)s stats --id 42
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # plan
    plan_parser = subparsers.add_parser("plan", help="Preview a bracket")
    plan_parser.add_argument("--game", "-g", required=True, help="Game title, e.g. BGMI or 'Free Fire'")
    plan_parser.add_argument("--players", "-p", type=int, required=True, help="Max players")
    plan_parser.add_argument("--mode", "-m", choices=["solo", "duo", "squad"], default="squad")
    plan_parser.add_argument("--room-capacity", type=int, help="Override teams per room")

    # sweep
    subparsers.add_parser("sweep", help="Cancel completed tournaments past the declaration window")

    # stats
    stats_parser = subparsers.add_parser("stats", help="Tournament progress")
    stats_parser.add_argument("--id", "-i", type=int, required=True, help="Tournament ID")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 1

    setup_logging(parsed.log_level)

    return TournamentCommand(as_json=parsed.json).execute(parsed)


if __name__ == "__main__":
    sys.exit(main())
