"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the deals ingestion worker.

- Provides argparse-based CLI
- Loads configuration from CLI and environment
- Entry point for the application

============================================================
USAGE
============================================================
python -m orchestrator.cli run --once
python -m orchestrator.cli run
python -m orchestrator.cli enqueue --sources slickdeals_rss dealnews_rss
python -m orchestrator.cli sources
python -m orchestrator.cli status

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from core.exceptions import ConfigurationError
from data_ingestion.config import IngestionConfig
from data_ingestion.sources import SourceRegistry
from orchestrator.config import SchedulerConfig
from orchestrator.core import IngestionWorker, setup_logging
from storage.database import Database, DatabaseConfig


logger = logging.getLogger("orchestrator.cli")


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="deals-ingest",
        description="Deals ingestion worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  run       - Process queued jobs (--once: enqueue, drain and exit)
  enqueue   - Add one job per source to the queue
  sources   - List configured sources
  status    - Show job counts per status

Examples:
  %(prog)s run --once                         # One full pass over enabled sources
  %(prog)s enqueue --sources slickdeals_rss   # Queue a single source
  %(prog)s --log-format json run              # Long-running worker, JSON logs
        """
    )

    # --------------------------------------------------------
    # Global Options
    # --------------------------------------------------------
    parser.add_argument(
        "--sources-file",
        type=str,
        default=None,
        metavar="PATH",
        help="JSON source catalog (default: DEALS_SOURCES_FILE or built-in catalog)",
    )

    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        metavar="URL",
        help="SQLAlchemy database URL (default: DATABASE_URL_SYNC / DATABASE_URL)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )

    parser.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default="text",
        help="Log output format (default: text)",
    )

    # --------------------------------------------------------
    # Commands
    # --------------------------------------------------------
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Process queued jobs")
    run_parser.add_argument(
        "--once",
        action="store_true",
        help="Enqueue sources, run until the queue is drained and exit",
    )
    run_parser.add_argument(
        "--sources",
        nargs="+",
        metavar="KEY",
        default=None,
        help="Source keys to enqueue (default with --once: all enabled sources)",
    )

    enqueue_parser = subparsers.add_parser("enqueue", help="Add jobs to the queue")
    enqueue_parser.add_argument(
        "--sources",
        nargs="+",
        metavar="KEY",
        default=None,
        help="Source keys to enqueue (default: all enabled sources)",
    )

    subparsers.add_parser("sources", help="List configured sources")
    subparsers.add_parser("status", help="Show job counts per status")

    return parser


# ============================================================
# CONFIGURATION BUILDING
# ============================================================

def load_sources(args: argparse.Namespace, config: IngestionConfig) -> SourceRegistry:
    path = args.sources_file or config.sources_file
    if path:
        return SourceRegistry.from_file(path)
    return SourceRegistry.builtin()


def build_database(args: argparse.Namespace) -> Database:
    db_config = DatabaseConfig.from_env()
    if args.database_url:
        db_config.url = args.database_url
    database = Database(db_config)
    database.create_all()
    return database


# ============================================================
# COMMANDS
# ============================================================

def print_sources(sources: SourceRegistry) -> None:
    print(f"{'KEY':<22} {'TYPE':<5} {'ENABLED':<8} {'PRIORITY':<8} NAME")
    for key in sources.list_sources():
        source = sources.require_source(key)
        print(
            f"{source.key:<22} {source.type.value:<5} {str(source.enabled):<8} "
            f"{source.priority:<8} {source.name}"
        )


async def async_main(args: argparse.Namespace) -> int:
    """
    Async main entry point.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    config = IngestionConfig.from_env()
    sources = load_sources(args, config)

    if args.command == "sources":
        print_sources(sources)
        return 0

    worker = IngestionWorker(
        sources,
        build_database(args),
        config=config,
        scheduler_config=SchedulerConfig.from_env(),
    )

    try:
        if args.command == "status":
            print(json.dumps(worker.health(), indent=2))
            return 0

        if args.command == "enqueue":
            worker.enqueue_sources(args.sources)
            return 0

        worker.validate_sources()
        if args.once:
            worker.enqueue_sources(args.sources)
            metrics = await worker.run_once()
            return 1 if metrics.jobs_failed and not metrics.jobs_completed else 0

        if args.sources:
            worker.enqueue_sources(args.sources)
        await worker.run_forever()
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    finally:
        await worker.close()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level, log_format=args.log_format)

    try:
        return asyncio.run(async_main(args))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
