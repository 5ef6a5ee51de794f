#!/usr/bin/env python3
"""
Database Initialization CLI
===========================
Drives the database initializer.

Usage:
    db-init                      Full initialization
    db-init --quick              Connection, indexes and migrations only
    db-init --reset              Wipe and rebuild (refused in production)
    db-init --status             Show database status
    db-init --maintenance        Index audit, backup retention, health check

Exit code 0 on success, 1 on any failure.
"""

import argparse
import asyncio
import sys
from typing import Optional, List, Dict, Any

from cache.redis_cache import CacheManager
from config.settings import ConfigValidator, Settings, load_settings
from database.errors import DatabaseConnectionError, DatabaseLifecycleError
from database.initializer import STEPS, DatabaseInitializer
from utils.helpers import format_duration
from utils.logger import get_logger, setup_logging

from .console import (
    print_checklist,
    print_error,
    print_header,
    print_info,
    print_success,
    print_warning
)

logger = get_logger(__name__)

EPILOG = """
Examples:
  db-init                    # Full initialization
  db-init --quick            # Quick setup
  db-init --reset            # Reset database
  db-init --status           # Check status
  db-init --maintenance      # Run maintenance
"""


class CommandParser(argparse.ArgumentParser):
    """ArgumentParser that exits with 1 on usage errors."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        print_error(message)
        self.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = CommandParser(
        prog="db-init",
        description="Database Initialization CLI",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--quick",
        action="store_true",
        help="Run quick setup (connection, indexes, migrations only)"
    )
    mode.add_argument(
        "--reset",
        action="store_true",
        help="Reset database (not allowed in production)"
    )
    mode.add_argument("--status", action="store_true", help="Show database status")
    mode.add_argument("--maintenance", action="store_true", help="Run maintenance operations")

    parser.add_argument(
        "--continue-on-error",
        action="store_true",
        help="Continue initialization even if some steps fail"
    )
    parser.add_argument("--no-seeds", action="store_true", help="Skip running database seeds")
    parser.add_argument(
        "--no-backup",
        action="store_true",
        help="Do not create a backup before --reset"
    )
    parser.add_argument("--env", help="Environment override (development, test, staging, production)")

    return parser


# ==================== COMMANDS ====================

async def show_status(initializer: DatabaseInitializer) -> int:
    print_info("Checking database status...")

    try:
        await initializer.connection.connect()
    except DatabaseConnectionError as e:
        print_warning(f"Database unreachable: {e}")

    status = await initializer.get_status()
    migrations = status["migrations"]
    backups = status["backups"]
    health = status["database"].get("health") or {}

    print("\n📋 Database Status:")
    print(f"   Environment: {status['environment']}")
    print(f"   Connected: {'✅' if status['database']['connected'] else '❌'}")

    if "error" in migrations:
        print(f"   Migrations: ❌ {migrations['error']}")
    else:
        print(f"   Current Migration: {migrations.get('current_version')}")
        print(f"   Pending Migrations: {migrations.get('pending_count')}")

    indexes = status["indexes"]
    if "error" in indexes:
        print(f"   Indexes: ❌ {indexes['error']}")
    else:
        print(f"   Collections with Indexes: {sum(1 for entry in indexes.values() if entry.get('exists'))}")

    print(f"   Available Backups: {len(backups) if isinstance(backups, list) else 'Error'}")

    if health.get("connected"):
        print(f"   Database: {health.get('database')}")
        print(f"   Collections: {health.get('collections')}")
        print(f"   Latency: {health.get('latency_ms')} ms")

    if "cache" in status:
        print(f"   Cache: {'✅' if status['cache'].get('connected') else '❌'}")

    return 0 if status["database"]["connected"] else 1


async def run_maintenance(initializer: DatabaseInitializer) -> int:
    print_info("Running database maintenance...")

    await initializer.connection.connect()
    results = await initializer.run_maintenance()

    print_checklist("Maintenance Results", [
        ("Index Optimization", results["index_optimization"]),
        ("Backup Cleanup", results["backup_cleanup"]),
        ("Health Check", results["health_check"]),
    ])

    for collection, names in results["unused_indexes"].items():
        print_warning(f"Unused indexes in {collection}: {', '.join(names)}")
    for name in results["deleted_backups"]:
        print(f"   🗑️ Deleted old backup: {name}")

    return 0 if results["health_check"] else 1


async def reset_database(initializer: DatabaseInitializer, args: argparse.Namespace) -> int:
    print_warning("Database Reset Mode")
    print_warning("This will delete all data in the database!")

    await initializer.connection.connect()
    done = await initializer.reset_database(
        create_backup=not args.no_backup,
        reseed=not args.no_seeds
    )

    if not done:
        print_error("Database reset failed")
        return 1

    print_success("Database reset completed")
    return 0


async def quick_setup(initializer: DatabaseInitializer) -> int:
    print_info("Quick Setup Mode")
    await initializer.quick_setup()
    print_success("Quick setup completed")
    return 0


async def initialize(initializer: DatabaseInitializer, args: argparse.Namespace) -> int:
    print_info("Running full database initialization...")

    results = await initializer.initialize(
        continue_on_error=args.continue_on_error,
        run_seeds=not args.no_seeds
    )
    print_summary(results)

    if not all(results[step] for step in STEPS):
        print_warning("Database initialization finished with errors")
        return 1

    print_success("Database initialization completed!")
    return 0


def print_summary(results: Dict[str, Any]) -> None:
    print_checklist("Initialization Summary", [
        ("Connection", results["connection"]),
        ("Migrations", results["migrations"]),
        ("Indexes", results["indexes"]),
        ("Backup System", results["backup"]),
        ("Seeds", results["seeds"]),
    ])

    durations = results.get("durations", {})
    if durations:
        print("\n⏱️  Timing: " + ", ".join(f"{step} {format_duration(seconds)}" for step, seconds in durations.items()))

    errors = results.get("errors", [])
    if errors:
        print(f"\n⚠️  Errors ({len(errors)}):")
        for error in errors:
            print(f"   - {error['step']}: {error['error']}")


# ==================== MAIN ====================

def configure(settings: Settings) -> None:
    setup_logging(
        level=settings.logging.level,
        log_file=settings.logging.log_path,
        use_colors=settings.logging.use_colors,
        use_json=settings.logging.use_json,
        max_bytes=settings.logging.max_bytes,
        backup_count=settings.logging.backup_count
    )


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        int: Exit code (0 = success, 1 = error)
    """
    args = build_parser().parse_args(argv)

    settings = load_settings(args.env)
    configure(settings)

    print_header("🚀 Wayra Database Initialization CLI")

    validator = ConfigValidator(settings)
    if not validator.validate_all():
        for error in validator.errors:
            print_error(error)
        return 1

    if args.reset and settings.is_production:
        print_error("Database reset is not allowed in production")
        return 1

    cache = CacheManager(settings.redis) if settings.redis.enabled else None
    initializer = DatabaseInitializer(settings, cache=cache)

    try:
        if args.status:
            return await show_status(initializer)
        if args.maintenance:
            return await run_maintenance(initializer)
        if args.reset:
            return await reset_database(initializer, args)
        if args.quick:
            return await quick_setup(initializer)
        return await initialize(initializer, args)

    except DatabaseLifecycleError as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        print_error(f"Database initialization failed: {e}")
        return 1
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        print_error(f"Unexpected error: {e}")
        return 1
    finally:
        await initializer.shutdown()


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\n\n🔄 Interrupted, shutting down")
        sys.exit(1)


if __name__ == "__main__":
    run()
