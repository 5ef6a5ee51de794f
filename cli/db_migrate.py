#!/usr/bin/env python3
"""
Database Migration CLI
======================
Drives the migration manager.

Usage:
    db-migrate status                Show migration status
    db-migrate up                    Run pending migrations
    db-migrate down --version=N      Roll back to version N
    db-migrate create --name=NAME    Create a new migration file
"""

import argparse
import asyncio
import sys
from typing import Optional, List

from config.settings import Settings, load_settings
from database.connection import ConnectionManager
from database.errors import DatabaseLifecycleError
from database.migration_manager import MigrationManager
from utils.logger import get_logger

from .console import print_error, print_header, print_info, print_success, print_warning
from .db_init import CommandParser, configure

logger = get_logger(__name__)

EPILOG = """
Examples:
  db-migrate status                          # Check migration status
  db-migrate up                              # Run pending migrations
  db-migrate down --version=1                # Roll back to version 1
  db-migrate create --name="add user roles"  # Create new migration
"""


def build_parser() -> argparse.ArgumentParser:
    parser = CommandParser(
        prog="db-migrate",
        description="Database Migration CLI",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--env", help="Environment override")

    commands = parser.add_subparsers(dest="command", parser_class=CommandParser)

    commands.add_parser("status", help="Show migration status")
    commands.add_parser("up", help="Run pending migrations")

    down = commands.add_parser("down", help="Roll back to a version")
    down.add_argument("--version", type=int, help="Target version for rollback")

    create = commands.add_parser("create", help="Create new migration file")
    create.add_argument("--name", help="Name for new migration")

    commands.add_parser("help", help="Show this help message")

    return parser


# ==================== COMMANDS ====================

async def show_status(manager: MigrationManager) -> int:
    print_info("Checking migration status...")
    status = await manager.get_migration_status()

    print("\n📋 Migration Status:")
    print(f"   Current Version: {status['current_version']}")
    print(f"   Total Migrations: {status['total_migrations']}")
    print(f"   Applied: {status['applied_count']}")
    print(f"   Pending: {status['pending_count']}")

    if status["applied"]:
        print("\n✅ Applied Migrations:")
        for migration in status["applied"]:
            applied_at = migration["applied_at"]
            when = applied_at.isoformat() if hasattr(applied_at, "isoformat") else applied_at
            print(f"   {migration['version']}: {migration['name']} ({when})")

    if status["pending"]:
        print("\n⏳ Pending Migrations:")
        for migration in status["pending"]:
            print(f"   {migration['version']}: {migration['name']}")
    else:
        print_success("All migrations are up to date")

    if status["drifted"]:
        print_warning(f"Migration files changed since they were applied: {status['drifted']}")
    if status["missing"]:
        print_warning(f"Migrations below the current version were never applied: {status['missing']}")

    return 0


async def run_up(manager: MigrationManager) -> int:
    print_info("Running pending migrations...")
    await manager.run_migrations()
    print_success("All migrations completed successfully")
    return 0


async def run_down(manager: MigrationManager, version: int) -> int:
    print_info(f"Rolling back to version {version}...")
    await manager.rollback_to_version(version)

    rolled_back = manager.last_rollback["rolled_back"]
    skipped = manager.last_rollback["skipped"]

    if rolled_back:
        print(f"   ⬇️ Rolled back: {', '.join(str(v) for v in rolled_back)}")
    if skipped:
        print_warning(f"Skipped (no down()): {', '.join(str(v) for v in skipped)}")

    print_success(f"Rollback to version {version} completed")
    return 0


async def create(manager: MigrationManager, name: str) -> int:
    print_info(f"Creating new migration: {name}...")
    migration = await manager.create_migration(name)

    print_success("Migration file created successfully")
    print(f"   Version: {migration['version']}")
    print(f"   File: {migration['filename']}")
    print(f"   Path: {migration['path']}")
    print("\nEdit the migration file to add your migration logic.")
    return 0


# ==================== MAIN ====================

async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        int: Exit code (0 = success, 1 = error)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command in (None, "help"):
        parser.print_help()
        return 0

    # Validate arguments before touching the database
    if args.command == "down" and args.version is None:
        print_error("Target version is required for rollback")
        print("Usage: db-migrate down --version=N")
        return 1

    if args.command == "create" and not (args.name and args.name.strip()):
        print_error("Migration name is required")
        print('Usage: db-migrate create --name="migration name"')
        return 1

    settings: Settings = load_settings(args.env)
    configure(settings)

    print_header("🔄 Wayra Database Migration CLI")

    connection = ConnectionManager(settings.mongodb)
    manager = MigrationManager(connection, settings.migrations)

    try:
        if args.command == "create":
            return await create(manager, args.name)

        await connection.connect()

        if args.command == "status":
            return await show_status(manager)
        if args.command == "up":
            return await run_up(manager)
        return await run_down(manager, args.version)

    except (DatabaseLifecycleError, ValueError, FileExistsError) as e:
        logger.error(f"Migration operation failed: {e}", exc_info=True)
        print_error(f"Migration operation failed: {e}")
        return 1
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        print_error(f"Unexpected error: {e}")
        return 1
    finally:
        await connection.graceful_shutdown()


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\n\n🔄 Interrupted, shutting down")
        sys.exit(1)


if __name__ == "__main__":
    run()
