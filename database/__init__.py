"""
Database Package
================
MongoDB lifecycle management: connection, migrations, indexes, seeds
and backups, plus the initializer that composes them.

Components:
    - ConnectionManager: Connection state machine, retry and health checks
    - MigrationManager: Versioned schema migrations
    - IndexManager: Declarative index table and diagnostics
    - SeedManager: Environment-scoped fixture data
    - BackupManager: Dump/restore and collection export/import
    - DatabaseInitializer: Ordered bring-up, status and maintenance

Features:
    ✅ Async MongoDB operations (Motor)
    ✅ Automatic reconnection
    ✅ Idempotent index creation
    ✅ Production guards on destructive operations
"""

from .errors import (
    DatabaseLifecycleError,
    DatabaseConnectionError,
    MigrationError,
    IndexConflictError,
    SeedError,
    BackupToolError,
    BackupNotFoundError,
    CacheUnavailable,
    ProductionGuardError
)
from .models import (
    ConnectionState,
    MigrationRecord,
    IndexDefinition,
    CollectionInfo,
    BackupMetadata
)
from .registry import Migration, Seed, discover_migrations, discover_seeds
from .connection import ConnectionManager
from .migration_manager import MigrationManager
from .index_manager import IndexManager, INDEX_DEFINITIONS
from .seed_manager import SeedManager
from .backup_manager import BackupManager
from .initializer import DatabaseInitializer

__version__ = "1.0.0"

__all__ = [
    # Errors
    "DatabaseLifecycleError",
    "DatabaseConnectionError",
    "MigrationError",
    "IndexConflictError",
    "SeedError",
    "BackupToolError",
    "BackupNotFoundError",
    "CacheUnavailable",
    "ProductionGuardError",

    # Models
    "ConnectionState",
    "MigrationRecord",
    "IndexDefinition",
    "CollectionInfo",
    "BackupMetadata",

    # Units
    "Migration",
    "Seed",
    "discover_migrations",
    "discover_seeds",

    # Managers
    "ConnectionManager",
    "MigrationManager",
    "IndexManager",
    "INDEX_DEFINITIONS",
    "SeedManager",
    "BackupManager",
    "DatabaseInitializer"
]
