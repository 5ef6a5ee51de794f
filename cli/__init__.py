"""
CLI Package
===========
Operational commands for the database lifecycle.

Commands:
    - db-init: Initialization, reset, status and maintenance
    - db-migrate: Migration status, apply, rollback and authoring
"""

__version__ = "1.0.0"

__all__ = ["db_init", "db_migrate", "console"]
