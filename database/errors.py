"""
Database Lifecycle Errors
=========================
Exception taxonomy shared by every lifecycle component.

Propagation:
    - DatabaseConnectionError: fatal at startup, self-healing afterwards
    - MigrationError: stops the run, no automatic rollback
    - IndexConflictError: absorbed by the index manager as success
    - SeedError: fatal only for required seeds
    - BackupToolError: fatal for that backup operation
    - CacheUnavailable: never escapes the cache layer
    - ProductionGuardError: raised before any destructive side effect
"""

from typing import Optional


class DatabaseLifecycleError(Exception):
    """Base class for all lifecycle errors."""


class DatabaseConnectionError(DatabaseLifecycleError):
    """Connection could not be established or is not available."""


class MigrationError(DatabaseLifecycleError):
    """A migration unit failed or migration metadata is inconsistent."""

    def __init__(self, message: str, version: Optional[int] = None):
        super().__init__(message)
        self.version = version


class IndexConflictError(DatabaseLifecycleError):
    """An index with the same name or key pattern already exists."""

    def __init__(self, message: str, name: Optional[str] = None):
        super().__init__(message)
        self.name = name


class SeedError(DatabaseLifecycleError):
    """A seed unit failed."""

    def __init__(self, message: str, name: Optional[str] = None):
        super().__init__(message)
        self.name = name


class BackupToolError(DatabaseLifecycleError):
    """External dump/restore tool failed, timed out or is missing."""

    def __init__(
        self,
        message: str,
        tool: Optional[str] = None,
        exit_code: Optional[int] = None,
        stderr: str = ""
    ):
        super().__init__(message)
        self.tool = tool
        self.exit_code = exit_code
        self.stderr = stderr

    def __str__(self) -> str:
        base = super().__str__()
        if self.stderr:
            return f"{base}: {self.stderr.strip()}"
        return base


class BackupNotFoundError(DatabaseLifecycleError, FileNotFoundError):
    """Requested backup artifact does not exist."""


class CacheUnavailable(DatabaseLifecycleError):
    """Cache backend is not connected or a command failed."""


class ProductionGuardError(DatabaseLifecycleError):
    """Destructive operation refused in production."""

    def __init__(self, operation: str):
        super().__init__(f"{operation} is not allowed in production")
        self.operation = operation
