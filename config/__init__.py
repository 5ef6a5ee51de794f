"""
Configuration Package
=====================
Centralized configuration for the database lifecycle tooling.

Features:
    ✅ Environment variable support (per-concern prefixes)
    ✅ Validation with Pydantic
    ✅ .env loading with python-dotenv
    ✅ JSON / YAML override files
    ✅ Pre-flight validation
"""

from .settings import (
    Settings,
    Environment,
    RetryStrategy,
    MongoDBConfig,
    RedisConfig,
    MigrationConfig,
    SeedConfig,
    BackupConfig,
    LoggingConfig,
    ConfigValidator,
    load_settings,
    get_settings,
    reload_settings
)

__version__ = "1.0.0"

__all__ = [
    "Settings",
    "Environment",
    "RetryStrategy",
    "MongoDBConfig",
    "RedisConfig",
    "MigrationConfig",
    "SeedConfig",
    "BackupConfig",
    "LoggingConfig",
    "ConfigValidator",
    "load_settings",
    "get_settings",
    "reload_settings"
]
