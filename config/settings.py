"""
Settings Configuration
======================
Configuration for the database lifecycle tooling.
Environment driven, validated with pydantic, optionally overridden by a
JSON or YAML file.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List
from urllib.parse import quote_plus, urlparse

import yaml
from dotenv import load_dotenv
from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.helpers import get_project_root, format_file_size
from utils.logger import get_logger

logger = get_logger(__name__)


# ==================== ENUMS ====================

class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"


class RetryStrategy(str, Enum):
    """Delay policy between connection attempts."""
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


def _project_path(*parts: str) -> str:
    return str(get_project_root().joinpath(*parts))


_ENVIRONMENT_ALIASES = {
    "dev": "development",
    "prod": "production",
    "testing": "test",
    "stage": "staging"
}


def _normalize_environment(value: Any) -> Any:
    if isinstance(value, str):
        lowered = value.strip().lower()
        return _ENVIRONMENT_ALIASES.get(lowered, lowered)
    return value


# ==================== MONGODB SETTINGS ====================

class MongoDBConfig(BaseSettings):
    """MongoDB connection configuration."""

    model_config = SettingsConfigDict(env_prefix="MONGODB_", extra="ignore")

    uri: str = Field("mongodb://localhost:27017", description="Connection URI")
    database: str = Field("wayra", description="Database name")

    # Connection Pool
    max_pool_size: int = Field(10, ge=1, le=500)
    min_pool_size: int = Field(2, ge=0, le=100)

    # Timeouts (milliseconds)
    server_selection_timeout_ms: int = Field(10000, ge=0)
    connect_timeout_ms: int = Field(10000, ge=0)
    socket_timeout_ms: int = Field(45000, ge=0)

    # Retry
    max_retries: int = Field(5, ge=1)
    retry_delay_ms: int = Field(5000, ge=0)
    retry_strategy: RetryStrategy = Field(RetryStrategy.FIXED)
    max_retry_delay_ms: int = Field(30000, ge=0)

    # Health
    health_check_interval_ms: int = Field(30000, ge=0)

    @property
    def host(self) -> str:
        """Host part of the URI, without credentials."""
        parsed = urlparse(self.uri)
        return parsed.hostname or "unknown"


# ==================== REDIS SETTINGS ====================

class RedisConfig(BaseSettings):
    """Redis cache configuration."""

    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore")

    url: Optional[str] = Field(None, description="Full redis:// URL")
    host: str = Field("localhost")
    port: int = Field(6379, ge=1, le=65535)
    username: Optional[str] = Field(None)
    password: Optional[SecretStr] = Field(None)
    db: int = Field(0, ge=0)

    connect_timeout_ms: int = Field(10000, ge=0)
    command_timeout_ms: int = Field(5000, ge=0)
    max_retries: int = Field(5, ge=1)
    retry_delay_ms: int = Field(5000, ge=0)
    health_check_interval_ms: int = Field(30000, ge=0)

    enabled: bool = Field(True, description="Disable to run without a cache")

    @property
    def connection_url(self) -> str:
        """Build the Redis connection URL."""
        if self.url:
            return self.url

        auth = ""
        if self.password:
            secret = quote_plus(self.password.get_secret_value())
            user = quote_plus(self.username) if self.username else ""
            auth = f"{user}:{secret}@"
        elif self.username:
            auth = f"{quote_plus(self.username)}@"

        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


# ==================== LIFECYCLE SETTINGS ====================

class MigrationConfig(BaseSettings):
    """Migration discovery and tracking configuration."""

    model_config = SettingsConfigDict(env_prefix="MIGRATIONS_", extra="ignore")

    directory: str = Field(default_factory=lambda: _project_path("migrations"))
    collection: str = Field("migrations")
    lock_collection: str = Field("migrations_lock")
    use_lock: bool = Field(True)
    lock_timeout_seconds: int = Field(600, ge=1)


class SeedConfig(BaseSettings):
    """Seed discovery configuration."""

    model_config = SettingsConfigDict(env_prefix="SEEDS_", extra="ignore")

    directory: str = Field(default_factory=lambda: _project_path("seeds"))


class BackupConfig(BaseSettings):
    """Backup tooling configuration."""

    model_config = SettingsConfigDict(env_prefix="BACKUP_", extra="ignore")

    directory: str = Field(default_factory=lambda: _project_path("backups"))
    dump_tool: str = Field("mongodump")
    restore_tool: str = Field("mongorestore")
    tool_timeout_seconds: int = Field(3600, ge=0, description="0 disables the timeout")
    retention_count: int = Field(10, ge=1)
    min_free_disk_mb: int = Field(500, ge=0)


# ==================== LOGGING SETTINGS ====================

class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_", extra="ignore")

    level: str = Field("INFO", description="Log level")
    use_colors: bool = Field(True, description="Use colored output")
    use_json: bool = Field(False, description="Use JSON format for files")

    log_to_file: bool = Field(False, description="Enable file logging")
    log_dir: str = Field("logs", description="Log directory")
    log_file: str = Field("db-lifecycle.log", description="Log filename")

    max_bytes: int = Field(10485760, description="Max log size (10MB)")
    backup_count: int = Field(5, description="Number of backup files")

    @field_validator('level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @property
    def log_path(self) -> Optional[str]:
        if not self.log_to_file:
            return None
        return str(Path(self.log_dir) / self.log_file)


# ==================== MAIN SETTINGS CLASS ====================

_SECTIONS = {
    "mongodb": MongoDBConfig,
    "redis": RedisConfig,
    "migrations": MigrationConfig,
    "seeds": SeedConfig,
    "backup": BackupConfig,
    "logging": LoggingConfig,
}


class Settings(BaseSettings):
    """
    Root settings object.

    Features:
        ✅ Environment discriminator (APP_ENV, NODE_ENV or ENVIRONMENT)
        ✅ One sub-config per concern, each with its own env prefix
        ✅ Optional JSON / YAML override file
    """

    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True
    )

    environment: Environment = Field(
        Environment.DEVELOPMENT,
        validation_alias=AliasChoices("APP_ENV", "NODE_ENV", "ENVIRONMENT"),
        description="Application environment"
    )

    mongodb: MongoDBConfig = Field(default_factory=MongoDBConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    migrations: MigrationConfig = Field(default_factory=MigrationConfig)
    seeds: SeedConfig = Field(default_factory=SeedConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('environment', mode='before')
    @classmethod
    def normalize_environment(cls, v: Any) -> Any:
        """Accept common spellings such as 'dev', 'prod' or 'testing'."""
        return _normalize_environment(v)

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def mongo_uri(self) -> str:
        """Get MongoDB connection URI."""
        return self.mongodb.uri

    @classmethod
    def load(cls, path: str) -> 'Settings':
        """
        Load configuration from a JSON or YAML file.

        Values in the file take priority over environment variables;
        anything the file leaves out is still read from the environment.

        Args:
            path: File path to load from

        Returns:
            Settings: Loaded settings instance
        """
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(file_path, 'r', encoding='utf-8') as f:
            if file_path.suffix in ('.yaml', '.yml'):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            section = _SECTIONS.get(key)
            if section is not None and isinstance(value, dict):
                kwargs[key] = section(**value)
            else:
                kwargs[key] = value

        logger.debug(f"📄 Configuration file loaded: {path}")
        return cls(**kwargs)


# ==================== CONFIG VALIDATOR ====================

class ConfigValidator:
    """
    Pre-flight configuration checks.

    Features:
        ✅ Connection URI sanity
        ✅ Production credential warning
        ✅ Backup directory permission check
        ✅ Free disk space check
    """

    VALID_SCHEMES = ("mongodb", "mongodb+srv")

    def __init__(self, settings: Settings):
        """
        Initialize validator.

        Args:
            settings: Settings to validate
        """
        self.settings = settings
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_all(self) -> bool:
        """
        Run all validations.

        Returns:
            bool: True if no errors were found
        """
        self.errors.clear()
        self.warnings.clear()

        self._validate_mongodb()
        self._validate_backup_directory()
        self._validate_disk_space()

        for error in self.errors:
            logger.error(f"❌ {error}")

        for warning in self.warnings:
            logger.warning(f"⚠️ {warning}")

        return len(self.errors) == 0

    def _validate_mongodb(self) -> None:
        parsed = urlparse(self.settings.mongodb.uri)

        if parsed.scheme not in self.VALID_SCHEMES:
            self.errors.append(
                f"MongoDB URI must start with mongodb:// or mongodb+srv:// "
                f"(got '{parsed.scheme or 'no scheme'}')"
            )
            return

        if not parsed.hostname:
            self.errors.append("MongoDB URI has no host")

        if self.settings.is_production and not parsed.username:
            self.warnings.append("MongoDB authentication not configured for production")

    def _validate_backup_directory(self) -> None:
        directory = Path(self.settings.backup.directory)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.errors.append(f"Cannot create backup directory {directory}: {e}")

    def _validate_disk_space(self) -> None:
        import psutil

        directory = Path(self.settings.backup.directory)
        target = directory if directory.exists() else directory.anchor or "/"

        try:
            free_bytes = psutil.disk_usage(str(target)).free
        except OSError as e:
            self.warnings.append(f"Disk space check failed: {e}")
            return

        required = self.settings.backup.min_free_disk_mb * 1024 * 1024
        if free_bytes < required:
            self.warnings.append(
                f"Low disk space for backups: {format_file_size(free_bytes)} free"
            )


# ==================== HELPER FUNCTIONS ====================

def load_settings(environment: Optional[str] = None) -> Settings:
    """
    Load settings for environment.

    Args:
        environment: Environment name; overrides APP_ENV / NODE_ENV

    Returns:
        Settings: Loaded settings
    """
    env_file = f".env.{environment}" if environment else ".env"
    if Path(env_file).exists():
        load_dotenv(env_file)

    for candidate in (
        f"config.{environment}.json" if environment else None,
        "config.json",
        "config.yaml",
    ):
        if candidate and Path(candidate).exists():
            settings = Settings.load(candidate)
            break
    else:
        settings = Settings()

    if environment:
        settings.environment = Environment(_normalize_environment(environment))

    return settings


def get_settings() -> Settings:
    """
    Get current settings (loaded once per process).

    Returns:
        Settings: Current settings
    """
    global _settings_instance

    if _settings_instance is None:
        _settings_instance = load_settings()

    return _settings_instance


def reload_settings() -> Settings:
    """
    Reload settings.

    Returns:
        Settings: Reloaded settings
    """
    global _settings_instance
    _settings_instance = load_settings()

    logger.info("🔄 Settings reloaded")
    return _settings_instance


# Global instance
_settings_instance: Optional[Settings] = None
