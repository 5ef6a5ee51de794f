"""Tests for config.settings."""

import json

import pytest
from pydantic import ValidationError

from config.settings import (
    BackupConfig,
    ConfigValidator,
    Environment,
    LoggingConfig,
    MongoDBConfig,
    RedisConfig,
    RetryStrategy,
    Settings,
    load_settings
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("APP_ENV", "NODE_ENV", "ENVIRONMENT", "MONGODB_URI", "MONGODB_DATABASE", "REDIS_URL"):
        monkeypatch.delenv(name, raising=False)


class TestEnvironment:
    """Environment discriminator."""

    def test_defaults_to_development(self):
        assert Settings().environment == Environment.DEVELOPMENT

    def test_reads_node_env(self, monkeypatch):
        monkeypatch.setenv("NODE_ENV", "production")
        settings = Settings()
        assert settings.environment == Environment.PRODUCTION
        assert settings.is_production

    def test_app_env_wins_over_node_env(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "staging")
        monkeypatch.setenv("NODE_ENV", "production")
        assert Settings().environment == Environment.STAGING

    def test_short_aliases(self):
        assert Settings(environment="prod").environment == Environment.PRODUCTION
        assert Settings(environment="dev").environment == Environment.DEVELOPMENT

    def test_unknown_environment_rejected(self):
        with pytest.raises(ValidationError):
            Settings(environment="qa")


class TestSubConfigs:

    def test_mongodb_env_prefix(self, monkeypatch):
        monkeypatch.setenv("MONGODB_URI", "mongodb://db.internal:27017")
        monkeypatch.setenv("MONGODB_RETRY_STRATEGY", "exponential")
        config = MongoDBConfig()
        assert config.uri == "mongodb://db.internal:27017"
        assert config.host == "db.internal"
        assert config.retry_strategy == RetryStrategy.EXPONENTIAL

    def test_max_retries_must_be_positive(self):
        with pytest.raises(ValidationError):
            MongoDBConfig(max_retries=0)

    def test_redis_url_built_from_parts(self):
        config = RedisConfig(host="cache", port=6380, db=2, password="p@ss")
        assert config.connection_url == "redis://:p%40ss@cache:6380/2"

    def test_explicit_redis_url_wins(self):
        config = RedisConfig(url="redis://elsewhere:6379/1", host="cache")
        assert config.connection_url == "redis://elsewhere:6379/1"

    def test_log_level_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError):
            LoggingConfig(level="verbose")

    def test_log_path_only_when_file_logging(self):
        assert LoggingConfig().log_path is None
        assert LoggingConfig(log_to_file=True, log_dir="logs", log_file="x.log").log_path.endswith("x.log")


class TestLoad:
    """File overrides."""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "environment: test\n"
            "mongodb:\n"
            "  uri: mongodb://yaml-host:27017\n"
            "  database: from_yaml\n"
        )
        settings = Settings.load(str(path))
        assert settings.environment == Environment.TEST
        assert settings.mongodb.database == "from_yaml"

    def test_load_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"backup": {"retention_count": 3}}))
        assert Settings.load(str(path)).backup.retention_count == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Settings.load(str(tmp_path / "nope.yaml"))

    def test_load_settings_environment_override(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert load_settings("testing").environment == Environment.TEST


class TestConfigValidator:

    def _settings(self, tmp_path, **mongodb):
        return Settings(
            environment=mongodb.pop("environment", "development"),
            mongodb=MongoDBConfig(**mongodb),
            backup=BackupConfig(directory=str(tmp_path / "backups"), min_free_disk_mb=0)
        )

    def test_valid_configuration(self, tmp_path):
        validator = ConfigValidator(self._settings(tmp_path, uri="mongodb://localhost:27017"))
        assert validator.validate_all() is True
        assert validator.errors == []
        assert (tmp_path / "backups").is_dir()

    def test_bad_scheme_is_an_error(self, tmp_path):
        validator = ConfigValidator(self._settings(tmp_path, uri="postgres://localhost"))
        assert validator.validate_all() is False
        assert "mongodb://" in validator.errors[0]

    def test_production_without_credentials_warns(self, tmp_path):
        validator = ConfigValidator(
            self._settings(tmp_path, uri="mongodb://localhost:27017", environment="production")
        )
        assert validator.validate_all() is True
        assert any("authentication" in warning for warning in validator.warnings)
