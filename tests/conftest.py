"""Shared fixtures: in-memory MongoDB and Redis, temporary unit directories."""

import textwrap

import pytest
import pytest_asyncio

from config.settings import (
    BackupConfig,
    LoggingConfig,
    MigrationConfig,
    MongoDBConfig,
    RedisConfig,
    SeedConfig,
    Settings
)
from database.connection import ConnectionManager

from fakes import FakeClientFactory, FakeDatabase, FakeRedis, FakeRedisFactory


@pytest.fixture
def mongo_config():
    return MongoDBConfig(
        uri="mongodb://localhost:27017",
        database="wayra_test",
        max_retries=3,
        retry_delay_ms=0,
        health_check_interval_ms=0
    )


@pytest.fixture
def fake_db():
    return FakeDatabase("wayra_test")


@pytest.fixture
def client_factory(fake_db):
    return FakeClientFactory(fake_db)


@pytest_asyncio.fixture
async def connection(mongo_config, client_factory):
    manager = ConnectionManager(mongo_config, client_factory=client_factory)
    await manager.connect()
    yield manager
    await manager.graceful_shutdown()


@pytest.fixture
def redis_config():
    return RedisConfig(
        url="redis://localhost:6379/0",
        max_retries=2,
        retry_delay_ms=0,
        health_check_interval_ms=0
    )


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_factory(fake_redis):
    return FakeRedisFactory(fake_redis)


@pytest.fixture
def migrations_dir(tmp_path):
    directory = tmp_path / "migrations"
    directory.mkdir()
    return directory


@pytest.fixture
def seeds_dir(tmp_path):
    directory = tmp_path / "seeds"
    directory.mkdir()
    return directory


@pytest.fixture
def backups_dir(tmp_path):
    return tmp_path / "backups"


@pytest.fixture
def write_unit():
    """Write a unit file: write_unit(directory, filename, source)."""
    def write(directory, filename, source):
        path = directory / filename
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return path
    return write


@pytest.fixture
def settings(mongo_config, migrations_dir, seeds_dir, backups_dir):
    return Settings(
        environment="test",
        mongodb=mongo_config,
        redis=RedisConfig(enabled=False),
        migrations=MigrationConfig(directory=str(migrations_dir)),
        seeds=SeedConfig(directory=str(seeds_dir)),
        backup=BackupConfig(directory=str(backups_dir), min_free_disk_mb=0),
        logging=LoggingConfig(use_colors=False)
    )
