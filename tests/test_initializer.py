"""Tests for database.initializer."""

from unittest.mock import AsyncMock

import pytest

from config.settings import Environment
from database.connection import ConnectionManager
from database.errors import DatabaseConnectionError, MigrationError
from database.initializer import STEPS, DatabaseInitializer
from database.migration_manager import MigrationManager
from database.registry import Migration, Seed
from database.seed_manager import SeedManager

from fakes import FakeClientFactory


class CreateUsers(Migration):
    async def up(self, db):
        if "users" not in await db.list_collection_names():
            await db.create_collection("users")


class Broken(Migration):
    async def up(self, db):
        raise RuntimeError("bad migration")


class UsersSeed(Seed):
    environments = ("development", "test")

    async def seed(self, db):
        if await db.users.count_documents({}) == 0:
            await db.users.insert_one({"firebaseUid": "dev-1", "email": "dev@wayra.dev"})


@pytest.fixture
def build(settings, client_factory):
    """Build an initializer around the fake database; keyword overrides pass through."""
    def make(environment=None, migrations=None, factory=None, **overrides):
        cfg = settings.model_copy(update={"environment": Environment(environment)}) if environment else settings
        connection = ConnectionManager(cfg.mongodb, client_factory=factory or client_factory)
        overrides.setdefault(
            "migration_manager",
            MigrationManager(
                connection,
                cfg.migrations,
                units=migrations if migrations is not None else [CreateUsers().bind(1, "create_users")]
            )
        )
        overrides.setdefault(
            "seed_manager",
            SeedManager(connection, cfg.seeds, cfg.environment, units=[UsersSeed().bind("users", 1)])
        )
        return DatabaseInitializer(cfg, connection=connection, **overrides)
    return make


class TestInitialize:
    """Full bring-up sequence."""

    @pytest.mark.asyncio
    async def test_all_steps_succeed(self, build, fake_db, backups_dir):
        initializer = build()

        results = await initializer.initialize()

        assert all(results[step] for step in STEPS)
        assert results["errors"] == []
        assert list(results["durations"]) == list(STEPS)
        assert "firebaseUid_unique" in fake_db.users.indexes
        assert len(fake_db.users.documents) == 1
        assert backups_dir.is_dir()
        await initializer.shutdown()

    @pytest.mark.asyncio
    async def test_connection_failure_is_always_fatal(self, build, fake_db):
        initializer = build(factory=FakeClientFactory(fake_db, failures=100))

        with pytest.raises(DatabaseConnectionError):
            await initializer.initialize(continue_on_error=True)

    @pytest.mark.asyncio
    async def test_step_failure_aborts_by_default(self, build, fake_db):
        initializer = build(migrations=[Broken().bind(1, "broken")])

        with pytest.raises(MigrationError):
            await initializer.initialize()

        # Nothing after the failing step ran
        assert fake_db.users.documents == []
        await initializer.shutdown()

    @pytest.mark.asyncio
    async def test_continue_on_error_records_and_proceeds(self, build, fake_db):
        initializer = build(migrations=[Broken().bind(1, "broken")])

        results = await initializer.initialize(continue_on_error=True)

        assert results["connection"] is True
        assert results["migrations"] is False
        assert results["indexes"] is True
        assert results["seeds"] is True
        assert [e["step"] for e in results["errors"]] == ["migrations"]
        assert "bad migration" in results["errors"][0]["error"]
        await initializer.shutdown()

    @pytest.mark.asyncio
    async def test_seeds_can_be_skipped(self, build, fake_db):
        initializer = build()

        results = await initializer.initialize(run_seeds=False)

        assert results["seeds"] is True
        assert fake_db.users.documents == []
        await initializer.shutdown()

    @pytest.mark.asyncio
    async def test_production_never_seeds(self, build, fake_db):
        initializer = build(environment="production")

        results = await initializer.initialize()

        assert results["seeds"] is True
        assert fake_db.users.documents == []
        await initializer.shutdown()

    @pytest.mark.asyncio
    async def test_cache_connected_with_database(self, build):
        cache = AsyncMock()
        cache.is_connected = False
        initializer = build(cache=cache)

        await initializer.initialize()
        await initializer.shutdown()

        cache.connect.assert_awaited_once()
        cache.graceful_shutdown.assert_awaited_once()


class TestQuickSetupAndReset:

    @pytest.mark.asyncio
    async def test_quick_setup_skips_seeds(self, build, fake_db):
        initializer = build()

        assert await initializer.quick_setup() is True

        assert "email_unique" in fake_db.users.indexes
        assert [doc["version"] for doc in fake_db.migrations.documents] == [1]
        assert fake_db.users.documents == []
        await initializer.shutdown()

    @pytest.mark.asyncio
    async def test_reset_refused_in_production(self, build, fake_db):
        backup = AsyncMock()
        initializer = build(environment="production", backup_manager=backup)
        await initializer.connection.connect()
        await fake_db.users.insert_one({"firebaseUid": "real", "email": "real@example.com"})

        assert await initializer.reset_database(create_backup=True) is False

        assert len(fake_db.users.documents) == 1
        backup.create_backup.assert_not_awaited()
        await initializer.shutdown()

    @pytest.mark.asyncio
    async def test_reset_wipes_and_reseeds(self, build, fake_db):
        backup = AsyncMock()
        initializer = build(environment="development", backup_manager=backup)
        await initializer.connection.connect()
        await fake_db.users.insert_one({"firebaseUid": "old", "email": "old@wayra.dev"})
        await fake_db.trips.insert_one({"title": "old trip"})

        assert await initializer.reset_database(create_backup=True) is True

        backup.create_backup.assert_awaited_once()
        assert backup.create_backup.await_args.kwargs["name"].startswith("pre_reset_")
        assert fake_db.trips.documents == []
        assert [u["firebaseUid"] for u in fake_db.users.documents] == ["dev-1"]
        await initializer.shutdown()

    @pytest.mark.asyncio
    async def test_reset_without_reseed(self, build, fake_db):
        initializer = build(environment="development")
        await initializer.connection.connect()
        await fake_db.users.insert_one({"firebaseUid": "old", "email": "old@wayra.dev"})

        await initializer.reset_database(reseed=False)

        assert fake_db.users.documents == []
        await initializer.shutdown()


class TestStatus:
    """Fault-tolerant status aggregation."""

    @pytest.mark.asyncio
    async def test_status_sections(self, build):
        initializer = build()
        await initializer.initialize()

        status = await initializer.get_status()

        assert status["environment"] == "test"
        assert status["database"]["connected"] is True
        assert status["migrations"]["current_version"] == 1
        assert status["indexes"]["users"]["exists"] is True
        assert status["backups"] == []
        assert "cache" not in status
        await initializer.shutdown()

    @pytest.mark.asyncio
    async def test_failing_section_does_not_hide_others(self, build):
        migrations = AsyncMock()
        migrations.get_migration_status.side_effect = MigrationError("tracking unreadable")
        initializer = build(migration_manager=migrations)
        await initializer.connection.connect()

        status = await initializer.get_status()

        assert status["migrations"] == {"error": "tracking unreadable"}
        assert status["database"]["connected"] is True
        assert "users" in status["indexes"]
        await initializer.shutdown()

    @pytest.mark.asyncio
    async def test_status_while_disconnected(self, build):
        status = await build().get_status()

        assert status["database"]["connected"] is False
        assert "error" in status["migrations"]
        assert "error" in status["indexes"]


class TestMaintenance:

    @pytest.mark.asyncio
    async def test_reports_unused_indexes_and_health(self, build, fake_db):
        initializer = build()
        await initializer.initialize()
        fake_db.users.index_ops["email_unique"] = 10

        results = await initializer.run_maintenance()

        assert results["index_optimization"] is True
        assert results["health_check"] is True
        unused = results["unused_indexes"]["users"]
        assert "email_unique" not in unused
        assert "_id_" not in unused
        assert "createdAt_desc" in unused
        # Retention only runs in development
        assert results["backup_cleanup"] is False
        await initializer.shutdown()

    @pytest.mark.asyncio
    async def test_development_applies_backup_retention(self, build):
        backup = AsyncMock()
        backup.apply_retention.return_value = ["backup_old"]
        initializer = build(environment="development", backup_manager=backup)
        await initializer.connection.connect()

        results = await initializer.run_maintenance()

        assert results["backup_cleanup"] is True
        assert results["deleted_backups"] == ["backup_old"]
        await initializer.shutdown()

    @pytest.mark.asyncio
    async def test_unhealthy_database(self, build, fake_db):
        initializer = build()
        await initializer.connection.connect()
        fake_db.available = False

        results = await initializer.run_maintenance()

        assert results["health_check"] is False
        assert results["index_optimization"] is False
        fake_db.available = True
        await initializer.shutdown()
