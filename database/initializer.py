"""
Database Initializer
====================
Brings the persistence layer from empty to operational and keeps it
healthy.

Bring-up order:
    1. connection
    2. migrations
    3. indexes
    4. backup system
    5. seeds (skipped in production)

Features:
    ✅ Continue-on-error mode that records step failures
    ✅ Quick setup for local iteration
    ✅ Production-refusing reset
    ✅ Fault-tolerant status report
    ✅ Maintenance pass (index audit, backup retention, health)
"""

from typing import TYPE_CHECKING, Optional, List, Dict, Any, Callable, Awaitable

from config.settings import Environment, Settings, get_settings
from utils.helpers import StepTimer, filesystem_timestamp, format_duration, utc_now
from utils.logger import get_logger

from .backup_manager import BackupManager
from .connection import ConnectionManager
from .errors import DatabaseLifecycleError, ProductionGuardError
from .index_manager import IndexManager
from .migration_manager import MigrationManager
from .seed_manager import SeedManager

if TYPE_CHECKING:
    from cache.redis_cache import CacheManager

logger = get_logger(__name__)

STEPS = ("connection", "migrations", "indexes", "backup", "seeds")


class DatabaseInitializer:
    """
    Composes the lifecycle managers around one connection.

    Every manager borrows `self.connection`; pass prebuilt managers to
    share or replace them.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        connection: Optional[ConnectionManager] = None,
        cache: Optional['CacheManager'] = None,
        migration_manager: Optional[MigrationManager] = None,
        index_manager: Optional[IndexManager] = None,
        seed_manager: Optional[SeedManager] = None,
        backup_manager: Optional[BackupManager] = None
    ):
        self.settings = settings or get_settings()
        self.environment = self.settings.environment.value

        self.connection = connection or ConnectionManager(self.settings.mongodb)
        self.cache = cache

        self.migration_manager = migration_manager or MigrationManager(
            self.connection, self.settings.migrations
        )
        self.index_manager = index_manager or IndexManager(self.connection)
        self.seed_manager = seed_manager or SeedManager(
            self.connection, self.settings.seeds, environment=self.environment
        )
        self.backup_manager = backup_manager or BackupManager(
            self.connection, self.settings.backup, environment=self.environment
        )

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION.value

    # ==================== INITIALIZE ====================

    async def initialize(
        self,
        continue_on_error: bool = False,
        run_seeds: bool = True
    ) -> Dict[str, Any]:
        """
        Full database initialization.

        Args:
            continue_on_error: Record failing steps after the connection
                and keep going instead of aborting
            run_seeds: Set False to skip seeding

        Returns:
            {connection, migrations, indexes, backup, seeds, errors, durations}

        Raises:
            The failing step's exception, unless continue_on_error is set.
            A connection failure is always raised.
        """
        logger.info("🚀 Starting database initialization...")
        logger.info(f"📊 Environment: {self.environment}")

        timer = StepTimer()
        results: Dict[str, Any] = {step: False for step in STEPS}
        results["errors"] = []

        # Every later step needs a live handle
        await self._run_step(results, "connection", "Establishing database connection", self._connect, False, timer)

        await self._run_step(
            results, "migrations", "Running database migrations",
            self.migration_manager.run_migrations, continue_on_error, timer
        )
        await self._run_step(
            results, "indexes", "Creating database indexes",
            self._create_indexes, continue_on_error, timer
        )
        await self._run_step(
            results, "backup", "Initializing backup system",
            self.backup_manager.initialize, continue_on_error, timer
        )

        if run_seeds and not self.is_production:
            await self._run_step(
                results, "seeds", "Running database seeds",
                self._seed, continue_on_error, timer
            )
        else:
            reason = "production environment" if self.is_production else "disabled"
            logger.info(f"⏭️ Skipping database seeds ({reason})")
            results["seeds"] = True

        results["durations"] = dict(timer.durations)
        success_count = sum(1 for step in STEPS if results[step])
        logger.info(f"🎉 Database initialization completed in {format_duration(timer.total)}")
        slowest = timer.slowest()
        if slowest:
            logger.info(f"⏱️ Slowest step: {slowest} ({format_duration(timer.durations[slowest])})")
        logger.info(f"📊 Success: {success_count}/{len(STEPS)} steps")

        if results["errors"]:
            logger.warning(f"⚠️ Errors: {len(results['errors'])}")
            for error in results["errors"]:
                logger.warning(f"   - {error['step']}: {error['error']}")

        return results

    async def _run_step(
        self,
        results: Dict[str, Any],
        step: str,
        description: str,
        action: Callable[[], Awaitable[Any]],
        continue_on_error: bool,
        timer: StepTimer
    ) -> None:
        number = STEPS.index(step) + 1
        logger.info(f"🔄 Step {number}: {description}...")

        try:
            with timer.step(step):
                await action()
        except Exception as e:
            results["errors"].append({"step": step, "error": str(e)})
            if not continue_on_error:
                logger.error(f"❌ Step {number} ({step}) failed: {e}", exc_info=True)
                raise
            logger.warning(f"⚠️ Step {number} ({step}) failed, continuing: {e}")
            return

        results[step] = True
        logger.info(f"✅ Step {number} ({step}) completed")

    async def _connect(self) -> None:
        await self.connection.connect()
        if self.cache is not None and not self.cache.is_connected:
            await self.cache.connect()

    async def _create_indexes(self) -> None:
        results = await self.index_manager.create_all_indexes()
        failed = [result["collection"] for result in results if not result["success"]]
        if failed:
            raise DatabaseLifecycleError(f"Index creation failed for: {', '.join(failed)}")

    async def _seed(self) -> None:
        await self.seed_manager.initialize()
        await self.seed_manager.run_seeds()

    # ==================== QUICK SETUP ====================

    async def quick_setup(self) -> bool:
        """Connect, create indexes and migrate. No backups, no seeds."""
        logger.info("⚡ Running quick development setup...")

        await self._connect()
        await self._create_indexes()
        await self.migration_manager.run_migrations()

        logger.info("✅ Quick setup completed")
        return True

    # ==================== RESET ====================

    async def reset_database(self, create_backup: bool = False, reseed: bool = True) -> bool:
        """
        Wipe and rebuild the database.

        Args:
            create_backup: Dump the database before wiping it
            reseed: Run seeds afterwards

        Returns:
            bool: False in production (nothing is touched)
        """
        if self.is_production:
            logger.warning(f"🚫 {ProductionGuardError('reset_database')}")
            return False

        logger.info("🔄 Resetting database...")

        if create_backup:
            logger.info("💾 Creating backup before reset...")
            await self.backup_manager.create_backup(name=f"pre_reset_{filesystem_timestamp()}")

        await self.seed_manager.clear_database()
        await self._create_indexes()
        await self.migration_manager.run_migrations()

        if reseed:
            await self.seed_manager.run_seeds()

        logger.info("✅ Database reset completed")
        return True

    # ==================== STATUS ====================

    async def get_status(self) -> Dict[str, Any]:
        """
        Aggregate health, migrations, indexes, backups and cache.

        Each section is gathered independently; a failing section carries
        an `error` entry and the others are still reported.
        """
        status: Dict[str, Any] = {
            "timestamp": utc_now().isoformat(),
            "environment": self.environment,
            "database": {"connected": False, "health": None},
            "migrations": {},
            "indexes": {},
            "backups": []
        }

        try:
            health = await self.connection.health_check()
            status["database"] = {"connected": health["connected"], "health": health}
        except Exception as e:
            status["database"]["error"] = str(e)

        try:
            status["migrations"] = await self.migration_manager.get_migration_status()
        except Exception as e:
            status["migrations"] = {"error": str(e)}

        try:
            status["indexes"] = await self.index_manager.get_index_stats()
        except Exception as e:
            status["indexes"] = {"error": str(e)}

        try:
            status["backups"] = await self.backup_manager.list_backups()
        except Exception as e:
            status["backups"] = {"error": str(e)}

        if self.cache is not None:
            status["cache"] = await self.cache.health_check()

        return status

    # ==================== MAINTENANCE ====================

    async def run_maintenance(self) -> Dict[str, Any]:
        """
        Index usage audit, backup retention (development only) and a
        health check.
        """
        logger.info("🔧 Running database maintenance...")

        results: Dict[str, Any] = {
            "index_optimization": False,
            "backup_cleanup": False,
            "health_check": False,
            "unused_indexes": {},
            "deleted_backups": []
        }

        try:
            logger.info("🔄 Auditing index usage...")
            usage = await self.index_manager.get_index_usage_stats()

            for collection, indexes in usage.items():
                unused = self._unused_indexes(indexes)
                if unused:
                    results["unused_indexes"][collection] = unused
                    logger.warning(f"⚠️ Unused indexes in {collection}: {', '.join(unused)}")

            results["index_optimization"] = True
        except Exception as e:
            logger.error(f"❌ Index audit failed: {e}")

        if self.environment == Environment.DEVELOPMENT.value:
            try:
                logger.info("🔄 Cleaning up old backups...")
                results["deleted_backups"] = await self.backup_manager.apply_retention()
                results["backup_cleanup"] = True
            except Exception as e:
                logger.error(f"❌ Backup cleanup failed: {e}")
        else:
            logger.info(f"⏭️ Skipping backup cleanup ({self.environment})")

        try:
            logger.info("🔄 Running health check...")
            health = await self.connection.health_check()
            results["health_check"] = bool(health.get("connected"))
            if results["health_check"]:
                logger.info(f"💚 Database health: {health.get('status')} ({health.get('latency_ms')} ms)")
            else:
                logger.error(f"❌ Database unhealthy: {health.get('error')}")
        except Exception as e:
            logger.error(f"❌ Health check failed: {e}")

        logger.info("✅ Maintenance completed")
        return results

    @staticmethod
    def _unused_indexes(indexes: List[Dict[str, Any]]) -> List[str]:
        # _id_ is used implicitly and never worth flagging
        return [index["name"] for index in indexes if index.get("ops", 0) == 0 and index.get("name") != "_id_"]

    # ==================== SHUTDOWN ====================

    async def shutdown(self) -> None:
        """Close the cache and the database connection."""
        if self.cache is not None:
            await self.cache.graceful_shutdown()
        await self.connection.graceful_shutdown()
