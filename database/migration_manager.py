"""
Migration Manager
=================
Tracks the schema version as an increasing integer and moves it
forward or backward one unit at a time.

Features:
    ✅ Ascending apply, descending rollback, never out of order
    ✅ One tracking record per applied unit, written right after `up`
    ✅ No automatic retry or rollback of a failed unit
    ✅ File checksums for drift detection
    ✅ Cross-process lock document with stale takeover
"""

import os
import re
import socket
import uuid
from contextlib import asynccontextmanager
from datetime import timezone
from typing import Optional, List, Dict, Any

import aiofiles
from pymongo.errors import DuplicateKeyError

from config.settings import MigrationConfig
from utils.helpers import ensure_directory, slugify_name, utc_now
from utils.logger import get_logger

from .connection import ConnectionManager
from .errors import MigrationError
from .models import MigrationRecord
from .registry import MIGRATION_FILE_PATTERN, Migration, discover_migrations

logger = get_logger(__name__)

LOCK_ID = "migration_lock"

MIGRATION_TEMPLATE = '''"""
Migration {version:03d}: {title}
"""

from database.registry import Migration


class {class_name}(Migration):
    description = "{title}"

    async def up(self, db) -> None:
        # Apply the change, e.g.:
        # await db.users.update_many({{}}, {{"$set": {{"newField": None}}}})
        pass

    async def down(self, db) -> None:
        # Undo the change made in up()
        pass
'''


class MigrationManager:
    """
    Applies and rolls back versioned migration units.

    Units come from `MigrationConfig.directory` unless an explicit
    list is passed in.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        config: Optional[MigrationConfig] = None,
        units: Optional[List[Migration]] = None
    ):
        self.connection = connection
        self.config = config or MigrationConfig()
        self._units = units
        self._owner = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

        # Outcome of the most recent rollback_to_version call
        self.last_rollback: Dict[str, Any] = {"target": None, "rolled_back": [], "skipped": []}

    @property
    def tracking(self):
        return self.connection.get_database()[self.config.collection]

    # ==================== TRACKING ====================

    async def initialize_tracking(self) -> bool:
        """Create the tracking collection and its unique version index."""
        db = self.connection.get_database()

        names = await db.list_collection_names()
        if self.config.collection not in names:
            await db.create_collection(self.config.collection)
            logger.info(f"📝 Created migration tracking collection: {self.config.collection}")

        await db[self.config.collection].create_index(
            [("version", 1)], unique=True, name="version_unique"
        )
        return True

    async def get_current_version(self) -> int:
        latest = await self.tracking.find_one({}, sort=[("version", -1)])
        return latest["version"] if latest else 0

    async def get_applied_migrations(self) -> List[Dict[str, Any]]:
        cursor = self.tracking.find({}).sort("version", 1)
        return await cursor.to_list(length=None)

    def get_available_migrations(self) -> List[Migration]:
        """Available units sorted by version."""
        if self._units is not None:
            versions = [unit.version for unit in self._units]
            if len(versions) != len(set(versions)):
                raise MigrationError("Duplicate migration versions in registry")
            return sorted(self._units, key=lambda unit: unit.version)

        return discover_migrations(self.config.directory)

    # ==================== APPLY ====================

    async def run_migrations(self) -> bool:
        """
        Apply every pending migration in ascending order.

        Returns:
            bool: True when the database is at the latest version

        Raises:
            MigrationError: the first failing unit; earlier units stay applied
        """
        await self.initialize_tracking()

        async with self._migration_lock("up"):
            current = await self.get_current_version()
            available = self.get_available_migrations()
            pending = [unit for unit in available if unit.version > current]

            self._warn_missing(available, await self.get_applied_migrations(), current)

            if not pending:
                logger.info(f"✅ Database is up to date (version {current})")
                return True

            logger.info(f"📦 Running {len(pending)} pending migration(s) from version {current}")

            for unit in pending:
                await self._apply(unit)

            logger.info(f"✅ Migrations complete, now at version {pending[-1].version}")
            return True

    async def _apply(self, unit: Migration) -> None:
        logger.info(f"⬆️ Applying migration {unit.version:03d}_{unit.name}")

        try:
            await unit.up(self.connection.get_database())
        except Exception as e:
            logger.error(f"❌ Migration {unit.version:03d}_{unit.name} failed: {e}")
            raise MigrationError(
                f"Migration {unit.version} ({unit.name}) failed: {e}",
                version=unit.version
            ) from e

        record = MigrationRecord(
            version=unit.version,
            name=unit.name,
            filename=unit.filename,
            checksum=unit.checksum
        )
        await self.tracking.insert_one(record.to_document())

    def _warn_missing(
        self,
        available: List[Migration],
        applied: List[Dict[str, Any]],
        current: int
    ) -> List[int]:
        applied_versions = {doc["version"] for doc in applied}
        missing = [
            unit.version for unit in available
            if unit.version < current and unit.version not in applied_versions
        ]
        if missing:
            logger.warning(f"⚠️ Migrations below version {current} are not recorded: {missing}")
        return missing

    # ==================== ROLLBACK ====================

    async def rollback_to_version(self, target_version: int) -> bool:
        """
        Roll back applied migrations above `target_version`, newest first.

        Units without `down` are skipped with a warning and stay recorded.
        Details land in `last_rollback`.

        Raises:
            MigrationError: a `down` failed; later rollbacks are not attempted
        """
        if target_version < 0:
            raise ValueError("Target version must be >= 0")

        await self.initialize_tracking()

        async with self._migration_lock("down"):
            current = await self.get_current_version()
            self.last_rollback = {"target": target_version, "rolled_back": [], "skipped": []}

            if target_version >= current:
                logger.info(f"ℹ️ Nothing to roll back (current version {current})")
                return True

            units = {unit.version: unit for unit in self.get_available_migrations()}
            applied = await self.get_applied_migrations()
            to_rollback = sorted(
                (doc["version"] for doc in applied if target_version < doc["version"] <= current),
                reverse=True
            )

            logger.info(f"⬇️ Rolling back {len(to_rollback)} migration(s) to version {target_version}")

            for version in to_rollback:
                unit = units.get(version)

                if unit is None or not unit.reversible:
                    logger.warning(f"⚠️ Migration {version} has no down(), skipping")
                    self.last_rollback["skipped"].append(version)
                    continue

                logger.info(f"⬇️ Rolling back migration {version:03d}_{unit.name}")
                try:
                    await unit.down(self.connection.get_database())
                except Exception as e:
                    logger.error(f"❌ Rollback of migration {version} failed: {e}")
                    raise MigrationError(
                        f"Rollback of migration {version} ({unit.name}) failed: {e}",
                        version=version
                    ) from e

                await self.tracking.delete_one({"version": version})
                self.last_rollback["rolled_back"].append(version)

            logger.info(f"✅ Rollback complete, now at version {await self.get_current_version()}")
            return True

    # ==================== STATUS ====================

    async def get_migration_status(self) -> Dict[str, Any]:
        """Current version, applied and pending units, and drifted checksums."""
        applied = await self.get_applied_migrations()
        current = max((doc["version"] for doc in applied), default=0)
        available = self.get_available_migrations()
        units = {unit.version: unit for unit in available}

        pending = [unit for unit in available if unit.version > current]

        drifted = []
        for doc in applied:
            unit = units.get(doc["version"])
            recorded = doc.get("checksum")
            if unit is None or not recorded:
                continue
            checksum = unit.checksum
            if checksum and checksum != recorded:
                drifted.append(doc["version"])

        return {
            "current_version": current,
            "total_migrations": len(available),
            "applied_count": len(applied),
            "pending_count": len(pending),
            "applied": [
                {
                    "version": doc["version"],
                    "name": doc.get("name"),
                    "applied_at": doc.get("appliedAt")
                }
                for doc in applied
            ],
            "pending": [{"version": unit.version, "name": unit.name} for unit in pending],
            "drifted": drifted,
            "missing": self._warn_missing(available, applied, current)
        }

    # ==================== AUTHORING ====================

    async def create_migration(self, name: str) -> Dict[str, Any]:
        """
        Write a new migration file with the next free version.

        Only file names are inspected, so a broken unit elsewhere in
        the directory does not block authoring.
        """
        if not name or not name.strip():
            raise ValueError("Migration name is required")

        directory = ensure_directory(self.config.directory)

        versions = [
            int(match.group(1))
            for match in (MIGRATION_FILE_PATTERN.match(p.name) for p in directory.glob("*.py"))
            if match
        ]
        version = max(versions, default=0) + 1

        slug = slugify_name(name)
        filename = f"{version:03d}_{slug}.py"
        path = directory / filename

        class_name = "".join(part.capitalize() for part in re.split(r"_+", slug) if part) or "NewMigration"
        content = MIGRATION_TEMPLATE.format(
            version=version,
            title=name.strip().replace('"', "'"),
            class_name=f"{class_name}Migration"
        )

        async with aiofiles.open(path, 'w', encoding='utf-8') as f:
            await f.write(content)

        logger.info(f"📝 Created migration: {filename}")
        return {"version": version, "name": slug, "filename": filename, "path": str(path)}

    # ==================== LOCKING ====================

    @asynccontextmanager
    async def _migration_lock(self, operation: str):
        if not self.config.use_lock:
            yield
            return

        locks = self.connection.get_database()[self.config.lock_collection]
        await self._acquire_lock(locks, operation)
        try:
            yield
        finally:
            await locks.delete_one({"_id": LOCK_ID, "owner": self._owner})

    async def _acquire_lock(self, locks, operation: str) -> None:
        document = {
            "_id": LOCK_ID,
            "owner": self._owner,
            "operation": operation,
            "acquired_at": utc_now()
        }

        try:
            await locks.insert_one(dict(document))
            return
        except DuplicateKeyError:
            existing = await locks.find_one({"_id": LOCK_ID})

        if existing is not None:
            acquired_at = existing.get("acquired_at")
            if acquired_at is not None and acquired_at.tzinfo is None:
                acquired_at = acquired_at.replace(tzinfo=timezone.utc)

            age = (utc_now() - acquired_at).total_seconds() if acquired_at else float("inf")
            if age <= self.config.lock_timeout_seconds:
                raise MigrationError(
                    f"Migrations locked by {existing.get('owner')} "
                    f"({existing.get('operation')}) for {int(age)}s"
                )

            logger.warning(f"⚠️ Taking over stale migration lock held by {existing.get('owner')}")
            await locks.delete_one({"_id": LOCK_ID, "owner": existing.get("owner")})

        try:
            await locks.insert_one(dict(document))
        except DuplicateKeyError as e:
            raise MigrationError("Migration lock acquired by another process") from e
