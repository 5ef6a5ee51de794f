"""
Seed Manager
============
Populates non-production databases with fixture data.

Features:
    ✅ Environment-scoped seed units
    ✅ Deterministic execution order
    ✅ Required seeds abort the run, optional seeds only warn
    ✅ Full data wipe outside production
    ✅ Seed file templates
"""

import random
import re
from typing import Optional, List, Dict, Any, Sequence, Union

import aiofiles

from config.settings import Environment, SeedConfig
from utils.helpers import ensure_directory, slugify_name
from utils.logger import get_logger

from .connection import ConnectionManager
from .errors import ProductionGuardError, SeedError
from .fixtures import generate_test_trips, generate_test_users
from .registry import SEED_FILE_PATTERN, Seed, discover_seeds

logger = get_logger(__name__)

PROTECTED_COLLECTIONS = ("migrations", "migrations_lock")

SEED_TEMPLATE = '''"""
Seed: {title}
"""

from database.registry import Seed


class {class_name}(Seed):
    description = "{title}"
    environments = ("development",)
    required = False

    async def seed(self, db) -> None:
        # Insert fixture documents, e.g.:
        # if await db.things.count_documents({{}}) == 0:
        #     await db.things.insert_many([...])
        pass
'''


def _environment_name(environment: Union[str, Environment]) -> str:
    return getattr(environment, "value", environment)


class SeedManager:
    """Discovers and runs seed units for one environment."""

    def __init__(
        self,
        connection: ConnectionManager,
        config: Optional[SeedConfig] = None,
        environment: Union[str, Environment] = Environment.DEVELOPMENT,
        units: Optional[List[Seed]] = None,
        protected_collections: Sequence[str] = PROTECTED_COLLECTIONS,
        rng: Optional[random.Random] = None
    ):
        self.connection = connection
        self.config = config or SeedConfig()
        self.environment = _environment_name(environment)
        self.protected_collections = set(protected_collections)
        self._units = units
        self._rng = rng or random.Random()
        self.last_run: Dict[str, Any] = {}

    def _guard(self, operation: str, environment: str) -> None:
        if environment == Environment.PRODUCTION.value:
            raise ProductionGuardError(operation)

    async def initialize(self) -> bool:
        """Ensure the seed directory exists."""
        ensure_directory(self.config.directory)
        return True

    def get_available_seeds(self) -> List[Seed]:
        if self._units is not None:
            return sorted(self._units, key=lambda unit: unit.sort_key)
        return discover_seeds(self.config.directory)

    # ==================== RUN ====================

    async def run_seeds(self, environment: Optional[Union[str, Environment]] = None) -> bool:
        """
        Run every seed that applies to the environment.

        Returns:
            bool: False in production (nothing runs), True otherwise

        Raises:
            SeedError: a required seed failed; remaining seeds are not run
        """
        env = _environment_name(environment) if environment else self.environment

        try:
            self._guard("run_seeds", env)
        except ProductionGuardError as e:
            logger.warning(f"🚫 {e}")
            return False

        seeds = [unit for unit in self.get_available_seeds() if unit.applies_to(env)]
        self.last_run = {"environment": env, "executed": [], "failed": []}

        if not seeds:
            logger.info(f"ℹ️ No seeds for environment '{env}'")
            return True

        logger.info(f"🌱 Running {len(seeds)} seed(s) for '{env}'")
        db = self.connection.get_database()

        for unit in seeds:
            logger.info(f"🌱 {unit.name}" + (f": {unit.description}" if unit.description else ""))

            try:
                await unit.seed(db)
            except Exception as e:
                if unit.required:
                    logger.error(f"❌ Required seed {unit.name} failed: {e}")
                    self.last_run["failed"].append(unit.name)
                    raise SeedError(f"Required seed {unit.name} failed: {e}", name=unit.name) from e

                logger.warning(f"⚠️ Optional seed {unit.name} failed, continuing: {e}")
                self.last_run["failed"].append(unit.name)
                continue

            self.last_run["executed"].append(unit.name)

        logger.info(
            f"✅ Seeding complete: {len(self.last_run['executed'])} ran, "
            f"{len(self.last_run['failed'])} failed"
        )
        return True

    # ==================== CLEAR ====================

    async def clear_database(self) -> bool:
        """
        Delete all documents from every non-system, non-tracking collection.

        Returns:
            bool: False in production (nothing is deleted)
        """
        try:
            self._guard("clear_database", self.environment)
        except ProductionGuardError as e:
            logger.warning(f"🚫 {e}")
            return False

        db = self.connection.get_database()
        cleared = 0

        for name in await db.list_collection_names():
            if name.startswith("system.") or name in self.protected_collections:
                continue
            result = await db[name].delete_many({})
            logger.debug(f"🗑️ Cleared {result.deleted_count} document(s) from {name}")
            cleared += 1

        logger.info(f"🧹 Cleared {cleared} collection(s)")
        return True

    # ==================== FIXTURES ====================

    def generate_test_users(self, count: int = 10) -> List[Dict[str, Any]]:
        logger.debug(f"👥 Generating {count} test users")
        return generate_test_users(count, rng=self._rng)

    def generate_test_trips(self, user_ids: Sequence[Any], count: int = 20) -> List[Dict[str, Any]]:
        logger.debug(f"🧳 Generating {count} test trips")
        return generate_test_trips(user_ids, count, rng=self._rng)

    # ==================== AUTHORING ====================

    async def create_seed_file(self, name: str, order: Optional[int] = None) -> Dict[str, Any]:
        """
        Write a seed file template.

        Args:
            name: Human readable seed name
            order: Execution order; next free number when omitted
        """
        if not name or not name.strip():
            raise ValueError("Seed name is required")

        directory = ensure_directory(self.config.directory)

        if order is None:
            existing = [
                int(match.group(1))
                for match in (SEED_FILE_PATTERN.match(p.name) for p in directory.glob("*.py"))
                if match and match.group(1)
            ]
            order = max(existing, default=0) + 1

        slug = slugify_name(name)
        filename = f"{order:03d}_{slug}.py"
        path = directory / filename

        if path.exists():
            raise FileExistsError(f"Seed file already exists: {filename}")

        class_name = "".join(part.capitalize() for part in re.split(r"_+", slug) if part) or "New"
        content = SEED_TEMPLATE.format(
            title=name.strip().replace('"', "'"),
            class_name=f"{class_name}Seed"
        )

        async with aiofiles.open(path, 'w', encoding='utf-8') as f:
            await f.write(content)

        logger.info(f"📝 Created seed: {filename}")
        return {"order": order, "name": slug, "filename": filename, "path": str(path)}
