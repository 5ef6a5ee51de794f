"""
Unit Registry
=============
Base classes for migration and seed units plus file discovery.

A unit file is a plain Python module named by convention
(`<version>_<name>.py` for migrations, `<order>_<name>.py` for seeds)
that defines exactly one subclass of `Migration` or `Seed`.
Version and order always come from the file name, never from content.
"""

import re
import inspect
import importlib.util
from pathlib import Path
from types import ModuleType
from typing import Optional, List, Sequence, Type, TypeVar, Union

from utils.helpers import file_checksum
from utils.logger import get_logger

from .errors import MigrationError, SeedError

logger = get_logger(__name__)

MIGRATION_FILE_PATTERN = re.compile(r"^(\d+)_(.+)\.py$")
SEED_FILE_PATTERN = re.compile(r"^(?:(\d+)_)?([A-Za-z0-9].*)\.py$")

DEFAULT_SEED_ORDER = 999

U = TypeVar('U')


# ==================== UNIT INTERFACES ====================

class Migration:
    """
    Versioned schema/data change.

    Subclasses implement `up` and, when the change can be undone, `down`.
    """

    description: str = ""

    def __init__(self):
        self.version: int = 0
        self.name: str = type(self).__name__
        self.filename: str = ""
        self.path: Optional[Path] = None

    def bind(self, version: int, name: str, path: Optional[Path] = None) -> 'Migration':
        """Attach the identity derived from the unit's file name."""
        self.version = version
        self.name = name
        self.path = path
        self.filename = path.name if path else f"{version:03d}_{name}.py"
        return self

    async def up(self, db) -> None:
        raise NotImplementedError

    async def down(self, db) -> None:
        raise NotImplementedError

    @property
    def reversible(self) -> bool:
        """True when the subclass provides its own `down`."""
        return type(self).down is not Migration.down

    @property
    def checksum(self) -> Optional[str]:
        if self.path is None:
            return None
        return file_checksum(self.path)

    def __repr__(self) -> str:
        return f"<Migration {self.version:03d} {self.name}>"


class Seed:
    """
    Environment-scoped data population routine.

    Class attributes:
        environments: Environments the seed runs in
        required: Abort the whole seed run when this seed fails
        description: One-line summary shown in logs
        order: Explicit position; defaults to the file name prefix
    """

    environments: Sequence[str] = ("development",)
    required: bool = False
    description: str = ""
    order: Optional[int] = None

    def __init__(self):
        self.name: str = type(self).__name__
        self.filename: str = ""
        self.file_order: int = DEFAULT_SEED_ORDER
        self.path: Optional[Path] = None

    def bind(
        self,
        name: str,
        file_order: Optional[int] = None,
        path: Optional[Path] = None
    ) -> 'Seed':
        self.name = name
        self.file_order = DEFAULT_SEED_ORDER if file_order is None else file_order
        self.path = path
        self.filename = path.name if path else f"{self.file_order:03d}_{name}.py"
        return self

    @property
    def sort_key(self):
        declared = self.order if self.order is not None else self.file_order
        return (declared, self.file_order, self.name)

    def applies_to(self, environment: str) -> bool:
        return environment in self.environments

    async def seed(self, db) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<Seed {self.name} order={self.sort_key[0]}>"


# ==================== DISCOVERY ====================

def load_module(path: Path) -> ModuleType:
    """
    Import a Python file by path.

    File names such as `001_initial_schema.py` are not valid module
    names, so the module is registered under a synthetic name.
    """
    module_name = f"_lifecycle_{path.parent.name}_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load {path}")

    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def find_unit_class(module: ModuleType, base: Type[U]) -> Type[U]:
    """Return the single `base` subclass defined in `module`."""
    candidates = [
        obj for obj in vars(module).values()
        if inspect.isclass(obj)
        and issubclass(obj, base)
        and obj is not base
        and obj.__module__ == module.__name__
    ]

    if len(candidates) != 1:
        raise TypeError(
            f"{module.__name__} must define exactly one {base.__name__} subclass "
            f"(found {len(candidates)})"
        )

    return candidates[0]


def _unit_files(directory: Union[str, Path]) -> List[Path]:
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning(f"⚠️ Unit directory not found: {directory}")
        return []
    return sorted(p for p in directory.glob("*.py") if not p.name.startswith("_"))


def discover_migrations(directory: Union[str, Path]) -> List[Migration]:
    """
    Load every migration unit in `directory`, sorted by version.

    Raises:
        MigrationError: on duplicate versions or a unit that fails to load
    """
    units: List[Migration] = []
    seen = {}

    for path in _unit_files(directory):
        match = MIGRATION_FILE_PATTERN.match(path.name)
        if not match:
            logger.debug(f"Skipping non-migration file: {path.name}")
            continue

        version = int(match.group(1))
        name = match.group(2)

        if version in seen:
            raise MigrationError(
                f"Duplicate migration version {version}: {seen[version]} and {path.name}",
                version=version
            )
        seen[version] = path.name

        try:
            unit_class = find_unit_class(load_module(path), Migration)
        except Exception as e:
            raise MigrationError(f"Failed to load migration {path.name}: {e}", version=version) from e

        units.append(unit_class().bind(version, name, path))

    return sorted(units, key=lambda unit: unit.version)


def discover_seeds(directory: Union[str, Path]) -> List[Seed]:
    """
    Load every seed unit in `directory`, sorted by execution order.

    Raises:
        SeedError: on a unit that fails to load
    """
    units: List[Seed] = []

    for path in _unit_files(directory):
        match = SEED_FILE_PATTERN.match(path.name)
        if not match:
            continue

        file_order = int(match.group(1)) if match.group(1) else None
        name = match.group(2)

        try:
            unit_class = find_unit_class(load_module(path), Seed)
        except Exception as e:
            raise SeedError(f"Failed to load seed {path.name}: {e}", name=name) from e

        units.append(unit_class().bind(name, file_order, path))

    return sorted(units, key=lambda unit: unit.sort_key)
