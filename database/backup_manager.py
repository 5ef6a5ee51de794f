"""
Backup Manager
==============
Point-in-time backups through the external dump/restore tools,
collection-level JSON export/import, and the backup catalog.

Success of an external tool is decided by its exit code only;
its output is captured for diagnostics, never parsed.
"""

import asyncio
import json
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any, Union

import aiofiles
import aiofiles.os
from bson import json_util
from pymongo.errors import BulkWriteError, PyMongoError

from config.settings import BackupConfig, Environment
from utils.helpers import (
    ensure_directory,
    filesystem_timestamp,
    format_file_size,
    sanitize_connection_string,
    utc_now
)
from utils.logger import get_logger

from .connection import ConnectionManager
from .errors import BackupNotFoundError, BackupToolError, ProductionGuardError
from .models import BackupMetadata, CollectionInfo

logger = get_logger(__name__)

METADATA_FILE = "metadata.json"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _directory_size(path: Path) -> int:
    total = 0
    for root, _dirs, files in os.walk(path):
        for filename in files:
            try:
                total += os.path.getsize(os.path.join(root, filename))
            except OSError:
                continue
    return total


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return _EPOCH
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return _EPOCH


class BackupManager:
    """
    Backup and restore orchestration.

    Features:
        ✅ Full dumps with a metadata sidecar written atomically
        ✅ Restores with per-collection drop-and-replace
        ✅ Bounded child process lifetime
        ✅ JSON envelope export/import per collection
        ✅ Catalog tolerant of missing or corrupt metadata
    """

    def __init__(
        self,
        connection: ConnectionManager,
        config: Optional[BackupConfig] = None,
        environment: Union[str, Environment] = Environment.DEVELOPMENT
    ):
        self.connection = connection
        self.config = config or BackupConfig()
        self.environment = getattr(environment, "value", environment)

    @property
    def backup_path(self) -> Path:
        return Path(self.config.directory)

    @property
    def database_name(self) -> str:
        return self.connection.config.database

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION.value

    def _guard(self, operation: str) -> None:
        if self.is_production:
            raise ProductionGuardError(operation)

    async def initialize(self) -> bool:
        """Ensure the backup directory exists."""
        ensure_directory(self.backup_path)
        logger.info(f"📁 Backup directory ready: {self.backup_path}")
        return True

    def _backup_dir(self, name: str) -> Path:
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            raise ValueError(f"Invalid backup name: {name!r}")
        return self.backup_path / name

    # ==================== BACKUP / RESTORE ====================

    async def create_backup(
        self,
        name: Optional[str] = None,
        allow_production: bool = False
    ) -> Dict[str, Any]:
        """
        Dump the whole database into a new backup directory.

        Args:
            name: Backup name; defaults to backup_<timestamp>
            allow_production: Required to back up a production database

        Returns:
            Dict with name, path and metadata

        Raises:
            ProductionGuardError: production without allow_production
            BackupToolError: dump tool missing, failed or timed out
            FileExistsError: a backup with this name already exists
        """
        if not allow_production:
            self._guard("create_backup")

        name = name or f"backup_{filesystem_timestamp()}"
        backup_dir = self._backup_dir(name)
        if backup_dir.exists():
            raise FileExistsError(f"Backup already exists: {name}")
        backup_dir.mkdir(parents=True)

        logger.info(f"🔄 Creating database backup: {name}")

        try:
            await self._run_tool(
                self.config.dump_tool,
                [
                    "--uri", self.connection.config.uri,
                    "--db", self.database_name,
                    "--out", str(backup_dir)
                ]
            )
        except BaseException:
            # The directory was created by this call
            await asyncio.to_thread(shutil.rmtree, backup_dir, True)
            raise

        metadata = BackupMetadata(
            name=name,
            timestamp=utc_now(),
            environment=self.environment,
            database=self.database_name,
            collections=await self._collection_stats(),
            total_size_bytes=_directory_size(backup_dir),
            server_version=await self._server_version(),
            sanitized_connection_string=sanitize_connection_string(self.connection.config.uri)
        )
        await self._write_metadata(backup_dir, metadata)

        logger.info(f"✅ Backup created: {name}")
        logger.info(f"📊 Size: {format_file_size(metadata.total_size_bytes)}")

        return {
            "success": True,
            "name": name,
            "path": str(backup_dir),
            "metadata": metadata.model_dump(by_alias=True, mode="json")
        }

    async def restore_backup(
        self,
        name: str,
        drop_existing: bool = False,
        allow_production: bool = False
    ) -> Dict[str, Any]:
        """
        Restore a backup with the restore tool.

        Collections present in the backup are always dropped and replaced;
        `drop_existing` additionally drops the whole database first.

        Raises:
            ProductionGuardError: production without allow_production
            BackupNotFoundError: no such backup
            BackupToolError: restore tool missing, failed or timed out
        """
        if not allow_production:
            self._guard("restore_backup")

        backup_dir = self._backup_dir(name)
        if not backup_dir.is_dir():
            raise BackupNotFoundError(f"Backup not found: {name}")

        logger.info(f"🔄 Restoring database from backup: {name}")

        metadata = await self._read_metadata(backup_dir)
        if metadata is None:
            logger.warning("⚠️ Could not load backup metadata")

        if drop_existing:
            logger.info("🗑️ Dropping existing database...")
            await self.connection.get_database().command("dropDatabase")

        await self._run_tool(
            self.config.restore_tool,
            [
                "--uri", self.connection.config.uri,
                "--drop",
                "--nsInclude", f"{self.database_name}.*",
                str(backup_dir)
            ]
        )

        collections = len(metadata.get("collections", [])) if metadata else None
        logger.info(f"✅ Database restored from {name} ({collections if collections is not None else 'unknown'} collections)")

        return {
            "success": True,
            "name": name,
            "collections": collections,
            "metadata": metadata
        }

    async def _run_tool(self, tool: str, args: List[str]) -> Dict[str, str]:
        """
        Run an external tool to completion.

        Raises:
            BackupToolError: tool missing, non-zero exit or timeout
        """
        logger.debug(f"⚙️ Running {tool}")

        try:
            process = await asyncio.create_subprocess_exec(
                tool, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise BackupToolError(f"{tool} not found on PATH", tool=tool) from e

        stdout_task = asyncio.create_task(process.stdout.read())
        stderr_task = asyncio.create_task(process.stderr.read())
        timeout = self.config.tool_timeout_seconds or None
        timed_out = False

        try:
            await asyncio.wait_for(process.wait(), timeout)
        except asyncio.TimeoutError:
            timed_out = True
            process.kill()
            await process.wait()
        except BaseException:
            # Cancelled: the tool must not outlive its caller
            if process.returncode is None:
                process.kill()
                await process.wait()
            for task in (stdout_task, stderr_task):
                task.cancel()
            await asyncio.gather(stdout_task, stderr_task, return_exceptions=True)
            logger.warning(f"⚠️ {tool} cancelled")
            raise

        stdout = (await stdout_task).decode(errors="replace")
        stderr = (await stderr_task).decode(errors="replace")

        if timed_out:
            logger.error(f"❌ {tool} timed out after {timeout}s")
            raise BackupToolError(
                f"{tool} timed out after {timeout}s",
                tool=tool,
                exit_code=process.returncode,
                stderr=stderr
            )

        if process.returncode != 0:
            logger.error(f"❌ {tool} exited with code {process.returncode}")
            raise BackupToolError(
                f"{tool} exited with code {process.returncode}",
                tool=tool,
                exit_code=process.returncode,
                stderr=stderr
            )

        if stderr:
            logger.debug(f"{tool}: {stderr.strip()}")

        return {"stdout": stdout, "stderr": stderr}

    # ==================== METADATA ====================

    async def _write_metadata(self, backup_dir: Path, metadata: BackupMetadata) -> None:
        final_path = backup_dir / METADATA_FILE
        tmp_path = backup_dir / f"{METADATA_FILE}.tmp"

        async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
            await f.write(metadata.to_json())

        await aiofiles.os.replace(tmp_path, final_path)

    async def _read_metadata(self, backup_dir: Path) -> Optional[Dict[str, Any]]:
        try:
            async with aiofiles.open(backup_dir / METADATA_FILE, 'r', encoding='utf-8') as f:
                data = json.loads(await f.read())
        except (OSError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    async def _collection_stats(self) -> List[CollectionInfo]:
        db = self.connection.get_database()
        stats = []

        for name in sorted(await db.list_collection_names()):
            if name.startswith("system."):
                continue
            try:
                result = await db.command("collStats", name)
                stats.append(CollectionInfo(
                    name=name,
                    count=result.get("count", 0),
                    size=result.get("size", 0)
                ))
            except PyMongoError as e:
                logger.warning(f"⚠️ No stats for {name}: {e}")
                stats.append(CollectionInfo(name=name))

        return stats

    async def _server_version(self) -> Optional[str]:
        try:
            info = await self.connection.get_database().command("buildInfo")
        except PyMongoError as e:
            logger.warning(f"⚠️ Could not read server version: {e}")
            return None
        return info.get("version")

    # ==================== EXPORT / IMPORT ====================

    async def export_collection(
        self,
        collection_name: str,
        query: Optional[Dict[str, Any]] = None,
        projection: Optional[Dict[str, Any]] = None,
        limit: int = 0
    ) -> Dict[str, Any]:
        """
        Export documents of one collection to a JSON envelope file.

        Returns:
            Dict with filename, path and count
        """
        query = query or {}
        projection = projection or {}

        logger.info(f"📤 Exporting collection: {collection_name}")

        collection = self.connection.get_database()[collection_name]
        cursor = collection.find(query, projection or None)
        if limit > 0:
            cursor = cursor.limit(limit)
        documents = await cursor.to_list(length=None)

        ensure_directory(self.backup_path)
        filename = f"{collection_name}_export_{filesystem_timestamp()}.json"
        path = self.backup_path / filename

        envelope = {
            "collection": collection_name,
            "exportedAt": utc_now().isoformat(),
            "query": query,
            "projection": projection,
            "count": len(documents),
            "documents": documents
        }

        async with aiofiles.open(path, 'w', encoding='utf-8') as f:
            await f.write(json_util.dumps(envelope, indent=2))

        logger.info(f"✅ Exported {len(documents)} document(s) to {filename}")

        return {
            "success": True,
            "filename": filename,
            "path": str(path),
            "count": len(documents)
        }

    async def import_collection(
        self,
        file_path: Union[str, Path],
        clear_existing: bool = False
    ) -> Dict[str, Any]:
        """
        Import an export envelope with an unordered bulk insert.

        Duplicate keys do not abort the batch; the result reports how
        many documents actually went in.

        Raises:
            ValueError: file is not an export envelope
        """
        logger.info(f"📥 Importing collection from: {file_path}")

        async with aiofiles.open(file_path, 'r', encoding='utf-8') as f:
            data = json_util.loads(await f.read())

        if (
            not isinstance(data, dict)
            or not isinstance(data.get("collection"), str)
            or not isinstance(data.get("documents"), list)
        ):
            raise ValueError("Invalid import file format")

        collection_name = data["collection"]
        documents = data["documents"]
        collection = self.connection.get_database()[collection_name]

        if clear_existing:
            logger.info(f"🗑️ Clearing existing data in {collection_name}")
            await collection.delete_many({})

        inserted = 0
        if documents:
            try:
                result = await collection.insert_many(documents, ordered=False)
                inserted = len(result.inserted_ids)
            except BulkWriteError as e:
                inserted = e.details.get("nInserted", 0)
                logger.warning(
                    f"⚠️ {len(e.details.get('writeErrors', []))} document(s) rejected "
                    f"while importing {collection_name}"
                )
        else:
            logger.warning(f"⚠️ No documents to import for {collection_name}")

        logger.info(f"✅ Imported {inserted}/{len(documents)} document(s) into {collection_name}")

        return {
            "success": True,
            "collection": collection_name,
            "inserted": inserted,
            "total": len(documents)
        }

    # ==================== CATALOG ====================

    async def list_backups(self) -> List[Dict[str, Any]]:
        """
        List backups, newest first.

        Metadata sidecars win where readable; otherwise the directory's
        mtime and size are used.
        """
        if not self.backup_path.is_dir():
            return []

        backups = []
        for entry in self.backup_path.iterdir():
            if not entry.is_dir():
                continue

            info: Dict[str, Any] = {"name": entry.name, "timestamp": None, "size": 0, "collections": []}
            metadata = await self._read_metadata(entry)

            if metadata is not None:
                info.update(metadata)
                # The directory is the catalog key; a copied sidecar may carry another name
                info["name"] = entry.name
                info["size"] = metadata.get("totalSizeBytes", 0)
            else:
                stat = entry.stat()
                info["timestamp"] = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat()
                info["size"] = _directory_size(entry)

            backups.append(info)

        return sorted(backups, key=lambda b: _parse_timestamp(b.get("timestamp")), reverse=True)

    async def delete_backup(self, name: str) -> bool:
        """
        Delete a backup directory.

        Returns:
            bool: False in production (nothing is deleted)

        Raises:
            BackupNotFoundError: no such backup
        """
        try:
            self._guard("delete_backup")
        except ProductionGuardError as e:
            logger.warning(f"🚫 {e}")
            return False

        backup_dir = self._backup_dir(name)
        if not backup_dir.is_dir():
            raise BackupNotFoundError(f"Backup not found: {name}")

        await asyncio.to_thread(shutil.rmtree, backup_dir)
        logger.info(f"🗑️ Backup deleted: {name}")
        return True

    async def apply_retention(self, keep: Optional[int] = None) -> List[str]:
        """
        Delete all but the newest `keep` backups.

        Returns:
            Names of deleted backups
        """
        if keep is None:
            keep = self.config.retention_count
        backups = await self.list_backups()
        deleted = []

        for backup in backups[keep:]:
            if await self.delete_backup(backup["name"]):
                deleted.append(backup["name"])

        if deleted:
            logger.info(f"🧹 Retention removed {len(deleted)} old backup(s)")
        return deleted
