"""
Index Manager
=============
Converges the database's indexes with a central definition table and
provides index diagnostics.

The table is loaded once per manager and never changes at runtime;
changing indexes means shipping a new definition table.
"""

from typing import Optional, List, Dict, Any, Mapping, Sequence

from pymongo.errors import OperationFailure, PyMongoError

from utils.logger import get_logger

from .connection import ConnectionManager
from .errors import IndexConflictError
from .models import IndexDefinition

logger = get_logger(__name__)

# Server error codes meaning "an equivalent or same-named index exists"
INDEX_CONFLICT_CODES = {68, 85, 86}

COLLECTION_SCAN = "COLLSCAN"
SLOW_QUERY_MS = 100
EXAMINED_RATIO_LIMIT = 10


def _index(name: str, *fields, unique: bool = False, sparse: bool = False) -> IndexDefinition:
    return IndexDefinition(name=name, fields=fields, unique=unique, sparse=sparse)


INDEX_DEFINITIONS: Dict[str, List[IndexDefinition]] = {
    "users": [
        _index("firebaseUid_unique", ("firebaseUid", 1), unique=True),
        _index("email_unique", ("email", 1), unique=True),
        _index("createdAt_desc", ("createdAt", -1)),
        _index("lastLoginAt_desc", ("lastLoginAt", -1)),
        _index("isActive_asc", ("isActive", 1)),
        _index("location_country", ("profile.location.country", 1)),
        _index("budget_currency", ("preferences.budgetRange.currency", 1)),
    ],
    "trips": [
        _index("owner_createdAt", ("owner", 1), ("createdAt", -1)),
        _index("collaborators_userId", ("collaborators.userId", 1)),
        _index("destination_name", ("destination.name", 1)),
        _index("destination_country", ("destination.country", 1)),
        _index("dates_range", ("dates.start", 1), ("dates.end", 1)),
        _index("status", ("status", 1)),
        _index("tags", ("tags", 1)),
        _index("visibility", ("visibility", 1)),
        _index("owner_status_createdAt", ("owner", 1), ("status", 1), ("createdAt", -1)),
        _index("collaborators_status", ("collaborators.userId", 1), ("status", 1)),
        _index("budget_total", ("budget.total", 1)),
        _index("budget_currency", ("budget.currency", 1)),
        _index("updatedAt_desc", ("updatedAt", -1)),
    ],
    "aiinteractions": [
        _index("userId_createdAt", ("userId", 1), ("createdAt", -1)),
        _index("agentRole", ("agentRole", 1)),
        _index("tripId", ("tripId", 1)),
        _index("createdAt_desc", ("createdAt", -1)),
    ],
    "migrations": [
        _index("version_unique", ("version", 1), unique=True),
        _index("appliedAt_desc", ("appliedAt", -1)),
    ],
}


class IndexManager:
    """
    Declarative index management.

    Features:
        ✅ Idempotent create-all (existing indexes count as success)
        ✅ Drop and rebuild per collection
        ✅ Index inventory and usage counters
        ✅ Read-only query plan analysis
    """

    def __init__(
        self,
        connection: ConnectionManager,
        definitions: Optional[Mapping[str, Sequence[IndexDefinition]]] = None
    ):
        self.connection = connection
        source = INDEX_DEFINITIONS if definitions is None else definitions
        # Snapshot: later edits to the source mapping do not leak in
        self.definitions: Dict[str, tuple] = {
            collection: tuple(items) for collection, items in source.items()
        }
        logger.debug(f"📋 Loaded index definitions for {len(self.definitions)} collections")

    # ==================== CREATE ====================

    async def create_all_indexes(self) -> List[Dict[str, Any]]:
        """
        Create every defined index.

        Returns:
            One entry per collection: {collection, success, indexes}
        """
        logger.info("🔨 Creating database indexes...")
        results = []

        for collection_name in self.definitions:
            results.append(await self.create_collection_indexes(collection_name))

        created = sum(
            1 for result in results for index in result["indexes"] if index["status"] == "created"
        )
        existing = sum(
            1 for result in results for index in result["indexes"] if index["status"] == "already_exists"
        )
        failed = [result["collection"] for result in results if not result["success"]]

        if failed:
            logger.warning(f"⚠️ Index creation failed for: {', '.join(failed)}")
        logger.info(f"✅ Indexes ready: {created} created, {existing} already existed")

        return results

    async def create_collection_indexes(self, collection_name: str) -> Dict[str, Any]:
        """Create the defined indexes of one collection."""
        definitions = self._definitions_for(collection_name)
        collection = self.connection.get_database()[collection_name]

        try:
            existing = set(await collection.index_information())
        except PyMongoError as e:
            logger.error(f"❌ Cannot read indexes of {collection_name}: {e}")
            return {
                "collection": collection_name,
                "success": False,
                "indexes": [],
                "error": str(e)
            }

        indexes = []
        for definition in definitions:
            if definition.name in existing:
                indexes.append({"name": definition.name, "status": "already_exists"})
                continue

            try:
                await self._create_index(collection, definition)
                indexes.append({"name": definition.name, "status": "created"})
                logger.debug(f"📇 {collection_name}.{definition.name} created")
            except IndexConflictError:
                indexes.append({"name": definition.name, "status": "already_exists"})
            except PyMongoError as e:
                logger.error(f"❌ Failed to create {collection_name}.{definition.name}: {e}")
                indexes.append({"name": definition.name, "status": "failed", "error": str(e)})

        return {
            "collection": collection_name,
            "success": all(index["status"] != "failed" for index in indexes),
            "indexes": indexes
        }

    async def _create_index(self, collection, definition: IndexDefinition) -> None:
        try:
            await collection.create_index(definition.keys, **definition.index_options())
        except OperationFailure as e:
            if e.code in INDEX_CONFLICT_CODES or "already exists" in str(e):
                raise IndexConflictError(str(e), name=definition.name) from e
            raise

    # ==================== DROP / REBUILD ====================

    async def drop_collection_indexes(self, collection_name: str) -> int:
        """
        Drop every index of a collection except `_id_`.

        Returns:
            int: Number of indexes dropped
        """
        collection = self.connection.get_database()[collection_name]
        dropped = 0

        for name in await collection.index_information():
            if name == "_id_":
                continue
            await collection.drop_index(name)
            dropped += 1

        logger.info(f"🗑️ Dropped {dropped} index(es) on {collection_name}")
        return dropped

    async def rebuild_collection_indexes(self, collection_name: str) -> Dict[str, Any]:
        """Drop and recreate the defined indexes of one collection."""
        self._definitions_for(collection_name)

        logger.info(f"🔄 Rebuilding indexes on {collection_name}")
        await self.drop_collection_indexes(collection_name)
        return await self.create_collection_indexes(collection_name)

    def _definitions_for(self, collection_name: str) -> tuple:
        try:
            return self.definitions[collection_name]
        except KeyError:
            raise ValueError(f"No index definitions for collection: {collection_name}") from None

    # ==================== DIAGNOSTICS ====================

    async def get_index_stats(self) -> Dict[str, Dict[str, Any]]:
        """
        Index inventory per defined collection.

        A missing collection is reported with `exists: False`.
        """
        db = self.connection.get_database()
        names = set(await db.list_collection_names())
        stats = {}

        for collection_name in self.definitions:
            if collection_name not in names:
                stats[collection_name] = {"exists": False, "total_indexes": 0, "indexes": []}
                continue

            info = await db[collection_name].index_information()
            stats[collection_name] = {
                "exists": True,
                "total_indexes": len(info),
                "indexes": [
                    {
                        "name": name,
                        "keys": spec.get("key", []),
                        "unique": spec.get("unique", False),
                        "sparse": spec.get("sparse", False)
                    }
                    for name, spec in info.items()
                ]
            }

        return stats

    async def get_index_usage_stats(self) -> Dict[str, List[Dict[str, Any]]]:
        """
        Per-index access counters since the last server restart.

        Returns:
            {collection: [{name, ops, since}]}
        """
        db = self.connection.get_database()
        names = set(await db.list_collection_names())
        usage = {}

        for collection_name in self.definitions:
            if collection_name not in names:
                usage[collection_name] = []
                continue

            try:
                cursor = db[collection_name].aggregate([{"$indexStats": {}}])
                entries = await cursor.to_list(length=None)
            except OperationFailure as e:
                logger.warning(f"⚠️ $indexStats unavailable for {collection_name}: {e}")
                usage[collection_name] = []
                continue

            usage[collection_name] = [
                {
                    "name": entry.get("name"),
                    "ops": int(entry.get("accesses", {}).get("ops", 0)),
                    "since": entry.get("accesses", {}).get("since")
                }
                for entry in entries
            ]

        return usage

    async def analyze_query_performance(
        self,
        collection_name: str,
        query: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Explain a find query with execution statistics.

        Args:
            collection_name: Collection to query
            query: Find filter
            options: Optional `sort`, `projection`, `limit`

        Returns:
            Dict with index used, documents examined/returned,
            execution time and suggestions
        """
        options = options or {}
        find_command: Dict[str, Any] = {"find": collection_name, "filter": query}
        for key in ("sort", "projection", "limit"):
            if options.get(key) is not None:
                find_command[key] = options[key]

        db = self.connection.get_database()
        explanation = await db.command("explain", find_command, verbosity="executionStats")

        stats = explanation.get("executionStats", {})
        index_used = (
            _find_index_name(stats.get("executionStages", {}))
            or _find_index_name(explanation.get("queryPlanner", {}).get("winningPlan", {}))
            or COLLECTION_SCAN
        )

        examined = stats.get("totalDocsExamined", 0)
        returned = stats.get("nReturned", stats.get("totalDocsReturned", 0))
        execution_ms = stats.get("executionTimeMillis", 0)

        suggestions = []
        if index_used == COLLECTION_SCAN:
            fields = ", ".join(query.keys()) or "the queried fields"
            suggestions.append(f"Consider adding an index on {fields} for this query pattern")
        if examined > returned * EXAMINED_RATIO_LIMIT:
            suggestions.append("Query examines too many documents, consider more selective indexes")
        if execution_ms > SLOW_QUERY_MS:
            suggestions.append("Query execution time is high, consider index optimization")

        return {
            "collection": collection_name,
            "query": query,
            "index_used": index_used,
            "docs_examined": examined,
            "docs_returned": returned,
            "execution_time_ms": execution_ms,
            "is_optimal": index_used != COLLECTION_SCAN and examined == returned,
            "suggestions": suggestions
        }


def _find_index_name(stage: Any) -> Optional[str]:
    """Depth-first search of a plan tree for the first index used."""
    if isinstance(stage, dict):
        if stage.get("indexName"):
            return stage["indexName"]
        for value in stage.values():
            found = _find_index_name(value)
            if found:
                return found
    elif isinstance(stage, list):
        for item in stage:
            found = _find_index_name(item)
            if found:
                return found
    return None
