"""Tests for database.index_manager."""

import pytest
from pymongo.errors import OperationFailure

from database.index_manager import INDEX_DEFINITIONS, IndexManager
from database.models import IndexDefinition


def definitions():
    return {
        "users": [
            IndexDefinition(name="email_unique", fields=[("email", 1)], unique=True),
            IndexDefinition(name="createdAt_desc", fields={"createdAt": -1}),
        ],
        "trips": [
            IndexDefinition(name="owner_createdAt", fields=[("owner", 1), ("createdAt", -1)]),
        ],
    }


class TestCreateAllIndexes:
    """Idempotent convergence with the definition table."""

    @pytest.mark.asyncio
    async def test_creates_every_defined_index(self, connection, fake_db):
        results = await IndexManager(connection, definitions()).create_all_indexes()

        assert [r["collection"] for r in results] == ["users", "trips"]
        assert all(r["success"] for r in results)
        assert set(fake_db.users.indexes) == {"_id_", "email_unique", "createdAt_desc"}
        assert fake_db.users.indexes["email_unique"]["unique"] is True
        # Compound key order is preserved
        assert fake_db.trips.indexes["owner_createdAt"]["key"] == [("owner", 1), ("createdAt", -1)]

    @pytest.mark.asyncio
    async def test_second_run_reports_already_exists(self, connection, fake_db):
        manager = IndexManager(connection, definitions())
        await manager.create_all_indexes()

        results = await manager.create_all_indexes()

        statuses = {i["status"] for r in results for i in r["indexes"]}
        assert statuses == {"already_exists"}
        assert all(r["success"] for r in results)
        assert len(fake_db.users.indexes) == 3

    @pytest.mark.asyncio
    async def test_conflicting_name_counts_as_existing(self, connection, fake_db):
        # Same key pattern under a different name: the server refuses with code 85
        await fake_db.users.create_index([("email", 1)], name="legacy_email")

        result = await IndexManager(connection, definitions()).create_collection_indexes("users")

        assert result["success"] is True
        assert {"name": "email_unique", "status": "already_exists"} in result["indexes"]

    @pytest.mark.asyncio
    async def test_other_failures_mark_collection_failed(self, connection, fake_db, monkeypatch):
        async def refuse(keys, name=None, **options):
            raise OperationFailure("not authorized", code=13)

        monkeypatch.setattr(fake_db.trips, "create_index", refuse)

        results = await IndexManager(connection, definitions()).create_all_indexes()
        by_collection = {r["collection"]: r for r in results}

        assert by_collection["users"]["success"] is True
        assert by_collection["trips"]["success"] is False
        assert by_collection["trips"]["indexes"][0]["status"] == "failed"

    def test_definitions_are_snapshotted(self, connection):
        source = definitions()
        manager = IndexManager(connection, source)

        source["users"].append(IndexDefinition(name="late", fields=[("late", 1)]))

        assert [d.name for d in manager.definitions["users"]] == ["email_unique", "createdAt_desc"]

    def test_default_table_names_are_unique_per_collection(self):
        for collection, items in INDEX_DEFINITIONS.items():
            names = [d.name for d in items]
            assert len(names) == len(set(names)), collection


class TestDropAndRebuild:

    @pytest.mark.asyncio
    async def test_drop_keeps_id_index(self, connection, fake_db):
        manager = IndexManager(connection, definitions())
        await manager.create_all_indexes()

        assert await manager.drop_collection_indexes("users") == 2
        assert list(fake_db.users.indexes) == ["_id_"]

    @pytest.mark.asyncio
    async def test_rebuild_recreates_defined_indexes(self, connection, fake_db):
        manager = IndexManager(connection, definitions())
        await fake_db.users.create_index([("stale", 1)], name="stale_index")

        result = await manager.rebuild_collection_indexes("users")

        assert result["success"] is True
        assert set(fake_db.users.indexes) == {"_id_", "email_unique", "createdAt_desc"}

    @pytest.mark.asyncio
    async def test_rebuild_unknown_collection(self, connection):
        with pytest.raises(ValueError):
            await IndexManager(connection, definitions()).rebuild_collection_indexes("nope")


class TestDiagnostics:
    """Inventory, usage and query plans."""

    @pytest.mark.asyncio
    async def test_index_stats_marks_missing_collections(self, connection):
        manager = IndexManager(connection, definitions())
        await manager.create_collection_indexes("users")

        stats = await manager.get_index_stats()

        assert stats["users"]["exists"] is True
        assert stats["users"]["total_indexes"] == 3
        assert stats["trips"] == {"exists": False, "total_indexes": 0, "indexes": []}

    @pytest.mark.asyncio
    async def test_usage_stats(self, connection, fake_db):
        manager = IndexManager(connection, definitions())
        await manager.create_all_indexes()
        fake_db.users.index_ops["email_unique"] = 42

        usage = await manager.get_index_usage_stats()

        ops = {entry["name"]: entry["ops"] for entry in usage["users"]}
        assert ops["email_unique"] == 42
        assert ops["createdAt_desc"] == 0

    @pytest.mark.asyncio
    async def test_usage_stats_unavailable(self, connection, fake_db):
        manager = IndexManager(connection, definitions())
        await manager.create_all_indexes()
        fake_db.index_stats_supported = False

        usage = await manager.get_index_usage_stats()

        assert usage == {"users": [], "trips": []}

    @pytest.mark.asyncio
    async def test_collection_scan_gets_suggestions(self, connection, fake_db):
        fake_db.explain_result = {
            "queryPlanner": {"winningPlan": {"stage": "COLLSCAN"}},
            "executionStats": {
                "nReturned": 2,
                "totalDocsExamined": 500,
                "executionTimeMillis": 250,
                "executionStages": {"stage": "COLLSCAN"}
            }
        }

        analysis = await IndexManager(connection, definitions()).analyze_query_performance(
            "trips", {"status": "planning"}
        )

        assert analysis["index_used"] == "COLLSCAN"
        assert analysis["is_optimal"] is False
        assert len(analysis["suggestions"]) == 3
        assert "status" in analysis["suggestions"][0]

    @pytest.mark.asyncio
    async def test_index_scan_is_optimal(self, connection, fake_db):
        fake_db.explain_result = {
            "executionStats": {
                "nReturned": 3,
                "totalDocsExamined": 3,
                "executionTimeMillis": 1,
                "executionStages": {
                    "stage": "FETCH",
                    "inputStage": {"stage": "IXSCAN", "indexName": "owner_createdAt"}
                }
            }
        }

        analysis = await IndexManager(connection, definitions()).analyze_query_performance(
            "trips", {"owner": "u1"}, {"sort": {"createdAt": -1}, "limit": 10}
        )

        assert analysis["index_used"] == "owner_createdAt"
        assert analysis["is_optimal"] is True
        assert analysis["suggestions"] == []
        name, args, kwargs = fake_db.commands[-1]
        assert args[0]["sort"] == {"createdAt": -1}
        assert kwargs == {"verbosity": "executionStats"}
