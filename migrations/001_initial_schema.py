"""
Migration: Initial Schema Setup
Creates the users and trips collections with JSON schema validation
and their basic indexes.
"""

from database.registry import Migration

USERS_SCHEMA = {
    "$jsonSchema": {
        "bsonType": "object",
        "required": ["firebaseUid", "email"],
        "properties": {
            "firebaseUid": {
                "bsonType": "string",
                "description": "Firebase UID is required"
            },
            "email": {
                "bsonType": "string",
                "pattern": r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$",
                "description": "Valid email is required"
            },
            "profile": {
                "bsonType": "object",
                "properties": {
                    "displayName": {"bsonType": "string"},
                    "firstName": {"bsonType": "string"},
                    "lastName": {"bsonType": "string"},
                    "photoURL": {"bsonType": "string"}
                }
            },
            "isActive": {
                "bsonType": "bool",
                "description": "User active status"
            }
        }
    }
}

TRIPS_SCHEMA = {
    "$jsonSchema": {
        "bsonType": "object",
        "required": ["title", "owner"],
        "properties": {
            "title": {
                "bsonType": "string",
                "minLength": 1,
                "description": "Trip title is required"
            },
            "owner": {
                "bsonType": "objectId",
                "description": "Trip owner is required"
            },
            "status": {
                "bsonType": "string",
                "enum": ["planning", "booked", "completed", "cancelled"],
                "description": "Trip status must be valid"
            },
            "visibility": {
                "bsonType": "string",
                "enum": ["private", "shared", "public"],
                "description": "Trip visibility must be valid"
            }
        }
    }
}


class InitialSchemaMigration(Migration):
    description = "Create users and trips collections with validation"

    async def up(self, db) -> None:
        existing = set(await db.list_collection_names())

        for name, schema in (("users", USERS_SCHEMA), ("trips", TRIPS_SCHEMA)):
            if name in existing:
                await db.command("collMod", name, validator=schema)
            else:
                await db.create_collection(name, validator=schema)

        # Same names as the index table so create-all sees them as existing
        await db.users.create_index([("firebaseUid", 1)], unique=True, name="firebaseUid_unique")
        await db.users.create_index([("email", 1)], unique=True, name="email_unique")
        await db.trips.create_index([("owner", 1), ("createdAt", -1)], name="owner_createdAt")

    async def down(self, db) -> None:
        await db.drop_collection("trips")
        await db.drop_collection("users")
