"""
Migration: Add User Preferences Schema
Backfills default preferences, settings and stats on users that have
none, and indexes the preference fields.
"""

from pymongo.errors import OperationFailure

from database.registry import Migration
from utils.helpers import utc_now
from utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_PREFERENCES = {
    "budgetRange": {"min": 500, "max": 2000, "currency": "USD"},
    "travelStyle": ["budget"],
    "interests": [],
    "accommodationPreferences": [],
    "transportationPreferences": [],
    "dietaryRestrictions": [],
    "accessibility": []
}

DEFAULT_SETTINGS = {
    "notifications": {
        "email": True,
        "push": True,
        "tripUpdates": True,
        "priceAlerts": False
    },
    "privacy": {
        "profileVisibility": "public",
        "tripVisibility": "private",
        "allowInvitations": True
    },
    "ai": {
        "personalizationEnabled": True,
        "dataUsageConsent": False,
        "learningFromHistory": True
    }
}

DEFAULT_STATS = {
    "tripsPlanned": 0,
    "tripsCompleted": 0,
    "totalBudgetSaved": 0,
    "favoriteDestinations": [],
    "averageTripDuration": 7
}

PREFERENCE_INDEXES = ("budget_currency", "preferences_travelStyle")


class AddUserPreferencesMigration(Migration):
    description = "Default preferences, settings and stats for users"

    async def up(self, db) -> None:
        result = await db.users.update_many(
            {"preferences": {"$exists": False}},
            {
                "$set": {
                    "preferences": DEFAULT_PREFERENCES,
                    "settings": DEFAULT_SETTINGS,
                    "stats": DEFAULT_STATS,
                    "updatedAt": utc_now()
                }
            }
        )
        logger.info(f"✅ Updated {result.modified_count} users with default preferences")

        await db.users.create_index([("preferences.budgetRange.currency", 1)], name="budget_currency")
        await db.users.create_index([("preferences.travelStyle", 1)], name="preferences_travelStyle")

    async def down(self, db) -> None:
        await db.users.update_many(
            {},
            {"$unset": {"preferences": 1, "settings": 1, "stats": 1}}
        )

        for name in PREFERENCE_INDEXES:
            try:
                await db.users.drop_index(name)
            except OperationFailure as e:
                logger.debug(f"Index {name} not dropped: {e}")
