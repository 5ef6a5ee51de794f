"""
Seed: Development Users
Three named users for local testing. Skipped when users already exist.
"""

from datetime import datetime, timedelta, timezone

from database.registry import Seed
from utils.helpers import utc_now
from utils.logger import get_logger

logger = get_logger(__name__)


def _settings(push: bool, price_alerts: bool, profile: str, trips: str) -> dict:
    return {
        "notifications": {
            "email": True,
            "push": push,
            "tripUpdates": True,
            "priceAlerts": price_alerts
        },
        "privacy": {
            "profileVisibility": profile,
            "tripVisibility": trips,
            "allowInvitations": True
        },
        "ai": {
            "personalizationEnabled": True,
            "dataUsageConsent": True,
            "learningFromHistory": True
        }
    }


def development_users() -> list:
    now = utc_now()

    return [
        {
            "firebaseUid": "dev-user-1",
            "email": "john.doe@wayra.dev",
            "profile": {
                "displayName": "John Doe",
                "firstName": "John",
                "lastName": "Doe",
                "photoURL": "https://api.dicebear.com/7.x/avataaars/svg?seed=john",
                "phoneNumber": "+1-555-0101",
                "location": {"country": "USA", "city": "San Francisco", "timezone": "America/Los_Angeles"}
            },
            "preferences": {
                "budgetRange": {"min": 1000, "max": 3000, "currency": "USD"},
                "travelStyle": ["adventure", "cultural"],
                "interests": ["food", "culture", "nature", "adventure"],
                "accommodationPreferences": ["hotel", "airbnb"],
                "transportationPreferences": ["flight", "train"],
                "dietaryRestrictions": [],
                "accessibility": []
            },
            "settings": _settings(push=True, price_alerts=True, profile="public", trips="friends"),
            "stats": {
                "tripsPlanned": 5,
                "tripsCompleted": 3,
                "totalBudgetSaved": 1200,
                "favoriteDestinations": ["Paris", "Tokyo"],
                "averageTripDuration": 8
            },
            "createdAt": datetime(2024, 1, 15, tzinfo=timezone.utc),
            "updatedAt": now,
            "lastLoginAt": now,
            "isActive": True
        },
        {
            "firebaseUid": "dev-user-2",
            "email": "jane.smith@wayra.dev",
            "profile": {
                "displayName": "Jane Smith",
                "firstName": "Jane",
                "lastName": "Smith",
                "photoURL": "https://api.dicebear.com/7.x/avataaars/svg?seed=jane",
                "phoneNumber": "+1-555-0102",
                "location": {"country": "Canada", "city": "Toronto", "timezone": "America/Toronto"}
            },
            "preferences": {
                "budgetRange": {"min": 800, "max": 2500, "currency": "CAD"},
                "travelStyle": ["luxury", "relaxation"],
                "interests": ["food", "relaxation", "culture"],
                "accommodationPreferences": ["hotel", "resort"],
                "transportationPreferences": ["flight"],
                "dietaryRestrictions": ["vegetarian"],
                "accessibility": []
            },
            "settings": _settings(push=False, price_alerts=False, profile="friends", trips="private"),
            "stats": {
                "tripsPlanned": 3,
                "tripsCompleted": 2,
                "totalBudgetSaved": 800,
                "favoriteDestinations": ["Bali", "Maldives"],
                "averageTripDuration": 10
            },
            "createdAt": datetime(2024, 2, 20, tzinfo=timezone.utc),
            "updatedAt": now,
            "lastLoginAt": now - timedelta(days=1),
            "isActive": True
        },
        {
            "firebaseUid": "dev-user-3",
            "email": "alex.wilson@wayra.dev",
            "profile": {
                "displayName": "Alex Wilson",
                "firstName": "Alex",
                "lastName": "Wilson",
                "photoURL": "https://api.dicebear.com/7.x/avataaars/svg?seed=alex",
                "phoneNumber": "+44-20-7946-0958",
                "location": {"country": "UK", "city": "London", "timezone": "Europe/London"}
            },
            "preferences": {
                "budgetRange": {"min": 600, "max": 1800, "currency": "GBP"},
                "travelStyle": ["budget", "adventure"],
                "interests": ["adventure", "nature", "culture"],
                "accommodationPreferences": ["hostel", "airbnb"],
                "transportationPreferences": ["train", "bus"],
                "dietaryRestrictions": [],
                "accessibility": []
            },
            "settings": _settings(push=True, price_alerts=True, profile="public", trips="public"),
            "stats": {
                "tripsPlanned": 8,
                "tripsCompleted": 6,
                "totalBudgetSaved": 2100,
                "favoriteDestinations": ["Barcelona", "Prague", "Budapest"],
                "averageTripDuration": 5
            },
            "createdAt": datetime(2023, 11, 10, tzinfo=timezone.utc),
            "updatedAt": now,
            "lastLoginAt": now - timedelta(days=3),
            "isActive": True
        }
    ]


class DevelopmentUsersSeed(Seed):
    description = "Creates development test users for local testing"
    environments = ("development", "test")
    required = True

    async def seed(self, db) -> None:
        existing = await db.users.count_documents({})
        if existing > 0:
            logger.info(f"⏭️ Skipping user creation, {existing} users already exist")
            return

        users = development_users()
        result = await db.users.insert_many(users)
        logger.info(f"✅ Inserted {len(result.inserted_ids)} development users")

        for user in users:
            logger.debug(f"   - {user['profile']['displayName']} ({user['email']})")
