"""
Seed: Sample Trips
A few trips owned by the development users. Development only.
"""

from datetime import datetime, timezone

from database.fixtures import budget_breakdown
from database.registry import Seed
from utils.logger import get_logger

logger = get_logger(__name__)

DEV_EMAIL_PATTERN = r"@wayra\.dev$"


def _day(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


def sample_trips(users: list) -> list:
    """Trips for up to three owners, round-robin over `users`."""
    def owner(i: int):
        return users[i % len(users)]["_id"]

    trips = [
        {
            "title": "European Adventure",
            "description": "A 2-week journey through the best of Europe",
            "destination": {
                "name": "Paris, France",
                "country": "France",
                "coordinates": {"lat": 48.8566, "lng": 2.3522}
            },
            "dates": {"start": _day(2025, 6, 15), "end": _day(2025, 6, 29), "flexible": False},
            "total": 2800,
            "travelers": {"adults": 2, "children": 0, "infants": 0},
            "owner": owner(0),
            "visibility": "shared",
            "tags": ["europe", "culture", "adventure"],
            "createdAt": _day(2025, 1, 20)
        },
        {
            "title": "Tokyo Food & Culture Tour",
            "description": "Exploring the culinary delights and rich culture of Tokyo",
            "destination": {
                "name": "Tokyo, Japan",
                "country": "Japan",
                "coordinates": {"lat": 35.6762, "lng": 139.6503}
            },
            "dates": {"start": _day(2025, 9, 10), "end": _day(2025, 9, 17), "flexible": True},
            "total": 2200,
            "travelers": {"adults": 1, "children": 0, "infants": 0},
            "owner": owner(1),
            "visibility": "private",
            "tags": ["japan", "food", "culture", "solo"],
            "createdAt": _day(2025, 1, 21)
        },
        {
            "title": "Budget Backpacking Europe",
            "description": "Low-cost adventure through Eastern Europe",
            "destination": {
                "name": "Prague, Czech Republic",
                "country": "Czech Republic",
                "coordinates": {"lat": 50.0755, "lng": 14.4378}
            },
            "dates": {"start": _day(2025, 7, 1), "end": _day(2025, 7, 21), "flexible": True},
            "total": 1200,
            "travelers": {"adults": 1, "children": 0, "infants": 0},
            "owner": owner(2),
            "visibility": "public",
            "tags": ["europe", "budget", "backpacking", "solo"],
            "createdAt": _day(2025, 1, 19)
        }
    ]

    documents = []
    for trip in trips:
        total = trip.pop("total")
        documents.append({
            **trip,
            "budget": {
                "total": total,
                "currency": "USD",
                "breakdown": budget_breakdown(total),
                "spent": 0,
                "remaining": total
            },
            "collaborators": [],
            "status": "planning",
            "activityLog": [{
                "userId": trip["owner"],
                "action": "created_trip",
                "details": {"title": trip["title"]},
                "timestamp": trip["createdAt"]
            }],
            "bookings": [],
            "updatedAt": trip["createdAt"]
        })

    # The first trip is shared with the second user
    if len(users) > 1:
        documents[0]["collaborators"].append({
            "userId": users[1]["_id"],
            "role": "editor",
            "invitedBy": users[0]["_id"],
            "invitedAt": _day(2025, 1, 20),
            "acceptedAt": _day(2025, 1, 21),
            "permissions": ["view", "edit", "comment"]
        })

    return documents


class SampleTripsSeed(Seed):
    description = "Creates sample trips for development users"
    environments = ("development",)
    required = False

    async def seed(self, db) -> None:
        existing = await db.trips.count_documents({})
        if existing > 0:
            logger.info(f"⏭️ Skipping trip creation, {existing} trips already exist")
            return

        users = await db.users.find({"email": {"$regex": DEV_EMAIL_PATTERN}}).to_list(length=None)
        if not users:
            logger.warning("⚠️ No development users found, skipping trip creation")
            return

        trips = sample_trips(users)
        result = await db.trips.insert_many(trips)
        logger.info(f"✅ Inserted {len(result.inserted_ids)} sample trips")
