"""
Fixture Generators
==================
Builds plausible user and trip documents for non-production seeding.
Nothing here touches the database; callers decide what to insert.

Pass a seeded `random.Random` for reproducible output.
"""

import copy
import random
from datetime import timedelta
from typing import Optional, List, Dict, Any, Sequence

from utils.helpers import utc_now

COUNTRIES = ['USA', 'Canada', 'UK', 'Germany', 'France']
CITIES = ['New York', 'Toronto', 'London', 'Berlin', 'Paris']
TRAVEL_STYLES = ['budget', 'luxury', 'adventure', 'cultural']
INTERESTS = ['food', 'culture', 'nature', 'adventure', 'relaxation']
TRIP_STATUSES = ['planning', 'booked', 'completed']

DESTINATIONS = [
    {"name": "Paris, France", "country": "France", "coordinates": {"lat": 48.8566, "lng": 2.3522}},
    {"name": "Tokyo, Japan", "country": "Japan", "coordinates": {"lat": 35.6762, "lng": 139.6503}},
    {"name": "New York, USA", "country": "USA", "coordinates": {"lat": 40.7128, "lng": -74.0060}},
    {"name": "London, UK", "country": "UK", "coordinates": {"lat": 51.5074, "lng": -0.1278}},
    {"name": "Barcelona, Spain", "country": "Spain", "coordinates": {"lat": 41.3851, "lng": 2.1734}},
    {"name": "Rome, Italy", "country": "Italy", "coordinates": {"lat": 41.9028, "lng": 12.4964}},
    {"name": "Bangkok, Thailand", "country": "Thailand", "coordinates": {"lat": 13.7563, "lng": 100.5018}},
    {"name": "Sydney, Australia", "country": "Australia", "coordinates": {"lat": -33.8688, "lng": 151.2093}},
]

# Share of the total budget per category; the remainder goes to miscellaneous
BUDGET_SPLIT = {
    "accommodation": 0.4,
    "transportation": 0.3,
    "food": 0.2,
    "activities": 0.1,
}


def budget_breakdown(total: int) -> Dict[str, int]:
    """
    Split a budget into whole-unit categories that sum to `total`.

    Examples:
        >>> sum(budget_breakdown(1999).values())
        1999
    """
    breakdown = {category: int(total * share) for category, share in BUDGET_SPLIT.items()}
    breakdown["miscellaneous"] = total - sum(breakdown.values())
    return breakdown


def generate_test_users(count: int = 10, rng: Optional[random.Random] = None) -> List[Dict[str, Any]]:
    """
    Generate user documents.

    Args:
        count: Number of users
        rng: Random source

    Returns:
        List of user documents with unique firebaseUid and email
    """
    rng = rng or random.Random()
    now = utc_now()
    users = []

    for i in range(1, count + 1):
        budget_min = 500 + i * 100
        users.append({
            "firebaseUid": f"test-user-{i}",
            "email": f"testuser{i}@wayra.dev",
            "profile": {
                "displayName": f"Test User {i}",
                "firstName": f"Test{i}",
                "lastName": "User",
                "photoURL": f"https://api.dicebear.com/7.x/avataaars/svg?seed=test{i}",
                "location": {
                    "country": COUNTRIES[i % len(COUNTRIES)],
                    "city": CITIES[i % len(CITIES)],
                    "timezone": "UTC"
                }
            },
            "preferences": {
                "budgetRange": {
                    "min": budget_min,
                    "max": 2000 + i * 200,
                    "currency": "USD"
                },
                "travelStyle": TRAVEL_STYLES[i % len(TRAVEL_STYLES)],
                "interests": INTERESTS[:(i % 3) + 2]
            },
            "settings": {
                "notifications": {
                    "email": True,
                    "push": i % 2 == 0,
                    "tripUpdates": True,
                    "priceAlerts": i % 3 == 0
                },
                "privacy": {
                    "profileVisibility": "public",
                    "tripVisibility": "friends",
                    "allowInvitations": True
                },
                "ai": {
                    "personalizationEnabled": True,
                    "dataUsageConsent": True,
                    "learningFromHistory": True
                }
            },
            "stats": {
                "tripsPlanned": rng.randint(0, 9),
                "tripsCompleted": rng.randint(0, 4),
                "totalBudgetSaved": rng.randint(0, 999),
                "favoriteDestinations": [],
                "averageTripDuration": 7
            },
            "createdAt": now - timedelta(days=rng.uniform(0, 365)),
            "updatedAt": now,
            "lastLoginAt": now - timedelta(days=rng.uniform(0, 30)),
            "isActive": True
        })

    return users


def generate_test_trips(
    user_ids: Sequence[Any],
    count: int = 20,
    rng: Optional[random.Random] = None
) -> List[Dict[str, Any]]:
    """
    Generate trip documents owned by `user_ids` in round-robin order.

    Every trip ends 3 to 16 days after it starts and its budget
    breakdown sums to the total.

    Raises:
        ValueError: when no owners are given
    """
    if not user_ids:
        raise ValueError("At least one user id is required to generate trips")

    rng = rng or random.Random()
    now = utc_now()
    trips = []

    for i in range(1, count + 1):
        destination = DESTINATIONS[i % len(DESTINATIONS)]
        start = now + timedelta(days=rng.uniform(0, 365))
        duration = rng.randint(3, 16)
        end = start + timedelta(days=duration)
        total = rng.randint(1000, 5999)

        trips.append({
            "title": f"Trip to {destination['name']} {i}",
            "description": f"Exploring the beautiful city of {destination['name']}",
            "destination": copy.deepcopy(destination),
            "dates": {
                "start": start,
                "end": end,
                "flexible": rng.random() > 0.7
            },
            "budget": {
                "total": total,
                "currency": "USD",
                "breakdown": budget_breakdown(total),
                "spent": 0,
                "remaining": total
            },
            "travelers": {
                "adults": rng.randint(1, 4),
                "children": rng.randint(0, 2),
                "infants": 0
            },
            "owner": user_ids[i % len(user_ids)],
            "collaborators": [],
            "status": rng.choice(TRIP_STATUSES),
            "visibility": "private",
            "tags": ["vacation", "travel", destination["country"].lower()],
            "createdAt": now - timedelta(days=rng.uniform(0, 90)),
            "updatedAt": now
        })

    return trips
