"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 8 sample riders
  - 10 sample drivers (spread around downtown Philadelphia, most online)
  - 3 promo codes: SAVE10 (10%, max 5.00), FLAT5 (5.00 off fares >= 15.00)
    and an expired OLD20
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import text

from rideswift.config import settings
from rideswift.domain.enums import DiscountType, DriverStatus, RideTier
from rideswift.domain.matching import driver_h3_cell
from rideswift.infrastructure.database import async_session_factory, engine
from rideswift.infrastructure.models import DriverModel, PromoCodeModel, UserModel

# City Hall, Philadelphia (approx)
CENTRE_LAT, CENTRE_LNG = 39.9526, -75.1652


RIDERS = [
    {"name": "Aarav Sharma", "email": "aarav@example.com"},
    {"name": "Priya Patel", "email": "priya@example.com"},
    {"name": "Rohan Mehta", "email": "rohan@example.com"},
    {"name": "Sneha Gupta", "email": "sneha@example.com"},
    {"name": "Vikram Singh", "email": "vikram@example.com"},
    {"name": "Ananya Reddy", "email": "ananya@example.com"},
    {"name": "Karan Joshi", "email": "karan@example.com"},
    {"name": "Meera Nair", "email": "meera@example.com"},
]

DRIVERS = [
    {"name": "Sam Carter", "tier": RideTier.ECONOMY, "lat": 39.9550, "lng": -75.1640, "status": DriverStatus.ONLINE},
    {"name": "Lee Brooks", "tier": RideTier.ECONOMY, "lat": 39.9490, "lng": -75.1700, "status": DriverStatus.ONLINE},
    {"name": "Noor Haddad", "tier": RideTier.ECONOMY, "lat": 39.9610, "lng": -75.1550, "status": DriverStatus.ONLINE},
    {"name": "Jo Kim", "tier": RideTier.PREMIUM, "lat": 39.9500, "lng": -75.1600, "status": DriverStatus.ONLINE},
    {"name": "Ravi Das", "tier": RideTier.PREMIUM, "lat": 39.9700, "lng": -75.1800, "status": DriverStatus.OFFLINE},
    {"name": "Ada Okafor", "tier": RideTier.SUV, "lat": 39.9450, "lng": -75.1500, "status": DriverStatus.ONLINE},
    {"name": "Tom Reyes", "tier": RideTier.SUV, "lat": 39.9800, "lng": -75.2000, "status": DriverStatus.ONLINE},
    {"name": "Mia Novak", "tier": RideTier.AUTO, "lat": 39.9530, "lng": -75.1660, "status": DriverStatus.ONLINE},
    {"name": "Eli Stone", "tier": None, "lat": 39.9400, "lng": -75.1900, "status": DriverStatus.ONLINE},
    {"name": "Gus Lund", "tier": RideTier.ECONOMY, "lat": 40.0500, "lng": -75.3000, "status": DriverStatus.ONLINE},
]


def promo_codes(now: datetime) -> list[PromoCodeModel]:
    return [
        PromoCodeModel(
            code="SAVE10",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=10.0,
            max_discount=5.0,
            expires_at=now + timedelta(days=90),
            usage_limit=1000,
        ),
        PromoCodeModel(
            code="FLAT5",
            discount_type=DiscountType.FIXED,
            discount_value=5.0,
            min_fare=15.0,
            expires_at=now + timedelta(days=30),
            usage_limit=100,
        ),
        PromoCodeModel(
            code="OLD20",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=20.0,
            expires_at=now - timedelta(days=1),
            usage_limit=100,
        ),
    ]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Riders ────────────────────────────────────────────────────
        session.add_all(UserModel(name=r["name"], email=r["email"]) for r in RIDERS)
        await session.flush()
        print(f"  Created {len(RIDERS)} riders")

        # ── Drivers ───────────────────────────────────────────────────
        for i, d in enumerate(DRIVERS, start=1):
            user = UserModel(name=d["name"], email=f"driver{i}@example.com")
            session.add(user)
            await session.flush()
            session.add(
                DriverModel(
                    user_id=user.id,
                    status=d["status"],
                    vehicle_type=d["tier"],
                    current_lat=d["lat"],
                    current_lng=d["lng"],
                    h3_cell=driver_h3_cell(d["lat"], d["lng"], settings.h3_resolution),
                )
            )
        await session.flush()
        print(f"  Created {len(DRIVERS)} drivers")

        # ── Promo codes ───────────────────────────────────────────────
        promos = promo_codes(datetime.now(timezone.utc))
        session.add_all(promos)
        print(f"  Created {len(promos)} promo codes")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
