"""
Database seeding script for initial users.

Creates an ADMIN user and a demo customer for development, through the
same provisioning path as the identity webhook (welcome bonus included).
Run this script after database is set up but before first use.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.core.jwt import token_for_user
from backend.app.models.enums import UserRole
from backend.app.services.user_provisioning import provision_user

SEED_USERS = [
    {
        "external_id": "seed|admin",
        "email": "admin@celestiarcana.com",
        "username": "admin",
        "email_verified": True,
        "role": UserRole.ADMIN,
    },
    {
        "external_id": "seed|demo",
        "email": "demo@celestiarcana.com",
        "username": "demo",
        "email_verified": True,
        "role": UserRole.USER,
    },
]


async def seed_users():
    """
    Seed initial users with different roles.

    Creates:
    - 1 ADMIN user
    - 1 USER (demo customer)

    Prints a development bearer token for each.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting user seeding...")

        for seed in SEED_USERS:
            user, created = await provision_user(db, **seed)
            if created:
                print(f"✅ Created {user.role.value} user (username: {user.username}, referral code: {user.referral_code})")
            else:
                print(f"ℹ️  {user.username} already exists, skipping")

            token = token_for_user(user.id, user.username, user.role.value, user.email_verified)
            print(f"   Token: {token}")

        print("\n🎉 User seeding completed successfully!")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_users())
