"""
Database seeding script for initial users.

Creates one ADMIN, one USER and one DELIVERY_MAN account for local
development. Run this script after the database is set up but before first
use.
"""

import asyncio

from parcel_backend.app.db.session import AsyncSessionLocal, engine, Base
from parcel_backend.app.models.enums import UserRole
from parcel_backend.app.services import user_store

# Import models to ensure they are registered with Base
from parcel_backend.app.models.user import User
from parcel_backend.app.models.audit_log import AuditLog
from parcel_backend.app.models.parcel import Parcel

SEED_USERS = [
    {"name": "Admin", "email": "admin@parcel.com", "password": "Admin@123", "role": UserRole.ADMIN},
    {
        "name": "Sam Sender",
        "email": "sender@parcel.com",
        "password": "Sender@123",
        "role": UserRole.USER,
        "phone": "+8801700000001",
        "address": "1 Sender Road",
    },
    {"name": "Dan Rider", "email": "rider@parcel.com", "password": "Rider@123", "role": UserRole.DELIVERY_MAN},
]


async def seed_users():
    """
    Seed initial users with different roles.

    Existing emails are skipped, so the script can be re-run safely.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting user seeding...")

        for fields in SEED_USERS:
            existing = await user_store.find_by_email(db, fields["email"], user_store.Visibility.INCLUDE_DELETED)
            if existing:
                print(f"ℹ️  {fields['email']} already exists, skipping")
                continue

            await user_store.create_user(db, is_verified=True, **fields)
            print(f"✅ Created {fields['role'].value} user ({fields['email']} / {fields['password']})")

        print("\n🎉 User seeding completed successfully!")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_users())
