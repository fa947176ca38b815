"""
Bootstrap data created at startup.
"""

import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from parcel_backend.app.core.config import settings
from parcel_backend.app.models.enums import UserRole
from parcel_backend.app.models.user import User
from parcel_backend.app.services import user_store

logger = logging.getLogger("parcel_backend")


async def seed_admin(db: AsyncSession) -> Optional[User]:
    """
    Create the admin account from settings when it does not exist yet.

    Skipped when no admin password is configured.
    """
    if not settings.admin_password:
        logger.info("ADMIN_PASSWORD not set, skipping admin seeding")
        return None

    existing = await user_store.find_by_email(db, settings.admin_email, user_store.Visibility.INCLUDE_DELETED)
    if existing:
        logger.info("Admin already exists")
        return existing

    admin = await user_store.create_user(
        db,
        name="Admin",
        email=settings.admin_email,
        password=settings.admin_password,
        role=UserRole.ADMIN,
        is_verified=True,
    )
    logger.info("Admin created successfully: %s", admin.email)
    return admin
