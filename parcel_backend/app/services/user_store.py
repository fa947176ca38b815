"""
Identity store.

All reads take an explicit visibility policy instead of relying on an
implicit soft-delete filter.
"""

import enum
from typing import List, Optional, Tuple
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from parcel_backend.app.core.exceptions import ConflictError
from parcel_backend.app.core.security import get_password_hash
from parcel_backend.app.models.enums import UserRole, IsActive, AuthProviderName
from parcel_backend.app.models.user import User, AuthProvider


class Visibility(str, enum.Enum):
    """Whether soft-deleted users are visible to a read."""
    EXCLUDE_DELETED = "EXCLUDE_DELETED"
    INCLUDE_DELETED = "INCLUDE_DELETED"


def _apply_visibility(query, visibility: Visibility):
    if visibility == Visibility.EXCLUDE_DELETED:
        return query.where(User.is_deleted == False)  # noqa: E712
    return query


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def find_by_email(
    db: AsyncSession,
    email: str,
    visibility: Visibility = Visibility.EXCLUDE_DELETED
) -> Optional[User]:
    query = _apply_visibility(select(User).where(User.email == normalize_email(email)), visibility)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def find_by_id(
    db: AsyncSession,
    user_id: int,
    visibility: Visibility = Visibility.EXCLUDE_DELETED
) -> Optional[User]:
    query = _apply_visibility(select(User).where(User.id == user_id), visibility)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def find_many_by_ids(db: AsyncSession, user_ids: set) -> dict:
    """Batch lookup used for read-time joins; deleted users stay visible."""
    if not user_ids:
        return {}
    result = await db.execute(select(User).where(User.id.in_(user_ids)))
    return {user.id: user for user in result.scalars().all()}


async def list_users(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 50,
    visibility: Visibility = Visibility.EXCLUDE_DELETED
) -> Tuple[List[User], int]:
    """Paginated user listing, newest first."""
    count_query = _apply_visibility(select(func.count(User.id)), visibility)
    total = (await db.execute(count_query)).scalar()

    offset = (page - 1) * page_size
    query = _apply_visibility(select(User), visibility)
    query = query.order_by(User.created_at.desc(), User.id.desc()).offset(offset).limit(page_size)
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def create_user(
    db: AsyncSession,
    *,
    name: str,
    email: str,
    password: Optional[str] = None,
    role: UserRole = UserRole.USER,
    phone: Optional[str] = None,
    address: Optional[str] = None,
    picture: Optional[str] = None,
    is_verified: bool = False,
    provider: AuthProviderName = AuthProviderName.CREDENTIALS,
    provider_id: Optional[str] = None
) -> User:
    """
    Create a user and bind its first auth provider.

    Raises:
        ConflictError: if the email is already taken, deleted accounts included
    """
    email = normalize_email(email)
    if await find_by_email(db, email, Visibility.INCLUDE_DELETED):
        raise ConflictError("User with this email already exists", path="email")

    user = User(
        name=name,
        email=email,
        hashed_password=get_password_hash(password) if password else None,
        role=role,
        phone=phone,
        address=address,
        picture=picture,
        is_active=IsActive.ACTIVE,
        is_deleted=False,
        is_verified=is_verified,
    )
    user.auths.append(AuthProvider(provider=provider, provider_id=provider_id or email))
    db.add(user)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("User with this email already exists", path="email")

    await db.refresh(user)
    return user


async def save_user(db: AsyncSession, user: User, new_password: Optional[str] = None) -> User:
    """
    Persist changes to a user.

    The password is hashed only when `new_password` is given; other saves
    leave the stored hash untouched.
    """
    if new_password is not None:
        user.hashed_password = get_password_hash(new_password)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user
