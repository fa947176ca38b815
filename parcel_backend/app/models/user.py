"""
User database model.

Users are never hard-deleted; `is_deleted` marks a soft delete and every
read in the identity store states whether deleted rows are visible.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from parcel_backend.app.db.session import Base
from parcel_backend.app.models.enums import UserRole, IsActive, AuthProviderName


class User(Base):
    """
    User model for authentication and user management.

    `hashed_password` is nullable: accounts created through Google login
    have no local password until one is set.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    address = Column(String(500), nullable=True)
    picture = Column(String(500), nullable=True)

    role = Column(Enum(UserRole), default=UserRole.USER, nullable=False)
    is_active = Column(Enum(IsActive), default=IsActive.ACTIVE, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    is_verified = Column(Boolean, default=False, nullable=False)

    auths = relationship(
        "AuthProvider",
        back_populates="user",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role.value}')>"


class AuthProvider(Base):
    """Binding between a user and an authentication provider."""
    __tablename__ = "auth_providers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    provider = Column(Enum(AuthProviderName), nullable=False)
    provider_id = Column(String(255), nullable=False)

    user = relationship("User", back_populates="auths")

    def __repr__(self):
        return f"<AuthProvider(user_id={self.user_id}, provider='{self.provider.value}')>"
