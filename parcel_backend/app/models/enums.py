"""
User-related enumerations.

Defines the role, account state and auth provider types.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Full access, manages users and oversees all parcels
        USER: Sends and receives parcels (default role)
        DELIVERY_MAN: Carries assigned parcels and updates their status
    """
    ADMIN = "ADMIN"
    USER = "USER"
    DELIVERY_MAN = "DELIVERY_MAN"


class IsActive(str, enum.Enum):
    """Account state. Only ACTIVE accounts pass the authorization gate."""
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    INACTIVE = "INACTIVE"


class AuthProviderName(str, enum.Enum):
    """Ways a user can authenticate."""
    CREDENTIALS = "credentials"
    GOOGLE = "google"
