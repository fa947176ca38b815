"""
Password hashing helpers (bcrypt).
"""

import bcrypt
from parcel_backend.app.core.config import settings

# bcrypt only looks at the first 72 bytes and rejects longer input
BCRYPT_MAX_PASSWORD_BYTES = 72


def get_password_hash(password: str) -> str:
    """Hash a plain text password with a fresh salt."""
    salt = bcrypt.gensalt(rounds=settings.bcrypt_salt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a plain text password against a stored bcrypt hash."""
    if not hashed_password:
        return False
    password_bytes = plain_password.encode("utf-8")
    if len(password_bytes) > BCRYPT_MAX_PASSWORD_BYTES:
        return False
    return bcrypt.checkpw(password_bytes, hashed_password.encode("utf-8"))
