"""
Token Revocation System using Redis.

Implements token blacklisting to immediately invalidate JWT tokens
when users log out, are blocked, or are deleted.
"""

import logging
import parcel_backend.app.core.redis_client as redis_client_module
from parcel_backend.app.core.config import settings

logger = logging.getLogger("parcel_backend")

# Redis key prefix for blacklisted tokens
TOKEN_BLACKLIST_PREFIX = "blacklist:token:"
USER_TOKENS_PREFIX = "user:tokens:"


def _max_token_ttl_seconds() -> int:
    # Refresh tokens outlive access tokens, so a user-wide flag must last as long
    return max(settings.jwt_access_expire_minutes, settings.jwt_refresh_expire_minutes) * 60


async def revoke_token(token: str, user_id: int) -> bool:
    """
    Revoke a specific JWT token by adding it to the blacklist.

    Args:
        token: The JWT token string to revoke
        user_id: User ID who owns the token

    Returns:
        True if successfully revoked, False otherwise
    """
    try:
        key = f"{TOKEN_BLACKLIST_PREFIX}{token}"
        await redis_client_module.redis_client.setex(
            key,
            settings.jwt_access_expire_minutes * 60,
            str(user_id)  # Store user_id for audit purposes
        )
        return True
    except Exception:
        logger.exception("Error revoking token for user %s", user_id)
        return False


async def is_token_revoked(token: str) -> bool:
    """
    Check if a token has been revoked.

    Fails open when Redis is unreachable; the database identity check in
    get_current_user still runs.
    """
    try:
        key = f"{TOKEN_BLACKLIST_PREFIX}{token}"
        exists = await redis_client_module.redis_client.exists(key)
        return exists > 0
    except Exception:
        logger.exception("Error checking token revocation")
        return False


async def revoke_all_user_tokens(user_id: int) -> bool:
    """
    Revoke all active tokens for a specific user.

    Called when a user is blocked, deactivated or deleted to immediately
    terminate all sessions.
    """
    try:
        key = f"{USER_TOKENS_PREFIX}{user_id}:revoked"
        await redis_client_module.redis_client.setex(key, _max_token_ttl_seconds(), "1")
        return True
    except Exception:
        logger.exception("Error revoking all tokens for user %s", user_id)
        return False


async def are_user_tokens_revoked(user_id: int) -> bool:
    """
    Check if all tokens for a user have been revoked.
    """
    try:
        key = f"{USER_TOKENS_PREFIX}{user_id}:revoked"
        exists = await redis_client_module.redis_client.exists(key)
        return exists > 0
    except Exception:
        logger.exception("Error checking user token revocation for user %s", user_id)
        return False


async def clear_user_token_revocation(user_id: int) -> bool:
    """
    Clear the global token revocation flag for a user.

    Called when a blocked user is re-activated.
    """
    try:
        key = f"{USER_TOKENS_PREFIX}{user_id}:revoked"
        await redis_client_module.redis_client.delete(key)
        return True
    except Exception:
        logger.exception("Error clearing token revocation for user %s", user_id)
        return False
