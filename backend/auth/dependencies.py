"""
Authentication dependencies for FastAPI.

Provides dependency injection for user authentication in route handlers.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from cache import CacheKeys, get_cached_data
from cache_registry import CacheRegistry, get_cache_registry
from database import LMSDatabase, get_db
from .supabase_client import supabase_client, verify_jwt
from .models import User, UserProfile

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)


def _user_from_token_data(user_data: dict) -> User:
    metadata = user_data.get("user_metadata", {})
    return User(
        id=user_data["id"],
        email=user_data.get("email"),
        email_confirmed=user_data.get("email_confirmed", False),
        created_at=user_data.get("created_at"),
        full_name=metadata.get("full_name"),
        avatar_url=metadata.get("avatar_url"),
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> User:
    """
    Get the current authenticated user.

    Raises HTTPException 401 if not authenticated.
    """
    if not supabase_client.is_configured():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service not configured"
        )

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_data = await verify_jwt(credentials.credentials)

    if not user_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return _user_from_token_data(user_data)


async def get_user_profile(
    user: User = Depends(get_current_user),
    registry: CacheRegistry = Depends(get_cache_registry),
    db: LMSDatabase = Depends(get_db),
) -> UserProfile:
    """Profile row of the current user, cached in the user cache."""
    row = await get_cached_data(
        CacheKeys.user_profile(user.id),
        lambda: db.get_user_profile(user.id),
        registry.user,
    )
    return UserProfile(**row)


async def require_admin(
    profile: UserProfile = Depends(get_user_profile),
) -> UserProfile:
    """
    Dependency that requires the admin role.
    """
    if not profile.is_admin:
        logger.info(f"Admin access denied for user {profile.id} (role={profile.role})")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required"
        )
    return profile
