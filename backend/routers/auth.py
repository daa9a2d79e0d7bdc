"""
Authentication API Router

Current-user endpoints. Sign-in, sign-up and token refresh happen directly
against Supabase Auth from the frontend.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from auth.dependencies import get_current_user, get_user_profile
from auth.models import User, UserProfile, UserProfileUpdate
from cache_registry import CacheRegistry, get_cache_registry
from database import LMSDatabase, get_db

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/user")
async def get_user(
    user: User = Depends(get_current_user),
    profile: UserProfile = Depends(get_user_profile),
):
    """Authenticated user with their cached profile."""
    return {"user": user, "profile": profile}


@router.patch("/user", response_model=UserProfile)
async def update_profile(
    body: UserProfileUpdate,
    user: User = Depends(get_current_user),
    registry: CacheRegistry = Depends(get_cache_registry),
    db: LMSDatabase = Depends(get_db),
):
    """Update the current user's profile."""
    fields = body.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")

    row = await db.update_user_profile(user.id, fields)
    registry.invalidate_user(user.id)
    logger.info(f"Profile updated for user {user.id}")
    return UserProfile(**row)
