"""
Authentication models for the LMS backend.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class User(BaseModel):
    """User model returned from auth."""
    id: str
    email: Optional[str] = None
    email_confirmed: bool = False
    created_at: Optional[datetime] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True


class UserProfile(BaseModel):
    """Row of the user_profiles table."""
    id: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    profile_image_url: Optional[str] = None
    role: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class UserProfileUpdate(BaseModel):
    """Fields a user may change on their own profile."""
    full_name: Optional[str] = Field(None, min_length=1, max_length=200)
    avatar_url: Optional[str] = None
    profile_image_url: Optional[str] = None
