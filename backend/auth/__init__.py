"""
Authentication module for the LMS backend.

Uses Supabase Auth for user management and JWT verification.

This module provides:
- Supabase clients for token verification and server-side queries
- FastAPI dependencies for route-level authentication and the admin role
"""

from .supabase_client import supabase_client, verify_jwt
from .models import User, UserProfile, UserProfileUpdate

__all__ = [
    # Supabase client
    "supabase_client",
    "verify_jwt",
    # Models
    "User",
    "UserProfile",
    "UserProfileUpdate",
]
