"""
Supabase client initialization for the LMS backend.

Two clients are kept:
- the anon client, used to verify user access tokens
- the service-role client, used for server-side table queries (bypasses RLS)
"""

import asyncio
import base64
import json
import logging
import time
from typing import Optional

from supabase import create_client, Client

logger = logging.getLogger(__name__)


def _extract_jwt_payload(token: str) -> dict:
    """Decode JWT payload without signature verification for diagnostics only."""
    try:
        parts = token.split(".")
        if len(parts) != 3:
            return {}
        payload = parts[1]
        padding = "=" * (-len(payload) % 4)
        decoded = base64.urlsafe_b64decode(payload + padding)
        return json.loads(decoded.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return {}


class SupabaseClient:
    """Singleton wrapper for the Supabase clients."""

    _client: Optional[Client] = None
    _admin_client: Optional[Client] = None
    _url: Optional[str] = None

    @classmethod
    def initialize(cls, url: str, anon_key: str, service_role_key: str = "") -> None:
        """Initialize the Supabase clients."""
        if not url or not anon_key:
            logger.warning("Supabase credentials not provided. Auth will be disabled.")
            return

        cls._url = url
        cls._client = create_client(url, anon_key)
        if service_role_key:
            cls._admin_client = create_client(url, service_role_key)
        else:
            logger.warning("SUPABASE_SERVICE_ROLE_KEY not set; data queries use the anon key (RLS applies)")
            cls._admin_client = cls._client
        logger.info(f"Supabase client initialized: {url[:30]}...")

    @classmethod
    def get_client(cls) -> Optional[Client]:
        """Get the anon (auth) client."""
        return cls._client

    @classmethod
    def get_admin_client(cls) -> Optional[Client]:
        """Get the service-role client for server-side queries."""
        return cls._admin_client

    @classmethod
    def is_configured(cls) -> bool:
        """Check if Supabase is properly configured."""
        return cls._client is not None

    @classmethod
    def reset(cls) -> None:
        """Drop both clients (shutdown / tests)."""
        cls._client = None
        cls._admin_client = None
        cls._url = None


# Global instance
supabase_client = SupabaseClient()


async def verify_jwt(token: str) -> Optional[dict]:
    """
    Verify an access token with Supabase.

    Args:
        token: The JWT token to verify

    Returns:
        User data if valid, None otherwise
    """
    client = supabase_client.get_client()
    if not client:
        return None

    try:
        # supabase-py is synchronous; keep the event loop free
        response = await asyncio.to_thread(client.auth.get_user, token)
        if response and response.user:
            return {
                "id": response.user.id,
                "email": response.user.email,
                "email_confirmed": response.user.email_confirmed_at is not None,
                "created_at": response.user.created_at,
                "user_metadata": response.user.user_metadata or {},
            }
    except Exception as e:
        payload = _extract_jwt_payload(token)
        token_exp = payload.get("exp")

        if isinstance(token_exp, (int, float)) and int(token_exp) < int(time.time()):
            logger.info(
                "JWT verification failed: token expired (exp=%s, now=%s)",
                int(token_exp),
                int(time.time()),
            )
        else:
            logger.warning("JWT verification failed: %s", e)

    return None
