"""
Configuration management for the LMS backend.
"""

from functools import lru_cache
from typing import Literal, List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase (auth + database)
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_role_key: str = ""  # Service role key for server-side queries

    # CORS - comma-separated list of allowed origins
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    frontend_url: str = "http://localhost:3000"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Debug
    debug: bool = False

    # Environment
    environment: Literal["development", "staging", "production"] = "development"

    # Performance: named caches (TTL in seconds, size in entries)
    user_cache_ttl: float = 600.0  # 10 minutes
    user_cache_max_size: int = 50
    course_cache_ttl: float = 1800.0  # 30 minutes
    course_cache_max_size: int = 100
    task_cache_ttl: float = 900.0  # 15 minutes
    task_cache_max_size: int = 200
    submission_cache_ttl: float = 300.0  # 5 minutes
    submission_cache_max_size: int = 500
    default_cache_ttl: float = 300.0  # 5 minutes
    default_cache_max_size: int = 100
    cache_sweep_interval: float = 60.0  # Expired-entry sweep period

    # Performance: per-endpoint TTLs
    dashboard_stats_ttl: float = 300.0  # 5 minutes
    chat_messages_ttl: float = 120.0  # 2 minutes (chat updates frequently)
    rankings_ttl: float = 600.0

    # Request coordination (throttling / circuit breaking)
    throttle_delay: float = 1.0
    max_failures: int = 3  # Consecutive failures before a circuit opens
    circuit_timeout: float = 30.0  # Seconds a circuit stays open
    request_cleanup_interval: float = 300.0  # 5 minutes
    request_cleanup_max_age: float = 300.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)

    def validate_required_settings(self) -> List[str]:
        """
        Validate required settings for production.
        Returns list of missing/invalid setting names.
        """
        missing = []

        if not self.supabase_url:
            missing.append("SUPABASE_URL")
        if not self.supabase_anon_key:
            missing.append("SUPABASE_ANON_KEY")

        # Server-side queries bypass RLS with the service role key
        if not self.supabase_service_role_key and self.environment == "production":
            missing.append("SUPABASE_SERVICE_ROLE_KEY")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience exports
settings = get_settings()
