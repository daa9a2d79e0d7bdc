"""
Dashboard API Router

Per-user dashboard counters, cached for dashboard_stats_ttl (5 minutes by
default). Dashboards poll this endpoint; concurrent misses share one
Supabase round-trip through guarded_fetch.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from auth.dependencies import get_current_user
from auth.models import User
from cache import CacheKeys
from cache_registry import CacheRegistry, get_cache_registry
from config import settings
from coordination import RequestManager, get_request_manager, guarded_fetch
from database import LMSDatabase, get_db

logger = logging.getLogger(__name__)
router = APIRouter()

CONTEXT = "dashboard-stats"


class DashboardStatsResponse(BaseModel):
    profile: Optional[Dict[str, Any]] = None
    total_tasks: int
    completed_tasks: int
    pending_tasks: int
    total_courses: int
    recent_messages: int
    cached: bool
    timestamp: str


@router.get("/stats", response_model=DashboardStatsResponse)
async def get_dashboard_stats(
    user: User = Depends(get_current_user),
    registry: CacheRegistry = Depends(get_cache_registry),
    manager: RequestManager = Depends(get_request_manager),
    db: LMSDatabase = Depends(get_db),
):
    """Dashboard counters for the current user."""
    stats, cached = await guarded_fetch(
        CacheKeys.dashboard_stats(user.id),
        lambda: db.get_dashboard_stats(user.id),
        registry.default,
        manager=manager,
        context=CONTEXT,
        ttl=settings.dashboard_stats_ttl,
    )

    return DashboardStatsResponse(
        **{k: v for k, v in stats.items() if k != "generated_at"},
        cached=cached,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
