"""
System Status API Router

Admin-only cache and request-coordination metrics (keys carry user ids), plus an
escape hatch that clears every named cache.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from auth.dependencies import require_admin
from auth.models import UserProfile
from cache_registry import CacheRegistry, get_cache_registry
from coordination import RequestManager, get_request_manager

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/cache")
async def get_cache_metrics(
    admin: UserProfile = Depends(require_admin),
    registry: CacheRegistry = Depends(get_cache_registry),
    manager: RequestManager = Depends(get_request_manager),
) -> Dict[str, Any]:
    """Per-cache statistics and per-context request coordination state."""
    return {
        "caches": registry.get_stats(),
        "requests": manager.get_all_stats(),
    }


@router.post("/cache/clear")
async def clear_caches(
    admin: UserProfile = Depends(require_admin),
    registry: CacheRegistry = Depends(get_cache_registry),
) -> Dict[str, Any]:
    """Clear every named cache."""
    cleared = sum(stats["size"] for stats in registry.get_stats().values())
    registry.clear_all()
    logger.warning(f"All caches cleared by admin {admin.id} ({cleared} entries)")
    return {"cleared": cleared}
