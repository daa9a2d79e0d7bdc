"""
Named Cache Registry

Holds one TTLCache per data domain, each tuned to how often that data
changes, plus the invalidation helpers that mutation endpoints call after
writing to Supabase.

The registry is created in the application lifespan (init_cache_registry)
and dropped on shutdown (close_cache_registry). Nothing survives a restart.
"""

import logging
import re
from typing import Any, Callable, Dict, Optional

from cache import CacheKeys, TTLCache
from config import Settings, get_settings

logger = logging.getLogger(__name__)


class CacheRegistry:
    """
    Fixed set of independently configured caches.

    Usage:
        registry = CacheRegistry(settings)
        registry.start()
        profile = registry.user.get(CacheKeys.user_profile(user_id))
        ...
        registry.invalidate_submission(submission_id, student_id, task_id)
        await registry.stop()
    """

    def __init__(self, settings: Optional[Settings] = None, clock: Optional[Callable[[], float]] = None):
        self._settings = settings or get_settings()
        s = self._settings
        extra = {"clock": clock} if clock is not None else {}

        self.user = TTLCache("user", s.user_cache_ttl, s.user_cache_max_size, **extra)
        self.course = TTLCache("course", s.course_cache_ttl, s.course_cache_max_size, **extra)
        self.task = TTLCache("task", s.task_cache_ttl, s.task_cache_max_size, **extra)
        self.submission = TTLCache(
            "submission", s.submission_cache_ttl, s.submission_cache_max_size, **extra
        )
        self.default = TTLCache("default", s.default_cache_ttl, s.default_cache_max_size, **extra)

    @property
    def caches(self) -> Dict[str, TTLCache]:
        return {
            "user": self.user,
            "course": self.course,
            "task": self.task,
            "submission": self.submission,
            "default": self.default,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the expiry sweeper of every cache."""
        for cache in self.caches.values():
            cache.start_sweeper(self._settings.cache_sweep_interval)

    async def stop(self) -> None:
        """Stop every sweeper and drop all cached state."""
        for cache in self.caches.values():
            await cache.stop_sweeper()
        self.clear_all()

    # ------------------------------------------------------------------
    # Invalidation helpers (one per domain event)
    # ------------------------------------------------------------------

    def invalidate_user(self, user_id: str) -> None:
        self.user.delete(CacheKeys.user(user_id))
        self.user.delete(CacheKeys.user_profile(user_id))
        self.submission.invalidate_pattern(
            "^" + re.escape(CacheKeys.submissions_for_student(user_id)) + "(:|$)"
        )
        # Rankings include the user's name
        self.user.delete(CacheKeys.student_rankings())
        logger.debug(f"Invalidated caches for user {user_id}")

    def invalidate_course(self, course_id: str) -> None:
        self.course.delete(CacheKeys.course(course_id))
        self.course.delete(CacheKeys.courses_all())
        self.course.delete(CacheKeys.course_modules(course_id))
        logger.debug(f"Invalidated caches for course {course_id}")

    def invalidate_task(self, task_id: str, topic_id: Optional[str] = None) -> None:
        self.task.delete(CacheKeys.task(task_id))
        # Task lists, with and without submission counts
        self.task.invalidate_pattern("^" + re.escape(CacheKeys.tasks_all()) + "(:|$)")
        if topic_id:
            self.task.invalidate_pattern(
                "^" + re.escape(CacheKeys.tasks_for_topic(topic_id)) + "(:|$)"
            )
        self.submission.invalidate_pattern(
            "^" + re.escape(CacheKeys.submissions_for_task(task_id)) + "(:|$)"
        )
        logger.debug(f"Invalidated caches for task {task_id}")

    def invalidate_submission(
        self,
        submission_id: str,
        student_id: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> None:
        self.submission.delete(CacheKeys.submission(submission_id))
        if student_id:
            self.submission.delete(CacheKeys.submissions_for_student(student_id))
        if task_id:
            self.submission.delete(CacheKeys.submissions_for_task(task_id))

        # Aggregate views are derived from submissions
        self.user.delete(CacheKeys.student_rankings())
        self.user.delete(CacheKeys.admin_stats())
        self.default.invalidate_pattern(r"^dashboard_stats(:|$)")
        self.task.invalidate_pattern(r"^tasks:.*:include_counts:true$")
        logger.debug(f"Invalidated caches for submission {submission_id}")

    def invalidate_chat(self) -> None:
        self.user.delete(CacheKeys.chat_messages_recent())
        self.default.invalidate_pattern(r"^chat_messages(:|$)")

    def clear_all(self) -> None:
        """Clear every named cache. Reserved for recovery, not normal traffic."""
        for cache in self.caches.values():
            cache.clear()
        logger.info("All named caches cleared")

    def get_stats(self) -> Dict[str, Any]:
        return {name: cache.get_stats() for name, cache in self.caches.items()}


# Global registry instance
_cache_registry: Optional[CacheRegistry] = None


def get_cache_registry() -> CacheRegistry:
    """Get or create the global cache registry."""
    global _cache_registry
    if _cache_registry is None:
        _cache_registry = CacheRegistry()
    return _cache_registry


def init_cache_registry(settings: Optional[Settings] = None, start: bool = True) -> CacheRegistry:
    """Initialize the global cache registry and start its sweepers."""
    global _cache_registry
    _cache_registry = CacheRegistry(settings)
    if start:
        _cache_registry.start()
    s = settings or get_settings()
    logger.info(
        f"Cache registry initialized (sweep every {s.cache_sweep_interval}s, "
        f"sweepers {'running' if start else 'not started'})"
    )
    return _cache_registry


async def close_cache_registry() -> None:
    """Stop sweepers and discard the global cache registry."""
    global _cache_registry
    if _cache_registry is None:
        return
    await _cache_registry.stop()
    _cache_registry = None
