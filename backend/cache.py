"""
In-Memory TTL Cache Module

Provides per-entry TTL caching for Supabase query results served by the API.
Entries are evicted FIFO when a cache is full and swept periodically by a
background task owned by each cache instance.

This is a performance layer only: state is lost on restart and the system of
record is always Supabase.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry:
    """Single cache entry with TTL tracking."""
    key: str
    value: Any
    created_at: float
    ttl: float  # seconds

    def is_expired(self, now: float) -> bool:
        """Check if entry has expired."""
        return now - self.created_at > self.ttl


class TTLCache:
    """
    In-memory key/value cache with per-entry TTL.

    Features:
    - TTL-based expiration (lazy on access, plus periodic sweep)
    - FIFO eviction by insertion order when at max size
    - Regex-based bulk invalidation
    - Statistics tracking

    All operations are synchronous and never raise; a miss returns None.
    """

    DEFAULT_TTL = 300.0  # 5 minutes
    MAX_SIZE = 100
    SWEEP_INTERVAL = 60.0

    def __init__(
        self,
        name: str = "default",
        default_ttl: float = DEFAULT_TTL,
        max_size: int = MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._clock = clock
        # dicts keep insertion order, which drives FIFO eviction
        self._cache: Dict[str, CacheEntry] = {}
        self._sweeper: Optional[asyncio.Task] = None

        self.stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
        }

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def get(self, key: str) -> Optional[Any]:
        """
        Get cached value if present and not expired.

        Returns:
            Cached value or None if not found/expired
        """
        entry = self._cache.get(key)
        if entry is None:
            self.stats["misses"] += 1
            return None

        if entry.is_expired(self._clock()):
            del self._cache[key]
            self.stats["misses"] += 1
            return None

        self.stats["hits"] += 1
        logger.debug(f"Cache '{self.name}' hit: {key}")
        return entry.value

    def has(self, key: str) -> bool:
        """Check for a fresh entry without touching hit/miss counters."""
        entry = self._cache.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            del self._cache[key]
            return False
        return True

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Cache a value.

        Args:
            key: Cache key
            value: Value to store (not copied or inspected)
            ttl: Custom TTL in seconds (uses default if not specified)
        """
        if key in self._cache:
            # Re-inserting moves the key to the back of the FIFO order
            del self._cache[key]
        elif len(self._cache) >= self.max_size:
            self._evict_oldest()

        self._cache[key] = CacheEntry(
            key=key,
            value=value,
            created_at=self._clock(),
            ttl=ttl if ttl is not None else self.default_ttl,
        )

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""
        return self._cache.pop(key, None) is not None

    def clear(self) -> None:
        """Remove every entry."""
        self._cache.clear()

    def invalidate_pattern(self, pattern: str) -> int:
        """
        Remove every key matching a regular expression.

        Args:
            pattern: Regex searched against each key (use ^ to anchor)

        Returns:
            Number of entries invalidated
        """
        regex = re.compile(pattern)
        keys_to_remove = [k for k in self._cache if regex.search(k)]
        for key in keys_to_remove:
            del self._cache[key]

        if keys_to_remove:
            logger.debug(
                f"Cache '{self.name}' invalidated {len(keys_to_remove)} keys matching {pattern!r}"
            )
        return len(keys_to_remove)

    def _evict_oldest(self) -> None:
        """Evict the oldest-inserted entry."""
        if not self._cache:
            return

        oldest_key = next(iter(self._cache))
        del self._cache[oldest_key]
        self.stats["evictions"] += 1
        logger.debug(f"Cache '{self.name}' evicted oldest entry: {oldest_key}")

    def cleanup_expired(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired_keys = [
            key for key, entry in self._cache.items()
            if entry.is_expired(now)
        ]

        for key in expired_keys:
            del self._cache[key]

        if expired_keys:
            logger.info(f"Cache '{self.name}': cleaned up {len(expired_keys)} expired entries")

        return len(expired_keys)

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start_sweeper(self, interval: float = SWEEP_INTERVAL) -> None:
        """Start the periodic expiry sweep. Must be called from a running loop."""
        if self.sweeper_running:
            return
        self._sweeper = asyncio.create_task(
            self._sweep_loop(interval), name=f"cache-sweep-{self.name}"
        )

    async def stop_sweeper(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            try:
                await asyncio.sleep(interval)
                self.cleanup_expired()
            except asyncio.CancelledError:
                logger.debug(f"Cache '{self.name}' sweeper cancelled")
                raise
            except Exception as e:
                logger.warning(f"Error in cache '{self.name}' sweep: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_requests = self.stats["hits"] + self.stats["misses"]
        hit_rate = self.stats["hits"] / total_requests if total_requests > 0 else 0.0

        return {
            "name": self.name,
            "size": len(self._cache),
            "max_size": self.max_size,
            "default_ttl": self.default_ttl,
            "hits": self.stats["hits"],
            "misses": self.stats["misses"],
            "evictions": self.stats["evictions"],
            "hit_rate": round(hit_rate, 3),
        }


def build_cache_key(prefix: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """
    Build a deterministic cache key from a prefix and parameters.

    Parameters are sorted by name so that the same set of parameters always
    produces the same key, whatever order the caller built them in:

        build_cache_key("chat_messages", {"offset": 0, "limit": 100})
        -> "chat_messages:limit:100|offset:0"
    """
    if not params:
        return prefix

    param_string = "|".join(
        f"{name}:{value}" for name, value in sorted(params.items(), key=lambda item: item[0])
    )
    return f"{prefix}:{param_string}"


class CacheKeys:
    """Canonical cache keys for LMS data."""

    @staticmethod
    def user(user_id: str) -> str:
        return f"user:{user_id}"

    @staticmethod
    def user_profile(user_id: str) -> str:
        return f"user:profile:{user_id}"

    @staticmethod
    def course(course_id: str) -> str:
        return f"course:{course_id}"

    @staticmethod
    def courses_all() -> str:
        return "courses:all"

    @staticmethod
    def course_modules(course_id: str) -> str:
        return f"course:{course_id}:modules"

    @staticmethod
    def task(task_id: str) -> str:
        return f"task:{task_id}"

    @staticmethod
    def tasks_all(include_counts: bool = False) -> str:
        return build_cache_key("tasks:all", {"include_counts": "true"} if include_counts else None)

    @staticmethod
    def tasks_for_topic(topic_id: str, include_counts: bool = False) -> str:
        return build_cache_key(
            f"tasks:topic:{topic_id}", {"include_counts": "true"} if include_counts else None
        )

    @staticmethod
    def submission(submission_id: str) -> str:
        return f"submission:{submission_id}"

    @staticmethod
    def submissions_for_student(student_id: str) -> str:
        return f"submissions:student:{student_id}"

    @staticmethod
    def submissions_for_task(task_id: str) -> str:
        return f"submissions:task:{task_id}"

    @staticmethod
    def chat_messages_recent() -> str:
        return "chat:messages:recent"

    @staticmethod
    def admin_stats() -> str:
        return "admin:stats"

    @staticmethod
    def student_rankings() -> str:
        return "students:rankings"

    @staticmethod
    def dashboard_stats(user_id: str) -> str:
        return build_cache_key("dashboard_stats", {"user_id": user_id})

    @staticmethod
    def chat_messages(limit: int, offset: int) -> str:
        return build_cache_key("chat_messages", {"limit": limit, "offset": offset})


async def get_cached_data(
    key: str,
    fetcher: Callable[[], Awaitable[T]],
    cache: TTLCache,
    ttl: Optional[float] = None,
) -> T:
    """
    Return the cached value for key, or fetch and cache it.

    NOTE: concurrent misses for the same key each call the fetcher. Route
    handlers should go through coordination.guarded_fetch, which pairs the
    cache with request deduplication.

    Fetcher errors propagate and nothing is cached.
    """
    cached = cache.get(key)
    if cached is not None:
        return cached

    data = await fetcher()
    cache.set(key, data, ttl)
    return data
