"""
Cache-aware fetch with request coordination.

Route handlers read through guarded_fetch instead of cache.get_cached_data
so that concurrent misses for one key share a single upstream call and a
failing upstream is skipped while its circuit is open.
"""

import logging
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from cache import TTLCache
from coordination.request_manager import RequestManager
from exceptions import LMSException, ServiceUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def guarded_fetch(
    key: str,
    fetcher: Callable[[], Awaitable[T]],
    cache: TTLCache,
    *,
    manager: RequestManager,
    context: str,
    ttl: Optional[float] = None,
    max_failures: Optional[int] = None,
    circuit_timeout: Optional[float] = None,
) -> Tuple[T, bool]:
    """
    Read key from cache, falling back to a deduplicated, circuit-protected fetch.

    Returns:
        (value, cached) where cached is True on a cache hit

    Raises:
        ServiceUnavailableError: If the circuit for (context, key) is open
        Exception: Whatever fetcher raised, unchanged

    Only upstream errors count towards the circuit. An LMSException below
    500 (e.g. ResourceNotFoundError) means the upstream answered.
    """
    if manager.is_circuit_open(context, key, circuit_timeout):
        timeout = manager.default_circuit_timeout if circuit_timeout is None else circuit_timeout
        raise ServiceUnavailableError(context=context, key=key, retry_after=int(timeout))

    cached = cache.get(key)
    if cached is not None:
        return cached, True

    # Outcome is recorded once per upstream call, not once per waiting caller
    async def fetch_and_store() -> T:
        try:
            value = await fetcher()
        except LMSException as e:
            if e.status_code < 500:
                # The upstream answered; a missing row is not an outage
                manager.record_success(context, key)
                raise
            _record_failure(manager, context, key, max_failures, e)
            raise
        except Exception as e:
            _record_failure(manager, context, key, max_failures, e)
            raise
        manager.record_success(context, key)
        cache.set(key, value, ttl)
        return value

    value = await manager.deduplicate_request(context, key, fetch_and_store)
    return value, False


def _record_failure(
    manager: RequestManager,
    context: str,
    key: str,
    max_failures: Optional[int],
    error: Exception,
) -> None:
    tripped = manager.record_failure(context, key, max_failures)
    logger.warning(
        f"Fetch failed for {context}:{key}: {error}"
        + (" (circuit opened)" if tripped else "")
    )
