"""
Request coordination package for the LMS backend.

Includes:
- RequestManager: per-context deduplication, throttling and circuit breaking
- Rate-limiting primitives: debounce, throttle, exponential_backoff, ResourcePool
- guarded_fetch: cache read-through composed with the request manager
"""

from coordination.request_manager import (
    CircuitBreakerState,
    RequestContext,
    RequestManager,
    close_request_manager,
    get_request_manager,
    init_request_manager,
)
from coordination.rate_limiting import (
    ResourcePool,
    debounce,
    exponential_backoff,
    throttle,
)
from coordination.guarded_fetch import guarded_fetch

__all__ = [
    # Request manager
    "CircuitBreakerState",
    "RequestContext",
    "RequestManager",
    "close_request_manager",
    "get_request_manager",
    "init_request_manager",
    # Rate limiting
    "ResourcePool",
    "debounce",
    "exponential_backoff",
    "throttle",
    # Composition
    "guarded_fetch",
]
