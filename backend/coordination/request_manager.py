"""
Request Coordination

Per-context bookkeeping for outbound data requests:
- Deduplication of concurrent identical requests (shared in-flight task)
- Throttling (minimum delay between attempts per key)
- Circuit breaking (fail fast after repeated failures, auto-close on timeout)

The manager never raises on its own. It tells callers whether to proceed,
skip or back off; errors from wrapped operations propagate unchanged.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class CircuitBreakerState:
    """Breaker record for a single key"""
    is_open: bool = False
    opened_at: float = 0.0


@dataclass
class RequestContext:
    """Coordination state for one logical namespace (e.g. "dashboard-stats")"""
    pending: Dict[str, asyncio.Task] = field(default_factory=dict)
    last_call_at: Dict[str, float] = field(default_factory=dict)
    failure_counts: Dict[str, int] = field(default_factory=dict)
    circuit_breakers: Dict[str, CircuitBreakerState] = field(default_factory=dict)


class RequestManager:
    """
    Request deduplication, throttling and circuit breaking, keyed by
    (context, key).

    Usage:
        manager = RequestManager()

        if manager.is_circuit_open("dashboard-stats", user_id):
            raise ServiceUnavailableError(...)
        try:
            stats = await manager.deduplicate_request(
                "dashboard-stats", user_id, lambda: fetch_stats(user_id)
            )
            manager.record_success("dashboard-stats", user_id)
        except Exception:
            manager.record_failure("dashboard-stats", user_id)
            raise
    """

    DEFAULT_THROTTLE_DELAY = 1.0
    DEFAULT_MAX_FAILURES = 3
    DEFAULT_CIRCUIT_TIMEOUT = 30.0
    DEFAULT_CLEANUP_INTERVAL = 300.0
    DEFAULT_CLEANUP_MAX_AGE = 300.0

    def __init__(
        self,
        default_throttle_delay: float = DEFAULT_THROTTLE_DELAY,
        default_max_failures: int = DEFAULT_MAX_FAILURES,
        default_circuit_timeout: float = DEFAULT_CIRCUIT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_throttle_delay = default_throttle_delay
        self.default_max_failures = default_max_failures
        self.default_circuit_timeout = default_circuit_timeout
        self._clock = clock
        self._contexts: Dict[str, RequestContext] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    def _get_context(self, context: str) -> RequestContext:
        if context not in self._contexts:
            self._contexts[context] = RequestContext()
        return self._contexts[context]

    # ------------------------------------------------------------------
    # Deduplication
    # ------------------------------------------------------------------

    async def deduplicate_request(
        self,
        context: str,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Run request_fn unless an identical request is already in flight.

        Concurrent callers for the same (context, key) await one shared task
        and receive the same result or the same exception.
        """
        ctx = self._get_context(context)

        # Check and register without awaiting in between
        task = ctx.pending.get(key)
        if task is not None:
            logger.debug(f"Deduplicating request: {context}:{key}")
        else:
            task = asyncio.ensure_future(request_fn())
            ctx.pending[key] = task
            task.add_done_callback(lambda done: self._clear_pending(ctx, key, done))

        # Shield so one cancelled caller does not cancel the shared request
        return await asyncio.shield(task)

    @staticmethod
    def _clear_pending(ctx: RequestContext, key: str, task: asyncio.Task) -> None:
        if ctx.pending.get(key) is task:
            del ctx.pending[key]
        # Mark a failure as retrieved even if every awaiting caller was cancelled
        if not task.cancelled():
            task.exception()

    # ------------------------------------------------------------------
    # Throttling
    # ------------------------------------------------------------------

    def should_throttle(
        self,
        context: str,
        key: str,
        delay: Optional[float] = None,
    ) -> bool:
        """
        Return True if the caller must skip this attempt.

        When the attempt is allowed, the current time is recorded as the last
        attempt in the same step.
        """
        ctx = self._get_context(context)
        delay = self.default_throttle_delay if delay is None else delay
        now = self._clock()
        last_time = ctx.last_call_at.get(key)

        if last_time is not None and now - last_time < delay:
            logger.debug(f"Throttling request: {context}:{key}")
            return True

        ctx.last_call_at[key] = now
        return False

    # ------------------------------------------------------------------
    # Circuit breaking
    # ------------------------------------------------------------------

    def is_circuit_open(
        self,
        context: str,
        key: str,
        timeout: Optional[float] = None,
    ) -> bool:
        ctx = self._get_context(context)
        breaker = ctx.circuit_breakers.get(key)
        if breaker is None:
            return False

        timeout = self.default_circuit_timeout if timeout is None else timeout
        if breaker.is_open and self._clock() - breaker.opened_at > timeout:
            logger.info(f"Circuit breaker timeout expired, closing: {context}:{key}")
            del ctx.circuit_breakers[key]
            ctx.failure_counts.pop(key, None)
            return False

        return breaker.is_open

    def record_success(self, context: str, key: str) -> None:
        """Reset the failure count and close the breaker."""
        ctx = self._get_context(context)
        ctx.failure_counts.pop(key, None)
        ctx.circuit_breakers.pop(key, None)

    def record_failure(
        self,
        context: str,
        key: str,
        max_failures: Optional[int] = None,
    ) -> bool:
        """
        Count a failure. Returns True when this failure opened the circuit.
        """
        ctx = self._get_context(context)
        max_failures = self.default_max_failures if max_failures is None else max_failures
        current_failures = ctx.failure_counts.get(key, 0) + 1
        ctx.failure_counts[key] = current_failures

        if current_failures >= max_failures:
            logger.warning(
                f"Opening circuit breaker: {context}:{key} "
                f"({current_failures}/{max_failures} failures)"
            )
            ctx.circuit_breakers[key] = CircuitBreakerState(
                is_open=True,
                opened_at=self._clock(),
            )
            return True

        return False

    def get_failure_count(self, context: str, key: str) -> int:
        return self._get_context(context).failure_counts.get(key, 0)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def cleanup(self, max_age: float = DEFAULT_CLEANUP_MAX_AGE) -> int:
        """
        Drop throttle timestamps and breakers older than max_age.

        Returns:
            Number of records removed
        """
        now = self._clock()
        removed = 0

        for ctx in self._contexts.values():
            stale_times = [k for k, t in ctx.last_call_at.items() if now - t > max_age]
            for key in stale_times:
                del ctx.last_call_at[key]

            stale_breakers = [
                k for k, b in ctx.circuit_breakers.items() if now - b.opened_at > max_age
            ]
            for key in stale_breakers:
                del ctx.circuit_breakers[key]
                ctx.failure_counts.pop(key, None)

            removed += len(stale_times) + len(stale_breakers)

        if removed:
            logger.debug(f"Request manager cleanup: removed {removed} stale entries")
        return removed

    @property
    def cleanup_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    def start_cleanup(
        self,
        interval: float = DEFAULT_CLEANUP_INTERVAL,
        max_age: float = DEFAULT_CLEANUP_MAX_AGE,
    ) -> None:
        """Start periodic cleanup. Must be called from a running loop."""
        if self.cleanup_running:
            return
        self._cleanup_task = asyncio.create_task(
            self._cleanup_loop(interval, max_age), name="request-manager-cleanup"
        )

    async def stop_cleanup(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None

    async def _cleanup_loop(self, interval: float, max_age: float) -> None:
        while True:
            try:
                await asyncio.sleep(interval)
                self.cleanup(max_age)
            except asyncio.CancelledError:
                logger.debug("Request manager cleanup task cancelled")
                raise
            except Exception as e:
                logger.warning(f"Error in request manager cleanup: {e}")

    def get_stats(self, context: str) -> Dict[str, Any]:
        """Pending count, failure counts and open breakers for a context."""
        ctx = self._get_context(context)
        open_breakers: List[str] = [
            key for key, breaker in ctx.circuit_breakers.items() if breaker.is_open
        ]
        return {
            "pending_requests": len(ctx.pending),
            "failure_counts": dict(ctx.failure_counts),
            "open_circuit_breakers": open_breakers,
        }

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: self.get_stats(name) for name in list(self._contexts)}

    def reset(self) -> None:
        """Drop all coordination state (for testing)"""
        self._contexts.clear()


# Global request manager
_request_manager: Optional[RequestManager] = None


def get_request_manager() -> RequestManager:
    """Get or create the global request manager"""
    global _request_manager
    if _request_manager is None:
        _request_manager = RequestManager()
    return _request_manager


def init_request_manager(
    throttle_delay: float = RequestManager.DEFAULT_THROTTLE_DELAY,
    max_failures: int = RequestManager.DEFAULT_MAX_FAILURES,
    circuit_timeout: float = RequestManager.DEFAULT_CIRCUIT_TIMEOUT,
    cleanup_interval: Optional[float] = RequestManager.DEFAULT_CLEANUP_INTERVAL,
    cleanup_max_age: float = RequestManager.DEFAULT_CLEANUP_MAX_AGE,
) -> RequestManager:
    """
    Initialize the global request manager.

    Pass cleanup_interval=None to skip starting the periodic cleanup task.
    """
    global _request_manager
    _request_manager = RequestManager(
        default_throttle_delay=throttle_delay,
        default_max_failures=max_failures,
        default_circuit_timeout=circuit_timeout,
    )
    if cleanup_interval is not None:
        _request_manager.start_cleanup(cleanup_interval, cleanup_max_age)
    logger.info(
        f"Request manager initialized (max_failures={max_failures}, "
        f"circuit_timeout={circuit_timeout}s)"
    )
    return _request_manager


async def close_request_manager() -> None:
    """Stop periodic cleanup and discard the global request manager"""
    global _request_manager
    if _request_manager is None:
        return
    await _request_manager.stop_cleanup()
    _request_manager.reset()
    _request_manager = None
