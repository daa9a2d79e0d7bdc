"""
Rate-limiting primitives: debounce, throttle, exponential backoff and a
bounded-concurrency resource pool.

All of these run on the asyncio event loop; none of them use threads.
"""

import asyncio
import functools
import inspect
import logging
import math
import random
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def debounce(func: Callable[..., Any], wait: float) -> Callable[..., None]:
    """
    Collapse a burst of calls into one trailing call.

    Each invocation cancels the pending call and schedules a new one `wait`
    seconds later, so only the last call of a burst runs, with its arguments.
    Coroutine functions are scheduled as tasks. Must be called from a running
    event loop. The wrapper's `cancel()` drops any pending call.
    """
    handle: Optional[asyncio.TimerHandle] = None
    is_coroutine = inspect.iscoroutinefunction(func)
    # Running tasks are referenced here until they finish
    tasks: Set[asyncio.Task] = set()

    def _task_done(task: asyncio.Task) -> None:
        tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Debounced call to {getattr(func, '__name__', func)!r} failed: {task.exception()}"
            )

    def _fire(args, kwargs) -> None:
        nonlocal handle
        handle = None
        if is_coroutine:
            task = asyncio.ensure_future(func(*args, **kwargs))
            tasks.add(task)
            task.add_done_callback(_task_done)
        else:
            func(*args, **kwargs)

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> None:
        nonlocal handle
        if handle is not None:
            handle.cancel()
        loop = asyncio.get_running_loop()
        handle = loop.call_later(wait, _fire, args, kwargs)

    def cancel() -> None:
        nonlocal handle
        if handle is not None:
            handle.cancel()
            handle = None

    wrapper.cancel = cancel
    return wrapper


def throttle(
    func: Callable[..., T],
    limit: float,
    clock: Callable[[], float] = time.monotonic,
) -> Callable[..., Optional[T]]:
    """
    Leading-edge throttle.

    The first call runs immediately; calls within the next `limit` seconds
    are dropped (returning None); the first call after the window runs again.
    """
    last_run: Optional[float] = None

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Optional[T]:
        nonlocal last_run
        now = clock()
        if last_run is not None and now - last_run < limit:
            return None
        last_run = now
        return func(*args, **kwargs)

    return wrapper


def exponential_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    factor: float = 2.0,
) -> float:
    """
    Delay in seconds before retry number `attempt` (0-based).

    min(base_delay * factor ** attempt, max_delay) plus up to 10% random
    jitter, rounded down to whole milliseconds.
    """
    delay = min(base_delay * math.pow(factor, attempt), max_delay)
    jitter = random.random() * delay * 0.1
    return math.floor((delay + jitter) * 1000) / 1000


class ResourcePool:
    """
    Bounds the number of concurrently running async operations.

    Callers beyond max_concurrent wait in FIFO order. A finishing operation
    hands its slot directly to the next waiter, so the bound holds even while
    waiters are being resumed.

    Caller contract: an operation running inside acquire() must not call
    acquire() on the same pool. With every slot held by such callers the pool
    deadlocks; this is not detected.
    """

    def __init__(self, max_concurrent: int = 5):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._active = 0
        self._queue: Deque[asyncio.Future] = deque()

    async def acquire(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run operation once a slot is free and return its result."""
        await self._take_slot()
        try:
            return await operation()
        finally:
            self._release()

    async def _take_slot(self) -> None:
        if self._active < self.max_concurrent and not self._queue:
            self._active += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._queue.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just before cancellation
                self._release()
            else:
                self._remove_waiter(waiter)
            raise

    def _remove_waiter(self, waiter: asyncio.Future) -> None:
        try:
            self._queue.remove(waiter)
        except ValueError:
            pass

    def _release(self) -> None:
        while self._queue:
            waiter = self._queue.popleft()
            if not waiter.done():
                # Slot passes to the waiter; active count is unchanged
                waiter.set_result(None)
                return
        self._active -= 1

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active": self._active,
            "queued": len(self._queue),
            "max_concurrent": self.max_concurrent,
            "utilization": (self._active / self.max_concurrent) * 100,
        }
