"""Inference concurrency layer.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> detect + score

With the default ``max_concurrent=1`` exactly one detection pass is in flight;
further requests queue for up to 5s and then get 503.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from facecapture.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Runs blocking detection work off the event loop, bounded by a semaphore."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="face-detection",
        )
        self._active_count = 0
        self._queue_depth = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` in the pool once a slot is free.

        Raises:
            TimeoutError: If no slot frees up within the timeout.
        """
        self._bump_queue(1)
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=SEMAPHORE_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Inference queue full, rejecting request after %.1fs", SEMAPHORE_TIMEOUT_SECONDS)
            raise
        finally:
            self._bump_queue(-1)

        self._bump_active(1)
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            self._bump_active(-1)

    @property
    def active_count(self) -> int:
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def _bump_queue(self, delta: int) -> None:
        with self._counter_lock:
            self._queue_depth += delta

    def _bump_active(self, delta: int) -> None:
        with self._counter_lock:
            self._active_count += delta
