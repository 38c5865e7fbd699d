"""A fixed set of asyncio event loops, each running in its own thread."""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import threading

logger = logging.getLogger(__name__)


class LoopPool:
    """Round-robin pool of event loops running on background threads."""

    def __init__(self, size: int | None = None) -> None:
        if size is None:
            size = os.cpu_count() or 1
        if size < 1:
            raise ValueError(f"pool size must be at least 1, got {size}")
        self._loops = [asyncio.new_event_loop() for _ in range(size)]
        self._counter = itertools.count()
        self._lock = threading.Lock()
        self._stopped = False
        self._threads = [
            threading.Thread(
                target=self._run, args=(loop,), name=f"loop-pool-{index}", daemon=True
            )
            for index, loop in enumerate(self._loops)
        ]
        for thread in self._threads:
            thread.start()

    @staticmethod
    def _run(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(
                    asyncio.gather(*pending, return_exceptions=True)
                )
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    @property
    def size(self) -> int:
        return len(self._loops)

    def next_loop(self) -> asyncio.AbstractEventLoop:
        """Return the next loop in round-robin order."""
        with self._lock:
            if self._stopped:
                raise RuntimeError("loop pool is stopped")
            return self._loops[next(self._counter) % len(self._loops)]

    def stop(self) -> None:
        """Stop every loop and wait for its thread to finish."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
        logger.debug("stopping loop pool")
        for loop in self._loops:
            if not loop.is_closed():
                loop.call_soon_threadsafe(loop.stop)
        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join()

    def __enter__(self) -> LoopPool:
        return self

    def __exit__(self, *args) -> None:
        self.stop()


_default_lock = threading.Lock()
_default: LoopPool | None = None


def default_pool() -> LoopPool:
    """Return the process-wide pool, creating it on first use."""
    global _default
    with _default_lock:
        if _default is None:
            _default = LoopPool()
        return _default