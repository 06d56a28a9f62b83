"""
A deduplicating work queue with per-key exponential backoff.

A key is held at most once while waiting and is never handed to two workers
at the same time: adding a key that is being processed marks it dirty, and
it is queued again when the worker calls done().
"""

import logging
import threading
from collections import deque
from typing import Callable, Dict, Optional

import kopf

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 300.0  # seconds


class RateLimitingQueue:
    def __init__(self, base_delay: float = DEFAULT_BASE_DELAY, max_delay: float = DEFAULT_MAX_DELAY):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._cond = threading.Condition()
        self._queue = deque()
        self._dirty = set()
        self._processing = set()
        self._failures: Dict[str, int] = {}
        self._timers = set()
        self._shutting_down = False

    def add(self, key: str) -> None:
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def add_after(self, key: str, delay: float) -> None:
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            timer = threading.Timer(delay, self._fire, args=(key,))
            timer.daemon = True
            self._timers.add(timer)
        timer.start()

    def _fire(self, key: str) -> None:
        with self._cond:
            # runs on the Timer thread itself
            self._timers.discard(threading.current_thread())
        self.add(key)

    def when(self, key: str) -> float:
        """Record one more failure of key and return the delay before its retry."""
        with self._cond:
            failures = self._failures.get(key, 0) + 1
            self._failures[key] = failures
        return min(self.max_delay, self.base_delay * 2 ** (failures - 1))

    def add_rate_limited(self, key: str) -> None:
        delay = self.when(key)
        logger.info(f"Requeuing {key} in {delay:.1f}s")
        self.add_after(key, delay)

    def forget(self, key: str) -> None:
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Block until a key is available and mark it as processing.

        Returns:
            The key, or None once the queue is shut down (or on timeout)
        """
        with self._cond:
            while not self._queue and not self._shutting_down:
                if not self._cond.wait(timeout):
                    return None
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: str) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            timers = list(self._timers)
            self._timers.clear()
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)


def process_next_item(queue: RateLimitingQueue, process: Callable[[str], None]) -> bool:
    """
    Take one key from the queue and run process(key) on it.

    Permanent errors are not retried; the next change to the object triggers
    a new attempt. Any other failure is requeued with backoff.

    Returns:
        False once the queue is shut down
    """
    key = queue.get()
    if key is None:
        return False
    try:
        process(key)
        queue.forget(key)
    except kopf.PermanentError as e:
        logger.error(f"Reconcile of {key} failed permanently: {str(e)}")
        queue.forget(key)
    except Exception as e:
        logger.error(f"Reconcile of {key} failed: {str(e)}", exc_info=True)
        queue.add_rate_limited(key)
    finally:
        queue.done(key)
    return True


def run_worker(queue: RateLimitingQueue, process: Callable[[str], None]) -> None:
    logger.info(f"Worker {threading.current_thread().name} started")
    while process_next_item(queue, process):
        pass
    logger.info(f"Worker {threading.current_thread().name} stopped")
