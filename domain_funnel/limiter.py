from __future__ import annotations

import itertools
import threading
from collections import deque
from typing import Any, Callable, Deque, TypeVar

T = TypeVar("T")


class StageLimiter:
    """Thread-safe FIFO admission gate bounding in-flight calls for one stage.

    Callers beyond the cap wait in arrival order and are admitted as slots
    free up. Limiters do not know about each other, so a saturated stage
    never holds back admission into another one."""

    def __init__(self, name: str, max_in_flight: int) -> None:
        if max_in_flight < 1:
            raise ValueError(f"{name}: max_in_flight must be >= 1, got {max_in_flight}")
        self._name = name
        self._limit = int(max_in_flight)

        self._lock = threading.Lock()
        self._cv = threading.Condition(self._lock)
        self._tickets = itertools.count()
        self._queue: Deque[int] = deque()

        self._active = 0
        self._peak = 0

    def acquire(self) -> None:
        """Block until this caller is at the head of the queue and a slot is free."""
        with self._cv:
            ticket = next(self._tickets)
            self._queue.append(ticket)
            while self._queue[0] != ticket or self._active >= self._limit:
                self._cv.wait()
            self._queue.popleft()
            self._active += 1
            self._peak = max(self._peak, self._active)
            # the next ticket may fit in a remaining slot
            self._cv.notify_all()

    def release(self) -> None:
        with self._cv:
            if self._active <= 0:
                raise RuntimeError(f"{self._name}: release() without a matching acquire()")
            self._active -= 1
            self._cv.notify_all()

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run fn once admitted, releasing the slot afterwards."""
        with self:
            return fn(*args, **kwargs)

    def __enter__(self) -> "StageLimiter":
        self.acquire()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()

    @property
    def name(self) -> str:
        return self._name

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._active

    @property
    def waiting(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def peak(self) -> int:
        with self._lock:
            return self._peak
