from __future__ import annotations

import dataclasses
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from .limiter import StageLimiter
from .models import Stage

logger = logging.getLogger(__name__)


class BaseStage(ABC):
    """Abstract base class for one gated funnel stage.

    run() never raises:
    - Waits for admission through the stage's limiter.
    - Measures latency from admission, not from enqueue.
    - Converts any exception from execute() into a failed result whose
      error_type is the exception class name.
    """

    stage: Stage

    def __init__(self, limiter: StageLimiter) -> None:
        self._limiter = limiter

    def run(self, subject: str) -> Any:
        with self._limiter:
            start_ms = self._now_ms()
            try:
                result = self.execute(subject)
            except Exception as exc:  # noqa: BLE001
                logger.debug("%s %s raised %s: %s", self.stage.value, subject, type(exc).__name__, exc)
                result = self.failed(type(exc).__name__)
            latency_ms = self._now_ms() - start_ms
        return dataclasses.replace(result, latency_ms=latency_ms)

    @abstractmethod
    def execute(self, subject: str) -> Any:
        ...

    @abstractmethod
    def failed(self, error_type: str) -> Any:
        ...

    @property
    def limiter(self) -> StageLimiter:
        return self._limiter

    @staticmethod
    def _now_ms() -> int:
        return int(time.monotonic() * 1000)
