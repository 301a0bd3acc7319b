from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional

from . import config
from .logging_utils import _scraper_event


class InterItemDelay:
    """Blocking random pause between consecutive items; the first call never waits."""

    def __init__(
        self,
        min_seconds: float = config.DOWNLOAD_DELAY_MIN_SECONDS,
        max_seconds: float = config.DOWNLOAD_DELAY_MAX_SECONDS,
        *,
        sleep: Callable[[float], None] = time.sleep,
        rand: Callable[[float, float], float] = random.uniform,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if min_seconds > max_seconds:
            min_seconds, max_seconds = max_seconds, min_seconds
        self.min_seconds = max(0.0, min_seconds)
        self.max_seconds = max(0.0, max_seconds)
        self._sleep = sleep
        self._rand = rand
        self._logger = logger
        self._first = True

    def wait(self) -> float:
        if self._first:
            self._first = False
            return 0.0
        delay = self._rand(self.min_seconds, self.max_seconds)
        _scraper_event(
            "ratelimit",
            phase="delay",
            delay_ms=int(delay * 1000),
            logger=self._logger,
        )
        self._sleep(delay)
        return delay


__all__ = ["InterItemDelay"]
