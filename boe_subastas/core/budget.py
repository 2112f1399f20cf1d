"""Run-level ceilings: wall-clock runtime and total request count."""

from __future__ import annotations

import logging
import time
from typing import Callable

from boe_subastas.core.errors import ErrorKind, ScrapeError

log = logging.getLogger(__name__)


class RequestBudget:
    """Decrementing request counter. Exhaustion is a soft stop, never an error."""

    def __init__(self, limit: int):
        self.limit = max(0, int(limit))
        self.used = 0

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    def can_afford(self, n: int = 1) -> bool:
        return self.remaining >= n

    def consume(self, n: int = 1) -> None:
        self.used += n


class RuntimeBudget:
    """Wall-clock ceiling. check() raises MaxRuntimeExceeded once past the deadline."""

    def __init__(self, max_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_seconds = float(max_seconds)
        self._clock = clock
        self.started = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self.started

    def check(self) -> None:
        if self.elapsed > self.max_seconds:
            log.error("runtime_exceeded elapsed=%.0fs max=%.0fs", self.elapsed, self.max_seconds)
            raise ScrapeError(
                ErrorKind.MAX_RUNTIME_EXCEEDED,
                f"{self.elapsed:.0f}s>{self.max_seconds:.0f}s",
            )
