from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    The session engine, the per-question countdown and the submission backoff
    all read time through this interface so they can be simulated headlessly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


def elapsed_ms(clock: Clock, since_s: float) -> int:
    """Whole milliseconds elapsed on ``clock`` since ``since_s`` (never negative)."""

    return max(0, int(round((clock.now() - since_s) * 1000.0)))
