from __future__ import annotations

from collections.abc import Callable

from .clock import Clock

SAMPLE_INTERVAL_S = 0.1
UNTIMED = -1  # remaining-time sentinel for questions that never expire


class SessionClock:
    """Per-question countdown sampled at a fixed cadence.

    The host calls ``update()`` as often as it likes; remaining time is only
    recomputed once every ``sample_interval_s``, which bounds auto-advance
    latency to one interval after the deadline. At most one countdown is
    active: ``start()`` replaces any previous one.
    """

    def __init__(self, clock: Clock, *, sample_interval_s: float = SAMPLE_INTERVAL_S) -> None:
        if sample_interval_s <= 0.0:
            raise ValueError("sample_interval_s must be > 0")
        self._clock = clock
        self._interval_s = float(sample_interval_s)

        self._active = False
        self._duration_ms = 0
        self._started_at_s: float | None = None
        self._next_sample_at_s = 0.0
        self._remaining_ms = UNTIMED
        self._on_tick: Callable[[int], None] | None = None
        self._on_expire: Callable[[], None] | None = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def started_at_s(self) -> float | None:
        return self._started_at_s

    @property
    def remaining_ms(self) -> int:
        """Last sampled remaining time, or UNTIMED."""
        return self._remaining_ms

    def start(
        self,
        duration_ms: int,
        *,
        on_tick: Callable[[int], None] | None = None,
        on_expire: Callable[[], None] | None = None,
    ) -> None:
        self.cancel()
        now = self._clock.now()
        self._started_at_s = now
        self._duration_ms = int(duration_ms)

        if self._duration_ms <= 0:
            # Untimed: report the sentinel once and never expire.
            self._remaining_ms = UNTIMED
            if on_tick is not None:
                on_tick(UNTIMED)
            return

        self._active = True
        self._remaining_ms = self._duration_ms
        self._next_sample_at_s = now + self._interval_s
        self._on_tick = on_tick
        self._on_expire = on_expire
        if on_tick is not None:
            on_tick(self._remaining_ms)

    def cancel(self) -> None:
        self._active = False
        self._on_tick = None
        self._on_expire = None

    def update(self) -> None:
        if not self._active:
            return
        assert self._started_at_s is not None

        now = self._clock.now()
        if now < self._next_sample_at_s:
            return
        # Missed samples are skipped, not replayed.
        ticks = int((now - self._started_at_s) / self._interval_s) + 1
        self._next_sample_at_s = self._started_at_s + ticks * self._interval_s

        elapsed_ms = (now - self._started_at_s) * 1000.0
        remaining = int(round(self._duration_ms - elapsed_ms))
        if remaining > 0:
            self._remaining_ms = remaining
            if self._on_tick is not None:
                self._on_tick(remaining)
            return

        self._remaining_ms = 0
        on_expire = self._on_expire
        self.cancel()
        if on_expire is not None:
            on_expire()
