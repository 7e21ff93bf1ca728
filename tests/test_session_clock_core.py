from __future__ import annotations

from dataclasses import dataclass

import pytest

from testlock.session_clock import UNTIMED, SessionClock

FRAME_S = 0.016


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def test_samples_at_fixed_cadence_not_per_update() -> None:
    clock = FakeClock()
    ticks: list[int] = []
    countdown = SessionClock(clock)
    countdown.start(5000, on_tick=ticks.append)

    assert ticks == [5000]

    clock.advance(0.05)
    countdown.update()
    countdown.update()
    assert ticks == [5000]

    clock.advance(0.05)
    countdown.update()
    assert ticks == [5000, 4900]
    assert countdown.remaining_ms == 4900


def test_expires_once_within_one_sample_of_deadline() -> None:
    clock = FakeClock()
    expired: list[float] = []
    countdown = SessionClock(clock)
    countdown.start(1000, on_expire=lambda: expired.append(clock.now()))

    while not expired and clock.t < 5.0:
        clock.advance(FRAME_S)
        countdown.update()

    assert len(expired) == 1
    assert 1.0 <= expired[0] <= 1.0 + 0.1 + FRAME_S
    assert countdown.active is False
    assert countdown.remaining_ms == 0

    clock.advance(10.0)
    countdown.update()
    assert len(expired) == 1


@pytest.mark.parametrize("duration", [0, -1, -5000])
def test_non_positive_duration_is_untimed(duration: int) -> None:
    clock = FakeClock()
    ticks: list[int] = []
    expired: list[bool] = []
    countdown = SessionClock(clock)
    countdown.start(duration, on_tick=ticks.append, on_expire=lambda: expired.append(True))

    clock.advance(1000.0)
    countdown.update()

    assert ticks == [UNTIMED]
    assert expired == []
    assert countdown.remaining_ms == UNTIMED
    assert countdown.active is False


def test_cancel_is_idempotent_and_safe_when_idle() -> None:
    clock = FakeClock()
    expired: list[bool] = []
    countdown = SessionClock(clock)
    countdown.cancel()

    countdown.start(500, on_expire=lambda: expired.append(True))
    countdown.cancel()
    countdown.cancel()
    clock.advance(1.0)
    countdown.update()

    assert expired == []


def test_cancel_from_within_expire_callback() -> None:
    clock = FakeClock()
    countdown = SessionClock(clock)
    calls: list[str] = []

    def on_expire() -> None:
        calls.append("expired")
        countdown.cancel()

    countdown.start(200, on_expire=on_expire)
    clock.advance(0.3)
    countdown.update()

    assert calls == ["expired"]


def test_start_replaces_the_active_countdown() -> None:
    clock = FakeClock()
    fired: list[str] = []
    countdown = SessionClock(clock)

    countdown.start(1000, on_expire=lambda: fired.append("first"))
    clock.advance(0.5)
    countdown.start(2000, on_expire=lambda: fired.append("second"))

    clock.advance(1.0)
    countdown.update()
    assert fired == []

    clock.advance(1.1)
    countdown.update()
    assert fired == ["second"]


def test_expire_callback_may_chain_a_new_countdown() -> None:
    clock = FakeClock()
    countdown = SessionClock(clock)
    fired: list[str] = []

    def first_done() -> None:
        fired.append("first")
        countdown.start(300, on_expire=lambda: fired.append("second"))

    countdown.start(100, on_expire=first_done)
    clock.advance(0.1)
    countdown.update()
    assert fired == ["first"]
    assert countdown.active is True

    clock.advance(0.4)
    countdown.update()
    assert fired == ["first", "second"]


def test_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        SessionClock(FakeClock(), sample_interval_s=0.0)
