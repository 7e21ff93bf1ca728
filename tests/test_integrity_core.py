from __future__ import annotations

import pytest

from testlock.integrity import (
    BenignReason,
    EnvironmentSignal,
    IntegrityMonitor,
    ResizeTolerances,
    Verdict,
    ViolationReason,
)


def _armed(width: int, height: int, tolerances: ResizeTolerances | None = None) -> IntegrityMonitor:
    monitor = IntegrityMonitor(tolerances)
    monitor.arm(width, height)
    return monitor


def _resize(width: int, height: int, screen: tuple[int, int]) -> EnvironmentSignal:
    return EnvironmentSignal.resized(width, height, screen_width=screen[0], screen_height=screen[1])


def test_hidden_tab_and_fullscreen_exit_are_always_violations() -> None:
    monitor = _armed(1920, 1080)

    hidden = monitor.observe(EnvironmentSignal.tab_hidden())
    left = monitor.observe(EnvironmentSignal.fullscreen_exited())

    assert hidden.verdict is Verdict.VIOLATION
    assert hidden.reason is ViolationReason.TAB_HIDDEN
    assert left.is_violation
    assert left.reason is ViolationReason.FULLSCREEN_EXITED


def test_side_docked_window_is_a_violation() -> None:
    monitor = _armed(1920, 1080)

    result = monitor.observe(_resize(1300, 1080, (1920, 1080)))

    assert result.is_violation
    assert result.reason is ViolationReason.WINDOW_RESIZED


def test_small_size_drift_is_within_tolerance() -> None:
    monitor = _armed(1920, 1080)

    result = monitor.observe(_resize(1900, 1000, (1920, 1080)))

    assert result.verdict is Verdict.BENIGN
    assert result.reason is BenignReason.WITHIN_TOLERANCE


def test_virtual_keyboard_is_benign_and_keeps_baseline() -> None:
    monitor = _armed(400, 800)

    result = monitor.observe(_resize(400, 500, (400, 800)))

    assert result.reason is BenignReason.VIRTUAL_KEYBOARD
    assert result.scroll_input_into_view is True
    assert monitor.baseline == (400, 800)


def test_orientation_flip_is_benign_and_moves_baseline() -> None:
    monitor = _armed(1920, 1080)

    result = monitor.observe(_resize(700, 1300, (1920, 1080)))

    assert result.reason is BenignReason.ORIENTATION_CHANGE
    assert not result.is_violation
    assert monitor.baseline == (700, 1300)


def test_keyboard_after_rotation_is_judged_against_new_baseline() -> None:
    monitor = _armed(400, 800)
    monitor.observe(_resize(800, 400, (400, 800)))

    result = monitor.observe(_resize(800, 250, (400, 800)))

    assert result.reason is BenignReason.VIRTUAL_KEYBOARD


@pytest.mark.parametrize("base", [(400, 800), (1920, 1080), (800, 400), (1366, 768)])
def test_height_drop_with_unchanged_width_never_violates(base: tuple[int, int]) -> None:
    width, height = base
    for drop in range(101, height, 37):
        monitor = _armed(width, height)
        result = monitor.observe(_resize(width, height - drop, base))
        assert not result.is_violation, (base, drop)


@pytest.mark.parametrize("size", [(1080, 1920), (600, 601), (300, 2000)])
def test_orientation_flip_never_violates(size: tuple[int, int]) -> None:
    monitor = _armed(1920, 1080)

    result = monitor.observe(_resize(size[0], size[1], (1920, 1080)))

    assert not result.is_violation
    assert monitor.baseline == size


def test_first_resize_without_baseline_establishes_it() -> None:
    monitor = IntegrityMonitor()

    result = monitor.observe(_resize(1024, 768, (1920, 1080)))

    assert result.reason is BenignReason.BASELINE
    assert monitor.baseline == (1024, 768)


def test_tolerances_are_configurable() -> None:
    strict = _armed(1920, 1080, ResizeTolerances(width_threshold_px=10))

    assert strict.observe(_resize(1900, 1080, (1920, 1080))).is_violation


def test_negative_tolerance_rejected() -> None:
    with pytest.raises(ValueError):
        ResizeTolerances(keyboard_margin_px=-1)
