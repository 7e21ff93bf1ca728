"""Integrity monitor: classifies window/environment signals.

Tab hiding and leaving fullscreen are always violations. Viewport resizes are
compared against the physical screen, but two common mobile behaviours are
exempt: an orientation flip and an on-screen keyboard shrinking the height.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class SignalKind(str, Enum):
    TAB_HIDDEN = "tab_hidden"
    FULLSCREEN_EXITED = "fullscreen_exited"
    VIEWPORT_RESIZED = "viewport_resized"


@dataclass(frozen=True, slots=True)
class EnvironmentSignal:
    kind: SignalKind
    observed_at_s: float = 0.0
    width: int = 0
    height: int = 0
    screen_width: int = 0
    screen_height: int = 0

    @classmethod
    def tab_hidden(cls, *, observed_at_s: float = 0.0) -> "EnvironmentSignal":
        return cls(SignalKind.TAB_HIDDEN, observed_at_s)

    @classmethod
    def fullscreen_exited(cls, *, observed_at_s: float = 0.0) -> "EnvironmentSignal":
        return cls(SignalKind.FULLSCREEN_EXITED, observed_at_s)

    @classmethod
    def resized(
        cls,
        width: int,
        height: int,
        *,
        screen_width: int,
        screen_height: int,
        observed_at_s: float = 0.0,
    ) -> "EnvironmentSignal":
        return cls(
            SignalKind.VIEWPORT_RESIZED,
            observed_at_s,
            int(width),
            int(height),
            int(screen_width),
            int(screen_height),
        )


SignalHandler = Callable[[EnvironmentSignal], None]


class EnvironmentSignals(Protocol):
    """Source of window/environment signals (pygame window, or a fake in tests)."""

    def subscribe(self, handler: SignalHandler) -> None: ...
    def unsubscribe(self, handler: SignalHandler) -> None: ...
    def viewport_size(self) -> tuple[int, int]: ...


class Verdict(str, Enum):
    BENIGN = "benign"
    VIOLATION = "violation"


class ViolationReason(str, Enum):
    TAB_HIDDEN = "Tab switched or window minimized"
    FULLSCREEN_EXITED = "Exited fullscreen mode"
    WINDOW_RESIZED = "Window resized"


class BenignReason(str, Enum):
    BASELINE = "baseline established"
    ORIENTATION_CHANGE = "orientation change"
    VIRTUAL_KEYBOARD = "virtual keyboard"
    WITHIN_TOLERANCE = "within tolerance"


@dataclass(frozen=True, slots=True)
class Classification:
    verdict: Verdict
    reason: ViolationReason | BenignReason
    scroll_input_into_view: bool = False

    @property
    def is_violation(self) -> bool:
        return self.verdict is Verdict.VIOLATION

    @classmethod
    def benign(cls, reason: BenignReason, *, scroll: bool = False) -> "Classification":
        return cls(Verdict.BENIGN, reason, scroll)

    @classmethod
    def violation(cls, reason: ViolationReason) -> "Classification":
        return cls(Verdict.VIOLATION, reason)


@dataclass(frozen=True, slots=True)
class ViolationEvent:
    reason: ViolationReason
    observed_at_s: float


@dataclass(frozen=True, slots=True)
class ResizeTolerances:
    """Heuristic pixel tolerances; tune to avoid false positives on mobile."""

    height_threshold_px: int = 200
    width_threshold_px: int = 150
    keyboard_margin_px: int = 100
    keyboard_width_slack_px: int = 50

    def __post_init__(self) -> None:
        for name in (
            "height_threshold_px",
            "width_threshold_px",
            "keyboard_margin_px",
            "keyboard_width_slack_px",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")


def is_landscape(width: int, height: int) -> bool:
    return width > height


class IntegrityMonitor:
    """Stateful classifier. ``arm()`` records the viewport baseline at session start."""

    def __init__(self, tolerances: ResizeTolerances | None = None) -> None:
        self._tol = tolerances or ResizeTolerances()
        self._baseline: tuple[int, int] | None = None

    @property
    def tolerances(self) -> ResizeTolerances:
        return self._tol

    @property
    def baseline(self) -> tuple[int, int] | None:
        return self._baseline

    def arm(self, width: int, height: int) -> None:
        self._baseline = (int(width), int(height)) if width > 0 and height > 0 else None

    def observe(self, signal: EnvironmentSignal) -> Classification:
        if signal.kind is SignalKind.TAB_HIDDEN:
            return Classification.violation(ViolationReason.TAB_HIDDEN)
        if signal.kind is SignalKind.FULLSCREEN_EXITED:
            return Classification.violation(ViolationReason.FULLSCREEN_EXITED)
        return self._observe_resize(signal)

    def _observe_resize(self, signal: EnvironmentSignal) -> Classification:
        w, h = signal.width, signal.height
        if self._baseline is None:
            self._baseline = (w, h)
            return Classification.benign(BenignReason.BASELINE)

        base_w, base_h = self._baseline

        if is_landscape(w, h) != is_landscape(base_w, base_h):
            logger.debug(f"orientation change {base_w}x{base_h} -> {w}x{h}")
            self._baseline = (w, h)
            return Classification.benign(BenignReason.ORIENTATION_CHANGE)

        keyboard = (
            base_h - h > self._tol.keyboard_margin_px
            and abs(w - base_w) <= self._tol.keyboard_width_slack_px
        )
        if keyboard:
            # Baseline stays put so the keyboard closing is not a resize either.
            logger.debug(f"virtual keyboard suspected: height {base_h} -> {h}")
            return Classification.benign(BenignReason.VIRTUAL_KEYBOARD, scroll=True)

        screen_w = signal.screen_width or base_w
        screen_h = signal.screen_height or base_h
        mismatched = (
            abs(h - screen_h) > self._tol.height_threshold_px
            or abs(w - screen_w) > self._tol.width_threshold_px
        )
        if mismatched:
            return Classification.violation(ViolationReason.WINDOW_RESIZED)
        return Classification.benign(BenignReason.WITHIN_TOLERANCE)
