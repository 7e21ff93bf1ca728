from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

# Headless SDL for CI.
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")

import pygame  # noqa: E402

from testlock import app as app_mod  # noqa: E402
from testlock.app import ProctoredTestScreen, run  # noqa: E402
from testlock.config import TestLockSettings  # noqa: E402
from testlock.errors import SubmissionError  # noqa: E402
from testlock.questions import Question, QuestionKind  # noqa: E402
from testlock.session import Candidate, SessionState  # noqa: E402
from testlock.source import LoadStatus, QuestionLoad  # noqa: E402
from testlock.submission import RetryPolicy, SubmissionStatus  # noqa: E402

CANDIDATE = Candidate(email="ada@example.edu", matriculation_number="MAT/001", owner_id="own-1")
LOAD = QuestionLoad(
    LoadStatus.LOADED,
    questions=(Question(id="q1", prompt="Name a colour", kind=QuestionKind.SHORT_TEXT, duration_ms=60_000),),
    test_id="test-1",
)


@dataclass
class Transport:
    failures: int = 0
    delivered: list[dict[str, Any]] = field(default_factory=list)
    calls: int = 0

    def deliver(self, body: dict[str, Any]) -> dict[str, Any]:
        self.calls += 1
        if self.calls <= self.failures:
            raise SubmissionError("HTTP 503: unavailable", status_code=503)
        self.delivered.append(body)
        return {"ok": True}


@pytest.fixture(autouse=True)
def fake_fullscreen(monkeypatch) -> None:
    # The dummy display has no real fullscreen mode to switch to.
    def enter(self) -> None:
        self._active = True

    def exit(self) -> None:
        self._active = False

    monkeypatch.setattr(app_mod.PygameFullscreen, "enter", enter)
    monkeypatch.setattr(app_mod.PygameFullscreen, "exit", exit)


def _key(k: int, text: str = "") -> None:
    pygame.event.post(pygame.event.Event(pygame.KEYDOWN, {"key": k, "unicode": text, "mod": 0}))


def _close_window() -> None:
    pygame.event.post(pygame.event.Event(pygame.QUIT))


def _run(script: dict[int, Callable[[], None]], transport: Transport, **kw) -> tuple[ProctoredTestScreen, list[int]]:
    screens: list[ProctoredTestScreen] = []
    frames: list[int] = []

    def inject(frame: int) -> None:
        frames.append(frame)
        action = script.get(frame)
        if action is not None:
            action()

    exit_code = run(
        max_frames=600,
        event_injector=inject,
        load=LOAD,
        candidate=CANDIDATE,
        transport=transport,
        on_screen=screens.append,
        **kw,
    )
    assert exit_code == 0
    return screens[0], frames


def test_ui_smoke_accept_answer_and_submit() -> None:
    transport = Transport()

    # Accept -> type "r" -> submit -> close
    screen, frames = _run(
        {
            1: lambda: _key(pygame.K_RETURN),
            2: lambda: _key(pygame.K_r, "r"),
            3: lambda: _key(pygame.K_RETURN),
            4: _close_window,
        },
        transport,
    )

    assert screen.session.state is SessionState.COMPLETED
    assert [a.value for a in screen.session.ledger.snapshot()] == ["r"]
    assert screen.coordinator.status is SubmissionStatus.DELIVERED
    assert len(transport.delivered) == 1
    assert transport.delivered[0]["status"] == "completed"
    answer = transport.delivered[0]["answers"][0]
    assert (answer["questionId"], answer["questionType"], answer["answer"]) == ("q1", "SHORT", "r")
    assert frames[-1] < 599


def test_ui_closing_window_mid_test_penalizes_and_submits() -> None:
    transport = Transport()

    screen, frames = _run(
        {
            1: lambda: _key(pygame.K_RETURN),
            2: lambda: _key(pygame.K_r, "r"),
            3: _close_window,
        },
        transport,
    )

    assert screen.session.state is SessionState.PENALIZED
    assert screen.coordinator.status is SubmissionStatus.DELIVERED
    (body,) = transport.delivered
    assert body["status"] == "penalized"
    assert body["penalty_reason"] == "Tab switched or window minimized"
    assert [a["answer"] for a in body["answers"]] == ["r"]
    assert frames[-1] < 599


def test_ui_close_waits_for_pending_delivery() -> None:
    transport = Transport(failures=1)
    settings = TestLockSettings(retry=RetryPolicy(max_attempts=3, initial_delay_s=0.2))

    screen, frames = _run(
        {
            1: lambda: _key(pygame.K_RETURN),
            2: lambda: _key(pygame.K_RETURN),
            3: _close_window,
        },
        transport,
        settings=settings,
    )

    # The close arrived during backoff; the loop kept running until the retry landed.
    assert transport.calls == 2
    assert len(transport.delivered) == 1
    assert screen.coordinator.status is SubmissionStatus.DELIVERED
    assert screen.coordinator.outcome is not None and screen.coordinator.outcome.attempts == 2
    assert 3 < frames[-1] < 599
