"""Pygame shell for the proctored assessment runner.

The window stands in for the browser tab: focus loss, minimising and closing
the window map to a hidden tab, leaving fullscreen (Esc, or a restored
window) maps to fullscreen exit, and window size changes are forwarded as
viewport resizes.

Deterministic timing/sequencing/integrity/state lives in testlock/* (core
modules); this module only translates events and renders snapshots. Result
delivery runs on a daemon worker thread; the frame loop never waits on it.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable

import httpx
import pygame

from .clock import Clock, RealClock
from .config import TestLockSettings
from .errors import FullscreenError
from .integrity import EnvironmentSignal, IntegrityMonitor, SignalHandler
from .persistence import record_attempt
from .results import SubmissionPayload, payload_from_outcome
from .session import (
    AcceptOutcome,
    Candidate,
    ProctoredSession,
    SessionOutcome,
    SessionSnapshot,
    SessionState,
    format_time,
)
from .source import QuestionLoad
from .submission import (
    HostChannel,
    HttpSubmissionTransport,
    SubmissionCoordinator,
    SubmissionOutcome,
    SubmissionStatus,
    SubmissionTransport,
)

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60
# Window-manager churn right after entering fullscreen is not a signal.
FULLSCREEN_SETTLE_S = 0.5


class PygameFullscreen:
    """Fullscreen presentation for the pygame window."""

    def __init__(self, windowed_size: tuple[int, int] = WINDOW_SIZE) -> None:
        self._windowed_size = windowed_size
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def enter(self) -> None:
        try:
            pygame.display.set_mode((0, 0), pygame.FULLSCREEN)
        except pygame.error as exc:
            raise FullscreenError(str(exc)) from exc
        self._active = True

    def exit(self) -> None:
        if not self._active:
            return
        self._active = False
        try:
            pygame.display.set_mode(self._windowed_size, pygame.RESIZABLE)
        except pygame.error as exc:
            raise FullscreenError(str(exc)) from exc


_HIDDEN_EVENTS = (pygame.WINDOWFOCUSLOST, pygame.WINDOWMINIMIZED, pygame.WINDOWHIDDEN)


class PygameEnvironmentSignals:
    """Translates pygame window events into EnvironmentSignals for subscribers."""

    def __init__(self, clock: Clock, *, fullscreen: PygameFullscreen | None = None) -> None:
        self._clock = clock
        self._fullscreen = fullscreen
        self._handlers: list[SignalHandler] = []
        self._quiet_until_s = 0.0

    def subscribe(self, handler: SignalHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: SignalHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    @property
    def subscribed(self) -> bool:
        return bool(self._handlers)

    def viewport_size(self) -> tuple[int, int]:
        surface = pygame.display.get_surface()
        return WINDOW_SIZE if surface is None else surface.get_size()

    def screen_size(self) -> tuple[int, int]:
        try:
            sizes = pygame.display.get_desktop_sizes()
        except pygame.error:
            sizes = []
        if sizes and sizes[0][0] > 0 and sizes[0][1] > 0:
            return sizes[0]
        return self.viewport_size()

    def settle(self, seconds: float = FULLSCREEN_SETTLE_S) -> None:
        self._quiet_until_s = self._clock.now() + seconds

    def emit(self, signal: EnvironmentSignal) -> None:
        for handler in list(self._handlers):
            handler(signal)

    def dispatch(self, event: pygame.event.Event) -> bool:
        """Forward a window event as a signal. Returns True if the event was a window signal."""

        if event.type in _HIDDEN_EVENTS:
            signal = EnvironmentSignal.tab_hidden(observed_at_s=self._clock.now())
        elif event.type == pygame.WINDOWSIZECHANGED:
            screen_w, screen_h = self.screen_size()
            signal = EnvironmentSignal.resized(
                event.x,
                event.y,
                screen_width=screen_w,
                screen_height=screen_h,
                observed_at_s=self._clock.now(),
            )
        elif event.type == pygame.WINDOWRESTORED and self._left_fullscreen():
            signal = EnvironmentSignal.fullscreen_exited(observed_at_s=self._clock.now())
        else:
            return False

        if self._clock.now() < self._quiet_until_s:
            logger.debug(f"settling after fullscreen; dropped {signal.kind.value}")
            return True
        self.emit(signal)
        return True

    def _left_fullscreen(self) -> bool:
        if self._fullscreen is None or not self._fullscreen.active:
            return False
        surface = pygame.display.get_surface()
        return surface is None or not (surface.get_flags() & pygame.FULLSCREEN)


_CLIPBOARD_NOTICES = {
    pygame.K_c: "Copying is disabled.",
    pygame.K_x: "Cutting is disabled.",
    pygame.K_v: "Pasting is disabled.",
}


def blocked_clipboard_notice(event: pygame.event.Event) -> str | None:
    """Notice for a refused copy/cut/paste/drop gesture, or None for other events."""

    if event.type in (pygame.DROPFILE, pygame.DROPTEXT):
        return "Dropping is disabled."
    if event.type != pygame.KEYDOWN:
        return None
    mod = getattr(event, "mod", 0)
    if mod & (pygame.KMOD_CTRL | pygame.KMOD_META) and event.key in _CLIPBOARD_NOTICES:
        return _CLIPBOARD_NOTICES[event.key]
    if mod & pygame.KMOD_SHIFT and event.key == pygame.K_INSERT:
        return "Pasting is disabled."
    return None


class ProctoredTestScreen:
    NOTICE_S = 2.0

    def __init__(
        self,
        font: pygame.font.Font,
        *,
        session: ProctoredSession,
        coordinator: SubmissionCoordinator,
        signals: PygameEnvironmentSignals,
        clock: Clock,
    ) -> None:
        self._font = font
        self._session = session
        self._coordinator = coordinator
        self._signals = signals
        self._clock = clock
        self._running = True
        self._quit_requested = False

        c = session.candidate
        self._fields = [c.email, c.matriculation_number]
        self._field = 0
        self._choice = 0
        self._flash: str | None = None
        self._flash_until_s = 0.0

        self._small_font = pygame.font.Font(None, 24)
        self._tiny_font = pygame.font.Font(None, 18)
        self._mid_font = pygame.font.Font(None, 40)

    @property
    def session(self) -> ProctoredSession:
        return self._session

    @property
    def coordinator(self) -> SubmissionCoordinator:
        return self._coordinator

    @property
    def running(self) -> bool:
        return self._running

    def request_quit(self) -> None:
        """Close the window; an attempt in progress ends as a violation first.

        While results are still being delivered the close is deferred until
        delivery finishes.
        """

        if self._session.state is SessionState.IN_PROGRESS:
            logger.info("window closed during the test")
            self._signals.emit(EnvironmentSignal.tab_hidden(observed_at_s=self._clock.now()))
        self._quit_requested = True
        self._check_quit()

    def _check_quit(self) -> None:
        if self._quit_requested and self._coordinator.status is not SubmissionStatus.PENDING:
            self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.request_quit()
            return
        state = self._session.state
        if state is SessionState.IN_PROGRESS:
            self._handle_in_progress(event)
            return
        if event.type != pygame.KEYDOWN:
            return
        if state is SessionState.AWAITING_ACCEPTANCE:
            self._handle_acceptance_key(event)
            return
        if event.key in (pygame.K_ESCAPE, pygame.K_RETURN, pygame.K_KP_ENTER):
            self.request_quit()

    def _handle_acceptance_key(self, event: pygame.event.Event) -> None:
        key = event.key
        if key == pygame.K_ESCAPE:
            self.request_quit()
            return
        if key in (pygame.K_TAB, pygame.K_UP, pygame.K_DOWN):
            self._field = 1 - self._field
            return
        if key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            self._accept()
            return
        if key == pygame.K_BACKSPACE:
            self._fields[self._field] = self._fields[self._field][:-1]
            return
        ch = getattr(event, "unicode", "")
        if ch and ch.isprintable() and len(self._fields[self._field]) < 120:
            self._fields[self._field] += ch

    def _accept(self) -> None:
        c = self._session.candidate
        self._session.set_candidate(
            Candidate(email=self._fields[0], matriculation_number=self._fields[1], owner_id=c.owner_id)
        )
        result = self._session.accept()
        if result is AcceptOutcome.STARTED:
            self._signals.settle()
            self._choice = 0
        logger.info(f"acceptance: {result.value}")

    def _handle_in_progress(self, event: pygame.event.Event) -> None:
        if self._signals.dispatch(event):
            return
        notice = blocked_clipboard_notice(event)
        if notice is not None:
            self._show_flash(notice)
            return
        if event.type != pygame.KEYDOWN:
            return

        key = event.key
        if key == pygame.K_ESCAPE:
            # Esc is the platform's leave-fullscreen gesture.
            self._signals.emit(EnvironmentSignal.fullscreen_exited(observed_at_s=self._clock.now()))
            return

        q = self._session.current_question
        if q is None:
            return
        mod = getattr(event, "mod", 0)

        if q.is_multiple_choice and q.choices:
            picked = self._choice_from_key(key)
            if picked is not None and picked < len(q.choices):
                self._choice = picked
                self._session.set_answer(q.choices[picked])
            elif key in (pygame.K_UP, pygame.K_DOWN):
                step = -1 if key == pygame.K_UP else 1
                self._choice = (self._choice + step) % len(q.choices)
                self._session.set_answer(q.choices[self._choice])
            elif key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                self._submit()
            return

        draft = self._session.snapshot().answer
        if key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            if mod & pygame.KMOD_SHIFT and not q.is_multiple_choice:
                self._session.set_answer(draft + "\n")
            else:
                self._submit()
            return
        if key == pygame.K_BACKSPACE:
            self._session.set_answer(draft[:-1])
            return
        ch = getattr(event, "unicode", "")
        if ch and ch.isprintable():
            self._session.set_answer(draft + ch)

    def _submit(self) -> None:
        self._session.submit_answer()
        self._choice = 0

    def _show_flash(self, text: str) -> None:
        self._flash = text
        self._flash_until_s = self._clock.now() + self.NOTICE_S

    @staticmethod
    def _choice_from_key(key: int) -> int | None:
        mapping = {
            pygame.K_1: 0,
            pygame.K_2: 1,
            pygame.K_3: 2,
            pygame.K_4: 3,
            pygame.K_5: 4,
            pygame.K_6: 5,
            pygame.K_KP1: 0,
            pygame.K_KP2: 1,
            pygame.K_KP3: 2,
            pygame.K_KP4: 3,
            pygame.K_KP5: 4,
            pygame.K_KP6: 5,
        }
        return mapping.get(key)

    # -- rendering ---------------------------------------------------------

    def render(self, surface: pygame.Surface) -> None:
        # Update engine and take a fresh snapshot.
        self._session.update()
        self._check_quit()
        snap = self._session.snapshot()

        surface.fill((10, 10, 14))
        title = self._font.render(snap.title, True, (235, 235, 245))
        surface.blit(title, (40, 30))

        if snap.state is SessionState.IN_PROGRESS:
            self._render_question(surface, snap)
        elif snap.state is SessionState.AWAITING_ACCEPTANCE:
            self._render_lines(surface, snap.prompt.split("\n"), y=90)
            self._render_acceptance_fields(surface)
        elif snap.state.is_finished:
            self._render_lines(surface, [snap.prompt, "", self._submission_text()], y=110)
            if self._coordinator.status is not SubmissionStatus.PENDING:
                hint = self._small_font.render("Press Enter to close.", True, (140, 140, 150))
                surface.blit(hint, (40, surface.get_height() - 60))
        else:
            self._render_lines(surface, snap.prompt.split("\n"), y=110)

        self._render_notice(surface, snap)

    def _render_lines(self, surface: pygame.Surface, lines: list[str], *, y: int) -> int:
        for line in lines[:14]:
            txt = self._small_font.render(line, True, (235, 235, 245))
            surface.blit(txt, (40, y))
            y += 26
        return y

    def _render_acceptance_fields(self, surface: pygame.Surface) -> None:
        labels = ("Student email", "Matriculation number")
        y = surface.get_height() - 190
        caret = "|" if (pygame.time.get_ticks() // 500) % 2 == 0 else ""
        for idx, label in enumerate(labels):
            active = idx == self._field
            lab = self._small_font.render(label, True, (180, 180, 190))
            surface.blit(lab, (40, y))
            box = pygame.Rect(260, y - 8, 420, 36)
            pygame.draw.rect(surface, (30, 30, 40), box)
            pygame.draw.rect(surface, (200, 200, 230) if active else (90, 90, 110), box, 2)
            entry = self._small_font.render(self._fields[idx] + (caret if active else ""), True, (235, 235, 245))
            surface.blit(entry, (box.x + 10, box.y + 9))
            y += 52

    def _render_category_bars(self, surface: pygame.Surface, snap: SessionSnapshot, *, y: int) -> None:
        if not snap.category_progress:
            return
        gap = 16
        width = (surface.get_width() - 80 - gap * (len(snap.category_progress) - 1)) // len(snap.category_progress)
        x = 40
        for cat in snap.category_progress:
            label = self._tiny_font.render(f"{cat.kind}  {cat.answered}/{cat.total}", True, (140, 140, 150))
            surface.blit(label, (x, y))
            bar = pygame.Rect(x, y + 18, width, 6)
            pygame.draw.rect(surface, (40, 40, 52), bar)
            fill = bar.copy()
            fill.w = int(bar.w * (cat.answered / cat.total))
            pygame.draw.rect(surface, (120, 150, 230), fill)
            x += width + gap

    def _render_question(self, surface: pygame.Surface, snap: SessionSnapshot) -> None:
        remaining = -1 if snap.time_remaining_ms is None else snap.time_remaining_ms
        timer = self._mid_font.render(format_time(remaining), True, (235, 235, 245))
        surface.blit(timer, timer.get_rect(topright=(surface.get_width() - 40, 26)))

        total = max(snap.total_main, snap.completed + 1)
        extra = f" (+{snap.secondary_remaining} penalties)" if snap.secondary_remaining else ""
        progress = self._small_font.render(
            f"Question {min(snap.completed + 1, total)} of {total}{extra}  [{snap.question_kind}]",
            True,
            (180, 180, 190),
        )
        surface.blit(progress, (40, 80))
        self._render_category_bars(surface, snap, y=104)

        y = self._render_lines(surface, snap.prompt.split("\n"), y=150) + 16

        if snap.choices:
            for idx, choice in enumerate(snap.choices):
                selected = snap.answer == choice
                row = pygame.Rect(40, y, surface.get_width() - 80, 34)
                pygame.draw.rect(surface, (60, 70, 120) if selected else (24, 24, 34), row)
                pygame.draw.rect(surface, (90, 90, 110), row, 1)
                txt = self._small_font.render(f"{idx + 1}. {choice}", True, (235, 235, 245))
                surface.blit(txt, (row.x + 10, row.y + 9))
                y += 40
            hint = "Press 1-6 or Up/Down to choose, Enter to submit"
        else:
            box_h = 44 if snap.question_kind != "PARAGRAPH" else 120
            box_y = surface.get_height() - 90 - box_h if not snap.scroll_input_into_view else max(y, 140)
            box = pygame.Rect(40, box_y, surface.get_width() - 80, box_h)
            pygame.draw.rect(surface, (30, 30, 40), box)
            pygame.draw.rect(surface, (90, 90, 110), box, 2)
            caret = "|" if (pygame.time.get_ticks() // 500) % 2 == 0 else ""
            ty = box.y + 10
            for line in (snap.answer + caret).split("\n")[-4:]:
                entry = self._small_font.render(line, True, (235, 235, 245))
                surface.blit(entry, (box.x + 10, ty))
                ty += 24
            hint = "Type your answer, Enter to submit" + (
                " (Shift+Enter for a new line)" if snap.question_kind == "PARAGRAPH" else ""
            )

        foot = self._small_font.render(hint, True, (140, 140, 150))
        surface.blit(foot, (40, surface.get_height() - 40))

    def _render_notice(self, surface: pygame.Surface, snap: SessionSnapshot) -> None:
        text = snap.notice
        if self._flash is not None and self._clock.now() < self._flash_until_s:
            text = self._flash
        if not text or snap.state is SessionState.NOT_STARTED:
            return
        txt = self._small_font.render(text, True, (255, 140, 140))
        surface.blit(txt, txt.get_rect(midbottom=(surface.get_width() // 2, surface.get_height() - 12)))

    def _submission_text(self) -> str:
        status = self._coordinator.status
        if status is SubmissionStatus.PENDING:
            wait = self._coordinator.seconds_until_next_attempt() or 0.0
            if self._coordinator.attempts == 0 or wait <= 0.0:
                return "Submitting your answers..."
            return f"Submission attempt {self._coordinator.attempts} failed; retrying in {wait:.0f}s."
        outcome = self._coordinator.outcome
        if status is SubmissionStatus.DELIVERED:
            return "Your answers were submitted successfully."
        if status is SubmissionStatus.FAILED and outcome is not None:
            return f"Submission failed after {outcome.attempts} attempts: {outcome.error}"
        return ""


def _record_locally(settings: TestLockSettings) -> Callable[[SubmissionPayload, SubmissionOutcome], None]:
    def record(payload: SubmissionPayload, outcome: SubmissionOutcome) -> None:
        if settings.db_path is None:
            return
        try:
            attempt_id = record_attempt(db_path=settings.db_path, payload=payload, outcome=outcome)
        except (sqlite3.Error, OSError) as exc:
            logger.error(f"could not record attempt locally: {exc}")
            return
        logger.info(f"attempt recorded locally as #{attempt_id}")

    return record


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    settings: TestLockSettings | None = None,
    load: QuestionLoad | None = None,
    candidate: Candidate | None = None,
    transport: SubmissionTransport | None = None,
    host: HostChannel | None = None,
    on_screen: Callable[[ProctoredTestScreen], None] | None = None,
) -> int:
    settings = settings or TestLockSettings()

    pygame.init()
    pygame.display.set_caption("TestLock")
    pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)
    pygame.key.set_repeat(400, 40)

    font = pygame.font.Font(None, 36)
    frame_clock = pygame.time.Clock()
    real_clock = RealClock()

    client: httpx.Client | None = None
    if transport is None:
        client = httpx.Client(base_url=settings.base_url, timeout=settings.request_timeout_s)
        transport = HttpSubmissionTransport(client, path=settings.submit_path)

    fullscreen = PygameFullscreen()
    signals = PygameEnvironmentSignals(real_clock, fullscreen=fullscreen)
    coordinator = SubmissionCoordinator(
        transport,
        clock=real_clock,
        policy=settings.retry,
        host=host,
        on_complete=_record_locally(settings),
    )
    worker: threading.Thread | None = None

    def deliver(outcome: SessionOutcome) -> None:
        nonlocal worker
        # Status is PENDING before the frame loop sees the finished session.
        coordinator.start(payload_from_outcome(outcome))
        worker = threading.Thread(target=coordinator.run_until_complete, name="testlock-submit", daemon=True)
        worker.start()

    session = ProctoredSession(
        clock=real_clock,
        signals=signals,
        fullscreen=fullscreen,
        monitor=IntegrityMonitor(settings.tolerances),
        sample_interval_s=settings.sample_interval_s,
        on_finished=deliver,
    )
    if candidate is not None:
        session.set_candidate(candidate)
    if load is None:
        session.report_unavailable("Waiting for test questions...")
    elif load.ok:
        session.load_questions(load.questions, secondary=load.secondary, test_id=load.test_id)
    else:
        session.report_unavailable(load.message or "The test is unavailable.")

    screen = ProctoredTestScreen(font, session=session, coordinator=coordinator, signals=signals, clock=real_clock)
    if on_screen is not None:
        on_screen(screen)

    frame = 0
    try:
        while screen.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                screen.handle_event(event)

            surface = pygame.display.get_surface()
            if surface is not None:
                screen.render(surface)

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            frame_clock.tick(TARGET_FPS)
    finally:
        if coordinator.status is SubmissionStatus.PENDING:
            # The daemon worker keeps using the client until the process exits.
            logger.warning("exiting while results are still being delivered")
        else:
            if worker is not None:
                worker.join()
            if client is not None:
                client.close()
        pygame.quit()

    return 0
