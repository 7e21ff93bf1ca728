"""Proctored session engine.

Explicit state machine: not started -> awaiting acceptance -> in progress ->
completed | penalized. Every transition runs synchronously inside one call, so
timer expiry, user actions and environment signals can never interleave
half-way through "capture answer, advance index, start next countdown".

Time is entirely via the injected Clock; environment signals arrive through an
EnvironmentSignals source, so the whole engine runs headlessly in tests.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .clock import Clock, elapsed_ms
from .errors import FullscreenError, InvalidTransitionError
from .integrity import (
    EnvironmentSignal,
    EnvironmentSignals,
    IntegrityMonitor,
    ViolationEvent,
    ViolationReason,
)
from .ledger import Answer, AnswerLedger
from .questions import CATEGORY_ORDER, Question, SeededRng, category_index, sequence
from .session_clock import SAMPLE_INTERVAL_S, SessionClock

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    AWAITING_ACCEPTANCE = "awaiting_acceptance"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PENALIZED = "penalized"

    @property
    def is_finished(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.PENALIZED)


TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.NOT_STARTED: frozenset({SessionState.AWAITING_ACCEPTANCE}),
    SessionState.AWAITING_ACCEPTANCE: frozenset({SessionState.IN_PROGRESS}),
    SessionState.IN_PROGRESS: frozenset(
        {SessionState.IN_PROGRESS, SessionState.COMPLETED, SessionState.PENALIZED}
    ),
    SessionState.COMPLETED: frozenset(),
    SessionState.PENALIZED: frozenset(),
}


class AcceptOutcome(str, Enum):
    STARTED = "started"
    NOT_READY = "not_ready"
    MISSING_IDENTITY = "missing_identity"
    FULLSCREEN_DENIED = "fullscreen_denied"


class FullscreenController(Protocol):
    def enter(self) -> None:
        """Enter exclusive full-screen presentation; raise FullscreenError if refused."""

    def exit(self) -> None:
        """Leave full-screen presentation; may raise FullscreenError."""


@dataclass(frozen=True, slots=True)
class Candidate:
    email: str = ""
    matriculation_number: str = ""
    owner_id: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.email.strip()) and bool(self.matriculation_number.strip())


@dataclass(frozen=True, slots=True)
class SessionOutcome:
    status: SessionState
    answers: tuple[Answer, ...]
    candidate: Candidate
    test_id: str
    violation: ViolationEvent | None = None

    @property
    def penalty_reason(self) -> str | None:
        return None if self.violation is None else self.violation.reason.value


@dataclass(frozen=True, slots=True)
class CategoryProgress:
    kind: str
    answered: int
    total: int


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """View model for the UI (pure data)."""

    title: str
    state: SessionState
    prompt: str
    question_kind: str | None
    choices: tuple[str, ...]
    answer: str
    time_remaining_ms: int | None
    completed: int
    total_main: int
    notice: str | None = None
    violation_reason: str | None = None
    scroll_input_into_view: bool = False
    category_progress: tuple[CategoryProgress, ...] = ()
    secondary_remaining: int = 0


NO_QUESTIONS_NOTICE = "The test has no questions."
MISSING_IDENTITY_NOTICE = "Please enter both student email and matriculation number."
FULLSCREEN_NOTICE = "Could not enter fullscreen mode. Please allow fullscreen and try again."


def format_time(ms: int) -> str:
    """MM:SS for a remaining-time value; negative values are untimed."""

    if ms < 0:
        return "∞"
    total_seconds = max(0, ms // 1000)
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes:02d}:{seconds:02d}"


class ProctoredSession:
    def __init__(
        self,
        *,
        clock: Clock,
        signals: EnvironmentSignals,
        fullscreen: FullscreenController,
        monitor: IntegrityMonitor | None = None,
        rng: SeededRng | None = None,
        sample_interval_s: float = SAMPLE_INTERVAL_S,
        on_finished: Callable[[SessionOutcome], None] | None = None,
        title: str = "Assessment",
    ) -> None:
        self._title = title
        self._clock = clock
        self._signals = signals
        self._fullscreen = fullscreen
        self._monitor = monitor or IntegrityMonitor()
        self._rng = rng
        self._countdown = SessionClock(clock, sample_interval_s=sample_interval_s)
        self._on_finished = on_finished

        self._state = SessionState.NOT_STARTED
        self._questions: list[Question] = []
        self._secondary: deque[Question] = deque()
        self._main_count = 0
        self._main: tuple[Question, ...] = ()
        self._test_id = ""
        self._index: int | None = None
        self._question_started_at_s = 0.0
        self._draft = ""

        self._candidate = Candidate()
        self._ledger = AnswerLedger()
        self._violation: ViolationEvent | None = None
        self._outcome: SessionOutcome | None = None
        self._attached = False
        self._notice: str | None = None
        self._scroll_request = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current_index(self) -> int | None:
        return self._index

    @property
    def current_question(self) -> Question | None:
        if self._index is None:
            return None
        return self._questions[self._index]

    @property
    def questions(self) -> tuple[Question, ...]:
        return tuple(self._questions)

    @property
    def ledger(self) -> AnswerLedger:
        return self._ledger

    @property
    def violation(self) -> ViolationEvent | None:
        return self._violation

    @property
    def outcome(self) -> SessionOutcome | None:
        return self._outcome

    @property
    def candidate(self) -> Candidate:
        return self._candidate

    def can_exit(self) -> bool:
        return self._state is not SessionState.IN_PROGRESS

    # -- setup -------------------------------------------------------------

    def load_questions(
        self,
        questions: Sequence[Question],
        *,
        secondary: Sequence[Question] = (),
        test_id: str = "",
    ) -> bool:
        """Sequence and stage the question set. Returns False when nothing is loaded."""

        if self._state is not SessionState.NOT_STARTED:
            return False
        ordered = sequence(questions, self._rng)
        if not ordered:
            self._notice = NO_QUESTIONS_NOTICE
            logger.info("received empty question list; session not started")
            return False

        self._questions = ordered
        self._main_count = len(ordered)
        self._main = tuple(ordered)
        self._test_id = test_id or next((q.test_id for q in ordered if q.test_id), "")
        self._secondary = deque(secondary)
        self._notice = None
        self._transition(SessionState.AWAITING_ACCEPTANCE)
        return True

    def report_unavailable(self, message: str) -> None:
        if self._state is SessionState.NOT_STARTED:
            self._notice = message

    def set_candidate(self, candidate: Candidate) -> None:
        if self._state in (SessionState.NOT_STARTED, SessionState.AWAITING_ACCEPTANCE):
            self._candidate = candidate

    def accept(self) -> AcceptOutcome:
        if self._state is not SessionState.AWAITING_ACCEPTANCE:
            return AcceptOutcome.NOT_READY
        if not self._candidate.is_complete:
            self._notice = MISSING_IDENTITY_NOTICE
            return AcceptOutcome.MISSING_IDENTITY
        try:
            self._fullscreen.enter()
        except FullscreenError as exc:
            logger.warning(f"fullscreen request failed: {exc}")
            self._notice = FULLSCREEN_NOTICE
            return AcceptOutcome.FULLSCREEN_DENIED

        self._notice = None
        self._monitor.arm(*self._signals.viewport_size())
        self._signals.subscribe(self.handle_signal)
        self._attached = True
        self._activate(0)
        return AcceptOutcome.STARTED

    # -- in progress -------------------------------------------------------

    def set_answer(self, value: str) -> bool:
        if self._state is not SessionState.IN_PROGRESS:
            return False
        self._draft = str(value)
        self._scroll_request = False
        return True

    def submit_answer(self) -> bool:
        """Manual submit: record the current answer and advance."""

        if self._state is not SessionState.IN_PROGRESS:
            return False
        self._advance()
        return True

    def update(self) -> None:
        self._countdown.update()

    def time_remaining_ms(self) -> int | None:
        if self._state is not SessionState.IN_PROGRESS:
            return None
        return self._countdown.remaining_ms

    def handle_signal(self, signal: EnvironmentSignal) -> None:
        if self._state is not SessionState.IN_PROGRESS:
            logger.debug(f"ignoring {signal.kind.value} signal in state {self._state.value}")
            return

        result = self._monitor.observe(signal)
        if not result.is_violation:
            logger.debug(f"benign signal: {result.reason.value}")
            if result.scroll_input_into_view:
                self._scroll_request = True
            return

        if self._violation is not None:
            logger.debug(f"violation already recorded; ignoring {result.reason.value}")
            return
        assert isinstance(result.reason, ViolationReason)
        observed_at = signal.observed_at_s or self._clock.now()
        self._violation = ViolationEvent(reason=result.reason, observed_at_s=observed_at)
        logger.info(f"integrity violation: {result.reason.value}")
        self._penalize()

    # -- view --------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        q = self.current_question
        return SessionSnapshot(
            title=self._title,
            state=self._state,
            prompt=self._prompt_text(),
            question_kind=None if q is None else q.type_code,
            choices=() if q is None else q.choices,
            answer=self._draft if q is not None else "",
            time_remaining_ms=self.time_remaining_ms(),
            completed=0 if self._index is None else self._index,
            total_main=self._main_count,
            notice=self._notice,
            violation_reason=None if self._violation is None else self._violation.reason.value,
            scroll_input_into_view=self._scroll_request,
            category_progress=self._category_progress(),
            secondary_remaining=len(self._secondary),
        )

    def _category_progress(self) -> tuple[CategoryProgress, ...]:
        """Answered/total per category over the primary questions only."""

        progress = []
        for idx, kind in enumerate(CATEGORY_ORDER):
            of_kind = [q for q in self._main if category_index(q) == idx]
            if not of_kind:
                continue
            answered = sum(1 for q in of_kind if q.id in self._ledger)
            progress.append(CategoryProgress(kind=kind.value, answered=answered, total=len(of_kind)))
        return tuple(progress)

    def _prompt_text(self) -> str:
        if self._state is SessionState.NOT_STARTED:
            return self._notice or "Waiting for test questions..."
        if self._state is SessionState.AWAITING_ACCEPTANCE:
            return "\n".join(
                [
                    self._title,
                    "",
                    f"{self._main_count} questions. Each question has its own time limit.",
                    "The test runs in fullscreen. Do not exit fullscreen, switch windows,",
                    "or resize the window. Doing so ends the test immediately.",
                    "",
                    "Enter your email and matriculation number, then press Enter to accept.",
                ]
            )
        if self._state is SessionState.COMPLETED:
            return "Test complete. Your answers have been recorded."
        if self._state is SessionState.PENALIZED:
            reason = "" if self._violation is None else f" ({self._violation.reason.value})"
            return f"Test violation detected{reason}. Your answers have been submitted and the test has ended."
        q = self.current_question
        return "" if q is None else q.prompt

    # -- transitions -------------------------------------------------------

    def _transition(self, target: SessionState) -> None:
        if target not in TRANSITIONS[self._state]:
            raise InvalidTransitionError(f"{self._state.value} -> {target.value}")
        logger.info(f"session {self._state.value} -> {target.value}")
        self._state = target

    def _activate(self, index: int) -> None:
        self._transition(SessionState.IN_PROGRESS)
        self._index = index
        self._draft = ""
        self._scroll_request = False
        self._question_started_at_s = self._clock.now()
        q = self._questions[index]
        if not q.is_timed:
            logger.warning(f"question {q.id} has non-positive duration {q.duration_ms}; untimed")
        self._countdown.start(q.duration_ms, on_expire=self._on_expire)

    def _on_expire(self) -> None:
        if self._state is SessionState.IN_PROGRESS:
            self._advance()

    def _capture_current(self) -> None:
        q = self.current_question
        if q is None:
            return
        self._ledger.upsert(
            Answer(
                question_id=q.id,
                question_kind=q.type_code,
                value=self._draft,
                time_spent_ms=elapsed_ms(self._clock, self._question_started_at_s),
            )
        )

    def _advance(self) -> None:
        assert self._index is not None
        self._countdown.cancel()
        self._capture_current()

        next_index = self._index + 1
        if next_index >= len(self._questions) and self._secondary:
            self._questions.append(self._secondary.popleft())
        if next_index < len(self._questions):
            self._activate(next_index)
            return
        self._finish(SessionState.COMPLETED)

    def _penalize(self) -> None:
        self._countdown.cancel()
        self._capture_current()
        self._questions = []
        self._secondary.clear()
        self._finish(SessionState.PENALIZED)

    def _finish(self, status: SessionState) -> None:
        self._countdown.cancel()
        if self._attached:
            self._signals.unsubscribe(self.handle_signal)
            self._attached = False
        self._index = None
        self._draft = ""
        self._scroll_request = False
        self._transition(status)
        self._ledger.seal()

        try:
            self._fullscreen.exit()
        except FullscreenError as exc:
            logger.warning(f"could not exit fullscreen: {exc}")

        self._outcome = SessionOutcome(
            status=status,
            answers=self._ledger.snapshot(),
            candidate=self._candidate,
            test_id=self._test_id,
            violation=self._violation,
        )
        if self._on_finished is not None:
            self._on_finished(self._outcome)
