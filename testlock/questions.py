from __future__ import annotations

import logging
import random
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from .errors import QuestionPayloadError

logger = logging.getLogger(__name__)


class QuestionKind(str, Enum):
    MULTIPLE_CHOICE = "MCQ"
    GENERAL_OBJECTIVE = "G_OBJ"
    SHORT_TEXT = "SHORT"
    LONG_FORM = "PARAGRAPH"

    @classmethod
    def from_code(cls, code: object) -> "QuestionKind | None":
        try:
            return cls(str(code))
        except ValueError:
            return None


# Fixed category precedence; anything unrecognised joins the last category.
CATEGORY_ORDER: tuple[QuestionKind, ...] = (
    QuestionKind.MULTIPLE_CHOICE,
    QuestionKind.GENERAL_OBJECTIVE,
    QuestionKind.SHORT_TEXT,
    QuestionKind.LONG_FORM,
)


@dataclass(frozen=True, slots=True)
class Question:
    id: str
    prompt: str
    kind: QuestionKind | str  # unknown wire codes are kept verbatim
    duration_ms: int
    test_id: str = ""
    choices: tuple[str, ...] = ()

    @property
    def type_code(self) -> str:
        return self.kind.value if isinstance(self.kind, QuestionKind) else str(self.kind)

    @property
    def is_multiple_choice(self) -> bool:
        return self.kind is QuestionKind.MULTIPLE_CHOICE

    @property
    def is_timed(self) -> bool:
        return self.duration_ms > 0


def _option_text(option: object) -> str | None:
    if isinstance(option, str):
        return option
    if isinstance(option, Mapping) and "text" in option:
        return str(option["text"])
    return None


def _normalize_options(raw: object) -> tuple[str, ...] | None:
    if not isinstance(raw, list):
        return None
    texts = [_option_text(o) for o in raw]
    if any(t is None for t in texts):
        return None
    return tuple(t for t in texts if t is not None)


def _duration_ms(raw: object) -> int:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return 0
    return int(raw)


def parse_question(raw: Mapping[str, object]) -> Question:
    """Build a Question from one inbound payload entry.

    ``options`` given as ``{"text": ...}`` objects are flattened to strings.
    Multiple-choice questions with unusable options get an empty choice list.
    """

    question_id = raw.get("_id")
    prompt = raw.get("query")
    if not question_id or not isinstance(prompt, str) or not prompt:
        raise QuestionPayloadError(f"question payload missing _id/query: {dict(raw)!r}")

    code = raw.get("type", "")
    kind: QuestionKind | str = QuestionKind.from_code(code) or str(code)

    choices: tuple[str, ...] = ()
    if kind is QuestionKind.MULTIPLE_CHOICE:
        normalized = _normalize_options(raw.get("options"))
        if normalized is None:
            logger.warning(f"MCQ question {question_id} has malformed options; defaulting to none")
            normalized = ()
        choices = normalized

    return Question(
        id=str(question_id),
        prompt=prompt,
        kind=kind,
        duration_ms=_duration_ms(raw.get("dur_millis")),
        test_id=str(raw.get("test_id") or ""),
        choices=choices,
    )


def parse_questions(raw: Iterable[Mapping[str, object]]) -> list[Question]:
    return [parse_question(item) for item in raw]


class SeededRng:
    """Seeded RNG wrapper; ``None`` seeds from system entropy."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)


def category_index(question: Question) -> int:
    if isinstance(question.kind, QuestionKind):
        return CATEGORY_ORDER.index(question.kind)
    return len(CATEGORY_ORDER) - 1


def shuffle_in_place(items: list[Question], rng: SeededRng) -> None:
    """Fisher-Yates: swap item i with a uniform pick from [0, i], i descending."""

    for i in range(len(items) - 1, 0, -1):
        j = rng.randint(0, i)
        items[i], items[j] = items[j], items[i]


def sequence(questions: Sequence[Question], rng: SeededRng | None = None) -> list[Question]:
    """Group questions by category precedence and shuffle within each group.

    The result is a permutation of the input. Empty input gives an empty list.
    """

    rng = rng if rng is not None else SeededRng()
    groups: list[list[Question]] = [[] for _ in CATEGORY_ORDER]
    for q in questions:
        groups[category_index(q)].append(q)

    ordered: list[Question] = []
    for group in groups:
        shuffle_in_place(group, rng)
        ordered.extend(group)
    return ordered
