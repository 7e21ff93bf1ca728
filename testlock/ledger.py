from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Answer:
    question_id: str
    question_kind: str
    value: str
    time_spent_ms: int


class AnswerLedger:
    """One answer per question id; a later write for the same id replaces the earlier one."""

    def __init__(self) -> None:
        self._answers: list[Answer] = []
        self._positions: dict[str, int] = {}
        self._sealed = False

    def __len__(self) -> int:
        return len(self._answers)

    def __contains__(self, question_id: object) -> bool:
        return question_id in self._positions

    @property
    def sealed(self) -> bool:
        return self._sealed

    def get(self, question_id: str) -> Answer | None:
        pos = self._positions.get(question_id)
        return None if pos is None else self._answers[pos]

    def upsert(self, answer: Answer) -> None:
        if self._sealed:
            raise RuntimeError("ledger is read-only once the session has finished")
        pos = self._positions.get(answer.question_id)
        if pos is None:
            self._positions[answer.question_id] = len(self._answers)
            self._answers.append(answer)
        else:
            self._answers[pos] = answer

    def seal(self) -> None:
        self._sealed = True

    def snapshot(self) -> tuple[Answer, ...]:
        return tuple(self._answers)
