from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .ledger import Answer
from .session import SessionOutcome


@dataclass(frozen=True, slots=True)
class SubmissionPayload:
    """Outbound results for one finished attempt, in the assessment backend's wire shape."""

    owner_id: str
    matriculation_number: str
    student_email: str
    test_id: str
    status: str
    answers: tuple[Answer, ...]
    penalty_reason: str | None = None

    def to_wire(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "_owner": self.owner_id,
            "matriculationNumber": self.matriculation_number,
            "studentEmail": self.student_email,
            "test_id": self.test_id,
            "status": self.status,
            "answers": [
                {
                    "questionId": a.question_id,
                    "questionType": a.question_kind,
                    "answer": a.value,
                    "timeTaken": int(a.time_spent_ms),
                }
                for a in self.answers
            ],
        }
        if self.penalty_reason is not None:
            body["penalty_reason"] = self.penalty_reason
        return body


def payload_from_outcome(outcome: SessionOutcome) -> SubmissionPayload:
    """Build a SubmissionPayload from a finished session."""

    c = outcome.candidate
    return SubmissionPayload(
        owner_id=str(c.owner_id),
        matriculation_number=str(c.matriculation_number).strip(),
        student_email=str(c.email).strip(),
        test_id=str(outcome.test_id),
        status=outcome.status.value,
        answers=tuple(outcome.answers),
        penalty_reason=outcome.penalty_reason,
    )
