from __future__ import annotations

import pytest

from testlock.ledger import Answer, AnswerLedger


def _a(qid: str, value: str, ms: int = 100) -> Answer:
    return Answer(question_id=qid, question_kind="SHORT", value=value, time_spent_ms=ms)


def test_later_write_for_same_question_replaces_earlier() -> None:
    ledger = AnswerLedger()
    ledger.upsert(_a("q1", "A"))
    ledger.upsert(_a("q1", "B", ms=250))

    assert len(ledger) == 1
    entry = ledger.get("q1")
    assert entry is not None
    assert entry.value == "B"
    assert entry.time_spent_ms == 250


def test_new_questions_append_and_replacement_keeps_position() -> None:
    ledger = AnswerLedger()
    ledger.upsert(_a("q1", "first"))
    ledger.upsert(_a("q2", "second"))
    ledger.upsert(_a("q1", "revised"))

    assert [(a.question_id, a.value) for a in ledger.snapshot()] == [("q1", "revised"), ("q2", "second")]
    assert "q2" in ledger
    assert "q3" not in ledger


def test_snapshot_does_not_change_with_later_writes() -> None:
    ledger = AnswerLedger()
    ledger.upsert(_a("q1", "A"))
    snap = ledger.snapshot()
    again = ledger.snapshot()
    ledger.upsert(_a("q2", "B"))

    assert snap == again
    assert len(snap) == 1
    assert len(ledger) == 2


def test_sealed_ledger_is_read_only() -> None:
    ledger = AnswerLedger()
    ledger.upsert(_a("q1", "A"))
    ledger.seal()

    with pytest.raises(RuntimeError):
        ledger.upsert(_a("q1", "B"))
    assert ledger.sealed
    assert ledger.snapshot()[0].value == "A"
