from __future__ import annotations

from pathlib import Path

from testlock.ledger import Answer
from testlock.persistence import SCHEMA_VERSION, load_attempts, open_db, record_attempt
from testlock.results import SubmissionPayload
from testlock.submission import SubmissionOutcome


def _payload() -> SubmissionPayload:
    return SubmissionPayload(
        owner_id="own-1",
        matriculation_number="MAT/001",
        student_email="ada@example.edu",
        test_id="test-1",
        status="penalized",
        answers=(Answer("q1", "MCQ", "beta", 900), Answer("q2", "PARAGRAPH", "", 4000)),
        penalty_reason="Window resized",
    )


def test_open_db_creates_parent_dirs_and_schema(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "dir" / "attempts.sqlite3"
    conn = open_db(db_path)
    try:
        version = conn.execute("PRAGMA user_version;").fetchone()[0]
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    finally:
        conn.close()

    assert db_path.exists()
    assert version == SCHEMA_VERSION
    assert {"attempt", "answer"} <= tables


def test_recorded_attempt_round_trips_with_answers_in_order(tmp_path: Path) -> None:
    db_path = tmp_path / "attempts.sqlite3"

    first = record_attempt(
        db_path=db_path,
        payload=_payload(),
        outcome=SubmissionOutcome(delivered=False, attempts=7, error="HTTP 503"),
    )
    second = record_attempt(
        db_path=db_path,
        payload=_payload(),
        outcome=SubmissionOutcome(delivered=True, attempts=1, response={"ok": True}),
    )

    attempts = load_attempts(db_path)
    assert [a["id"] for a in attempts] == [first, second]
    a = attempts[0]
    assert a["status"] == "penalized"
    assert a["penalty_reason"] == "Window resized"
    assert a["delivered"] == 0
    assert a["delivery_attempts"] == 7
    assert a["delivery_error"] == "HTTP 503"
    assert str(a["recorded_at_utc"]).endswith("Z")
    assert [x["question_id"] for x in a["answers"]] == ["q1", "q2"]
    assert a["answers"][0] == {
        "question_id": "q1",
        "question_type": "MCQ",
        "response": "beta",
        "time_taken_ms": 900,
    }
    assert attempts[1]["delivered"] == 1


def test_answers_are_deleted_with_their_attempt(tmp_path: Path) -> None:
    db_path = tmp_path / "attempts.sqlite3"
    attempt_id = record_attempt(
        db_path=db_path,
        payload=_payload(),
        outcome=SubmissionOutcome(delivered=True, attempts=1),
    )

    conn = open_db(db_path)
    try:
        with conn:
            conn.execute("DELETE FROM attempt WHERE id = ?", (attempt_id,))
        remaining = conn.execute("SELECT COUNT(*) FROM answer").fetchone()[0]
    finally:
        conn.close()

    assert remaining == 0
