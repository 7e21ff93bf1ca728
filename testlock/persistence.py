from __future__ import annotations

from pathlib import Path
import sqlite3
import time

from .results import SubmissionPayload
from .submission import SubmissionOutcome

SCHEMA_VERSION = 1


def open_db(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS attempt (
                id INTEGER PRIMARY KEY,
                test_id TEXT NOT NULL,
                owner_id TEXT NOT NULL,
                student_email TEXT NOT NULL,
                matriculation_number TEXT NOT NULL,
                status TEXT NOT NULL,
                penalty_reason TEXT,
                delivered INTEGER NOT NULL,
                delivery_attempts INTEGER NOT NULL,
                delivery_error TEXT,
                recorded_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS answer (
                attempt_id INTEGER NOT NULL REFERENCES attempt(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                question_id TEXT NOT NULL,
                question_type TEXT NOT NULL,
                response TEXT NOT NULL,
                time_taken_ms INTEGER NOT NULL,
                PRIMARY KEY (attempt_id, seq)
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_attempt_test ON attempt(test_id);")
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


def record_attempt(*, db_path: Path, payload: SubmissionPayload, outcome: SubmissionOutcome) -> int:
    """
    Local audit trail for one finished attempt:
      attempt -> answer rows, in ledger order
    """
    conn = open_db(db_path)
    try:
        return _insert_attempt(conn=conn, payload=payload, outcome=outcome)
    finally:
        conn.close()


def _insert_attempt(*, conn: sqlite3.Connection, payload: SubmissionPayload, outcome: SubmissionOutcome) -> int:
    with conn:
        cur = conn.execute(
            """
            INSERT INTO attempt(
                test_id, owner_id, student_email, matriculation_number,
                status, penalty_reason, delivered, delivery_attempts,
                delivery_error, recorded_at_utc
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                payload.test_id,
                payload.owner_id,
                payload.student_email,
                payload.matriculation_number,
                payload.status,
                payload.penalty_reason,
                1 if outcome.delivered else 0,
                int(outcome.attempts),
                outcome.error,
                _utc_now_iso(),
            ),
        )
        attempt_id = int(cur.lastrowid)

        for seq, a in enumerate(payload.answers):
            conn.execute(
                """
                INSERT INTO answer(attempt_id, seq, question_id, question_type, response, time_taken_ms)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (attempt_id, seq, a.question_id, a.question_kind, a.value, int(a.time_spent_ms)),
            )

    return attempt_id


def load_attempts(db_path: Path) -> list[dict[str, object]]:
    conn = open_db(db_path)
    try:
        conn.row_factory = sqlite3.Row
        attempts = [dict(r) for r in conn.execute("SELECT * FROM attempt ORDER BY id")]
        for a in attempts:
            a["answers"] = [
                dict(r)
                for r in conn.execute(
                    "SELECT question_id, question_type, response, time_taken_ms FROM answer "
                    "WHERE attempt_id = ? ORDER BY seq",
                    (a["id"],),
                )
            ]
        return attempts
    finally:
        conn.close()
