"""Where question sets come from.

Standalone: fetched from the same-origin test proxy, keyed by a test id.
Embedded: a parent process is the host. The runner posts a readiness token,
then the host pushes ``{"type": "questionsLoaded", "questions": [...]}``.
The concrete channel is JSON lines over the process's stdin/stdout.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import IO, Any

import httpx

from .errors import HostChannelError, QuestionPayloadError
from .questions import Question, parse_questions

logger = logging.getLogger(__name__)

TEST_PROXY_PATH = "/api/test-proxy"
READY_TOKEN = "TestLockReady"
QUESTIONS_LOADED = "questionsLoaded"


class LoadStatus(str, Enum):
    LOADED = "loaded"
    EMPTY = "empty"
    NO_TEST = "no_test"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True, slots=True)
class QuestionLoad:
    status: LoadStatus
    questions: tuple[Question, ...] = ()
    test_id: str = ""
    message: str = ""
    secondary: tuple[Question, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is LoadStatus.LOADED


def _load_from_entries(entries: object, *, test_id: str, secondary: object = None) -> QuestionLoad:
    if not isinstance(entries, list):
        return QuestionLoad(LoadStatus.UNAVAILABLE, test_id=test_id, message="Failed to parse questions.")
    try:
        questions = parse_questions(e for e in entries if isinstance(e, Mapping))
        extra = parse_questions(e for e in secondary if isinstance(e, Mapping)) if isinstance(secondary, list) else []
    except QuestionPayloadError as exc:
        logger.error(f"malformed question payload: {exc}")
        return QuestionLoad(LoadStatus.UNAVAILABLE, test_id=test_id, message="Failed to parse questions.")
    if not questions:
        return QuestionLoad(LoadStatus.EMPTY, test_id=test_id, message="The test has no questions.")
    return QuestionLoad(
        LoadStatus.LOADED,
        questions=tuple(questions),
        test_id=test_id or next((q.test_id for q in questions if q.test_id), ""),
        secondary=tuple(extra),
    )


def fetch_questions(client: httpx.Client, test_id: str | None, *, path: str = TEST_PROXY_PATH) -> QuestionLoad:
    """Fetch a question set from the test proxy. Never raises for HTTP or format errors."""

    if not test_id:
        return QuestionLoad(
            LoadStatus.NO_TEST,
            message="Missing test id. Provide one with --test <id>.",
        )
    try:
        response = client.get(path, params={"test": test_id})
    except httpx.HTTPError as exc:
        logger.error(f"failed to fetch test {test_id}: {exc}")
        return QuestionLoad(LoadStatus.UNAVAILABLE, test_id=test_id, message=f"Could not load test: {exc}")

    if not response.is_success:
        logger.error(f"test proxy returned {response.status_code} for test {test_id}")
        return QuestionLoad(
            LoadStatus.UNAVAILABLE,
            test_id=test_id,
            message=f"Could not load test (HTTP {response.status_code}).",
        )
    try:
        data = response.json()
    except ValueError:
        return QuestionLoad(LoadStatus.UNAVAILABLE, test_id=test_id, message="Failed to parse questions.")

    if not isinstance(data, Mapping):
        return QuestionLoad(LoadStatus.UNAVAILABLE, test_id=test_id, message="Failed to parse questions.")
    return _load_from_entries(data.get("questions"), test_id=test_id, secondary=data.get("penalty_questions"))


def load_from_host_message(message: object) -> QuestionLoad | None:
    """Interpret one host message; ``None`` for messages that carry no questions."""

    if not isinstance(message, Mapping) or message.get("type") != QUESTIONS_LOADED:
        return None
    return _load_from_entries(
        message.get("questions"),
        test_id=str(message.get("test_id") or ""),
        secondary=message.get("penalty_questions"),
    )


class JsonLinesHostChannel:
    """Host channel speaking one JSON document per line."""

    def __init__(self, inbound: IO[str], outbound: IO[str]) -> None:
        self._in = inbound
        self._out = outbound

    def post_message(self, message: object) -> None:
        try:
            self._out.write(json.dumps(message) + "\n")
            self._out.flush()
        except (OSError, ValueError) as exc:
            raise HostChannelError(str(exc)) from exc

    def messages(self) -> Iterable[Any]:
        for line in self._in:
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"ignoring non-JSON host message: {line[:80]!r}")


def wait_for_host_questions(channel: JsonLinesHostChannel) -> QuestionLoad:
    """Announce readiness, then block until the host sends a question set."""

    channel.post_message(READY_TOKEN)
    for message in channel.messages():
        load = load_from_host_message(message)
        if load is not None:
            return load
        logger.debug(f"ignoring host message {message!r}")
    return QuestionLoad(LoadStatus.UNAVAILABLE, message="Host closed the channel before sending questions.")
