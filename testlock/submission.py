"""Resilient delivery of finished-attempt results.

Delivery is attempted at most ``RetryPolicy.max_attempts`` times, strictly one
after another. After failed attempt ``k`` (0-based) the coordinator waits
``initial_delay_s * 2**k``. Once delivery succeeds or the attempts run out,
an embedding host (if any) is notified regardless of the result.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import httpx

from .clock import Clock
from .errors import HostChannelError, SubmissionError
from .results import SubmissionPayload

logger = logging.getLogger(__name__)

SUBMIT_PATH = "/api/submit-assessment"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 7
    initial_delay_s: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_s < 0.0:
            raise ValueError("initial_delay_s must be >= 0")

    def delay_after(self, attempt: int) -> float:
        return self.initial_delay_s * (2**attempt)


class SubmissionTransport(Protocol):
    def deliver(self, body: dict[str, Any]) -> dict[str, Any]:
        """Send one results payload; raise SubmissionError on failure."""
        ...


class HostChannel(Protocol):
    def post_message(self, message: object) -> None:
        """Deliver a message to the embedding host; raise HostChannelError on failure."""
        ...


class HttpSubmissionTransport:
    """POSTs JSON to the results proxy. Success means a 2xx response with a JSON body."""

    def __init__(self, client: httpx.Client, *, path: str = SUBMIT_PATH) -> None:
        self._client = client
        self._path = path

    def deliver(self, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.post(
                self._path,
                json=body,
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise SubmissionError(f"network error: {exc}") from exc

        if not response.is_success:
            raise SubmissionError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise SubmissionError("response body is not JSON", status_code=response.status_code) from exc
        return data if isinstance(data, dict) else {"result": data}


class SubmissionStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SubmissionOutcome:
    delivered: bool
    attempts: int
    response: dict[str, Any] | None = None
    error: str | None = None


class SubmissionCoordinator:
    """Serial retry loop with exponential backoff.

    ``update()`` never sleeps; it makes at most one delivery attempt when one
    is due. ``submit()`` (or ``start()`` then ``run_until_complete()``, e.g.
    on a worker thread) runs the same schedule to completion, sleeping
    through the injected ``sleep`` between attempts.
    """

    def __init__(
        self,
        transport: SubmissionTransport,
        *,
        clock: Clock,
        policy: RetryPolicy | None = None,
        host: HostChannel | None = None,
        sleep: Callable[[float], None] = time.sleep,
        on_complete: Callable[[SubmissionPayload, SubmissionOutcome], None] | None = None,
    ) -> None:
        self._transport = transport
        self._clock = clock
        self._policy = policy or RetryPolicy()
        self._host = host
        self._sleep = sleep
        self._on_complete = on_complete

        self._status = SubmissionStatus.IDLE
        self._payload: SubmissionPayload | None = None
        self._attempts = 0
        self._next_attempt_at_s = 0.0
        self._last_error: str | None = None
        self._outcome: SubmissionOutcome | None = None

    @property
    def status(self) -> SubmissionStatus:
        return self._status

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def outcome(self) -> SubmissionOutcome | None:
        return self._outcome

    def seconds_until_next_attempt(self) -> float | None:
        if self._status is not SubmissionStatus.PENDING:
            return None
        return max(0.0, self._next_attempt_at_s - self._clock.now())

    def start(self, payload: SubmissionPayload) -> None:
        if self._status is not SubmissionStatus.IDLE:
            raise RuntimeError("a submission has already been started")
        self._payload = payload
        self._status = SubmissionStatus.PENDING
        self._next_attempt_at_s = self._clock.now()
        logger.info(f"submitting results for test {payload.test_id!r} ({payload.status})")

    def update(self) -> None:
        if self._status is not SubmissionStatus.PENDING:
            return
        if self._clock.now() < self._next_attempt_at_s:
            return
        if self._attempts >= self._policy.max_attempts:
            # Final backoff has elapsed.
            self._complete(
                SubmissionOutcome(delivered=False, attempts=self._attempts, error=self._last_error)
            )
            return
        self._attempt_once()

    def submit(self, payload: SubmissionPayload) -> SubmissionOutcome:
        self.start(payload)
        return self.run_until_complete()

    def run_until_complete(self) -> SubmissionOutcome:
        """Drive a started submission to its outcome, sleeping through backoff."""

        if self._status is SubmissionStatus.IDLE:
            raise RuntimeError("no submission has been started")
        while True:
            self.update()
            if self._outcome is not None:
                return self._outcome
            wait_s = self.seconds_until_next_attempt()
            if wait_s:
                self._sleep(wait_s)

    def _attempt_once(self) -> None:
        assert self._payload is not None
        attempt = self._attempts
        self._attempts += 1
        try:
            response = self._transport.deliver(self._payload.to_wire())
        except SubmissionError as exc:
            self._last_error = str(exc)
            delay = self._policy.delay_after(attempt)
            if self._attempts < self._policy.max_attempts:
                logger.warning(
                    f"submission attempt {self._attempts}/{self._policy.max_attempts} failed: {exc}; "
                    f"retrying in {delay:.0f}s"
                )
            else:
                logger.error(f"submission attempt {self._attempts} failed: {exc}; giving up")
            self._next_attempt_at_s = self._clock.now() + delay
            return

        logger.info(f"results delivered on attempt {self._attempts}")
        self._complete(SubmissionOutcome(delivered=True, attempts=self._attempts, response=response))

    def _complete(self, outcome: SubmissionOutcome) -> None:
        assert self._payload is not None
        self._outcome = outcome
        # Leaves PENDING only after the host and on_complete have been told.
        try:
            self._notify_host(outcome)
            if self._on_complete is not None:
                self._on_complete(self._payload, outcome)
        finally:
            self._status = SubmissionStatus.DELIVERED if outcome.delivered else SubmissionStatus.FAILED

    def _notify_host(self, outcome: SubmissionOutcome) -> None:
        if self._host is None:
            return
        assert self._payload is not None
        message = dict(self._payload.to_wire())
        message["type"] = "testResults" if outcome.delivered else "testSubmissionError"
        message["delivered"] = outcome.delivered
        message["attempts"] = outcome.attempts
        if outcome.error is not None:
            message["error"] = outcome.error
        try:
            self._host.post_message(message)
        except HostChannelError as exc:
            logger.warning(f"could not notify host of submission result: {exc}")
