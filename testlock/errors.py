from __future__ import annotations


class TestLockError(Exception):
    """Base class for all errors raised by the proctored session runner."""

    __test__ = False


class QuestionPayloadError(TestLockError, ValueError):
    """An inbound question payload is missing required fields."""


class FullscreenError(TestLockError):
    """Exclusive full-screen presentation was refused or is unsupported."""


class SubmissionError(TestLockError):
    """A single delivery attempt of the results payload failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class HostChannelError(TestLockError):
    """The embedding host could not be reached."""


class InvalidTransitionError(TestLockError, RuntimeError):
    """A session transition outside the transition table was requested."""
