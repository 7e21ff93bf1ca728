from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

from .integrity import ResizeTolerances
from .session_clock import SAMPLE_INTERVAL_S
from .source import TEST_PROXY_PATH
from .submission import SUBMIT_PATH, RetryPolicy

ENV_PREFIX = "TESTLOCK_"
DEFAULT_BASE_URL = "http://localhost:3000"


def default_db_path() -> Path:
    return Path.home() / ".testlock" / "attempts.sqlite3"


@dataclass(frozen=True, slots=True)
class TestLockSettings:
    __test__ = False

    base_url: str = DEFAULT_BASE_URL
    test_proxy_path: str = TEST_PROXY_PATH
    submit_path: str = SUBMIT_PATH
    request_timeout_s: float = 15.0
    db_path: Path | None = None
    sample_interval_s: float = SAMPLE_INTERVAL_S
    tolerances: ResizeTolerances = field(default_factory=ResizeTolerances)
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "TestLockSettings":
        """Settings from ``TESTLOCK_*`` variables; unset variables keep defaults."""

        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(ENV_PREFIX + name)
            return value if value else None

        settings = cls()
        if (v := get("BASE_URL")) is not None:
            settings = replace(settings, base_url=v.rstrip("/"))
        if (v := get("REQUEST_TIMEOUT_S")) is not None:
            settings = replace(settings, request_timeout_s=float(v))
        if (v := get("DB_PATH")) is not None:
            settings = replace(settings, db_path=None if v.lower() == "off" else Path(v).expanduser())
        else:
            settings = replace(settings, db_path=default_db_path())

        tol = settings.tolerances
        tol = replace(
            tol,
            height_threshold_px=int(get("HEIGHT_THRESHOLD_PX") or tol.height_threshold_px),
            width_threshold_px=int(get("WIDTH_THRESHOLD_PX") or tol.width_threshold_px),
            keyboard_margin_px=int(get("KEYBOARD_MARGIN_PX") or tol.keyboard_margin_px),
            keyboard_width_slack_px=int(get("KEYBOARD_WIDTH_SLACK_PX") or tol.keyboard_width_slack_px),
        )
        retry = replace(
            settings.retry,
            max_attempts=int(get("MAX_ATTEMPTS") or settings.retry.max_attempts),
            initial_delay_s=float(get("INITIAL_DELAY_S") or settings.retry.initial_delay_s),
        )
        return replace(settings, tolerances=tol, retry=retry)
