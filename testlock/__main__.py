from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

import httpx

from .app import run
from .config import TestLockSettings
from .session import Candidate
from .source import JsonLinesHostChannel, fetch_questions, wait_for_host_questions


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="testlock", description="Run a proctored, timed assessment attempt.")
    parser.add_argument("--test", help="test id to fetch from the test proxy (standalone mode)")
    parser.add_argument(
        "--embedded",
        action="store_true",
        help="run under a host process: JSON-lines messages on stdin/stdout",
    )
    parser.add_argument("--base-url", help="base URL of the assessment proxy")
    parser.add_argument("--email", default="", help="prefill the student email")
    parser.add_argument("--matric", default="", help="prefill the matriculation number")
    parser.add_argument("--owner", default="", help="owner id recorded with the submission")
    parser.add_argument("--db", help="local audit database path ('off' disables)")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Entry point for running an assessment from the command line."""

    args = _parse_args(argv)
    # Logs go to stderr; stdout belongs to the host channel in embedded mode.
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    settings = TestLockSettings.from_env()
    if args.base_url:
        settings = replace(settings, base_url=args.base_url.rstrip("/"))
    if args.db:
        settings = replace(settings, db_path=None if args.db.lower() == "off" else Path(args.db).expanduser())

    host = None
    if args.embedded:
        host = JsonLinesHostChannel(sys.stdin, sys.stdout)
        load = wait_for_host_questions(host)
    else:
        with httpx.Client(base_url=settings.base_url, timeout=settings.request_timeout_s) as client:
            load = fetch_questions(client, args.test, path=settings.test_proxy_path)

    candidate = Candidate(email=args.email, matriculation_number=args.matric, owner_id=args.owner)
    return run(settings=settings, load=load, candidate=candidate, host=host)


if __name__ == "__main__":
    raise SystemExit(main())
