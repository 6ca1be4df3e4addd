"""CLI that runs a single scheduler/escalation/retry tick (for cron-style triggers)."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime

from app.core.logging import configure_logging
from app.services.tick_worker import run_tick_once


def _parse_now(raw: str | None) -> datetime | None:
    if not raw:
        return None
    return datetime.fromisoformat(raw)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m app.cli.run_tick",
        description="Run one check-in tick: schedule due check-ins, escalate overdue ones, retry failed alerts.",
    )
    parser.add_argument(
        "--now",
        default=None,
        help="ISO-8601 instant to treat as the current time (UTC when naive).",
    )
    parser.add_argument(
        "--compact",
        action="store_true",
        help="Print single-line JSON output.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        now = _parse_now(args.now)
    except ValueError as exc:
        print(f"run-tick error: invalid --now value: {exc}", file=sys.stderr)
        return 2

    configure_logging()
    try:
        result = asyncio.run(run_tick_once(now=now))
    except Exception as exc:  # pragma: no cover - defensive operator output
        print(f"run-tick error: {exc}", file=sys.stderr)
        return 1

    if result is None:
        print("run-tick deferred: database migrations are not at head", file=sys.stderr)
        return 3

    payload = result.as_dict()
    if args.compact:
        print(json.dumps(payload, sort_keys=True))
    else:
        print(json.dumps(payload, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
