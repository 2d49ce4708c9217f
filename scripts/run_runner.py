#!/usr/bin/env python
"""Run one invocation of the PageSpeed work-queue runner.

Alternative to the Celery Beat schedule for deployments that trigger the
runner from cron or a one-off container.  Overlapping invocations are safe.

Usage::

    python scripts/run_runner.py
    python scripts/run_runner.py --batch-size 10 --max-iterations 3

Environment variables (via .env or shell)::

    DATABASE_URL     postgresql+asyncpg:// DSN (required).
    GOOGLE_API_KEY   PageSpeed Insights API key (required).

All other knobs (BATCH_SIZE, MAX_RETRIES, ...) are read from the environment
as well; the command-line flags override them for this run only.

Exit codes:
    0: Invocation completed (individual tasks may still have failed).
    1: Invocation aborted (store unreachable, bad configuration).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

# Ensure the src layout is on sys.path when running as a standalone script.
_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_SRC_DIR = os.path.join(os.path.dirname(_SCRIPT_DIR), "src")
if _SRC_DIR not in sys.path:
    sys.path.insert(0, _SRC_DIR)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--max-iterations", type=int, default=None)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    from dotenv import load_dotenv  # noqa: PLC0415

    load_dotenv()

    from psi_runner.config.settings import get_settings  # noqa: PLC0415
    from psi_runner.core.logging_config import configure_logging  # noqa: PLC0415
    from psi_runner.workers._task_helpers import run_invocation  # noqa: PLC0415

    args = _parse_args(argv)
    settings = get_settings()
    overrides = {
        key: value
        for key, value in (
            ("batch_size", args.batch_size),
            ("max_runner_iterations", args.max_iterations),
        )
        if value is not None
    }
    if overrides:
        settings = settings.model_copy(update=overrides)

    configure_logging(settings.log_level)

    try:
        summary = asyncio.run(run_invocation(settings))
    except Exception as exc:  # noqa: BLE001
        print(f"ERROR: runner invocation aborted: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(summary.as_dict()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
