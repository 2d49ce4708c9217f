#!/usr/bin/env python
"""Submit a scoring job, or cancel one.

Reads one URL per line from a file (or stdin with ``-``), creates a job with
one pending task per distinct URL, and prints the job id.  The next runner
invocation starts picking the tasks up.

Usage::

    python scripts/create_job.py --name "homepage audit" urls.txt
    cat urls.txt | python scripts/create_job.py --name nightly -
    python scripts/create_job.py --cancel 6f1c0a52-...

Exit codes:
    0: Job created (or cancelled).
    1: No usable URL, unknown job id, or database error.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import uuid

# Ensure the src layout is on sys.path when running as a standalone script.
_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_SRC_DIR = os.path.join(os.path.dirname(_SCRIPT_DIR), "src")
if _SRC_DIR not in sys.path:
    sys.path.insert(0, _SRC_DIR)


async def _create(name: str, urls: list[str]) -> uuid.UUID:
    from psi_runner.core.database import AsyncSessionLocal  # noqa: PLC0415
    from psi_runner.core.job_service import JobService  # noqa: PLC0415

    async with AsyncSessionLocal() as db:
        job = await JobService().create_job(db, name, urls)
        return job.id


async def _cancel(job_id: uuid.UUID) -> int:
    from psi_runner.core.database import AsyncSessionLocal  # noqa: PLC0415
    from psi_runner.core.job_service import JobService  # noqa: PLC0415

    async with AsyncSessionLocal() as db:
        return await JobService().cancel_job(db, job_id)


def main(argv: list[str] | None = None) -> int:
    from dotenv import load_dotenv  # noqa: PLC0415

    load_dotenv()

    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("source", nargs="?", help="URL file, or '-' for stdin")
    parser.add_argument("--name", default="untitled")
    parser.add_argument("--cancel", type=uuid.UUID, metavar="JOB_ID")
    args = parser.parse_args(argv)

    from psi_runner.core.exceptions import JobNotFoundError  # noqa: PLC0415

    if args.cancel is not None:
        try:
            cancelled = asyncio.run(_cancel(args.cancel))
        except JobNotFoundError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1
        print(f"cancelled job {args.cancel} ({cancelled} task(s))")
        return 0

    if args.source is None:
        parser.error("a URL file (or '-') is required unless --cancel is given")
    if args.source == "-":
        lines = sys.stdin.read().splitlines()
    else:
        with open(args.source, encoding="utf-8") as fh:
            lines = fh.read().splitlines()

    try:
        job_id = asyncio.run(_create(args.name, lines))
    except ValueError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    print(job_id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
