"""Celery tasks for psi-runner.

- ``run_scoring_batch``: one bounded runner invocation. Reclaims stuck tasks,
  then claims, scores and settles batches until the queue is empty or the
  iteration ceiling is reached.  Triggered by the Beat schedule in
  ``workers/beat_schedule.py``.

The task is synchronous and bridges to the async runner via ``asyncio.run()``.

Error handling policy: the task catches all exceptions at the outermost
level, logs them at ERROR level, and does NOT re-raise.  A failed invocation
leaves at worst some tasks ``running``; the next invocation's reclaimer
returns them to the queue, so a Celery retry would only add load.

Task names must match the references in ``workers/beat_schedule.py``::

    psi_runner.workers.tasks.run_scoring_batch
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog

from psi_runner.config.settings import get_settings
from psi_runner.workers._task_helpers import run_invocation
from psi_runner.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)


@celery_app.task(name="psi_runner.workers.tasks.run_scoring_batch")
def run_scoring_batch() -> dict[str, Any]:
    """Run one invocation of the work-queue runner.

    Returns:
        The invocation's counters (see
        :class:`~psi_runner.runner.loop.RunSummary`), or a dict with an
        ``error`` key if the invocation aborted.
    """
    task_start = time.perf_counter()
    log = logger.bind(task="run_scoring_batch")
    log.info("run_scoring_batch: starting")

    try:
        summary = asyncio.run(run_invocation(get_settings()))
    except Exception as exc:
        log.error(
            "run_scoring_batch: invocation aborted",
            error=str(exc),
            exc_info=True,
        )
        return {"error": str(exc)}

    result = summary.as_dict()
    log.info(
        "run_scoring_batch: complete",
        elapsed_seconds=round(time.perf_counter() - task_start, 3),
        **result,
    )
    return result
