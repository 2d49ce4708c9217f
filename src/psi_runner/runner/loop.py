"""One runner invocation: reclaim, then bounded claim/execute iterations."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable

import structlog

from psi_runner.core.logging_config import invocation_id_var
from psi_runner.runner.executor import TaskExecutor, TaskOutcome

logger = structlog.get_logger(__name__)


@dataclass
class RunSummary:
    """Counters reported by :func:`run_once`.

    Attributes:
        invocation_id: Correlation id bound into every log record of the run.
        iterations: Claim/execute cycles that claimed at least one task.
        reclaimed: Stuck tasks returned to ``pending`` at start-up.
        claimed: Tasks claimed across all iterations.
        done: Tasks settled as ``done``.
        retried: Tasks re-queued for another attempt.
        errored: Tasks settled as ``error``.
        discarded: Results dropped because the task was no longer ``running``.
        store_failures: Tasks whose settlement write failed.
        crashed: Tasks whose execution raised unexpectedly.
    """

    invocation_id: str = ""
    iterations: int = 0
    reclaimed: int = 0
    claimed: int = 0
    done: int = 0
    retried: int = 0
    errored: int = 0
    discarded: int = 0
    store_failures: int = 0
    crashed: int = 0

    def record(self, outcome: TaskOutcome) -> None:
        if outcome is TaskOutcome.DONE:
            self.done += 1
        elif outcome is TaskOutcome.RETRIED:
            self.retried += 1
        elif outcome is TaskOutcome.ERRORED:
            self.errored += 1
        elif outcome is TaskOutcome.DISCARDED:
            self.discarded += 1
        elif outcome is TaskOutcome.STORE_FAILED:
            self.store_failures += 1

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


async def run_once(
    store: Any,
    executor: TaskExecutor,
    *,
    batch_size: int,
    max_iterations: int,
    pause_seconds: float,
    stuck_threshold: timedelta,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RunSummary:
    """Run one bounded invocation of the work-queue runner.

    Reclaims stuck tasks once, then repeats at most ``max_iterations`` times:
    claim a batch, execute every claimed task concurrently and wait for all
    of them to settle.  Stops early on an empty claim.  Never returns while a
    task it claimed is still being processed.

    Args:
        store: Task store.
        executor: Executor used for every claimed task.
        batch_size: Tasks claimed per iteration.
        max_iterations: Iteration ceiling.
        pause_seconds: Pause between two iterations.
        stuck_threshold: Liveness threshold passed to the reclaimer.
        sleep: Coroutine used for the pause, injectable for tests.

    Returns:
        A :class:`RunSummary` with the invocation's counters.

    Raises:
        StoreError: If reclaiming or claiming fails.  Tasks claimed in
            earlier iterations have already settled by then.
    """
    summary = RunSummary(invocation_id=uuid.uuid4().hex)
    token = invocation_id_var.set(summary.invocation_id)
    try:
        summary.reclaimed = await store.reclaim_stuck_tasks(stuck_threshold)
        if summary.reclaimed:
            logger.warning("runner.reclaimed_stuck_tasks", count=summary.reclaimed)

        for iteration in range(max_iterations):
            if iteration > 0 and pause_seconds > 0:
                await sleep(pause_seconds)

            batch = await store.claim_batch(batch_size)
            if not batch:
                logger.info("runner.queue_empty", iteration=iteration)
                break

            summary.iterations += 1
            summary.claimed += len(batch)
            logger.info("runner.batch_claimed", iteration=iteration, count=len(batch))

            results = await asyncio.gather(
                *(executor.execute(task) for task in batch),
                return_exceptions=True,
            )
            for task, result in zip(batch, results):
                if isinstance(result, TaskOutcome):
                    summary.record(result)
                    continue
                if not isinstance(result, Exception):
                    raise result
                summary.crashed += 1
                logger.error(
                    "runner.task_crashed",
                    task_id=task.id,
                    error=repr(result),
                )
        else:
            logger.info("runner.iteration_ceiling_reached", iterations=max_iterations)

        logger.info("runner.invocation_complete", **summary.as_dict())
        return summary
    finally:
        invocation_id_var.reset(token)
