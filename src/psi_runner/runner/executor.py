"""Per-task state machine: score both strategies, then settle the task.

::

    claimed -> calling(mobile) & calling(desktop) -> settling -> aggregate

Settling picks exactly one transition:

- at least one strategy succeeded       -> ``done``
- both failed, retry budget remaining   -> ``pending`` (``retries + 1``, cooldown)
- both failed, retry budget exhausted   -> ``error``

The persisted status is re-read before writing; a task that is no longer
``running`` (typically ``cancelled``) has its result discarded.  The
settlement UPDATE is itself conditional on ``running``, which closes the
window between that read and the write.
"""

from __future__ import annotations

import asyncio
import enum
import random
import time
from typing import Any, Callable, Optional, Protocol

import structlog

from psi_runner.core.exceptions import CallFailed, StoreError
from psi_runner.core.models.jobs import TaskStatus
from psi_runner.core.schemas.jobs import ClaimedTask
from psi_runner.core.schemas.metrics import STRATEGIES, CompactMetrics, Strategy
from psi_runner.runner.backoff import compute_backoff

logger = structlog.get_logger(__name__)


class Scorer(Protocol):
    """Anything that can score one URL under one strategy."""

    async def score(self, url: str, strategy: Strategy) -> CompactMetrics: ...


class TaskOutcome(str, enum.Enum):
    """What happened to one claimed task."""

    DONE = "done"
    RETRIED = "retried"
    ERRORED = "errored"
    DISCARDED = "discarded"
    STORE_FAILED = "store_failed"


def _failure_reason(strategy: Strategy, exc: BaseException) -> str:
    if isinstance(exc, CallFailed):
        return f"{strategy.value}: {exc.reason}"
    return f"{strategy.value}: unexpected {type(exc).__name__}: {exc}"


class TaskExecutor:
    """Runs one claimed task to a settled state.

    Args:
        store: The task store (see :class:`psi_runner.runner.store.TaskStore`).
        scorer: Scorer client used for both strategy calls.
        max_retries: Failed attempts a task may re-queue before ``error``.
        retry_base_delay: Backoff after the first failed attempt, in seconds.
        retry_max_delay: Backoff cap before jitter, in seconds.
        clock: Monotonic clock used for ``duration_ms``.
        rng: Random source for backoff jitter.
    """

    def __init__(
        self,
        store: Any,
        scorer: Scorer,
        *,
        max_retries: int,
        retry_base_delay: float,
        retry_max_delay: float,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._store = store
        self._scorer = scorer
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._clock = clock
        self._rng = rng or random.Random()

    async def execute(self, task: ClaimedTask) -> TaskOutcome:
        """Score ``task`` for every strategy, settle it and re-check its job.

        Scorer failures never propagate: they become a retry or an ``error``
        transition.  Store failures are logged and reported as
        :attr:`TaskOutcome.STORE_FAILED`; the task then stays ``running``
        until the reclaimer picks it up.
        """
        log = logger.bind(task_id=task.id, job_id=str(task.job_id), url=task.url)
        started = self._clock()

        results = await asyncio.gather(
            *(self._scorer.score(task.url, strategy) for strategy in STRATEGIES),
            return_exceptions=True,
        )
        duration_ms = int((self._clock() - started) * 1000)

        metrics: dict[Strategy, CompactMetrics] = {}
        reasons: list[str] = []
        for strategy, result in zip(STRATEGIES, results):
            if isinstance(result, CompactMetrics):
                metrics[strategy] = result
                continue
            if not isinstance(result, Exception):
                # CancelledError and friends belong to the caller.
                raise result
            if not isinstance(result, CallFailed):
                log.error(
                    "executor.unexpected_scorer_error",
                    strategy=strategy.value,
                    error=repr(result),
                )
            reasons.append(_failure_reason(strategy, result))

        try:
            outcome = await self._settle(task, metrics, reasons, duration_ms, log)
        except StoreError as exc:
            log.error("executor.settle_failed", operation=exc.operation, error=str(exc))
            return TaskOutcome.STORE_FAILED

        await self._aggregate(task, log)
        return outcome

    async def _settle(
        self,
        task: ClaimedTask,
        metrics: dict[Strategy, CompactMetrics],
        reasons: list[str],
        duration_ms: int,
        log: Any,
    ) -> TaskOutcome:
        status = await self._store.fetch_status(task.id)
        if status != TaskStatus.RUNNING.value:
            log.info("executor.result_discarded", persisted_status=status)
            return TaskOutcome.DISCARDED

        if metrics:
            written = await self._store.mark_done(
                task.id,
                mobile=_storage(metrics.get(Strategy.MOBILE)),
                desktop=_storage(metrics.get(Strategy.DESKTOP)),
                duration_ms=duration_ms,
            )
            outcome = TaskOutcome.DONE
            log_event = "executor.task_done"
            extra: dict[str, Any] = {
                "duration_ms": duration_ms,
                "strategies": sorted(s.value for s in metrics),
            }
        elif task.retries < self._max_retries:
            attempt = task.retries + 1
            delay = compute_backoff(
                attempt,
                base_seconds=self._retry_base_delay,
                max_seconds=self._retry_max_delay,
                rng=self._rng,
            )
            written = await self._store.schedule_retry(
                task.id,
                error_message="; ".join(reasons),
                delay_seconds=delay,
            )
            outcome = TaskOutcome.RETRIED
            log_event = "executor.task_retry_scheduled"
            extra = {"retries": attempt, "delay_seconds": round(delay, 3), "reasons": reasons}
        else:
            written = await self._store.mark_error(
                task.id,
                error_message="; ".join(reasons),
                duration_ms=duration_ms,
            )
            outcome = TaskOutcome.ERRORED
            log_event = "executor.task_failed"
            extra = {"retries": task.retries, "duration_ms": duration_ms, "reasons": reasons}

        if not written:
            # Status changed between the re-read and the conditional UPDATE.
            log.info("executor.result_discarded", persisted_status="changed")
            return TaskOutcome.DISCARDED

        log.info(log_event, **extra)
        return outcome

    async def _aggregate(self, task: ClaimedTask, log: Any) -> None:
        try:
            closed = await self._store.check_and_close_job(task.job_id)
        except StoreError as exc:
            # The next settling task of this job re-runs the check.
            log.warning("executor.aggregate_failed", error=str(exc))
            return
        if closed:
            log.info("executor.job_closed")


def _storage(metrics: Optional[CompactMetrics]) -> Optional[dict[str, Any]]:
    return metrics.to_storage() if metrics is not None else None
