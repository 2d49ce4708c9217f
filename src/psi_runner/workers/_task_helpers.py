"""Async helpers behind the Celery tasks in :mod:`psi_runner.workers.tasks`.

The Celery task bodies are synchronous and bridge here via ``asyncio.run()``.
Keeping the async wiring in this module lets tests exercise it directly
without a broker.
"""

from __future__ import annotations

from datetime import timedelta

import httpx

from psi_runner.config.settings import Settings
from psi_runner.core.database import AsyncSessionLocal
from psi_runner.runner.executor import TaskExecutor
from psi_runner.runner.loop import RunSummary, run_once
from psi_runner.runner.store import TaskStore
from psi_runner.scorer.client import PageSpeedClient


async def run_invocation(settings: Settings) -> RunSummary:
    """Wire the store, scorer and executor from ``settings`` and run once.

    One :class:`httpx.AsyncClient` (and so one call spacer) is shared by all
    scorer calls of the invocation and closed when it ends.

    Args:
        settings: Application settings.

    Returns:
        The invocation's :class:`RunSummary`.

    Raises:
        StoreError: If reclaiming or claiming fails.
    """
    store = TaskStore(AsyncSessionLocal)
    # Concurrent calls per invocation: two strategies per claimed task.
    limits = httpx.Limits(max_connections=max(2, settings.batch_size * 2))
    async with httpx.AsyncClient(limits=limits) as client:
        scorer = PageSpeedClient.from_settings(client, settings)
        executor = TaskExecutor(
            store,
            scorer,
            max_retries=settings.max_retries,
            retry_base_delay=settings.retry_base_delay_seconds,
            retry_max_delay=settings.retry_max_delay_seconds,
        )
        return await run_once(
            store,
            executor,
            batch_size=settings.batch_size,
            max_iterations=settings.max_runner_iterations,
            pause_seconds=settings.iteration_pause_seconds,
            stuck_threshold=timedelta(minutes=settings.stuck_task_threshold_minutes),
        )
