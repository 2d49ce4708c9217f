"""Unit tests for the Celery wiring of the runner.

No broker is involved: the task function is called directly and the async
helpers it bridges to are patched.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from celery.schedules import crontab

from psi_runner.config.settings import Settings
from psi_runner.core.exceptions import StoreError
from psi_runner.runner.executor import TaskExecutor
from psi_runner.runner.loop import RunSummary
from psi_runner.runner.store import TaskStore
from psi_runner.workers import _task_helpers
from psi_runner.workers.beat_schedule import build_beat_schedule
from psi_runner.workers.celery_app import celery_app
from psi_runner.workers.tasks import run_scoring_batch

TASK_NAME = "psi_runner.workers.tasks.run_scoring_batch"


class TestRunScoringBatch:
    def test_returns_summary_counters(self) -> None:
        summary = RunSummary(invocation_id="abc", iterations=2, claimed=7, done=6, retried=1)
        with patch(
            "psi_runner.workers.tasks.run_invocation",
            new=AsyncMock(return_value=summary),
        ):
            result = run_scoring_batch()

        assert result["claimed"] == 7
        assert result["done"] == 6
        assert result["retried"] == 1
        assert "error" not in result

    def test_store_error_is_reported_not_raised(self) -> None:
        with patch(
            "psi_runner.workers.tasks.run_invocation",
            new=AsyncMock(side_effect=StoreError("claim_batch", "connection refused")),
        ):
            result = run_scoring_batch()

        assert result == {"error": "claim_batch: connection refused"}

    def test_task_registered_under_beat_name(self) -> None:
        assert TASK_NAME in celery_app.tasks


class TestBeatSchedule:
    def test_every_minute_by_default(self) -> None:
        schedule = build_beat_schedule(1)["run_scoring_batch"]

        assert schedule["task"] == TASK_NAME
        assert schedule["schedule"] == crontab(minute="*")
        assert schedule["options"]["expires"] == 60

    def test_custom_cadence(self) -> None:
        schedule = build_beat_schedule(5)["run_scoring_batch"]

        assert schedule["schedule"] == crontab(minute="*/5")
        assert schedule["options"]["expires"] == 300

    def test_applied_to_app(self) -> None:
        assert celery_app.conf.beat_schedule["run_scoring_batch"]["task"] == TASK_NAME


@pytest.mark.asyncio
class TestRunInvocation:
    async def test_wires_settings_into_runner(self, settings: Settings) -> None:
        settings = settings.model_copy(
            update={"batch_size": 3, "max_runner_iterations": 4, "stuck_task_threshold_minutes": 15}
        )
        fake_run_once = AsyncMock(return_value=RunSummary(invocation_id="x"))

        with patch.object(_task_helpers, "run_once", new=fake_run_once):
            summary = await _task_helpers.run_invocation(settings)

        assert summary.invocation_id == "x"
        store, executor = fake_run_once.await_args.args
        kwargs = fake_run_once.await_args.kwargs
        assert isinstance(store, TaskStore)
        assert isinstance(executor, TaskExecutor)
        assert kwargs["batch_size"] == 3
        assert kwargs["max_iterations"] == 4
        assert kwargs["pause_seconds"] == 0
        assert kwargs["stuck_threshold"] == timedelta(minutes=15)
