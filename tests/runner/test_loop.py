"""Unit tests for psi_runner.runner.loop.run_once."""

from __future__ import annotations

import random
from datetime import timedelta

import pytest

from psi_runner.core.exceptions import StoreError
from psi_runner.core.logging_config import invocation_id_var
from psi_runner.core.schemas.jobs import ClaimedTask
from psi_runner.runner.executor import TaskExecutor, TaskOutcome
from psi_runner.runner.loop import RunSummary, run_once
from tests.fakes import FakeScorer, InMemoryTaskStore

THRESHOLD = timedelta(minutes=30)


class _RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _executor(store: InMemoryTaskStore, scorer: FakeScorer, max_retries: int = 4) -> TaskExecutor:
    return TaskExecutor(
        store,
        scorer,
        max_retries=max_retries,
        retry_base_delay=0,
        retry_max_delay=0,
        rng=random.Random(7),
    )


async def _run(
    store: InMemoryTaskStore,
    executor: TaskExecutor,
    *,
    batch_size: int = 5,
    max_iterations: int = 10,
    sleep: _RecordingSleep | None = None,
) -> RunSummary:
    return await run_once(
        store,
        executor,
        batch_size=batch_size,
        max_iterations=max_iterations,
        pause_seconds=1.0,
        stuck_threshold=THRESHOLD,
        sleep=sleep or _RecordingSleep(),
    )


@pytest.mark.asyncio
class TestRunOnce:
    async def test_empty_queue_stops_after_first_claim(
        self, memory_store: InMemoryTaskStore, fake_scorer: FakeScorer
    ) -> None:
        sleep = _RecordingSleep()

        summary = await _run(memory_store, _executor(memory_store, fake_scorer), sleep=sleep)

        assert summary.iterations == 0
        assert summary.claimed == 0
        assert memory_store.calls == ["reclaim_stuck_tasks", "claim_batch"]
        assert sleep.calls == []

    async def test_drains_queue_in_batches(
        self, memory_store: InMemoryTaskStore, fake_scorer: FakeScorer
    ) -> None:
        job_id = memory_store.add_job([f"https://example.com/{i}" for i in range(7)])
        sleep = _RecordingSleep()

        summary = await _run(
            memory_store, _executor(memory_store, fake_scorer), batch_size=3, sleep=sleep
        )

        assert summary.iterations == 3
        assert summary.claimed == 7
        assert summary.done == 7
        assert memory_store.jobs[job_id].status == "done"
        # Pauses happen between iterations, including before the empty claim.
        assert sleep.calls == [1.0, 1.0, 1.0]

    async def test_iteration_ceiling_is_respected(
        self, memory_store: InMemoryTaskStore, fake_scorer: FakeScorer
    ) -> None:
        memory_store.add_job([f"https://example.com/{i}" for i in range(10)])

        summary = await _run(
            memory_store,
            _executor(memory_store, fake_scorer),
            batch_size=2,
            max_iterations=3,
        )

        assert summary.iterations == 3
        assert summary.claimed == 6
        assert sum(t.status == "pending" for t in memory_store.tasks.values()) == 4
        assert not [t for t in memory_store.tasks.values() if t.status == "running"]

    async def test_reclaims_once_at_start(
        self, memory_store: InMemoryTaskStore, fake_scorer: FakeScorer
    ) -> None:
        memory_store.add_job(["https://stuck.example/"])
        await memory_store.claim_batch(5)
        memory_store.advance(THRESHOLD.total_seconds() + 1)

        summary = await _run(memory_store, _executor(memory_store, fake_scorer))

        assert summary.reclaimed == 1
        assert summary.done == 1
        assert memory_store.calls.count("reclaim_stuck_tasks") == 1

    async def test_recent_running_task_is_not_reclaimed(
        self, memory_store: InMemoryTaskStore, fake_scorer: FakeScorer
    ) -> None:
        memory_store.add_job(["https://busy.example/"])
        await memory_store.claim_batch(5)
        memory_store.advance(60)

        summary = await _run(memory_store, _executor(memory_store, fake_scorer))

        assert summary.reclaimed == 0
        assert summary.claimed == 0
        assert next(iter(memory_store.tasks.values())).status == "running"

    async def test_failing_task_does_not_block_siblings(
        self, memory_store: InMemoryTaskStore, fake_scorer: FakeScorer
    ) -> None:
        memory_store.add_job(["https://ok.example/a", "https://bad.example/", "https://ok.example/b"])
        fake_scorer.fail_always("https://bad.example/")

        summary = await _run(
            memory_store, _executor(memory_store, fake_scorer, max_retries=0)
        )

        assert summary.done == 2
        assert summary.errored == 1

    async def test_crashing_execution_does_not_abort_batch(
        self, memory_store: InMemoryTaskStore, fake_scorer: FakeScorer
    ) -> None:
        memory_store.add_job(["https://a.example/", "https://b.example/"])
        executor = _executor(memory_store, fake_scorer)
        original = executor.execute

        async def flaky_execute(task: ClaimedTask) -> TaskOutcome:
            if task.url == "https://a.example/":
                raise RuntimeError("executor bug")
            return await original(task)

        executor.execute = flaky_execute  # type: ignore[method-assign]

        summary = await _run(memory_store, executor, max_iterations=1)

        assert summary.crashed == 1
        assert summary.done == 1

    async def test_claim_failure_aborts_invocation(
        self, memory_store: InMemoryTaskStore, fake_scorer: FakeScorer
    ) -> None:
        memory_store.add_job(["https://example.com/"])
        memory_store.failing.add("claim_batch")

        with pytest.raises(StoreError):
            await _run(memory_store, _executor(memory_store, fake_scorer))

        assert fake_scorer.calls == []

    async def test_reclaim_failure_aborts_before_claiming(
        self, memory_store: InMemoryTaskStore, fake_scorer: FakeScorer
    ) -> None:
        memory_store.add_job(["https://example.com/"])
        memory_store.failing.add("reclaim_stuck_tasks")

        with pytest.raises(StoreError):
            await _run(memory_store, _executor(memory_store, fake_scorer))

        assert "claim_batch" not in memory_store.calls

    async def test_retried_tasks_reappear_in_later_iterations(
        self, memory_store: InMemoryTaskStore, fake_scorer: FakeScorer
    ) -> None:
        url = "https://flaky.example/"
        memory_store.add_job([url])
        fake_scorer.fail_always(url, times=2)

        summary = await _run(memory_store, _executor(memory_store, fake_scorer))

        assert summary.retried == 2
        assert summary.done == 1
        assert next(iter(memory_store.tasks.values())).retries == 2

    async def test_invocation_id_bound_during_run_and_reset_after(
        self, memory_store: InMemoryTaskStore, fake_scorer: FakeScorer
    ) -> None:
        memory_store.add_job(["https://example.com/"])
        seen: list[str | None] = []

        async def capture(url: str, strategy: object) -> None:
            seen.append(invocation_id_var.get())

        fake_scorer.hook = capture

        summary = await _run(memory_store, _executor(memory_store, fake_scorer))

        assert seen and all(value == summary.invocation_id for value in seen)
        assert invocation_id_var.get() is None
