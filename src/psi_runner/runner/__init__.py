"""Work-queue runner: task store, executor and invocation loop."""

from psi_runner.runner.executor import TaskExecutor, TaskOutcome
from psi_runner.runner.loop import RunSummary, run_once
from psi_runner.runner.store import TaskStore

__all__ = ["RunSummary", "TaskExecutor", "TaskOutcome", "TaskStore", "run_once"]
