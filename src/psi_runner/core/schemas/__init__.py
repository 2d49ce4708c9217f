"""Pydantic schemas shared by the runner and its collaborators."""

from __future__ import annotations

from psi_runner.core.schemas.jobs import (
    ClaimedTask,
    JobDetail,
    JobPage,
    JobProgress,
    JobSummary,
    TaskRead,
)
from psi_runner.core.schemas.metrics import (
    STRATEGIES,
    CompactMetrics,
    FilmstripFrame,
    Strategy,
)

__all__ = [
    "ClaimedTask",
    "CompactMetrics",
    "FilmstripFrame",
    "JobDetail",
    "JobPage",
    "JobProgress",
    "JobSummary",
    "STRATEGIES",
    "Strategy",
    "TaskRead",
]
