"""Pydantic schemas for jobs, tasks and their progress counts.

``ClaimedTask`` is what the batch claimer hands to the task executor; the
remaining schemas are read models for the surrounding application (job list,
job detail, progress counters).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ClaimedTask(BaseModel):
    """A task row as seen by the worker that just claimed it.

    Attributes:
        id: Task primary key.
        job_id: Owning job.
        url: URL to score.
        retries: Failed attempts before this one.
        started_at: Claim timestamp.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    job_id: uuid.UUID
    url: str
    retries: int = 0
    started_at: Optional[datetime] = None


class TaskRead(BaseModel):
    """Full representation of a persisted task."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    job_id: uuid.UUID
    url: str
    status: str
    retries: int
    error_message: Optional[str]
    next_attempt_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    duration_ms: Optional[int]
    desktop: Optional[dict[str, Any]]
    mobile: Optional[dict[str, Any]]


class JobProgress(BaseModel):
    """Per-status task counts for one job.

    ``remaining`` is ``pending + running``: the work that still keeps the job
    open.
    """

    total: int = 0
    pending: int = 0
    running: int = 0
    done: int = 0
    error: int = 0
    cancelled: int = 0
    avg_duration_ms: Optional[float] = None

    @property
    def remaining(self) -> int:
        return self.pending + self.running


class JobSummary(BaseModel):
    """One row of the job listing."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    status: str
    created_at: datetime
    progress: JobProgress = Field(default_factory=JobProgress)


class JobPage(BaseModel):
    """A page of the job listing, newest first."""

    items: list[JobSummary]
    page: int
    per_page: int
    total_jobs: int


class JobDetail(BaseModel):
    """A job together with all of its tasks."""

    job: JobSummary
    tasks: list[TaskRead]
