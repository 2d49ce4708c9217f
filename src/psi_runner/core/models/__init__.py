"""SQLAlchemy ORM models for psi-runner.

All models are imported here so that:
1. Alembic autogenerate can discover them via Base.metadata.
2. Application code can do ``from psi_runner.core.models import Task``
   without knowing which sub-module a model lives in.
"""

from __future__ import annotations

from psi_runner.core.models.base import Base, TimestampMixin
from psi_runner.core.models.jobs import (
    OPEN_TASK_STATUSES,
    TERMINAL_TASK_STATUSES,
    Job,
    JobStatus,
    Task,
    TaskStatus,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Jobs
    "Job",
    "JobStatus",
    "Task",
    "TaskStatus",
    "TERMINAL_TASK_STATUSES",
    "OPEN_TASK_STATUSES",
]
