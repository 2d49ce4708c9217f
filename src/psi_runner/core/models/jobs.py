"""SQLAlchemy ORM models for scoring jobs and their per-URL tasks.

A ``Job`` is one operator submission; each submitted URL becomes a ``Task``
that the runner claims, scores for both strategies, and settles.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from psi_runner.core.models.base import Base, TimestampMixin


class JobStatus(str, enum.Enum):
    """Lifecycle states of a job."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    CANCELLED = "cancelled"


class TaskStatus(str, enum.Enum):
    """Lifecycle states of a task.

    ``running -> pending`` (retry or reclamation) is the only backward
    transition.
    """

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


#: Task states that are never left once entered.
TERMINAL_TASK_STATUSES: frozenset[TaskStatus] = frozenset(
    {TaskStatus.DONE, TaskStatus.ERROR, TaskStatus.CANCELLED}
)

#: Task states that keep their job open.
OPEN_TASK_STATUSES: frozenset[TaskStatus] = frozenset(
    {TaskStatus.PENDING, TaskStatus.RUNNING}
)


def _check_in(column: str, enum_cls: type[enum.Enum]) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


class Job(TimestampMixin, Base):
    """An operator-submitted batch of URLs.

    Attributes:
        id: UUID primary key.
        name: Free-text label given at submission.
        status: ``"pending"``, ``"running"``, ``"done"`` or ``"cancelled"``.
        tasks: The per-URL tasks belonging to this job.
    """

    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        server_default=sa.text("'pending'"),
    )

    tasks: Mapped[list["Task"]] = relationship(
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Task.id",
    )

    __table_args__ = (
        sa.CheckConstraint(_check_in("status", JobStatus), name="ck_jobs_status"),
        sa.Index("idx_jobs_created_at", "created_at"),
    )


class Task(TimestampMixin, Base):
    """One URL of a job, scored once per strategy.

    Attributes:
        id: Identity primary key; doubles as the insertion-order tie-breaker
            when claiming.
        job_id: Owning job.
        url: The URL to score.
        status: See :class:`TaskStatus`.
        retries: Failed attempts so far.  Only ever increases.
        error_message: Reason of the most recent failed attempt.
        next_attempt_at: Earliest time a re-queued task may be claimed again
            (exponential backoff cooldown).  ``NULL`` means immediately.
        started_at: When the current (or last) attempt was claimed.
        completed_at: When the task reached a terminal state.
        duration_ms: Wall-clock span of the settling attempt.
        desktop: Compact metrics for the desktop strategy, if it succeeded.
        mobile: Compact metrics for the mobile strategy, if it succeeded.
    """

    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(
        sa.BigInteger,
        sa.Identity(always=False),
        primary_key=True,
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    url: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        server_default=sa.text("'pending'"),
    )
    retries: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        server_default=sa.text("0"),
    )
    error_message: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    duration_ms: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    desktop: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    mobile: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    job: Mapped[Job] = relationship(back_populates="tasks")

    __table_args__ = (
        sa.CheckConstraint(_check_in("status", TaskStatus), name="ck_tasks_status"),
        sa.CheckConstraint("retries >= 0", name="ck_tasks_retries_non_negative"),
        sa.Index("idx_tasks_job_status", "job_id", "status"),
        # Claim path: oldest claimable pending rows first.
        sa.Index(
            "idx_tasks_pending_created",
            "created_at",
            "id",
            postgresql_where=sa.text("status = 'pending'"),
        ),
        # Reclaim path: running rows by start time.
        sa.Index(
            "idx_tasks_running_started",
            "started_at",
            postgresql_where=sa.text("status = 'running'"),
        ),
    )
