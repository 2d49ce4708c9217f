"""Initial schema: jobs and tasks.

Creates the ``jobs`` table (one row per operator submission) and the
``tasks`` table (one row per submitted URL) that the runner claims from.

Claiming relies on ``SELECT ... FOR UPDATE SKIP LOCKED`` over
``idx_tasks_pending_created``; reclamation scans
``idx_tasks_running_started``.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create jobs and tasks tables with their constraints and indexes."""
    # gen_random_uuid() is built in from PostgreSQL 13; pgcrypto covers older.
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "jobs",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'done', 'cancelled')",
            name="ck_jobs_status",
        ),
    )
    op.create_index("idx_jobs_created_at", "jobs", ["created_at"])

    op.create_table(
        "tasks",
        sa.Column(
            "id",
            sa.BigInteger(),
            sa.Identity(always=False),
            primary_key=True,
        ),
        sa.Column(
            "job_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column(
            "retries",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("next_attempt_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("started_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        # Compact metrics records, one per strategy
        sa.Column("desktop", postgresql.JSONB(), nullable=True),
        sa.Column("mobile", postgresql.JSONB(), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'done', 'error', 'cancelled')",
            name="ck_tasks_status",
        ),
        sa.CheckConstraint("retries >= 0", name="ck_tasks_retries_non_negative"),
    )
    op.create_index("idx_tasks_job_status", "tasks", ["job_id", "status"])
    op.create_index(
        "idx_tasks_pending_created",
        "tasks",
        ["created_at", "id"],
        postgresql_where=sa.text("status = 'pending'"),
    )
    op.create_index(
        "idx_tasks_running_started",
        "tasks",
        ["started_at"],
        postgresql_where=sa.text("status = 'running'"),
    )


def downgrade() -> None:
    """Drop tasks and jobs."""
    op.drop_index("idx_tasks_running_started", table_name="tasks")
    op.drop_index("idx_tasks_pending_created", table_name="tasks")
    op.drop_index("idx_tasks_job_status", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("idx_jobs_created_at", table_name="jobs")
    op.drop_table("jobs")
