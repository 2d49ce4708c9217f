"""PostgreSQL-backed task store: claiming, reclamation and settlement writes.

Every state transition is a single conditional UPDATE.  The conditions are
what make concurrent runner invocations safe without any in-process
coordination:

- claiming uses ``SELECT ... FOR UPDATE SKIP LOCKED`` so two claimers never
  receive the same row;
- settlement writes only match rows still in ``running``, so a cancellation
  that lands mid-flight is never overwritten;
- closing a job only matches jobs still ``pending``/``running`` with no open
  task left, so a cancelled job is never flipped to ``done`` and a second
  close is a no-op.

Every method opens its own short session.  SQLAlchemy and driver errors are
wrapped in :class:`~psi_runner.core.exceptions.StoreError`.
"""

from __future__ import annotations

import functools
import uuid
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, TypeVar

import sqlalchemy as sa
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from psi_runner.core.exceptions import StoreError
from psi_runner.core.models.jobs import (
    OPEN_TASK_STATUSES,
    Job,
    JobStatus,
    Task,
    TaskStatus,
)
from psi_runner.core.schemas.jobs import ClaimedTask

_T = TypeVar("_T")

_OPEN_STATUSES = [status.value for status in OPEN_TASK_STATUSES]


def _store_operation(method: Callable[..., Awaitable[_T]]) -> Callable[..., Awaitable[_T]]:
    """Wrap database failures raised by ``method`` in :class:`StoreError`."""

    @functools.wraps(method)
    async def wrapper(*args: Any, **kwargs: Any) -> _T:
        try:
            return await method(*args, **kwargs)
        except (SQLAlchemyError, OSError) as exc:
            raise StoreError(method.__name__, str(exc)) from exc

    return wrapper


class TaskStore:
    """Task and job state transitions used by the runner.

    Args:
        session_factory: Session factory bound to the PostgreSQL engine
            (normally :data:`psi_runner.core.database.AsyncSessionLocal`).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    @_store_operation
    async def claim_batch(self, batch_size: int) -> list[ClaimedTask]:
        """Atomically claim up to ``batch_size`` claimable pending tasks.

        A task is claimable when it is ``pending`` and its retry cooldown has
        elapsed.  Rows are taken oldest first (``created_at``, then ``id``);
        rows locked by a concurrent claimer are skipped, not waited for.
        Claimed rows move to ``running`` with ``started_at`` stamped, and
        their jobs move from ``pending`` to ``running``.  All of it happens in
        one transaction.

        Args:
            batch_size: Maximum number of tasks to claim.

        Returns:
            The claimed tasks in claim order.  Empty when nothing is
            claimable.
        """
        if batch_size <= 0:
            return []

        async with self._session_factory() as db:
            candidates = (
                select(Task.id)
                .where(Task.status == TaskStatus.PENDING.value)
                .where(
                    sa.or_(
                        Task.next_attempt_at.is_(None),
                        Task.next_attempt_at <= func.now(),
                    )
                )
                .order_by(Task.created_at.asc(), Task.id.asc())
                .limit(batch_size)
                .with_for_update(skip_locked=True)
            )
            task_ids = list((await db.execute(candidates)).scalars().all())
            if not task_ids:
                await db.rollback()
                return []

            result = await db.execute(
                update(Task)
                .where(Task.id.in_(task_ids))
                .values(
                    status=TaskStatus.RUNNING.value,
                    started_at=func.now(),
                    updated_at=func.now(),
                )
                .returning(
                    Task.id,
                    Task.job_id,
                    Task.url,
                    Task.retries,
                    Task.started_at,
                )
                .execution_options(synchronize_session=False)
            )
            by_id = {row.id: ClaimedTask.model_validate(row) for row in result.all()}

            job_ids = {claimed.job_id for claimed in by_id.values()}
            await db.execute(
                update(Job)
                .where(Job.id.in_(job_ids))
                .where(Job.status == JobStatus.PENDING.value)
                .values(status=JobStatus.RUNNING.value, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        return [by_id[task_id] for task_id in task_ids if task_id in by_id]

    @_store_operation
    async def reclaim_stuck_tasks(self, threshold: timedelta) -> int:
        """Return orphaned ``running`` tasks to ``pending``.

        A task is orphaned when it is ``running``, has no ``completed_at`` and
        its ``started_at`` (or ``created_at`` when never stamped) is older than
        ``threshold``.  ``started_at`` is cleared; ``retries`` is untouched.
        Running it twice in a row changes nothing the second time.

        Args:
            threshold: Liveness threshold.

        Returns:
            Number of tasks reclaimed.
        """
        async with self._session_factory() as db:
            result = await db.execute(
                update(Task)
                .where(Task.status == TaskStatus.RUNNING.value)
                .where(Task.completed_at.is_(None))
                .where(
                    func.coalesce(Task.started_at, Task.created_at)
                    < func.now() - threshold
                )
                .values(
                    status=TaskStatus.PENDING.value,
                    started_at=None,
                    updated_at=func.now(),
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    @_store_operation
    async def fetch_status(self, task_id: int) -> Optional[str]:
        """Return the persisted status of ``task_id``, or ``None`` if it is gone."""
        async with self._session_factory() as db:
            result = await db.execute(select(Task.status).where(Task.id == task_id))
            return result.scalar_one_or_none()

    async def _settle(self, task_id: int, **values: Any) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                update(Task)
                .where(Task.id == task_id)
                .where(Task.status == TaskStatus.RUNNING.value)
                .values(updated_at=func.now(), **values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    @_store_operation
    async def mark_done(
        self,
        task_id: int,
        *,
        mobile: Optional[dict[str, Any]],
        desktop: Optional[dict[str, Any]],
        duration_ms: int,
    ) -> bool:
        """Settle a running task as ``done`` with whichever metrics succeeded.

        Returns:
            ``True`` if the row was still ``running`` and got updated.
        """
        return await self._settle(
            task_id,
            status=TaskStatus.DONE.value,
            mobile=mobile,
            desktop=desktop,
            duration_ms=duration_ms,
            error_message=None,
            next_attempt_at=None,
            completed_at=func.now(),
        )

    @_store_operation
    async def schedule_retry(
        self,
        task_id: int,
        *,
        error_message: str,
        delay_seconds: float,
    ) -> bool:
        """Re-queue a running task after a failed attempt.

        ``retries`` is incremented in SQL and the task may not be claimed
        again before ``delay_seconds`` have elapsed.

        Returns:
            ``True`` if the row was still ``running`` and got updated.
        """
        return await self._settle(
            task_id,
            status=TaskStatus.PENDING.value,
            retries=Task.retries + 1,
            error_message=error_message,
            next_attempt_at=func.now() + timedelta(seconds=delay_seconds),
        )

    @_store_operation
    async def mark_error(
        self,
        task_id: int,
        *,
        error_message: str,
        duration_ms: Optional[int] = None,
    ) -> bool:
        """Settle a running task as ``error`` once its retry budget is spent.

        ``duration_ms`` is the wall-clock time of the final attempt.

        Returns:
            ``True`` if the row was still ``running`` and got updated.
        """
        return await self._settle(
            task_id,
            status=TaskStatus.ERROR.value,
            error_message=error_message,
            duration_ms=duration_ms,
            next_attempt_at=None,
            completed_at=func.now(),
        )

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    @_store_operation
    async def check_and_close_job(self, job_id: uuid.UUID) -> bool:
        """Mark ``job_id`` as ``done`` when none of its tasks is still open.

        The open-task check and the status flip are one UPDATE, so two
        workers settling the last two tasks concurrently cannot both miss the
        close, and at most one of them reports it.

        Returns:
            ``True`` if this call moved the job to ``done``.
        """
        open_task_exists = (
            select(Task.id)
            .where(Task.job_id == job_id)
            .where(Task.status.in_(_OPEN_STATUSES))
            .exists()
        )
        async with self._session_factory() as db:
            result = await db.execute(
                update(Job)
                .where(Job.id == job_id)
                .where(Job.status.in_([JobStatus.PENDING.value, JobStatus.RUNNING.value]))
                .where(~open_task_exists)
                .values(status=JobStatus.DONE.value, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1
