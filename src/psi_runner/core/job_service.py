"""Job submission, cancellation and progress reporting.

These are the operations the surrounding application performs on the work
queue; the runner itself never calls them.  Creating a job inserts the job
and all of its tasks in one transaction, so a runner can never claim a task
of a half-submitted job.

Cancellation is cooperative: tasks still ``pending`` are never claimed, and
tasks already ``running`` finish their scorer calls but have their results
discarded by the executor's conditional settlement write.

Usage::

    from psi_runner.core.database import AsyncSessionLocal
    from psi_runner.core.job_service import JobService

    service = JobService()
    async with AsyncSessionLocal() as db:
        job = await service.create_job(db, "homepage audit", urls)
        progress = await service.get_job_progress(db, job.id)
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from psi_runner.core.exceptions import JobNotFoundError
from psi_runner.core.models.jobs import (
    OPEN_TASK_STATUSES,
    Job,
    JobStatus,
    Task,
    TaskStatus,
)
from psi_runner.core.schemas.jobs import (
    JobDetail,
    JobPage,
    JobProgress,
    JobSummary,
    TaskRead,
)

logger = logging.getLogger(__name__)

#: Bounds applied to the ``per_page`` argument of :meth:`JobService.list_jobs`.
MIN_PER_PAGE: int = 10
MAX_PER_PAGE: int = 100


def normalize_urls(urls: Sequence[str]) -> list[str]:
    """Strip whitespace, drop blank entries and drop repeats, keeping order."""
    seen: set[str] = set()
    result: list[str] = []
    for raw in urls:
        url = raw.strip() if isinstance(raw, str) else ""
        if url and url not in seen:
            seen.add(url)
            result.append(url)
    return result


class JobService:
    """Operations on jobs and their tasks.

    Stateless; a single instance can be reused.  Every method takes the
    caller's ``AsyncSession``.  Mutating methods commit before returning.
    """

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_job(
        self,
        db: AsyncSession,
        name: str,
        urls: Sequence[str],
    ) -> Job:
        """Create a job with one ``pending`` task per distinct URL.

        Args:
            db: Active async database session.
            name: Free-text label for the job.
            urls: Submitted URLs.  Blank entries and repeats are dropped.

        Returns:
            The persisted :class:`Job`.

        Raises:
            ValueError: If no URL remains after normalization.
        """
        cleaned = normalize_urls(urls)
        if not cleaned:
            raise ValueError("a job needs at least one non-blank URL")

        job = Job(name=name.strip() or "untitled", status=JobStatus.PENDING.value)
        job.tasks = [Task(url=url, status=TaskStatus.PENDING.value) for url in cleaned]
        db.add(job)
        await db.commit()
        # Server-side defaults; the tasks collection keeps the objects above.
        await db.refresh(job, attribute_names=["id", "status", "created_at", "updated_at"])

        logger.info(
            "job_service: created job %s with %d task(s)", job.id, len(cleaned)
        )
        return job

    async def cancel_job(self, db: AsyncSession, job_id: uuid.UUID) -> int:
        """Cancel a job and every task of it that has not settled yet.

        Args:
            db: Active async database session.
            job_id: Job to cancel.

        Returns:
            Number of tasks moved to ``cancelled``.

        Raises:
            JobNotFoundError: If ``job_id`` does not exist.
        """
        # Tasks before the job row: the claimer locks in the same order.
        task_result = await db.execute(
            update(Task)
            .where(Task.job_id == job_id)
            .where(Task.status.in_([s.value for s in OPEN_TASK_STATUSES]))
            .values(
                status=TaskStatus.CANCELLED.value,
                completed_at=func.now(),
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        job_result = await db.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(status=JobStatus.CANCELLED.value, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if job_result.rowcount == 0:
            await db.rollback()
            raise JobNotFoundError(job_id)

        await db.commit()

        cancelled = task_result.rowcount or 0
        logger.info("job_service: cancelled job %s (%d task(s))", job_id, cancelled)
        return cancelled

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_job_progress(self, db: AsyncSession, job_id: uuid.UUID) -> JobProgress:
        """Return per-status task counts and mean ``duration_ms`` for a job.

        An unknown id yields all-zero counts.
        """
        progress = await self._progress_for(db, [job_id])
        return progress.get(job_id, JobProgress())

    async def list_jobs(
        self,
        db: AsyncSession,
        page: int = 1,
        per_page: int = 20,
    ) -> JobPage:
        """Return one page of jobs, newest first, with progress counts.

        Args:
            db: Active async database session.
            page: 1-based page number.  Values below 1 are treated as 1.
            per_page: Page size, clamped to ``[MIN_PER_PAGE, MAX_PER_PAGE]``.

        Returns:
            A :class:`JobPage`.
        """
        page = max(1, page)
        per_page = max(MIN_PER_PAGE, min(MAX_PER_PAGE, per_page))

        total_jobs = (await db.execute(select(func.count(Job.id)))).scalar_one()
        jobs = (
            await db.execute(
                select(Job)
                .order_by(Job.created_at.desc(), Job.id.desc())
                .offset((page - 1) * per_page)
                .limit(per_page)
            )
        ).scalars().all()

        progress = await self._progress_for(db, [job.id for job in jobs])
        items = [
            JobSummary(
                id=job.id,
                name=job.name,
                status=job.status,
                created_at=job.created_at,
                progress=progress.get(job.id, JobProgress()),
            )
            for job in jobs
        ]
        return JobPage(items=items, page=page, per_page=per_page, total_jobs=total_jobs)

    async def get_job_detail(
        self,
        db: AsyncSession,
        job_id: uuid.UUID,
    ) -> Optional[JobDetail]:
        """Return a job with all of its tasks, or ``None`` if it does not exist."""
        job = await db.get(Job, job_id)
        if job is None:
            return None
        tasks = (
            await db.execute(
                select(Task)
                .where(Task.job_id == job_id)
                .order_by(Task.id)
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
        progress = await self.get_job_progress(db, job_id)
        summary = JobSummary(
            id=job.id,
            name=job.name,
            status=job.status,
            created_at=job.created_at,
            progress=progress,
        )
        return JobDetail(job=summary, tasks=[TaskRead.model_validate(t) for t in tasks])

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _progress_for(
        self,
        db: AsyncSession,
        job_ids: Sequence[uuid.UUID],
    ) -> dict[uuid.UUID, JobProgress]:
        if not job_ids:
            return {}

        rows = (
            await db.execute(
                select(Task.job_id, Task.status, func.count(Task.id))
                .where(Task.job_id.in_(job_ids))
                .group_by(Task.job_id, Task.status)
            )
        ).all()
        averages = dict(
            (
                await db.execute(
                    select(Task.job_id, func.avg(Task.duration_ms))
                    .where(Task.job_id.in_(job_ids))
                    .where(Task.duration_ms.is_not(None))
                    .group_by(Task.job_id)
                )
            ).all()
        )

        counts: dict[uuid.UUID, dict[str, int]] = {}
        for job_id, status, count in rows:
            counts.setdefault(job_id, {})[status] = count

        result: dict[uuid.UUID, JobProgress] = {}
        for job_id in job_ids:
            by_status = counts.get(job_id, {})
            avg = averages.get(job_id)
            result[job_id] = JobProgress(
                total=sum(by_status.values()),
                avg_duration_ms=float(avg) if avg is not None else None,
                **{status.value: by_status.get(status.value, 0) for status in TaskStatus},
            )
        return result
