"""Celery Beat periodic task schedule for psi-runner.

The scheduler is the only thing that starts runner invocations.  Each tick
enqueues one ``run_scoring_batch`` task; several may overlap when a previous
invocation is still busy, which the store's ``SKIP LOCKED`` claiming makes
safe.

Schedule overview:

+---------------------+-------------------------------+---------------------------+
| Task name           | Schedule                      | Purpose                   |
+=====================+===============================+===========================+
| run_scoring_batch   | Every RUNNER_SCHEDULE_MINUTES | Reclaim stuck tasks, then |
|                     | (default: every minute)       | claim and score batches.  |
+---------------------+-------------------------------+---------------------------+
"""

from __future__ import annotations

from celery.schedules import crontab


def build_beat_schedule(every_minutes: int) -> dict[str, dict]:  # type: ignore[type-arg]
    """Return the Beat schedule dict applied to ``celery_app.conf.beat_schedule``.

    Args:
        every_minutes: Cadence of runner invocations, 1-59.
    """
    minute = "*" if every_minutes == 1 else f"*/{every_minutes}"
    return {
        "run_scoring_batch": {
            "task": "psi_runner.workers.tasks.run_scoring_batch",
            "schedule": crontab(minute=minute),
            "options": {
                "queue": "scoring",
                # A tick that waited longer than its own period is superseded
                # by the next one.
                "expires": every_minutes * 60,
            },
        },
    }
