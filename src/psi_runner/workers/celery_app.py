"""Celery application factory for psi-runner.

Configures the broker, result backend, serialization and time limits.  All
configuration values are sourced from ``Settings`` so that no secrets or
environment-specific values are hard-coded here.

Usage (starting a worker)::

    celery -A psi_runner.workers.celery_app worker --loglevel=info

Usage (starting the Beat scheduler that triggers runner invocations)::

    celery -A psi_runner.workers.celery_app beat --loglevel=info

Usage (triggering one invocation by hand)::

    from psi_runner.workers.celery_app import celery_app

    celery_app.send_task("psi_runner.workers.tasks.run_scoring_batch")
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_postrun, worker_process_init
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

# Load .env values into os.environ before settings are read.
load_dotenv()

from psi_runner.config.settings import get_settings  # noqa: E402
from psi_runner.core.logging_config import configure_logging  # noqa: E402

settings = get_settings()
configure_logging(settings.log_level)

#: The global Celery application instance.
celery_app = Celery(
    "psi_runner",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["psi_runner.workers.tasks"],
)

# ---------------------------------------------------------------------------
# Core configuration
# ---------------------------------------------------------------------------

celery_app.conf.update(
    # Serialization: JSON only; task results are plain counter dicts.
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # A worker that dies mid-invocation leaves its tasks ``running``; the
    # reclaimer recovers them, so the message itself must not be redelivered.
    task_acks_late=False,
    worker_prefetch_multiplier=1,
    result_expires=3_600,
    # One invocation is bounded by MAX_RUNNER_ITERATIONS x FETCH_TIMEOUT plus
    # pauses; the defaults stay well under the soft limit.
    task_soft_time_limit=1_800,
    task_time_limit=2_100,
    task_routes={
        "psi_runner.workers.tasks.run_scoring_batch": {"queue": "scoring"},
    },
    beat_schedule_filename="celerybeat-schedule",
)

# Import and apply the Beat schedule after the app is configured.
from psi_runner.workers.beat_schedule import build_beat_schedule  # noqa: E402

celery_app.conf.beat_schedule = build_beat_schedule(settings.runner_schedule_minutes)


# ---------------------------------------------------------------------------
# Engine disposal on fork
# ---------------------------------------------------------------------------
@worker_process_init.connect
def _dispose_engine_on_fork(**kwargs: object) -> None:  # noqa: ARG001
    """Dispose the async engine after Celery forks a worker process.

    Pooled asyncpg connections are tied to the parent's event loop and cannot
    be reused by the child's ``asyncio.run()`` loop.
    """
    from psi_runner.core import database as _db  # noqa: PLC0415

    _db.async_engine.sync_engine.dispose(close=False)


# ---------------------------------------------------------------------------
# Engine disposal after each task
# ---------------------------------------------------------------------------
@task_postrun.connect
def _dispose_async_engine_after_task(**kwargs: object) -> None:  # noqa: ARG001
    """Dispose the async engine's connection pool after each task completes.

    Every task runs its own ``asyncio.run()`` loop, and connections pooled by
    the previous loop fail with ``RuntimeError: ... attached to a different
    loop`` on the next one.
    """
    try:
        from psi_runner.core import database as _db  # noqa: PLC0415

        _db.async_engine.sync_engine.dispose(close=False)
    except Exception as exc:  # noqa: BLE001
        _logger.debug("celery_app: engine disposal failed: %s", exc)
