import logging

from celery import Celery
from celery.signals import setup_logging as setup_logging_signal
from celery.signals import worker_ready

from answerwatch.core.config import settings, validate_settings
from answerwatch.core.logging import setup_logging
from answerwatch.core.sentry import init_sentry
from answerwatch.tasks.schedule import InvalidScheduleError, parse_cron_schedule

logger = logging.getLogger(__name__)

celery_app = Celery(
    "answerwatch",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

try:
    _check_schedule = parse_cron_schedule(settings.cron_schedule)
except InvalidScheduleError as e:
    raise SystemExit(f"Configuration errors:\n  - {e}") from e

# Celery Beat schedule: one recurring due-check, businesses decide for themselves
# whether they are due via next_execution_time.
celery_app.conf.beat_schedule = {
    "check-due-businesses": {
        "task": "check_due_businesses",
        "schedule": _check_schedule,
    },
}

celery_app.conf.include = [
    "answerwatch.tasks.execution_tasks",
]


@worker_ready.connect
def _schedule_initial_check(sender=None, **kwargs):
    """Catch up on work that came due while no worker was running."""
    validate_settings()
    delay = settings.initial_check_delay_seconds
    logger.info("Worker ready, initial due-check in %ds", delay)
    celery_app.send_task("check_due_businesses", countdown=delay)


@setup_logging_signal.connect
def _configure_worker_logging(**kwargs):
    setup_logging("worker")
    init_sentry("worker")
