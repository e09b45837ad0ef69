"""Celery application configuration."""

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from chatorder.core.config import settings
from chatorder.core.logging_config import setup_logging

celery_app = Celery(
    "chatorder",
    broker=str(settings.redis_url),
    backend=str(settings.redis_url),
    include=[
        "chatorder.workers.tasks.messenger",
        "chatorder.workers.tasks.sync",
        "chatorder.workers.tasks.payments",
    ],
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task safety limits
    task_time_limit=300,
    task_soft_time_limit=240,
    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Result backend settings
    result_expires=3600,
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
    task_default_queue="default",
    task_routes={
        "tasks.messenger.*": {"queue": "messenger"},
        "tasks.sync.*": {"queue": "sync"},
        "tasks.payments.*": {"queue": "default"},
    },
    beat_schedule={
        "check-pending-payments": {
            "task": "tasks.payments.check_pending_payments",
            "schedule": float(settings.payment_check_interval_seconds),
        },
    },
)


@celery_setup_logging.connect
def _configure_worker_logging(**_kwargs: object) -> None:
    setup_logging(debug=settings.debug)


class BaseTask(celery_app.Task):  # type: ignore[misc, name-defined]
    """Base task class with error handling."""

    abstract = True
    autoretry_for = (Exception,)
    retry_backoff = True
    retry_backoff_max = 600  # Max 10 minutes between retries
    retry_jitter = True
    max_retries = 3
