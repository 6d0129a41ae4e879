"""Celery application configuration with the backup queue and Beat schedule."""
from celery import Celery
from celery.schedules import crontab

from dashvault.config import settings

celery_app = Celery(
    "dashvault",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_routes={
        "dashvault.tasks.backup_tasks.*": {"queue": "backups"},
    },
    task_default_retry_delay=60,
    task_max_retries=3,
    task_acks_late=True,
    # one bulk backup at a time per worker process
    worker_prefetch_multiplier=1,
    result_expires=3600 * 24,
)

celery_app.conf.beat_schedule = {
    "nightly-backup": {
        "task": "dashvault.tasks.backup_tasks.scheduled_backup_all",
        "schedule": crontab(hour=2, minute=0),
    },
}

celery_app.autodiscover_tasks(["dashvault.tasks.backup_tasks"])
