"""Celery application configuration and Beat schedule."""
from celery import Celery

from distributo.config import settings

celery_app = Celery(
    "distributo",
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
        "distributo.tasks.publishing_tasks.*": {"queue": "critical"},
    },
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
)

celery_app.conf.beat_schedule = {
    "sweep-scheduled-posts": {
        "task": "distributo.tasks.publishing_tasks.sweep_scheduled_posts",
        "schedule": settings.SCHEDULER_INTERVAL_SECONDS,
    },
    "refresh-expiring-tokens": {
        "task": "distributo.tasks.publishing_tasks.refresh_expiring_tokens",
        "schedule": 3600.0,
    },
}

celery_app.autodiscover_tasks(["distributo.tasks.publishing_tasks"])
