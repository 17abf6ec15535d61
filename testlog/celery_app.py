"""Celery application configuration."""

from celery import Celery

from testlog.config import get_settings

settings = get_settings()

celery_app = Celery(
    "testlog",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["testlog.tasks.media_tasks"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.celery_task_time_limit,
    task_soft_time_limit=settings.celery_task_time_limit - 300,
    worker_prefetch_multiplier=1,  # Process one task at a time
    task_acks_late=True,  # Acknowledge after task completion
    task_reject_on_worker_lost=True,  # Requeue if worker dies
)
