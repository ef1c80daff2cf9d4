"""
Celery application configuration.

Defines the Celery app with Redis broker and the task modules the
worker should import.
"""

from celery import Celery

from freightmatch.config import settings

celery_app = Celery(
    "freightmatch",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "freightmatch.tasks.matching_tasks",
        "freightmatch.tasks.notification_tasks",
    ],
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
)
