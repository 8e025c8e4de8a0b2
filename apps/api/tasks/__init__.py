"""
Celery tasks for background processing.

Tasks are defined here and imported by both the API (to enqueue) and
the worker (to execute).
"""
from celery import Celery
from core.config import settings

# Create Celery app instance
celery_app = Celery(
    "spot_pipeline",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Execution ceiling per sync run; work is committed per placemark.
    task_time_limit=settings.SYNC_TASK_TIME_LIMIT_S,
    task_soft_time_limit=settings.SYNC_TASK_SOFT_TIME_LIMIT_S,
    # One long sync at a time per worker process.
    worker_prefetch_multiplier=1,
)

from celerybeat_schedule import beat_schedule  # noqa: E402

celery_app.conf.beat_schedule = beat_schedule

# Import tasks to register them
from . import sync_tasks  # noqa: E402
from . import rating_tasks  # noqa: E402

__all__ = ["celery_app"]
