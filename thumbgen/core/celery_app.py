"""
Celery application: broker and result backend from settings.
Only periodic maintenance runs here; generation itself is synchronous per request.
"""
from celery import Celery
from celery.schedules import crontab

from thumbgen.core.config import settings

celery_app = Celery(
    "thumbgen",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "thumbgen.workers.tasks.sweep_placeholders",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=600,
    result_expires=86400,
    beat_schedule={
        "sweep-stale-placeholders": {
            "task": "thumbgen.workers.tasks.sweep_placeholders.sweep_stale_placeholders",
            "schedule": crontab(minute="*/15"),
        },
    },
)
