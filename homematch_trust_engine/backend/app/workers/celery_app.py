# backend/app/workers/celery_app.py
from __future__ import annotations

from celery import Celery

from ..config import settings

celery_app = Celery(
    "homematch",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "app.workers.interview_tasks",
        "app.workers.notification_tasks",
    ],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    task_always_eager=bool(settings.celery_task_always_eager),
    timezone="UTC",
)

# Interview processing is slow and bursty (speech-to-text + LLM); notifications
# are small and latency-sensitive. Keep them on separate queues.
celery_app.conf.task_routes = {
    "app.workers.interview_tasks.*": {"queue": "interviews"},
    "app.workers.notification_tasks.*": {"queue": "notifications"},
}

celery_app.conf.beat_schedule = {
    "sweep-undelivered-notifications": {
        "task": "app.workers.notification_tasks.sweep_undelivered_notifications",
        "schedule": 300.0,
    },
}
