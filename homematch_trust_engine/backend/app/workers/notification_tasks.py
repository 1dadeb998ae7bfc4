# backend/app/workers/notification_tasks.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from ..config import settings
from ..db import SessionLocal
from ..services.notifications import deliver_notification, pending_notification_ids
from .backoff import backoff_seconds
from .celery_app import celery_app

log = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=int(settings.notify_max_retries),
    default_retry_delay=5,
    name="app.workers.notification_tasks.deliver_notification_task",
)
def deliver_notification_task(self, notification_id: int) -> dict:
    """Safe to retry; deliver_notification claims the row before sending."""
    db = SessionLocal()
    try:
        out = deliver_notification(db, notification_id=int(notification_id))
        if out.get("ok") or out.get("reason") in ("notification_not_found", "in_flight"):
            return out

        retries = int(getattr(self.request, "retries", 0) or 0)
        if retries >= int(self.max_retries):
            # row stays undelivered; the sweep will try again later
            log.error("notification delivery gave up id=%s: %s", notification_id, out.get("error"))
            return {**out, "retries": retries}

        delay = backoff_seconds(
            retries,
            base=int(settings.notify_retry_base_seconds),
            cap=int(settings.notify_retry_max_seconds),
        )
        raise self.retry(countdown=delay)
    finally:
        db.close()


@celery_app.task(name="app.workers.notification_tasks.sweep_undelivered_notifications")
def sweep_undelivered_notifications(limit: int = 500) -> dict:
    """
    Periodic outbox sweep (celery-beat). Re-enqueues rows that never got
    delivered, e.g. because the broker was down when the transition committed.
    Rows touched within notify_sweep_grace_seconds are left to the task that
    already owns them.
    """
    settled_before = datetime.utcnow() - timedelta(seconds=int(settings.notify_sweep_grace_seconds))
    db = SessionLocal()
    try:
        ids = pending_notification_ids(db, limit=int(limit), settled_before=settled_before)
    finally:
        db.close()

    for nid in ids:
        deliver_notification_task.delay(nid)
    return {"ok": True, "requeued": len(ids)}
