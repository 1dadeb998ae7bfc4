# backend/app/services/notifications.py
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

import httpx
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from ..config import settings
from ..db import SessionLocal
from ..domain.application_state import (
    EVENT_LANDLORD_APPROVED,
    EVENT_LANDLORD_REJECTED,
    EVENT_MUTUAL_MATCH,
)
from ..models import Notification

log = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Notification outbox
# -----------------------------------------------------------------------------
# enqueue_notification() writes a row inside the caller's transaction, so a
# state transition and its notifications commit (or roll back) together.
# dispatch() runs after commit and never blocks on, or fails because of,
# delivery.
# -----------------------------------------------------------------------------


def _dumps(v: Any) -> str:
    try:
        return json.dumps(v, default=str)
    except (TypeError, ValueError):
        return "{}"


def build_message(event_kind: str, *, role: str, property_title: Optional[str]) -> dict[str, str]:
    title = property_title or "this property"
    if event_kind == EVENT_MUTUAL_MATCH and role == "landlord":
        return {"title": "Mutual Match!", "message": "You and the tenant both expressed interest. Chat is now open!"}
    if event_kind == EVENT_MUTUAL_MATCH:
        return {
            "title": "Chat Unlocked!",
            "message": f"Great news! The landlord approved your application for {title}. You can now chat with them.",
        }
    if event_kind == EVENT_LANDLORD_APPROVED:
        return {
            "title": "Landlord Approved You",
            "message": f"The landlord approved your application for {title}. Like the property to unlock chat.",
        }
    if event_kind == EVENT_LANDLORD_REJECTED:
        return {
            "title": "Application Update",
            "message": (
                f"Thank you for your interest in {title}. "
                "The landlord has decided to move forward with other applicants."
            ),
        }
    return {"title": event_kind, "message": ""}


def enqueue_notification(
    db: Session,
    *,
    user_id: str,
    event_kind: str,
    payload: Optional[dict[str, Any]] = None,
    created_at: Optional[datetime] = None,
) -> Notification:
    if not event_kind:
        raise ValueError("event_kind required")

    row = Notification(
        user_id=str(user_id),
        event_kind=str(event_kind),
        payload_json=_dumps(payload or {}),
        created_at=created_at or datetime.utcnow(),
        attempts=0,
    )
    db.add(row)
    return row


def list_notifications(db: Session, *, user_id: Optional[str] = None, event_kind: Optional[str] = None) -> list[Notification]:
    q = select(Notification).order_by(Notification.id)
    if user_id is not None:
        q = q.where(Notification.user_id == str(user_id))
    if event_kind is not None:
        q = q.where(Notification.event_kind == str(event_kind))
    return list(db.scalars(q).all())


def deliver_notification(db: Session, *, notification_id: int) -> dict[str, Any]:
    """
    Push one outbox row to the webhook (if configured) and stamp delivered_at.

    The row is claimed with a conditional UPDATE before anything is sent, so
    of several workers holding the same id only one posts. A claim older than
    notify_claim_lease_seconds counts as abandoned (worker died mid-send).
    Idempotent: an already-delivered row is left alone.
    """
    nid = int(notification_id)
    now = datetime.utcnow()
    lease_cutoff = now - timedelta(seconds=int(settings.notify_claim_lease_seconds))

    claimed = db.execute(
        update(Notification)
        .where(
            Notification.id == nid,
            Notification.delivered_at.is_(None),
            or_(Notification.claimed_at.is_(None), Notification.claimed_at < lease_cutoff),
        )
        .values(claimed_at=now, last_attempt_at=now, attempts=Notification.attempts + 1)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()

    row = db.get(Notification, nid, populate_existing=True)
    if row is None:
        return {"ok": False, "reason": "notification_not_found"}
    if row.delivered_at is not None:
        return {"ok": True, "idempotent": True}
    if claimed != 1:
        log.info("notification id=%s is being delivered by another worker", nid)
        return {"ok": False, "reason": "in_flight"}

    url = settings.notify_webhook_url
    if url:
        body = {
            "id": row.id,
            "user_id": row.user_id,
            "event_kind": row.event_kind,
            "payload": json.loads(row.payload_json or "{}"),
        }
        try:
            with httpx.Client(timeout=float(settings.notify_timeout_seconds)) as client:
                r = client.post(url, json=body)
                r.raise_for_status()
        except httpx.HTTPError as e:
            row.last_error = f"{type(e).__name__}: {e}"
            row.claimed_at = None
            db.add(row)
            db.commit()
            log.warning("notification delivery failed id=%s: %s", row.id, row.last_error)
            return {"ok": False, "reason": "delivery_failed", "error": row.last_error}

    row.delivered_at = datetime.utcnow()
    row.claimed_at = None
    row.last_error = None
    db.add(row)
    db.commit()
    return {"ok": True, "webhook": bool(url)}


def dispatch(notification_ids: Iterable[int]) -> None:
    """Fire-and-forget hand-off of committed outbox rows."""
    ids = [int(i) for i in notification_ids]
    if not ids:
        return

    mode = (settings.notification_delivery or "celery").strip().lower()
    if mode == "off":
        return

    if mode == "inline":
        db = SessionLocal()
        try:
            for nid in ids:
                try:
                    deliver_notification(db, notification_id=nid)
                except Exception as e:
                    db.rollback()
                    log.warning("inline notification delivery crashed id=%s: %s", nid, e)
        finally:
            db.close()
        return

    from ..workers.notification_tasks import deliver_notification_task

    for nid in ids:
        try:
            deliver_notification_task.delay(nid)
        except Exception as e:
            # the row stays in the outbox; the sweep task picks it up later
            log.warning("could not enqueue notification id=%s: %s", nid, e)


def pending_notification_ids(
    db: Session,
    *,
    limit: int = 500,
    settled_before: Optional[datetime] = None,
) -> list[int]:
    """
    Undelivered rows. With settled_before, only rows whose last attempt (or
    creation, if never attempted) is older than that; rows with a send or a
    scheduled retry still in flight are skipped.
    """
    q = select(Notification.id).where(Notification.delivered_at.is_(None))
    if settled_before is not None:
        q = q.where(func.coalesce(Notification.last_attempt_at, Notification.created_at) < settled_before)
    return list(db.scalars(q.order_by(Notification.id).limit(int(limit))).all())
