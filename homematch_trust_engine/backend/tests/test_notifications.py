# backend/tests/test_notifications.py
from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta

import httpx

from app.config import settings
from app.db import SessionLocal
from app.models import Notification
from app.services.application_state_machine import record_landlord_decision, record_tenant_interest
from app.services.notifications import (
    deliver_notification,
    dispatch,
    enqueue_notification,
    pending_notification_ids,
)
from app.workers.notification_tasks import deliver_notification_task
from fakes import make_property, make_tenant, uid

T0 = datetime(2026, 8, 1, 9, 0, 0)


def _note(db) -> int:
    row = enqueue_notification(db, user_id=uid("user"), event_kind="mutual_match", payload={"x": 1}, created_at=T0)
    db.commit()
    return int(row.id)


def test_deliver_stamps_row_and_is_idempotent():
    db = SessionLocal()
    try:
        nid = _note(db)
        assert nid in pending_notification_ids(db)

        out = deliver_notification(db, notification_id=nid)
        assert out["ok"] and out["webhook"] is False
        row = db.get(Notification, nid)
        assert row.delivered_at is not None
        assert row.attempts == 1

        again = deliver_notification(db, notification_id=nid)
        assert again == {"ok": True, "idempotent": True}
        assert db.get(Notification, nid).attempts == 1
        assert nid not in pending_notification_ids(db)
    finally:
        db.close()


def test_webhook_failure_is_recorded(monkeypatch):
    def boom(self, url, **kw):
        raise httpx.ConnectError("hook down")

    monkeypatch.setattr(settings, "notify_webhook_url", "http://hooks.invalid/notify")
    monkeypatch.setattr(httpx.Client, "post", boom)

    db = SessionLocal()
    try:
        nid = _note(db)
        out = deliver_notification(db, notification_id=nid)
        assert not out["ok"]
        row = db.get(Notification, nid)
        assert row.delivered_at is None
        assert row.attempts == 1
        assert "hook down" in row.last_error
    finally:
        db.close()


def test_dispatch_off_leaves_outbox_untouched():
    db = SessionLocal()
    try:
        nid = _note(db)
        dispatch([nid])
        db.expire_all()
        assert db.get(Notification, nid).delivered_at is None
    finally:
        db.close()


def test_inline_dispatch_delivers_after_transition(monkeypatch):
    monkeypatch.setattr(settings, "notification_delivery", "inline")
    db = SessionLocal()
    try:
        tid = make_tenant(db, created_at=T0)
        pid, _ = make_property(db)
        record_tenant_interest(db, property_id=pid, tenant_id=tid, now=T0)
        r = record_landlord_decision(db, property_id=pid, tenant_id=tid, decision="approved", now=T0)

        db.expire_all()
        assert len(r.notification_ids) == 2
        assert all(db.get(Notification, n).delivered_at is not None for n in r.notification_ids)
    finally:
        db.close()


def test_delivery_task_runs_eagerly():
    db = SessionLocal()
    try:
        nid = _note(db)
    finally:
        db.close()

    res = deliver_notification_task.apply(args=[nid]).get()
    assert res["ok"]

    missing = deliver_notification_task.apply(args=[10_000_000]).get()
    assert missing == {"ok": False, "reason": "notification_not_found"}


def test_two_workers_on_one_row_post_the_webhook_once(monkeypatch):
    posts: list[int] = []
    lock = threading.Lock()

    def slow_post(self, url, **kw):
        with lock:
            posts.append(kw["json"]["id"])
        time.sleep(0.2)
        return httpx.Response(200, request=httpx.Request("POST", url))

    monkeypatch.setattr(settings, "notify_webhook_url", "http://hooks.invalid/notify")
    monkeypatch.setattr(httpx.Client, "post", slow_post)

    db = SessionLocal()
    try:
        nid = _note(db)
    finally:
        db.close()

    barrier = threading.Barrier(2)
    results: list[dict] = []

    def worker():
        s = SessionLocal()
        try:
            barrier.wait()
            results.append(deliver_notification(s, notification_id=nid))
        finally:
            s.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert posts == [nid]
    assert sum(1 for r in results if r.get("webhook")) == 1
    loser = next(r for r in results if not r.get("webhook"))
    assert loser.get("reason") == "in_flight" or loser.get("idempotent")

    db = SessionLocal()
    try:
        row = db.get(Notification, nid)
        assert row.delivered_at is not None
        assert row.claimed_at is None
        assert row.attempts == 1
    finally:
        db.close()


def test_live_claim_blocks_and_stale_claim_is_taken_over():
    db = SessionLocal()
    try:
        nid = _note(db)
        row = db.get(Notification, nid)
        row.claimed_at = datetime.utcnow()
        db.commit()

        assert deliver_notification(db, notification_id=nid) == {"ok": False, "reason": "in_flight"}
        assert db.get(Notification, nid).delivered_at is None

        row = db.get(Notification, nid)
        row.claimed_at = datetime.utcnow() - timedelta(seconds=settings.notify_claim_lease_seconds + 60)
        db.commit()

        out = deliver_notification(db, notification_id=nid)
        assert out["ok"] and not out.get("idempotent")
        assert db.get(Notification, nid).delivered_at is not None
    finally:
        db.close()


def test_sweep_skips_rows_with_a_recent_attempt():
    db = SessionLocal()
    try:
        old = _note(db)
        recent = _note(db)
        db.get(Notification, old).created_at = datetime.utcnow() - timedelta(days=1)
        db.get(Notification, recent).last_attempt_at = datetime.utcnow()
        db.commit()

        cutoff = datetime.utcnow() - timedelta(seconds=settings.notify_sweep_grace_seconds)
        ids = pending_notification_ids(db, limit=100_000, settled_before=cutoff)
        assert old in ids
        assert recent not in ids
        assert recent in pending_notification_ids(db, limit=100_000)
    finally:
        db.close()
