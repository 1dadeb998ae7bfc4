# backend/app/services/application_state_machine.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.application_state import (
    DECISION_NONE,
    DECISION_REJECTED,
    LANDLORD_ACTIONS,
    derive_status,
    notifications_for_transition,
)
from ..domain.audit import audit_write
from ..domain.errors import NotFoundError, PermissionDeniedError, ValidationError
from ..models import Application, Property
from .evidence_store import EvidenceStore, commit_or_conflict, flush_or_conflict, with_conflict_retry
from .notifications import build_message, dispatch, enqueue_notification

log = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Application State Machine
# -----------------------------------------------------------------------------
# One row per (property, tenant), created lazily by whichever signal comes
# first. Only two inputs ever change: tenant_interested and landlord_decision.
# status is re-derived from them on every write; the previous stored status
# is what notifications are diffed against.
#
# Concurrency: Application carries a version column. A tenant "like" racing a
# landlord "approve" makes one flush fail with ConcurrencyConflict; that call
# re-reads and re-applies its signal once, so both signals land and the
# derived status sees both.
# -----------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.utcnow()


@dataclass(frozen=True)
class ApplicationView:
    id: int
    property_id: str
    tenant_id: str
    landlord_id: str
    status: str
    tenant_interested: bool
    tenant_interested_at: Optional[datetime]
    landlord_decision: str
    landlord_decided_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @property
    def chat_unlocked(self) -> bool:
        return self.status == "chat_open"

    @classmethod
    def from_row(cls, row: Application) -> "ApplicationView":
        return cls(
            id=int(row.id),
            property_id=str(row.property_id),
            tenant_id=str(row.tenant_id),
            landlord_id=str(row.landlord_id),
            status=str(row.status),
            tenant_interested=bool(row.tenant_interested),
            tenant_interested_at=row.tenant_interested_at,
            landlord_decision=str(row.landlord_decision),
            landlord_decided_at=row.landlord_decided_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "tenant_id": self.tenant_id,
            "landlord_id": self.landlord_id,
            "status": self.status,
            "tenant_interested": self.tenant_interested,
            "tenant_interested_at": self.tenant_interested_at,
            "landlord_decision": self.landlord_decision,
            "landlord_decided_at": self.landlord_decided_at,
        }


@dataclass(frozen=True)
class TransitionResult:
    application: ApplicationView
    previous_status: Optional[str]
    status: str
    changed: bool
    notification_ids: list[int] = field(default_factory=list)


def must_get_property(db: Session, *, property_id: str) -> Property:
    row = db.get(Property, str(property_id))
    if row is None:
        raise NotFoundError(f"property not found: {property_id}")
    return row


def find_application(db: Session, *, property_id: str, tenant_id: str) -> Optional[Application]:
    return db.scalar(
        select(Application).where(
            Application.property_id == str(property_id),
            Application.tenant_id == str(tenant_id),
        )
    )


def _apply_signal(
    db: Session,
    *,
    property_id: str,
    tenant_id: str,
    action: str,
    mutate: Callable[[Application, datetime], bool],
    landlord_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    ts = now or _utcnow()

    prop = must_get_property(db, property_id=property_id)
    if landlord_id is not None and str(prop.landlord_id) != str(landlord_id):
        raise PermissionDeniedError(f"landlord {landlord_id} does not own property {property_id}")
    EvidenceStore(db).get_profile(tenant_id)

    row = find_application(db, property_id=property_id, tenant_id=tenant_id)
    previous = row.status if row is not None else None
    before = ApplicationView.from_row(row).as_dict() if row is not None else None

    if row is None:
        row = Application(
            property_id=str(property_id),
            tenant_id=str(tenant_id),
            landlord_id=str(prop.landlord_id),
            tenant_interested=False,
            tenant_interested_at=None,
            landlord_decision=DECISION_NONE,
            landlord_decided_at=None,
            created_at=ts,
            updated_at=ts,
        )

    if not mutate(row, ts):
        # raw signals unchanged -> derived status unchanged -> nothing to write or announce
        return TransitionResult(
            application=ApplicationView.from_row(row),
            previous_status=previous,
            status=str(row.status),
            changed=False,
        )

    status = derive_status(bool(row.tenant_interested), str(row.landlord_decision))
    if status is None:
        raise ValidationError("an application needs at least one interest signal")

    row.status = status
    row.updated_at = ts
    db.add(row)
    flush_or_conflict(db)

    notes = []
    for planned in notifications_for_transition(
        previous=previous,
        current=status,
        tenant_id=str(row.tenant_id),
        landlord_id=str(row.landlord_id),
    ):
        payload = {
            "property_id": str(row.property_id),
            "tenant_id": str(row.tenant_id),
            "landlord_id": str(row.landlord_id),
            "application_id": int(row.id),
            "status": status,
            "chat_unlocked": status == "chat_open",
            **build_message(planned.event_kind, role=planned.role, property_title=prop.title),
        }
        notes.append(
            enqueue_notification(
                db, user_id=planned.user_id, event_kind=planned.event_kind, payload=payload, created_at=ts
            )
        )

    audit_write(
        db,
        action=action,
        entity_type="Application",
        entity_id=str(row.id),
        before=before,
        after=ApplicationView.from_row(row).as_dict(),
        created_at=ts,
    )

    commit_or_conflict(db)
    ids = [int(n.id) for n in notes]

    if previous != status:
        log.info(
            "application %s -> %s",
            previous or "(new)",
            status,
            extra={"property_id": str(property_id), "tenant_id": str(tenant_id), "application_id": int(row.id)},
        )

    return TransitionResult(
        application=ApplicationView.from_row(row),
        previous_status=previous,
        status=status,
        changed=previous != status,
        notification_ids=ids,
    )


def record_tenant_interest(
    db: Session,
    *,
    property_id: str,
    tenant_id: str,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """
    Tenant "likes" the property. Idempotent: a second like keeps the original
    tenant_interested_at and fires nothing. A rejected application stays rejected.
    """

    def mutate(row: Application, ts: datetime) -> bool:
        if row.tenant_interested:
            return False
        row.tenant_interested = True
        if row.tenant_interested_at is None:
            row.tenant_interested_at = ts
        return True

    result = with_conflict_retry(
        db,
        lambda: _apply_signal(
            db,
            property_id=property_id,
            tenant_id=tenant_id,
            action="application.tenant_interest",
            mutate=mutate,
            now=now,
        ),
        what=f"application:{property_id}:{tenant_id}",
    )
    dispatch(result.notification_ids)
    return result


def record_landlord_decision(
    db: Session,
    *,
    property_id: str,
    tenant_id: str,
    decision: str,
    landlord_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """
    Landlord approves or rejects. Rejection overrides everything (including an
    open chat) and is terminal: later decisions leave the record untouched.
    Repeating the current decision is a no-op.
    """
    decision = (decision or "").strip().lower()
    if decision not in LANDLORD_ACTIONS:
        raise ValidationError(f"decision must be one of {LANDLORD_ACTIONS}, got {decision!r}")

    def mutate(row: Application, ts: datetime) -> bool:
        if row.landlord_decision == DECISION_REJECTED:
            return False
        if row.landlord_decision == decision:
            return False
        row.landlord_decision = decision
        row.landlord_decided_at = ts
        return True

    result = with_conflict_retry(
        db,
        lambda: _apply_signal(
            db,
            property_id=property_id,
            tenant_id=tenant_id,
            action=f"application.landlord_{decision}",
            mutate=mutate,
            landlord_id=landlord_id,
            now=now,
        ),
        what=f"application:{property_id}:{tenant_id}",
    )
    dispatch(result.notification_ids)
    return result


def get_application_status(db: Session, *, property_id: str, tenant_id: str) -> Optional[ApplicationView]:
    """None means neither party has signalled: no application exists yet."""
    row = find_application(db, property_id=property_id, tenant_id=tenant_id)
    if row is None:
        return None
    return ApplicationView.from_row(row)


def list_applications(
    db: Session,
    *,
    tenant_id: Optional[str] = None,
    landlord_id: Optional[str] = None,
    status: Optional[str] = None,
) -> list[ApplicationView]:
    q = select(Application).order_by(Application.updated_at.desc(), Application.id.desc())
    if tenant_id is not None:
        q = q.where(Application.tenant_id == str(tenant_id))
    if landlord_id is not None:
        q = q.where(Application.landlord_id == str(landlord_id))
    if status is not None:
        q = q.where(Application.status == str(status))
    return [ApplicationView.from_row(r) for r in db.scalars(q).all()]
