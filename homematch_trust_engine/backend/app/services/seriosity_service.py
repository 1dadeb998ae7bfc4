# backend/app/services/seriosity_service.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..clients.base import MediaStorage
from ..config import settings
from ..domain.audit import audit_write
from ..domain.errors import ValidationError
from ..domain.seriosity import (
    SeriosityBreakdown,
    TenantEvidence,
    compute_breakdown,
    improvement_suggestions,
    score_color,
    score_description,
)
from ..models import TenantDocument, TenantProfile
from .evidence_store import DOCUMENT_KINDS, EvidenceStore, with_conflict_retry

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoreSnapshot:
    tenant_id: str
    score: int
    breakdown: SeriosityBreakdown
    description: str
    color: str
    suggestions: list[str] = field(default_factory=list)
    updated_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "score": self.score,
            "breakdown": self.breakdown.as_dict(),
            "description": self.description,
            "color": self.color,
            "suggestions": list(self.suggestions),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class ScoreReconciliation:
    tenant_id: str
    consistent: bool
    stored_score: Optional[int]
    computed_score: int
    stored: Optional[dict[str, int]]
    computed: dict[str, int]
    mismatched_components: list[str]


def _snapshot(evidence: TenantEvidence, breakdown: SeriosityBreakdown, updated_at: Optional[datetime]) -> ScoreSnapshot:
    return ScoreSnapshot(
        tenant_id=evidence.tenant_id,
        score=breakdown.total,
        breakdown=breakdown,
        description=score_description(breakdown.total),
        color=score_color(breakdown.total),
        suggestions=improvement_suggestions(evidence, breakdown),
        updated_at=updated_at,
    )


def recompute_and_persist(db: Session, *, tenant_id: str, now: Optional[datetime] = None) -> ScoreSnapshot:
    """
    Evidence -> breakdown -> stored score. Flush only; the caller commits
    together with whatever evidence change triggered this.
    An audit row is written when the stored breakdown actually changes.
    """
    store = EvidenceStore(db)
    evidence = store.get_evidence(tenant_id)
    breakdown = compute_breakdown(evidence)

    before = store.stored_breakdown(tenant_id)
    row = store.save_score(tenant_id, breakdown, now=now)

    if before is None or before != breakdown:
        audit_write(
            db,
            action="seriosity.recompute",
            entity_type="TenantProfile",
            entity_id=tenant_id,
            before=before.as_dict() if before is not None else None,
            after={**breakdown.as_dict(), "total": breakdown.total},
            created_at=now,
        )
        log.info(
            "seriosity score recomputed",
            extra={"tenant_id": tenant_id, "score": breakdown.total},
        )

    return _snapshot(evidence, breakdown, row.score_updated_at)


def get_score(db: Session, *, tenant_id: str, recompute: bool = False) -> ScoreSnapshot:
    store = EvidenceStore(db)
    profile = store.get_profile(tenant_id)
    stored = store.stored_breakdown(tenant_id)

    if stored is None or recompute:

        def _do() -> ScoreSnapshot:
            snap = recompute_and_persist(db, tenant_id=tenant_id)
            store.commit()
            return snap

        return with_conflict_retry(db, _do, what=f"score:{tenant_id}")

    return _snapshot(store.get_evidence(tenant_id), stored, profile.score_updated_at)


def reconcile_score(db: Session, *, tenant_id: str) -> ScoreReconciliation:
    """
    Compare the stored breakdown with a fresh computation from evidence.
    Read-only. Drift is logged loudly and returned, never repaired silently.
    """
    store = EvidenceStore(db)
    profile = store.get_profile(tenant_id)
    computed = compute_breakdown(store.get_evidence(tenant_id))
    stored = store.stored_breakdown(tenant_id)

    computed_d = computed.as_dict()
    stored_d = stored.as_dict() if stored is not None else None

    if stored_d is None:
        mismatched = list(computed_d.keys())
    else:
        mismatched = [k for k, v in computed_d.items() if stored_d.get(k) != v]

    stored_score = profile.seriosity_score
    consistent = not mismatched and stored_score == computed.total

    if not consistent:
        log.warning(
            "seriosity score drift: stored=%s computed=%s components=%s",
            stored_score,
            computed.total,
            ",".join(mismatched) or "total",
            extra={"tenant_id": tenant_id},
        )

    return ScoreReconciliation(
        tenant_id=tenant_id,
        consistent=consistent,
        stored_score=stored_score,
        computed_score=computed.total,
        stored=stored_d,
        computed=computed_d,
        mismatched_components=mismatched,
    )


def reconcile_all(db: Session) -> list[ScoreReconciliation]:
    ids = db.scalars(select(TenantProfile.tenant_id).order_by(TenantProfile.tenant_id)).all()
    return [reconcile_score(db, tenant_id=str(t)) for t in ids]


# -----------------------------------------------------------------------------
# Evidence mutations (each one recomputes in the same transaction)
# -----------------------------------------------------------------------------

def set_identity_verified(
    db: Session,
    *,
    tenant_id: str,
    verified: bool,
    now: Optional[datetime] = None,
) -> ScoreSnapshot:
    store = EvidenceStore(db)

    def _do() -> ScoreSnapshot:
        store.set_identity_verified(tenant_id, verified, now=now)
        snap = recompute_and_persist(db, tenant_id=tenant_id, now=now)
        store.commit()
        return snap

    return with_conflict_retry(db, _do, what=f"identity:{tenant_id}")


def _validate_upload(kind: str, data: bytes, content_type: str) -> None:
    if kind not in DOCUMENT_KINDS:
        raise ValidationError(f"invalid document type: {kind}")
    if not data:
        raise ValidationError("no file provided")
    if len(data) > int(settings.document_max_bytes):
        raise ValidationError(f"file size must be less than {settings.document_max_bytes // (1024 * 1024)}MB")
    if (content_type or "").lower() not in {t.lower() for t in settings.document_allowed_types}:
        raise ValidationError("only PDF and image files are allowed")


def upload_document(
    db: Session,
    *,
    tenant_id: str,
    kind: str,
    data: bytes,
    filename: str,
    content_type: str,
    storage: MediaStorage,
    now: Optional[datetime] = None,
) -> tuple[TenantDocument, ScoreSnapshot]:
    _validate_upload(kind, data, content_type)
    store = EvidenceStore(db)
    store.get_profile(tenant_id)

    safe_name = (filename or "document").replace("/", "_")
    path = f"documents/{tenant_id}/{kind}/{uuid.uuid4().hex}_{safe_name}"
    url = storage.store(data, path=path, content_type=content_type)

    def _do() -> tuple[TenantDocument, ScoreSnapshot]:
        doc = store.append_document(
            tenant_id, kind, url=url, verified=False, filename=filename, content_type=content_type, now=now
        )
        snap = recompute_and_persist(db, tenant_id=tenant_id, now=now)
        store.commit()
        return doc, snap

    try:
        return with_conflict_retry(db, _do, what=f"documents:{tenant_id}")
    except Exception:
        # evidence write never landed; don't leave an orphan blob behind
        try:
            storage.delete(url)
        except Exception as cleanup_err:
            log.warning("orphan document blob left in storage url=%s: %s", url, cleanup_err)
        raise


def remove_document(
    db: Session,
    *,
    tenant_id: str,
    kind: str,
    document_ref: str,
    storage: MediaStorage,
    now: Optional[datetime] = None,
) -> ScoreSnapshot:
    store = EvidenceStore(db)
    removed_url: dict[str, str] = {}

    def _do() -> ScoreSnapshot:
        doc = store.remove_document(tenant_id, kind, document_ref, now=now)
        removed_url["url"] = doc.url
        snap = recompute_and_persist(db, tenant_id=tenant_id, now=now)
        store.commit()
        return snap

    snap = with_conflict_retry(db, _do, what=f"documents:{tenant_id}")

    # evidence is already gone; a storage hiccup only leaves an unreferenced blob
    try:
        storage.delete(removed_url["url"])
    except Exception as e:
        log.warning("document blob delete failed url=%s: %s", removed_url["url"], e, extra={"tenant_id": tenant_id})

    return snap


def set_document_verified(
    db: Session,
    *,
    tenant_id: str,
    document_id: int,
    verified: bool,
    now: Optional[datetime] = None,
) -> ScoreSnapshot:
    store = EvidenceStore(db)

    def _do() -> ScoreSnapshot:
        store.set_document_verified(tenant_id, document_id, verified, now=now)
        snap = recompute_and_persist(db, tenant_id=tenant_id, now=now)
        store.commit()
        return snap

    return with_conflict_retry(db, _do, what=f"documents:{tenant_id}")
