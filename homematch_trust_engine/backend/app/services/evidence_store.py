# backend/app/services/evidence_store.py
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..domain.errors import ConcurrencyConflict, NotFoundError, ValidationError
from ..domain.seriosity import (
    AnsweredQuestion,
    DocumentEvidence,
    InterviewEvidence,
    SeriosityBreakdown,
    TenantEvidence,
)
from ..models import Interview, InterviewAnswer, TenantDocument, TenantProfile

log = logging.getLogger(__name__)

DOCUMENT_KINDS = ("income_proof", "reference")

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.utcnow()


def _dumps(v: Any) -> str:
    return json.dumps(v, sort_keys=True, default=str)


def _loads(s: Optional[str], default: Any) -> Any:
    if not s:
        return default
    try:
        return json.loads(s)
    except ValueError:
        return default


def flush_or_conflict(db: Session) -> None:
    try:
        db.flush()
    except (StaleDataError, IntegrityError) as e:
        db.rollback()
        raise ConcurrencyConflict(f"{type(e).__name__}: {e}") from e


def commit_or_conflict(db: Session) -> None:
    """
    Commit; a version-column mismatch (someone else wrote first) or a unique
    violation on lazy creation becomes ConcurrencyConflict.
    """
    try:
        db.commit()
    except (StaleDataError, IntegrityError) as e:
        db.rollback()
        raise ConcurrencyConflict(f"{type(e).__name__}: {e}") from e


def with_conflict_retry(db: Session, fn: Callable[[], T], *, what: str) -> T:
    """
    Run a read-modify-write closure. On ConcurrencyConflict the session is
    reset and the closure re-runs once from a fresh read; a second conflict
    propagates to the caller.
    """
    try:
        return fn()
    except ConcurrencyConflict as first:
        log.warning("concurrency conflict on %s, retrying once: %s", what, first)
        db.rollback()
        db.expire_all()
        return fn()


class EvidenceStore:
    """
    Repository over tenant evidence and interviews.

    The score engine and the interview pipeline go through this class only;
    nothing outside it knows evidence lives in SQL tables.
    Writes flush through the mapper's version column, so a concurrent writer
    turns into ConcurrencyConflict instead of a lost update.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    # ------------------------------------------------------------------ profile

    def find_profile(self, tenant_id: str) -> Optional[TenantProfile]:
        return self.db.scalar(select(TenantProfile).where(TenantProfile.tenant_id == str(tenant_id)))

    def get_profile(self, tenant_id: str) -> TenantProfile:
        row = self.find_profile(tenant_id)
        if row is None:
            raise NotFoundError(f"tenant not found: {tenant_id}")
        return row

    def create_profile(
        self,
        tenant_id: str,
        *,
        name: Optional[str] = None,
        age: Optional[int] = None,
        profession: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> TenantProfile:
        if not str(tenant_id or "").strip():
            raise ValidationError("tenant_id is required")
        if self.find_profile(tenant_id) is not None:
            raise ValidationError(f"tenant profile already exists: {tenant_id}")

        ts = created_at or _utcnow()
        row = TenantProfile(
            tenant_id=str(tenant_id),
            name=name,
            age=age,
            profession=profession,
            identity_verified=False,
            created_at=ts,
            updated_at=None,
        )
        self.db.add(row)
        self._flush()
        return row

    def touch_profile(self, profile: TenantProfile, *, now: Optional[datetime] = None) -> None:
        profile.updated_at = now or _utcnow()
        self.db.add(profile)

    def set_identity_verified(self, tenant_id: str, verified: bool, *, now: Optional[datetime] = None) -> TenantProfile:
        row = self.get_profile(tenant_id)
        row.identity_verified = bool(verified)
        self.touch_profile(row, now=now)
        self._flush()
        return row

    def profile_context(self, tenant_id: str) -> dict[str, Any]:
        row = self.get_profile(tenant_id)
        return {"name": row.name, "age": row.age, "profession": row.profession}

    # ------------------------------------------------------------------ evidence

    def list_documents(self, tenant_id: str, kind: Optional[str] = None) -> list[TenantDocument]:
        q = select(TenantDocument).where(TenantDocument.tenant_id == str(tenant_id))
        if kind is not None:
            q = q.where(TenantDocument.kind == kind)
        return list(self.db.scalars(q.order_by(TenantDocument.uploaded_at, TenantDocument.id)).all())

    def get_evidence(self, tenant_id: str) -> TenantEvidence:
        profile = self.get_profile(tenant_id)
        docs = self.list_documents(tenant_id)

        interview_ev: Optional[InterviewEvidence] = None
        if profile.interview_id:
            iv = self.db.get(Interview, profile.interview_id)
            if iv is not None:
                interview_ev = self._interview_evidence(iv)

        return TenantEvidence(
            tenant_id=profile.tenant_id,
            identity_verified=bool(profile.identity_verified),
            income_documents=tuple(DocumentEvidence(verified=bool(d.verified)) for d in docs if d.kind == "income_proof"),
            reference_documents=tuple(DocumentEvidence(verified=bool(d.verified)) for d in docs if d.kind == "reference"),
            interview=interview_ev,
            profile_created_at=profile.created_at,
            profile_last_updated_at=profile.updated_at,
        )

    def _interview_evidence(self, iv: Interview) -> InterviewEvidence:
        answers = self.list_answers(iv.id)
        return InterviewEvidence(
            status=str(iv.status),
            clarity_score=float(iv.clarity_score or 0.0),
            consistency_score=float(iv.consistency_score or 0.0),
            evasiveness_detected=bool(iv.evasiveness_detected or False),
            extracted_facts=_loads(iv.extracted_facts_json, {}),
            questions=tuple(
                AnsweredQuestion(question_id=a.question_id, transcript=a.transcript or "", media_kind=a.media_kind)
                for a in answers
            ),
        )

    def save_score(self, tenant_id: str, breakdown: SeriosityBreakdown, *, now: Optional[datetime] = None) -> TenantProfile:
        row = self.get_profile(tenant_id)
        row.seriosity_score = int(breakdown.total)
        row.seriosity_breakdown_json = _dumps(breakdown.as_dict())
        row.score_updated_at = now or _utcnow()
        self.db.add(row)
        self._flush()
        return row

    def stored_breakdown(self, tenant_id: str) -> Optional[SeriosityBreakdown]:
        row = self.get_profile(tenant_id)
        raw = _loads(row.seriosity_breakdown_json, None)
        if not isinstance(raw, dict):
            return None
        return SeriosityBreakdown.from_dict(raw)

    # ------------------------------------------------------------------ documents

    def append_document(
        self,
        tenant_id: str,
        kind: str,
        *,
        url: str,
        verified: bool = False,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TenantDocument:
        if kind not in DOCUMENT_KINDS:
            raise ValidationError(f"invalid document kind: {kind}")
        profile = self.get_profile(tenant_id)
        ts = now or _utcnow()

        row = TenantDocument(
            tenant_id=profile.tenant_id,
            kind=kind,
            url=url,
            filename=filename,
            content_type=content_type,
            verified=bool(verified),
            uploaded_at=ts,
        )
        self.db.add(row)
        self.touch_profile(profile, now=ts)
        self._flush()
        return row

    def remove_document(
        self,
        tenant_id: str,
        kind: str,
        document_ref: str,
        *,
        now: Optional[datetime] = None,
    ) -> TenantDocument:
        """document_ref is either the storage url or the numeric document id."""
        if kind not in DOCUMENT_KINDS:
            raise ValidationError(f"invalid document kind: {kind}")
        profile = self.get_profile(tenant_id)

        target = None
        for d in self.list_documents(tenant_id, kind):
            if d.url == document_ref or str(d.id) == str(document_ref):
                target = d
                break
        if target is None:
            raise NotFoundError(f"document not found: {kind}/{document_ref}")

        self.db.delete(target)
        self.touch_profile(profile, now=now)
        self._flush()
        return target

    def set_document_verified(
        self,
        tenant_id: str,
        document_id: int,
        verified: bool,
        *,
        now: Optional[datetime] = None,
    ) -> TenantDocument:
        profile = self.get_profile(tenant_id)
        row = self.db.scalar(
            select(TenantDocument).where(
                TenantDocument.id == int(document_id),
                TenantDocument.tenant_id == profile.tenant_id,
            )
        )
        if row is None:
            raise NotFoundError(f"document not found: {document_id}")
        row.verified = bool(verified)
        self.db.add(row)
        self.touch_profile(profile, now=now)
        self._flush()
        return row

    # ------------------------------------------------------------------ interviews

    def get_interview(self, interview_id: str) -> Interview:
        row = self.db.get(Interview, str(interview_id))
        if row is None:
            raise NotFoundError(f"interview not found: {interview_id}")
        return row

    def list_answers(self, interview_id: str) -> list[InterviewAnswer]:
        return list(
            self.db.scalars(
                select(InterviewAnswer)
                .where(InterviewAnswer.interview_id == str(interview_id))
                .order_by(InterviewAnswer.question_id)
            ).all()
        )

    def list_open_interviews(self, tenant_id: str) -> list[Interview]:
        return list(
            self.db.scalars(
                select(Interview).where(Interview.tenant_id == str(tenant_id), Interview.status == "in_progress")
            ).all()
        )

    def save_interview(self, interview: Interview, answers: Optional[list[InterviewAnswer]] = None) -> Interview:
        """Persist partial or final interview state (flush only; caller commits)."""
        self.db.add(interview)
        for a in answers or []:
            self.db.add(a)
        self._flush()
        return interview

    # ------------------------------------------------------------------ plumbing

    def _flush(self) -> None:
        flush_or_conflict(self.db)

    def commit(self) -> None:
        commit_or_conflict(self.db)
