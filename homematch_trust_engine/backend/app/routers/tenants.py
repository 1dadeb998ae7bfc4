# backend/app/routers/tenants.py
from __future__ import annotations

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.orm import Session

from ..clients.base import MediaStorage
from ..db import get_db
from ..deps import get_storage
from ..domain.seriosity import BREAKDOWN_EXPLANATIONS
from ..schemas import (
    DocumentOut,
    DocumentUploadOut,
    DocumentVerifyIn,
    IdentityVerifiedIn,
    ReconciliationOut,
    ScoreOut,
    TenantProfileCreate,
    TenantProfileOut,
)
from ..services.evidence_store import EvidenceStore, with_conflict_retry
from ..services.seriosity_service import (
    ScoreSnapshot,
    get_score,
    reconcile_score,
    recompute_and_persist,
    remove_document,
    set_document_verified,
    set_identity_verified,
    upload_document,
)

router = APIRouter(prefix="/tenants", tags=["tenants"])


def _score_out(snap: ScoreSnapshot) -> ScoreOut:
    return ScoreOut(**snap.as_dict(), explanations=dict(BREAKDOWN_EXPLANATIONS))


@router.post("", response_model=TenantProfileOut)
def create_tenant(payload: TenantProfileCreate, db: Session = Depends(get_db)):
    store = EvidenceStore(db)

    def _do():
        row = store.create_profile(
            payload.tenant_id.strip(),
            name=payload.name,
            age=payload.age,
            profession=payload.profession,
        )
        recompute_and_persist(db, tenant_id=row.tenant_id, now=row.created_at)
        store.commit()
        return row

    return with_conflict_retry(db, _do, what=f"tenant-create:{payload.tenant_id}")


@router.get("/{tenant_id}", response_model=TenantProfileOut)
def get_tenant(tenant_id: str, db: Session = Depends(get_db)):
    return EvidenceStore(db).get_profile(tenant_id)


@router.post("/{tenant_id}/identity", response_model=ScoreOut)
def verify_identity(tenant_id: str, payload: IdentityVerifiedIn, db: Session = Depends(get_db)):
    return _score_out(set_identity_verified(db, tenant_id=tenant_id, verified=payload.verified))


@router.get("/{tenant_id}/documents", response_model=list[DocumentOut])
def list_documents(tenant_id: str, kind: str | None = Query(default=None), db: Session = Depends(get_db)):
    store = EvidenceStore(db)
    store.get_profile(tenant_id)
    return store.list_documents(tenant_id, kind)


@router.post("/{tenant_id}/documents/{kind}", response_model=DocumentUploadOut)
def upload_tenant_document(
    tenant_id: str,
    kind: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    storage: MediaStorage = Depends(get_storage),
):
    data = file.file.read()
    doc, snap = upload_document(
        db,
        tenant_id=tenant_id,
        kind=kind,
        data=data,
        filename=file.filename or "document",
        content_type=file.content_type or "",
        storage=storage,
    )
    return DocumentUploadOut(document=DocumentOut.model_validate(doc), score=_score_out(snap))


@router.delete("/{tenant_id}/documents/{kind}/{document_ref:path}", response_model=ScoreOut)
def delete_tenant_document(
    tenant_id: str,
    kind: str,
    document_ref: str,
    db: Session = Depends(get_db),
    storage: MediaStorage = Depends(get_storage),
):
    return _score_out(remove_document(db, tenant_id=tenant_id, kind=kind, document_ref=document_ref, storage=storage))


@router.post("/{tenant_id}/documents/{document_id}/verify", response_model=ScoreOut)
def verify_document(tenant_id: str, document_id: int, payload: DocumentVerifyIn, db: Session = Depends(get_db)):
    return _score_out(
        set_document_verified(db, tenant_id=tenant_id, document_id=document_id, verified=payload.verified)
    )


@router.get("/{tenant_id}/score", response_model=ScoreOut)
def tenant_score(tenant_id: str, recompute: bool = Query(default=False), db: Session = Depends(get_db)):
    return _score_out(get_score(db, tenant_id=tenant_id, recompute=recompute))


@router.get("/{tenant_id}/score/reconcile", response_model=ReconciliationOut)
def tenant_score_reconcile(tenant_id: str, db: Session = Depends(get_db)):
    return ReconciliationOut.model_validate(reconcile_score(db, tenant_id=tenant_id))
