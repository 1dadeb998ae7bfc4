# backend/app/routers/applications.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas import (
    ApplicationOut,
    ApplicationStatusOut,
    LandlordDecisionIn,
    TenantInterestIn,
    TransitionOut,
)
from ..services.application_state_machine import (
    get_application_status,
    list_applications,
    record_landlord_decision,
    record_tenant_interest,
)

router = APIRouter(tags=["applications"])


@router.post("/properties/{property_id}/like", response_model=TransitionOut)
def like_property(property_id: str, payload: TenantInterestIn, db: Session = Depends(get_db)):
    result = record_tenant_interest(db, property_id=property_id, tenant_id=payload.tenant_id.strip())
    return TransitionOut.model_validate(result)


@router.post("/properties/{property_id}/approve", response_model=TransitionOut)
def approve_tenant(property_id: str, payload: LandlordDecisionIn, db: Session = Depends(get_db)):
    result = record_landlord_decision(
        db,
        property_id=property_id,
        tenant_id=payload.tenant_id,
        decision="approved",
        landlord_id=payload.landlord_id,
    )
    return TransitionOut.model_validate(result)


@router.post("/properties/{property_id}/reject", response_model=TransitionOut)
def reject_tenant(property_id: str, payload: LandlordDecisionIn, db: Session = Depends(get_db)):
    result = record_landlord_decision(
        db,
        property_id=property_id,
        tenant_id=payload.tenant_id,
        decision="rejected",
        landlord_id=payload.landlord_id,
    )
    return TransitionOut.model_validate(result)


@router.get("/properties/{property_id}/applications/{tenant_id}", response_model=ApplicationStatusOut)
def application_status(property_id: str, tenant_id: str, db: Session = Depends(get_db)):
    view = get_application_status(db, property_id=property_id, tenant_id=tenant_id)
    if view is None:
        return ApplicationStatusOut(property_id=property_id, tenant_id=tenant_id, exists=False)
    return ApplicationStatusOut(
        property_id=property_id,
        tenant_id=tenant_id,
        exists=True,
        status=view.status,
        chat_unlocked=view.chat_unlocked,
        application=ApplicationOut.model_validate(view),
    )


@router.get("/applications", response_model=list[ApplicationOut])
def applications(
    tenant_id: Optional[str] = Query(default=None),
    landlord_id: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    views = list_applications(db, tenant_id=tenant_id, landlord_id=landlord_id, status=status)
    return [ApplicationOut.model_validate(v) for v in views]
