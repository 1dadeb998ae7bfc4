# backend/app/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# -------------------- Tenants / Evidence --------------------

class TenantProfileCreate(BaseModel):
    tenant_id: str = Field(min_length=1, max_length=80)
    name: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=16, le=120)
    profession: Optional[str] = None


class TenantProfileOut(BaseModel):
    tenant_id: str
    name: Optional[str] = None
    age: Optional[int] = None
    profession: Optional[str] = None
    identity_verified: bool
    interview_id: Optional[str] = None
    seriosity_score: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class IdentityVerifiedIn(BaseModel):
    verified: bool = True


class DocumentVerifyIn(BaseModel):
    verified: bool = True


class DocumentOut(BaseModel):
    id: int
    tenant_id: str
    kind: str
    url: str
    filename: Optional[str] = None
    content_type: Optional[str] = None
    verified: bool
    uploaded_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ScoreOut(BaseModel):
    tenant_id: str
    score: int
    breakdown: dict[str, int]
    description: str
    color: str
    suggestions: list[str] = Field(default_factory=list)
    explanations: dict[str, str] = Field(default_factory=dict)
    updated_at: Optional[datetime] = None


class DocumentUploadOut(BaseModel):
    document: DocumentOut
    score: ScoreOut


class ReconciliationOut(BaseModel):
    tenant_id: str
    consistent: bool
    stored_score: Optional[int] = None
    computed_score: int
    stored: Optional[dict[str, int]] = None
    computed: dict[str, int]
    mismatched_components: list[str] = Field(default_factory=list)
    model_config = ConfigDict(from_attributes=True)


# -------------------- Interviews --------------------

class InterviewStartIn(BaseModel):
    tenant_id: str = Field(min_length=1)


class InterviewQuestionOut(BaseModel):
    id: int
    text: str
    type: str
    duration: int
    model_config = ConfigDict(from_attributes=True)


class InterviewStartOut(BaseModel):
    interview_id: str
    tenant_id: str
    status: str
    questions: list[InterviewQuestionOut]


class InterviewAnswerOut(BaseModel):
    interview_id: str
    question_id: int
    media_kind: str
    media_url: Optional[str] = None
    submitted_at: datetime
    model_config = ConfigDict(from_attributes=True)


class QuestionTranscriptOut(BaseModel):
    question_id: int
    media_kind: str
    transcript: str
    ok: bool
    placeholder: bool = False
    error: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class InterviewOutcomeOut(BaseModel):
    interview_id: str
    tenant_id: str
    status: str
    error_message: Optional[str] = None
    discarded: bool = False
    transcripts: list[QuestionTranscriptOut] = Field(default_factory=list)
    score: Optional[int] = None


class InterviewQueuedOut(BaseModel):
    interview_id: str
    queued: bool = True


# -------------------- Applications --------------------

class TenantInterestIn(BaseModel):
    tenant_id: str = Field(min_length=1)


class LandlordDecisionIn(BaseModel):
    tenant_id: str = Field(min_length=1)
    landlord_id: Optional[str] = None

    @field_validator("tenant_id")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()


class ApplicationOut(BaseModel):
    id: int
    property_id: str
    tenant_id: str
    landlord_id: str
    status: str
    chat_unlocked: bool
    tenant_interested: bool
    tenant_interested_at: Optional[datetime] = None
    landlord_decision: str
    landlord_decided_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class TransitionOut(BaseModel):
    application: ApplicationOut
    previous_status: Optional[str] = None
    status: str
    changed: bool
    notification_ids: list[int] = Field(default_factory=list)
    model_config = ConfigDict(from_attributes=True)


class ApplicationStatusOut(BaseModel):
    property_id: str
    tenant_id: str
    exists: bool
    status: Optional[str] = None
    chat_unlocked: bool = False
    application: Optional[ApplicationOut] = None
