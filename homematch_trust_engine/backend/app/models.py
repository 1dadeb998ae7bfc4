# backend/app/models.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


# -----------------------------
# Evidence (one profile per tenant)
# -----------------------------
class TenantProfile(Base):
    __tablename__ = "tenant_profiles"

    tenant_id: Mapped[str] = mapped_column(String(80), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    profession: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)

    identity_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # latest interview that reached done; failed and abandoned attempts never land here
    interview_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)

    seriosity_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    seriosity_breakdown_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    score_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    # unset until the first evidence change; drives the responsiveness time bonus
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}


class TenantDocument(Base):
    __tablename__ = "tenant_documents"
    __table_args__ = (Index("ix_tenant_documents_tenant_kind", "tenant_id", "kind"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(80), ForeignKey("tenant_profiles.tenant_id"), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # income_proof|reference
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    filename: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    content_type: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Interviews
# -----------------------------
class Interview(Base):
    __tablename__ = "interviews"

    id: Mapped[str] = mapped_column(String(80), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(80), ForeignKey("tenant_profiles.tenant_id"), index=True, nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="in_progress")  # in_progress|done|failed
    run_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    full_transcript: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    clarity_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    consistency_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    evasiveness_detected: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    extracted_facts_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    analysis_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}


class InterviewAnswer(Base):
    __tablename__ = "interview_answers"
    __table_args__ = (UniqueConstraint("interview_id", "question_id", name="uq_interview_answers_question"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    interview_id: Mapped[str] = mapped_column(String(80), ForeignKey("interviews.id"), index=True, nullable=False)
    question_id: Mapped[int] = mapped_column(Integer, nullable=False)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)

    media_kind: Mapped[str] = mapped_column(String(10), nullable=False)  # video|audio|text
    media_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    text_answer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    transcript: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transcription_failed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    transcription_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Matching
# -----------------------------
class Property(Base):
    """Read-only to the core: listing CRUD lives elsewhere."""

    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(80), primary_key=True)
    landlord_id: Mapped[str] = mapped_column(String(80), index=True, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (UniqueConstraint("property_id", "tenant_id", name="uq_applications_property_tenant"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[str] = mapped_column(String(80), ForeignKey("properties.id"), index=True, nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(80), index=True, nullable=False)
    landlord_id: Mapped[str] = mapped_column(String(80), index=True, nullable=False)

    tenant_interested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tenant_interested_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    landlord_decision: Mapped[str] = mapped_column(String(20), nullable=False, default="none")  # none|approved|rejected
    landlord_decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False)  # pending|approved|chat_open|rejected

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}


# -----------------------------
# Outbox + audit
# -----------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(80), index=True, nullable=False)
    event_kind: Mapped[str] = mapped_column(String(60), nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # set by the worker that holds the send; cleared when the attempt ends
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    action: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(80), nullable=False)

    before_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
