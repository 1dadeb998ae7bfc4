# backend/app/domain/seriosity.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

# -----------------------------------------------------------------------------
# Seriosity Score engine
# -----------------------------------------------------------------------------
# Pure mapping TenantEvidence -> SeriosityBreakdown.
#
#   id_verified            0 | 15
#   income_proof           0..25
#   interview_clarity      0..20
#   response_consistency   0..15
#   responsiveness         0..15
#   references             0..10
#                          ------
#                          0..100
#
# No clock reads, no I/O. Same evidence in, same breakdown out.
# -----------------------------------------------------------------------------

COMPONENT_CAPS: dict[str, int] = {
    "id_verified": 15,
    "income_proof": 25,
    "interview_clarity": 20,
    "response_consistency": 15,
    "responsiveness": 15,
    "references": 10,
}

MAX_SCORE = 100

INTERVIEW_DONE = "done"


@dataclass(frozen=True)
class DocumentEvidence:
    verified: bool = False


@dataclass(frozen=True)
class AnsweredQuestion:
    question_id: int
    transcript: str
    media_kind: str  # video|audio|text


@dataclass(frozen=True)
class InterviewEvidence:
    status: str
    clarity_score: float = 0.0
    consistency_score: float = 0.0
    evasiveness_detected: bool = False
    extracted_facts: dict[str, Any] = field(default_factory=dict)
    questions: tuple[AnsweredQuestion, ...] = ()

    def __post_init__(self) -> None:
        for name in ("clarity_score", "consistency_score"):
            v = float(getattr(self, name))
            if math.isnan(v) or v < 0.0 or v > 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {v}")

    @property
    def completed(self) -> bool:
        return self.status == INTERVIEW_DONE


@dataclass(frozen=True)
class TenantEvidence:
    tenant_id: str
    identity_verified: bool = False
    income_documents: tuple[DocumentEvidence, ...] = ()
    reference_documents: tuple[DocumentEvidence, ...] = ()
    interview: Optional[InterviewEvidence] = None
    profile_created_at: Optional[datetime] = None
    profile_last_updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class SeriosityBreakdown:
    id_verified: int = 0
    income_proof: int = 0
    interview_clarity: int = 0
    response_consistency: int = 0
    responsiveness: int = 0
    references: int = 0

    def __post_init__(self) -> None:
        for name, cap in COMPONENT_CAPS.items():
            v = getattr(self, name)
            if not isinstance(v, int) or isinstance(v, bool):
                raise TypeError(f"{name} must be an int, got {type(v).__name__}")
            if v < 0 or v > cap:
                raise ValueError(f"{name}={v} outside [0, {cap}]")
        if self.id_verified not in (0, COMPONENT_CAPS["id_verified"]):
            raise ValueError(f"id_verified must be 0 or {COMPONENT_CAPS['id_verified']}")

    @property
    def total(self) -> int:
        # caps already sum to MAX_SCORE; min() is only a backstop
        return min(MAX_SCORE, sum(self.as_dict().values()))

    def as_dict(self) -> dict[str, int]:
        return {name: int(getattr(self, name)) for name in COMPONENT_CAPS}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SeriosityBreakdown":
        return cls(**{name: int(d.get(name, 0) or 0) for name in COMPONENT_CAPS})


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def id_verification_points(evidence: TenantEvidence) -> int:
    return COMPONENT_CAPS["id_verified"] if evidence.identity_verified else 0


def income_proof_points(evidence: TenantEvidence) -> int:
    """
    0 documents                  -> 0
    documents, none verified     -> 15
    exactly 1 verified           -> 20
    2+ verified                  -> 25
    """
    docs = evidence.income_documents
    if not docs:
        return 0
    verified = sum(1 for d in docs if d.verified)
    if verified >= 2:
        return 25
    if verified == 1:
        return 20
    return 15


def interview_clarity_points(evidence: TenantEvidence) -> int:
    iv = evidence.interview
    if iv is None or not iv.completed:
        return 0
    points = _round_half_up(float(iv.clarity_score) * 20)
    if iv.evasiveness_detected:
        points = max(0, points - 5)
    return min(COMPONENT_CAPS["interview_clarity"], points)


def response_consistency_points(evidence: TenantEvidence) -> int:
    iv = evidence.interview
    if iv is None or not iv.completed:
        return 0
    return min(COMPONENT_CAPS["response_consistency"], _round_half_up(float(iv.consistency_score) * 15))


def responsiveness_points(evidence: TenantEvidence) -> int:
    score = 0
    if evidence.interview is not None and evidence.interview.completed:
        score += 5

    created = evidence.profile_created_at
    updated = evidence.profile_last_updated_at
    if created is not None and updated is not None:
        days = (updated - created).total_seconds() / 86400.0
        if days <= 1:
            score += 10
        elif days <= 3:
            score += 7
        elif days <= 7:
            score += 5
        else:
            score += 2

    return min(COMPONENT_CAPS["responsiveness"], score)


def references_points(evidence: TenantEvidence) -> int:
    n = len(evidence.reference_documents)
    if n == 0:
        return 0
    if n == 1:
        return 5
    return 10


def compute_breakdown(evidence: TenantEvidence) -> SeriosityBreakdown:
    return SeriosityBreakdown(
        id_verified=id_verification_points(evidence),
        income_proof=income_proof_points(evidence),
        interview_clarity=interview_clarity_points(evidence),
        response_consistency=response_consistency_points(evidence),
        responsiveness=responsiveness_points(evidence),
        references=references_points(evidence),
    )


# -----------------------------------------------------------------------------
# Presentation helpers
# -----------------------------------------------------------------------------

_DESCRIPTION_BANDS: list[tuple[int, str]] = [
    (90, "Excellent - Highly verified and reliable tenant"),
    (75, "Very Good - Well-verified tenant with strong credentials"),
    (60, "Good - Verified tenant with adequate documentation"),
    (45, "Fair - Some verification completed, more documentation recommended"),
    (30, "Limited - Minimal verification, proceed with caution"),
]

_COLOR_BANDS: list[tuple[int, str]] = [
    (75, "green"),
    (60, "blue"),
    (45, "yellow"),
    (30, "orange"),
]

BREAKDOWN_EXPLANATIONS: dict[str, str] = {
    "id_verified": "ID Document Verification (0-15 pts): Verified government-issued ID",
    "income_proof": "Income Proof (0-25 pts): Uploaded and verified income documentation",
    "interview_clarity": "Interview Clarity (0-20 pts): Clear and articulate responses in AI interview",
    "response_consistency": "Response Consistency (0-15 pts): Consistent information across profile and interview",
    "responsiveness": "App Responsiveness (0-15 pts): Speed of completing profile and interview",
    "references": "References (0-10 pts): Number of reference documents provided",
}


def score_description(score: int) -> str:
    for floor, text in _DESCRIPTION_BANDS:
        if score >= floor:
            return text
    return "Unverified - Insufficient verification and documentation"


def score_color(score: int) -> str:
    for floor, color in _COLOR_BANDS:
        if score >= floor:
            return color
    return "red"


def improvement_suggestions(evidence: TenantEvidence, breakdown: SeriosityBreakdown) -> list[str]:
    out: list[str] = []

    if breakdown.id_verified == 0:
        out.append("Complete ID verification to gain 15 points")

    if breakdown.income_proof < COMPONENT_CAPS["income_proof"]:
        gain = COMPONENT_CAPS["income_proof"] - breakdown.income_proof
        out.append(f"Upload and verify income proof documents to gain up to {gain} points")

    if breakdown.references < COMPONENT_CAPS["references"]:
        gain = COMPONENT_CAPS["references"] - breakdown.references
        out.append(f"Add reference documents to gain up to {gain} points")

    if evidence.interview is None or not evidence.interview.completed:
        out.append("Complete the AI interview to unlock clarity and consistency points (up to 35 points)")

    return out
