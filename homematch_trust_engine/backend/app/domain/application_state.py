# backend/app/domain/application_state.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# -----------------------------------------------------------------------------
# Application status derivation
# -----------------------------------------------------------------------------
# status is never stored as an independent input; it is always recomputed from
# the two signals (tenant_interested, landlord_decision).
#
#   rejected decision           -> rejected  (override, even from chat_open)
#   approved + interested       -> chat_open
#   approved + not interested   -> approved
#   none + interested           -> pending
#   none + not interested       -> None      (no application record)
# -----------------------------------------------------------------------------

PENDING = "pending"
APPROVED = "approved"
CHAT_OPEN = "chat_open"
REJECTED = "rejected"

STATUSES = (PENDING, APPROVED, CHAT_OPEN, REJECTED)
TERMINAL_STATUSES = {REJECTED}

DECISION_NONE = "none"
DECISION_APPROVED = "approved"
DECISION_REJECTED = "rejected"

DECISIONS = (DECISION_NONE, DECISION_APPROVED, DECISION_REJECTED)
LANDLORD_ACTIONS = (DECISION_APPROVED, DECISION_REJECTED)

# notification event kinds
EVENT_MUTUAL_MATCH = "mutual_match"
EVENT_LANDLORD_APPROVED = "landlord_approved"
EVENT_LANDLORD_REJECTED = "landlord_rejected"


def derive_status(tenant_interested: bool, landlord_decision: str) -> Optional[str]:
    if landlord_decision not in DECISIONS:
        raise ValueError(f"unknown landlord_decision: {landlord_decision!r}")

    if landlord_decision == DECISION_REJECTED:
        return REJECTED
    if landlord_decision == DECISION_APPROVED:
        return CHAT_OPEN if tenant_interested else APPROVED
    if tenant_interested:
        return PENDING
    return None


@dataclass(frozen=True)
class PlannedNotification:
    user_id: str
    event_kind: str
    role: str  # tenant|landlord


def notifications_for_transition(
    *,
    previous: Optional[str],
    current: Optional[str],
    tenant_id: str,
    landlord_id: str,
) -> list[PlannedNotification]:
    """
    Notifications fire on the derived-status boundary only.
    Re-entrant calls that leave status unchanged produce nothing.
    """
    if current == previous or current is None:
        return []

    if current == CHAT_OPEN:
        return [
            PlannedNotification(user_id=tenant_id, event_kind=EVENT_MUTUAL_MATCH, role="tenant"),
            PlannedNotification(user_id=landlord_id, event_kind=EVENT_MUTUAL_MATCH, role="landlord"),
        ]
    if current == APPROVED:
        return [PlannedNotification(user_id=tenant_id, event_kind=EVENT_LANDLORD_APPROVED, role="tenant")]
    if current == REJECTED:
        return [PlannedNotification(user_id=tenant_id, event_kind=EVENT_LANDLORD_REJECTED, role="tenant")]
    return []
