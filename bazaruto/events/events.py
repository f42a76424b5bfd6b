"""
Event types published on the in-process bus.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
import uuid

from bazaruto.utils.timeutil import utcnow

USER_REGISTERED = "user.registered"
USER_LOGGED_IN = "user.logged_in"
QUOTE_CREATED = "quote.created"
QUOTE_CALCULATED = "quote.calculated"
PAYMENT_INITIATED = "payment.initiated"
PAYMENT_COMPLETED = "payment.completed"
PAYMENT_FAILED = "payment.failed"
POLICY_CREATED = "policy.created"
POLICY_RENEWED = "policy.renewed"
POLICY_CANCELLED = "policy.cancelled"
POLICY_EXPIRED = "policy.expired"
GRACE_PERIOD_EXPIRED = "grace_period.expired"
RENEWAL_REMINDER = "renewal.reminder"
FRAUD_ANALYSIS_COMPLETED = "fraud.analysis_completed"
CLAIM_WORKFLOW_COMPLETED = "claim.workflow_completed"

ALL_EVENT_TYPES = (
    USER_REGISTERED,
    USER_LOGGED_IN,
    QUOTE_CREATED,
    QUOTE_CALCULATED,
    PAYMENT_INITIATED,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    POLICY_CREATED,
    POLICY_RENEWED,
    POLICY_CANCELLED,
    POLICY_EXPIRED,
    GRACE_PERIOD_EXPIRED,
    RENEWAL_REMINDER,
    FRAUD_ANALYSIS_COMPLETED,
    CLAIM_WORKFLOW_COMPLETED,
)


@dataclass(frozen=True)
class Event:
    type: str
    aggregate_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "aggregate_id": self.aggregate_id,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": dict(self.payload),
        }


def new_event(event_type: str, aggregate_id: str, occurred_at: Optional[datetime] = None, **payload: Any) -> Event:
    """Build an event; keyword arguments become the payload."""
    return Event(type=event_type, aggregate_id=aggregate_id, payload=payload, occurred_at=occurred_at or utcnow())
