"""
Domain entities shared by the in-memory and SQLAlchemy repositories.

Entities are plain dataclasses; the relational mapping lives in
``bazaruto.database.models``. Status fields hold the string values of the
enums below so they compare equal to both the enum member and the raw value.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from bazaruto.utils.timeutil import ensure_aware, parse_datetime, utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class CustomerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"
    SUSPENDED = "suspended"


class RiskProfile(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class CustomerTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class ProductStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"


class QuoteStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    USED = "used"


class PolicyStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"


class PaymentFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


class ClaimStatus(str, Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    DENIED = "denied"
    PAID = "paid"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class StageStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageResult(str, Enum):
    NONE = ""
    APPROVED = "approved"
    DECLINED = "declined"
    REQUIRES_REVIEW = "requires_review"


QUOTE_TRANSITIONS = {
    QuoteStatus.PENDING.value: {QuoteStatus.ACTIVE.value, QuoteStatus.EXPIRED.value, QuoteStatus.USED.value},
}

_TIER_LEVELS = {
    CustomerTier.BRONZE.value: 1,
    CustomerTier.SILVER.value: 2,
    CustomerTier.GOLD.value: 3,
    CustomerTier.PLATINUM.value: 4,
}


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


class Record:
    """Mixin giving dataclass entities dict conversion for storage and copying."""

    # field name -> nested dataclass type for list-valued fields
    _nested: Dict[str, type] = {}

    def __post_init__(self) -> None:
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime) and value.tzinfo is None:
                setattr(self, f.name, ensure_aware(value))

    def to_dict(self) -> Dict[str, Any]:
        return _plain(dataclasses.asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        kwargs: Dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            if f.name not in data:
                continue
            value = data[f.name]
            if f.name in cls._nested and value is not None:
                nested = cls._nested[f.name]
                value = [v if isinstance(v, nested) else nested.from_dict(v) for v in value]
            elif "datetime" in str(f.type):
                value = parse_datetime(value)
            kwargs[f.name] = _plain(value)
        return cls(**kwargs)

    def copy(self):
        return type(self).from_dict(self.to_dict())


@dataclass
class Address(Record):
    country: str
    state: Optional[str] = None
    city: Optional[str] = None
    is_primary: bool = False
    is_active: bool = True


@dataclass
class Customer(Record):
    email: str
    first_name: str = ""
    last_name: str = ""
    status: str = CustomerStatus.ACTIVE.value
    kyc_status: str = "pending"
    aml_status: str = "pending"
    risk_profile: str = RiskProfile.LOW.value
    customer_tier: str = CustomerTier.BRONZE.value
    default_payment_method: Optional[str] = None
    addresses: List[Address] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    _nested = {"addresses": Address}

    def is_active(self) -> bool:
        return self.status == CustomerStatus.ACTIVE

    def is_kyc_verified(self) -> bool:
        return self.kyc_status == "verified"

    def is_aml_cleared(self) -> bool:
        return self.aml_status == "cleared"

    def is_high_risk(self) -> bool:
        return self.risk_profile in (RiskProfile.HIGH, RiskProfile.VERY_HIGH)

    def tier_level(self) -> int:
        return _TIER_LEVELS.get(self.customer_tier, 0)

    def get_primary_address(self) -> Optional[Address]:
        for address in self.addresses:
            if address.is_primary and address.is_active:
                return address
        return None


@dataclass
class Product(Record):
    name: str
    category: str
    base_price: float = 0.0
    coverage_amount: float = 0.0
    coverage_period_days: int = 365
    currency: str = "USD"
    description: str = ""
    partner_id: Optional[str] = None
    status: str = ProductStatus.ACTIVE.value
    effective_date: datetime = field(default_factory=utcnow)
    expiration_date: Optional[datetime] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None


@dataclass
class Quote(Record):
    product_id: str
    user_id: str
    quote_number: str
    base_price: float
    final_price: float
    currency: str = "USD"
    status: str = QuoteStatus.PENDING.value
    valid_until: datetime = field(default_factory=utcnow)
    coverage_amount: float = 0.0
    payment_frequency: str = PaymentFrequency.ANNUALLY.value
    effective_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    risk_factors: List[Dict[str, Any]] = field(default_factory=list)
    discount: float = 0.0
    tax: float = 0.0
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.valid_until < (now or utcnow())


@dataclass
class Policy(Record):
    product_id: str
    user_id: str
    policy_number: str
    premium: float
    coverage_amount: float
    effective_date: datetime
    expiration_date: datetime
    currency: str = "USD"
    payment_frequency: str = PaymentFrequency.ANNUALLY.value
    status: str = PolicyStatus.ACTIVE.value
    renewal_date: Optional[datetime] = None
    auto_renew: bool = False
    grace_period_end: Optional[datetime] = None
    quote_id: Optional[str] = None
    renewed_from_id: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    def is_active(self) -> bool:
        return self.status == PolicyStatus.ACTIVE

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expiration_date < (now or utcnow())

    def is_cancelled(self) -> bool:
        return self.status == PolicyStatus.CANCELLED

    def covers(self, moment: datetime) -> bool:
        return self.effective_date <= moment <= self.expiration_date


@dataclass
class ClaimDocument(Record):
    name: str
    file_size: int = 0
    file_type: str = ""
    upload_date: datetime = field(default_factory=utcnow)


@dataclass
class Claim(Record):
    policy_id: str
    user_id: str
    claim_number: str
    title: str
    description: str
    claim_amount: float
    incident_date: datetime
    reported_date: datetime = field(default_factory=utcnow)
    paid_amount: float = 0.0
    currency: str = "USD"
    status: str = ClaimStatus.SUBMITTED.value
    resolved_date: Optional[datetime] = None
    denial_reason: Optional[str] = None
    documents: List[ClaimDocument] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    _nested = {"documents": ClaimDocument}


@dataclass
class Payment(Record):
    user_id: str
    amount: float
    payment_number: str = ""
    policy_id: Optional[str] = None
    subscription_id: Optional[str] = None
    currency: str = "USD"
    status: str = PaymentStatus.PENDING.value
    payment_method: str = ""
    payment_provider: str = "simulated"
    description: str = ""
    transaction_id: Optional[str] = None
    processed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    refund_amount: float = 0.0
    refunded_at: Optional[datetime] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None


@dataclass
class WorkflowStage(Record):
    stage_id: str
    name: str
    status: str = StageStatus.PENDING.value
    result: str = StageResult.NONE.value
    decision: str = ""
    comments: str = ""
    assigned_to: Optional[str] = None
    auto_approved: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ClaimWorkflow(Record):
    claim_id: str
    stages: List[WorkflowStage] = field(default_factory=list)
    current_stage: str = ""
    status: str = WorkflowStatus.PENDING.value
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    _nested = {"stages": WorkflowStage}

    def stage(self, stage_id: str) -> Optional[WorkflowStage]:
        for stage in self.stages:
            if stage.stage_id == stage_id:
                return stage
        return None

    def stage_index(self, stage_id: str) -> int:
        for i, stage in enumerate(self.stages):
            if stage.stage_id == stage_id:
                return i
        return -1
