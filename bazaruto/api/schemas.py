"""
Request bodies for the /v1 API.

Create bodies are converted into domain entities by the endpoints; update
bodies are applied with ``model_dump(exclude_unset=True)`` so only the fields a
client sent are changed.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AddressIn(BaseModel):
    country: str
    state: Optional[str] = None
    city: Optional[str] = None
    is_primary: bool = False
    is_active: bool = True


class CustomerCreate(BaseModel):
    email: str
    first_name: str = ""
    last_name: str = ""
    status: str = "active"
    kyc_status: str = "pending"
    aml_status: str = "pending"
    risk_profile: str = "low"
    customer_tier: str = "bronze"
    default_payment_method: Optional[str] = None
    addresses: List[AddressIn] = Field(default_factory=list)


class CustomerUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    status: Optional[str] = None
    kyc_status: Optional[str] = None
    aml_status: Optional[str] = None
    risk_profile: Optional[str] = None
    customer_tier: Optional[str] = None
    default_payment_method: Optional[str] = None
    addresses: Optional[List[AddressIn]] = None


class ProductCreate(BaseModel):
    name: str
    category: str
    base_price: float = 0.0
    coverage_amount: float
    coverage_period_days: int = 365
    currency: str = "USD"
    description: str = ""
    partner_id: Optional[str] = None
    status: str = "active"
    effective_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    base_price: Optional[float] = None
    coverage_amount: Optional[float] = None
    coverage_period_days: Optional[int] = None
    currency: Optional[str] = None
    description: Optional[str] = None
    partner_id: Optional[str] = None
    status: Optional[str] = None
    effective_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None


class PricingIn(BaseModel):
    """Inputs shared by quotes, pricing and underwriting."""

    product_id: str
    user_id: str
    coverage_amount: float
    effective_date: datetime
    expiration_date: datetime
    currency: str = "USD"
    payment_frequency: str = "annually"
    risk_factors: Dict[str, Any] = Field(default_factory=dict)
    discounts: List[str] = Field(default_factory=list)
    options: Dict[str, Any] = Field(default_factory=dict)


class PricingCompareIn(BaseModel):
    base: PricingIn
    scenarios: List[PricingIn] = Field(default_factory=list)


class QuoteUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Optional[str] = None


class PolicyCreate(BaseModel):
    product_id: str
    user_id: str
    coverage_amount: float
    effective_date: datetime
    expiration_date: datetime
    premium: float = 0.0
    currency: str = "USD"
    payment_frequency: str = "annually"
    status: str = "active"
    auto_renew: bool = False
    quote_id: Optional[str] = None


class PolicyUpdate(BaseModel):
    premium: Optional[float] = None
    coverage_amount: Optional[float] = None
    effective_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    currency: Optional[str] = None
    payment_frequency: Optional[str] = None
    status: Optional[str] = None
    auto_renew: Optional[bool] = None
    renewal_date: Optional[datetime] = None
    grace_period_end: Optional[datetime] = None
    # immutable; accepted only so a changed value can be rejected with 400
    product_id: Optional[str] = None
    user_id: Optional[str] = None
    policy_number: Optional[str] = None


class RenewalIn(BaseModel):
    effective_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    coverage_amount: Optional[float] = Field(default=None, gt=0)
    payment_frequency: Optional[str] = None
    auto_renew: Optional[bool] = None
    payment_method: Optional[str] = None


class CancellationIn(BaseModel):
    effective_date: Optional[datetime] = None
    reason: Optional[str] = None
    refund_method: Optional[str] = None


class DocumentIn(BaseModel):
    name: str
    file_size: int = 0
    file_type: str = ""


class ClaimCreate(BaseModel):
    policy_id: str
    user_id: str
    title: str
    description: str
    claim_amount: float
    incident_date: datetime
    reported_date: Optional[datetime] = None
    currency: str = "USD"
    documents: List[DocumentIn] = Field(default_factory=list)


class ClaimUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    claim_amount: Optional[float] = None
    paid_amount: Optional[float] = None
    status: Optional[str] = None
    denial_reason: Optional[str] = None
    resolved_date: Optional[datetime] = None
    # immutable; accepted only so a changed value can be rejected with 400
    policy_id: Optional[str] = None
    user_id: Optional[str] = None
    claim_number: Optional[str] = None
    incident_date: Optional[datetime] = None
    reported_date: Optional[datetime] = None


class StageOverrideIn(BaseModel):
    result: str = Field(..., description="approved, declined or requires_review")
    decision: str = ""
    comments: str = ""
    assigned_to: Optional[str] = None


class PaymentCreate(BaseModel):
    user_id: str
    amount: float
    payment_method: str
    currency: str = "USD"
    policy_id: Optional[str] = None
    subscription_id: Optional[str] = None
    description: str = ""


class RiskIn(BaseModel):
    user_id: str
    product_id: Optional[str] = None
    coverage_amount: float


class UnderwritingIn(PricingIn):
    application_data: Dict[str, Any] = Field(default_factory=dict)


class ReviewIn(BaseModel):
    reviewer_id: str
    decision: str
    reason: str = ""
    comments: str = ""


class CommissionIn(BaseModel):
    policy_id: str
    commission_type: str = "initial"


class WebhookCreate(BaseModel):
    url: str
    event_types: List[str]
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    secret: str = ""
    description: str = ""
    is_active: bool = True
    retry_count: int = 3
    timeout: float = 30.0
