"""
Business-rules configuration schema.

One pydantic model per section. Sections are required on the root model so a
replacement document that drops one is rejected; fields inside a section fall
back to the defaults below.
"""

from datetime import datetime, timezone
from typing import Dict, List

from pydantic import BaseModel, Field

SECTION_NAMES = (
    "fraud_detection",
    "risk_assessment",
    "pricing",
    "underwriting",
    "commission",
    "compliance",
    "policy_lifecycle",
    "claim_processing",
)


class Section(BaseModel):
    enabled: bool = True
    version: str = "1.0"


# ---------------------------------------------------------------------------
# Fraud detection
# ---------------------------------------------------------------------------


class FraudRiskThresholds(BaseModel):
    low: float = 30
    medium: float = 60
    high: float = 80
    critical: float = 90


class TimingRules(BaseModel):
    new_account_threshold_days: float = Field(default=180, ge=0)
    policy_start_threshold_days: float = Field(default=30, ge=0)
    reporting_delay_threshold_days: float = Field(default=30, ge=0)
    weekend_multiplier: float = Field(default=1.2, ge=0)
    business_hours_multiplier: float = Field(default=0.9, ge=0)


class AmountRules(BaseModel):
    high_value_threshold: float = Field(default=10_000, ge=0)
    very_high_value_threshold: float = Field(default=100_000, ge=0)
    round_number_penalty: float = Field(default=10, ge=0)
    coverage_ratio_threshold: float = Field(default=0.9, ge=0)


class DocumentRules(BaseModel):
    min_document_count: int = Field(default=2, ge=0)
    min_file_size: int = Field(default=1024, ge=0)
    max_file_size: int = Field(default=10 * 1024 * 1024, ge=0)
    required_document_types: List[str] = Field(default_factory=lambda: ["incident_report", "photo", "receipt"])


class GeographicRules(BaseModel):
    high_risk_countries: List[str] = Field(default_factory=lambda: ["AF", "IR", "KP", "SY"])
    high_risk_regions: List[str] = Field(default_factory=lambda: ["middle_east", "africa"])
    country_risk_multipliers: Dict[str, float] = Field(
        default_factory=lambda: {"AF": 2.0, "IR": 2.5, "KP": 3.0, "SY": 2.0}
    )


class BehavioralRules(BaseModel):
    min_description_length: int = Field(default=50, ge=0)
    max_description_length: int = Field(default=1000, ge=0)
    max_claims_per_year: int = Field(default=10, ge=0)


class ConfidenceThresholds(BaseModel):
    low: float = 0.3
    medium: float = 0.5
    high: float = 0.7
    very_high: float = 0.9


class AutoReviewRules(BaseModel):
    score_threshold: float = 70
    critical_factor_count: int = Field(default=1, ge=0)
    high_severity_count: int = Field(default=2, ge=0)


def _fraud_weights() -> Dict[str, float]:
    return {
        "claim_timing": 0.20,
        "claim_amount": 0.20,
        "customer_history": 0.15,
        "incident_patterns": 0.10,
        "documentation": 0.10,
        "geographic_risk": 0.10,
        "behavioral_patterns": 0.05,
        "policy_history": 0.10,
    }


class FraudDetectionRules(Section):
    version: str = "2.0"
    risk_thresholds: FraudRiskThresholds = Field(default_factory=FraudRiskThresholds)
    factor_weights: Dict[str, float] = Field(default_factory=_fraud_weights)
    timing_rules: TimingRules = Field(default_factory=TimingRules)
    amount_rules: AmountRules = Field(default_factory=AmountRules)
    document_rules: DocumentRules = Field(default_factory=DocumentRules)
    geographic_rules: GeographicRules = Field(default_factory=GeographicRules)
    behavioral_rules: BehavioralRules = Field(default_factory=BehavioralRules)
    confidence_thresholds: ConfidenceThresholds = Field(default_factory=ConfidenceThresholds)
    auto_review: AutoReviewRules = Field(default_factory=AutoReviewRules)


# ---------------------------------------------------------------------------
# Risk assessment
# ---------------------------------------------------------------------------


def _risk_weights() -> Dict[str, float]:
    return {
        "demographic_risk": 0.20,
        "behavioral_risk": 0.25,
        "financial_risk": 0.30,
        "geographic_risk": 0.15,
        "product_specific_risk": 0.20,
        "historical_risk": 0.25,
        "lifestyle_risk": 0.10,
        "compliance_risk": 0.05,
    }


class RiskLevelThresholds(BaseModel):
    medium: float = 40
    high: float = 60
    very_high: float = 80


class RiskApprovalThresholds(BaseModel):
    conditional: float = 60
    decline: float = 80


class PremiumAdjustmentRules(BaseModel):
    max_increase: float = Field(default=200, ge=0)
    max_decrease: float = Field(default=50, ge=0)
    base_adjustment_rate: float = 0.02


class RiskAssessmentRules(Section):
    version: str = "2.0"
    factor_weights: Dict[str, float] = Field(default_factory=_risk_weights)
    level_thresholds: RiskLevelThresholds = Field(default_factory=RiskLevelThresholds)
    approval_thresholds: RiskApprovalThresholds = Field(default_factory=RiskApprovalThresholds)
    premium_adjustments: PremiumAdjustmentRules = Field(default_factory=PremiumAdjustmentRules)
    validity_days: int = Field(default=90, ge=1)


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


class CoverageRules(BaseModel):
    high_threshold: float = 1_000_000
    high_rate: float = 0.001
    medium_threshold: float = 500_000
    medium_rate: float = 0.0005


class AccountRiskRules(BaseModel):
    new_account_years: float = 0.5
    new_account_rate: float = 0.02
    young_account_years: float = 2
    young_account_rate: float = 0.01
    established_rate: float = -0.005


class LoyaltyRules(BaseModel):
    long_years: float = 5
    long_rate: float = -0.08
    medium_years: float = 2
    medium_rate: float = -0.03


class SeasonalRates(BaseModel):
    winter: float = 0.02
    summer: float = 0.01


class PricingRules(Section):
    version: str = "2.0"
    base_rates: Dict[str, float] = Field(
        default_factory=lambda: {"auto": 15, "home": 8, "life": 5, "health": 25, "business": 20, "default": 10}
    )
    coverage_rules: CoverageRules = Field(default_factory=CoverageRules)
    risk_rules: AccountRiskRules = Field(default_factory=AccountRiskRules)
    discount_rates: Dict[str, float] = Field(
        default_factory=lambda: {
            "multi_policy": 0.10,
            "loyalty": 0.05,
            "early_payment": 0.03,
            "safe_driver": 0.08,
            "security_system": 0.06,
        }
    )
    tax_rate: float = Field(default=0.08, ge=0)
    frequency_rates: Dict[str, float] = Field(
        default_factory=lambda: {"annually": -0.05, "quarterly": 0.02, "monthly": 0.05}
    )
    market_rate: float = 0.03
    loyalty_rules: LoyaltyRules = Field(default_factory=LoyaltyRules)
    seasonal_rates: SeasonalRates = Field(default_factory=SeasonalRates)
    quote_validity_hours: int = Field(default=24, ge=1)


# ---------------------------------------------------------------------------
# Underwriting
# ---------------------------------------------------------------------------


class DecisionThresholds(BaseModel):
    pending_review: float = 40
    conditional: float = 60
    decline: float = 80


class ConditionRules(BaseModel):
    documentation_days: int = 30
    monitoring_days: int = 90
    inspection_days: int = 14
    payment_days: int = 7
    high_value_threshold: float = 500_000


class UnderwritingRules(Section):
    decision_thresholds: DecisionThresholds = Field(default_factory=DecisionThresholds)
    condition_rules: ConditionRules = Field(default_factory=ConditionRules)
    baseline_confidence: float = Field(default=0.8, ge=0, le=1)
    decision_validity_days: int = Field(default=30, ge=1)


# ---------------------------------------------------------------------------
# Commission and compliance
# ---------------------------------------------------------------------------


class CommissionRules(Section):
    default_rates: Dict[str, float] = Field(
        default_factory=lambda: {"auto": 10, "home": 12, "life": 15, "health": 8, "business": 12, "default": 10}
    )
    min_amounts: Dict[str, float] = Field(default_factory=lambda: {"default": 0})
    max_amounts: Dict[str, float] = Field(default_factory=lambda: {"default": 100_000})
    payment_schedule_days: Dict[str, int] = Field(
        default_factory=lambda: {"standard": 30, "extended": 45, "expedited": 15}
    )
    min_rate: float = 0
    max_rate: float = 100


class ComplianceRules(Section):
    kyc_required: bool = True
    kyc_document_types: List[str] = Field(default_factory=lambda: ["national_id", "passport", "proof_of_address"])
    aml_screening_required: bool = True
    aml_transaction_threshold: float = 10_000
    data_retention_days: int = 2555
    regulatory_reporting: List[str] = Field(default_factory=list)
    pass_threshold: float = 90
    warning_threshold: float = 70


# ---------------------------------------------------------------------------
# Policy lifecycle
# ---------------------------------------------------------------------------


class RenewalRules(BaseModel):
    advance_renewal_days: int = Field(default=30, ge=0)
    rate_increase: float = 0.03
    frequency_multipliers: Dict[str, float] = Field(
        default_factory=lambda: {"annually": 0.95, "quarterly": 1.02, "monthly": 1.05}
    )
    renewal_term_years: int = Field(default=1, ge=1)


class CancellationRules(BaseModel):
    cancellation_fee_rate: float = Field(default=0.10, ge=0, le=1)
    default_reason: str = "Customer request"
    default_refund_method: str = "original_payment_method"


class GracePeriodRules(BaseModel):
    renewal_days: int = Field(default=15, ge=0)
    payment_failure_days: int = Field(default=30, ge=0)


class PolicyLifecycleRules(Section):
    renewal_rules: RenewalRules = Field(default_factory=RenewalRules)
    cancellation_rules: CancellationRules = Field(default_factory=CancellationRules)
    grace_period_rules: GracePeriodRules = Field(default_factory=GracePeriodRules)
    auto_renewal_window_days: int = Field(default=30, ge=0)
    reminder_days: int = Field(default=30, ge=0)


# ---------------------------------------------------------------------------
# Claim processing
# ---------------------------------------------------------------------------


class ApprovalRules(BaseModel):
    auto_approve_max_amount: float = 10_000
    senior_review_threshold: float = 50_000
    executive_approval_threshold: float = 100_000
    fraud_review_score: float = 60
    fraud_decline_score: float = 80
    min_supporting_documents: int = Field(default=2, ge=0)


class ClaimProcessingRules(Section):
    approval_rules: ApprovalRules = Field(default_factory=ApprovalRules)
    workflow_timeout_hours: int = Field(default=72, ge=1)


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BusinessRules(BaseModel):
    version: str = "1.0.0"
    last_updated: datetime = Field(default_factory=_now)
    fraud_detection: FraudDetectionRules
    risk_assessment: RiskAssessmentRules
    pricing: PricingRules
    underwriting: UnderwritingRules
    commission: CommissionRules
    compliance: ComplianceRules
    policy_lifecycle: PolicyLifecycleRules
    claim_processing: ClaimProcessingRules


SECTION_MODELS = {
    "fraud_detection": FraudDetectionRules,
    "risk_assessment": RiskAssessmentRules,
    "pricing": PricingRules,
    "underwriting": UnderwritingRules,
    "commission": CommissionRules,
    "compliance": ComplianceRules,
    "policy_lifecycle": PolicyLifecycleRules,
    "claim_processing": ClaimProcessingRules,
}


def default_business_rules() -> BusinessRules:
    return BusinessRules(**{name: model() for name, model in SECTION_MODELS.items()})
