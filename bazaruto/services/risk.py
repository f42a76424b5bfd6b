"""
Risk assessment across eight weighted factors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from bazaruto.database.entities import Customer, Product
from bazaruto.errors import InvalidInputError, NotFoundError
from bazaruto.utils.business_rules import RiskAssessmentRules
from bazaruto.utils.timeutil import utcnow, years_between

logger = logging.getLogger(__name__)

ASSESSMENT_VERSION = "2.0"

DATA_QUALITY_SCORES = {"excellent": 1.0, "good": 0.8, "fair": 0.6, "poor": 0.4}

_CATEGORY_BY_PRODUCT = {
    "auto": "personal",
    "home": "personal",
    "life": "personal",
    "health": "personal",
    "business": "commercial",
}


@dataclass
class RiskAssessment:
    factor: str
    category: str
    score: float
    weight: float
    impact: float
    description: str
    severity: str
    mitigation: str
    data_quality: str
    last_updated: datetime


@dataclass
class RiskProfile:
    overall_score: float
    risk_level: str
    risk_category: str
    assessments: List[RiskAssessment]
    recommendations: List[str]
    premium_adjustment: float
    approval_status: str
    conditions: List[str]
    assessment_date: datetime
    valid_until: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    def has_critical(self) -> bool:
        return any(a.severity == "critical" for a in self.assessments)


@dataclass
class _Inputs:
    customer: Customer
    product: Optional[Product]
    coverage_amount: float
    claim_count: int
    high_risk_countries: List[str]
    now: datetime


# ---------------------------------------------------------------------------
# Factors
#
# Each returns (score, severity, impact, description, data_quality). Weight,
# category and mitigation come from the factor table.
# ---------------------------------------------------------------------------


def demographic_risk(inp: _Inputs):
    return 30, "medium", 1.0, "Demographic risk assessment based on user profile", "good"


def behavioral_risk(inp: _Inputs):
    age = years_between(inp.customer.created_at, inp.now)
    if age < 0.5:
        return 60, "high", 1.3, "New user with limited behavioral history", "good"
    if age < 2:
        return 40, "medium", 1.1, "User with moderate behavioral history", "good"
    return 20, "low", 0.9, "Established user with good behavioral history", "good"


def financial_risk(inp: _Inputs):
    if inp.customer.is_high_risk():
        return 60, "high", 1.2, f"Customer risk profile is {inp.customer.risk_profile}", "fair"
    return 25, "low", 1.0, "Financial risk assessment based on available data", "fair"


def geographic_risk(inp: _Inputs):
    address = inp.customer.get_primary_address()
    if address is None:
        return 35, "medium", 1.1, "No primary address on file", "poor"
    if address.country in inp.high_risk_countries:
        return 70, "high", 1.4, f"Primary address in high-risk country {address.country}", "good"
    return 35, "medium", 1.1, "Geographic risk assessment based on location data", "good"


def product_specific_risk(inp: _Inputs):
    amount = inp.coverage_amount
    if amount > 1_000_000:
        return 70, "high", 1.5, "High-value coverage requiring enhanced risk assessment", "excellent"
    if amount > 500_000:
        return 50, "medium", 1.2, "Moderate to high-value coverage", "excellent"
    if amount > 100_000:
        return 30, "low", 1.0, "Standard coverage amount", "excellent"
    return 20, "low", 0.9, "Low-value coverage", "excellent"


def historical_risk(inp: _Inputs):
    if inp.claim_count >= 3:
        return 70, "high", 1.3, f"{inp.claim_count} prior claims on record", "good"
    if inp.claim_count > 0:
        return 40, "medium", 1.1, f"{inp.claim_count} prior claim(s) on record", "good"
    return 20, "low", 0.95, "Historical risk assessment based on claim history", "good"


def lifestyle_risk(inp: _Inputs):
    return 30, "medium", 1.05, "Lifestyle risk assessment based on available data", "fair"


def compliance_risk(inp: _Inputs):
    if not inp.customer.is_active():
        return 80, "critical", 2.0, "User account is not in active status", "excellent"
    return 10, "low", 1.0, "User account is in good standing", "excellent"


@dataclass(frozen=True)
class RiskFactorSpec:
    name: str
    category: str
    mitigation: str
    compute: Callable[[_Inputs], tuple]


RISK_FACTORS: List[RiskFactorSpec] = [
    RiskFactorSpec("demographic_risk", "demographic", "Standard demographic risk factors applied", demographic_risk),
    RiskFactorSpec(
        "behavioral_risk", "behavioral", "Monitor user behavior patterns and account activity", behavioral_risk
    ),
    RiskFactorSpec(
        "financial_risk",
        "financial",
        "Request additional financial documentation for high-value policies",
        financial_risk,
    ),
    RiskFactorSpec(
        "geographic_risk", "geographic", "Consider location-specific risk factors and coverage options", geographic_risk
    ),
    RiskFactorSpec(
        "product_specific_risk",
        "product",
        "Adjust coverage limits and deductibles based on risk profile",
        product_specific_risk,
    ),
    RiskFactorSpec("historical_risk", "historical", "Continue monitoring claim patterns and frequency", historical_risk),
    RiskFactorSpec(
        "lifestyle_risk", "lifestyle", "Request lifestyle questionnaire for comprehensive assessment", lifestyle_risk
    ),
    RiskFactorSpec(
        "compliance_risk",
        "compliance",
        "Ensure user account is in good standing before policy issuance",
        compliance_risk,
    ),
]

_LEVEL_RECOMMENDATIONS = {
    "very_high": [
        "Consider declining application or requiring significant risk mitigation",
        "Implement enhanced monitoring and reporting",
        "Require additional security measures",
    ],
    "high": [
        "Implement enhanced risk monitoring",
        "Require additional documentation and verification",
        "Consider higher deductibles or reduced coverage",
    ],
    "medium": [
        "Standard risk monitoring procedures",
        "Regular risk assessment reviews",
        "Consider risk mitigation strategies",
    ],
    "low": [
        "Standard processing and monitoring",
        "Consider premium discounts for low-risk profile",
    ],
}

_HIGH_SEVERITY_CONDITIONS = {
    "financial_risk": "Additional financial documentation required",
    "behavioral_risk": "Extended probationary period",
    "product_specific_risk": "Reduced coverage limits or higher deductibles",
}


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def risk_level_for(score: float, rules: RiskAssessmentRules) -> str:
    t = rules.level_thresholds
    if score >= t.very_high:
        return "very_high"
    if score >= t.high:
        return "high"
    if score >= t.medium:
        return "medium"
    return "low"


def risk_category_for(product: Optional[Product]) -> str:
    if product is None:
        return "personal"
    return _CATEGORY_BY_PRODUCT.get(product.category, "specialty")


def premium_adjustment_for(score: float, total_impact: float, rules: RiskAssessmentRules) -> float:
    r = rules.premium_adjustments
    adjustment = (score - 50) * r.base_adjustment_rate + (total_impact - 1.0) * 100
    return max(-r.max_decrease, min(r.max_increase, adjustment))


def approval_status_for(score: float, assessments: List[RiskAssessment], rules: RiskAssessmentRules) -> str:
    if any(a.severity == "critical" for a in assessments):
        return "declined"
    if score >= rules.approval_thresholds.decline:
        return "declined"
    if score >= rules.approval_thresholds.conditional:
        return "conditional"
    return "approved"


def approval_conditions_for(score: float, assessments: List[RiskAssessment], rules: RiskAssessmentRules) -> List[str]:
    conditions: List[str] = []
    if score >= rules.approval_thresholds.conditional:
        conditions.append("Enhanced monitoring required")
        conditions.append("Quarterly risk review mandatory")
    for a in assessments:
        if a.severity == "high" and a.factor in _HIGH_SEVERITY_CONDITIONS:
            conditions.append(_HIGH_SEVERITY_CONDITIONS[a.factor])
    return conditions


def recommendations_for(risk_level: str, assessments: List[RiskAssessment]) -> List[str]:
    recommendations = list(_LEVEL_RECOMMENDATIONS.get(risk_level, []))
    for a in assessments:
        if a.severity in ("high", "critical"):
            recommendations.append(a.mitigation)
    return recommendations


def average_data_quality(assessments: List[RiskAssessment]) -> float:
    if not assessments:
        return 0.0
    return sum(DATA_QUALITY_SCORES.get(a.data_quality, 0.4) for a in assessments) / len(assessments)


class RiskAssessmentService:
    def __init__(self, db, rules_manager) -> None:
        self._customers = db.customers
        self._products = db.products
        self._claims = db.claims
        self._rules = rules_manager

    def assess_risk(
        self,
        user_id: str,
        product_id: Optional[str],
        coverage_amount: float,
        now: Optional[datetime] = None,
    ) -> RiskProfile:
        if coverage_amount is None or coverage_amount <= 0:
            raise InvalidInputError("coverage_amount must be greater than zero")

        config = self._rules.get_config()
        rules = config.risk_assessment
        now = now or utcnow()
        customer = self._customers.get(user_id)
        product = None
        if product_id:
            try:
                product = self._products.get(product_id)
            except NotFoundError:
                logger.warning("Risk assessment for unknown product %s; using personal category", product_id)

        inputs = _Inputs(
            customer=customer,
            product=product,
            coverage_amount=coverage_amount,
            claim_count=self._claims.count({"user_id": customer.id}),
            high_risk_countries=config.fraud_detection.geographic_rules.high_risk_countries,
            now=now,
        )
        assessments = [self._run_factor(spec, inputs, rules) for spec in RISK_FACTORS]

        total_weight = 0.0
        weighted = 0.0
        total_impact = 1.0
        for a in assessments:
            if a.weight > 0:
                total_weight += a.weight
                weighted += a.score * a.weight
                total_impact *= a.impact
        score = weighted / total_weight if total_weight > 0 else 0.0
        score = max(0.0, min(100.0, score))

        level = risk_level_for(score, rules)
        profile = RiskProfile(
            overall_score=score,
            risk_level=level,
            risk_category=risk_category_for(product),
            assessments=assessments,
            recommendations=recommendations_for(level, assessments),
            premium_adjustment=premium_adjustment_for(score, total_impact, rules),
            approval_status=approval_status_for(score, assessments, rules),
            conditions=approval_conditions_for(score, assessments, rules),
            assessment_date=now,
            valid_until=now + timedelta(days=rules.validity_days),
            metadata={
                "user_id": customer.id,
                "product_id": product_id,
                "coverage_amount": coverage_amount,
                "assessment_version": ASSESSMENT_VERSION,
            },
        )
        logger.info(
            "Risk assessed for user %s: score=%.1f level=%s status=%s",
            customer.id,
            profile.overall_score,
            profile.risk_level,
            profile.approval_status,
        )
        return profile

    @staticmethod
    def _run_factor(spec: RiskFactorSpec, inputs: _Inputs, rules: RiskAssessmentRules) -> RiskAssessment:
        score, severity, impact, description, quality = spec.compute(inputs)
        return RiskAssessment(
            factor=spec.name,
            category=spec.category,
            score=float(score),
            weight=rules.factor_weights.get(spec.name, 0.0),
            impact=impact,
            description=description,
            severity=severity,
            mitigation=spec.mitigation,
            data_quality=quality,
            last_updated=inputs.now,
        )

    @staticmethod
    def validate_profile(profile: RiskProfile) -> List[str]:
        errors: List[str] = []
        if not 0 <= profile.overall_score <= 100:
            errors.append("overall score must be between 0 and 100")
        if profile.valid_until <= profile.assessment_date:
            errors.append("valid until date must be after assessment date")
        for a in profile.assessments:
            if not 0 <= a.score <= 100:
                errors.append(f"{a.factor}: score must be between 0 and 100")
            if a.weight < 0:
                errors.append(f"{a.factor}: weight must not be negative")
        return errors
