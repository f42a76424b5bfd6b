"""
Claim fraud scoring.

Eight factors each produce a 0-100 score and a severity. The claim score is
the weighted mean using ``fraud_detection.factor_weights``; every threshold is
read from the current business-rules snapshot so an admin update applies to the
next analysis.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from bazaruto.database.entities import Claim, Customer, Policy
from bazaruto.errors import FraudDetectionDisabledError
from bazaruto.events import events
from bazaruto.events.bus import publish_safely
from bazaruto.utils.business_rules import FraudDetectionRules
from bazaruto.utils.timeutil import days_between, utcnow, years_between

logger = logging.getLogger(__name__)

TOTAL_FACTORS = 8

_SEVERITY_BUMP = {"low": "medium"}

_LEVEL_RECOMMENDATIONS = {
    "critical": [
        "Immediate manual review required",
        "Consider suspending claim processing",
        "Request additional documentation",
        "Consider involving fraud investigation team",
    ],
    "high": [
        "Manual review recommended",
        "Request additional supporting documentation",
        "Verify incident details with third parties",
    ],
    "medium": [
        "Enhanced verification recommended",
        "Request additional documentation for high-risk factors",
    ],
    "low": [
        "Standard processing can proceed",
        "Monitor for any additional risk factors",
    ],
}

_FACTOR_RECOMMENDATIONS = {
    "claim_timing": "Verify policy start date and incident timeline",
    "claim_amount": "Obtain independent damage assessment",
    "customer_history": "Verify customer identity and account history",
    "documentation": "Request comprehensive supporting documentation",
    "geographic_risk": "Verify customer location and incident site",
    "behavioral_patterns": "Interview claimant about the reported incident",
    "policy_history": "Review policy purchase and amendment history",
}


@dataclass
class FraudFactor:
    factor: str
    weight: float
    score: float
    description: str
    severity: str


@dataclass
class FraudScore:
    score: float
    risk_level: str
    factors: List[FraudFactor]
    recommendations: List[str]
    requires_review: bool
    confidence: float
    analysis_date: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _Inputs:
    claim: Claim
    policy: Policy
    customer: Customer
    rules: FraudDetectionRules
    recent_claims: int
    now: datetime


class _Builder:
    """Accumulates a factor score, description fragments and severity."""

    def __init__(self, score: float, description: str, severity: str) -> None:
        self.score = float(score)
        self.parts = [description]
        self.severity = severity

    def add(self, points: float, note: str, severity: Optional[str] = None) -> None:
        self.score += points
        self.parts.append(note)
        if severity is not None:
            self.severity = severity
        else:
            self.severity = _SEVERITY_BUMP.get(self.severity, self.severity)

    def scale(self, multiplier: float, note: str) -> None:
        self.score *= multiplier
        self.parts.append(note)

    def result(self):
        return self.score, "; ".join(self.parts), self.severity


def _is_weekend(moment: datetime) -> bool:
    return moment.weekday() >= 5


def _is_business_hours(moment: datetime) -> bool:
    return 9 <= moment.hour <= 17


# ---------------------------------------------------------------------------
# Factors
# ---------------------------------------------------------------------------


def claim_timing(inp: _Inputs):
    t = inp.rules.timing_rules
    threshold = t.policy_start_threshold_days
    since_start = days_between(inp.policy.effective_date, inp.claim.incident_date)
    if since_start < threshold:
        b = _Builder(80, f"Claim filed within {threshold:.0f} days of policy start", "high")
    elif since_start < threshold * 4:
        b = _Builder(40, f"Claim filed within {threshold * 4:.0f} days of policy start", "medium")
    else:
        b = _Builder(10, "Claim filed after policy has been active for a reasonable period", "low")

    delay = days_between(inp.claim.incident_date, inp.claim.reported_date)
    if delay > t.reporting_delay_threshold_days:
        b.add(20, f"Significant delay in reporting ({delay:.0f} days)")
    if _is_weekend(inp.claim.incident_date):
        b.scale(t.weekend_multiplier, "Incident occurred on weekend")
    if _is_business_hours(inp.claim.incident_date):
        b.scale(t.business_hours_multiplier, "Incident occurred during business hours")
    return b.result()


def claim_amount(inp: _Inputs):
    r = inp.rules.amount_rules
    amount = inp.claim.claim_amount
    ratio = amount / inp.policy.coverage_amount if inp.policy.coverage_amount else 1.0
    if ratio > r.coverage_ratio_threshold:
        b = _Builder(70, "Claim amount is very close to coverage limit", "high")
    elif ratio > r.coverage_ratio_threshold * 0.8:
        b = _Builder(40, "Claim amount is high relative to coverage", "medium")
    elif ratio < 0.1:
        b = _Builder(5, "Claim amount is low relative to coverage", "low")
    else:
        b = _Builder(15, "Claim amount is within normal range", "low")

    if amount > 1000 and int(amount) % 1000 == 0:
        b.add(r.round_number_penalty, "Claim amount is a round number")
    if amount > r.very_high_value_threshold:
        b.add(30, "Very high-value claim", "high" if b.severity in ("medium", "high") else b.severity)
    elif amount > r.high_value_threshold:
        b.add(15, "High-value claim")
    return b.result()


def customer_history(inp: _Inputs):
    t = inp.rules.timing_rules
    customer = inp.customer
    age_days = days_between(customer.created_at, inp.now)
    threshold = t.new_account_threshold_days
    if age_days < threshold:
        b = _Builder(60, f"New customer account (less than {threshold:.0f} days old)", "high")
    elif age_days < threshold * 2:
        b = _Builder(30, "Relatively new customer account", "medium")
    else:
        b = _Builder(10, "Established customer account", "low")

    if not customer.is_active():
        b.add(30, "Customer account is not active", "high")
    if not customer.is_kyc_verified():
        b.add(20, "Customer KYC not verified")
    if not customer.is_aml_cleared():
        b.add(25, "Customer AML not cleared")
    if customer.is_high_risk():
        b.add(15, f"Customer has {customer.risk_profile} risk profile")
    return b.result()


def incident_patterns(inp: _Inputs):
    incident = inp.claim.incident_date
    if _is_weekend(incident):
        b = _Builder(30, "Incident occurred on weekend", "medium")
    else:
        b = _Builder(10, "Incident occurred on weekday", "low")
    if _is_business_hours(incident):
        b.score += 5
        b.parts.append("Incident occurred during business hours")
    else:
        b.add(15, "Incident occurred outside business hours")
    return b.result()


def documentation(inp: _Inputs):
    r = inp.rules.document_rules
    docs = inp.claim.documents
    if not docs:
        b = _Builder(80, "No supporting documents provided", "high")
    elif len(docs) < r.min_document_count:
        b = _Builder(40, f"Limited supporting documentation ({len(docs)}/{r.min_document_count})", "medium")
    else:
        b = _Builder(10, "Adequate supporting documentation", "low")
    for doc in docs:
        if doc.file_size < r.min_file_size:
            b.score += 10
            b.parts.append(f"Document {doc.name} appears to be very small")
        if doc.file_size > r.max_file_size:
            b.score += 5
            b.parts.append(f"Document {doc.name} is very large")
    return b.result()


def geographic_risk(inp: _Inputs):
    r = inp.rules.geographic_rules
    address = inp.customer.get_primary_address()
    if address is None:
        return 30, "No address information available", "medium"
    if address.country in r.high_risk_countries:
        b = _Builder(60, f"Customer located in high-risk country: {address.country}", "high")
    elif address.state and address.state in r.high_risk_regions:
        b = _Builder(40, f"Customer located in high-risk region: {address.state}", "medium")
    else:
        b = _Builder(20, "Customer located in standard risk area", "low")
    multiplier = r.country_risk_multipliers.get(address.country)
    if multiplier is not None:
        b.scale(multiplier, f"Applied country risk multiplier: {multiplier:.2f}")
    return b.result()


def behavioral_patterns(inp: _Inputs):
    r = inp.rules.behavioral_rules
    length = len(inp.claim.description or "")
    if length < r.min_description_length:
        b = _Builder(50, f"Very brief claim description ({length} chars)", "medium")
    elif length > r.max_description_length:
        b = _Builder(30, f"Extremely detailed claim description ({length} chars)", "medium")
    else:
        b = _Builder(10, "Appropriate claim description length", "low")

    if inp.recent_claims > r.max_claims_per_year:
        b.add(20, f"{inp.recent_claims} claims filed in the last year", "high")

    tier = inp.customer.tier_level()
    if tier >= 3:
        b.scale(0.8, f"Customer tier discount applied ({inp.customer.customer_tier})")
    elif tier == 0:
        b.scale(1.2, "No customer tier assigned")
    return b.result()


def policy_history(inp: _Inputs):
    age = years_between(inp.policy.created_at, inp.now)
    if age < 0.25:
        b = _Builder(60, "Very new policy", "high")
    elif age < 1:
        b = _Builder(30, "Relatively new policy", "medium")
    else:
        b = _Builder(10, "Established policy", "low")
    if days_between(inp.claim.incident_date, inp.policy.expiration_date) < 30:
        b.add(20, "Incident occurred near policy expiration")
    return b.result()


@dataclass(frozen=True)
class FraudFactorSpec:
    name: str
    compute: Callable[[_Inputs], tuple]


FRAUD_FACTORS: List[FraudFactorSpec] = [
    FraudFactorSpec("claim_timing", claim_timing),
    FraudFactorSpec("claim_amount", claim_amount),
    FraudFactorSpec("customer_history", customer_history),
    FraudFactorSpec("incident_patterns", incident_patterns),
    FraudFactorSpec("documentation", documentation),
    FraudFactorSpec("geographic_risk", geographic_risk),
    FraudFactorSpec("behavioral_patterns", behavioral_patterns),
    FraudFactorSpec("policy_history", policy_history),
]


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def fraud_risk_level(score: float, rules: FraudDetectionRules) -> str:
    t = rules.risk_thresholds
    if score >= t.critical:
        return "critical"
    if score >= t.high:
        return "high"
    if score >= t.medium:
        return "medium"
    return "low"


def fraud_confidence(factors: List[FraudFactor]) -> float:
    active = [f for f in factors if f.weight > 0]
    weight_confidence = min(1.0, sum(f.weight for f in active))
    factor_confidence = min(1.0, len(active) / TOTAL_FACTORS)
    return (weight_confidence + factor_confidence) / 2.0


def requires_manual_review(score: float, factors: List[FraudFactor], rules: FraudDetectionRules) -> bool:
    r = rules.auto_review
    if score >= r.score_threshold:
        return True
    if sum(1 for f in factors if f.severity == "critical") >= max(1, r.critical_factor_count):
        return True
    return sum(1 for f in factors if f.severity == "high") >= max(1, r.high_severity_count)


def fraud_recommendations(risk_level: str, factors: List[FraudFactor]) -> List[str]:
    recommendations = list(_LEVEL_RECOMMENDATIONS.get(risk_level, []))
    for f in factors:
        if f.severity in ("high", "critical") and f.factor in _FACTOR_RECOMMENDATIONS:
            recommendations.append(_FACTOR_RECOMMENDATIONS[f.factor])
    return recommendations


class FraudDetectionService:
    def __init__(self, db, rules_manager, bus=None) -> None:
        self._claims = db.claims
        self._policies = db.policies
        self._customers = db.customers
        self._rules = rules_manager
        self._bus = bus

    async def analyze_claim(self, claim_id: str, now: Optional[datetime] = None) -> FraudScore:
        rules = self._rules.get_config().fraud_detection
        if not rules.enabled:
            raise FraudDetectionDisabledError()

        now = now or utcnow()
        claim = self._claims.get(claim_id)
        customer = self._customers.get(claim.user_id)
        policy = self._policies.get(claim.policy_id)
        recent = [
            c
            for c in self._claims.list({"user_id": claim.user_id})
            if c.reported_date >= now - timedelta(days=365)
        ]

        inputs = _Inputs(claim=claim, policy=policy, customer=customer, rules=rules, recent_claims=len(recent), now=now)
        factors = [self._run_factor(spec, inputs) for spec in FRAUD_FACTORS]

        total_weight = sum(f.weight for f in factors if f.weight > 0)
        weighted = sum(f.score * f.weight for f in factors if f.weight > 0)
        score = weighted / total_weight if total_weight > 0 else 0.0

        level = fraud_risk_level(score, rules)
        result = FraudScore(
            score=score,
            risk_level=level,
            factors=factors,
            recommendations=fraud_recommendations(level, factors),
            requires_review=requires_manual_review(score, factors, rules),
            confidence=fraud_confidence(factors),
            analysis_date=now,
            metadata={
                "claim_id": claim.id,
                "policy_id": policy.id,
                "customer_id": customer.id,
                "analysis_version": rules.version,
            },
        )
        logger.info(
            "Fraud analysis for claim %s: score=%.1f level=%s review=%s",
            claim.id,
            result.score,
            result.risk_level,
            result.requires_review,
        )

        await publish_safely(
            self._bus,
            events.new_event(
                events.FRAUD_ANALYSIS_COMPLETED,
                claim.id,
                occurred_at=now,
                claim_id=claim.id,
                customer_id=customer.id,
                score=result.score,
                risk_level=result.risk_level,
                requires_review=result.requires_review,
                confidence=result.confidence,
                factor_names=[f.factor for f in factors],
            ),
        )
        return result

    @staticmethod
    def _run_factor(spec: FraudFactorSpec, inputs: _Inputs) -> FraudFactor:
        score, description, severity = spec.compute(inputs)
        return FraudFactor(
            factor=spec.name,
            weight=inputs.rules.factor_weights.get(spec.name, 0.0),
            score=max(0.0, min(100.0, score)),
            description=description,
            severity=severity,
        )
