"""
Underwriting: combine a risk profile and a price into an issuance decision.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from bazaruto.errors import InvalidInputError, NotFoundError
from bazaruto.services.pricing import PricingEngine, PricingRequest, validate_pricing_request
from bazaruto.services.risk import RiskAssessmentService, RiskProfile, average_data_quality
from bazaruto.utils.business_rules import UnderwritingRules
from bazaruto.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

UNDERWRITING_VERSION = "1.0"

MAX_REMEMBERED_DECISIONS = 10_000

DECISIONS = ("approved", "declined", "conditional", "pending_review")

_REASONS = {
    "approved": [
        "Risk assessment indicates acceptable risk level",
        "All underwriting criteria met",
        "Premium calculated within acceptable range",
    ],
    "conditional": [
        "Risk assessment indicates elevated risk requiring additional conditions",
        "Some underwriting criteria require additional verification",
    ],
    "pending_review": [
        "Risk assessment requires manual review",
        "Automated decision not possible with current data",
        "Additional information required for final decision",
    ],
    "declined": [
        "Risk assessment indicates unacceptable risk level",
        "Underwriting criteria not met",
    ],
}

_RECOMMENDATIONS = {
    "approved": [
        "Policy can be issued immediately",
        "Standard monitoring procedures apply",
        "Consider additional coverage options",
    ],
    "conditional": [
        "Meet all specified conditions before policy issuance",
        "Enhanced monitoring will be required",
        "Consider risk mitigation strategies",
    ],
    "pending_review": [
        "Provide additional documentation for review",
        "Manual underwriting review will be conducted",
        "Decision will be communicated within 5 business days",
    ],
    "declined": [
        "Consider alternative coverage options",
        "Address risk factors before reapplication",
        "Reapply after 6 months with improved risk profile",
    ],
}


@dataclass
class UnderwritingRequest:
    user_id: str
    product_id: str
    coverage_amount: float
    effective_date: datetime
    expiration_date: datetime
    currency: str = "USD"
    payment_frequency: str = "annually"
    application_data: Dict[str, Any] = field(default_factory=dict)
    risk_factors: Dict[str, Any] = field(default_factory=dict)
    discounts: List[str] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UnderwritingCondition:
    type: str
    description: str
    required: bool = True
    deadline: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UnderwritingDecision:
    decision: str
    confidence: float
    risk_score: float
    premium: float
    currency: str
    conditions: List[UnderwritingCondition]
    reasons: List[str]
    recommendations: List[str]
    valid_until: datetime
    decided_at: datetime
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metadata: Dict[str, Any] = field(default_factory=dict)


def decide(profile: RiskProfile, rules: UnderwritingRules) -> str:
    if profile.has_critical():
        return "declined"
    t = rules.decision_thresholds
    score = profile.overall_score
    if score >= t.decline:
        return "declined"
    if score >= t.conditional:
        return "conditional"
    if score >= t.pending_review:
        return "pending_review"
    return "approved"


def decision_confidence(profile: RiskProfile, rules: UnderwritingRules) -> float:
    confidence = (rules.baseline_confidence + average_data_quality(profile.assessments)) / 2.0
    return max(0.0, min(1.0, confidence))


def decision_conditions(
    decision: str, profile: RiskProfile, coverage_amount: float, rules: UnderwritingRules, now: datetime
) -> List[UnderwritingCondition]:
    if decision != "conditional":
        return []
    r = rules.condition_rules
    conditions: List[UnderwritingCondition] = []
    for a in profile.assessments:
        if a.severity != "high":
            continue
        if a.factor == "financial_risk":
            conditions.append(
                UnderwritingCondition(
                    "documentation",
                    "Provide additional financial documentation",
                    deadline=now + timedelta(days=r.documentation_days),
                    metadata={"category": "financial"},
                )
            )
        elif a.factor == "behavioral_risk":
            conditions.append(
                UnderwritingCondition(
                    "monitoring",
                    "Enhanced monitoring period required",
                    deadline=now + timedelta(days=r.monitoring_days),
                    metadata={"category": "behavioral"},
                )
            )
        elif a.factor == "product_specific_risk":
            conditions.append(
                UnderwritingCondition(
                    "inspection",
                    "Professional inspection required",
                    deadline=now + timedelta(days=r.inspection_days),
                    metadata={"category": "inspection"},
                )
            )
    if coverage_amount > r.high_value_threshold:
        conditions.append(
            UnderwritingCondition(
                "payment",
                "Advance payment required",
                deadline=now + timedelta(days=r.payment_days),
                metadata={"category": "payment"},
            )
        )
    return conditions


def decision_reasons(decision: str, profile: RiskProfile) -> List[str]:
    reasons = list(_REASONS[decision])
    if decision == "conditional":
        reasons += [f"High risk in {a.factor} category" for a in profile.assessments if a.severity == "high"]
    elif decision == "declined":
        reasons += [f"Critical risk in {a.factor} category" for a in profile.assessments if a.severity == "critical"]
    return reasons


def decision_recommendations(decision: str, profile: RiskProfile) -> List[str]:
    recommendations = list(_RECOMMENDATIONS[decision])
    recommendations += [a.mitigation for a in profile.assessments if a.severity in ("high", "critical")]
    return recommendations


class UnderwritingService:
    """
    Runs risk assessment and pricing for an application and decides.

    Decisions are kept in process memory so they can be reviewed and listed
    per user; nothing here is persisted to the database. A decision is dropped
    once its ``valid_until`` has passed, and the oldest ones go first when more
    than ``max_decisions`` are held.
    """

    def __init__(
        self,
        risk: RiskAssessmentService,
        pricing: PricingEngine,
        rules_manager,
        max_decisions: int = MAX_REMEMBERED_DECISIONS,
    ) -> None:
        self._risk = risk
        self._pricing = pricing
        self._rules = rules_manager
        self._max_decisions = max(1, max_decisions)
        self._history: "OrderedDict[str, UnderwritingDecision]" = OrderedDict()
        self._by_user: Dict[str, Dict[str, None]] = {}
        self._lock = threading.Lock()

    def process(self, request: UnderwritingRequest, now: Optional[datetime] = None) -> UnderwritingDecision:
        errors = validate_pricing_request(self._pricing_request(request))
        if errors:
            raise InvalidInputError("invalid underwriting request: " + "; ".join(errors))

        rules = self._rules.get_config().underwriting
        now = now or utcnow()
        profile = self._risk.assess_risk(request.user_id, request.product_id, request.coverage_amount, now=now)
        pricing = self._pricing.calculate_premium(self._pricing_request(request), now=now)

        outcome = decide(profile, rules)
        decision = UnderwritingDecision(
            decision=outcome,
            confidence=decision_confidence(profile, rules),
            risk_score=profile.overall_score,
            premium=pricing.final_premium,
            currency=request.currency,
            conditions=decision_conditions(outcome, profile, request.coverage_amount, rules, now),
            reasons=decision_reasons(outcome, profile),
            recommendations=decision_recommendations(outcome, profile),
            valid_until=now + timedelta(days=rules.decision_validity_days),
            decided_at=now,
            metadata={
                "user_id": request.user_id,
                "product_id": request.product_id,
                "coverage_amount": request.coverage_amount,
                "risk_level": profile.risk_level,
                "underwriting_version": UNDERWRITING_VERSION,
            },
        )
        self._remember(decision, now)
        logger.info(
            "Underwriting decision %s for user %s: %s (risk %.1f)",
            decision.id,
            request.user_id,
            decision.decision,
            decision.risk_score,
        )
        return decision

    @staticmethod
    def _pricing_request(request: UnderwritingRequest) -> PricingRequest:
        return PricingRequest(
            product_id=request.product_id,
            user_id=request.user_id,
            coverage_amount=request.coverage_amount,
            currency=request.currency,
            payment_frequency=request.payment_frequency,
            effective_date=request.effective_date,
            expiration_date=request.expiration_date,
            risk_factors=request.risk_factors,
            discounts=request.discounts,
            options=request.options,
        )

    def review_decision(
        self,
        decision_id: str,
        reviewer_id: str,
        decision: str,
        reason: str = "",
        comments: str = "",
    ) -> UnderwritingDecision:
        """Manual override of a stored decision. The reviewed decision replaces it."""
        if not reviewer_id:
            raise InvalidInputError("reviewer_id is required")
        if decision not in DECISIONS:
            raise InvalidInputError(f"invalid decision: {decision!r}")
        original = self.get_decision(decision_id)

        rules = self._rules.get_config().underwriting
        now = utcnow()
        reviewed = UnderwritingDecision(
            decision=decision,
            confidence=1.0,
            risk_score=original.risk_score,
            premium=original.premium,
            currency=original.currency,
            conditions=original.conditions if decision == "conditional" else [],
            reasons=[reason] if reason else [f"Manual review: {decision}"],
            recommendations=list(_RECOMMENDATIONS[decision]),
            valid_until=now + timedelta(days=rules.decision_validity_days),
            decided_at=now,
            id=original.id,
            metadata=dict(
                original.metadata,
                reviewer_id=reviewer_id,
                review_date=now.isoformat(),
                review_comments=comments,
                original_decision=original.decision,
            ),
        )
        self._remember(reviewed, now)
        logger.info("Decision %s reviewed by %s: %s -> %s", decision_id, reviewer_id, original.decision, decision)
        return reviewed

    def get_decision(self, decision_id: str) -> UnderwritingDecision:
        with self._lock:
            decision = self._history.get(decision_id)
        if decision is None:
            raise NotFoundError.for_entity("underwriting decision", decision_id)
        return decision

    def get_history(self, user_id: str) -> List[UnderwritingDecision]:
        with self._lock:
            decisions = [self._history[i] for i in self._by_user.get(user_id, ())]
        return sorted(decisions, key=lambda d: d.decided_at)

    def _remember(self, decision: UnderwritingDecision, now: datetime) -> None:
        with self._lock:
            self._history[decision.id] = decision
            self._history.move_to_end(decision.id)
            user_id = decision.metadata.get("user_id")
            if user_id:
                self._by_user.setdefault(user_id, {})[decision.id] = None

            # oldest first; stop at the first decision still valid
            while self._history:
                oldest = next(iter(self._history.values()))
                if oldest.valid_until >= now:
                    break
                self._forget(oldest.id)
            while len(self._history) > self._max_decisions:
                self._forget(next(iter(self._history)))

    def _forget(self, decision_id: str) -> None:
        decision = self._history.pop(decision_id)
        user_id = decision.metadata.get("user_id")
        ids = self._by_user.get(user_id)
        if ids is not None:
            ids.pop(decision_id, None)
            if not ids:
                del self._by_user[user_id]

    @staticmethod
    def validate_decision(decision: UnderwritingDecision, now: Optional[datetime] = None) -> List[str]:
        errors: List[str] = []
        if decision.decision not in DECISIONS:
            errors.append(f"invalid decision: {decision.decision}")
        if not 0 <= decision.confidence <= 1:
            errors.append("confidence must be between 0 and 1")
        if not 0 <= decision.risk_score <= 100:
            errors.append("risk score must be between 0 and 100")
        if decision.premium < 0:
            errors.append("premium cannot be negative")
        if not decision.currency:
            errors.append("currency is required")
        if decision.valid_until <= (now or utcnow()):
            errors.append("valid until date must be in the future")
        return errors
