from datetime import datetime, timedelta, timezone

import pytest

from bazaruto.errors import InvalidInputError, NotFoundError
from bazaruto.services.pricing import PricingEngine
from bazaruto.services.risk import RiskAssessment, RiskAssessmentService, RiskProfile
from bazaruto.services.underwriting import (
    UnderwritingRequest,
    UnderwritingService,
    decide,
    decision_conditions,
)
from bazaruto.utils.business_rules import UnderwritingRules
from bazaruto.utils.timeutil import utcnow


def _service(db, rules_manager) -> UnderwritingService:
    return UnderwritingService(
        RiskAssessmentService(db, rules_manager), PricingEngine(db, rules_manager), rules_manager
    )


def _request(customer, product, **overrides) -> UnderwritingRequest:
    data = dict(
        user_id=customer.id,
        product_id=product.id,
        coverage_amount=50_000.0,
        effective_date=datetime(2030, 4, 1, tzinfo=timezone.utc),
        expiration_date=datetime(2031, 4, 1, tzinfo=timezone.utc),
    )
    data.update(overrides)
    return UnderwritingRequest(**data)


def _assessment(factor, score, severity, quality="good"):
    now = utcnow()
    return RiskAssessment(
        factor=factor,
        category=factor,
        score=score,
        weight=0.2,
        impact=1.0,
        description="",
        severity=severity,
        mitigation=f"mitigate {factor}",
        data_quality=quality,
        last_updated=now,
    )


def _profile(score, assessments):
    now = utcnow()
    return RiskProfile(
        overall_score=score,
        risk_level="high",
        risk_category="personal",
        assessments=assessments,
        recommendations=[],
        premium_adjustment=0.0,
        approval_status="conditional",
        conditions=[],
        assessment_date=now,
        valid_until=now + timedelta(days=90),
    )


def test_low_risk_application_is_approved(db, factory, rules_manager):
    customer = factory.customer()
    product = factory.product()
    service = _service(db, rules_manager)

    decision = service.process(_request(customer, product))

    assert decision.decision == "approved"
    assert decision.risk_score < 40
    assert decision.premium > 0
    assert decision.conditions == []
    # baseline 0.8, data quality good, good, fair, good, excellent, good, fair, excellent
    assert decision.confidence == pytest.approx((0.8 + 6.4 / 8) / 2)
    assert decision.reasons[0] == "Risk assessment indicates acceptable risk level"
    assert UnderwritingService.validate_decision(decision) == []
    assert service.get_decision(decision.id) is decision


def test_inactive_customer_is_declined(db, factory, rules_manager):
    customer = factory.customer(status="inactive")
    product = factory.product()

    decision = _service(db, rules_manager).process(_request(customer, product))

    assert decision.decision == "declined"
    assert "Critical risk in compliance_risk category" in decision.reasons
    assert "Ensure user account is in good standing before policy issuance" in decision.recommendations


def test_invalid_request_is_rejected(db, factory, rules_manager):
    customer = factory.customer()
    product = factory.product()
    request = _request(customer, product, coverage_amount=0)

    with pytest.raises(InvalidInputError):
        _service(db, rules_manager).process(request)


def test_decision_thresholds():
    rules = UnderwritingRules()
    assert decide(_profile(85, []), rules) == "declined"
    assert decide(_profile(65, []), rules) == "conditional"
    assert decide(_profile(45, []), rules) == "pending_review"
    assert decide(_profile(20, []), rules) == "approved"
    assert decide(_profile(10, [_assessment("compliance_risk", 80, "critical")]), rules) == "declined"


def test_conditional_decision_conditions_have_deadlines():
    rules = UnderwritingRules()
    now = utcnow()
    profile = _profile(
        65,
        [
            _assessment("financial_risk", 60, "high"),
            _assessment("behavioral_risk", 60, "high"),
            _assessment("product_specific_risk", 70, "high"),
        ],
    )

    conditions = decision_conditions("conditional", profile, 750_000, rules, now)

    by_type = {c.type: c for c in conditions}
    assert set(by_type) == {"documentation", "monitoring", "inspection", "payment"}
    assert by_type["documentation"].deadline == now + timedelta(days=30)
    assert by_type["monitoring"].deadline == now + timedelta(days=90)
    assert by_type["inspection"].deadline == now + timedelta(days=14)
    assert by_type["payment"].deadline == now + timedelta(days=7)
    assert decision_conditions("approved", profile, 750_000, rules, now) == []


def test_review_overrides_decision_and_keeps_history(db, factory, rules_manager):
    customer = factory.customer()
    product = factory.product()
    service = _service(db, rules_manager)
    first = service.process(_request(customer, product))
    second = service.process(_request(customer, product, coverage_amount=80_000.0))

    reviewed = service.review_decision(first.id, "underwriter-7", "declined", reason="Missing disclosures")

    assert reviewed.id == first.id
    assert reviewed.decision == "declined"
    assert reviewed.confidence == 1.0
    assert reviewed.reasons == ["Missing disclosures"]
    assert reviewed.metadata["original_decision"] == "approved"
    assert reviewed.metadata["reviewer_id"] == "underwriter-7"
    assert service.get_decision(first.id).decision == "declined"
    assert [d.id for d in service.get_history(customer.id)] == [second.id, first.id]


def test_review_validation(db, factory, rules_manager):
    customer = factory.customer()
    service = _service(db, rules_manager)
    decision = service.process(_request(customer, factory.product()))

    with pytest.raises(InvalidInputError):
        service.review_decision(decision.id, "underwriter-7", "maybe")
    with pytest.raises(InvalidInputError):
        service.review_decision(decision.id, "", "approved")
    with pytest.raises(NotFoundError):
        service.review_decision("missing", "underwriter-7", "approved")


def test_oldest_decisions_are_dropped_past_the_cap(db, factory, rules_manager):
    customer = factory.customer()
    product = factory.product()
    service = UnderwritingService(
        RiskAssessmentService(db, rules_manager), PricingEngine(db, rules_manager), rules_manager, max_decisions=2
    )

    first, second, third = (service.process(_request(customer, product)) for _ in range(3))

    with pytest.raises(NotFoundError):
        service.get_decision(first.id)
    assert [d.id for d in service.get_history(customer.id)] == [second.id, third.id]


def test_expired_decisions_are_dropped(db, factory, rules_manager):
    customer = factory.customer()
    other = factory.customer(email="other@example.com")
    product = factory.product()
    service = _service(db, rules_manager)
    now = utcnow()

    stale = service.process(_request(customer, product), now=now - timedelta(days=45))
    fresh = service.process(_request(other, product), now=now)

    with pytest.raises(NotFoundError):
        service.get_decision(stale.id)
    assert service.get_history(customer.id) == []
    assert service.get_decision(fresh.id) is fresh
