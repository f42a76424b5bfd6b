from datetime import datetime, timedelta, timezone

import pytest

from bazaruto.database.entities import Address
from bazaruto.errors import FraudDetectionDisabledError
from bazaruto.events import events
from bazaruto.services.fraud import (
    FraudDetectionService,
    FraudFactor,
    fraud_confidence,
    fraud_risk_level,
    requires_manual_review,
)
from bazaruto.utils.business_rules import FraudDetectionRules

EFFECTIVE = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _factors(score):
    return {f.factor: f for f in score.factors}


def _june_policy(factory, customer):
    product = factory.product()
    return factory.policy(
        customer,
        product,
        effective_date=EFFECTIVE,
        expiration_date=EFFECTIVE + timedelta(days=365),
        created_at=EFFECTIVE,
    )


@pytest.mark.asyncio
async def test_claim_timing_uses_configured_multipliers(db, factory, rules_manager):
    rules_manager.update_section(
        "fraud_detection",
        {
            "timing_rules": {
                "policy_start_threshold_days": 30,
                "weekend_multiplier": 1.5,
                "business_hours_multiplier": 1.2,
            }
        },
    )
    customer = factory.customer(created_at=EFFECTIVE - timedelta(days=800))
    policy = _june_policy(factory, customer)
    incident = datetime(2024, 6, 10, 10, 0, tzinfo=timezone.utc)  # Monday
    claim = factory.claim(customer, policy, incident_date=incident, reported_date=incident + timedelta(days=1))

    service = FraudDetectionService(db, rules_manager)
    score = await service.analyze_claim(claim.id, now=incident + timedelta(days=2))

    timing = _factors(score)["claim_timing"]
    assert timing.score == pytest.approx(96.0)
    assert timing.severity == "high"
    assert timing.weight == 0.20
    assert "weekend" not in timing.description.lower()
    assert "business hours" in timing.description


@pytest.mark.asyncio
async def test_reporting_delay_and_weekend_increase_timing_score(db, factory, rules_manager):
    customer = factory.customer()
    policy = _june_policy(factory, customer)
    incident = datetime(2024, 10, 5, 22, 0, tzinfo=timezone.utc)  # Saturday night
    claim = factory.claim(customer, policy, incident_date=incident, reported_date=incident + timedelta(days=45))

    score = await FraudDetectionService(db, rules_manager).analyze_claim(claim.id, now=incident + timedelta(days=46))

    timing = _factors(score)["claim_timing"]
    # 10 (established policy) + 20 (late report), times the 1.2 weekend multiplier
    assert timing.score == pytest.approx(36.0)
    assert timing.severity == "medium"
    assert "Significant delay in reporting" in timing.description


@pytest.mark.asyncio
async def test_low_risk_claim_scores_low_and_publishes_event(db, factory, rules_manager, bus, collect):
    received = collect(bus, events.FRAUD_ANALYSIS_COMPLETED)
    customer = factory.customer(
        created_at=EFFECTIVE - timedelta(days=1000),
        addresses=[Address(country="US", is_primary=True)],
    )
    policy = _june_policy(factory, customer)
    incident = datetime(2024, 11, 6, 20, 0, tzinfo=timezone.utc)  # Wednesday evening
    claim = factory.claim(customer, policy, incident_date=incident, reported_date=incident + timedelta(days=1))

    service = FraudDetectionService(db, rules_manager, bus)
    score = await service.analyze_claim(claim.id, now=incident + timedelta(days=2))
    await bus.wait_idle(timeout=1)

    factors = _factors(score)
    assert factors["claim_amount"].score == 5
    assert factors["incident_patterns"].score == 25
    assert factors["incident_patterns"].severity == "medium"
    assert factors["documentation"].score == 10
    assert factors["geographic_risk"].score == 20
    assert factors["policy_history"].score == 30
    assert score.score == pytest.approx(13.5)
    assert score.risk_level == "low"
    assert score.requires_review is False
    assert score.confidence == pytest.approx(1.0)
    assert score.recommendations[0] == "Standard processing can proceed"
    assert score.metadata["claim_id"] == claim.id

    assert len(received) == 1
    assert received[0].aggregate_id == claim.id
    assert received[0].payload["risk_level"] == "low"
    assert len(received[0].payload["factor_names"]) == 8
    await bus.close()


@pytest.mark.asyncio
async def test_suspicious_claim_requires_review(db, factory, rules_manager):
    customer = factory.customer(kyc_status="pending", aml_status="pending", risk_profile="very_high")
    product = factory.product()
    policy = factory.policy(customer, product, coverage_amount=20_000.0)
    incident = policy.effective_date + timedelta(days=2)
    claim = factory.claim(
        customer,
        policy,
        claim_amount=19_000.0,
        description="Stolen.",
        documents=[],
        incident_date=incident,
        reported_date=incident + timedelta(hours=1),
    )

    score = await FraudDetectionService(db, rules_manager).analyze_claim(claim.id)

    factors = _factors(score)
    assert factors["customer_history"].score == 100
    assert factors["documentation"].score == 80
    assert factors["claim_amount"].severity == "high"
    assert 0 <= score.score <= 100
    assert score.requires_review is True
    assert "Request comprehensive supporting documentation" in score.recommendations


@pytest.mark.asyncio
async def test_disabled_fraud_detection_raises(db, factory, rules_manager):
    rules_manager.update_section("fraud_detection", {"enabled": False})
    customer = factory.customer()
    policy = factory.policy(customer, factory.product())
    claim = factory.claim(customer, policy)

    with pytest.raises(FraudDetectionDisabledError):
        await FraudDetectionService(db, rules_manager).analyze_claim(claim.id)


def _factor(name, score, severity, weight=0.1):
    return FraudFactor(factor=name, weight=weight, score=score, description="", severity=severity)


def test_manual_review_triggers():
    rules = FraudDetectionRules()
    low = [_factor("a", 10, "low")]
    assert requires_manual_review(70, low, rules) is True
    assert requires_manual_review(20, low, rules) is False
    assert requires_manual_review(20, [_factor("a", 10, "critical")], rules) is True
    assert requires_manual_review(20, [_factor("a", 10, "high"), _factor("b", 10, "high")], rules) is True
    assert requires_manual_review(20, [_factor("a", 10, "high")], rules) is False


def test_risk_level_and_confidence():
    rules = FraudDetectionRules()
    assert fraud_risk_level(29, rules) == "low"
    assert fraud_risk_level(60, rules) == "medium"
    assert fraud_risk_level(85, rules) == "high"
    assert fraud_risk_level(90, rules) == "critical"

    half = [_factor(str(i), 10, "low", weight=0.1) for i in range(4)] + [
        _factor(str(i), 10, "low", weight=0.0) for i in range(4, 8)
    ]
    assert fraud_confidence(half) == pytest.approx((0.4 + 0.5) / 2)
