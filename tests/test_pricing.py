from datetime import datetime, timedelta, timezone

import pytest

from bazaruto.errors import InvalidInputError, NotFoundError
from bazaruto.services.pricing import PricingEngine, PricingRequest


def _request(customer, product, **overrides) -> PricingRequest:
    data = dict(
        product_id=product.id,
        user_id=customer.id,
        coverage_amount=100_000.0,
        effective_date=datetime(2024, 3, 15, tzinfo=timezone.utc),
        expiration_date=datetime(2025, 3, 15, tzinfo=timezone.utc),
        payment_frequency="annually",
    )
    data.update(overrides)
    return PricingRequest(**data)


def test_baseline_premium_for_new_customer(db, factory, rules_manager):
    customer = factory.customer()
    product = factory.product(category="auto")
    engine = PricingEngine(db, rules_manager)

    result = engine.calculate_premium(_request(customer, product), now=customer.created_at)

    assert result.base_premium == pytest.approx(1500.0)
    assert result.final_premium == pytest.approx(9500.0)
    assert result.currency == "USD"

    b = result.breakdown
    assert b.base_rate == 15
    assert b.tax_adjustment == pytest.approx(8000.0)
    assert b.frequency_adjustment == pytest.approx(-5000.0)
    assert b.market_adjustment == pytest.approx(3000.0)
    assert b.risk_adjustment == pytest.approx(2000.0)
    assert b.coverage_adjustment == 0
    assert b.discount_adjustment == 0
    assert b.total_adjustment == pytest.approx(8000.0)

    assert [f.factor for f in result.factors] == [
        "coverage_amount",
        "risk_assessment",
        "discounts",
        "taxes",
        "payment_frequency",
        "market_conditions",
        "loyalty",
        "seasonal",
    ]
    assert result.factor("seasonal").impact == "neutral"
    assert result.factor("taxes").impact == "positive"
    assert result.valid_until == customer.created_at + timedelta(hours=24)
    assert PricingEngine.validate_result(result) == []


def test_established_customer_gets_loyalty_and_history_discounts(db, factory, rules_manager):
    now = datetime(2024, 3, 1, tzinfo=timezone.utc)
    customer = factory.customer(created_at=now - timedelta(days=365 * 3))
    product = factory.product(category="auto")

    result = PricingEngine(db, rules_manager).calculate_premium(_request(customer, product), now=now)

    assert result.factor("risk_assessment").value == pytest.approx(-500.0)
    assert result.factor("loyalty").value == pytest.approx(-3000.0)
    assert result.breakdown.discount_adjustment == pytest.approx(-3000.0)
    assert result.final_premium == pytest.approx(1500 + 8000 - 5000 + 3000 - 500 - 3000)


def test_discounts_coverage_and_seasonal_factors(db, factory, rules_manager):
    customer = factory.customer()
    product = factory.product(category="home")
    request = _request(
        customer,
        product,
        coverage_amount=2_000_000.0,
        effective_date=datetime(2024, 1, 10, tzinfo=timezone.utc),
        expiration_date=datetime(2025, 1, 10, tzinfo=timezone.utc),
        discounts=["multi_policy", "not_a_discount"],
    )

    result = PricingEngine(db, rules_manager).calculate_premium(request, now=customer.created_at)

    assert result.base_premium == pytest.approx(8 * 2000)
    assert result.factor("coverage_amount").value == pytest.approx(2000.0)
    assert result.factor("discounts").value == pytest.approx(-200_000.0)
    assert result.factor("discounts").description == "Multi policy discount"
    assert result.factor("seasonal").value == pytest.approx(40_000.0)
    assert result.factor("seasonal").description == "Winter season adjustment"


def test_negative_adjusted_premium_is_floored_at_zero(db, factory, rules_manager):
    customer = factory.customer()
    product = factory.product()
    request = _request(customer, product, discounts=["multi_policy", "safe_driver", "security_system", "loyalty"])

    result = PricingEngine(db, rules_manager).calculate_premium(request, now=customer.created_at)

    assert result.adjusted_premium < 0
    assert result.final_premium == 0
    assert PricingEngine.validate_result(result) == []


def test_short_term_base_premium_is_prorated(db, factory, rules_manager):
    customer = factory.customer()
    product = factory.product(category="auto")
    start = datetime(2024, 4, 1, tzinfo=timezone.utc)
    request = _request(customer, product, effective_date=start, expiration_date=start + timedelta(days=182.5))

    result = PricingEngine(db, rules_manager).calculate_premium(request, now=customer.created_at)

    assert result.base_premium == pytest.approx(750.0)


def test_custom_risk_factors_are_added(db, factory, rules_manager):
    customer = factory.customer()
    product = factory.product()
    request = _request(customer, product, risk_factors={"custom_factors": {"young_driver": 250, "flag": True}})

    result = PricingEngine(db, rules_manager).calculate_premium(request, now=customer.created_at)

    factor = result.factor("risk_assessment")
    assert factor.value == pytest.approx(2250.0)
    assert "young_driver: 250.00" in factor.description


def test_rule_updates_apply_to_the_next_calculation(db, factory, rules_manager):
    customer = factory.customer()
    product = factory.product()
    engine = PricingEngine(db, rules_manager)
    before = engine.calculate_premium(_request(customer, product), now=customer.created_at)

    rules_manager.update_section("pricing", {"tax_rate": 0.1})
    after = engine.calculate_premium(_request(customer, product), now=customer.created_at)

    assert after.breakdown.tax_adjustment - before.breakdown.tax_adjustment == pytest.approx(2000.0)


@pytest.mark.parametrize(
    "overrides",
    [
        {"coverage_amount": 0},
        {"coverage_amount": -10},
        {"expiration_date": datetime(2024, 3, 15, tzinfo=timezone.utc)},
        {"expiration_date": datetime(2023, 3, 15, tzinfo=timezone.utc)},
    ],
)
def test_invalid_requests_are_rejected(db, factory, rules_manager, overrides):
    customer = factory.customer()
    product = factory.product()

    with pytest.raises(InvalidInputError):
        PricingEngine(db, rules_manager).calculate_premium(_request(customer, product, **overrides))


def test_unknown_product_is_not_found(db, factory, rules_manager):
    customer = factory.customer()
    product = factory.product()
    request = _request(customer, product, product_id="missing")

    with pytest.raises(NotFoundError):
        PricingEngine(db, rules_manager).calculate_premium(request)


def test_compare_pricing_reports_difference_against_base(db, factory, rules_manager):
    customer = factory.customer()
    product = factory.product()
    engine = PricingEngine(db, rules_manager)

    comparisons = engine.compare_pricing(
        _request(customer, product),
        [_request(customer, product, payment_frequency="monthly")],
        now=customer.created_at,
    )

    base, monthly = comparisons
    assert base.scenario == "Base"
    assert base.difference == 0
    assert monthly.scenario == "Scenario 1"
    assert monthly.difference == pytest.approx(10_000.0)
    assert monthly.percentage_change == pytest.approx(10_000.0 / 9500.0 * 100)


def test_caller_request_is_not_modified(db, factory, rules_manager):
    customer = factory.customer()
    product = factory.product()
    engine = PricingEngine(db, rules_manager)
    request = _request(customer, product, effective_date=datetime(2024, 3, 15), expiration_date=datetime(2025, 3, 15))

    result = engine.calculate_premium(request, now=customer.created_at)

    assert result.final_premium > 0
    assert request.effective_date.tzinfo is None
    assert request.expiration_date.tzinfo is None
