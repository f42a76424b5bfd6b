"""
Premium pricing engine.

A premium is a base rate per 1000 of coverage plus a list of independent
adjustment factors. Each factor is a small pure function of the request, the
product, the customer and the pricing rules; its value lands in one bucket of
the breakdown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from bazaruto.database.entities import Customer, Product
from bazaruto.errors import InvalidInputError
from bazaruto.utils.business_rules import PricingRules
from bazaruto.utils.timeutil import ensure_aware, utcnow, years_between

logger = logging.getLogger(__name__)

CALCULATION_VERSION = "2.0"

WINTER_MONTHS = (12, 1, 2)
SUMMER_MONTHS = (6, 7, 8)


@dataclass
class PricingRequest:
    product_id: str
    user_id: str
    coverage_amount: float
    effective_date: datetime
    expiration_date: datetime
    currency: str = "USD"
    payment_frequency: str = "annually"
    risk_factors: Dict[str, Any] = field(default_factory=dict)
    discounts: List[str] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PricingFactor:
    factor: str
    type: str
    value: float
    description: str
    impact: str


@dataclass
class PricingBreakdown:
    base_rate: float = 0.0
    coverage_adjustment: float = 0.0
    risk_adjustment: float = 0.0
    discount_adjustment: float = 0.0
    tax_adjustment: float = 0.0
    frequency_adjustment: float = 0.0
    market_adjustment: float = 0.0
    total_adjustment: float = 0.0


@dataclass
class PricingResult:
    base_premium: float
    adjusted_premium: float
    final_premium: float
    currency: str
    breakdown: PricingBreakdown
    factors: List[PricingFactor]
    valid_until: datetime
    calculated_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    def factor(self, name: str) -> Optional[PricingFactor]:
        for f in self.factors:
            if f.factor == name:
                return f
        return None


@dataclass
class PricingComparison:
    scenario: str
    result: PricingResult
    difference: float
    percentage_change: float


@dataclass
class _Context:
    request: PricingRequest
    product: Product
    customer: Customer
    rules: PricingRules
    now: datetime

    @property
    def coverage(self) -> float:
        return self.request.coverage_amount

    @property
    def account_age_years(self) -> float:
        return years_between(self.customer.created_at, self.now)


def _impact(value: float) -> str:
    if value > 0:
        return "positive"
    if value < 0:
        return "negative"
    return "neutral"


def _factor(name: str, kind: str, value: float, description: str) -> PricingFactor:
    return PricingFactor(factor=name, type=kind, value=value, description=description, impact=_impact(value))


# ---------------------------------------------------------------------------
# Factors
# ---------------------------------------------------------------------------


def coverage_factor(ctx: _Context) -> PricingFactor:
    r = ctx.rules.coverage_rules
    if ctx.coverage > r.high_threshold:
        return _factor("coverage_amount", "rate", ctx.coverage * r.high_rate, "High-value coverage surcharge")
    if ctx.coverage > r.medium_threshold:
        return _factor("coverage_amount", "rate", ctx.coverage * r.medium_rate, "Moderate-value coverage adjustment")
    return _factor("coverage_amount", "rate", 0.0, "Standard coverage amount")


def risk_factor(ctx: _Context) -> PricingFactor:
    r = ctx.rules.risk_rules
    age = ctx.account_age_years
    if age < r.new_account_years:
        value, description = ctx.coverage * r.new_account_rate, "New customer risk surcharge"
    elif age < r.young_account_years:
        value, description = ctx.coverage * r.young_account_rate, "Moderate customer history"
    else:
        value, description = ctx.coverage * r.established_rate, "Established customer discount"

    custom = ctx.request.risk_factors.get("custom_factors")
    if isinstance(custom, dict):
        for risk_type, risk_value in custom.items():
            if isinstance(risk_value, (int, float)) and not isinstance(risk_value, bool):
                value += float(risk_value)
                description += f"; {risk_type}: {float(risk_value):.2f}"
    return _factor("risk_assessment", "rate", value, description)


def discount_factor(ctx: _Context) -> PricingFactor:
    rates = ctx.rules.discount_rates
    value = 0.0
    applied = []
    for name in ctx.request.discounts:
        if name not in rates:
            continue
        value -= ctx.coverage * rates[name]
        applied.append(name.replace("_", " ").capitalize() + " discount")
    if not applied:
        return _factor("discounts", "discount", 0.0, "No applicable discounts")
    return _factor("discounts", "discount", value, "; ".join(applied))


def tax_factor(ctx: _Context) -> PricingFactor:
    rate = ctx.rules.tax_rate
    return _factor("taxes", "tax", ctx.coverage * rate, f"Insurance tax ({rate * 100:.1f}%)")


def frequency_factor(ctx: _Context) -> PricingFactor:
    frequency = ctx.request.payment_frequency
    rate = ctx.rules.frequency_rates.get(frequency)
    if rate is None or rate == 0:
        return _factor("payment_frequency", "frequency", 0.0, "Standard payment frequency")
    label = "discount" if rate < 0 else "surcharge"
    return _factor("payment_frequency", "frequency", ctx.coverage * rate, f"{frequency.capitalize()} payment {label}")


def market_factor(ctx: _Context) -> PricingFactor:
    return _factor(
        "market_conditions", "market", ctx.coverage * ctx.rules.market_rate, "Current market conditions adjustment"
    )


def loyalty_factor(ctx: _Context) -> PricingFactor:
    r = ctx.rules.loyalty_rules
    age = ctx.account_age_years
    if age > r.long_years:
        return _factor("loyalty", "discount", ctx.coverage * r.long_rate, "Long-term customer loyalty discount")
    if age > r.medium_years:
        return _factor("loyalty", "discount", ctx.coverage * r.medium_rate, "Customer loyalty discount")
    return _factor("loyalty", "discount", 0.0, "No loyalty discount applicable")


def seasonal_factor(ctx: _Context) -> PricingFactor:
    month = ctx.request.effective_date.month
    rates = ctx.rules.seasonal_rates
    if month in WINTER_MONTHS:
        return _factor("seasonal", "rate", ctx.coverage * rates.winter, "Winter season adjustment")
    if month in SUMMER_MONTHS:
        return _factor("seasonal", "rate", ctx.coverage * rates.summer, "Summer season adjustment")
    return _factor("seasonal", "rate", 0.0, "Standard seasonal rate")


@dataclass(frozen=True)
class FactorSpec:
    name: str
    bucket: str
    compute: Callable[[_Context], PricingFactor]


FACTORS: List[FactorSpec] = [
    FactorSpec("coverage_amount", "coverage_adjustment", coverage_factor),
    FactorSpec("risk_assessment", "risk_adjustment", risk_factor),
    FactorSpec("discounts", "discount_adjustment", discount_factor),
    FactorSpec("taxes", "tax_adjustment", tax_factor),
    FactorSpec("payment_frequency", "frequency_adjustment", frequency_factor),
    FactorSpec("market_conditions", "market_adjustment", market_factor),
    FactorSpec("loyalty", "discount_adjustment", loyalty_factor),
    FactorSpec("seasonal", "risk_adjustment", seasonal_factor),
]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def validate_pricing_request(request: PricingRequest) -> List[str]:
    errors: List[str] = []
    if not request.product_id:
        errors.append("product_id is required")
    if not request.user_id:
        errors.append("user_id is required")
    if request.coverage_amount is None or request.coverage_amount <= 0:
        errors.append("coverage_amount must be greater than zero")
    if not request.currency:
        errors.append("currency is required")
    if not request.payment_frequency:
        errors.append("payment_frequency is required")
    if request.effective_date is None:
        errors.append("effective_date is required")
    if request.expiration_date is None:
        errors.append("expiration_date is required")
    if request.effective_date and request.expiration_date:
        if ensure_aware(request.expiration_date) <= ensure_aware(request.effective_date):
            errors.append("expiration_date must be after effective_date")
    return errors


class PricingEngine:
    def __init__(self, db, rules_manager) -> None:
        self._products = db.products
        self._customers = db.customers
        self._rules = rules_manager

    def calculate_premium(self, request: PricingRequest, now: Optional[datetime] = None) -> PricingResult:
        errors = validate_pricing_request(request)
        if errors:
            raise InvalidInputError("invalid pricing request: " + "; ".join(errors))
        request = replace(
            request,
            effective_date=ensure_aware(request.effective_date),
            expiration_date=ensure_aware(request.expiration_date),
        )

        rules = self._rules.get_config().pricing
        product = self._products.get(request.product_id)
        customer = self._customers.get(request.user_id)
        now = now or utcnow()
        ctx = _Context(request=request, product=product, customer=customer, rules=rules, now=now)

        base_premium = self.base_premium(ctx)
        breakdown = PricingBreakdown(base_rate=rules.base_rates.get(product.category, rules.base_rates["default"]))
        factors: List[PricingFactor] = []
        for spec in FACTORS:
            f = spec.compute(ctx)
            factors.append(f)
            setattr(breakdown, spec.bucket, getattr(breakdown, spec.bucket) + f.value)
        breakdown.total_adjustment = sum(f.value for f in factors)

        adjusted = base_premium + breakdown.total_adjustment
        result = PricingResult(
            base_premium=base_premium,
            adjusted_premium=adjusted,
            final_premium=max(0.0, adjusted),
            currency=request.currency,
            breakdown=breakdown,
            factors=factors,
            valid_until=now + timedelta(hours=rules.quote_validity_hours),
            calculated_at=now,
            metadata={
                "product_id": product.id,
                "product_category": product.category,
                "user_id": customer.id,
                "calculation_version": CALCULATION_VERSION,
                "rules_version": rules.version,
            },
        )
        logger.debug("Priced %s for %s: %.2f", product.id, customer.id, result.final_premium)
        return result

    @staticmethod
    def base_premium(ctx: _Context) -> float:
        rates = ctx.rules.base_rates
        rate = rates.get(ctx.product.category, rates["default"])
        premium = rate * (ctx.coverage / 1000.0)
        years = years_between(ctx.request.effective_date, ctx.request.expiration_date)
        if years < 1:
            premium *= years
        return premium

    def compare_pricing(
        self, base: PricingRequest, scenarios: List[PricingRequest], now: Optional[datetime] = None
    ) -> List[PricingComparison]:
        now = now or utcnow()
        base_result = self.calculate_premium(base, now)
        comparisons = [PricingComparison("Base", base_result, 0.0, 0.0)]
        for i, scenario in enumerate(scenarios, start=1):
            result = self.calculate_premium(scenario, now)
            difference = result.final_premium - base_result.final_premium
            percentage = (difference / base_result.final_premium * 100) if base_result.final_premium else 0.0
            comparisons.append(PricingComparison(f"Scenario {i}", result, difference, percentage))
        return comparisons

    @staticmethod
    def validate_result(result: PricingResult) -> List[str]:
        """
        Return a list of consistency errors.
        Empty list means the result is valid.
        """
        errors: List[str] = []
        if result.base_premium < 0:
            errors.append("base_premium must not be negative")
        if result.final_premium < 0:
            errors.append("final_premium must not be negative")
        if not result.currency:
            errors.append("currency is required")
        if result.valid_until <= result.calculated_at:
            errors.append("valid_until must be after calculated_at")
        total = sum(f.value for f in result.factors)
        if abs(total - result.breakdown.total_adjustment) > 0.01:
            errors.append("breakdown total does not match factor values")
        if abs(result.base_premium + result.breakdown.total_adjustment - result.adjusted_premium) > 0.01:
            errors.append("adjusted_premium does not equal base_premium plus adjustments")
        return errors
