"""
Partner commission on policy premiums.

Rates, floors and caps come from the ``commission`` rules section, keyed by
product category. Calculations are kept in process memory until paid.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from bazaruto.errors import ConflictError, InvalidInputError, NotFoundError
from bazaruto.utils.business_rules import CommissionRules
from bazaruto.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

COMMISSION_TYPES = ("initial", "renewal", "adjustment")

# commission type -> payment schedule
_SCHEDULES = {"initial": "standard", "renewal": "extended", "adjustment": "expedited"}


@dataclass
class CommissionCalculation:
    policy_id: str
    partner_id: str
    product_id: str
    commission_type: str
    base_amount: float
    rate: float
    amount: float
    currency: str
    due_date: datetime
    calculated_at: datetime
    status: str = "calculated"
    paid_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metadata: Dict[str, Any] = field(default_factory=dict)


def commission_rate(rules: CommissionRules, category: str) -> float:
    return rules.default_rates.get(category, rules.default_rates.get("default", 0.0))


def _bound(values: Dict[str, float], category: str) -> Optional[float]:
    if category in values:
        return values[category]
    return values.get("default")


def commission_amount(rules: CommissionRules, category: str, base_amount: float) -> float:
    """Premium times the category rate, clamped to the category floor and cap."""
    amount = base_amount * commission_rate(rules, category) / 100.0
    floor = _bound(rules.min_amounts, category)
    cap = _bound(rules.max_amounts, category)
    if floor is not None:
        amount = max(amount, floor)
    if cap is not None:
        amount = min(amount, cap)
    return round(amount, 2)


def due_date(rules: CommissionRules, commission_type: str, now: datetime) -> datetime:
    schedule = _SCHEDULES[commission_type]
    days = rules.payment_schedule_days.get(schedule, rules.payment_schedule_days.get("standard", 30))
    return now + timedelta(days=days)


class CommissionService:
    def __init__(self, db, rules_manager) -> None:
        self._db = db
        self._rules = rules_manager
        self._calculations: Dict[str, CommissionCalculation] = {}
        self._lock = threading.Lock()

    def calculate(
        self, policy_id: str, commission_type: str = "initial", now: Optional[datetime] = None
    ) -> CommissionCalculation:
        if commission_type not in COMMISSION_TYPES:
            raise InvalidInputError(f"invalid commission type: {commission_type!r}")
        rules = self._rules.get_config().commission
        if not rules.enabled:
            raise InvalidInputError("commission calculation is disabled")

        policy = self._db.policies.get(policy_id)
        product = self._db.products.get(policy.product_id)
        if not product.partner_id:
            raise InvalidInputError(f"product {product.id} has no partner to pay commission to")

        now = now or utcnow()
        calculation = CommissionCalculation(
            policy_id=policy.id,
            partner_id=product.partner_id,
            product_id=product.id,
            commission_type=commission_type,
            base_amount=policy.premium,
            rate=commission_rate(rules, product.category),
            amount=commission_amount(rules, product.category, policy.premium),
            currency=policy.currency,
            due_date=due_date(rules, commission_type, now),
            calculated_at=now,
            metadata={"category": product.category, "policy_number": policy.policy_number},
        )
        with self._lock:
            self._calculations[calculation.id] = calculation
        logger.info(
            "Commission %s for policy %s: %.2f %s at %.1f%% to partner %s",
            calculation.id,
            policy.id,
            calculation.amount,
            calculation.currency,
            calculation.rate,
            calculation.partner_id,
        )
        return calculation

    def get(self, calculation_id: str) -> CommissionCalculation:
        with self._lock:
            calculation = self._calculations.get(calculation_id)
        if calculation is None:
            raise NotFoundError.for_entity("commission", calculation_id)
        return calculation

    def list_for_partner(self, partner_id: str, status: Optional[str] = None) -> List[CommissionCalculation]:
        with self._lock:
            rows = [
                c
                for c in self._calculations.values()
                if c.partner_id == partner_id and (status is None or c.status == status)
            ]
        return sorted(rows, key=lambda c: c.calculated_at)

    def pay(self, calculation_id: str, now: Optional[datetime] = None) -> CommissionCalculation:
        now = now or utcnow()
        with self._lock:
            calculation = self._calculations.get(calculation_id)
            if calculation is None:
                raise NotFoundError.for_entity("commission", calculation_id)
            if calculation.status != "calculated":
                raise ConflictError(f"commission {calculation_id} is {calculation.status}, expected calculated")
            calculation.status = "paid"
            calculation.paid_at = now
            calculation.transaction_id = f"comm_{int(now.timestamp())}_{calculation.id[:8]}"
        logger.info("Paid commission %s (%s)", calculation.id, calculation.transaction_id)
        return calculation

    def cancel(self, calculation_id: str) -> CommissionCalculation:
        with self._lock:
            calculation = self._calculations.get(calculation_id)
            if calculation is None:
                raise NotFoundError.for_entity("commission", calculation_id)
            if calculation.status == "paid":
                raise ConflictError(f"commission {calculation_id} is already paid")
            calculation.status = "cancelled"
        logger.info("Cancelled commission %s", calculation.id)
        return calculation
