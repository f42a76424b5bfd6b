import logging
from typing import Any, Dict, List, Optional

from bazaruto.database.entities import Customer, CustomerStatus, CustomerTier, RiskProfile
from bazaruto.errors import InvalidInputError
from bazaruto.events import events
from bazaruto.events.bus import publish_safely
from bazaruto.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

_STATUSES = {s.value for s in CustomerStatus}
_RISK_PROFILES = {r.value for r in RiskProfile}
_TIERS = {t.value for t in CustomerTier}
_IMMUTABLE = ("id", "created_at", "deleted_at")


def validate_customer(customer: Customer) -> None:
    errors = []
    if not customer.email or "@" not in customer.email:
        errors.append("a valid email is required")
    if customer.status not in _STATUSES:
        errors.append(f"invalid status: {customer.status}")
    if customer.risk_profile not in _RISK_PROFILES:
        errors.append(f"invalid risk_profile: {customer.risk_profile}")
    if customer.customer_tier not in _TIERS:
        errors.append(f"invalid customer_tier: {customer.customer_tier}")
    if errors:
        raise InvalidInputError("; ".join(errors))


class CustomerService:
    def __init__(self, db, bus=None) -> None:
        self._customers = db.customers
        self._bus = bus

    async def create_customer(self, customer: Customer) -> Customer:
        customer.email = customer.email.strip().lower()
        validate_customer(customer)
        customer = self._customers.create(customer)
        logger.info("Registered customer %s", customer.id)
        await publish_safely(
            self._bus,
            events.new_event(events.USER_REGISTERED, customer.id, email=customer.email, status=customer.status),
        )
        return customer

    def get_customer(self, customer_id: str) -> Customer:
        return self._customers.get(customer_id)

    def get_by_email(self, email: str) -> Customer:
        return self._customers.get_by_number(email.strip().lower())

    def list_customers(self, filters: Optional[Dict[str, Any]] = None, limit: int = 20, offset: int = 0) -> List[Customer]:
        return self._customers.list(filters, limit, offset)

    def count_customers(self, filters: Optional[Dict[str, Any]] = None) -> int:
        return self._customers.count(filters)

    def update_customer(self, customer_id: str, changes: Dict[str, Any]) -> Customer:
        data = self._customers.get(customer_id).to_dict()
        for key, value in changes.items():
            if key in _IMMUTABLE:
                continue
            if key not in data:
                raise InvalidInputError(f"unknown customer field: {key}")
            data[key] = value
        customer = Customer.from_dict(data)
        validate_customer(customer)
        customer.updated_at = utcnow()
        return self._customers.update(customer)

    def delete_customer(self, customer_id: str) -> None:
        self._customers.delete(customer_id)
