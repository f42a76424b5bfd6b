"""
Policy service: issuance, reads with expiry repair and guarded updates.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from bazaruto.database.entities import PaymentFrequency, Policy, PolicyStatus
from bazaruto.errors import InvalidInputError, NotFoundError
from bazaruto.events import events
from bazaruto.events.bus import publish_safely
from bazaruto.utils.timeutil import make_number, utcnow

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = ("product_id", "user_id", "policy_number")
_SYSTEM_FIELDS = ("id", "created_at", "updated_at", "deleted_at")
_STATUSES = {s.value for s in PolicyStatus}
_FREQUENCIES = {f.value for f in PaymentFrequency}


def validate_policy(policy: Policy) -> None:
    errors = []
    if not policy.product_id:
        errors.append("product_id is required")
    if not policy.user_id:
        errors.append("user_id is required")
    if policy.premium is None or policy.premium < 0:
        errors.append("premium must not be negative")
    if policy.coverage_amount is None or policy.coverage_amount <= 0:
        errors.append("coverage_amount must be greater than zero")
    if policy.payment_frequency not in _FREQUENCIES:
        errors.append(f"invalid payment_frequency: {policy.payment_frequency}")
    if policy.status not in _STATUSES:
        errors.append(f"invalid status: {policy.status}")
    if policy.expiration_date <= policy.effective_date:
        errors.append("expiration_date must be after effective_date")
    if errors:
        raise InvalidInputError("; ".join(errors))


class PolicyService:
    def __init__(self, db, quotes, bus=None) -> None:
        self._db = db
        self._policies = db.policies
        self._quotes = quotes
        self._bus = bus

    async def create_policy(self, policy: Policy) -> Policy:
        validate_policy(policy)
        try:
            self._db.products.get(policy.product_id)
            self._db.customers.get(policy.user_id)
        except NotFoundError as e:
            raise InvalidInputError(e.message) from e

        if policy.quote_id:
            quote = self._quotes.get_quote(policy.quote_id)
            if quote.user_id != policy.user_id or quote.product_id != policy.product_id:
                raise InvalidInputError("quote does not belong to this user and product")
            self._quotes.use_quote(quote.id)
            policy.premium = quote.final_price
            policy.currency = quote.currency

        if not policy.policy_number:
            policy.policy_number = make_number("P")
        policy = self._policies.create(policy)
        logger.info("Issued policy %s for user %s", policy.policy_number, policy.user_id)
        await self._publish_created(policy)
        return policy

    async def _publish_created(self, policy: Policy) -> None:
        await publish_safely(
            self._bus,
            events.new_event(
                events.POLICY_CREATED,
                policy.id,
                policy_number=policy.policy_number,
                user_id=policy.user_id,
                product_id=policy.product_id,
                premium=policy.premium,
                currency=policy.currency,
                status=policy.status,
                renewed_from_id=policy.renewed_from_id,
            ),
        )

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    def _repair(self, policy: Policy, now: Optional[datetime] = None) -> Policy:
        """Persist ``expired`` for an active policy whose term has elapsed."""
        if policy.status == PolicyStatus.ACTIVE and policy.is_expired(now):
            policy.status = PolicyStatus.EXPIRED.value
            policy.updated_at = now or utcnow()
            policy = self._policies.update(policy)
            logger.info("Policy %s expired on read", policy.policy_number)
        return policy

    def get_policy(self, policy_id: str, now: Optional[datetime] = None) -> Policy:
        return self._repair(self._policies.get(policy_id), now)

    def get_by_number(self, number: str, now: Optional[datetime] = None) -> Policy:
        return self._repair(self._policies.get_by_number(number), now)

    def list_policies(self, filters: Optional[Dict[str, Any]] = None, limit: int = 20, offset: int = 0) -> List[Policy]:
        now = utcnow()
        return [self._repair(p, now) for p in self._policies.list(filters, limit, offset)]

    def count_policies(self, filters: Optional[Dict[str, Any]] = None) -> int:
        return self._policies.count(filters)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #
    def update_policy(self, policy_id: str, changes: Dict[str, Any]) -> Policy:
        current = self._policies.get(policy_id)
        data = current.to_dict()
        for key, value in changes.items():
            if key in _SYSTEM_FIELDS:
                continue
            if key not in data:
                raise InvalidInputError(f"unknown policy field: {key}")
            if key in IMMUTABLE_FIELDS and value != data[key]:
                raise InvalidInputError(f"{key} cannot be changed after creation")
            data[key] = value

        policy = Policy.from_dict(data)
        if current.is_cancelled() and policy.status != PolicyStatus.CANCELLED:
            raise InvalidInputError(f"policy {current.policy_number} is cancelled")
        validate_policy(policy)
        policy.updated_at = utcnow()
        return self._policies.update(policy)

    def delete_policy(self, policy_id: str) -> None:
        self._policies.delete(policy_id)
