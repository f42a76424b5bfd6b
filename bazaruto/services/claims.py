"""
Claim intake and guarded updates. Workflow processing lives in
``bazaruto.services.claim_workflow``.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from bazaruto.database.entities import Claim, ClaimDocument, ClaimStatus, PolicyStatus
from bazaruto.errors import InvalidInputError, NotFoundError
from bazaruto.utils.timeutil import make_number, parse_datetime, utcnow

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = ("policy_id", "user_id", "claim_number", "incident_date", "reported_date")
_SYSTEM_FIELDS = ("id", "created_at", "updated_at", "deleted_at")
_STATUSES = {s.value for s in ClaimStatus}


def validate_claim(claim: Claim, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    errors = []
    if not (claim.title or "").strip():
        errors.append("title is required")
    if not (claim.description or "").strip():
        errors.append("description is required")
    if claim.claim_amount is None or claim.claim_amount <= 0:
        errors.append("claim_amount must be greater than zero")
    if claim.status not in _STATUSES:
        errors.append(f"invalid status: {claim.status}")
    if claim.paid_amount < 0 or (claim.claim_amount is not None and claim.paid_amount > claim.claim_amount):
        errors.append("paid_amount must be between 0 and claim_amount")
    if claim.incident_date > now:
        errors.append("incident_date cannot be in the future")
    if claim.reported_date < claim.incident_date:
        errors.append("reported_date cannot be before incident_date")
    if errors:
        raise InvalidInputError("; ".join(errors))


class ClaimService:
    def __init__(self, db) -> None:
        self._claims = db.claims
        self._policies = db.policies

    def create_claim(self, claim: Claim) -> Claim:
        now = utcnow()
        claim.status = ClaimStatus.SUBMITTED.value
        claim.paid_amount = 0.0
        validate_claim(claim, now)

        try:
            policy = self._policies.get(claim.policy_id)
        except NotFoundError as e:
            raise InvalidInputError(e.message) from e
        if policy.status != PolicyStatus.ACTIVE or policy.is_expired(now):
            raise InvalidInputError(f"policy {policy.policy_number} is not active")
        if not policy.covers(claim.incident_date):
            raise InvalidInputError("incident_date is outside the policy period")
        if policy.user_id != claim.user_id:
            raise InvalidInputError("claim user does not own the policy")

        claim.claim_number = claim.claim_number or make_number("C")
        claim = self._claims.create(claim)
        logger.info("Claim %s submitted against policy %s", claim.claim_number, policy.policy_number)
        return claim

    def get_claim(self, claim_id: str) -> Claim:
        return self._claims.get(claim_id)

    def get_by_number(self, number: str) -> Claim:
        return self._claims.get_by_number(number)

    def list_claims(self, filters: Optional[Dict[str, Any]] = None, limit: int = 20, offset: int = 0) -> List[Claim]:
        return self._claims.list(filters, limit, offset)

    def count_claims(self, filters: Optional[Dict[str, Any]] = None) -> int:
        return self._claims.count(filters)

    def update_claim(self, claim_id: str, changes: Dict[str, Any]) -> Claim:
        current = self._claims.get(claim_id)
        data = current.to_dict()
        for key, value in changes.items():
            if key in _SYSTEM_FIELDS:
                continue
            if key not in data:
                raise InvalidInputError(f"unknown claim field: {key}")
            if key in IMMUTABLE_FIELDS:
                incoming = parse_datetime(value) if key.endswith("_date") else value
                if incoming != data[key]:
                    raise InvalidInputError(f"{key} cannot be changed after creation")
            data[key] = value

        claim = Claim.from_dict(data)
        validate_claim(claim, now=max(utcnow(), claim.incident_date))
        claim.updated_at = utcnow()
        return self._claims.update(claim)

    def add_document(self, claim_id: str, document: ClaimDocument) -> Claim:
        if not document.name:
            raise InvalidInputError("document name is required")
        if document.file_size < 0:
            raise InvalidInputError("document file_size must not be negative")
        claim = self._claims.get(claim_id)
        claim.documents.append(document)
        claim.updated_at = utcnow()
        return self._claims.update(claim)

    def delete_claim(self, claim_id: str) -> None:
        self._claims.delete(claim_id)
