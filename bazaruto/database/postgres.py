"""
Lightweight in-memory PostgresDB replacement for local development and tests.

Mirrors the repository interface of ``bazaruto.database.postgres_real`` so the
services can run without a database. Rows are stored as copies: callers only
change persisted state through ``update``.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from bazaruto.database.entities import (
    Claim,
    ClaimWorkflow,
    Customer,
    Payment,
    Policy,
    PolicyStatus,
    Product,
    Quote,
    Record,
    _plain,
)
from bazaruto.errors import ConflictError, NotFoundError
from bazaruto.utils.timeutil import utcnow

GRACE_SWEEP_STATUSES = (PolicyStatus.PENDING.value, PolicyStatus.ACTIVE.value, PolicyStatus.SUSPENDED.value)


def _matches(row: Record, filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    for key, value in filters.items():
        if value is None:
            continue
        if _plain(getattr(row, key, None)) != _plain(value):
            return False
    return True


class InMemoryRepository:
    """Soft-delete aware CRUD over a dict of entity copies."""

    entity: type = Record
    label = "record"
    number_field: Optional[str] = None

    def __init__(self, lock: threading.RLock) -> None:
        self._lock = lock
        self._rows: Dict[str, Any] = {}

    def _live(self) -> Iterable[Any]:
        return (r for r in self._rows.values() if r.deleted_at is None)

    def _check_unique(self, obj: Any) -> None:
        if not self.number_field:
            return
        number = getattr(obj, self.number_field)
        for row in self._live():
            if row.id != obj.id and getattr(row, self.number_field) == number:
                raise ConflictError(f"{self.label} with {self.number_field} {number} already exists")

    def create(self, obj: Any) -> Any:
        with self._lock:
            if obj.id in self._rows:
                raise ConflictError(f"{self.label} already exists: {obj.id}")
            self._check_unique(obj)
            self._rows[obj.id] = obj.copy()
            return obj.copy()

    def get(self, entity_id: str) -> Any:
        with self._lock:
            row = self._rows.get(entity_id)
            if row is None or row.deleted_at is not None:
                raise NotFoundError.for_entity(self.label, entity_id)
            return row.copy()

    def get_by_number(self, number: str) -> Any:
        if not self.number_field:
            raise NotImplementedError(f"{self.label} has no secondary key")
        with self._lock:
            for row in self._live():
                if getattr(row, self.number_field) == number:
                    return row.copy()
        raise NotFoundError.for_entity(self.label, number)

    def _select(self, filters: Optional[Dict[str, Any]] = None) -> List[Any]:
        rows = [r for r in self._live() if _matches(r, filters)]
        rows.sort(key=lambda r: (r.created_at, r.id))
        return rows

    def list(self, filters: Optional[Dict[str, Any]] = None, limit: Optional[int] = None, offset: int = 0) -> List[Any]:
        with self._lock:
            rows = self._select(filters)
            end = None if limit is None else offset + limit
            return [r.copy() for r in rows[offset:end]]

    def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        with self._lock:
            return len(self._select(filters))

    def update(self, obj: Any) -> Any:
        with self._lock:
            existing = self._rows.get(obj.id)
            if existing is None or existing.deleted_at is not None:
                raise NotFoundError.for_entity(self.label, obj.id)
            self._check_unique(obj)
            obj.updated_at = utcnow()
            self._rows[obj.id] = obj.copy()
            return obj.copy()

    def delete(self, entity_id: str) -> None:
        with self._lock:
            row = self._rows.get(entity_id)
            if row is None or row.deleted_at is not None:
                raise NotFoundError.for_entity(self.label, entity_id)
            row.deleted_at = utcnow()


class CustomerRepository(InMemoryRepository):
    entity = Customer
    label = "customer"
    number_field = "email"


class ProductRepository(InMemoryRepository):
    entity = Product
    label = "product"


class QuoteRepository(InMemoryRepository):
    entity = Quote
    label = "quote"
    number_field = "quote_number"


class ClaimRepository(InMemoryRepository):
    entity = Claim
    label = "claim"
    number_field = "claim_number"


class PaymentRepository(InMemoryRepository):
    entity = Payment
    label = "payment"
    number_field = "payment_number"


class PolicyRepository(InMemoryRepository):
    entity = Policy
    label = "policy"
    number_field = "policy_number"

    # ------------------------------------------------------------------ #
    # Sweep predicates
    # ------------------------------------------------------------------ #
    def _sweep(self, predicate) -> List[Policy]:
        with self._lock:
            rows = sorted((r for r in self._live() if predicate(r)), key=lambda r: (r.expiration_date, r.id))
            return [r.copy() for r in rows]

    def list_expired(self, now: datetime) -> List[Policy]:
        return self._sweep(lambda p: p.status == PolicyStatus.ACTIVE and p.expiration_date < now)

    def list_grace_period_expired(self, now: datetime) -> List[Policy]:
        return self._sweep(
            lambda p: p.grace_period_end is not None
            and p.grace_period_end < now
            and p.status in GRACE_SWEEP_STATUSES
        )

    def list_expiring_within(self, now: datetime, days: int) -> List[Policy]:
        horizon = now + timedelta(days=days)
        return self._sweep(lambda p: p.status == PolicyStatus.ACTIVE and now < p.expiration_date <= horizon)

    def has_renewal(self, policy_id: str) -> bool:
        with self._lock:
            return any(
                r.renewed_from_id == policy_id and r.status != PolicyStatus.CANCELLED for r in self._live()
            )

    def list_due_for_auto_renewal(self, now: datetime, window_days: int) -> List[Policy]:
        candidates = [p for p in self.list_expiring_within(now, window_days) if p.auto_renew]
        return [p for p in candidates if not self.has_renewal(p.id)]


class WorkflowRepository:
    """Claim workflows; one row per processing run."""

    def __init__(self, lock: threading.RLock) -> None:
        self._lock = lock
        self._rows: Dict[str, ClaimWorkflow] = {}

    def save(self, workflow: ClaimWorkflow) -> ClaimWorkflow:
        with self._lock:
            workflow.updated_at = utcnow()
            self._rows[workflow.id] = workflow.copy()
            return workflow

    def get(self, workflow_id: str) -> ClaimWorkflow:
        with self._lock:
            row = self._rows.get(workflow_id)
            if row is None:
                raise NotFoundError.for_entity("workflow", workflow_id)
            return row.copy()

    def list_for_claim(self, claim_id: str) -> List[ClaimWorkflow]:
        with self._lock:
            return [w.copy() for w in self._rows.values() if w.claim_id == claim_id]

    def get_latest_for_claim(self, claim_id: str) -> ClaimWorkflow:
        rows = self.list_for_claim(claim_id)
        if not rows:
            raise NotFoundError.for_entity("workflow for claim", claim_id)
        return rows[-1]


class PostgresDB:
    """
    In-memory stand-in for the Postgres-backed data access layer.

    Exposes one repository per entity; the real implementation lives in
    ``bazaruto.database.postgres_real``.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.customers = CustomerRepository(self._lock)
        self.products = ProductRepository(self._lock)
        self.quotes = QuoteRepository(self._lock)
        self.policies = PolicyRepository(self._lock)
        self.claims = ClaimRepository(self._lock)
        self.payments = PaymentRepository(self._lock)
        self.workflows = WorkflowRepository(self._lock)

    # ------------------------------------------------------------------ #
    # Schema / lifecycle
    # ------------------------------------------------------------------ #
    def create_tables(self) -> None:
        """No-op for the in-memory implementation."""
        return None

    def ping(self) -> bool:
        return True
