"""
Real Postgres-backed repositories for production when DATABASE_URL is set.
Implements the same interface as bazaruto.database.postgres (in-memory stub).
"""

from __future__ import annotations

import json
import re
from contextlib import contextmanager
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import and_, create_engine, exists, func, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased, sessionmaker

from bazaruto.database import entities
from bazaruto.database import models
from bazaruto.database.postgres import GRACE_SWEEP_STATUSES
from bazaruto.errors import ConflictError, InvalidInputError, NotFoundError, RepositoryError
from bazaruto.utils.timeutil import utcnow


def _normalize_connection_string(s: str) -> str:
    """Strip common mistakes: 'psql \'...\'', extra quotes, whitespace, bare postgres:// scheme."""
    s = s.strip()
    if re.match(r"^psql\s+", s, re.IGNORECASE):
        s = re.sub(r"^psql\s+", "", s, flags=re.IGNORECASE).strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        s = s[1:-1].strip()
    if s.startswith("postgres://"):
        s = "postgresql://" + s[len("postgres://"):]
    return s


class SqlRepository:
    """Soft-delete aware CRUD for one model/entity pair."""

    model: Any = None
    entity: Any = None
    label = "record"
    number_field: Optional[str] = None
    soft_delete = True

    def __init__(self, db: "PostgresDB") -> None:
        self._db = db
        self._columns = {c.key for c in self.model.__table__.columns}

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self._db._session() as s:
                yield s
        except IntegrityError as e:
            raise ConflictError(f"{self.label} violates a uniqueness constraint") from e
        except SQLAlchemyError as e:
            raise RepositoryError(f"{self.label} storage error: {e}") from e

    def _to_entity(self, row: Any) -> Any:
        return self.entity.from_dict({key: getattr(row, key) for key in self._columns})

    def _apply(self, row: Any, obj: Any) -> None:
        for key, value in obj.to_dict().items():
            if key in self._columns:
                setattr(row, key, value)

    def _base_query(self):
        stmt = select(self.model)
        if self.soft_delete:
            stmt = stmt.where(self.model.deleted_at.is_(None))
        return stmt

    def _filtered(self, stmt, filters: Optional[Dict[str, Any]]):
        for key, value in (filters or {}).items():
            if value is None:
                continue
            if key not in self._columns:
                raise InvalidInputError(f"unknown filter for {self.label}: {key}")
            stmt = stmt.where(getattr(self.model, key) == entities._plain(value))
        return stmt

    def _load(self, s: Session, entity_id: str) -> Any:
        row = s.execute(self._base_query().where(self.model.id == entity_id)).scalar_one_or_none()
        if row is None:
            raise NotFoundError.for_entity(self.label, entity_id)
        return row

    # ------------------------------------------------------------------ #
    # CRUD
    # ------------------------------------------------------------------ #
    def create(self, obj: Any) -> Any:
        with self._session() as s:
            row = self.model()
            self._apply(row, obj)
            s.add(row)
            s.flush()
            return self._to_entity(row)

    def get(self, entity_id: str) -> Any:
        with self._session() as s:
            return self._to_entity(self._load(s, entity_id))

    def get_by_number(self, number: str) -> Any:
        if not self.number_field:
            raise NotImplementedError(f"{self.label} has no secondary key")
        with self._session() as s:
            stmt = self._base_query().where(getattr(self.model, self.number_field) == number)
            row = s.execute(stmt).scalar_one_or_none()
            if row is None:
                raise NotFoundError.for_entity(self.label, number)
            return self._to_entity(row)

    def list(self, filters: Optional[Dict[str, Any]] = None, limit: Optional[int] = None, offset: int = 0) -> List[Any]:
        with self._session() as s:
            stmt = self._filtered(self._base_query(), filters).order_by(self.model.created_at, self.model.id)
            if offset:
                stmt = stmt.offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            return [self._to_entity(r) for r in s.execute(stmt).scalars().all()]

    def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        with self._session() as s:
            stmt = select(func.count()).select_from(self.model)
            if self.soft_delete:
                stmt = stmt.where(self.model.deleted_at.is_(None))
            return int(s.execute(self._filtered(stmt, filters)).scalar_one())

    def update(self, obj: Any) -> Any:
        with self._session() as s:
            row = self._load(s, obj.id)
            obj.updated_at = utcnow()
            self._apply(row, obj)
            s.flush()
            return self._to_entity(row)

    def delete(self, entity_id: str) -> None:
        with self._session() as s:
            row = self._load(s, entity_id)
            row.deleted_at = utcnow()


class CustomerRepository(SqlRepository):
    model = models.Customer
    entity = entities.Customer
    label = "customer"
    number_field = "email"


class ProductRepository(SqlRepository):
    model = models.Product
    entity = entities.Product
    label = "product"


class QuoteRepository(SqlRepository):
    model = models.Quote
    entity = entities.Quote
    label = "quote"
    number_field = "quote_number"


class ClaimRepository(SqlRepository):
    model = models.Claim
    entity = entities.Claim
    label = "claim"
    number_field = "claim_number"


class PaymentRepository(SqlRepository):
    model = models.Payment
    entity = entities.Payment
    label = "payment"
    number_field = "payment_number"


class PolicyRepository(SqlRepository):
    model = models.Policy
    entity = entities.Policy
    label = "policy"
    number_field = "policy_number"

    # ------------------------------------------------------------------ #
    # Sweep predicates
    # ------------------------------------------------------------------ #
    def _sweep(self, *conditions) -> List[entities.Policy]:
        P = self.model
        with self._session() as s:
            stmt = self._base_query().where(*conditions).order_by(P.expiration_date, P.id)
            return [self._to_entity(r) for r in s.execute(stmt).scalars().all()]

    def _not_renewed(self):
        P = self.model
        renewal = aliased(P)
        return ~exists().where(
            and_(
                renewal.renewed_from_id == P.id,
                renewal.deleted_at.is_(None),
                renewal.status != entities.PolicyStatus.CANCELLED.value,
            )
        )

    def list_expired(self, now: datetime) -> List[entities.Policy]:
        P = self.model
        return self._sweep(P.status == entities.PolicyStatus.ACTIVE.value, P.expiration_date < now)

    def list_grace_period_expired(self, now: datetime) -> List[entities.Policy]:
        P = self.model
        return self._sweep(
            P.grace_period_end.is_not(None),
            P.grace_period_end < now,
            P.status.in_(GRACE_SWEEP_STATUSES),
        )

    def list_expiring_within(self, now: datetime, days: int) -> List[entities.Policy]:
        P = self.model
        return self._sweep(
            P.status == entities.PolicyStatus.ACTIVE.value,
            P.expiration_date > now,
            P.expiration_date <= now + timedelta(days=days),
        )

    def list_due_for_auto_renewal(self, now: datetime, window_days: int) -> List[entities.Policy]:
        P = self.model
        return self._sweep(
            P.status == entities.PolicyStatus.ACTIVE.value,
            P.auto_renew.is_(True),
            P.expiration_date > now,
            P.expiration_date <= now + timedelta(days=window_days),
            self._not_renewed(),
        )

    def has_renewal(self, policy_id: str) -> bool:
        P = self.model
        with self._session() as s:
            stmt = (
                select(func.count())
                .select_from(P)
                .where(
                    P.renewed_from_id == policy_id,
                    P.deleted_at.is_(None),
                    P.status != entities.PolicyStatus.CANCELLED.value,
                )
            )
            return s.execute(stmt).scalar_one() > 0


class WorkflowRepository(SqlRepository):
    model = models.ClaimWorkflow
    entity = entities.ClaimWorkflow
    label = "workflow"
    soft_delete = False

    def save(self, workflow: entities.ClaimWorkflow) -> entities.ClaimWorkflow:
        with self._session() as s:
            row = s.get(self.model, workflow.id)
            if row is None:
                row = self.model()
                s.add(row)
            workflow.updated_at = utcnow()
            self._apply(row, workflow)
            s.flush()
            return workflow

    def list_for_claim(self, claim_id: str) -> List[entities.ClaimWorkflow]:
        return self.list({"claim_id": claim_id})

    def get_latest_for_claim(self, claim_id: str) -> entities.ClaimWorkflow:
        W = self.model
        with self._session() as s:
            stmt = select(W).where(W.claim_id == claim_id).order_by(W.created_at.desc(), W.id.desc()).limit(1)
            row = s.execute(stmt).scalar_one_or_none()
            if row is None:
                raise NotFoundError.for_entity("workflow for claim", claim_id)
            return self._to_entity(row)


class PostgresDB:
    """
    Postgres data access using SQLAlchemy. Use when DATABASE_URL is set.
    """

    def __init__(self, connection_string: str, echo: bool = False) -> None:
        connection_string = _normalize_connection_string(connection_string)
        self.engine = create_engine(
            connection_string,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            echo=echo,
            json_serializer=partial(json.dumps, default=str),
        )
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine, expire_on_commit=False)

        self.customers = CustomerRepository(self)
        self.products = ProductRepository(self)
        self.quotes = QuoteRepository(self)
        self.policies = PolicyRepository(self)
        self.claims = ClaimRepository(self)
        self.payments = PaymentRepository(self)
        self.workflows = WorkflowRepository(self)

    def create_tables(self) -> None:
        models.Base.metadata.create_all(bind=self.engine)

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    @contextmanager
    def _session(self) -> Iterator[Session]:
        s = self.SessionLocal()
        try:
            yield s
            s.commit()
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()
